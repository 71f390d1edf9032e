"""History compaction once a conversation grows past a token threshold."""

import logging
from dataclasses import dataclass

from agentree.llm.client import (
    LLMProvider,
    Message,
    ProviderMessage,
    ProviderRequest,
    TextBlock,
    ToolUseBlock,
    extract_text,
)

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_THRESHOLD = 100_000

DEFAULT_SUMMARY_PROMPT = (
    "Summarize the conversation so far so that the work can continue in a fresh "
    "context window where this summary replaces the history. Cover the task, "
    "what has been done, what was learned, the next steps and any details that "
    "must not be lost. Wrap the summary in <summary></summary> tags."
)


@dataclass
class CompactionControl:
    """When and how to replace history with a continuation summary."""

    enabled: bool = False
    context_token_threshold: int = DEFAULT_TOKEN_THRESHOLD
    model: str | None = None
    summary_prompt: str = DEFAULT_SUMMARY_PROMPT


def should_compact(control: CompactionControl | None, last: ProviderMessage | None) -> bool:
    if control is None or not control.enabled or last is None:
        return False
    return last.usage.total_tokens >= control.context_token_threshold


def _without_pending_tool_use(messages: list[Message]) -> list[Message]:
    """Drop tool-use blocks from a trailing assistant message.

    A summary request must not end on an unanswered tool call.
    """
    trimmed = list(messages)
    if not trimmed:
        return trimmed
    last = trimmed[-1]
    if last.role == "assistant" and isinstance(last.content, list):
        kept = [block for block in last.content if not isinstance(block, ToolUseBlock)]
        if kept:
            trimmed[-1] = Message(role="assistant", content=kept)
        else:
            trimmed.pop()
    return trimmed


async def compact_history(
    provider: LLMProvider,
    control: CompactionControl,
    messages: list[Message],
    model: str,
    max_tokens: int,
) -> list[Message] | None:
    """Ask the provider for a continuation summary.

    Args:
        provider: Model provider
        control: Compaction settings
        messages: Current history
        model: Agent model, used unless ``control.model`` is set
        max_tokens: Token budget for the summary

    Returns:
        The replacement history (one user message), or None if the provider
        returned no text
    """
    request = ProviderRequest(
        model=control.model or model,
        max_tokens=max_tokens,
        messages=[
            *_without_pending_tool_use(messages),
            Message(role="user", content=[TextBlock(text=control.summary_prompt)]),
        ],
    )
    response = await provider.create_message(request)
    summary = extract_text(response)
    if not summary:
        logger.warning("Compaction returned no summary, keeping full history")
        return None

    logger.debug("Compacted %d messages into a summary of %d chars", len(messages), len(summary))
    return [Message(role="user", content=[TextBlock(text=summary)])]
