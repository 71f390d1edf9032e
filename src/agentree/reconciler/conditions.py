"""Resolution of natural-language condition predicates.

Boolean predicates are evaluated while reconciling. Predicates written as
text ("the user asked about billing") can only be judged against the
conversation, so the engine resolves them at the start of each turn through
a PredicateResolver and the renderer re-renders with the results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol

from agentree.config.schema import DEFAULT_EVALUATION_MAX_TOKENS
from agentree.llm.client import (
    LLMProvider,
    Message,
    ProviderRequest,
    TextBlock,
    extract_tool_uses,
)

logger = logging.getLogger(__name__)

EVALUATE_TOOL_NAME = "evaluate_conditions"
SUMMARY_MESSAGES = 10
SUMMARY_CHARS = 500


class PredicateResolver(Protocol):
    """Decides which natural-language predicates currently hold."""

    async def resolve(
        self, predicates: Sequence[str], messages: Sequence[Message], model: str | None
    ) -> list[bool]:
        """Evaluate predicates against the conversation.

        Args:
            predicates: Predicate texts, in tree order
            messages: The agent's current history
            model: The agent's model

        Returns:
            One boolean per predicate
        """
        ...


class StaticPredicateResolver:
    """Answers from a fixed mapping or a plain function. Unknown predicates are false."""

    def __init__(self, answers: Mapping[str, bool] | Callable[[str], bool] | None = None):
        self.answers = answers or {}

    async def resolve(
        self, predicates: Sequence[str], messages: Sequence[Message], model: str | None
    ) -> list[bool]:
        if callable(self.answers):
            return [bool(self.answers(predicate)) for predicate in predicates]
        return [bool(self.answers.get(predicate, False)) for predicate in predicates]


def summarize_messages(messages: Sequence[Message]) -> str:
    """Render the last few messages as ``role: text`` lines."""
    lines = []
    for message in messages[-SUMMARY_MESSAGES:]:
        if isinstance(message.content, str):
            text = message.content
        else:
            text = " ".join(
                block.text if isinstance(block, TextBlock) else "[non-text]"
                for block in message.content
            )
        lines.append(f"{message.role}: {text[:SUMMARY_CHARS]}")
    return "\n".join(lines)


class ModelPredicateResolver:
    """Asks the provider which predicates hold, in one forced tool call."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        max_tokens: int = DEFAULT_EVALUATION_MAX_TOKENS,
    ):
        """Initialize the resolver.

        Args:
            provider: Model provider used for the evaluation call
            model: Model for evaluation; defaults to the agent's model
            max_tokens: Token budget for the evaluation call
        """
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens

    def build_request(
        self, predicates: Sequence[str], messages: Sequence[Message], model: str
    ) -> ProviderRequest:
        listing = "\n".join(f"{index}. {predicate}" for index, predicate in enumerate(predicates))
        return ProviderRequest(
            model=model,
            max_tokens=self.max_tokens,
            system=(
                "You are a condition evaluation assistant. Given a conversation, determine "
                "which conditions are true. Multiple conditions can be true simultaneously.\n\n"
                f"Conditions:\n{listing}\n\n"
                "Return ALL indices of conditions that are TRUE based on the current "
                "conversation state."
            ),
            messages=[
                Message(
                    role="user",
                    content=(
                        f"Conversation:\n{summarize_messages(messages)}\n\n"
                        "Which conditions are true?"
                    ),
                )
            ],
            tools=[
                {
                    "name": EVALUATE_TOOL_NAME,
                    "description": "Select all condition indices that evaluate to true",
                    "input_schema": {
                        "type": "object",
                        "properties": {
                            "true_condition_indices": {
                                "type": "array",
                                "items": {"type": "integer", "enum": list(range(len(predicates)))},
                                "description": "Indices of conditions that are true (may be empty)",
                            }
                        },
                        "required": ["true_condition_indices"],
                        "additionalProperties": False,
                    },
                }
            ],
            tool_choice={"type": "tool", "name": EVALUATE_TOOL_NAME},
        )

    async def resolve(
        self, predicates: Sequence[str], messages: Sequence[Message], model: str | None
    ) -> list[bool]:
        model = self.model or model
        if not predicates:
            return []
        if not model:
            logger.warning("No model for condition evaluation, treating conditions as false")
            return [False] * len(predicates)

        response = await self.provider.create_message(
            self.build_request(predicates, messages, model)
        )
        for tool_use in extract_tool_uses(response):
            if tool_use.name == EVALUATE_TOOL_NAME:
                indices = set(tool_use.input.get("true_condition_indices") or [])
                logger.debug("Conditions true: %s of %d", sorted(indices), len(predicates))
                return [index in indices for index in range(len(predicates))]

        logger.debug("Condition evaluation returned no tool call, treating conditions as false")
        return [False] * len(predicates)
