"""LLM provider protocol and data types."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, Union


@dataclass
class TextBlock:
    """Plain text produced by the model or authored by the user."""

    text: str
    citations: list[dict[str, Any]] | None = None


@dataclass
class ThinkingBlock:
    """Extended reasoning emitted before the answer."""

    thinking: str
    signature: str | None = None


@dataclass
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultBlock:
    """The outcome of a tool invocation, sent back to the model."""

    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass
class RawBlock:
    """A provider block this library does not model, kept verbatim.

    Covers server tool calls and their results, redacted thinking and any
    block type added to the API later. It is sent back exactly as received.
    """

    data: dict[str, Any]

    @property
    def type(self) -> str | None:
        return self.data.get("type")


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, RawBlock]


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "user" or "assistant"
    content: str | list[ContentBlock]


@dataclass
class Usage:
    """Token accounting for one or more provider calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=(
                self.cache_creation_input_tokens + other.cache_creation_input_tokens
            ),
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
        )


@dataclass
class ProviderMessage:
    """A finalized assistant message returned by the provider."""

    content: list[ContentBlock]
    stop_reason: str | None = "end_turn"  # "end_turn", "tool_use", "max_tokens"
    usage: Usage = field(default_factory=Usage)
    id: str = ""
    model: str = ""


@dataclass
class ProviderRequest:
    """Everything the provider needs for one call."""

    model: str
    max_tokens: int
    messages: list[Message]
    system: str | None = None
    tools: list[dict[str, Any]] = field(default_factory=list)
    mcp_servers: list[dict[str, Any]] = field(default_factory=list)
    stop_sequences: list[str] | None = None
    temperature: float | None = None
    thinking_budget: int | None = None
    tool_choice: dict[str, Any] | None = None
    betas: list[str] = field(default_factory=list)


# Streaming events, emitted in order before MessageComplete


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str


@dataclass
class ToolCallStart:
    id: str
    name: str


@dataclass
class ToolCallDelta:
    id: str
    partial_json: str


@dataclass
class MessageComplete:
    message: ProviderMessage


ProviderStreamEvent = Union[
    TextDelta, ReasoningDelta, ToolCallStart, ToolCallDelta, MessageComplete
]


class LLMProvider(Protocol):
    """Protocol for model provider implementations."""

    async def create_message(self, request: ProviderRequest) -> ProviderMessage:
        """Generate a complete assistant message.

        Args:
            request: Model, history, tools and generation parameters

        Returns:
            The finalized assistant message
        """
        ...

    def stream_message(self, request: ProviderRequest) -> AsyncIterator[ProviderStreamEvent]:
        """Stream an assistant message.

        Args:
            request: Model, history, tools and generation parameters

        Yields:
            Incremental events, ending with a MessageComplete event
        """
        ...

    async def close(self) -> None:
        """Release network resources held by the provider."""
        ...


def extract_text(message: ProviderMessage) -> str:
    """Concatenate the text blocks of a message."""
    return "".join(block.text for block in message.content if isinstance(block, TextBlock))


def extract_thinking(message: ProviderMessage) -> str | None:
    """Return the first reasoning block's text, if any."""
    for block in message.content:
        if isinstance(block, ThinkingBlock):
            return block.thinking
    return None


def extract_tool_uses(message: ProviderMessage) -> list[ToolUseBlock]:
    """Return the tool-use blocks of a message in order."""
    return [block for block in message.content if isinstance(block, ToolUseBlock)]
