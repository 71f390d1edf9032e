"""Model provider interface and implementations."""

from agentree.llm.anthropic import AnthropicProvider
from agentree.llm.client import (
    LLMProvider,
    Message,
    ProviderMessage,
    ProviderRequest,
    RawBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from agentree.llm.factory import create_provider

__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "Message",
    "ProviderMessage",
    "ProviderRequest",
    "RawBlock",
    "TextBlock",
    "ThinkingBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "create_provider",
]
