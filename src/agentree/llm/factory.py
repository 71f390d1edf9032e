"""Factory function for creating model providers from configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from agentree.errors import ConfigurationError
from agentree.llm.anthropic import AnthropicProvider

if TYPE_CHECKING:
    from agentree.config.schema import AgentreeConfig


def create_provider(config: AgentreeConfig) -> AnthropicProvider:
    """Create a model provider based on configuration.

    Args:
        config: agentree configuration.

    Returns:
        A provider for the configured backend.

    Raises:
        ConfigurationError: If no API key is configured or the backend is unknown.
    """
    settings = config.provider

    if settings.backend == "anthropic":
        api_key = settings.api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "No Anthropic API key: set provider.api_key or ANTHROPIC_API_KEY"
            )
        return AnthropicProvider(
            api_key=api_key,
            base_url=settings.base_url,
            timeout=settings.timeout,
        )
    raise ConfigurationError(f"Unknown provider backend: {settings.backend}")
