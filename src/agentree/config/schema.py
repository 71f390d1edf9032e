"""Pydantic models for agentree.yaml configuration."""

from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_EVALUATION_MAX_TOKENS = 512


class ProviderConfig(BaseModel):
    """Model provider configuration."""

    backend: Literal["anthropic"] = Field(
        default="anthropic", description="Provider backend to use"
    )
    api_key: str | None = Field(
        default=None,
        description="API key (falls back to the ANTHROPIC_API_KEY environment variable)",
    )
    base_url: str = Field(default="https://api.anthropic.com", description="API base URL")
    timeout: int = Field(default=120, description="Request timeout in seconds", ge=1)


class DefaultsConfig(BaseModel):
    """Agent settings applied when the tree leaves them unset."""

    model: str | None = Field(default=None, description="Default model name")
    max_tokens: int = Field(default=4096, description="Maximum tokens per response", ge=1)
    max_iterations: int = Field(
        default=20, description="Maximum provider turns per run", ge=1, le=200
    )
    stream: bool = Field(default=False, description="Stream provider responses")


class ConditionsConfig(BaseModel):
    """Natural-language condition evaluation."""

    resolver: Literal["model", "none"] = Field(
        default="model",
        description="'model' asks the provider to evaluate conditions, 'none' leaves them inactive",
    )
    model: str | None = Field(
        default=None, description="Model used for condition evaluation (defaults to the agent's)"
    )
    max_tokens: int = Field(
        default=DEFAULT_EVALUATION_MAX_TOKENS, description="Token budget for one evaluation", ge=1
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING", description="Default log level"
    )


class AgentreeConfig(BaseModel):
    """Root configuration model for agentree.yaml."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    conditions: ConditionsConfig = Field(default_factory=ConditionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
