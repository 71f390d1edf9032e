"""Configuration management for agentree."""

from agentree.config.loader import ConfigError, load_config, save_config
from agentree.config.schema import AgentreeConfig

__all__ = ["AgentreeConfig", "ConfigError", "load_config", "save_config"]
