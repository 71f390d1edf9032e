"""Configuration loading and validation."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from agentree.config.schema import AgentreeConfig
from agentree.errors import AgentreeError

DEFAULT_CONFIG_PATH = Path.home() / ".agentree" / "agentree.yaml"


class ConfigError(AgentreeError):
    """Configuration loading or validation error."""


def load_config(path: str | Path | None = None) -> AgentreeConfig:
    """Load and validate agentree configuration from a YAML file.

    Args:
        path: Path to config file. If None, tries the default location.
              If the file doesn't exist, returns the default config.

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If the config file exists but is invalid
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)

    # Zero-config mode
    if not path.exists():
        return AgentreeConfig()

    try:
        with open(path) as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e

    if config_data is None:
        return AgentreeConfig()
    if not isinstance(config_data, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping")

    try:
        return AgentreeConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def save_config(config: AgentreeConfig, path: str | Path | None = None) -> None:
    """Save configuration to a YAML file.

    Args:
        config: Configuration object to save
        path: Destination path. If None, uses the default location.
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.safe_dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
