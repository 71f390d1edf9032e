"""Pytest configuration and shared fixtures."""

import pytest
from mocks import MockProvider

from agentree.config.schema import AgentreeConfig


@pytest.fixture
def provider() -> MockProvider:
    """A provider with an empty script; tests fill ``responses``."""
    return MockProvider()


@pytest.fixture
def default_config() -> AgentreeConfig:
    """Provide a default configuration for tests."""
    return AgentreeConfig()
