"""Per-instance tool registry."""

import logging
from collections.abc import Iterator
from typing import Any

from agentree.errors import ConfigurationError
from agentree.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Ordered mapping from tool name to Tool.

    Names are unique: ``add`` rejects a second tool with an existing name,
    ``put`` replaces it in place.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.add(tool)

    def add(self, tool: Tool) -> None:
        """Register a new tool.

        Raises:
            ConfigurationError: If a tool with the same name is registered
        """
        if tool.name in self._tools:
            raise ConfigurationError(f"Duplicate tool name: '{tool.name}'")
        self._tools[tool.name] = tool

    def put(self, tool: Tool) -> None:
        """Register a tool, replacing any tool with the same name."""
        if tool.name in self._tools:
            logger.debug("Replacing tool %s", tool.name)
        self._tools[tool.name] = tool

    def remove(self, name: str) -> Tool | None:
        """Remove a tool by name. Removing an unknown name is a no-op."""
        return self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def to_api_format(self) -> list[dict[str, Any]]:
        """Export every tool in the provider's custom-tool format."""
        return [tool.to_api_format() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)
