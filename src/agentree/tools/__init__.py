"""Tool definitions, registry and sub-agent tools."""

from agentree.tools.base import (
    NativeTool,
    Tool,
    ToolContext,
    define_agent_tool,
    define_tool,
    execute_tool,
    tool,
)
from agentree.tools.registry import ToolRegistry

__all__ = [
    "NativeTool",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "define_agent_tool",
    "define_tool",
    "execute_tool",
    "tool",
]
