"""Node builders for declaring agent trees, and YAML agent files."""

from agentree.tree.loader import load_agent_file
from agentree.tree.nodes import (
    Node,
    NodeKind,
    agent,
    component,
    condition,
    context,
    group,
    mcp,
    message,
    native_tool,
    route,
    router,
    system,
    tool_node,
    tools,
)

__all__ = [
    "Node",
    "NodeKind",
    "agent",
    "component",
    "condition",
    "context",
    "group",
    "load_agent_file",
    "mcp",
    "message",
    "native_tool",
    "route",
    "router",
    "system",
    "tool_node",
    "tools",
]
