"""Declarative node tree describing an agent.

Nodes are plain data. A tree is built with the functions in this module and
handed to a Renderer, which reconciles it into runtime instances::

    tree = agent(
        system("You are a research assistant."),
        context(f"Today is {date.today()}"),
        message("Summarize the latest release notes."),
        tools(search_tool, agent(system("You write summaries."), name="writer")),
        model="claude-sonnet-4-5",
        name="researcher",
    )
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentree.instances.fragments import CONTEXT_PRIORITY, SYSTEM_PRIORITY
from agentree.tools.base import NativeTool, Tool


class NodeKind(str, Enum):
    AGENT = "agent"
    SYSTEM = "system"
    CONTEXT = "context"
    MESSAGE = "message"
    TOOL = "tool"
    NATIVE_TOOL = "native_tool"
    TOOLS = "tools"
    CONDITION = "condition"
    ROUTER = "router"
    ROUTE = "route"
    MCP = "mcp"
    COMPONENT = "component"
    GROUP = "group"


@dataclass
class Node:
    """One element of an agent tree."""

    kind: NodeKind
    props: dict[str, Any] = field(default_factory=dict)
    children: list[Node] = field(default_factory=list)
    key: str | None = None
    component: Callable[..., Any] | None = None

    @property
    def type_id(self) -> tuple[NodeKind, Callable[..., Any] | None]:
        """Nodes with different type ids are never matched to each other."""
        return (self.kind, self.component)


Child = Node | Tool | NativeTool | Iterable["Child"] | None | bool


def flatten_children(children: Iterable[Any]) -> list[Node]:
    """Normalize builder arguments into a flat list of nodes.

    Nested lists and tuples are flattened; ``None`` and booleans are dropped
    so ``flag and node`` can be written inline. Tool objects are wrapped in
    tool nodes.
    """
    flat: list[Node] = []
    for child in children:
        if child is None or isinstance(child, bool):
            continue
        if isinstance(child, Node):
            flat.append(child)
        elif isinstance(child, Tool):
            flat.append(tool_node(child))
        elif isinstance(child, NativeTool):
            flat.append(native_tool(child.name, child.spec))
        elif isinstance(child, (list, tuple)):
            flat.extend(flatten_children(child))
        else:
            raise TypeError(f"Unsupported child in agent tree: {child!r}")
    return flat


def agent(
    *children: Child,
    name: str | None = None,
    model: str | None = None,
    description: str | None = None,
    key: str | None = None,
    **settings: Any,
) -> Node:
    """An agent. At the root it is the agent being run; nested, it is a sub-agent.

    Keyword settings: ``max_tokens``, ``max_iterations``, ``temperature``,
    ``stop_sequences``, ``thinking_budget``, ``stream``, ``compaction`` and the
    callbacks ``on_message``, ``on_complete``, ``on_error``, ``on_step_finish``.
    """
    props = {"name": name, "model": model, "description": description, **settings}
    return Node(
        NodeKind.AGENT,
        props={k: v for k, v in props.items() if v is not None},
        children=flatten_children(children),
        key=key,
    )


def system(content: str, priority: int = SYSTEM_PRIORITY, key: str | None = None) -> Node:
    return Node(NodeKind.SYSTEM, props={"content": content, "priority": priority}, key=key)


def context(content: str, priority: int = CONTEXT_PRIORITY, key: str | None = None) -> Node:
    return Node(NodeKind.CONTEXT, props={"content": content, "priority": priority}, key=key)


def message(content: Any, role: str = "user", key: str | None = None) -> Node:
    """A message authored into the agent's history once, when first mounted."""
    return Node(NodeKind.MESSAGE, props={"role": role, "content": content}, key=key)


def tool_node(tool: Tool, key: str | None = None) -> Node:
    return Node(NodeKind.TOOL, props={"tool": tool}, key=key)


def native_tool(name: str, spec: dict[str, Any] | None = None, key: str | None = None) -> Node:
    """A provider-side tool such as web search, sent verbatim to the provider."""
    return Node(
        NodeKind.NATIVE_TOOL,
        props={"tool": NativeTool(name=name, spec=dict(spec or {}))},
        key=key,
    )


def tools(*children: Child, key: str | None = None) -> Node:
    """Groups tools and sub-agents. Has no runtime effect of its own."""
    return Node(NodeKind.TOOLS, children=flatten_children(children), key=key)


def group(*children: Child, key: str | None = None) -> Node:
    return Node(NodeKind.GROUP, children=flatten_children(children), key=key)


def condition(
    when: bool | str | Callable[[], bool], *children: Child, key: str | None = None
) -> Node:
    """Include ``children`` only while ``when`` holds.

    ``when`` is a boolean, a zero-argument callable evaluated on each render,
    or a natural-language predicate evaluated against the conversation.
    """
    return Node(
        NodeKind.CONDITION, props={"when": when}, children=flatten_children(children), key=key
    )


def route(
    when: bool | str | Callable[[], bool], *children: Child, key: str | None = None
) -> Node:
    return Node(NodeKind.ROUTE, props={"when": when}, children=flatten_children(children), key=key)


def router(*routes: Child, key: str | None = None) -> Node:
    """Holds ``route`` nodes; every route whose predicate holds is active."""
    children = flatten_children(routes)
    for child in children:
        if child.kind is not NodeKind.ROUTE:
            raise TypeError(f"router children must be route nodes, got {child.kind.value}")
    return Node(NodeKind.ROUTER, children=children, key=key)


def mcp(
    name: str,
    url: str,
    authorization_token: str | None = None,
    allowed_tools: list[str] | None = None,
    key: str | None = None,
) -> Node:
    """A remote MCP server whose tools the provider exposes to the agent."""
    return Node(
        NodeKind.MCP,
        props={
            "name": name,
            "url": url,
            "authorization_token": authorization_token,
            "allowed_tools": allowed_tools,
        },
        key=key,
    )


def component(fn: Callable[..., Any], key: str | None = None, **props: Any) -> Node:
    """A configuration function ``fn(scope, **props)`` evaluated on each render.

    It returns a node, a list of nodes or None. State kept in
    ``scope.state(...)`` survives re-renders for as long as the component
    stays mounted at the same position.
    """
    return Node(NodeKind.COMPONENT, props=props, key=key, component=fn)
