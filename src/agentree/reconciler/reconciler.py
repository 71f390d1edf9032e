"""Reconciliation of agent trees into runtime instances.

Each render walks the new tree against the mounted fibers of the previous
one. Fibers are matched by type and key (or by position among unkeyed
siblings of the same type), so component state and authored messages
survive re-renders. After the walk the reconciler collects what the tree
now asks for (fragments, tools, sub-agents, MCP servers, settings), diffs
that against the previous render and submits only the differences to the
instance, which queues them while its engine is running.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from agentree.errors import ConfigurationError, ReentrantRenderError
from agentree.instances.fragments import Fragment
from agentree.instances.pending import (
    AgentMounted,
    AgentUnmounted,
    FragmentsReplaced,
    McpServerAdded,
    McpServerRemoved,
    MessageAdded,
    MessageRemoved,
    MessageReplaced,
    NativeToolAdded,
    NativeToolRemoved,
    SettingsChanged,
    ToolAdded,
    ToolRemoved,
)
from agentree.instances.types import AgentInstance, AgentSettings, McpServer, SubagentInstance
from agentree.llm.client import Message
from agentree.reconciler.diff import deep_equal, diff_props
from agentree.reconciler.scope import Scope
from agentree.tools.base import NativeTool, Tool
from agentree.tree.nodes import Node, NodeKind, flatten_children

logger = logging.getLogger(__name__)

CALLBACKS = ("on_message", "on_complete", "on_error", "on_step_finish")

_LEAF_KINDS = {
    NodeKind.SYSTEM,
    NodeKind.CONTEXT,
    NodeKind.MESSAGE,
    NodeKind.TOOL,
    NodeKind.NATIVE_TOOL,
    NodeKind.MCP,
}


@dataclass(eq=False)
class Fiber:
    """A mounted node and the runtime state attached to it."""

    node: Node
    parent: Fiber | None = None
    children: list[Fiber] = field(default_factory=list)
    scope: Scope | None = None
    message: Message | None = None
    subagent: SubagentInstance | None = None
    active: bool = False

    @property
    def key(self) -> str | None:
        return self.node.key


def _snapshot(fiber: Fiber, parent: Fiber | None = None) -> Fiber:
    clone = replace(fiber, parent=parent, children=[])
    clone.children = [_snapshot(child, clone) for child in fiber.children]
    return clone


@dataclass
class _Desired:
    """Everything one render asks of the instance."""

    props: dict[str, Any] = field(default_factory=dict)
    system: list[Fragment] = field(default_factory=list)
    context: list[Fragment] = field(default_factory=list)
    tools: dict[str, Tool] = field(default_factory=dict)
    native_tools: dict[str, NativeTool] = field(default_factory=dict)
    mcp_servers: dict[str, McpServer] = field(default_factory=dict)
    agents: dict[str, SubagentInstance] = field(default_factory=dict)
    agent_tools: dict[str, Tool] = field(default_factory=dict)

    def claim(self, name: str) -> None:
        if name in self.tools or name in self.agents or name in self.native_tools:
            raise ConfigurationError(f"Duplicate tool name: '{name}'")


class Reconciler:
    """Keeps one AgentInstance in step with successive versions of a tree."""

    def __init__(
        self,
        instance: AgentInstance,
        schedule: Callable[[], None],
        context: Mapping[str, Any] | None = None,
    ):
        """Initialize the reconciler.

        Args:
            instance: Instance receiving the tree's contributions
            schedule: Requests a re-render; handed to component state cells
            context: Values exposed to components as ``scope.context``
        """
        self.instance = instance
        self.schedule = schedule
        self.context: Mapping[str, Any] = context if context is not None else {}
        self.root: Fiber | None = None
        self.rendering = False
        self.predicate_results: dict[str, bool] = {}
        self.natural_language_predicates: list[str] = []
        self._seen_predicates: list[str] = []
        self._message_updates: list[MessageAdded | MessageReplaced | MessageRemoved] = []
        self._previous: _Desired | None = None

    def render(self, node: Node) -> None:
        """Reconcile ``node`` against the previous render.

        Raises:
            ReentrantRenderError: If called while a render is in progress
            ConfigurationError: If the tree is malformed
        """
        if self.rendering:
            raise ReentrantRenderError("render() called while a render is in progress")
        self.rendering = True
        self._seen_predicates = []
        self._message_updates = []
        snapshot = _snapshot(self.root) if self.root is not None else None
        try:
            try:
                self.root = self._reconcile(self.root, node, None, inside_agent=False)
                desired = self._collect()
            except Exception:
                # the walk edits fibers in place; a failed render leaves the last good tree
                self.root = snapshot
                raise
            for update in self._message_updates:
                self.instance.submit(update)
            self._commit(desired)
            self._previous = desired
            self.natural_language_predicates = list(dict.fromkeys(self._seen_predicates))
        finally:
            self._message_updates = []
            self.rendering = False

    def set_predicate_results(self, results: Mapping[str, bool]) -> bool:
        """Record natural-language predicate outcomes.

        Returns:
            True if any outcome differs from the stored one
        """
        changed = any(
            self.predicate_results.get(text, False) != value for text, value in results.items()
        )
        self.predicate_results.update(results)
        return changed

    def unmount(self) -> None:
        """Release every mounted sub-agent."""
        for subagent in list(self.instance.children.values()):
            subagent.dispose()
        self.root = None

    # Tree walk

    def _reconcile(
        self, fiber: Fiber | None, node: Node, parent: Fiber | None, inside_agent: bool
    ) -> Fiber:
        old_node: Node | None = None
        if fiber is not None and fiber.node.type_id == node.type_id and fiber.key == node.key:
            old_node = fiber.node
            fiber.node = node
        else:
            if fiber is not None:
                self._unmount(fiber)
            fiber = Fiber(node=node, parent=parent)

        kind = node.kind
        if kind in _LEAF_KINDS and not inside_agent:
            raise ConfigurationError(f"'{kind.value}' node must be placed inside an agent")

        match kind:
            case NodeKind.COMPONENT:
                if fiber.scope is None:
                    fiber.scope = Scope(self.schedule, self.instance, self.context)
                assert node.component is not None
                output = node.component(fiber.scope, **node.props)
                fiber.children = self._reconcile_children(
                    fiber, flatten_children([output]), inside_agent
                )
            case NodeKind.AGENT if inside_agent:
                self._reconcile_subagent(fiber, node)
            case NodeKind.AGENT:
                fiber.children = self._reconcile_children(fiber, node.children, inside_agent=True)
            case NodeKind.CONDITION | NodeKind.ROUTE:
                fiber.active = self._evaluate(node.props.get("when"))
                if fiber.active:
                    fiber.children = self._reconcile_children(fiber, node.children, inside_agent)
                else:
                    for child in fiber.children:
                        self._unmount(child)
                    fiber.children = []
            case NodeKind.MESSAGE:
                self._reconcile_message(fiber, old_node, node)
            case NodeKind.TOOLS | NodeKind.ROUTER | NodeKind.GROUP:
                fiber.children = self._reconcile_children(fiber, node.children, inside_agent)
            case _:
                pass
        return fiber

    def _reconcile_children(
        self, fiber: Fiber, nodes: list[Node], inside_agent: bool
    ) -> list[Fiber]:
        keyed: dict[tuple[Any, str], Fiber] = {}
        unkeyed: dict[Any, deque[Fiber]] = {}
        for child in fiber.children:
            if child.key is not None:
                keyed[(child.node.type_id, child.key)] = child
            else:
                unkeyed.setdefault(child.node.type_id, deque()).append(child)

        children: list[Fiber] = []
        for node in nodes:
            if node.key is not None:
                match = keyed.pop((node.type_id, node.key), None)
            else:
                queue = unkeyed.get(node.type_id)
                match = queue.popleft() if queue else None
            children.append(self._reconcile(match, node, fiber, inside_agent))

        for leftover in keyed.values():
            self._unmount(leftover)
        for queue in unkeyed.values():
            for leftover in queue:
                self._unmount(leftover)
        return children

    def _reconcile_subagent(self, fiber: Fiber, node: Node) -> None:
        name = node.props.get("name")
        if not name:
            raise ConfigurationError("Sub-agents must have a name")
        description = node.props.get("description")
        if fiber.subagent is None or fiber.subagent.name != name:
            fiber.subagent = SubagentInstance(
                name=name,
                node=node,
                parent=self.instance,
                description=description,
                context=self.context,
            )
        else:
            fiber.subagent.update(node, description)
        # children stay unexpanded until the sub-agent is invoked
        fiber.children = []

    def _reconcile_message(self, fiber: Fiber, old_node: Node | None, node: Node) -> None:
        role = node.props.get("role", "user")
        content = node.props.get("content", "")
        if fiber.message is None:
            fiber.message = Message(role=role, content=content)
            self._message_updates.append(MessageAdded(fiber.message))
        elif old_node is not None and diff_props(old_node.props, node.props).has_changes:
            replacement = Message(role=role, content=content)
            self._message_updates.append(MessageReplaced(fiber.message, replacement))
            fiber.message = replacement

    def _evaluate(self, when: Any) -> bool:
        if isinstance(when, str):
            self._seen_predicates.append(when)
            return self.predicate_results.get(when, False)
        if callable(when):
            return bool(when())
        return bool(when)

    def _unmount(self, fiber: Fiber) -> None:
        for child in fiber.children:
            self._unmount(child)
        fiber.children = []
        if fiber.message is not None:
            self._message_updates.append(MessageRemoved(fiber.message))
            fiber.message = None
        fiber.scope = None

    # Commit

    def _root_agent(self) -> Fiber:
        found: list[Fiber] = []

        def search(fiber: Fiber) -> None:
            if fiber.node.kind is NodeKind.AGENT:
                found.append(fiber)
                return
            for child in fiber.children:
                search(child)

        if self.root is not None:
            search(self.root)
        if not found:
            raise ConfigurationError("The tree must contain an agent node")
        if len(found) > 1:
            raise ConfigurationError("The tree must contain exactly one root agent node")
        return found[0]

    def _collect(self) -> _Desired:
        root = self._root_agent()
        desired = _Desired(props=dict(root.node.props))

        def visit(fiber: Fiber) -> None:
            node = fiber.node
            match node.kind:
                case NodeKind.SYSTEM:
                    desired.system.append(Fragment(node.props["content"], node.props["priority"]))
                case NodeKind.CONTEXT:
                    desired.context.append(Fragment(node.props["content"], node.props["priority"]))
                case NodeKind.TOOL:
                    tool: Tool = node.props["tool"]
                    desired.claim(tool.name)
                    desired.tools[tool.name] = tool
                case NodeKind.NATIVE_TOOL:
                    native: NativeTool = node.props["tool"]
                    desired.claim(native.name)
                    desired.native_tools[native.name] = native
                case NodeKind.MCP:
                    server = McpServer(**node.props)
                    if server.name in desired.mcp_servers:
                        raise ConfigurationError(f"Duplicate MCP server name: '{server.name}'")
                    desired.mcp_servers[server.name] = server
                case NodeKind.AGENT if fiber is not root:
                    assert fiber.subagent is not None
                    desired.claim(fiber.subagent.name)
                    desired.agents[fiber.subagent.name] = fiber.subagent
                    desired.agent_tools[fiber.subagent.name] = fiber.subagent.tool
            for child in fiber.children:
                visit(child)

        for child in root.children:
            visit(child)
        return desired

    def _commit(self, desired: _Desired) -> None:
        previous = self._previous or _Desired()
        instance = self.instance

        # callbacks are not behavioral settings and never wait for a turn boundary
        for name in CALLBACKS:
            setattr(instance.settings, name, desired.props.get(name))
        if self._previous is None or diff_props(previous.props, desired.props).has_changes:
            instance.submit(SettingsChanged(AgentSettings.from_props(desired.props)))

        if not deep_equal(previous.system, desired.system) or not deep_equal(
            previous.context, desired.context
        ):
            instance.submit(FragmentsReplaced(tuple(desired.system), tuple(desired.context)))

        for name, subagent in previous.agents.items():
            if desired.agents.get(name) is not subagent:
                if subagent.handle is not None and subagent.handle.is_running:
                    subagent.handle.abort()
                instance.submit(AgentUnmounted(name))
        for name in previous.tools:
            if name not in desired.tools:
                instance.submit(ToolRemoved(name))
        for name in previous.native_tools:
            if name not in desired.native_tools:
                instance.submit(NativeToolRemoved(name))
        for name in previous.mcp_servers:
            if name not in desired.mcp_servers:
                instance.submit(McpServerRemoved(name))

        for name, tool in desired.tools.items():
            if name not in previous.tools or not deep_equal(previous.tools[name], tool):
                instance.submit(ToolAdded(tool))
        for name, native in desired.native_tools.items():
            if name not in previous.native_tools or not deep_equal(
                previous.native_tools[name], native
            ):
                instance.submit(NativeToolAdded(native))
        for name, server in desired.mcp_servers.items():
            if name not in previous.mcp_servers or not deep_equal(
                previous.mcp_servers[name], server
            ):
                instance.submit(McpServerAdded(server))
        for name, subagent in desired.agents.items():
            if previous.agents.get(name) is not subagent:
                instance.submit(AgentMounted(subagent))
            elif previous.agent_tools.get(name) is not subagent.tool:
                instance.submit(ToolAdded(subagent.tool))
