"""Runtime instances produced by reconciling an agent tree."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

from agentree.execution.state import ExecutionStatus
from agentree.instances.fragments import Fragment, compose_system_prompt
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
    PendingUpdate,
    PendingUpdatesQueue,
    SettingsChanged,
    ToolAdded,
    ToolRemoved,
)
from agentree.llm.client import Message
from agentree.tools.base import NativeTool
from agentree.tools.registry import ToolRegistry
from agentree.tools.subagent import build_subagent_tool

if TYPE_CHECKING:
    from agentree.execution.compaction import CompactionControl
    from agentree.execution.engine import ExecutionEngine
    from agentree.handles.subagent import SubagentHandle
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)

MCP_BETA = "mcp-client-2025-11-20"


@dataclass
class AgentSettings:
    """Model parameters and lifecycle callbacks of one agent."""

    name: str | None = None
    description: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    max_iterations: int | None = None
    temperature: float | None = None
    stop_sequences: list[str] | None = None
    thinking_budget: int | None = None
    stream: bool | None = None
    compaction: CompactionControl | None = None
    on_message: Callable[..., Any] | None = field(default=None, compare=False)
    on_complete: Callable[..., Any] | None = field(default=None, compare=False)
    on_error: Callable[..., Any] | None = field(default=None, compare=False)
    on_step_finish: Callable[..., Any] | None = field(default=None, compare=False)

    @classmethod
    def from_props(cls, props: dict[str, Any]) -> AgentSettings:
        """Build settings from agent node properties, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in props.items() if key in known})

    def with_fallback(self, fallback: AgentSettings | None) -> AgentSettings:
        """Copy with unset values taken from ``fallback``. Callbacks are not copied."""
        if fallback is None:
            return replace(self)
        values = {
            f.name: getattr(fallback, f.name)
            for f in fields(self)
            if f.compare and getattr(self, f.name) is None
        }
        return replace(self, **values)


@dataclass
class McpServer:
    """A remote MCP server the provider connects to on the agent's behalf."""

    name: str
    url: str
    authorization_token: str | None = None
    allowed_tools: list[str] | None = None

    def to_api_format(self) -> dict[str, Any]:
        definition: dict[str, Any] = {"type": "url", "name": self.name, "url": self.url}
        if self.authorization_token:
            definition["authorization_token"] = self.authorization_token
        if self.allowed_tools is not None:
            definition["tool_configuration"] = {
                "enabled": True,
                "allowed_tools": self.allowed_tools,
            }
        return definition


class AgentInstance:
    """Mutable runtime state of one agent node.

    Owns the prompt fragments, the tool registry, the message history and
    the mounted sub-agents. While the attached engine is running, structural
    changes are queued in ``pending_updates`` and applied by the engine at
    the next turn boundary.
    """

    def __init__(self, settings: AgentSettings | None = None, parent: AgentInstance | None = None):
        self.settings = settings or AgentSettings()
        self.parent = parent
        self.system_parts: list[Fragment] = []
        self.context_parts: list[Fragment] = []
        self.tools = ToolRegistry()
        self.native_tools: dict[str, NativeTool] = {}
        self.mcp_servers: dict[str, McpServer] = {}
        self.messages: list[Message] = []
        self.children: dict[str, SubagentInstance] = {}
        self.pending_updates = PendingUpdatesQueue()
        self.engine: ExecutionEngine | None = None

    @property
    def name(self) -> str:
        return self.settings.name or "agent"

    @property
    def is_running(self) -> bool:
        return self.engine is not None and self.engine.status == ExecutionStatus.RUNNING

    def delegation_chain(self) -> list[str]:
        """Explicit names from the root agent down to this one."""
        chain: list[str] = []
        node: AgentInstance | None = self
        while node is not None:
            if node.settings.name:
                chain.append(node.settings.name)
            node = node.parent
        return chain[::-1]

    def submit(self, update: PendingUpdate) -> None:
        """Apply an update now, or queue it if a turn is in flight."""
        if self.is_running:
            logger.debug("Queueing %s on running agent %s", type(update).__name__, self.name)
            self.pending_updates.push(update)
        else:
            self.apply(update)

    def drain_pending_updates(self) -> list[PendingUpdate]:
        """Apply every queued update in enqueue order.

        Returns:
            The updates that were applied
        """
        updates = self.pending_updates.drain()
        for update in updates:
            self.apply(update)
        return updates

    def apply(self, update: PendingUpdate) -> None:
        logger.debug("Applying %s to agent %s", type(update).__name__, self.name)
        match update:
            case ToolAdded(tool=tool):
                self.tools.put(tool)
            case ToolRemoved(name=name):
                self.tools.remove(name)
            case NativeToolAdded(tool=tool):
                self.native_tools[tool.name] = tool
            case NativeToolRemoved(name=name):
                self.native_tools.pop(name, None)
            case AgentMounted(subagent=subagent):
                existing = self.children.get(subagent.name)
                if existing is not None and existing is not subagent:
                    existing.dispose()
                self.children[subagent.name] = subagent
                self.tools.put(subagent.tool)
            case AgentUnmounted(name=name):
                subagent = self.children.pop(name, None)
                if subagent is not None:
                    if self.tools.get(name) is subagent.tool:
                        self.tools.remove(name)
                    subagent.dispose()
            case McpServerAdded(server=server):
                self.mcp_servers[server.name] = server
            case McpServerRemoved(name=name):
                self.mcp_servers.pop(name, None)
            case FragmentsReplaced(system=system, context=context):
                self.system_parts = list(system)
                self.context_parts = list(context)
            case SettingsChanged(settings=settings):
                self.settings = settings
            case MessageAdded(message=message):
                self.messages.append(message)
            case MessageReplaced(old=old, new=new):
                for index, existing_message in enumerate(self.messages):
                    if existing_message is old:
                        self.messages[index] = new
                        break
            case MessageRemoved(message=message):
                self.messages[:] = [m for m in self.messages if m is not message]
            case _:
                raise TypeError(f"Unknown pending update: {update!r}")

    def system_prompt(self) -> str | None:
        return compose_system_prompt(self.system_parts, self.context_parts)

    def api_tools(self) -> list[dict[str, Any]]:
        """Custom tools, native tools and one toolset per MCP server."""
        api_tools = self.tools.to_api_format()
        api_tools.extend(tool.to_api_format() for tool in self.native_tools.values())
        api_tools.extend(
            {"type": "mcp_toolset", "mcp_server_name": name} for name in self.mcp_servers
        )
        return api_tools

    def api_mcp_servers(self) -> list[dict[str, Any]]:
        return [server.to_api_format() for server in self.mcp_servers.values()]

    def betas(self) -> list[str]:
        return [MCP_BETA] if self.mcp_servers else []


class SubagentInstance:
    """A nested agent node, held unexpanded until its tool is invoked.

    The first invocation realizes ``handle`` from ``node``; later
    invocations reuse it, so the sub-agent's history persists for the
    parent's lifetime.
    """

    def __init__(
        self,
        name: str,
        node: Node,
        parent: AgentInstance,
        description: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.name = name
        self.node = node
        self.parent = parent
        self.description = description
        self.context = dict(context or {})
        self.handle: SubagentHandle | None = None
        self.tool = build_subagent_tool(self)

    @property
    def instance(self) -> AgentInstance | None:
        return self.handle.instance if self.handle is not None else None

    @property
    def realized(self) -> bool:
        return self.handle is not None

    def update(self, node: Node, description: str | None) -> bool:
        """Point at a newer version of the subtree.

        Returns:
            True if the description changed and the tool was rebuilt
        """
        self.node = node
        if self.handle is not None:
            self.handle.update(node)
        if description == self.description:
            return False
        self.description = description
        self.tool = build_subagent_tool(self)
        return True

    def dispose(self) -> None:
        """Abort a live run and release the realized instance."""
        if self.handle is not None:
            self.handle.abort()
            self.handle.close()
            self.handle = None
