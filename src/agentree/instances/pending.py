"""Structural updates deferred until a turn boundary."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from agentree.instances.fragments import Fragment
    from agentree.instances.types import AgentSettings, McpServer, SubagentInstance
    from agentree.llm.client import Message
    from agentree.tools.base import NativeTool, Tool


@dataclass(frozen=True)
class ToolAdded:
    tool: Tool


@dataclass(frozen=True)
class ToolRemoved:
    name: str


@dataclass(frozen=True)
class NativeToolAdded:
    tool: NativeTool


@dataclass(frozen=True)
class NativeToolRemoved:
    name: str


@dataclass(frozen=True)
class AgentMounted:
    subagent: SubagentInstance


@dataclass(frozen=True)
class AgentUnmounted:
    name: str


@dataclass(frozen=True)
class McpServerAdded:
    server: McpServer


@dataclass(frozen=True)
class McpServerRemoved:
    name: str


@dataclass(frozen=True)
class FragmentsReplaced:
    system: tuple[Fragment, ...]
    context: tuple[Fragment, ...]


@dataclass(frozen=True)
class SettingsChanged:
    settings: AgentSettings


@dataclass(frozen=True)
class MessageAdded:
    message: Message


@dataclass(frozen=True)
class MessageReplaced:
    old: Message
    new: Message


@dataclass(frozen=True)
class MessageRemoved:
    message: Message


PendingUpdate = Union[
    ToolAdded,
    ToolRemoved,
    NativeToolAdded,
    NativeToolRemoved,
    AgentMounted,
    AgentUnmounted,
    McpServerAdded,
    McpServerRemoved,
    FragmentsReplaced,
    SettingsChanged,
    MessageAdded,
    MessageReplaced,
    MessageRemoved,
]


def _slot(update: PendingUpdate) -> tuple[str, object]:
    """Return the (family, identity) an update targets.

    An addition and a removal of the same thing share a slot, so the later
    one replaces the earlier entry. Messages are identified by object.
    """
    match update:
        case ToolAdded(tool=tool):
            return ("tool", tool.name)
        case ToolRemoved(name=name):
            return ("tool", name)
        case NativeToolAdded(tool=tool):
            return ("native", tool.name)
        case NativeToolRemoved(name=name):
            return ("native", name)
        case AgentMounted(subagent=subagent):
            return ("agent", subagent.name)
        case AgentUnmounted(name=name):
            return ("agent", name)
        case McpServerAdded(server=server):
            return ("mcp", server.name)
        case McpServerRemoved(name=name):
            return ("mcp", name)
        case FragmentsReplaced():
            return ("fragments", None)
        case SettingsChanged():
            return ("settings", None)
        case MessageAdded(message=message) | MessageRemoved(message=message):
            return ("message", id(message))
        case MessageReplaced(old=old):
            return ("message-replace", id(old))
    raise TypeError(f"Unknown pending update: {update!r}")


class PendingUpdatesQueue:
    """FIFO queue of pending updates with per-slot deduplication.

    Adding a tool cancels a queued removal of that tool and vice versa. The
    net effect of draining is the same as applying every update in order.
    """

    def __init__(self) -> None:
        self._updates: dict[tuple[str, object], PendingUpdate] = {}

    def push(self, update: PendingUpdate) -> None:
        slot = _slot(update)
        previous = self._updates.pop(slot, None)
        if isinstance(update, MessageRemoved) and isinstance(previous, MessageAdded):
            # never applied, nothing to remove
            return
        self._updates[slot] = update

    def drain(self) -> list[PendingUpdate]:
        """Remove and return every queued update in enqueue order."""
        updates = list(self._updates.values())
        self._updates.clear()
        return updates

    def clear(self) -> None:
        self._updates.clear()

    def __iter__(self) -> Iterator[PendingUpdate]:
        return iter(list(self._updates.values()))

    def __len__(self) -> int:
        return len(self._updates)

    def __bool__(self) -> bool:
        return bool(self._updates)
