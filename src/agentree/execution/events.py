"""Engine events and a small observer registry."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from agentree.llm.client import Message, Usage

logger = logging.getLogger(__name__)

EventName = Literal["state_change", "stream", "message", "step_finish", "complete", "error"]
Listener = Callable[..., Any]


@dataclass
class TextEvent:
    text: str
    accumulated: str
    type: str = "text"


@dataclass
class ThinkingEvent:
    text: str
    type: str = "thinking"


@dataclass
class ToolUseStartEvent:
    tool_name: str
    tool_id: str
    type: str = "tool_use_start"


@dataclass
class ToolInputEvent:
    tool_id: str
    partial_json: str
    type: str = "tool_input"


@dataclass
class ToolResultEvent:
    tool_id: str
    tool_name: str
    result: str
    is_error: bool
    type: str = "tool_result"


@dataclass
class MessageCompleteEvent:
    stop_reason: str | None
    type: str = "message_complete"


StreamEvent = Union[
    TextEvent,
    ThinkingEvent,
    ToolUseStartEvent,
    ToolInputEvent,
    ToolResultEvent,
    MessageCompleteEvent,
]


@dataclass
class StepToolCall:
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class StepToolResult:
    tool_call_id: str
    tool_name: str
    result: str
    is_error: bool
    execution_time: float | None = None


@dataclass
class StepFinish:
    """Summary of one provider turn."""

    step_number: int
    finish_reason: str | None
    text: str
    thinking: str | None
    tool_calls: list[StepToolCall] = field(default_factory=list)
    tool_results: list[StepToolResult] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    messages: list[Message] = field(default_factory=list)


class EventEmitter:
    """Named-event observer registry.

    Listeners may be plain functions or coroutine functions; coroutines are
    scheduled on the running loop. A failing listener is logged and never
    interrupts the emitter or the other listeners.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: EventName, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener
        """
        self._listeners[event].append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: EventName, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def listener_count(self, event: EventName) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: EventName, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(*args)
            except Exception:
                logger.exception("Listener error for %s", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async listener failed", exc_info=task.exception())
