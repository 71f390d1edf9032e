"""Caller-facing control surface for a rendered agent."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from typing import TYPE_CHECKING, Any

from agentree.errors import AgentBusyError, AgentreeError
from agentree.execution.engine import AgentResult, ExecutionEngine
from agentree.execution.events import EventName, StreamEvent
from agentree.execution.state import ExecutionStatus
from agentree.instances.types import AgentInstance, AgentSettings
from agentree.llm.client import Message
from agentree.reconciler.renderer import Renderer

if TYPE_CHECKING:
    from agentree.execution.abort import AbortSignal
    from agentree.llm.client import LLMProvider
    from agentree.reconciler.conditions import PredicateResolver
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)


class AgentHandle:
    """Renders a tree once and drives it through run/send/stream.

    The handle keeps its instance (and therefore the conversation) between
    calls, so ``send_message`` continues where the last run stopped.
    """

    def __init__(
        self,
        tree: Node,
        provider: LLMProvider,
        predicate_resolver: PredicateResolver | None = None,
        defaults: AgentSettings | None = None,
        context: Mapping[str, Any] | None = None,
        parent: AgentInstance | None = None,
    ):
        """Render ``tree`` and attach an engine.

        Args:
            tree: Agent node, or a component rendering one
            provider: Model provider
            predicate_resolver: Resolves natural-language conditions
            defaults: Settings used where the tree leaves values unset
            context: Values exposed to components as ``scope.context``
            parent: Instance this agent is nested under

        Raises:
            ConfigurationError: If the tree is malformed
        """
        self.provider = provider
        self.instance = AgentInstance(parent=parent)
        self.renderer = Renderer(self.instance, context)
        self.engine = ExecutionEngine(
            self.instance,
            provider,
            renderer=self.renderer,
            predicate_resolver=predicate_resolver,
            defaults=defaults,
        )
        self._closed = False
        self.renderer.render(tree)

    @property
    def status(self) -> ExecutionStatus:
        return self.engine.status

    @property
    def is_running(self) -> bool:
        return self.engine.status == ExecutionStatus.RUNNING

    @property
    def messages(self) -> list[Message]:
        return list(self.instance.messages)

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: EventName, listener: Callable[..., Any]) -> Callable[[], None]:
        """Subscribe to an engine event. Returns a function that unsubscribes."""
        return self.engine.on(event, listener)

    def off(self, event: EventName, listener: Callable[..., Any]) -> None:
        self.engine.off(event, listener)

    def _check_open(self) -> None:
        if self._closed:
            raise AgentreeError("Agent handle is closed")

    def _check_idle(self) -> None:
        self._check_open()
        if self.is_running:
            raise AgentBusyError(
                "Agent is already running. "
                "Wait for the current run to finish or call abort() first."
            )

    def before_run(self) -> None:
        """Hook for validation right before the engine starts."""

    async def run(
        self,
        first_message: str | None = None,
        stream: bool | None = None,
        signal: AbortSignal | None = None,
    ) -> AgentResult:
        """Run the agent until it stops.

        Args:
            first_message: Optional user message appended before running
            stream: Force provider streaming on or off for this run
            signal: Abort signal of an enclosing run

        Returns:
            The final result

        Raises:
            AgentBusyError: If the agent is already running
            ConfigurationError: If the agent is misconfigured
            ExecutionAborted: If the run was aborted
        """
        self._check_idle()
        if first_message:
            self.instance.messages.append(Message(role="user", content=first_message))
        self.before_run()
        self.engine.parent_signal = signal
        return await self.engine.run(stream=stream)

    async def send_message(self, text: str) -> AgentResult:
        """Append a user message and run."""
        self._check_idle()
        return await self.run(text)

    def stream(self, text: str | None = None) -> AgentStream:
        """Run with provider streaming, yielding engine stream events.

        The result is available as ``.result`` once iteration finishes::

            stream = handle.stream("Hello")
            async for event in stream:
                ...
            print(stream.result.content)
        """
        self._check_idle()
        return AgentStream(self, text)

    def update(self, tree: Node) -> None:
        """Re-render with a new tree. Changes wait for a turn boundary while running."""
        self._check_open()
        self.renderer.render(tree)

    def abort(self) -> None:
        """Abort the current run, if any."""
        self.engine.abort()

    def close(self) -> None:
        """Abort, release sub-agents and detach listeners. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.engine.abort()
        self.renderer.dispose()
        self.engine.remove_all_listeners()
        logger.debug("Closed agent %s", self.instance.name)


_DONE = object()


class AgentStream:
    """Async iterator over the stream events of one run."""

    def __init__(self, handle: AgentHandle, text: str | None):
        self._handle = handle
        self._text = text
        self._started = False
        self.result: AgentResult | None = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._started:
            raise AgentreeError("A stream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        queue: asyncio.Queue[Any] = asyncio.Queue()
        unsubscribe = self._handle.on("stream", queue.put_nowait)
        task = asyncio.ensure_future(self._handle.run(self._text, stream=True))
        task.add_done_callback(lambda _: queue.put_nowait(_DONE))
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
            self.result = task.result()
        finally:
            unsubscribe()
            if not task.done():
                self._handle.abort()
                await asyncio.gather(task, return_exceptions=True)
