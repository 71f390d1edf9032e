"""Turn-loop state machine driving one agent instance."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from agentree.errors import AgentBusyError, ConfigurationError, ExecutionAborted, ProviderError
from agentree.execution.abort import AbortController, AbortSignal
from agentree.execution.compaction import compact_history, should_compact
from agentree.execution.events import (
    EventEmitter,
    MessageCompleteEvent,
    StepFinish,
    StepToolCall,
    StepToolResult,
    TextEvent,
    ThinkingEvent,
    ToolInputEvent,
    ToolResultEvent,
    ToolUseStartEvent,
)
from agentree.execution.state import ExecutionStatus, TurnPhase
from agentree.llm.client import (
    LLMProvider,
    Message,
    MessageComplete,
    ProviderMessage,
    ProviderRequest,
    ReasoningDelta,
    TextDelta,
    ToolCallDelta,
    ToolCallStart,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    extract_text,
    extract_thinking,
    extract_tool_uses,
)
from agentree.tools.base import ToolContext, execute_tool

if TYPE_CHECKING:
    from agentree.instances.types import AgentInstance, AgentSettings
    from agentree.reconciler.conditions import PredicateResolver
    from agentree.reconciler.renderer import Renderer
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_MAX_ITERATIONS = 20

T = TypeVar("T")


def aborted_results(tool_uses: list[ToolUseBlock]) -> list[ToolResultBlock]:
    """Error results closing out tool calls that an abort cut short."""
    return [
        ToolResultBlock(tool_use_id=use.id, content="Tool execution aborted", is_error=True)
        for use in tool_uses
    ]


@dataclass
class AgentResult:
    """Outcome of a completed run."""

    content: str
    messages: list[Message] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_reason: str | None = None
    thinking: str | None = None


class ExecutionEngine(EventEmitter):
    """Calls the provider, runs tools and applies queued updates between turns.

    The engine reads the instance's settings, fragments and tools afresh at
    the start of every turn, so updates drained after a tool round are
    visible to the next provider call but never to the one in flight.
    """

    def __init__(
        self,
        instance: AgentInstance,
        provider: LLMProvider,
        renderer: Renderer | None = None,
        predicate_resolver: PredicateResolver | None = None,
        parent_signal: AbortSignal | None = None,
        defaults: AgentSettings | None = None,
    ):
        """Initialize the engine and attach it to ``instance``.

        Args:
            instance: Runtime instance to drive
            provider: Model provider
            renderer: Renderer owning the instance's tree, settled after tools run
            predicate_resolver: Resolves natural-language conditions each turn
            parent_signal: Abort signal of an enclosing run
            defaults: Settings used where the instance leaves a value unset
        """
        super().__init__()
        self.instance = instance
        self.provider = provider
        self.renderer = renderer
        self.predicate_resolver = predicate_resolver
        self.parent_signal = parent_signal
        self.defaults = defaults
        self.status = ExecutionStatus.IDLE
        self.phase: TurnPhase | None = None
        self.iteration = 0
        self.last_message: ProviderMessage | None = None
        self._controller: AbortController | None = None
        self._stream_override: bool | None = None
        instance.engine = self

    def _setting(self, name: str, fallback: Any = None) -> Any:
        value = getattr(self.instance.settings, name)
        if value is None and self.defaults is not None:
            value = getattr(self.defaults, name)
        return fallback if value is None else value

    def _set_status(self, status: ExecutionStatus) -> None:
        if status == self.status:
            return
        logger.debug("Agent %s: %s -> %s", self.instance.name, self.status.value, status.value)
        self.status = status
        self.emit("state_change", status)

    def _callback(self, name: str, *args: Any) -> None:
        callback = getattr(self.instance.settings, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("%s callback failed for agent %s", name, self.instance.name)

    @property
    def signal(self) -> AbortSignal | None:
        """Abort signal of the current run, if one is in progress."""
        return self._controller.signal if self._controller is not None else None

    def abort(self) -> None:
        """Cancel the current run. A no-op when nothing is running."""
        if self._controller is not None:
            logger.debug("Aborting agent %s", self.instance.name)
            self._controller.abort("aborted")

    async def run(self, stream: bool | None = None) -> AgentResult:
        """Run turns until the model stops, the iteration ceiling is hit or an abort.

        Args:
            stream: Force streaming on or off for this run; None uses the settings

        Returns:
            The final result

        Raises:
            AgentBusyError: If a run is already in progress
            ConfigurationError: If no model is configured
            ExecutionAborted: If the run was aborted
            ProviderError: If the provider failed
        """
        if self.status == ExecutionStatus.RUNNING:
            raise AgentBusyError(f"Agent '{self.instance.name}' is already running")
        if not self._setting("model"):
            raise ConfigurationError(f"Agent '{self.instance.name}' has no model configured")

        self._controller = AbortController()
        self._stream_override = stream
        detach = self._controller.follow(self.parent_signal) if self.parent_signal else None
        self.iteration = 0
        self.last_message = None
        usage = Usage()
        tool_uses: list[ToolUseBlock] = []
        self._set_status(ExecutionStatus.RUNNING)

        try:
            max_iterations = self._setting("max_iterations", DEFAULT_MAX_ITERATIONS)
            while True:
                if self._controller.signal.aborted:
                    raise ExecutionAborted("Execution aborted")
                self.iteration += 1
                self.phase = TurnPhase.REQUESTING

                if self.renderer is not None:
                    self.renderer.raise_error()
                await self._resolve_conditions()
                self._drain()

                message = await self._race(self._call_provider(self._build_request()))
                self.last_message = message
                usage = usage + message.usage
                self.instance.messages.append(
                    Message(role="assistant", content=list(message.content))
                )
                self.emit("message", message)
                self._callback("on_message", message)

                tool_uses = extract_tool_uses(message)
                if message.stop_reason != "tool_use" or not tool_uses:
                    self._finish_step(message, [], [], {})
                    break

                self.phase = TurnPhase.EXECUTING_TOOLS
                timings: dict[str, float] = {}
                results = await self._race(self._execute_tools(tool_uses, timings))
                self.instance.messages.append(Message(role="user", content=list(results)))

                self.phase = TurnPhase.DRAINING
                if self.renderer is not None:
                    await self.renderer.settle()
                self._drain()
                await self._maybe_compact()

                self._finish_step(message, tool_uses, results, timings)
                if self.iteration >= max_iterations:
                    logger.debug(
                        "Agent %s reached max_iterations=%d", self.instance.name, max_iterations
                    )
                    break

            result = AgentResult(
                content=extract_text(message),
                messages=list(self.instance.messages),
                usage=usage,
                stop_reason=message.stop_reason,
                thinking=extract_thinking(message),
            )
        except (ExecutionAborted, asyncio.CancelledError):
            if self.phase is TurnPhase.EXECUTING_TOOLS:
                self.instance.messages.append(
                    Message(role="user", content=aborted_results(tool_uses))
                )
            self._set_status(ExecutionStatus.ABORTED)
            raise
        except Exception as e:
            self._set_status(ExecutionStatus.ERRORED)
            self.emit("error", e)
            self._callback("on_error", e)
            raise
        finally:
            self.phase = None
            if detach is not None:
                detach()
            self._controller = None

        self._set_status(ExecutionStatus.COMPLETED)
        self.emit("complete", result)
        self._callback("on_complete", result)
        return result

    async def _race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the run is aborted first."""
        assert self._controller is not None
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._controller.signal.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise ExecutionAborted("Execution aborted")

    async def _resolve_conditions(self) -> None:
        if self.renderer is None or self.predicate_resolver is None:
            return
        if not self.renderer.has_natural_language_conditions():
            return
        await self._race(
            self.renderer.resolve_conditions(
                self.predicate_resolver,
                list(self.instance.messages),
                model=self._setting("model"),
            )
        )

    def _drain(self) -> None:
        if self.instance.pending_updates:
            applied = self.instance.drain_pending_updates()
            logger.debug("Agent %s applied %d pending updates", self.instance.name, len(applied))

    def _build_request(self) -> ProviderRequest:
        instance = self.instance
        request = ProviderRequest(
            model=self._setting("model"),
            max_tokens=self._setting("max_tokens", DEFAULT_MAX_TOKENS),
            messages=list(instance.messages),
            system=instance.system_prompt(),
            tools=instance.api_tools(),
            mcp_servers=instance.api_mcp_servers(),
            stop_sequences=self._setting("stop_sequences"),
            temperature=self._setting("temperature"),
            thinking_budget=self._setting("thinking_budget"),
            betas=instance.betas(),
        )
        logger.debug(
            "Request #%d for %s: model=%s tools=%s messages=%d",
            self.iteration,
            instance.name,
            request.model,
            [tool.get("name", tool.get("type")) for tool in request.tools],
            len(request.messages),
        )
        return request

    async def _call_provider(self, request: ProviderRequest) -> ProviderMessage:
        stream = self._stream_override
        if stream is None:
            stream = self._setting("stream", False)
        if not stream:
            message = await self.provider.create_message(request)
        else:
            message = await self._stream_provider(request)
        logger.debug(
            "Response #%d for %s: stop_reason=%s tool_uses=%s",
            self.iteration,
            self.instance.name,
            message.stop_reason,
            [block.name for block in extract_tool_uses(message)],
        )
        return message

    async def _stream_provider(self, request: ProviderRequest) -> ProviderMessage:
        accumulated = ""
        final: ProviderMessage | None = None
        async for event in self.provider.stream_message(request):
            match event:
                case TextDelta(text=text):
                    accumulated += text
                    self.emit("stream", TextEvent(text=text, accumulated=accumulated))
                case ReasoningDelta(text=text):
                    self.emit("stream", ThinkingEvent(text=text))
                case ToolCallStart(id=tool_id, name=name):
                    self.emit("stream", ToolUseStartEvent(tool_name=name, tool_id=tool_id))
                case ToolCallDelta(id=tool_id, partial_json=partial):
                    self.emit("stream", ToolInputEvent(tool_id=tool_id, partial_json=partial))
                case MessageComplete(message=message):
                    final = message
        if final is None:
            raise ProviderError("Stream ended without a final message")
        self.emit("stream", MessageCompleteEvent(stop_reason=final.stop_reason))
        return final

    def _tool_context(self) -> ToolContext:
        assert self._controller is not None
        return ToolContext(
            provider=self.provider,
            signal=self._controller.signal,
            agent_name=self.instance.name,
            model=self._setting("model"),
            run_agent=self.run_agent,
        )

    async def run_agent(self, node: Node, **overrides: Any) -> AgentResult:
        """Spawn an ad-hoc agent under this run's abort signal and run it."""
        from agentree.handles.subagent import spawn_agent

        return await spawn_agent(
            node,
            parent=self.instance,
            provider=self.provider,
            signal=self.signal,
            context=self.renderer.context if self.renderer is not None else None,
            **overrides,
        )

    async def _execute_tools(
        self, tool_uses: list[ToolUseBlock], timings: dict[str, float]
    ) -> list[ToolResultBlock]:
        ctx = self._tool_context()
        return list(
            await asyncio.gather(
                *(self._execute_one(tool_use, ctx, timings) for tool_use in tool_uses)
            )
        )

    async def _execute_one(
        self, tool_use: ToolUseBlock, ctx: ToolContext, timings: dict[str, float]
    ) -> ToolResultBlock:
        started = time.perf_counter()
        tool = self.instance.tools.get(tool_use.name)
        if tool is not None:
            logger.debug("Executing tool %s", tool_use.name)
            result = await execute_tool(tool, tool_use, ctx)
        elif tool_use.name in self.instance.native_tools:
            result = ToolResultBlock(
                tool_use_id=tool_use.id,
                content=(
                    f"Tool '{tool_use.name}' is a server-side tool and cannot be executed locally"
                ),
                is_error=True,
            )
        else:
            result = ToolResultBlock(
                tool_use_id=tool_use.id,
                content=f"Error: Tool '{tool_use.name}' not found",
                is_error=True,
            )
        timings[tool_use.id] = time.perf_counter() - started
        self.emit(
            "stream",
            ToolResultEvent(
                tool_id=tool_use.id,
                tool_name=tool_use.name,
                result=result.content,
                is_error=result.is_error,
            ),
        )
        return result

    async def _maybe_compact(self) -> None:
        control = self._setting("compaction")
        if not should_compact(control, self.last_message):
            return
        replacement = await self._race(
            compact_history(
                self.provider,
                control,
                list(self.instance.messages),
                model=self._setting("model"),
                max_tokens=self._setting("max_tokens", DEFAULT_MAX_TOKENS),
            )
        )
        if replacement is not None:
            self.instance.messages[:] = replacement

    def _finish_step(
        self,
        message: ProviderMessage,
        tool_uses: list[ToolUseBlock],
        results: list[ToolResultBlock],
        timings: dict[str, float],
    ) -> None:
        names = {tool_use.id: tool_use.name for tool_use in tool_uses}
        step = StepFinish(
            step_number=self.iteration,
            finish_reason=message.stop_reason,
            text=extract_text(message),
            thinking=extract_thinking(message),
            tool_calls=[
                StepToolCall(id=tool_use.id, name=tool_use.name, input=tool_use.input)
                for tool_use in tool_uses
            ],
            tool_results=[
                StepToolResult(
                    tool_call_id=result.tool_use_id,
                    tool_name=names.get(result.tool_use_id, "unknown"),
                    result=result.content,
                    is_error=result.is_error,
                    execution_time=timings.get(result.tool_use_id),
                )
                for result in results
            ],
            usage=message.usage,
            messages=list(self.instance.messages),
        )
        self.emit("step_finish", step)
        self._callback("on_step_finish", step)
