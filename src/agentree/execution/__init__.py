"""Turn loop that drives a rendered agent against a model provider.

Each turn drains pending tree updates, calls the provider, runs the
requested tools concurrently and appends the results, until the model
stops asking for tools or the iteration ceiling is reached.
"""

from agentree.execution.abort import AbortController, AbortSignal
from agentree.execution.compaction import CompactionControl
from agentree.execution.engine import AgentResult, ExecutionEngine
from agentree.execution.events import EventEmitter, StepFinish, StreamEvent
from agentree.execution.state import ExecutionStatus

__all__ = [
    "AbortController",
    "AbortSignal",
    "AgentResult",
    "CompactionControl",
    "EventEmitter",
    "ExecutionEngine",
    "ExecutionStatus",
    "StepFinish",
    "StreamEvent",
]
