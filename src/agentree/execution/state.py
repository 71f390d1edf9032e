"""Execution status of an engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.ABORTED, ExecutionStatus.COMPLETED, ExecutionStatus.ERRORED)


class TurnPhase(str, Enum):
    """Where a running engine is inside the current turn."""

    REQUESTING = "requesting"
    EXECUTING_TOOLS = "executing_tools"
    DRAINING = "draining"
