"""Explicit state for component nodes."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from agentree.execution.state import ExecutionStatus
    from agentree.instances.types import AgentInstance
    from agentree.llm.client import Message

T = TypeVar("T")


class StateCell(Generic[T]):
    """A value owned by a mounted component.

    Setting a different value schedules a re-render of the tree the
    component belongs to. Handlers may keep a reference to the cell and read
    ``value`` later; they always see the latest value.
    """

    def __init__(self, value: T, on_change: Callable[[], None]):
        self._value = value
        self._on_change = on_change

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value is self._value or value == self._value:
            return
        self._value = value
        self._on_change()

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def __repr__(self) -> str:
        return f"StateCell({self._value!r})"


class Scope:
    """Passed as the first argument to every component function."""

    def __init__(
        self,
        schedule: Callable[[], None],
        instance: AgentInstance,
        context: Mapping[str, Any],
    ):
        self._schedule = schedule
        self._cells: dict[str, StateCell[Any]] = {}
        self.instance = instance
        self.context: Mapping[str, Any] = context

    def state(self, name: str, initial: T | Callable[[], T]) -> StateCell[T]:
        """Return the cell called ``name``, creating it on first use.

        ``initial`` may be a zero-argument callable, invoked only once.
        """
        cell = self._cells.get(name)
        if cell is None:
            value = initial() if callable(initial) else initial
            cell = StateCell(value, self._schedule)
            self._cells[name] = cell
        return cell

    @property
    def messages(self) -> list[Message]:
        """The owning agent's history (read-only view)."""
        return list(self.instance.messages)

    @property
    def status(self) -> ExecutionStatus | None:
        engine = self.instance.engine
        return engine.status if engine is not None else None

    def request_render(self) -> None:
        self._schedule()
