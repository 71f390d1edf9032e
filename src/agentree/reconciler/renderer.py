"""Owner of one reconciler and the tree it renders."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from agentree.reconciler.reconciler import Reconciler

if TYPE_CHECKING:
    from agentree.instances.types import AgentInstance
    from agentree.llm.client import Message
    from agentree.reconciler.conditions import PredicateResolver
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)


class Renderer:
    """Renders a tree into an instance and coalesces re-render requests.

    State changes call ``schedule()``; any number of calls before the event
    loop gets a chance to run collapse into a single render.
    """

    def __init__(self, instance: AgentInstance, context: Mapping[str, Any] | None = None):
        self.instance = instance
        self.context: dict[str, Any] = dict(context or {})
        self.reconciler = Reconciler(instance, self.schedule, self.context)
        self.tree: Node | None = None
        self.render_count = 0
        self._scheduled: asyncio.Handle | None = None
        self._error: Exception | None = None
        self._disposed = False

    def render(self, tree: Node | None = None) -> None:
        """Render ``tree`` (or re-render the current tree) synchronously."""
        if tree is not None:
            self.tree = tree
        if self.tree is None or self._disposed:
            return
        self._cancel_scheduled()
        self.reconciler.render(self.tree)
        self.render_count += 1
        logger.debug("Rendered %s (pass %d)", self.instance.name, self.render_count)

    def schedule(self) -> None:
        """Request a re-render on the next loop iteration."""
        if self._scheduled is not None or self._disposed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.render()
            return
        self._scheduled = loop.call_soon(self.flush)

    def flush(self) -> None:
        """Run a scheduled re-render now, if one is pending.

        Runs as an event loop callback, so a failure is kept for
        ``raise_error()`` instead of propagating into the loop.
        """
        if self._scheduled is None:
            return
        try:
            self.render()
        except Exception as e:
            logger.error("Re-render of %s failed: %s", self.instance.name, e)
            self._error = e

    def raise_error(self) -> None:
        """Re-raise the failure of the last scheduled re-render, if any."""
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    async def settle(self) -> None:
        """Let queued state changes land, then flush any pending re-render.

        Raises:
            Exception: Whatever a scheduled re-render raised
        """
        await asyncio.sleep(0)
        self.flush()
        self.raise_error()

    def has_natural_language_conditions(self) -> bool:
        return bool(self.reconciler.natural_language_predicates)

    async def resolve_conditions(
        self,
        resolver: PredicateResolver,
        messages: Sequence[Message],
        model: str | None,
    ) -> None:
        """Evaluate natural-language predicates and re-render if any flipped."""
        predicates = list(self.reconciler.natural_language_predicates)
        if not predicates:
            return
        results = await resolver.resolve(predicates, messages, model)
        if self.reconciler.set_predicate_results(dict(zip(predicates, results))):
            logger.debug("Natural-language conditions changed for %s", self.instance.name)
            self.render()

    def dispose(self) -> None:
        self._cancel_scheduled()
        self._disposed = True
        self.reconciler.unmount()

    def _cancel_scheduled(self) -> None:
        if self._scheduled is not None:
            self._scheduled.cancel()
            self._scheduled = None
