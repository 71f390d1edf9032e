"""Cooperative cancellation shared between handles, engines and tools."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class AbortSignal:
    """Read side of an AbortController.

    Listeners run synchronously, once, when the signal is aborted. A listener
    added after the abort runs immediately.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._listeners: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def add_listener(self, listener: Callable[[], None]) -> None:
        if self.aborted:
            listener()
            return
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait(self) -> None:
        await self._event.wait()

    def _trigger(self, reason: str | None) -> None:
        if self.aborted:
            return
        self.reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Abort listener failed")


class AbortController:
    """Owner of an AbortSignal."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: str | None = None) -> None:
        self.signal._trigger(reason)

    def follow(self, parent: AbortSignal) -> Callable[[], None]:
        """Abort this controller when ``parent`` aborts.

        Returns:
            A callable that detaches from ``parent``
        """

        def listener() -> None:
            self.abort(parent.reason)

        parent.add_listener(listener)
        return lambda: parent.remove_listener(listener)
