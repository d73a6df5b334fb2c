"""Timer and hand-off primitives shared by every component.

Everything except PTY I/O runs on one logical thread. Components never
sleep; they ask a ``Scheduler`` to call them back later, and PTY threads
use ``call_soon_threadsafe`` to hand chunks over to that thread.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional, Protocol

from loguru import logger


class TimerHandle(Protocol):
    """Cancellable pending callback."""

    def cancel(self) -> None:
        """Prevent the callback from running."""


class Scheduler(Protocol):
    """Clock plus deferred execution on the core thread."""

    def now(self) -> float:
        """Current wall-clock time in seconds."""

    def call_later(self, delay_s: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` after ``delay_s`` seconds."""

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)`` from any thread."""


class LoopScheduler:
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_event_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def now(self) -> float:
        return time.time()

    def call_later(self, delay_s: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        return self._loop.call_later(max(0.0, delay_s), callback, *args)

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._loop.is_closed():
            logger.debug(f"[scheduler] Loop closed, dropping {getattr(callback, '__name__', callback)}")
            return
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop closed between the check and the call during shutdown.
            logger.debug("[scheduler] Loop closed during hand-off")


def cancel_timer(handle: Optional[TimerHandle]) -> None:
    """Cancel ``handle`` when set."""
    if handle is not None:
        handle.cancel()
