"""Provider and observer interfaces shared by the event producers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Protocol

from loguru import logger

from claude_terminal.bus.events import EventSource

if TYPE_CHECKING:
    from claude_terminal.engine.state import StatusChange
    from claude_terminal.terminal.session import Session


class SessionObserver(Protocol):
    """Explicit subscriber interface for session lifecycle and state."""

    def on_status_change(self, session: "Session", change: "StatusChange") -> None:
        """Engine status or substatus changed."""

    def on_prompt_submit(self, session: "Session", text: Optional[str]) -> None:
        """Enter pressed in a Claude session."""

    def on_session_close(self, session: "Session", exit_code: Optional[int]) -> None:
        """Session left the registry (child exit or explicit close)."""


class BaseSessionObserver:
    """No-op ``SessionObserver`` to subclass."""

    def on_status_change(self, session: "Session", change: "StatusChange") -> None:
        del session, change

    def on_prompt_submit(self, session: "Session", text: Optional[str]) -> None:
        del session, text

    def on_session_close(self, session: "Session", exit_code: Optional[int]) -> None:
        del session, exit_code


class EventProvider(ABC):
    """A producer of normalized envelopes that can be switched on and off."""

    source: EventSource

    def __init__(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._on_start()
        logger.info(f"[{self.source.value}] Provider started")

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._on_stop()
        logger.info(f"[{self.source.value}] Provider stopped")

    @abstractmethod
    def _on_start(self) -> None:
        """Wire the provider to its input feed."""

    @abstractmethod
    def _on_stop(self) -> None:
        """Unwire the provider and drop per-session state."""
