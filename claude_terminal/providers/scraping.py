"""Scraping provider: derive envelopes from PTY titles and screen contents.

Used when the CLI's hooks are not installed. It only knows what the
state engine can infer, so it never emits ``tool:*`` or
``claude:permission`` envelopes:

    first working observation  -> session:start (synthetic)
    every working transition   -> claude:working
    every declared ready       -> claude:done
    Enter in an active session -> prompt:submit
    child exit                 -> session:end{reason: exit}
"""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from claude_terminal.bus.events import (
    ClaudeDone,
    ClaudeWorking,
    EventPayload,
    EventSource,
    PromptSubmit,
    SessionEnd,
    SessionStart,
)
from claude_terminal.bus.hub import EventBus
from claude_terminal.engine.state import StatusChange
from claude_terminal.models import SessionKind, SessionStatus
from claude_terminal.providers.base import BaseSessionObserver, EventProvider
from claude_terminal.terminal.registry import SessionRegistry
from claude_terminal.terminal.session import Session


class ScrapingProvider(EventProvider, BaseSessionObserver):
    """Registry observer that republishes engine state on the bus."""

    source = EventSource.SCRAPING

    def __init__(self, bus: EventBus, registry: SessionRegistry) -> None:
        super().__init__()
        self._bus = bus
        self._registry = registry
        self._active_sessions: set[str] = set()
        self._remove_observer: Optional[Callable[[], None]] = None

    def is_session_active(self, session_id: str) -> bool:
        return session_id in self._active_sessions

    def _on_start(self) -> None:
        self._remove_observer = self._registry.add_observer(self)

    def _on_stop(self) -> None:
        if self._remove_observer is not None:
            self._remove_observer()
            self._remove_observer = None
        self._active_sessions.clear()

    # ---- SessionObserver ------------------------------------------------ #

    def on_status_change(self, session: Session, change: StatusChange) -> None:
        if not self._active or session.kind is not SessionKind.CLAUDE:
            return
        if change.status is SessionStatus.WORKING:
            if session.id not in self._active_sessions:
                self._active_sessions.add(session.id)
                self._emit(session, SessionStart())
            self._emit(session, ClaudeWorking(tool_name=change.tool_name, substatus=change.substatus.value))
        elif change.ready is not None:
            self._emit(session, ClaudeDone(duration=change.ready.duration, tool_count=change.ready.tool_count))

    def on_prompt_submit(self, session: Session, text: Optional[str]) -> None:
        if not self._active or session.id not in self._active_sessions:
            return
        self._emit(session, PromptSubmit(prompt=text))

    def on_session_close(self, session: Session, exit_code: Optional[int]) -> None:
        if not self._active or session.id not in self._active_sessions:
            return
        self._active_sessions.discard(session.id)
        self._emit(session, SessionEnd(reason="exit", code=exit_code))

    def _emit(self, session: Session, data: EventPayload) -> None:
        project = session.project
        logger.debug(f"[scraping] {session.id}: {data.type.value}")
        self._bus.emit(
            data,
            source=self.source,
            project_id=project.id if project else None,
            project_path=project.path.replace("\\", "/") if project else None,
            terminal_id=session.id,
        )
