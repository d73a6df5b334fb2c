"""Session registry: owns every PTY session and routes input to it."""

from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol

from loguru import logger

from claude_terminal.config.schema import Config
from claude_terminal.engine.patterns import GlyphPatterns
from claude_terminal.engine.state import ClaudeStateMachine, StatusChange
from claude_terminal.models import ProjectRef, SessionKind
from claude_terminal.providers.base import SessionObserver
from claude_terminal.scheduler import Scheduler, TimerHandle, cancel_timer
from claude_terminal.terminal.backend import build_backend
from claude_terminal.terminal.input import Debouncer, InputRouter
from claude_terminal.terminal.kinds import LaunchSpec, PortDetector
from claude_terminal.terminal.session import BackendFactory, PtySession, Session
from claude_terminal.utils.helpers import short_id

SINGLE_INSTANCE_KINDS = frozenset({SessionKind.FIVEM, SessionKind.WEBAPP})
ROUTED_INPUT_KINDS = frozenset({SessionKind.CLAUDE, SessionKind.SHELL})


class ActivityTracker(Protocol):
    """The slice of the time tracker the registry drives."""

    def start_tracking(self, project_id: str) -> None: ...

    def stop_tracking(self, project_id: str) -> None: ...

    def record_activity(self, project_id: str) -> None: ...

    def record_output_activity(self, project_id: str) -> None: ...


class SessionRegistry:
    """Index sessions by id, project and kind; mediate their lifecycle.

    Indices are mutated under a lock on create/close only. Everything else
    (output, titles, timers) runs on the scheduler thread.
    """

    def __init__(
        self,
        *,
        config: Config,
        scheduler: Scheduler,
        tracker: Optional[ActivityTracker] = None,
        backend_factory: BackendFactory = build_backend,
        patterns: Optional[GlyphPatterns] = None,
    ) -> None:
        self.config = config
        self.patterns = patterns or GlyphPatterns(config.engine)
        self._scheduler = scheduler
        self._tracker = tracker
        self._backend_factory = backend_factory
        self._router = InputRouter(config.terminal.input_buffer_limit)
        self._paste_debounce = Debouncer(config.terminal.paste_debounce_s, scheduler.now)

        self._lock = threading.RLock()
        self._by_id: dict[str, Session] = {}
        self._by_project: dict[str, list[str]] = {}
        self._by_kind: dict[SessionKind, list[str]] = {}
        self._engines: dict[str, ClaudeStateMachine] = {}
        self._port_detectors: dict[str, PortDetector] = {}
        self._prompt_timers: dict[str, TimerHandle] = {}
        self._observers: list[SessionObserver] = []

    # ---- Observers ------------------------------------------------------ #

    def add_observer(self, observer: SessionObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return remove

    def _notify(self, method: str, *args: object) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, method)(*args)
            except Exception:
                logger.exception(f"[registry] Observer {type(observer).__name__}.{method} failed")

    # ---- Lifecycle ------------------------------------------------------ #

    def create(
        self,
        kind: SessionKind,
        launch: LaunchSpec,
        *,
        project: Optional[ProjectRef] = None,
        display_name: Optional[str] = None,
        pending_prompt: Optional[str] = None,
        file_path: Optional[str] = None,
        cols: Optional[int] = None,
        rows: Optional[int] = None,
    ) -> Session:
        """Spawn and register a session.

        Raises:
            SpawnError: the child could not be started; nothing is registered.
        """
        if kind in SINGLE_INSTANCE_KINDS and project is not None:
            existing = self.find_single(project.id, kind)
            if existing is not None:
                logger.info(f"[registry] Reusing {kind.value} session {existing.id} for {project.id}")
                return existing

        session_id = self._new_id(kind)
        terminal = self.config.terminal
        pty = PtySession(
            session_id,
            launch.command,
            launch.args,
            scheduler=self._scheduler,
            cwd=launch.cwd,
            env=launch.env,
            cols=cols or terminal.cols,
            rows=rows or terminal.rows,
            history=terminal.scrollback_lines,
            drain_window_s=terminal.drain_window_s,
            backend_factory=self._backend_factory,
        )
        pty.start()

        now = self._scheduler.now()
        session = Session(
            id=session_id,
            kind=kind,
            pty=pty,
            project=project,
            display_name=display_name or (project.display_name if project else kind.value),
            pending_prompt=pending_prompt,
            file_path=file_path,
            last_activity_at=now,
            created_at=now,
        )
        if kind is SessionKind.CLAUDE:
            self._engines[session_id] = ClaudeStateMachine(
                session_id,
                scheduler=self._scheduler,
                tail_lines=pty.tail_lines,
                last_output_at=lambda: pty.last_output_at,
                on_change=lambda change: self._on_engine_change(session, change),
                config=self.config.engine,
                patterns=self.patterns,
            )
        if kind is SessionKind.WEBAPP:
            self._port_detectors[session_id] = PortDetector(terminal.port_scan_buffer)

        pty.on_output(lambda data: self._on_output(session, data))
        pty.on_title(lambda title: self._on_title(session, title))
        pty.on_exit(lambda code: self._teardown(session, code))

        with self._lock:
            self._by_id[session_id] = session
            self._by_kind.setdefault(kind, []).append(session_id)
            if project is not None:
                self._by_project.setdefault(project.id, []).append(session_id)

        logger.info(f"[registry] Opened {kind.value} session {session_id}: {launch.command_line[:60]}")
        if project is not None and self._tracker is not None:
            self._tracker.start_tracking(project.id)
        return session

    def close(self, session_id: str) -> bool:
        """Unregister a session now and terminate its child."""
        session = self.lookup(session_id)
        if session is None:
            return False
        self._teardown(session, None)
        session.pty.kill()
        return True

    def close_all(self) -> None:
        for session in self.all():
            self.close(session.id)

    def kill(self, session_id: str) -> bool:
        """Terminate the child; the session closes when it exits or the drain window ends."""
        session = self.lookup(session_id)
        if session is None:
            return False
        session.pty.kill()
        return True

    def _teardown(self, session: Session, exit_code: Optional[int]) -> None:
        with self._lock:
            if session.closed:
                return
            session.closed = True
            self._by_id.pop(session.id, None)
            self._discard(self._by_kind.get(session.kind), session.id)
            if session.project is not None:
                ids = self._by_project.get(session.project.id)
                self._discard(ids, session.id)
                if ids is not None and not ids:
                    del self._by_project[session.project.id]
            engine = self._engines.pop(session.id, None)
            self._port_detectors.pop(session.id, None)
            prompt_timer = self._prompt_timers.pop(session.id, None)

        if engine is not None:
            engine.observe_exit()
        cancel_timer(prompt_timer)
        for unsubscribe in session.unsubscribers:
            unsubscribe()
        session.unsubscribers.clear()

        logger.info(f"[registry] Closed session {session.id} (code={exit_code})")
        self._notify("on_session_close", session, exit_code)
        if session.project is not None and self._tracker is not None:
            if not self.list_by_project(session.project.id):
                self._tracker.stop_tracking(session.project.id)

    # ---- Lookup --------------------------------------------------------- #

    def lookup(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._by_id.get(session_id)

    get = lookup

    def require(self, session_id: str) -> Session:
        session = self.lookup(session_id)
        if session is None:
            raise KeyError(session_id)
        return session

    def list_by_project(self, project_id: str) -> list[Session]:
        with self._lock:
            return [self._by_id[sid] for sid in self._by_project.get(project_id, ()) if sid in self._by_id]

    def list_by_kind(self, kind: SessionKind) -> list[Session]:
        with self._lock:
            return [self._by_id[sid] for sid in self._by_kind.get(kind, ()) if sid in self._by_id]

    def all(self) -> list[Session]:
        with self._lock:
            return list(self._by_id.values())

    def find_single(self, project_id: str, kind: SessionKind) -> Optional[Session]:
        for session in self.list_by_project(project_id):
            if session.kind is kind:
                return session
        return None

    def engine(self, session_id: str) -> Optional[ClaudeStateMachine]:
        return self._engines.get(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    # ---- Input ---------------------------------------------------------- #

    def write(self, session_id: str, data: str) -> None:
        """Send keystrokes. Raises KeyError / ClosedSessionError."""
        session = self.require(session_id)
        session.pty.write(data)
        session.last_activity_at = self._scheduler.now()
        if session.project is not None and self._tracker is not None:
            self._tracker.record_activity(session.project.id)
        if session.kind not in ROUTED_INPUT_KINDS:
            return
        effect = self._router.route(session, data)
        if effect.title:
            session.display_name = effect.title
        if effect.enter and session.kind is SessionKind.CLAUDE:
            engine = self._engines.get(session_id)
            if engine is not None:
                engine.observe_enter()
            self._notify("on_prompt_submit", session, effect.submitted)

    def paste(self, session_id: str, text: str) -> bool:
        """Write pasted text unless another paste happened within the debounce window."""
        if not self._paste_debounce.allow():
            logger.debug(f"[registry] Paste into {session_id} suppressed (debounce)")
            return False
        self.write(session_id, text)
        return True

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        self.require(session_id).pty.resize(cols, rows)

    def rename(self, session_id: str, name: str) -> None:
        session = self.require(session_id)
        if name.strip():
            session.display_name = name.strip()

    # ---- PTY callbacks (scheduler thread) ------------------------------ #

    def _on_output(self, session: Session, data: str) -> None:
        if session.project is not None and self._tracker is not None:
            self._tracker.record_output_activity(session.project.id)
        detector = self._port_detectors.get(session.id)
        if detector is not None:
            port = detector.feed(data)
            if port is not None:
                session.detected_port = port
                logger.info(f"[registry] {session.id}: dev server on port {port}")

    def _on_title(self, session: Session, title: str) -> None:
        engine = self._engines.get(session.id)
        if engine is not None:
            engine.observe_title(title)
        stripped = title.strip()
        if (
            session.pending_prompt
            and stripped
            and self.patterns.is_completion(stripped[0])
            and session.id not in self._prompt_timers
        ):
            self._prompt_timers[session.id] = self._scheduler.call_later(
                self.config.terminal.pending_prompt_delay_s,
                self._send_pending_prompt,
                session,
            )

    def _send_pending_prompt(self, session: Session) -> None:
        self._prompt_timers.pop(session.id, None)
        prompt, session.pending_prompt = session.pending_prompt, None
        if not prompt or session.closed:
            return
        logger.info(f"[registry] {session.id}: sending pending prompt ({len(prompt)} chars)")
        session.pty.write(prompt)
        session.input_buffer = prompt
        self.write(session.id, "\r")

    def _on_engine_change(self, session: Session, change: StatusChange) -> None:
        session.status = change.status
        session.substatus = change.substatus
        self._notify("on_status_change", session, change)

    # ---- Helpers -------------------------------------------------------- #

    def _new_id(self, kind: SessionKind) -> str:
        with self._lock:
            while True:
                session_id = f"{kind.value}-{short_id()}"
                if session_id not in self._by_id:
                    return session_id

    @staticmethod
    def _discard(ids: Optional[list[str]], session_id: str) -> None:
        if ids is not None and session_id in ids:
            ids.remove(session_id)
