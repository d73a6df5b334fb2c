"""One child process attached to a pseudo-terminal."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence

from loguru import logger

from claude_terminal.errors import ClosedSessionError
from claude_terminal.models import ProjectRef, SessionKind, SessionStatus, Substatus
from claude_terminal.scheduler import Scheduler, TimerHandle, cancel_timer
from claude_terminal.terminal.backend import PTYBackend, build_backend
from claude_terminal.terminal.screen import RenderedScreen

OutputSink = Callable[[str], None]
TitleListener = Callable[[str], None]
ExitListener = Callable[[Optional[int]], None]
BackendFactory = Callable[..., PTYBackend]

_WRITE_STOP = object()


class PtySession:
    """Own one PTY child: a reader thread, a writer thread, and a screen.

    Output chunks are handed to the scheduler thread in read order; sinks,
    the rendered screen and title listeners are all updated there, so the
    rest of the core never sees PTY threads.
    """

    def __init__(
        self,
        session_id: str,
        command: str,
        args: Sequence[str] = (),
        *,
        scheduler: Scheduler,
        cwd: str | None = None,
        env: Optional[Mapping[str, str]] = None,
        cols: int = 120,
        rows: int = 30,
        history: int = 1000,
        drain_window_s: float = 2.0,
        backend_factory: BackendFactory = build_backend,
    ) -> None:
        self.session_id = session_id
        self.command = command
        self.args = tuple(args)
        self.cwd = cwd
        self.env = dict(env or {})
        self.cols = max(1, int(cols))
        self.rows = max(1, int(rows))
        self.drain_window_s = drain_window_s

        self._scheduler = scheduler
        self._backend_factory = backend_factory
        self._backend: Optional[PTYBackend] = None
        self._screen = RenderedScreen(self.cols, self.rows, history=history)

        self._running = False
        self._exited = False
        self._exit_code: Optional[int] = None
        self._drain_timer: Optional[TimerHandle] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._writer_thread: Optional[threading.Thread] = None
        self._write_queue: queue.Queue[object] = queue.Queue()

        self._sinks: list[OutputSink] = []
        self._output_listeners: list[OutputSink] = []
        self._title_listeners: list[TitleListener] = []
        self._exit_listeners: list[ExitListener] = []
        self._last_title: Optional[str] = None
        self.last_output_at = 0.0

    # ---- Lifecycle ------------------------------------------------------ #

    @property
    def is_running(self) -> bool:
        return self._running and not self._exited

    @property
    def exited(self) -> bool:
        return self._exited

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def start(self) -> None:
        """Spawn the child. Raises SpawnError synchronously on failure."""
        if self._running:
            return
        self._backend = self._backend_factory(
            self.command,
            args=self.args,
            cols=self.cols,
            rows=self.rows,
            cwd=self.cwd,
            env=self.env,
        )
        self._running = True
        self.last_output_at = self._scheduler.now()
        self._reader_thread = threading.Thread(
            target=self._read_loop, name=f"pty-read-{self.session_id}", daemon=True
        )
        self._writer_thread = threading.Thread(
            target=self._write_loop, name=f"pty-write-{self.session_id}", daemon=True
        )
        self._reader_thread.start()
        self._writer_thread.start()

    def kill(self) -> None:
        """Ask the child to exit; force-close after the drain window."""
        if self._exited or self._backend is None:
            return
        if self._drain_timer is not None:
            return
        try:
            self._backend.terminate()
        except OSError as exc:
            logger.debug(f"[pty] {self.session_id}: terminate failed: {exc}")
        self._drain_timer = self._scheduler.call_later(self.drain_window_s, self._force_close)

    def _force_close(self) -> None:
        self._drain_timer = None
        if self._exited:
            return
        logger.info(f"[pty] {self.session_id}: drain window elapsed, forcing close")
        self._finish()

    # ---- I/O ------------------------------------------------------------ #

    def write(self, data: str) -> None:
        """Queue ``data`` for the child. Raises ClosedSessionError after exit."""
        if self._exited or not self._running:
            raise ClosedSessionError(self.session_id)
        self._write_queue.put(data)

    def flush(self) -> None:
        """Block until every queued write reached the backend."""
        self._write_queue.join()

    def resize(self, cols: int, rows: int) -> None:
        """Resize PTY and screen; values are clamped to at least 1."""
        if self._exited:
            raise ClosedSessionError(self.session_id)
        self.cols = max(1, int(cols))
        self.rows = max(1, int(rows))
        self._screen.resize(self.cols, self.rows)
        if self._backend is not None:
            try:
                self._backend.resize(self.cols, self.rows)
            except OSError as exc:
                logger.debug(f"[pty] {self.session_id}: resize failed: {exc}")

    def add_sink(self, sink: OutputSink) -> Callable[[], None]:
        """Subscribe a UI view to raw output; returns a remover."""
        self._sinks.append(sink)

        def remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return remove

    @property
    def sinks(self) -> tuple[OutputSink, ...]:
        return tuple(self._sinks)

    def on_output(self, listener: OutputSink) -> None:
        self._output_listeners.append(listener)

    def on_title(self, listener: TitleListener) -> None:
        self._title_listeners.append(listener)

    def on_exit(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    # ---- Screen --------------------------------------------------------- #

    @property
    def title(self) -> Optional[str]:
        return self._last_title

    def tail_lines(self, count: int) -> list[str]:
        return self._screen.tail_lines(count)

    def snapshot(self) -> str:
        return self._screen.snapshot()

    # ---- Core-thread hand-off ------------------------------------------ #

    def receive(self, data: str) -> None:
        """Process one output chunk on the core thread."""
        if not data:
            return
        self.last_output_at = self._scheduler.now()
        try:
            titles = self._screen.feed(data)
        except Exception:
            # A malformed sequence must not stop raw delivery to views.
            logger.exception(f"[pty] {self.session_id}: screen feed failed")
            titles = []
        for sink in list(self._sinks):
            try:
                sink(data)
            except Exception:
                logger.exception(f"[pty] {self.session_id}: output sink failed")
        for listener in list(self._output_listeners):
            listener(data)
        for title in titles:
            if title == self._last_title:
                continue
            self._last_title = title
            for title_listener in list(self._title_listeners):
                title_listener(title)

    def receive_eof(self) -> None:
        """Child output ended (exit or read error)."""
        if self._exited:
            return
        self._finish()

    def _finish(self) -> None:
        self._exited = True
        self._running = False
        cancel_timer(self._drain_timer)
        self._drain_timer = None
        backend = self._backend
        if backend is not None:
            try:
                backend.close()
            except OSError as exc:
                logger.debug(f"[pty] {self.session_id}: close failed: {exc}")
            self._exit_code = backend.exit_status()
        self._write_queue.put(_WRITE_STOP)
        logger.info(f"[pty] {self.session_id}: exited (code={self._exit_code})")
        for listener in list(self._exit_listeners):
            try:
                listener(self._exit_code)
            except Exception:
                logger.exception(f"[pty] {self.session_id}: exit listener failed")

    # ---- Threads -------------------------------------------------------- #

    def _read_loop(self) -> None:
        backend = self._backend
        while self._running and backend is not None:
            try:
                data = backend.read()
            except EOFError:
                break
            except (OSError, ValueError) as exc:
                logger.warning(f"[pty] {self.session_id}: read failed: {exc}")
                break
            if data:
                self._scheduler.call_soon_threadsafe(self.receive, data)
        self._scheduler.call_soon_threadsafe(self.receive_eof)

    def _write_loop(self) -> None:
        while True:
            item = self._write_queue.get()
            try:
                if item is _WRITE_STOP:
                    return
                backend = self._backend
                if backend is not None and not self._exited:
                    backend.write(item)  # type: ignore[arg-type]
            except (OSError, ValueError) as exc:
                logger.warning(f"[pty] {self.session_id}: write failed: {exc}")
            finally:
                self._write_queue.task_done()


@dataclass(eq=False)
class Session:
    """A registered interactive child and its UI-facing state."""

    id: str
    kind: SessionKind
    pty: PtySession
    project: Optional[ProjectRef] = None
    display_name: str = ""
    status: SessionStatus = SessionStatus.READY
    substatus: Substatus = Substatus.NONE
    input_buffer: str = ""
    last_activity_at: float = 0.0
    pending_prompt: Optional[str] = None
    file_path: Optional[str] = None
    detected_port: Optional[int] = None
    created_at: float = 0.0
    closed: bool = False
    unsubscribers: list[Callable[[], None]] = field(default_factory=list)

    @property
    def project_id(self) -> Optional[str]:
        return self.project.id if self.project else None

    @property
    def last_output_at(self) -> float:
        return self.pty.last_output_at

    @property
    def subscribers(self) -> tuple[OutputSink, ...]:
        return self.pty.sinks
