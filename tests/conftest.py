"""
Pytest configuration and fixtures for claude-terminal tests.

Time is driven by ``ManualScheduler`` and children are ``FakeBackend``
instances, so no test sleeps or spawns a real process unless it says so.
"""

import heapq
import itertools
import threading
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional

import pytest

from claude_terminal.config.schema import AppConfig, Config, HooksConfig
from claude_terminal.core import Core
from claude_terminal.errors import SpawnError
from claude_terminal.session.project_store import JsonProjectStore
from claude_terminal.status.notifications import RecordingNotificationSink

# Local noon, far from midnight and DST switches.
NOON = datetime(2026, 3, 4, 12, 0).timestamp()


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler: time only moves when a test says so."""

    def __init__(self, start: float = NOON) -> None:
        self._now = start
        self._timers: list = []
        self._seq = itertools.count()
        self._soon: list = []
        self._soon_lock = threading.Lock()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_s, callback, *args):
        handle = _Handle()
        heapq.heappush(self._timers, (self._now + max(0.0, delay_s), next(self._seq), handle, callback, args))
        return handle

    def call_soon_threadsafe(self, callback, *args) -> None:
        with self._soon_lock:
            self._soon.append((callback, args))

    def run_soon(self) -> None:
        """Run every callback handed over from other threads."""
        while True:
            with self._soon_lock:
                if not self._soon:
                    return
                callback, args = self._soon.pop(0)
            callback(*args)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._now + seconds
        self.run_soon()
        while self._timers and self._timers[0][0] <= target:
            due, _, handle, callback, args = heapq.heappop(self._timers)
            self._now = max(self._now, due)
            if not handle.cancelled:
                callback(*args)
            self.run_soon()
        self._now = max(self._now, target)

    def jump(self, seconds: float) -> None:
        """Move the clock without firing anything (a suspended machine)."""
        self._now += seconds

    def pending_timers(self) -> int:
        return sum(1 for entry in self._timers if not entry[2].cancelled)


class FakeBackend:
    """In-memory PTY backend recording what the core sends to the child."""

    def __init__(self, command, args=(), cols=80, rows=24, cwd=None, env=None) -> None:
        self.command = command
        self.args = tuple(args)
        self.cwd = cwd
        self.env = dict(env or {})
        self.size = (cols, rows)
        self.writes: list[str] = []
        self.resizes: list[tuple[int, int]] = []
        self.terminated = False
        self.closed = False
        self.exit_code: Optional[int] = None
        self._ended = threading.Event()

    def read(self) -> str:
        if self._ended.wait(0.02):
            raise EOFError("fake pty closed")
        return ""

    def write(self, data: str) -> None:
        self.writes.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.size = (cols, rows)
        self.resizes.append((cols, rows))

    def is_alive(self) -> bool:
        return not self._ended.is_set()

    def exit_status(self) -> Optional[int]:
        return self.exit_code

    def terminate(self) -> None:
        self.terminated = True
        if self.exit_code is None:
            self.exit_code = -15
        self._ended.set()

    def close(self) -> None:
        self.closed = True
        self._ended.set()

    def exit(self, code: int = 0) -> None:
        """Simulate the child exiting on its own."""
        self.exit_code = code
        self._ended.set()


class FakeBackendFactory:
    """Callable passed as ``backend_factory``; remembers every backend."""

    def __init__(self) -> None:
        self.created: list[FakeBackend] = []
        self.fail_with: Optional[str] = None

    def __call__(self, command, args=(), cols=80, rows=24, cwd=None, env=None) -> FakeBackend:
        if self.fail_with:
            raise SpawnError(self.fail_with, command=command)
        backend = FakeBackend(command, args=args, cols=cols, rows=rows, cwd=cwd, env=env)
        self.created.append(backend)
        return backend

    @property
    def last(self) -> FakeBackend:
        return self.created[-1]


def osc_title(title: str) -> str:
    """The escape sequence a program uses to set the window title."""
    return f"\x1b]0;{title}\x07"


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def backends() -> FakeBackendFactory:
    return FakeBackendFactory()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config whose every path points into the test's temp directory."""
    return Config(
        app=AppConfig(data_dir=str(tmp_path / "data")),
        hooks=HooksConfig(
            port_file=str(tmp_path / "hooks" / "port"),
            claude_settings=str(tmp_path / "claude" / "settings.json"),
        ),
    )


@pytest.fixture
def store(tmp_path: Path) -> JsonProjectStore:
    return JsonProjectStore(tmp_path / "projects.json")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "proj"
    path.mkdir()
    return path


@pytest.fixture
def project(store: JsonProjectStore, project_dir: Path):
    return store.add(str(project_dir), name="Proj")


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def core(config, scheduler, store, sink, backends) -> Generator[Core, None, None]:
    """Started core in scraping mode; shut down after the test."""
    instance = Core(
        config,
        scheduler=scheduler,
        store=store,
        sink=sink,
        backend_factory=backends,
        serve_hooks=False,
    )
    instance.start()
    yield instance
    instance.shutdown()
