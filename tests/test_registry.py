"""
Session registry and PTY session tests.

Output is handed to sessions with ``pty.receive`` exactly as the reader
thread does through the scheduler, so nothing here depends on thread timing.
"""

import pytest

from claude_terminal.errors import ClosedSessionError, SpawnError
from claude_terminal.models import SessionKind, SessionStatus
from claude_terminal.providers.base import BaseSessionObserver
from claude_terminal.terminal.kinds import LaunchSpec
from claude_terminal.terminal.registry import SessionRegistry

from conftest import osc_title

CLAUDE = LaunchSpec("claude", cwd="/tmp")
SHELL = LaunchSpec("bash", cwd="/tmp")


class RecordingObserver(BaseSessionObserver):
    def __init__(self):
        self.changes = []
        self.prompts = []
        self.closed = []

    def on_status_change(self, session, change):
        self.changes.append((session.id, change))

    def on_prompt_submit(self, session, text):
        self.prompts.append((session.id, text))

    def on_session_close(self, session, exit_code):
        self.closed.append((session.id, exit_code))


class SpyTracker:
    def __init__(self):
        self.calls = []

    def start_tracking(self, project_id):
        self.calls.append(("start", project_id))

    def stop_tracking(self, project_id):
        self.calls.append(("stop", project_id))

    def record_activity(self, project_id):
        self.calls.append(("input", project_id))

    def record_output_activity(self, project_id):
        self.calls.append(("output", project_id))


@pytest.fixture
def tracker():
    return SpyTracker()


@pytest.fixture
def registry(config, scheduler, backends, tracker):
    return SessionRegistry(config=config, scheduler=scheduler, tracker=tracker, backend_factory=backends)


@pytest.fixture
def observer(registry):
    recording = RecordingObserver()
    registry.add_observer(recording)
    return recording


@pytest.fixture
def ref(project):
    return project.ref


def type_text(registry, session_id, text):
    for ch in text:
        registry.write(session_id, ch)


class TestCreate:
    def test_indexes_by_id_project_and_kind(self, registry, ref):
        session = registry.create(SessionKind.CLAUDE, CLAUDE, project=ref)

        assert registry.lookup(session.id) is session
        assert registry.list_by_project(ref.id) == [session]
        assert registry.list_by_kind(SessionKind.CLAUDE) == [session]
        assert session.id.startswith("claude-")
        assert session.display_name == "Proj"
        assert registry.engine(session.id) is not None

    def test_spawns_with_launch_settings(self, registry, backends, config):
        registry.create(SessionKind.SHELL, LaunchSpec("bash", ("-l",), cwd="/work", env={"A": "1"}))

        backend = backends.last
        assert backend.command == "bash"
        assert backend.args == ("-l",)
        assert backend.cwd == "/work"
        assert backend.env == {"A": "1"}
        assert backend.size == (config.terminal.cols, config.terminal.rows)

    def test_non_claude_kinds_have_no_engine(self, registry):
        session = registry.create(SessionKind.SHELL, SHELL)

        assert registry.engine(session.id) is None

    def test_single_instance_kinds_are_reused(self, registry, backends, ref):
        first = registry.create(SessionKind.FIVEM, SHELL, project=ref)
        second = registry.create(SessionKind.FIVEM, SHELL, project=ref)

        assert first is second
        assert len(backends.created) == 1

    def test_spawn_error_registers_nothing(self, registry, backends, ref, tracker):
        backends.fail_with = "no such binary"

        with pytest.raises(SpawnError):
            registry.create(SessionKind.CLAUDE, CLAUDE, project=ref)

        assert len(registry) == 0
        assert registry.list_by_project(ref.id) == []
        assert tracker.calls == []

    def test_starts_time_tracking(self, registry, ref, tracker):
        registry.create(SessionKind.CLAUDE, CLAUDE, project=ref)

        assert ("start", ref.id) in tracker.calls


class TestClose:
    def test_close_unregisters_and_terminates(self, registry, backends, observer, ref, tracker):
        session = registry.create(SessionKind.CLAUDE, CLAUDE, project=ref)

        assert registry.close(session.id)

        assert registry.lookup(session.id) is None
        assert registry.list_by_project(ref.id) == []
        assert backends.last.terminated
        assert observer.closed == [(session.id, None)]
        assert ("stop", ref.id) in tracker.calls

    def test_close_unknown_returns_false(self, registry):
        assert not registry.close("claude-missing")

    def test_tracking_continues_while_project_has_sessions(self, registry, ref, tracker):
        first = registry.create(SessionKind.CLAUDE, CLAUDE, project=ref)
        registry.create(SessionKind.SHELL, SHELL, project=ref)

        registry.close(first.id)

        assert ("stop", ref.id) not in tracker.calls

    def test_child_exit_closes_with_exit_code(self, registry, backends, observer):
        session = registry.create(SessionKind.SHELL, SHELL)
        backends.last.exit(3)

        session.pty.receive_eof()

        assert registry.lookup(session.id) is None
        assert observer.closed == [(session.id, 3)]
        assert session.pty.exit_code == 3

    def test_close_notifies_once(self, registry, observer, scheduler):
        session = registry.create(SessionKind.SHELL, SHELL)

        registry.close(session.id)
        session.pty.receive_eof()
        scheduler.advance(5)

        assert len(observer.closed) == 1
        assert session.closed
        assert registry.lookup(session.id) is None

    def test_kill_force_closes_after_drain_window(self, registry, observer, scheduler):
        session = registry.create(SessionKind.SHELL, SHELL)

        registry.kill(session.id)
        assert registry.lookup(session.id) is session

        scheduler.advance(2.1)
        assert registry.lookup(session.id) is None
        assert len(observer.closed) == 1

    def test_write_after_exit_raises(self, registry):
        session = registry.create(SessionKind.SHELL, SHELL)
        session.pty.receive_eof()

        with pytest.raises(ClosedSessionError):
            session.pty.write("ls\r")

    def test_write_to_unknown_session_raises(self, registry):
        with pytest.raises(KeyError):
            registry.write("shell-missing", "x")

    def test_close_cancels_engine_timers(self, registry, observer, scheduler):
        session = registry.create(SessionKind.CLAUDE, CLAUDE)
        session.pty.receive(osc_title("⠋ Read foo.txt"))
        session.pty.receive(osc_title("✳ Hatched for 3s"))

        registry.close(session.id)
        scheduler.advance(10)

        assert all(change.ready is None for _, change in observer.changes)


class TestInput:
    def test_enter_auto_names_the_tab(self, registry, observer):
        session = registry.create(SessionKind.CLAUDE, CLAUDE)

        type_text(registry, session.id, "fix the login bug")
        registry.write(session.id, "\r")

        assert session.display_name == "Fix Login Bug"
        assert session.input_buffer == ""
        assert observer.prompts == [(session.id, "fix the login bug")]

    def test_backspace_edits_buffer(self, registry):
        session = registry.create(SessionKind.SHELL, SHELL)

        type_text(registry, session.id, "lsx")
        registry.write(session.id, "\x7f")

        assert session.input_buffer == "ls"

    def test_enter_marks_claude_working(self, registry, observer, scheduler):
        session = registry.create(SessionKind.CLAUDE, CLAUDE)

        registry.write(session.id, "\r")

        assert session.status is SessionStatus.WORKING
        scheduler.advance(5.1)
        assert session.status is SessionStatus.READY

    def test_keystrokes_reach_the_child(self, registry, backends):
        session = registry.create(SessionKind.SHELL, SHELL)

        registry.write(session.id, "ls\r")
        session.pty.flush()

        assert backends.last.writes == ["ls\r"]

    def test_input_counts_as_activity(self, registry, ref, tracker):
        session = registry.create(SessionKind.SHELL, SHELL, project=ref)

        registry.write(session.id, "a")

        assert ("input", ref.id) in tracker.calls

    def test_resize_reaches_backend(self, registry, backends):
        session = registry.create(SessionKind.SHELL, SHELL)

        registry.resize(session.id, 0, 40)

        assert backends.last.resizes == [(1, 40)]

    def test_rename_ignores_blank_names(self, registry):
        session = registry.create(SessionKind.SHELL, SHELL)

        registry.rename(session.id, "  build  ")
        registry.rename(session.id, "   ")

        assert session.display_name == "build"


class TestOutput:
    def test_output_feeds_engine_and_sinks(self, registry, ref, tracker):
        session = registry.create(SessionKind.CLAUDE, CLAUDE, project=ref)
        seen = []
        session.pty.add_sink(seen.append)

        session.pty.receive(osc_title("⠋ Read foo.txt") + "reading\r\n")

        assert session.status is SessionStatus.WORKING
        assert seen == [osc_title("⠋ Read foo.txt") + "reading\r\n"]
        assert ("output", ref.id) in tracker.calls
        assert "reading" in session.pty.snapshot()

    def test_removed_sink_gets_nothing(self, registry):
        session = registry.create(SessionKind.SHELL, SHELL)
        seen = []
        remove = session.pty.add_sink(seen.append)
        remove()

        session.pty.receive("hello")

        assert seen == []

    def test_failing_sink_does_not_block_others(self, registry):
        session = registry.create(SessionKind.SHELL, SHELL)
        seen = []

        def broken(_data):
            raise RuntimeError("view gone")

        session.pty.add_sink(broken)
        session.pty.add_sink(seen.append)
        session.pty.receive("hello")

        assert seen == ["hello"]

    def test_webapp_port_is_detected(self, registry, ref):
        session = registry.create(SessionKind.WEBAPP, SHELL, project=ref)

        session.pty.receive("  VITE ready\r\n  Local:   http://localhost:5173/\r\n")

        assert session.detected_port == 5173


class TestPendingPrompt:
    def test_sent_after_first_completion_title(self, registry, backends, scheduler):
        session = registry.create(SessionKind.CLAUDE, CLAUDE, pending_prompt="explain this repo")

        session.pty.receive(osc_title("✳ Claude Code"))
        session.pty.flush()
        assert backends.last.writes == []

        scheduler.advance(0.5)
        session.pty.flush()

        assert backends.last.writes == ["explain this repo", "\r"]
        assert session.pending_prompt is None
        assert session.status is SessionStatus.WORKING

    def test_sent_once(self, registry, backends, scheduler):
        session = registry.create(SessionKind.CLAUDE, CLAUDE, pending_prompt="hello there")

        session.pty.receive(osc_title("✳ Claude Code"))
        scheduler.advance(0.5)
        session.pty.receive(osc_title("⠋ Thinking"))
        session.pty.receive(osc_title("✳ Claude Code"))
        scheduler.advance(0.5)
        session.pty.flush()

        assert backends.last.writes == ["hello there", "\r"]

    def test_dropped_when_session_closes_first(self, registry, backends, scheduler):
        session = registry.create(SessionKind.CLAUDE, CLAUDE, pending_prompt="hello there")
        backend = backends.last

        session.pty.receive(osc_title("✳ Claude Code"))
        registry.close(session.id)
        scheduler.advance(1)

        assert backend.writes == []
