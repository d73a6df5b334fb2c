"""Event bus ordering, isolation and envelope construction."""

from claude_terminal.bus.events import WILDCARD, ClaudeDone, EventSource, EventType, SessionStart, ToolStart
from claude_terminal.bus.hub import EventBus


def make_bus(now=1_700_000_000.25):
    return EventBus(clock=lambda: now)


def test_typed_subscribers_run_before_wildcard():
    bus = make_bus()
    order = []
    bus.subscribe(WILDCARD, lambda e: order.append("wildcard"))
    bus.subscribe(EventType.TOOL_START, lambda e: order.append("typed"))

    bus.emit(ToolStart(tool_name="Read"), source=EventSource.HOOKS)

    assert order == ["typed", "wildcard"]


def test_string_and_enum_keys_are_equivalent():
    bus = make_bus()
    seen = []
    bus.subscribe("claude:done", seen.append)

    bus.emit(ClaudeDone(duration="3s"), source=EventSource.SCRAPING)

    assert len(seen) == 1
    assert bus.subscriber_count(EventType.CLAUDE_DONE) == 1


def test_unsubscribe():
    bus = make_bus()
    seen = []
    unsubscribe = bus.subscribe(EventType.SESSION_START, seen.append)

    unsubscribe()
    unsubscribe()
    bus.emit(SessionStart(), source=EventSource.HOOKS)

    assert seen == []
    assert bus.subscriber_count() == 0


def test_failing_handler_does_not_block_others():
    bus = make_bus()
    seen = []

    def broken(_envelope):
        raise RuntimeError("boom")

    bus.subscribe(EventType.SESSION_START, broken)
    bus.subscribe(EventType.SESSION_START, seen.append)
    bus.subscribe(WILDCARD, seen.append)

    bus.emit(SessionStart(), source=EventSource.HOOKS)

    assert len(seen) == 2


def test_envelope_fields():
    bus = make_bus()

    envelope = bus.emit(
        ToolStart(tool_name="Bash"),
        source=EventSource.SCRAPING,
        project_id="p1",
        project_path="/work/p1",
        terminal_id="claude-1",
    )

    assert envelope.type is EventType.TOOL_START
    assert envelope.timestamp_ms == 1_700_000_000_250
    assert envelope.project_id == "p1"
    assert envelope.project_path == "/work/p1"
    assert envelope.terminal_id == "claude-1"
    assert envelope.data.tool_name == "Bash"


def test_subscriber_count_and_clear():
    bus = make_bus()
    bus.subscribe(EventType.TOOL_START, lambda e: None)
    bus.subscribe(WILDCARD, lambda e: None)

    assert bus.subscriber_count() == 2
    assert bus.subscriber_count(WILDCARD) == 1

    bus.clear()
    assert bus.subscriber_count() == 0
