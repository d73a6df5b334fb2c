"""
Time tracking tests.

Covers slice accounting, idle detection, the global wall-clock timer,
midnight and sleep/wake splitting, and retry of failed writes.
"""

from datetime import datetime

import pytest

from claude_terminal.bus.events import EventSource, PromptSubmit, SessionEnd, SessionStart
from claude_terminal.bus.hub import EventBus
from claude_terminal.errors import PersistenceError
from claude_terminal.tracking.records import GlobalTimeRecord, TimeRecord, day_key
from claude_terminal.tracking.time_tracker import TimeTracker

from conftest import ManualScheduler


class FlakyStore:
    """Delegates to a real store but can be told to fail writes."""

    def __init__(self, store):
        self._store = store
        self.failing = False

    def find_by_id(self, project_id):
        return self._store.find_by_id(project_id)

    def update(self, project_id, patch):
        if self.failing:
            raise PersistenceError("disk full")
        return self._store.update(project_id, patch)

    def global_time_tracking(self):
        return self._store.global_time_tracking()

    def update_global_time_tracking(self, record):
        if self.failing:
            raise PersistenceError("disk full")
        self._store.update_global_time_tracking(record)


@pytest.fixture
def projects(store, tmp_path):
    a = store.add(str(tmp_path / "a"), name="A")
    b = store.add(str(tmp_path / "b"), name="B")
    return a, b


@pytest.fixture
def tracker(store, scheduler):
    return TimeTracker(store, scheduler)


def record_of(store, project_id) -> TimeRecord:
    return TimeRecord.from_dict(store.find_by_id(project_id).time_tracking)


class TestSlices:
    def test_stop_persists_one_slice(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(90)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert record.total_ms == 90_000
        assert record.today_ms == 90_000
        assert record.last_active_date == day_key(scheduler.now())
        assert len(record.sessions) == 1
        assert record.sessions[0].duration_ms == 90_000

    def test_start_is_idempotent(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(10)
        tracker.start_tracking(a.id)
        scheduler.advance(10)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert len(record.sessions) == 1
        assert record.total_ms == 20_000

    def test_stop_then_start_gives_two_slices(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(10)
        tracker.stop_tracking(a.id)
        scheduler.advance(60)
        tracker.start_tracking(a.id)
        scheduler.advance(5)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert [s.duration_ms for s in record.sessions] == [10_000, 5_000]
        assert record.total_ms == 15_000

    def test_sub_second_slice_is_discarded(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(0.5)
        tracker.stop_tracking(a.id)

        assert record_of(store, a.id).sessions == []
        assert store.global_time_tracking() == {}

    def test_stop_unknown_project_is_a_no_op(self, tracker):
        tracker.stop_tracking("missing")
        tracker.stop_tracking(None)

        assert not tracker.global_running

    def test_live_times_include_running_slice(self, tracker, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(42)

        assert tracker.get_project_times(a.id) == {"today": 42_000, "total": 42_000}


class TestIdle:
    def test_pauses_after_idle_timeout(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)

        scheduler.advance(299)
        assert not tracker.is_idle(a.id)

        scheduler.advance(2)
        assert tracker.is_idle(a.id)
        assert tracker.is_tracking(a.id)
        assert record_of(store, a.id).total_ms == 300_000
        assert not tracker.global_running

    def test_input_rearms_idle_timer(self, tracker, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(200)
        tracker.record_activity(a.id)

        scheduler.advance(299)
        assert not tracker.is_idle(a.id)

        scheduler.advance(2)
        assert tracker.is_idle(a.id)

    def test_input_within_a_second_does_not_rearm(self, tracker, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(200)
        tracker.record_activity(a.id)
        scheduler.advance(0.5)
        tracker.record_activity(a.id)

        scheduler.advance(299.4)
        assert not tracker.is_idle(a.id)

        scheduler.advance(0.2)
        assert tracker.is_idle(a.id)

    def test_output_within_five_seconds_does_not_rearm(self, tracker, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(100)
        tracker.record_output_activity(a.id)
        scheduler.advance(4)
        tracker.record_output_activity(a.id)

        scheduler.advance(295.9)
        assert not tracker.is_idle(a.id)

        scheduler.advance(0.2)
        assert tracker.is_idle(a.id)

    def test_activity_in_the_idle_tick_resumes(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)

        scheduler.advance(300)
        assert tracker.is_idle(a.id)

        tracker.record_activity(a.id)
        assert not tracker.is_idle(a.id)
        assert tracker.global_running
        scheduler.advance(10)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert [s.duration_ms for s in record.sessions] == [300_000, 10_000]

    def test_output_resumes_idle_project(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(301)
        assert tracker.is_idle(a.id)

        tracker.record_output_activity(a.id)
        assert not tracker.is_idle(a.id)
        scheduler.advance(10)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert [s.duration_ms for s in record.sessions] == [300_000, 10_000]

    def test_output_does_not_start_tracking(self, tracker, projects):
        a, _ = projects
        tracker.record_output_activity(a.id)

        assert not tracker.is_tracking(a.id)

    def test_input_starts_tracking(self, tracker, projects):
        a, _ = projects
        tracker.record_activity(a.id)

        assert tracker.is_tracking(a.id)
        assert tracker.global_running


class TestMultiProject:
    """A then B; A goes idle while B keeps the global timer alive."""

    def test_global_keeps_running_while_any_project_is_active(self, tracker, store, scheduler, projects):
        a, b = projects
        tracker.start_tracking(a.id)
        scheduler.advance(10)
        tracker.start_tracking(b.id)
        for _ in range(3):
            scheduler.advance(100)
            tracker.record_activity(b.id)

        assert tracker.is_idle(a.id)
        assert not tracker.is_idle(b.id)
        assert tracker.global_running
        assert tracker.active_project_count() == 1
        assert record_of(store, a.id).total_ms == 300_000
        # Nothing global was persisted: the global slice never paused.
        assert store.global_time_tracking() == {}

        overall = tracker.get_global_times()
        current_b = tracker.get_project_times(b.id)["total"]
        assert overall["today"] >= record_of(store, a.id).total_ms
        assert overall["today"] >= current_b
        assert overall["today"] == 310_000

        tracker.record_activity(a.id)
        assert not tracker.is_idle(a.id)
        assert tracker.active_project_count() == 2
        assert store.global_time_tracking() == {}

    def test_global_is_wall_clock_not_sum(self, tracker, store, scheduler, projects):
        a, b = projects
        tracker.start_tracking(a.id)
        scheduler.advance(60)
        tracker.start_tracking(b.id)
        scheduler.advance(60)
        tracker.stop_tracking(a.id)
        scheduler.advance(60)
        tracker.stop_tracking(b.id)

        assert record_of(store, a.id).total_ms == 120_000
        assert record_of(store, b.id).total_ms == 120_000
        overall = GlobalTimeRecord.from_dict(store.global_time_tracking())
        assert overall.total_ms == 180_000
        assert tracker.get_global_times() == {"today": 180_000, "week": 180_000, "month": 180_000}


class TestMidnight:
    def test_running_slice_is_split_at_midnight(self, store, projects):
        scheduler = ManualScheduler(start=datetime(2026, 3, 4, 23, 59).timestamp())
        tracker = TimeTracker(store, scheduler)
        a, _ = projects
        tracker.start_background()
        tracker.start_tracking(a.id)

        scheduler.advance(120)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert [s.duration_ms for s in record.sessions] == [60_000, 60_000]
        assert record.total_ms == 120_000
        assert record.last_active_date == "2026-03-05"
        assert record.today_ms == 60_000
        assert tracker.get_project_times(a.id) == {"today": 60_000, "total": 120_000}


class TestSleepWake:
    def test_gap_is_not_counted(self, tracker, store, scheduler, projects):
        a, _ = projects
        tracker.start_background()
        tracker.start_tracking(a.id)
        scheduler.advance(30)

        scheduler.jump(3600)
        scheduler.advance(30)
        tracker.stop_tracking(a.id)

        record = record_of(store, a.id)
        assert [s.duration_ms for s in record.sessions] == [30_000, 30_000]
        assert GlobalTimeRecord.from_dict(store.global_time_tracking()).total_ms == 60_000


class TestPersistenceRetry:
    def test_failed_slice_is_retried_on_heartbeat(self, store, scheduler, projects):
        flaky = FlakyStore(store)
        tracker = TimeTracker(flaky, scheduler)
        a, _ = projects
        tracker.start_tracking(a.id)
        scheduler.advance(20)

        flaky.failing = True
        tracker.stop_tracking(a.id)
        assert tracker.pending_count == 2
        assert record_of(store, a.id).sessions == []

        flaky.failing = False
        tracker.start_background()
        scheduler.advance(30)

        assert tracker.pending_count == 0
        assert record_of(store, a.id).total_ms == 20_000
        assert GlobalTimeRecord.from_dict(store.global_time_tracking()).total_ms == 20_000


class TestBusWiring:
    def test_session_envelopes_drive_tracking(self, tracker, store, scheduler, projects):
        a, _ = projects
        bus = EventBus(clock=scheduler.now)
        tracker.attach(bus)

        bus.emit(SessionStart(session_id="s1"), source=EventSource.HOOKS, project_id=a.id)
        assert tracker.is_tracking(a.id)

        scheduler.advance(5)
        bus.emit(PromptSubmit(prompt="hi"), source=EventSource.HOOKS, project_id=a.id)
        scheduler.advance(5)
        bus.emit(SessionEnd(reason="stop"), source=EventSource.HOOKS, project_id=a.id)

        assert not tracker.is_tracking(a.id)
        assert record_of(store, a.id).total_ms == 10_000

    def test_scraping_session_end_leaves_project_running(self, tracker, scheduler, projects):
        a, _ = projects
        bus = EventBus(clock=scheduler.now)
        tracker.attach(bus)
        tracker.start_tracking(a.id)

        bus.emit(SessionEnd(reason="exit"), source=EventSource.SCRAPING, project_id=a.id, terminal_id="claude-1")

        assert tracker.is_tracking(a.id)


class TestRecords:
    def test_invalid_slices_are_dropped(self):
        record = TimeRecord.from_dict(
            {
                "total_ms": -5,
                "today_ms": "lots",
                "last_active_date": 7,
                "sessions": [
                    {"started_at": 0, "ended_at": 1000, "duration_ms": 1000},
                    {"started_at": 0, "ended_at": 1000, "duration_ms": 0},
                    {"started_at": 2000, "ended_at": 1000, "duration_ms": 500},
                    {"started_at": 0, "ended_at": 1, "duration_ms": 25 * 3600 * 1000},
                    "garbage",
                ],
            }
        )

        assert record.total_ms == 0
        assert record.today_ms == 0
        assert record.last_active_date is None
        assert len(record.sessions) == 1

    def test_older_day_only_adds_to_total(self):
        record = TimeRecord()
        today = datetime(2026, 3, 4, 12, 0).timestamp()
        yesterday = datetime(2026, 3, 3, 12, 0).timestamp()

        record.add_slice(today, today + 60, ring_size=10)
        record.add_slice(yesterday, yesterday + 30, ring_size=10)

        assert record.total_ms == 90_000
        assert record.today_ms == 60_000
        assert record.last_active_date == "2026-03-04"

    def test_ring_is_bounded(self):
        record = TimeRecord()
        start = datetime(2026, 3, 4, 12, 0).timestamp()
        for i in range(5):
            record.add_slice(start + i * 10, start + i * 10 + 5, ring_size=3)

        assert len(record.sessions) == 3
        assert record.total_ms == 25_000

    def test_global_period_counters(self):
        record = GlobalTimeRecord()
        monday = datetime(2026, 3, 2, 9, 0).timestamp()
        wednesday = datetime(2026, 3, 4, 9, 0).timestamp()

        record.add_slice(monday, monday + 60, ring_size=10)
        record.add_slice(wednesday, wednesday + 30, ring_size=10)

        assert record.week_start == "2026-03-02"
        assert record.month_start == "2026-03"
        assert record.period_totals(wednesday + 3600) == {"today": 30_000, "week": 90_000, "month": 90_000}

    def test_global_totals_fall_back_to_ring(self):
        start = datetime(2026, 3, 4, 9, 0).timestamp()
        raw = {"sessions": [{"started_at": int(start * 1000), "ended_at": int(start * 1000) + 5000, "duration_ms": 5000}]}

        totals = GlobalTimeRecord.from_dict(raw).period_totals(start + 60)

        assert totals == {"today": 5000, "week": 5000, "month": 5000}
