"""Per-project and global time accounting with idle detection.

Each tracked project is either running (an open slice started at
``started_at``) or idle (tracked but paused after the idle timeout). The
global slice runs exactly while at least one tracked project is running,
so it measures wall-clock time during which anything was active rather
than the sum of the projects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from loguru import logger

from claude_terminal.bus.events import EventEnvelope, EventSource, EventType
from claude_terminal.bus.hub import EventBus
from claude_terminal.config.schema import TrackingConfig
from claude_terminal.errors import PersistenceError
from claude_terminal.scheduler import Scheduler, TimerHandle, cancel_timer
from claude_terminal.session.project_store import Project
from claude_terminal.tracking.records import (
    GlobalTimeRecord,
    TimeRecord,
    day_key,
    start_of_day,
    start_of_month,
    start_of_week,
)


class TimeStore(Protocol):
    """The part of the project store the tracker persists through."""

    def find_by_id(self, project_id: str) -> Optional[Project]: ...

    def update(self, project_id: str, patch: dict) -> Optional[Project]: ...

    def global_time_tracking(self) -> dict: ...

    def update_global_time_tracking(self, record: dict) -> None: ...


@dataclass
class _ProjectState:
    started_at: Optional[float]
    idle_timer: Optional[TimerHandle] = None
    last_input_at: float = float("-inf")
    last_output_at: float = float("-inf")

    @property
    def idle(self) -> bool:
        return self.started_at is None


# project id, or None for the global record
_PendingSlice = tuple[Optional[str], float, float]


class TimeTracker:
    """Slice-based time accounting driven by session activity."""

    def __init__(self, store: TimeStore, scheduler: Scheduler, config: Optional[TrackingConfig] = None) -> None:
        self._store = store
        self._scheduler = scheduler
        self.config = config or TrackingConfig()
        self._projects: dict[str, _ProjectState] = {}
        self._global_started_at: Optional[float] = None
        self._pending: list[_PendingSlice] = []
        self._known_date = day_key(scheduler.now())
        self._last_heartbeat = scheduler.now()
        self._midnight_timer: Optional[TimerHandle] = None
        self._heartbeat_timer: Optional[TimerHandle] = None

    # ---- Queries -------------------------------------------------------- #

    def is_tracking(self, project_id: str) -> bool:
        return project_id in self._projects

    def is_idle(self, project_id: str) -> bool:
        state = self._projects.get(project_id)
        return state is not None and state.idle

    def active_project_count(self) -> int:
        """Tracked projects that are not idle."""
        return sum(1 for state in self._projects.values() if not state.idle)

    @property
    def global_running(self) -> bool:
        return self._global_started_at is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_project_times(self, project_id: str) -> dict[str, int]:
        """``{"today": ms, "total": ms}`` including the in-flight slice."""
        now = self._scheduler.now()
        project = self._store.find_by_id(project_id)
        record = TimeRecord.from_dict(project.time_tracking if project else None)
        today, total = record.today_at(now), record.total_ms
        state = self._projects.get(project_id)
        if state is not None and state.started_at is not None:
            total += _ms(now - state.started_at)
            today += _ms(now - max(state.started_at, start_of_day(now)))
        return {"today": today, "total": total}

    def get_global_times(self) -> dict[str, int]:
        """``{"today", "week", "month"}`` in ms, live slice clipped to each period."""
        now = self._scheduler.now()
        totals = GlobalTimeRecord.from_dict(self._store.global_time_tracking()).period_totals(now)
        started = self._global_started_at
        if started is not None:
            for period, lower in (
                ("today", start_of_day(now)),
                ("week", start_of_week(now)),
                ("month", start_of_month(now)),
            ):
                totals[period] += _ms(now - max(started, lower))
        return totals

    # ---- Lifecycle ------------------------------------------------------ #

    def start_tracking(self, project_id: Optional[str]) -> None:
        """Begin tracking, or resume an idle project. Idempotent while running."""
        if not project_id:
            return
        state = self._projects.get(project_id)
        if state is None:
            now = self._scheduler.now()
            self._projects[project_id] = _ProjectState(started_at=now, last_input_at=now)
            logger.debug(f"[tracking] Started {project_id}")
            self._arm_idle(project_id)
            self._sync_global()
        elif state.idle:
            self._resume(project_id)

    def stop_tracking(self, project_id: Optional[str]) -> None:
        """Persist the running slice and forget the project."""
        state = self._projects.pop(project_id, None) if project_id else None
        if state is None:
            return
        cancel_timer(state.idle_timer)
        if state.started_at is not None:
            self._save_project_slice(project_id, state.started_at, self._scheduler.now())
        logger.debug(f"[tracking] Stopped {project_id}")
        self._sync_global()

    def pause_tracking(self, project_id: str) -> None:
        """Close the running slice and mark the project idle; it stays tracked."""
        state = self._projects.get(project_id)
        if state is None or state.idle:
            return
        cancel_timer(state.idle_timer)
        state.idle_timer = None
        started, state.started_at = state.started_at, None
        self._save_project_slice(project_id, started, self._scheduler.now())
        logger.debug(f"[tracking] {project_id} idle")
        self._sync_global()

    def switch_project(self, previous_id: Optional[str], project_id: Optional[str]) -> None:
        """Several projects are tracked at once, so the previous one keeps running."""
        del previous_id
        self.start_tracking(project_id)

    def record_activity(self, project_id: Optional[str]) -> None:
        """User input. Starts tracking an untracked project."""
        if not project_id:
            return
        state = self._projects.get(project_id)
        if state is None:
            self.start_tracking(project_id)
            return
        now = self._scheduler.now()
        if state.idle:
            state.last_input_at = now
            self._resume(project_id)
            return
        if now - state.last_input_at < self.config.input_throttle_s:
            return
        state.last_input_at = now
        self._arm_idle(project_id)

    def record_output_activity(self, project_id: Optional[str]) -> None:
        """Child output. Ignored for untracked projects."""
        state = self._projects.get(project_id) if project_id else None
        if state is None:
            return
        now = self._scheduler.now()
        if state.idle:
            state.last_output_at = now
            self._resume(project_id)
            return
        if now - state.last_output_at < self.config.output_throttle_s:
            return
        state.last_output_at = now
        self._arm_idle(project_id)

    def save_all_active_sessions(self) -> None:
        """Persist every running slice and drop all state (shutdown)."""
        now = self._scheduler.now()
        for project_id, state in list(self._projects.items()):
            cancel_timer(state.idle_timer)
            if state.started_at is not None:
                self._save_project_slice(project_id, state.started_at, now)
        self._projects.clear()
        if self._global_started_at is not None:
            self._save_global_slice(self._global_started_at, now)
            self._global_started_at = None
        self.stop_background()
        if self._pending:
            logger.warning(f"[tracking] {len(self._pending)} slice(s) could not be persisted at shutdown")

    # ---- Bus wiring ----------------------------------------------------- #

    def attach(self, bus: EventBus) -> list[Callable[[], None]]:
        """Consume normalized envelopes from either provider."""
        return [
            bus.subscribe(EventType.SESSION_START, lambda env: self.start_tracking(env.project_id)),
            bus.subscribe(EventType.SESSION_END, self._on_session_end),
            bus.subscribe(EventType.TOOL_START, self._on_activity),
            bus.subscribe(EventType.TOOL_END, self._on_activity),
            bus.subscribe(EventType.PROMPT_SUBMIT, self._on_activity),
            bus.subscribe(EventType.CLAUDE_WORKING, lambda env: self.record_output_activity(env.project_id)),
        ]

    def _on_activity(self, envelope: EventEnvelope) -> None:
        self.record_activity(envelope.project_id)

    def _on_session_end(self, envelope: EventEnvelope) -> None:
        # The registry stops scraping projects once their last session closes.
        if envelope.source is EventSource.SCRAPING:
            return
        self.stop_tracking(envelope.project_id)

    # ---- Background checks --------------------------------------------- #

    def start_background(self) -> None:
        """Arm the midnight split and sleep/wake heartbeat timers."""
        self._known_date = day_key(self._scheduler.now())
        self._last_heartbeat = self._scheduler.now()
        cancel_timer(self._midnight_timer)
        cancel_timer(self._heartbeat_timer)
        self._midnight_timer = self._scheduler.call_later(self.config.midnight_check_s, self._midnight_tick)
        self._heartbeat_timer = self._scheduler.call_later(self.config.heartbeat_s, self._heartbeat_tick)

    def stop_background(self) -> None:
        cancel_timer(self._midnight_timer)
        cancel_timer(self._heartbeat_timer)
        self._midnight_timer = self._heartbeat_timer = None

    def _midnight_tick(self) -> None:
        self._midnight_timer = self._scheduler.call_later(self.config.midnight_check_s, self._midnight_tick)
        self.check_midnight()

    def _heartbeat_tick(self) -> None:
        self._heartbeat_timer = self._scheduler.call_later(self.config.heartbeat_s, self._heartbeat_tick)
        self.check_sleep_wake()
        self._flush_pending()

    def check_midnight(self) -> None:
        """Split running slices at local midnight once the date changed."""
        now = self._scheduler.now()
        today = day_key(now)
        if today == self._known_date:
            return
        logger.info(f"[tracking] Date changed {self._known_date} -> {today}, splitting slices")
        self._known_date = today
        self._cut_running(start_of_day(now), start_of_day(now))

    def check_sleep_wake(self) -> None:
        """Cut running slices at the last heartbeat when the clock jumped."""
        now = self._scheduler.now()
        last, self._last_heartbeat = self._last_heartbeat, now
        if now - last <= self.config.sleep_gap_s:
            return
        logger.info(f"[tracking] Wake after {now - last:.0f}s gap, cutting slices")
        self._cut_running(last, now)
        for project_id, state in self._projects.items():
            if not state.idle:
                self._arm_idle(project_id)

    def _cut_running(self, end: float, restart: float) -> None:
        for project_id, state in self._projects.items():
            if state.started_at is not None and end > state.started_at:
                self._save_project_slice(project_id, state.started_at, end)
                state.started_at = restart
        if self._global_started_at is not None and end > self._global_started_at:
            self._save_global_slice(self._global_started_at, end)
            self._global_started_at = restart

    # ---- Internals ------------------------------------------------------ #

    def _resume(self, project_id: str) -> None:
        state = self._projects[project_id]
        state.started_at = self._scheduler.now()
        logger.debug(f"[tracking] {project_id} resumed")
        self._arm_idle(project_id)
        self._sync_global()

    def _arm_idle(self, project_id: str) -> None:
        state = self._projects[project_id]
        cancel_timer(state.idle_timer)
        state.idle_timer = self._scheduler.call_later(self.config.idle_timeout_s, self.pause_tracking, project_id)

    def _sync_global(self) -> None:
        """Run the global slice iff some tracked project is running."""
        running = self.active_project_count() > 0
        if running and self._global_started_at is None:
            self._global_started_at = self._scheduler.now()
            logger.debug("[tracking] Global timer started")
        elif not running and self._global_started_at is not None:
            started, self._global_started_at = self._global_started_at, None
            self._save_global_slice(started, self._scheduler.now())
            logger.debug("[tracking] Global timer paused")

    def _save_project_slice(self, project_id: str, start: float, end: float) -> None:
        if end - start < self.config.min_slice_s:
            return
        self._flush_pending()
        self._persist((project_id, start, end))

    def _save_global_slice(self, start: float, end: float) -> None:
        if end - start < self.config.min_slice_s:
            return
        self._flush_pending()
        self._persist((None, start, end))

    def _persist(self, item: _PendingSlice) -> bool:
        try:
            self._write(*item)
        except PersistenceError as exc:
            logger.warning(f"[tracking] Could not persist slice, will retry: {exc}")
            self._pending.append(item)
            return False
        return True

    def _write(self, project_id: Optional[str], start: float, end: float) -> None:
        if project_id is None:
            record = GlobalTimeRecord.from_dict(self._store.global_time_tracking())
            record.add_slice(start, end, self.config.global_ring_size)
            self._store.update_global_time_tracking(record.to_dict())
            return
        project = self._store.find_by_id(project_id)
        if project is None:
            logger.debug(f"[tracking] Unknown project {project_id}, slice dropped")
            return
        record = TimeRecord.from_dict(project.time_tracking)
        record.add_slice(start, end, self.config.ring_size)
        self._store.update(project_id, {"time_tracking": record.to_dict()})

    def _flush_pending(self) -> None:
        while self._pending:
            item = self._pending[0]
            try:
                self._write(*item)
            except PersistenceError as exc:
                logger.debug(f"[tracking] Retry failed: {exc}")
                return
            self._pending.pop(0)


def _ms(seconds: float) -> int:
    return max(0, int(round(seconds * 1000)))
