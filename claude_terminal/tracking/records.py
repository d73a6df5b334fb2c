"""Persisted time records and the calendar helpers they are keyed by.

All durations are integer milliseconds, all instants epoch milliseconds.
Calendar keys use local time: a day is ``YYYY-MM-DD``, a week is keyed by
its Monday and a month by ``YYYY-MM``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from loguru import logger

from claude_terminal.utils.helpers import short_id

MAX_SLICE_MS = 24 * 60 * 60 * 1000


def day_key(ts: float) -> str:
    return datetime.fromtimestamp(ts).date().isoformat()


def week_key(ts: float) -> str:
    day = datetime.fromtimestamp(ts).date()
    return (day - timedelta(days=day.weekday())).isoformat()


def month_key(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m")


def start_of_day(ts: float) -> float:
    """Local midnight at or before ``ts``."""
    day = datetime.fromtimestamp(ts).date()
    return datetime.combine(day, datetime.min.time()).timestamp()


def start_of_week(ts: float) -> float:
    return datetime.combine(date.fromisoformat(week_key(ts)), datetime.min.time()).timestamp()


def start_of_month(ts: float) -> float:
    day = datetime.fromtimestamp(ts).date().replace(day=1)
    return datetime.combine(day, datetime.min.time()).timestamp()


def _clean_ms(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value)


def _clean_key(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class Slice:
    """One persisted stretch of active time."""

    started_at: int
    ended_at: int
    duration_ms: int
    id: str = field(default_factory=short_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def parse(cls, raw: Any) -> Optional["Slice"]:
        """Return ``None`` for malformed or implausible entries."""
        if not isinstance(raw, dict):
            return None
        started, ended, duration = raw.get("started_at"), raw.get("ended_at"), raw.get("duration_ms")
        for value in (started, ended, duration):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                return None
        if duration <= 0 or duration > MAX_SLICE_MS or ended < started:
            return None
        return cls(int(started), int(ended), int(duration), str(raw.get("id") or short_id()))


@dataclass
class TimeRecord:
    """Per-project record: totals, today counter and a bounded slice ring."""

    total_ms: int = 0
    today_ms: int = 0
    last_active_date: Optional[str] = None
    sessions: list[Slice] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "TimeRecord":
        record = cls()
        if isinstance(raw, dict):
            record._load(raw)
        return record

    def _load(self, raw: dict[str, Any]) -> None:
        self.total_ms = _clean_ms(raw.get("total_ms"))
        self.today_ms = _clean_ms(raw.get("today_ms"))
        self.last_active_date = _clean_key(raw.get("last_active_date"))
        entries = raw.get("sessions")
        entries = entries if isinstance(entries, list) else []
        self.sessions = [s for s in (Slice.parse(e) for e in entries) if s is not None]
        dropped = len(entries) - len(self.sessions)
        if dropped:
            logger.warning(f"[tracking] Dropped {dropped} invalid slice(s) while loading a record")

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_ms": self.total_ms,
            "today_ms": self.today_ms,
            "last_active_date": self.last_active_date,
            "sessions": [s.to_dict() for s in self.sessions],
        }

    def add_slice(self, start: float, end: float, ring_size: int) -> Slice:
        """Account ``[start, end)`` (seconds) to the day the slice started on."""
        duration = int(round((end - start) * 1000))
        entry = Slice(int(start * 1000), int(end * 1000), duration)
        self.total_ms += duration
        day = day_key(start)
        if self.last_active_date == day:
            self.today_ms += duration
        elif self.last_active_date is None or day > self.last_active_date:
            self.today_ms = duration
            self.last_active_date = day
        self.sessions.append(entry)
        del self.sessions[:-ring_size]
        return entry

    def today_at(self, now: float) -> int:
        return self.today_ms if self.last_active_date == day_key(now) else 0


@dataclass
class GlobalTimeRecord(TimeRecord):
    """Wall-clock time while any project was active, with week and month counters."""

    week_ms: int = 0
    month_ms: int = 0
    week_start: Optional[str] = None
    month_start: Optional[str] = None

    def _load(self, raw: dict[str, Any]) -> None:
        super()._load(raw)
        self.week_ms = _clean_ms(raw.get("week_ms"))
        self.month_ms = _clean_ms(raw.get("month_ms"))
        self.week_start = _clean_key(raw.get("week_start"))
        self.month_start = _clean_key(raw.get("month_start"))

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            week_ms=self.week_ms,
            month_ms=self.month_ms,
            week_start=self.week_start,
            month_start=self.month_start,
        )
        return data

    def add_slice(self, start: float, end: float, ring_size: int) -> Slice:
        entry = super().add_slice(start, end, ring_size)
        week, month = week_key(start), month_key(start)
        if self.week_start == week:
            self.week_ms += entry.duration_ms
        elif self.week_start is None or week > self.week_start:
            self.week_ms, self.week_start = entry.duration_ms, week
        if self.month_start == month:
            self.month_ms += entry.duration_ms
        elif self.month_start is None or month > self.month_start:
            self.month_ms, self.month_start = entry.duration_ms, month
        return entry

    def period_totals(self, now: float) -> dict[str, int]:
        """Completed time for the periods containing ``now``.

        Counters are authoritative when keyed to the current period; a
        record written without them falls back to summing the ring.
        """
        if self.last_active_date is None and self.week_start is None and self.month_start is None:
            return self._ring_totals(now)
        return {
            "today": self.today_at(now),
            "week": self.week_ms if self.week_start == week_key(now) else 0,
            "month": self.month_ms if self.month_start == month_key(now) else 0,
        }

    def _ring_totals(self, now: float) -> dict[str, int]:
        bounds = {"today": start_of_day(now), "week": start_of_week(now), "month": start_of_month(now)}
        totals = dict.fromkeys(bounds, 0)
        for entry in self.sessions:
            started = entry.started_at / 1000
            for period, lower in bounds.items():
                if started >= lower:
                    totals[period] += entry.duration_ms
        return totals
