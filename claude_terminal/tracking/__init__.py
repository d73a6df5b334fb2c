"""Time tracking: per-project and global slices with idle detection."""

from claude_terminal.tracking.records import GlobalTimeRecord, TimeRecord
from claude_terminal.tracking.time_tracker import TimeTracker

__all__ = ["GlobalTimeRecord", "TimeRecord", "TimeTracker"]
