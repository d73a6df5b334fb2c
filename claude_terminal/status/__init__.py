"""Tab status, notifications and dashboard counters."""

from claude_terminal.status.dispatcher import DashboardStats, StatusDispatcher, TabStatusChange
from claude_terminal.status.notifications import (
    ConsoleNotificationSink,
    DesktopNotificationSink,
    NotificationKind,
    NotificationSink,
    RecordingNotificationSink,
)

__all__ = [
    "ConsoleNotificationSink",
    "DashboardStats",
    "DesktopNotificationSink",
    "NotificationKind",
    "NotificationSink",
    "RecordingNotificationSink",
    "StatusDispatcher",
    "TabStatusChange",
]
