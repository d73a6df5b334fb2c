"""Notification sinks: desktop toasts and console output."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence

from loguru import logger
from rich.console import Console
from rich.markup import escape

APP_NAME = "claude-terminal"


class NotificationKind(str, Enum):
    DONE = "done"
    QUESTION = "question"
    PERMISSION = "permission"
    PLAN = "plan"
    ERROR = "error"


class NotificationSink(Protocol):
    def show(
        self,
        kind: NotificationKind,
        title: str,
        body: str,
        session_id: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> None: ...


class DesktopNotificationSink:
    """OS notification via win10toast on Windows, plyer elsewhere."""

    def __init__(self, timeout_s: int = 6) -> None:
        self.timeout_s = timeout_s

    def show(
        self,
        kind: NotificationKind,
        title: str,
        body: str,
        session_id: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> None:
        del session_id, labels
        if os.name == "nt" and self._toast(title, body):
            return
        try:
            from plyer import notification

            notification.notify(title=title, message=body, app_name=APP_NAME, timeout=self.timeout_s)
        except Exception as exc:
            # plyer raises NotImplementedError or backend errors when no notifier exists.
            logger.debug(f"[notify] Desktop notification unavailable ({kind.value}): {exc}")

    def _toast(self, title: str, body: str) -> bool:
        try:
            from win10toast import ToastNotifier  # type: ignore[import-not-found]

            ToastNotifier().show_toast(title, body, duration=self.timeout_s, threaded=True)
            return True
        except Exception as exc:
            logger.debug(f"[notify] win10toast failed: {exc}")
            return False


_KIND_STYLES = {
    NotificationKind.DONE: "green",
    NotificationKind.QUESTION: "yellow",
    NotificationKind.PERMISSION: "bold yellow",
    NotificationKind.PLAN: "cyan",
    NotificationKind.ERROR: "bold red",
}


class ConsoleNotificationSink:
    """Print notifications with rich; used by the headless CLI."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def show(
        self,
        kind: NotificationKind,
        title: str,
        body: str,
        session_id: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> None:
        style = _KIND_STYLES.get(kind, "white")
        suffix = f" [dim]({escape(session_id)})[/dim]" if session_id else ""
        tags = f" [dim]{escape(', '.join(labels))}[/dim]" if labels else ""
        self.console.print(f"[{style}]{kind.value:>10}[/{style}] [bold]{escape(title)}[/bold]: {escape(body)}{suffix}{tags}")


@dataclass(frozen=True)
class ShownNotification:
    kind: NotificationKind
    title: str
    body: str
    session_id: Optional[str] = None
    labels: tuple[str, ...] = ()


@dataclass
class RecordingNotificationSink:
    """Keeps every notification in memory."""

    shown: list[ShownNotification] = field(default_factory=list)

    def show(
        self,
        kind: NotificationKind,
        title: str,
        body: str,
        session_id: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> None:
        self.shown.append(ShownNotification(kind, title, body, session_id, tuple(labels or ())))

    def of_kind(self, kind: NotificationKind) -> list[ShownNotification]:
        return [n for n in self.shown if n.kind is kind]
