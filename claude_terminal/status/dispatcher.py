"""Status dispatcher: tab states, user notifications and dashboard counters.

It listens on two channels. Bus envelopes carry provider events (either
hooks or scraping); the registry observer interface carries engine state
for every Claude session regardless of the active provider.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from claude_terminal.bus.events import (
    WILDCARD,
    ClaudeWorking,
    EventEnvelope,
    EventSource,
    EventType,
    SessionEnd,
    ToolError,
    ToolStart,
)
from claude_terminal.bus.hub import EventBus
from claude_terminal.config.schema import Config, Settings
from claude_terminal.engine.attention import AttentionKind
from claude_terminal.engine.state import ReadyInfo, StatusChange
from claude_terminal.models import SessionKind, SessionStatus, Substatus
from claude_terminal.providers.base import BaseSessionObserver
from claude_terminal.scheduler import Scheduler
from claude_terminal.status.notifications import NotificationKind, NotificationSink
from claude_terminal.terminal.registry import SessionRegistry
from claude_terminal.terminal.session import Session

DEBUG_ENV = "CLAUDE_TERMINAL_EVENT_DEBUG"
ATTENTION_TOOLS = {
    "askuserquestion": NotificationKind.QUESTION,
    "exitplanmode": NotificationKind.PLAN,
}
BODY_DONE = "Done"
BODY_QUESTION = "Claude has a question"
BODY_PERMISSION = "Permission required"
BODY_PLAN = "Plan ready for review"
SHOW_LABELS = ("Show",)


@dataclass(frozen=True)
class TabStatusChange:
    session_id: str
    previous: Optional[SessionStatus]
    status: SessionStatus
    substatus: Substatus


@dataclass
class ToolStat:
    count: int = 0
    errors: int = 0


@dataclass
class DashboardStats:
    """Hook-only counters accumulated for the lifetime of the process."""

    tool_stats: dict[str, ToolStat] = field(default_factory=dict)
    hook_session_count: int = 0

    def tool(self, name: str) -> ToolStat:
        return self.tool_stats.setdefault(name, ToolStat())

    def to_dict(self) -> dict:
        return {
            "tool_stats": {name: {"count": s.count, "errors": s.errors} for name, s in self.tool_stats.items()},
            "hook_session_count": self.hook_session_count,
        }


@dataclass
class _HookContext:
    tool_count: int = 0
    tool_names: list[str] = field(default_factory=list)

    def record(self, tool_name: Optional[str]) -> None:
        self.tool_count += 1
        if tool_name and tool_name not in self.tool_names:
            self.tool_names.append(tool_name)

    def body(self) -> str:
        if not self.tool_count:
            return BODY_DONE
        shown = ", ".join(self.tool_names[:3])
        extra = f" +{len(self.tool_names) - 3}" if len(self.tool_names) > 3 else ""
        return f"{tool_count_text(self.tool_count)} ({shown}{extra})" if shown else tool_count_text(self.tool_count)


TabObserver = Callable[[TabStatusChange], None]


def tool_count_text(count: int) -> str:
    return "1 tool call" if count == 1 else f"{count} tool calls"


class StatusDispatcher(BaseSessionObserver):
    """Translate events into tab status, notifications and stats."""

    def __init__(
        self,
        bus: EventBus,
        registry: SessionRegistry,
        sink: NotificationSink,
        *,
        scheduler: Scheduler,
        config: Optional[Config] = None,
        settings: Optional[Settings] = None,
        project_name: Optional[Callable[[str], Optional[str]]] = None,
    ) -> None:
        self._bus = bus
        self._registry = registry
        self._sink = sink
        self._scheduler = scheduler
        self.config = config or registry.config
        self._settings = settings or Settings(self.config)
        self._project_name = project_name or (lambda _pid: None)

        self.mode = EventSource.SCRAPING
        self.window_focused = True
        self.active_session_id: Optional[str] = None
        self.stats = DashboardStats()

        self._tabs: dict[str, tuple[SessionStatus, Substatus]] = {}
        self._last_attention: dict[str, float] = {}
        self._hook_contexts: dict[str, _HookContext] = {}
        self._tab_observers: list[TabObserver] = []
        self._unsubscribers: list[Callable[[], None]] = []

    # ---- Wiring --------------------------------------------------------- #

    def start(self) -> None:
        if self._unsubscribers:
            return
        bus = self._bus
        self._unsubscribers = [
            bus.subscribe(EventType.CLAUDE_WORKING, self._on_working),
            bus.subscribe(EventType.SESSION_START, self._on_session_start),
            bus.subscribe(EventType.SESSION_END, self._on_session_end),
            bus.subscribe(EventType.TOOL_START, self._on_tool_start),
            bus.subscribe(EventType.TOOL_END, self._on_tool_end),
            bus.subscribe(EventType.TOOL_ERROR, self._on_tool_error),
            bus.subscribe(EventType.CLAUDE_PERMISSION, self._on_permission),
            self._registry.add_observer(self),
        ]
        if os.environ.get(DEBUG_ENV):
            self._unsubscribers.append(bus.subscribe(WILDCARD, self._debug))

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def add_tab_observer(self, observer: TabObserver) -> Callable[[], None]:
        self._tab_observers.append(observer)

        def remove() -> None:
            if observer in self._tab_observers:
                self._tab_observers.remove(observer)

        return remove

    def set_mode(self, mode: EventSource) -> None:
        self.mode = mode
        self._hook_contexts.clear()

    def set_window_focused(self, focused: bool) -> None:
        self.window_focused = focused

    def set_active_session(self, session_id: Optional[str]) -> None:
        self.active_session_id = session_id

    def tab_status(self, session_id: str) -> Optional[tuple[SessionStatus, Substatus]]:
        return self._tabs.get(session_id)

    # ---- Registry observer --------------------------------------------- #

    def on_status_change(self, session: Session, change: StatusChange) -> None:
        previous = self._set_tab(session.id, change.status, change.substatus)
        if change.ready is None:
            return
        if self.mode is EventSource.SCRAPING and previous is SessionStatus.WORKING:
            self._notify_ready(session, change.ready)

    def on_session_close(self, session: Session, exit_code: Optional[int]) -> None:
        del exit_code
        tab = self._tabs.get(session.id)
        if tab is not None:
            self._set_tab(session.id, SessionStatus.READY, Substatus.NONE)
            self._tabs.pop(session.id, None)
        # A ready already notified; only an exit mid-task still owes one.
        if (
            self.mode is EventSource.SCRAPING
            and session.kind is SessionKind.CLAUDE
            and tab is not None
            and tab[0] is SessionStatus.WORKING
        ):
            project_id = session.project.id if session.project else None
            self._show(NotificationKind.DONE, self._title(project_id, None, session), BODY_DONE, session.id)
        if self.active_session_id == session.id:
            self.active_session_id = None

    # ---- Bus consumers -------------------------------------------------- #

    def _on_working(self, envelope: EventEnvelope) -> None:
        data = envelope.data
        if not isinstance(data, ClaudeWorking):
            return
        substatus = _substatus(data.substatus)
        if envelope.source is EventSource.HOOKS:
            for session in self._claude_sessions(envelope.project_id):
                self._set_tab(session.id, SessionStatus.WORKING, substatus)
        elif envelope.terminal_id:
            self._set_tab(envelope.terminal_id, SessionStatus.WORKING, substatus)

    def _on_session_start(self, envelope: EventEnvelope) -> None:
        if envelope.source is not EventSource.HOOKS:
            return
        self.stats.hook_session_count += 1
        if envelope.project_id:
            self._hook_contexts[envelope.project_id] = _HookContext()

    def _on_session_end(self, envelope: EventEnvelope) -> None:
        data = envelope.data
        if not isinstance(data, SessionEnd):
            return
        if envelope.source is EventSource.SCRAPING:
            if envelope.terminal_id and envelope.terminal_id in self._tabs:
                self._set_tab(envelope.terminal_id, SessionStatus.READY, Substatus.NONE)
            return
        project_id = envelope.project_id
        context = self._hook_contexts.pop(project_id, None) if project_id else None
        sessions = self._claude_sessions(project_id)
        for session in sessions:
            self._set_tab(session.id, SessionStatus.READY, Substatus.NONE)
        body = context.body() if context is not None else BODY_DONE
        session_id = sessions[0].id if sessions else None
        self._show(NotificationKind.DONE, self._title(project_id, None), body, session_id)

    def _on_tool_start(self, envelope: EventEnvelope) -> None:
        data = envelope.data
        if not isinstance(data, ToolStart):
            return
        if envelope.source is not EventSource.HOOKS or not envelope.project_id:
            return
        project_id = envelope.project_id
        self._hook_contexts.setdefault(project_id, _HookContext()).record(data.tool_name)
        kind = ATTENTION_TOOLS.get((data.tool_name or "").lower())
        if kind is None or not self._attention_allowed(project_id):
            return
        body = BODY_QUESTION if kind is NotificationKind.QUESTION else BODY_PLAN
        self._show(kind, self._title(project_id, None), body, self._first_session_id(project_id))

    def _on_tool_end(self, envelope: EventEnvelope) -> None:
        if envelope.source is not EventSource.HOOKS:
            return
        name = getattr(envelope.data, "tool_name", None) or "unknown"
        self.stats.tool(name).count += 1

    def _on_tool_error(self, envelope: EventEnvelope) -> None:
        data = envelope.data
        if not isinstance(data, ToolError):
            return
        if envelope.source is not EventSource.HOOKS:
            return
        name = data.tool_name or "unknown"
        self.stats.tool(name).errors += 1
        logger.warning(f"[dispatch] Tool error in {envelope.project_id}: {name} {data.error or ''}".rstrip())

    def _on_permission(self, envelope: EventEnvelope) -> None:
        project_id = envelope.project_id
        if envelope.source is not EventSource.HOOKS or not project_id:
            return
        if not self._attention_allowed(project_id):
            return
        self._show(
            NotificationKind.PERMISSION,
            self._title(project_id, None),
            BODY_PERMISSION,
            self._first_session_id(project_id),
        )

    def _debug(self, envelope: EventEnvelope) -> None:
        logger.debug(f"[bus] {envelope.type.value} ({envelope.source.value}) {envelope.data}")

    # ---- Internals ------------------------------------------------------ #

    def _set_tab(self, session_id: str, status: SessionStatus, substatus: Substatus) -> Optional[SessionStatus]:
        current = self._tabs.get(session_id)
        previous = current[0] if current else None
        if current == (status, substatus):
            return previous
        self._tabs[session_id] = (status, substatus)
        change = TabStatusChange(session_id, previous, status, substatus)
        for observer in list(self._tab_observers):
            try:
                observer(change)
            except Exception:
                logger.exception(f"[dispatch] Tab observer failed for {session_id}")
        return previous

    def _notify_ready(self, session: Session, ready: ReadyInfo) -> None:
        project_id = session.project.id if session.project else None
        attention = ready.attention
        if attention.kind is AttentionKind.QUESTION:
            kind, body = NotificationKind.QUESTION, attention.text or BODY_QUESTION
        elif attention.kind is AttentionKind.PERMISSION or ready.reason == "permission":
            kind = NotificationKind.PERMISSION
            body = f"{BODY_PERMISSION}: {attention.text}" if attention.text else BODY_PERMISSION
        elif ready.tool_count:
            kind, body = NotificationKind.DONE, tool_count_text(ready.tool_count)
        else:
            kind, body = NotificationKind.DONE, BODY_DONE
        if kind is not NotificationKind.DONE and project_id and not self._attention_allowed(project_id):
            return
        self._show(kind, self._title(project_id, ready.task_label, session), body, session.id)

    def _attention_allowed(self, project_id: str) -> bool:
        now = self._scheduler.now()
        last = self._last_attention.get(project_id)
        if last is not None and now - last < self.config.dispatch.attention_cooldown_s:
            logger.debug(f"[dispatch] Attention notification for {project_id} suppressed (cooldown)")
            return False
        self._last_attention[project_id] = now
        return True

    def _show(self, kind: NotificationKind, title: str, body: str, session_id: Optional[str]) -> None:
        if not self._settings.get("notifications_enabled", True):
            return
        if self.window_focused and session_id is not None and session_id == self.active_session_id:
            logger.debug(f"[dispatch] {kind.value} notification skipped, {session_id} is in view")
            return
        try:
            self._sink.show(kind, title, body, session_id, SHOW_LABELS if session_id else None)
        except Exception:
            logger.exception(f"[dispatch] Notification sink failed ({kind.value})")

    def show_error(self, title: str, body: str) -> None:
        """Originator-caused failure such as a spawn error; shown regardless of focus."""
        if not self._settings.get("notifications_enabled", True):
            return
        try:
            self._sink.show(NotificationKind.ERROR, title, body)
        except Exception:
            logger.exception("[dispatch] Notification sink failed (error)")

    def _title(self, project_id: Optional[str], task_label: Optional[str], session: Optional[Session] = None) -> str:
        if task_label and self._settings.get("notification_title_prefers_task_label", True):
            return task_label
        if session is not None and session.project is not None:
            return session.project.display_name
        name = self._project_name(project_id) if project_id else None
        if name:
            return name
        for candidate in self._claude_sessions(project_id):
            if candidate.project is not None:
                return candidate.project.display_name
        return self.config.dispatch.default_title

    def _claude_sessions(self, project_id: Optional[str]) -> list[Session]:
        if not project_id:
            return []
        return [s for s in self._registry.list_by_project(project_id) if s.kind is SessionKind.CLAUDE]

    def _first_session_id(self, project_id: str) -> Optional[str]:
        sessions = self._claude_sessions(project_id)
        return sessions[0].id if sessions else None


def _substatus(value: Optional[str]) -> Substatus:
    try:
        return Substatus(value) if value else Substatus.NONE
    except ValueError:
        return Substatus.NONE
