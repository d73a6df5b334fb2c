"""Hooks provider: normalize Claude CLI hook messages into bus envelopes."""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from loguru import logger

from claude_terminal.bus.events import (
    ClaudeDone,
    ClaudePermission,
    ClaudeWorking,
    EventPayload,
    EventSource,
    Notification,
    PromptSubmit,
    SessionEnd,
    SessionStart,
    SubagentStart,
    SubagentStop,
    ToolEnd,
    ToolError,
    ToolStart,
)
from claude_terminal.bus.hub import EventBus
from claude_terminal.models import Substatus
from claude_terminal.providers.base import EventProvider
from claude_terminal.providers.transport.hook_server import HookEventServer
from claude_terminal.providers.transport.messages import HookMessage
from claude_terminal.session.project_store import Project, normalize_path
from claude_terminal.terminal.registry import SessionRegistry

IGNORED_HOOKS = frozenset({"PreCompact", "Setup", "TeammateIdle"})


class ProjectLookup(Protocol):
    def find_by_path(self, path: str) -> Optional[Project]: ...


class HooksProvider(EventProvider):
    """Translate hook messages posted by the Claude CLI.

    Messages arrive from ``HookEventServer`` (or ``handle()`` directly) on
    the core thread. A per-cwd table remembers which hook sessions are
    open so a missed ``SessionStart`` can be synthesised.
    """

    source = EventSource.HOOKS

    def __init__(
        self,
        bus: EventBus,
        store: ProjectLookup,
        registry: Optional[SessionRegistry] = None,
        server: Optional[HookEventServer] = None,
        require_open_terminal: bool = True,
    ) -> None:
        super().__init__()
        self._bus = bus
        self._store = store
        self._registry = registry
        self._server = server
        self._require_open_terminal = require_open_terminal
        self._sessions: dict[str, dict[str, Optional[str]]] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def open_sessions(self) -> dict[str, dict[str, Optional[str]]]:
        return dict(self._sessions)

    def _on_start(self) -> None:
        if self._server is not None:
            self._unsubscribe = self._server.subscribe(self.handle)

    def _on_stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._sessions.clear()

    # ---- Ingestion ------------------------------------------------------ #

    def handle(self, message: HookMessage) -> None:
        if not self._active:
            return
        cwd = normalize_path(message.cwd) if message.cwd else ""
        project = self._store.find_by_path(cwd) if cwd else None
        if project is None or not self._has_terminal(project):
            self._track_only(message, cwd)
            return

        hook = message.hook
        if hook == "SessionStart":
            self._sessions[cwd] = {"session_id": message.session_id, "model": message.model}
            self._emit(project, SessionStart(session_id=message.session_id, model=message.model))
        elif hook in ("Stop", "SessionEnd"):
            self._sessions.pop(cwd, None)
            self._emit(project, SessionEnd(reason="stop" if hook == "Stop" else "end"))
        elif hook == "PreToolUse":
            self._ensure_session(project, cwd, message)
            tool = message.tool_name or "unknown"
            self._emit(project, ToolStart(tool_name=tool))
            self._emit(project, ClaudeWorking(tool_name=tool, substatus=Substatus.TOOL_CALLING.value))
        elif hook == "PostToolUse":
            self._emit(project, ToolEnd(tool_name=message.tool_name or "unknown"))
        elif hook == "PostToolUseFailure":
            self._emit(project, ToolError(tool_name=message.tool_name or "unknown", error=message.error))
        elif hook == "UserPromptSubmit":
            self._ensure_session(project, cwd, message)
            self._emit(project, PromptSubmit(prompt=message.prompt))
        elif hook == "Notification":
            payload = message.payload
            self._emit(
                project,
                Notification(
                    title=str(payload.get("title") or "Claude"),
                    message=str(payload.get("message") or payload.get("body") or ""),
                ),
            )
        elif hook == "PermissionRequest":
            self._emit(project, ClaudePermission(tool_name=message.tool_name))
        elif hook == "SubagentStart":
            self._emit(project, SubagentStart(agent_name=message.agent_name))
        elif hook == "SubagentStop":
            self._emit(project, SubagentStop(agent_name=message.agent_name))
        elif hook == "TaskCompleted":
            self._emit(project, ClaudeDone())
        elif hook in IGNORED_HOOKS:
            return
        else:
            logger.debug(f"[hooks] Unknown hook: {hook}")

    def _has_terminal(self, project: Project) -> bool:
        if not self._require_open_terminal or self._registry is None:
            return True
        return bool(self._registry.list_by_project(project.id))

    def _track_only(self, message: HookMessage, cwd: str) -> None:
        if message.hook == "SessionStart" and cwd:
            self._sessions[cwd] = {"session_id": message.session_id, "model": message.model}
        elif message.hook in ("Stop", "SessionEnd"):
            self._sessions.pop(cwd, None)

    def _ensure_session(self, project: Project, cwd: str, message: HookMessage) -> None:
        if cwd in self._sessions:
            return
        self._sessions[cwd] = {"session_id": message.session_id, "model": None}
        logger.debug(f"[hooks] Synthetic session start for {project.id}")
        self._emit(project, SessionStart(session_id=message.session_id))

    def _emit(self, project: Project, data: EventPayload) -> None:
        self._bus.emit(
            data,
            source=self.source,
            project_id=project.id,
            project_path=normalize_path(project.path),
        )
