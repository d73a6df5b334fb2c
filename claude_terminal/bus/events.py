"""Event envelope contracts.

Every envelope carries exactly one payload variant; the variant class
determines the envelope ``type``. Wildcard subscribers dispatch on
``envelope.type`` or ``isinstance`` checks on ``envelope.data``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Union


class EventType(str, Enum):
    """Normalized envelope kinds."""

    SESSION_START = "session:start"
    SESSION_END = "session:end"
    TOOL_START = "tool:start"
    TOOL_END = "tool:end"
    TOOL_ERROR = "tool:error"
    PROMPT_SUBMIT = "prompt:submit"
    CLAUDE_WORKING = "claude:working"
    CLAUDE_DONE = "claude:done"
    CLAUDE_PERMISSION = "claude:permission"
    NOTIFICATION = "notification"
    SUBAGENT_START = "subagent:start"
    SUBAGENT_STOP = "subagent:stop"


class EventSource(str, Enum):
    """Which provider produced an envelope."""

    HOOKS = "hooks"
    SCRAPING = "scraping"


WILDCARD = "*"


@dataclass(frozen=True)
class SessionStart:
    type: ClassVar[EventType] = EventType.SESSION_START

    session_id: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class SessionEnd:
    type: ClassVar[EventType] = EventType.SESSION_END

    reason: str = "exit"
    code: Optional[int] = None


@dataclass(frozen=True)
class ToolStart:
    type: ClassVar[EventType] = EventType.TOOL_START

    tool_name: Optional[str] = None


@dataclass(frozen=True)
class ToolEnd:
    type: ClassVar[EventType] = EventType.TOOL_END

    tool_name: Optional[str] = None


@dataclass(frozen=True)
class ToolError:
    type: ClassVar[EventType] = EventType.TOOL_ERROR

    tool_name: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PromptSubmit:
    type: ClassVar[EventType] = EventType.PROMPT_SUBMIT

    prompt: Optional[str] = None


@dataclass(frozen=True)
class ClaudeWorking:
    type: ClassVar[EventType] = EventType.CLAUDE_WORKING

    tool_name: Optional[str] = None
    substatus: Optional[str] = None


@dataclass(frozen=True)
class ClaudeDone:
    type: ClassVar[EventType] = EventType.CLAUDE_DONE

    duration: Optional[str] = None
    tool_count: int = 0


@dataclass(frozen=True)
class ClaudePermission:
    type: ClassVar[EventType] = EventType.CLAUDE_PERMISSION

    tool_name: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    type: ClassVar[EventType] = EventType.NOTIFICATION

    title: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class SubagentStart:
    type: ClassVar[EventType] = EventType.SUBAGENT_START

    agent_name: Optional[str] = None


@dataclass(frozen=True)
class SubagentStop:
    type: ClassVar[EventType] = EventType.SUBAGENT_STOP

    agent_name: Optional[str] = None


EventPayload = Union[
    SessionStart,
    SessionEnd,
    ToolStart,
    ToolEnd,
    ToolError,
    PromptSubmit,
    ClaudeWorking,
    ClaudeDone,
    ClaudePermission,
    Notification,
    SubagentStart,
    SubagentStop,
]


@dataclass(frozen=True)
class EventEnvelope:
    """Immutable envelope delivered on the event bus."""

    data: EventPayload
    timestamp_ms: int
    source: EventSource
    project_id: Optional[str] = None
    project_path: Optional[str] = None
    terminal_id: Optional[str] = None

    @property
    def type(self) -> EventType:
        return self.data.type
