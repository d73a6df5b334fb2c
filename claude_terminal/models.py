"""Shared value types."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class SessionKind(str, Enum):
    CLAUDE = "claude"
    FIVEM = "fivem"
    WEBAPP = "webapp"
    SHELL = "shell"
    FILE_VIEW = "file-view"


class SessionStatus(str, Enum):
    READY = "ready"
    WORKING = "working"


class Substatus(str, Enum):
    THINKING = "thinking"
    TOOL_CALLING = "tool_calling"
    PERMISSION = "permission"
    NONE = "none"


@dataclass(frozen=True)
class ProjectRef:
    """Project identity carried by a session."""

    id: str
    path: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or os.path.basename(self.path.rstrip("/\\")) or self.id
