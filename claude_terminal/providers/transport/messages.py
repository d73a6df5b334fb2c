"""Wire format of hook messages posted by ``claude-terminal hook``.

Body of ``POST /hook``::

    {"hook": "PreToolUse", "timestamp": "2026-01-01T10:00:00Z",
     "stdin": {...payload Claude passed to the hook...}, "cwd": "/path"}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class HookMessage:
    """One hook invocation."""

    hook: str
    timestamp: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    cwd: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HookMessage":
        stdin = raw.get("stdin")
        if isinstance(stdin, dict):
            payload = stdin
        elif stdin is None:
            payload = {}
        else:
            payload = {"_raw": stdin}
        cwd = raw.get("cwd") or payload.get("cwd") or None
        return cls(
            hook=str(raw.get("hook") or "unknown"),
            timestamp=raw.get("timestamp"),
            payload=payload,
            cwd=str(cwd) if cwd else None,
        )

    @classmethod
    def from_json(cls, body: str | bytes) -> "HookMessage":
        """Parse a request body; raises ValueError when malformed."""
        raw = json.loads(body)
        if not isinstance(raw, dict):
            raise ValueError("hook message must be a JSON object")
        return cls.from_dict(raw)

    def to_dict(self) -> dict[str, Any]:
        return {"hook": self.hook, "timestamp": self.timestamp, "stdin": self.payload, "cwd": self.cwd}

    def _text(self, *keys: str) -> Optional[str]:
        for key in keys:
            value = self.payload.get(key)
            if value:
                return str(value)
        return None

    @property
    def tool_name(self) -> Optional[str]:
        return self._text("tool_name", "tool")

    @property
    def session_id(self) -> Optional[str]:
        return self._text("session_id")

    @property
    def model(self) -> Optional[str]:
        return self._text("model")

    @property
    def prompt(self) -> Optional[str]:
        return self._text("prompt")

    @property
    def error(self) -> Optional[str]:
        return self._text("error")

    @property
    def agent_name(self) -> Optional[str]:
        return self._text("agent_name", "agentName")


def parse_stdin(text: str) -> Optional[dict[str, Any]]:
    """Decode the JSON Claude writes to a hook's stdin."""
    text = text.strip()
    if not text:
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return {"_raw": text}
    return value if isinstance(value, dict) else {"_raw": value}
