"""PTY sessions, launch definitions and the session registry."""

from claude_terminal.terminal.registry import SessionRegistry
from claude_terminal.terminal.session import PtySession, Session

__all__ = ["PtySession", "Session", "SessionRegistry"]
