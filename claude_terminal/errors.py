"""Exception types raised inside the core.

The public ``Core`` surface converts these into failure values; internal
layers raise them so callers can decide how loud a failure should be.
"""

from __future__ import annotations


class ClaudeTerminalError(Exception):
    """Base class for all core errors."""


class SpawnError(ClaudeTerminalError):
    """A child process or its pseudo-terminal could not be created."""

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command


class ClosedSessionError(ClaudeTerminalError):
    """Write or resize attempted on a session whose child already exited."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} is closed")
        self.session_id = session_id


class PersistenceError(ClaudeTerminalError):
    """The project store could not persist an update."""
