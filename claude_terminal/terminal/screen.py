"""Rendered-text view of a PTY stream built on pyte.

Only two things are needed from the emulator: the plain text of the last
few rendered lines and the OSC window-title changes embedded in the
stream. Attributes and deep scrollback are ignored.
"""

from __future__ import annotations

import threading

import pyte


class TitleCapturingScreen(pyte.HistoryScreen):
    """HistoryScreen that queues every OSC 0/2 title it sees."""

    def __init__(self, columns: int, lines: int, history: int = 1000) -> None:
        super().__init__(columns, lines, history=history)
        self.pending_titles: list[str] = []

    def set_title(self, param: str) -> None:
        super().set_title(param)
        self.pending_titles.append(param)


class RenderedScreen:
    """Feed raw PTY text in, read titles and trailing lines out."""

    def __init__(self, cols: int, rows: int, history: int = 1000) -> None:
        self._render_lock = threading.Lock()
        self._screen = TitleCapturingScreen(cols, rows, history=history)
        self._screen.set_mode(pyte.modes.LNM)
        self._stream = pyte.Stream(self._screen)

    @property
    def title(self) -> str:
        return self._screen.title

    def feed(self, data: str) -> list[str]:
        """Feed a chunk and return the titles it set, in order."""
        with self._render_lock:
            self._stream.feed(data)
            titles = self._screen.pending_titles
            self._screen.pending_titles = []
        return titles

    def resize(self, cols: int, rows: int) -> None:
        with self._render_lock:
            self._screen.resize(rows, cols)

    def tail_lines(self, count: int) -> list[str]:
        """Return up to ``count`` trailing non-blank rendered lines, oldest first."""
        with self._render_lock:
            lines = self._all_lines()
        non_blank = [line for line in lines if line.strip()]
        return non_blank[-count:] if count > 0 else []

    def snapshot(self) -> str:
        """Full rendered text: history plus the visible display."""
        with self._render_lock:
            lines = self._all_lines()
        while lines and not lines[-1]:
            lines.pop()
        return "\n".join(lines)

    def _all_lines(self) -> list[str]:
        history_lines = [self._history_line_to_text(line) for line in self._screen.history.top]
        display_lines = [line.rstrip() for line in self._screen.display]
        return history_lines + display_lines

    def _history_line_to_text(self, line: object) -> str:
        if isinstance(line, dict):
            cols = self._screen.columns
            return "".join(line[x].data if x in line else " " for x in range(cols)).rstrip()
        return str(line).rstrip()
