"""Glyph and line patterns for reading Claude's title and rendered output.

The hosted CLI never prints an explicit end-of-turn marker, so the state
engine relies on a handful of visual conventions:

    ⠋ Read foo.txt          title while working (Braille spinner)
    ✳ Fix login bug         title when a turn may be over
    ✻ Worked for 1m 51s     rendered line once a turn is definitely done
    · Pondering…            rendered line while a turn is still running
    ⎿  Read 12 lines        tool-result continuation line

Glyph sets come from ``EngineConfig`` so they can follow CLI releases.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from claude_terminal.config.schema import EngineConfig

# ── Shared patterns ──────────────────────────────────────────────────────────

DURATION_PATTERN = r"(?:\d+h )?(?:\d+m )?\d+s"
TOOL_RESULT_MARKER = "⎿"
TOKEN_RE = re.compile(r"[A-Za-z][A-Za-z0-9_]*")

# Prompt box, separators and footer hints that sit below every response.
CHROME_RE = re.compile(
    r"^[\s─━═╌┄╭╮╰╯│┃]*$"
    r"|^\s*[│┃]?\s*[>❯›](?:\s|$)"
    r"|^\s*\?\s+for shortcuts"
    r"|^\s*(?:⏵⏵|⏸)\s"
)

IMPERATIVE_WORDS: tuple[str, ...] = (
    "proceed",
    "continue",
    "run",
    "execute",
    "edit",
    "write",
    "create",
    "delete",
    "remove",
    "overwrite",
    "apply",
    "make",
    "use",
    "grant",
    "fetch",
)


class GlyphPatterns:
    """Compiled patterns for one engine configuration."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        config = config or EngineConfig()
        self._spinner_lo = ord(config.spinner_first)
        self._spinner_hi = ord(config.spinner_last)
        self.completion_glyphs = frozenset(config.completion_glyphs)
        self.tool_names = frozenset(config.tool_names)

        done = re.escape(config.done_line_glyphs)
        working = re.escape(config.working_line_glyphs)
        self.done_line_re = re.compile(rf"^\s*[{done}]\s+\S+\s+for\s+(?P<duration>{DURATION_PATTERN})(?!\S)")
        self.working_line_re = re.compile(rf"^\s*[{working}]\s+\S+…")

        words = sorted({*IMPERATIVE_WORDS, *(name.lower() for name in config.tool_names)})
        self.permission_re = re.compile(
            r"\b(?:allow|approve)\b"
            r"|\by/n\b"
            r"|\byes/no\b"
            rf"|\b(?:{'|'.join(re.escape(word) for word in words)})\b[^?\n]{{0,80}}\?",
            re.IGNORECASE,
        )

    # ---- Titles -------------------------------------------------------- #

    def is_spinner(self, ch: str) -> bool:
        return len(ch) == 1 and self._spinner_lo <= ord(ch) <= self._spinner_hi

    def is_completion(self, ch: str) -> bool:
        return ch in self.completion_glyphs

    def first_token(self, text: str) -> Optional[str]:
        """First alphabetic token of a title body, if any."""
        match = TOKEN_RE.search(text)
        return match.group(0) if match else None

    def is_tool(self, token: Optional[str]) -> bool:
        return token is not None and token in self.tool_names

    # ---- Rendered lines ------------------------------------------------ #

    def done_duration(self, line: str) -> Optional[str]:
        """Return the duration when ``line`` reads like ``✻ Worked for 3s``."""
        match = self.done_line_re.match(line)
        return match.group("duration") if match else None

    def is_working_line(self, line: str) -> bool:
        return bool(self.working_line_re.match(line))

    def is_permission(self, line: str) -> bool:
        return bool(self.permission_re.search(line))

    def is_spinner_line(self, line: str) -> bool:
        stripped = line.lstrip()
        return bool(stripped) and self.is_spinner(stripped[0])

    def content_lines(self, lines: Iterable[str]) -> list[str]:
        """Drop blank, spinner and prompt-chrome lines."""
        result: list[str] = []
        for line in lines:
            if not line.strip() or self.is_spinner_line(line) or CHROME_RE.match(line):
                continue
            result.append(line.rstrip())
        return result


def has_tool_result_marker(line: str) -> bool:
    return line.lstrip().startswith(TOOL_RESULT_MARKER)
