"""Classify what Claude left on screen when a turn ends."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from claude_terminal.engine.patterns import GlyphPatterns

QUESTION_MIN_LEN = 10
QUESTION_MAX_LEN = 200


class AttentionKind(str, Enum):
    QUESTION = "question"
    PERMISSION = "permission"
    DONE = "done"


@dataclass(frozen=True)
class Attention:
    """Result of scanning the trailing lines of a session."""

    kind: AttentionKind
    text: Optional[str] = None


DONE = Attention(AttentionKind.DONE)


def extract_attention(
    lines: Sequence[str],
    patterns: GlyphPatterns,
    max_lines: int = 30,
) -> Attention:
    """Return question / permission / done for the last ``max_lines`` lines.

    A trailing line ending in "?" whose length is in (10, 200] is a
    question; otherwise any line matching the permission pattern makes it
    a permission prompt; otherwise the turn is simply done.
    """
    window = patterns.content_lines(lines)[-max_lines:] if max_lines > 0 else []
    for line in reversed(window):
        text = line.strip()
        if text.endswith("?") and QUESTION_MIN_LEN < len(text) <= QUESTION_MAX_LEN:
            return Attention(AttentionKind.QUESTION, text)
    for line in reversed(window):
        if patterns.is_permission(line):
            return Attention(AttentionKind.PERMISSION, line.strip())
    return DONE
