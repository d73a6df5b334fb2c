"""Keyboard input routing: Enter detection, input buffer, auto-naming."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from claude_terminal.terminal.session import Session

ENTER_KEYS = ("\r", "\n")
BACKSPACE_KEYS = ("\x7f", "\b")

TITLE_STOP_WORDS = frozenset(
    {
        "le", "la", "les", "un", "une", "des", "du", "de", "et", "ou", "en", "dans", "sur", "pour", "par",
        "avec", "the", "a", "an", "and", "or", "in", "on", "for", "with", "to", "of", "is", "are", "it",
        "this", "that", "me", "moi", "mon", "ma", "mes", "ce", "cette", "ces", "je", "tu", "il", "elle",
        "nous", "vous", "ils", "elles", "can", "you", "please", "help", "want", "need", "like", "would",
        "could", "should", "peux", "veux", "fais", "fait", "faire", "est", "sont", "ai", "as", "avez", "ont",
    }
)
_NON_WORD_RE = re.compile(r"[^\w\s-]")
TITLE_MAX_WORDS = 4


def extract_title_from_input(text: str) -> Optional[str]:
    """Build a short tab title from a submitted prompt.

    Slash commands and very short inputs are ignored. Up to four words
    longer than two characters that are not stop words are kept and
    capitalised: "can you fix the login redirect bug" -> "Fix Login Redirect Bug".
    """
    text = text.strip()
    if text.startswith("/") or len(text) < 5:
        return None
    words = [
        word
        for word in _NON_WORD_RE.sub(" ", text.lower()).split()
        if len(word) > 2 and word not in TITLE_STOP_WORDS
    ]
    if not words:
        return None
    return " ".join(word[:1].upper() + word[1:] for word in words[:TITLE_MAX_WORDS])


@dataclass(frozen=True)
class InputEffect:
    """What one input chunk meant."""

    enter: bool = False
    submitted: Optional[str] = None
    title: Optional[str] = None


NO_EFFECT = InputEffect()


class InputRouter:
    """Maintain ``Session.input_buffer`` from keystrokes."""

    def __init__(self, buffer_limit: int = 1000) -> None:
        self.buffer_limit = buffer_limit

    def route(self, session: Session, data: str) -> InputEffect:
        if data in ENTER_KEYS:
            submitted = session.input_buffer.strip()
            session.input_buffer = ""
            if not submitted:
                return InputEffect(enter=True)
            return InputEffect(enter=True, submitted=submitted, title=extract_title_from_input(submitted))
        if data in BACKSPACE_KEYS:
            session.input_buffer = session.input_buffer[:-1]
            return NO_EFFECT
        if len(data) == 1 and data.isprintable():
            if len(session.input_buffer) < self.buffer_limit:
                session.input_buffer += data
        return NO_EFFECT


class Debouncer:
    """Accept at most one call per ``interval_s``; later calls are dropped."""

    def __init__(self, interval_s: float, clock: Callable[[], float]) -> None:
        self.interval_s = interval_s
        self._clock = clock
        self._last: Optional[float] = None

    def allow(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval_s:
            return False
        self._last = now
        return True
