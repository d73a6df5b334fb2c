"""Per-session working/ready state machine for Claude terminals.

The CLI has no definitive end-of-turn marker. A completion glyph in the
title only means "maybe done", so a ready transition is scheduled with
an adaptive delay and then confirmed against the rendered screen:

1. ``✻ Worked for 1m 51s``      definitely done, capture the duration
2. ``· Pondering…``             definitely still working, look again later
3. permission prompt            ready, waiting on the user
4. ``⎿`` last while output flows  a tool chain is still running
5. output still flowing         look again later
6. silent                       ready

A fast-track pass shortly after scheduling skips the wait when (1) or
(3) already matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from claude_terminal.config.schema import EngineConfig
from claude_terminal.engine.attention import DONE, Attention, extract_attention
from claude_terminal.engine.patterns import GlyphPatterns, has_tool_result_marker
from claude_terminal.models import SessionStatus, Substatus
from claude_terminal.scheduler import Scheduler, TimerHandle, cancel_timer


@dataclass(frozen=True)
class ReadyInfo:
    """Context captured when a turn is declared complete."""

    reason: str
    duration: Optional[str] = None
    tool_count: int = 0
    last_tool: Optional[str] = None
    task_label: Optional[str] = None
    attention: Attention = DONE


@dataclass(frozen=True)
class StatusChange:
    """Emitted whenever status or substatus changes."""

    session_id: str
    previous: SessionStatus
    status: SessionStatus
    substatus: Substatus
    tool_name: Optional[str] = None
    ready: Optional[ReadyInfo] = None

    @property
    def became_working(self) -> bool:
        return self.previous is SessionStatus.READY and self.status is SessionStatus.WORKING

    @property
    def became_ready(self) -> bool:
        return self.previous is SessionStatus.WORKING and self.status is SessionStatus.READY


class ClaudeStateMachine:
    """Track one Claude session from its title and screen contents."""

    def __init__(
        self,
        session_id: str,
        *,
        scheduler: Scheduler,
        tail_lines: Callable[[int], list[str]],
        last_output_at: Callable[[], float],
        on_change: Callable[[StatusChange], None],
        config: EngineConfig | None = None,
        patterns: GlyphPatterns | None = None,
    ) -> None:
        self.session_id = session_id
        self.config = config or EngineConfig()
        self.patterns = patterns or GlyphPatterns(self.config)
        self._scheduler = scheduler
        self._tail_lines = tail_lines
        self._last_output_at = last_output_at
        self._on_change = on_change

        self.status = SessionStatus.READY
        self.substatus = Substatus.NONE
        self.task_label: Optional[str] = None
        self.last_tool: Optional[str] = None
        self.tool_count = 0
        self.last_title: Optional[str] = None
        self.last_duration: Optional[str] = None
        self.post_enter = False

        self._working_substatus = Substatus.NONE
        self._last_tool_title: Optional[str] = None
        self._completion_text: Optional[str] = None
        self._ready_timer: Optional[TimerHandle] = None
        self._fast_timer: Optional[TimerHandle] = None
        self._closed = False

    @property
    def ready_pending(self) -> bool:
        return self._ready_timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- Observations --------------------------------------------------- #

    def observe_title(self, title: str) -> None:
        """Feed one OSC title change."""
        if self._closed:
            return
        text = (title or "").strip()
        if not text:
            return
        self.last_title = text
        glyph, body = text[0], text[1:].strip()
        if self.patterns.is_spinner(glyph):
            self._on_spinner(body)
        elif self.patterns.is_completion(glyph):
            self._on_completion(body)
        else:
            logger.debug(f"[engine] {self.session_id}: ignoring title {text[:60]!r}")

    def observe_enter(self) -> None:
        """Enter pressed in the terminal."""
        if self._closed or self.status is SessionStatus.WORKING:
            return
        self.post_enter = True
        self._working_substatus = Substatus.NONE
        self._set(SessionStatus.WORKING, Substatus.NONE)
        self._schedule_ready()

    def observe_exit(self) -> None:
        """Child exited; drop every pending timer without declaring ready."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timers()
        logger.debug(f"[engine] {self.session_id}: closed while {self.status.value}")

    cancel = observe_exit

    # ---- Title handling ------------------------------------------------- #

    def _on_spinner(self, body: str) -> None:
        self.post_enter = False
        self._completion_text = None
        self._cancel_timers()
        token = self.patterns.first_token(body)
        tool_name: Optional[str] = None
        if self.patterns.is_tool(token):
            substatus = Substatus.TOOL_CALLING
            # The spinner glyph rotates; only a new title body is a new call.
            if body != self._last_tool_title:
                self.tool_count += 1
                self._last_tool_title = body
                tool_name = token
            self.last_tool = token
        else:
            substatus = Substatus.THINKING
            self._last_tool_title = None
            if body:
                self.task_label = body
        self._working_substatus = substatus
        self._set(SessionStatus.WORKING, substatus, tool_name=tool_name)

    def _on_completion(self, body: str) -> None:
        self._completion_text = self.last_title
        if self.status is not SessionStatus.WORKING:
            return
        if self._ready_timer is None:
            self._schedule_ready()

    # ---- Ready scheduling ----------------------------------------------- #

    def _ready_delay(self) -> float:
        if self.post_enter:
            return self.config.post_enter_delay_s
        if self._working_substatus is Substatus.TOOL_CALLING:
            return self.config.tool_delay_s
        if self._working_substatus is Substatus.THINKING:
            return self.config.thinking_delay_s
        return self.config.base_ready_delay_s

    def _schedule_ready(self) -> None:
        delay = self._ready_delay()
        self._ready_timer = self._scheduler.call_later(delay, self._verify)
        if not self.post_enter:
            self._fast_timer = self._scheduler.call_later(self.config.fast_track_s, self._fast_track)
        logger.debug(f"[engine] {self.session_id}: ready scheduled in {delay:.1f}s")

    def _reschedule(self) -> None:
        self._ready_timer = self._scheduler.call_later(self.config.recheck_delay_s, self._verify)

    def _cancel_timers(self) -> None:
        cancel_timer(self._ready_timer)
        cancel_timer(self._fast_timer)
        self._ready_timer = None
        self._fast_timer = None

    def _fast_track(self) -> None:
        self._fast_timer = None
        if self._closed or self.status is not SessionStatus.WORKING or self._ready_timer is None:
            return
        lines = self._content_lines()
        duration = self._done_duration(lines)
        if duration is not None:
            self._declare_ready("done", duration=duration)
        elif any(self.patterns.is_permission(line) for line in lines):
            self._declare_ready("permission")

    def _verify(self) -> None:
        self._ready_timer = None
        cancel_timer(self._fast_timer)
        self._fast_timer = None
        if self._closed or self.status is not SessionStatus.WORKING:
            return

        lines = self._content_lines()
        verdict = self._done_or_working(lines)
        if verdict == "done":
            self._declare_ready("done", duration=self._done_duration(lines))
            return
        if verdict == "working":
            self._reschedule()
            return
        if any(self.patterns.is_permission(line) for line in lines):
            self._declare_ready("permission")
            return

        flowing = self._output_flowing()
        if lines and has_tool_result_marker(lines[-1]) and flowing:
            self._reschedule()
            return
        if flowing:
            self._reschedule()
            return
        self._declare_ready("silent")

    def _content_lines(self) -> list[str]:
        raw = self._tail_lines(self.config.verify_lines * 3)
        return self.patterns.content_lines(raw)[-self.config.verify_lines:]

    def _done_duration(self, lines: list[str]) -> Optional[str]:
        if self._completion_text:
            duration = self.patterns.done_duration(self._completion_text)
            if duration is not None:
                return duration
        for line in reversed(lines):
            duration = self.patterns.done_duration(line)
            if duration is not None:
                return duration
        return None

    def _done_or_working(self, lines: list[str]) -> Optional[str]:
        if self._completion_text and self.patterns.done_duration(self._completion_text) is not None:
            return "done"
        for line in reversed(lines):
            if self.patterns.done_duration(line) is not None:
                return "done"
            if self.patterns.is_working_line(line):
                return "working"
        return None

    def _output_flowing(self) -> bool:
        silence = self._scheduler.now() - self._last_output_at()
        return silence < self.config.silence_threshold_s

    # ---- Transitions ---------------------------------------------------- #

    def _declare_ready(self, reason: str, duration: Optional[str] = None) -> None:
        self._cancel_timers()
        attention = extract_attention(
            self._tail_lines(self.config.attention_lines * 2),
            self.patterns,
            max_lines=self.config.attention_lines,
        )
        info = ReadyInfo(
            reason=reason,
            duration=duration,
            tool_count=self.tool_count,
            last_tool=self.last_tool,
            task_label=self.task_label,
            attention=attention,
        )
        self.last_duration = duration
        self.tool_count = 0
        self.last_tool = None
        self.post_enter = False
        self._working_substatus = Substatus.NONE
        self._last_tool_title = None
        self._completion_text = None
        substatus = Substatus.PERMISSION if reason == "permission" else Substatus.NONE
        logger.debug(f"[engine] {self.session_id}: ready ({reason}, tools={info.tool_count}, duration={duration})")
        self._set(SessionStatus.READY, substatus, ready=info)

    def _set(
        self,
        status: SessionStatus,
        substatus: Substatus,
        tool_name: Optional[str] = None,
        ready: Optional[ReadyInfo] = None,
    ) -> None:
        previous = self.status
        if previous is status and self.substatus is substatus and ready is None and tool_name is None:
            return
        self.status = status
        self.substatus = substatus
        self._on_change(
            StatusChange(
                session_id=self.session_id,
                previous=previous,
                status=status,
                substatus=substatus,
                tool_name=tool_name,
                ready=ready,
            )
        )
