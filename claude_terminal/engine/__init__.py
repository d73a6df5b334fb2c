"""Claude state engine and screen classifiers."""

from claude_terminal.engine.attention import Attention, AttentionKind, extract_attention
from claude_terminal.engine.patterns import GlyphPatterns
from claude_terminal.engine.state import ClaudeStateMachine, ReadyInfo, StatusChange

__all__ = [
    "Attention",
    "AttentionKind",
    "ClaudeStateMachine",
    "GlyphPatterns",
    "ReadyInfo",
    "StatusChange",
    "extract_attention",
]
