"""Event bus and envelope types."""

from claude_terminal.bus.events import EventEnvelope, EventSource, EventType
from claude_terminal.bus.hub import EventBus

__all__ = ["EventBus", "EventEnvelope", "EventSource", "EventType"]
