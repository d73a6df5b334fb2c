"""In-process pub/sub for normalized Claude events."""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable, Optional, Union

from loguru import logger

from claude_terminal.bus.events import WILDCARD, EventEnvelope, EventPayload, EventSource, EventType

EventHandler = Callable[[EventEnvelope], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """Synchronous pub/sub with typed envelopes and a ``*`` wildcard.

    Handlers run on the emitting thread (the core thread) in subscription
    order: type subscribers first, then wildcard subscribers. A handler
    that raises is logged and skipped; the rest still run.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Union[EventType, str], handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` and return a function that removes it."""
        key = _key(event_type)
        self._handlers[key].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(
        self,
        data: EventPayload,
        *,
        source: EventSource,
        project_id: Optional[str] = None,
        project_path: Optional[str] = None,
        terminal_id: Optional[str] = None,
    ) -> EventEnvelope:
        """Wrap ``data`` in an envelope and deliver it."""
        envelope = EventEnvelope(
            data=data,
            timestamp_ms=int(self._clock() * 1000),
            source=source,
            project_id=project_id,
            project_path=project_path,
            terminal_id=terminal_id,
        )
        for handler in list(self._handlers.get(envelope.type.value, ())):
            self._deliver(handler, envelope)
        for handler in list(self._handlers.get(WILDCARD, ())):
            self._deliver(handler, envelope)
        return envelope

    def subscriber_count(self, event_type: Union[EventType, str, None] = None) -> int:
        if event_type is None:
            return sum(len(handlers) for handlers in self._handlers.values())
        return len(self._handlers.get(_key(event_type), ()))

    def clear(self) -> None:
        self._handlers.clear()

    @staticmethod
    def _deliver(handler: EventHandler, envelope: EventEnvelope) -> None:
        try:
            handler(envelope)
        except Exception:
            logger.exception(f"[bus] Handler {getattr(handler, '__qualname__', handler)} failed on {envelope.type.value}")


def _key(event_type: Union[EventType, str]) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)
