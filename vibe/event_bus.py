from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, Field


class VibeEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    source: str
    session_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class EventBus:
    """A lightweight, synchronous event bus for decoupling VIBE observability."""

    def __init__(self):
        self._subscribers: list[Callable[[VibeEvent], None]] = []

    def subscribe(self, callback: Callable[[VibeEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[VibeEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(
        self,
        event_type: str,
        source: str,
        payload: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> VibeEvent:
        """Construct and broadcast a VibeEvent to all subscribers."""
        event = VibeEvent(
            event_type=event_type,
            source=source,
            session_id=session_id,
            payload=payload or {},
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # A failing subscriber must not break the emitting flow
                logger.warning(f"[BUS] Subscriber failed on {event_type}: {e}")

        return event

    def close(self) -> None:
        self._subscribers.clear()
