import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class RelayEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    component: str
    payload: Dict[str, Any]


class EventBus:
    """A lightweight, synchronous event bus for relay observability."""

    def __init__(self):
        self._subscribers: List[Callable[[RelayEvent], None]] = []

    def subscribe(self, callback: Callable[[RelayEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def emit(self, event_type: str, component: str, payload: Dict[str, Any]) -> None:
        """Construct and broadcast a RelayEvent to all subscribers."""
        event = RelayEvent(
            event_type=event_type,
            component=component,
            payload=payload
        )

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # A failing subscriber (like a bad file write) must not break the turn.
                logger.warning(f"[EVENTS] Subscriber failed on {event_type}: {e}")
