"""
engine/events.py

In-process event bus for the engine's outbound messages:
assessment, incident (created / updated), predictive_alert, transition.

Subscribers are async callables. A failing subscriber is logged and never
affects the engine or the other subscribers.
"""

from collections import defaultdict
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

ASSESSMENT = "assessment"
INCIDENT_CREATED = "incident_created"
INCIDENT_UPDATED = "incident_updated"
PREDICTIVE_ALERT = "predictive_alert"
TRANSITION = "transition"

Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        if handler in self._handlers.get(topic, []):
            self._handlers[topic].remove(handler)

    async def publish(self, topic: str, payload: Any) -> None:
        for handler in list(self._handlers.get(topic, [])):
            try:
                await handler(payload)
            except Exception as exc:
                logger.error(
                    "event_handler_failed",
                    topic=topic,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(exc),
                )
