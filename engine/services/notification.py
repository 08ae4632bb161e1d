"""
engine/services/notification.py

Notification dispatch for escalation transition events.
- LoggingDispatcher: structlog-only stub, used when no webhook is configured
- WebhookDispatcher: POSTs the event and ordered contacts, retrying with backoff
- StaticContactProvider: priority-ordered contact list from config

Dispatchers never touch escalation state. Exhausted retries raise
DispatchError; the engine records the failure on the incident.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional, Protocol, Sequence

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from config import settings
from engine.errors import DispatchError
from engine.schemas import Contact, DispatchReceipt, TransitionEvent, Urgency

logger = structlog.get_logger(__name__)

_CONTACT_LIST = TypeAdapter(list[Contact])


class NotificationDispatcher(Protocol):
    async def dispatch(
        self,
        event: TransitionEvent,
        contacts: Sequence[Contact],
    ) -> DispatchReceipt: ...


def order_contacts(contacts: Sequence[Contact]) -> list[Contact]:
    return sorted(contacts, key=lambda contact: contact.priority)


class LoggingDispatcher:
    """
    Log-only dispatcher.

    In production this would integrate with SMS, push or emergency dialing.
    """

    async def dispatch(
        self,
        event: TransitionEvent,
        contacts: Sequence[Contact],
    ) -> DispatchReceipt:
        ordered = order_contacts(contacts)
        log_event = (
            "emergency_alert_sent"
            if event.urgency == Urgency.EMERGENCY
            else "escalation_notification_sent"
        )
        logger.info(
            log_event,
            event_id=event.id,
            from_tier=event.from_tier.value,
            to_tier=event.to_tier.value,
            urgency=event.urgency.value,
            reason=event.reason,
            contacts=[contact.name for contact in ordered],
        )
        return DispatchReceipt(
            event_id=event.id,
            delivered=True,
            contacts_notified=len(ordered),
            attempts=1,
            detail="logged",
        )


class WebhookDispatcher:
    """Delivers transition events to an HTTP endpoint with exponential backoff."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = settings.dispatch_timeout_seconds,
        max_attempts: int = settings.dispatch_max_attempts,
        backoff_seconds: float = settings.dispatch_backoff_seconds,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self._url = url
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._transport = transport

    async def dispatch(
        self,
        event: TransitionEvent,
        contacts: Sequence[Contact],
    ) -> DispatchReceipt:
        ordered = order_contacts(contacts)
        payload = {
            "event": event.model_dump(mode="json"),
            "contacts": [contact.model_dump(mode="json") for contact in ordered],
        }

        last_error = ""
        for attempt in range(self._max_attempts):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.post(self._url, json=payload)
                    response.raise_for_status()
                logger.info(
                    "webhook_dispatched",
                    event_id=event.id,
                    urgency=event.urgency.value,
                    attempts=attempt + 1,
                    contacts=len(ordered),
                )
                return DispatchReceipt(
                    event_id=event.id,
                    delivered=True,
                    contacts_notified=len(ordered),
                    attempts=attempt + 1,
                    detail=f"HTTP {response.status_code}",
                )
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status < 500:
                    logger.error(
                        "webhook_rejected",
                        event_id=event.id,
                        status=status,
                    )
                    raise DispatchError(f"webhook rejected event with HTTP {status}") from exc
                last_error = f"HTTP {status}"
            except httpx.TransportError as exc:
                last_error = str(exc) or type(exc).__name__

            if attempt + 1 < self._max_attempts:
                delay = self._backoff * 2 ** attempt
                logger.warning(
                    "webhook_dispatch_retry",
                    event_id=event.id,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                    error=last_error,
                )
                await asyncio.sleep(delay)

        logger.error(
            "webhook_dispatch_exhausted",
            event_id=event.id,
            attempts=self._max_attempts,
            error=last_error,
        )
        raise DispatchError(
            f"delivery failed after {self._max_attempts} attempts: {last_error}"
        )


class StaticContactProvider:
    """Fixed contact list, always served highest priority first."""

    def __init__(self, contacts: Sequence[Contact] = ()) -> None:
        self._contacts = order_contacts(contacts)

    def contacts(self) -> list[Contact]:
        return list(self._contacts)

    @classmethod
    def from_file(cls, path: str) -> "StaticContactProvider":
        """Load a JSON list of contacts; unreadable files yield an empty list."""
        if not path:
            return cls()
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            contacts = _CONTACT_LIST.validate_python(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("contacts_file_invalid", path=path, error=str(exc))
            return cls()
        logger.info("contacts_loaded", path=path, count=len(contacts))
        return cls(contacts)


def build_dispatcher() -> NotificationDispatcher:
    """Webhook dispatcher when a URL is configured, log-only otherwise."""
    if settings.notification_webhook_url:
        return WebhookDispatcher(settings.notification_webhook_url)
    return LoggingDispatcher()
