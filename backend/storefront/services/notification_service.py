# Overview: Service-layer operations for notifications; fire-and-forget fan-out of lifecycle transitions.

"""
Lifecycle notifications.

Order and sale transitions are published here after their transaction has
committed. Delivery is best-effort: each subscriber runs in turn, a failing
subscriber is logged and skipped, and publish() never raises. Nothing here
touches the database.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

WILDCARD = "*"

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_CANCELLED = "order.cancelled"
SALE_COMPLETED = "sale.completed"
SALE_VOIDED = "sale.voided"


@dataclass(frozen=True)
class TransitionEvent:
    event_type: str
    document_type: str
    document_id: int
    document_number: str
    from_status: str | None
    to_status: str
    actor_id: int | None = None
    payload: dict = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "document_number": self.document_number,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "payload": dict(self.payload),
            "occurred_at": to_utc_z(self.occurred_at),
        }


class SubscriberRegistry:
    """Handlers keyed by event type; WILDCARD handlers receive every event."""

    def __init__(self):
        self._handlers: dict[str, list[tuple[Callable, str]]] = {}

    def subscribe(self, event_type: str, handler: Callable, name: str | None = None) -> None:
        if not callable(handler):
            raise TypeError("handler must be callable")
        entries = self._handlers.setdefault(event_type, [])
        if any(h == handler for h, _ in entries):
            return
        entries.append((handler, name or getattr(handler, "__qualname__", repr(handler))))

    def unsubscribe(self, event_type: str, handler: Callable) -> None:
        entries = self._handlers.get(event_type, [])
        self._handlers[event_type] = [(h, n) for h, n in entries if h != handler]

    def get_subscribers(self, event_type: str) -> list[tuple[Callable, str]]:
        return list(self._handlers.get(event_type, [])) + list(self._handlers.get(WILDCARD, []))

    def clear(self) -> None:
        self._handlers.clear()


registry = SubscriberRegistry()


def subscribe(event_type: str, handler: Callable, name: str | None = None) -> None:
    registry.subscribe(event_type, handler, name)


def unsubscribe(event_type: str, handler: Callable) -> None:
    registry.unsubscribe(event_type, handler)


def publish(event: TransitionEvent, target: SubscriberRegistry | None = None) -> dict:
    """
    Deliver an event to every subscriber. Never raises.

    Returns a summary: notified/failed counts and per-handler failures.
    """
    if target is None:
        target = registry
    result = {
        "event_type": event.event_type,
        "event_id": event.event_id,
        "subscribers_notified": 0,
        "subscribers_failed": 0,
        "failures": [],
    }

    subscribers = target.get_subscribers(event.event_type)
    if not subscribers:
        logger.debug("No subscribers for %s (%s)", event.event_type, event.document_number)
        return result

    for handler, name in subscribers:
        try:
            handler(event)
            result["subscribers_notified"] += 1
        except Exception as exc:
            result["subscribers_failed"] += 1
            result["failures"].append({
                "handler": name,
                "error": str(exc),
                "error_type": type(exc).__name__,
            })
            logger.error(
                "Subscriber %s failed for %s (%s): %s",
                name, event.event_type, event.document_number, exc,
                exc_info=True,
            )

    logger.info(
        "Published %s for %s: %d notified, %d failed",
        event.event_type, event.document_number,
        result["subscribers_notified"], result["subscribers_failed"],
    )
    return result
