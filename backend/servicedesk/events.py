"""Domain events emitted after a workflow commit.

Delivery is fire-and-forget: a failing sink is logged and never undoes or
fails the committed operation.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

TICKET_CREATED = "ticket.created"
TICKET_SUBMITTED = "ticket.submitted"
TICKET_APPROVED = "ticket.approved"
TICKET_REJECTED = "ticket.rejected"
TICKET_ASSIGNED = "ticket.assigned"
TICKET_STATUS_CHANGED = "ticket.status_changed"
COMPLIANCE_OVERRIDDEN = "compliance.overridden"
CLASSIFICATION_CONFIRMED = "classification.confirmed"
CLASSIFICATION_LOCKED = "classification.locked"


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    ticket_id: UUID
    occurred_at: datetime
    branch_id: UUID | None = None
    actor_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        """JSON-safe representation for the broker."""
        data = asdict(self)
        for key in ("ticket_id", "branch_id", "actor_id"):
            data[key] = str(data[key]) if data[key] is not None else None
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class EventSink(Protocol):
    def emit(self, event: DomainEvent) -> None: ...


class LoggingEventSink:
    """Sink for runs without a broker."""

    def emit(self, event: DomainEvent) -> None:
        logger.info("event.emitted type=%s ticket=%s", event.event_type, event.ticket_id)


class CeleryEventSink:
    """Hands events to the worker that records them in the outbox."""

    def __init__(self, celery_app=None) -> None:
        if celery_app is None:
            from .celery_app import celery_app as default_app
            celery_app = default_app
        self.celery_app = celery_app

    def emit(self, event: DomainEvent) -> None:
        self.celery_app.send_task("record_ticket_event", args=[event.to_message()])


def emit_all(sink: EventSink, events: list[DomainEvent]) -> None:
    for event in events:
        try:
            sink.emit(event)
        except Exception:
            logger.exception("event.emit_failed type=%s ticket=%s", event.event_type, event.ticket_id)
