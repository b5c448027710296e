"""
Celery worker recording emitted domain events into the event outbox.
"""
from datetime import datetime, timezone
from uuid import UUID
import logging

from celery import Celery

from .config import settings
from .database import SessionLocal
from .models import EventOutbox

logger = logging.getLogger(__name__)

celery_app = Celery(
    "servicedesk",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


def outbox_idempotency_key(message: dict) -> str:
    """Format: event_type:ticket_id:occurred_at"""
    return f"{message['event_type']}:{message['ticket_id']}:{message['occurred_at']}"


def _uuid_or_none(value):
    return UUID(str(value)) if value else None


def record_event(db, message: dict) -> bool:
    """Insert one outbox row per event; returns False for duplicates."""
    idempotency_key = outbox_idempotency_key(message)

    existing = db.query(EventOutbox).filter(
        EventOutbox.idempotency_key == idempotency_key
    ).first()
    if existing:
        logger.info(f"Skipping duplicate event: {idempotency_key}")
        return False

    payload = dict(message.get("payload") or {})
    payload["occurred_at"] = message["occurred_at"]
    db.add(EventOutbox(
        event_type=message["event_type"],
        ticket_id=UUID(str(message["ticket_id"])),
        branch_id=_uuid_or_none(message.get("branch_id")),
        actor_id=_uuid_or_none(message.get("actor_id")),
        payload=payload,
        idempotency_key=idempotency_key,
        status='pending',
    ))
    return True


@celery_app.task(name="record_ticket_event")
def record_ticket_event(message: dict):
    """
    Record a domain event in the outbox (1 row per event, idempotent on redelivery).
    """
    db = SessionLocal()

    try:
        created = record_event(db, message)
        db.commit()
        if created:
            logger.info(f"Recorded event {message['event_type']} for ticket {message['ticket_id']}")
        return {"created": created, "recorded_at": datetime.now(timezone.utc).isoformat()}

    except Exception as e:
        db.rollback()
        logger.error(f"Error recording event: {e}", exc_info=True)
        raise

    finally:
        db.close()
