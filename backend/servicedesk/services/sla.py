"""SLA due-time calculation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ..config import Settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def sla_due_at(*, priority: str, is_government: bool, settings: Settings, at: datetime | None = None) -> datetime:
    """Due time counted from the moment the ticket becomes workable.

    Government (KASDA) tickets use the longer business schedule.
    """
    start = at or now_utc()
    return start + timedelta(hours=settings.sla_hours(priority, government=is_government))
