"""Ticket lifecycle invariant helpers."""

from __future__ import annotations

from ..domain import ServiceCategory

STATUS_DRAFT = "draft"
STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_OPEN = "open"
STATUS_ASSIGNED = "assigned"
STATUS_IN_PROGRESS = "in_progress"
STATUS_PENDING = "pending"
STATUS_RESOLVED = "resolved"
STATUS_CLOSED = "closed"

TERMINAL_STATUSES: frozenset[str] = frozenset({STATUS_REJECTED, STATUS_CLOSED})
ASSIGNABLE_STATUSES: frozenset[str] = frozenset({STATUS_APPROVED, STATUS_OPEN})
# Statuses in which the ticket is being worked by its assignee.
WORK_STATUSES: frozenset[str] = frozenset({STATUS_ASSIGNED, STATUS_IN_PROGRESS, STATUS_PENDING})

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_DRAFT: frozenset({STATUS_PENDING_APPROVAL, STATUS_OPEN}),
    STATUS_PENDING_APPROVAL: frozenset({STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset({STATUS_ASSIGNED}),
    STATUS_OPEN: frozenset({STATUS_ASSIGNED}),
    STATUS_ASSIGNED: frozenset({STATUS_IN_PROGRESS}),
    STATUS_IN_PROGRESS: frozenset({STATUS_PENDING, STATUS_RESOLVED}),
    STATUS_PENDING: frozenset({STATUS_IN_PROGRESS, STATUS_RESOLVED}),
    STATUS_RESOLVED: frozenset({STATUS_CLOSED}),
    STATUS_REJECTED: frozenset(),
    STATUS_CLOSED: frozenset(),
}

ALL_STATUSES: frozenset[str] = frozenset(_ALLOWED_TRANSITIONS)


def normalize_status(status: str | None) -> str:
    if not status:
        return ""
    return status.strip().lower()


def is_known_status(status: str | None) -> bool:
    return normalize_status(status) in ALL_STATUSES


def is_terminal_status(status: str | None) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES


def allowed_targets(current_status: str | None) -> frozenset[str]:
    return _ALLOWED_TRANSITIONS.get(normalize_status(current_status), frozenset())


def validate_status_transition(*, current_status: str | None, next_status: str | None) -> str:
    """Return the normalized target status or raise ValueError for an illegal edge.

    A transition to the current status is accepted (idempotent retry).
    """
    current = normalize_status(current_status)
    nxt = normalize_status(next_status)

    if nxt not in ALL_STATUSES:
        raise ValueError(f"Unknown ticket status: {next_status}")
    if nxt == current:
        return nxt
    if nxt not in allowed_targets(current):
        raise ValueError(f"Invalid ticket status transition: {current} -> {nxt}")
    return nxt


def requires_compliance_review(*, category: ServiceCategory, government_entity: str | None = None) -> bool:
    """Government / treasury linked requests go through compliance review."""
    return bool(
        category.requires_compliance_approval
        or category.is_government
        or (government_entity and government_entity.strip())
    )


def is_government_request(*, category: ServiceCategory, government_entity: str | None = None) -> bool:
    return bool(category.is_government or (government_entity and government_entity.strip()))


def submission_status(*, category: ServiceCategory, government_entity: str | None = None) -> str:
    """Status a submitted (non-draft) ticket starts in."""
    if category.requires_approval or requires_compliance_review(
        category=category, government_entity=government_entity
    ):
        return STATUS_PENDING_APPROVAL
    return STATUS_OPEN


def initial_status(*, category: ServiceCategory, government_entity: str | None = None, draft: bool = False) -> str:
    if draft:
        return STATUS_DRAFT
    return submission_status(category=category, government_entity=government_entity)


def becomes_workable(next_status: str) -> bool:
    """True when entering a status from which technicians may pick the ticket up."""
    return normalize_status(next_status) in ASSIGNABLE_STATUSES
