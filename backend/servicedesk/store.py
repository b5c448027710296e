"""SQL-backed ticket store.

All workflow writes for one ticket go through ``write_ticket_atomic``: a
batch of inserts plus guarded updates committed in one transaction. A guarded
update only applies when the row still holds the values the use-case read; a
miss rolls the whole batch back and raises the update's conflict error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .domain import (
    AssignmentCandidate,
    Classification,
    ComplianceApproval,
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_TECHNICIAN,
    ServiceCategory,
    Ticket,
)
from .domain_errors import AlreadyProcessed, DomainError

logger = logging.getLogger(__name__)

ENTITY_MODELS: dict[str, type] = {
    "ticket": models.Ticket,
    "compliance_approval": models.ComplianceApproval,
    "classification": models.TicketClassification,
    "user": models.User,
    "audit_event": models.AuditEvent,
    "classification_audit": models.ClassificationAudit,
    "assignment_log": models.TicketAssignmentLog,
}


@dataclass(frozen=True)
class Increment:
    """Relative update of a numeric column."""

    amount: int


@dataclass(frozen=True)
class AtLeast:
    """Guard matching a numeric column >= minimum."""

    minimum: int


@dataclass(frozen=True)
class InsertRow:
    entity: str
    values: dict[str, Any]


@dataclass(frozen=True)
class UpdateRow:
    entity: str
    entity_id: UUID
    values: dict[str, Any]
    # Column -> value the row must still hold. None means IS NULL, a
    # collection means IN, AtLeast means >=.
    expected: dict[str, Any] = field(default_factory=dict)
    conflict: DomainError | None = None
    # Optional updates are skipped silently when the guard does not match.
    required: bool = True

    def conflict_error(self) -> DomainError:
        return self.conflict or AlreadyProcessed()


@dataclass
class WriteBatch:
    inserts: list[InsertRow] = field(default_factory=list)
    updates: list[UpdateRow] = field(default_factory=list)

    def insert(self, entity: str, **values: Any) -> None:
        self.inserts.append(InsertRow(entity=entity, values=values))

    def update(
        self,
        entity: str,
        entity_id: UUID,
        values: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
        conflict: DomainError | None = None,
        required: bool = True,
    ) -> None:
        self.updates.append(UpdateRow(
            entity=entity,
            entity_id=entity_id,
            values=values,
            expected=expected or {},
            conflict=conflict,
            required=required,
        ))

    def __bool__(self) -> bool:
        return bool(self.inserts or self.updates)


def matches_expected(current: Any, expected: Any) -> bool:
    """Python-side evaluation of an ``UpdateRow.expected`` entry."""
    if expected is None:
        return current is None
    if isinstance(expected, AtLeast):
        return current is not None and current >= expected.minimum
    if isinstance(expected, (set, frozenset, tuple, list)):
        return current in expected
    return current == expected


def _guard_clause(column, expected: Any):
    if expected is None:
        return column.is_(None)
    if isinstance(expected, AtLeast):
        return column >= expected.minimum
    if isinstance(expected, (set, frozenset, tuple, list)):
        return column.in_(list(expected))
    return column == expected


def _primary_key(model: type):
    if model is models.TicketClassification:
        return model.ticket_id
    return model.id


def ticket_from_row(row: models.Ticket) -> Ticket:
    return Ticket(
        id=row.id,
        title=row.title,
        priority=row.priority,
        status=row.status,
        branch_id=row.branch_id,
        creator_id=row.creator_id,
        service_category_id=row.service_category_id,
        description=row.description,
        assignee_id=row.assignee_id,
        requires_compliance_approval=bool(row.requires_compliance_approval),
        is_government_ticket=bool(row.is_government_ticket),
        government_entity=row.government_entity,
        manager_comments=row.manager_comments,
        sla_due_at=row.sla_due_at,
        created_at=row.created_at,
    )


def compliance_from_row(row: models.ComplianceApproval) -> ComplianceApproval:
    return ComplianceApproval(
        id=row.id,
        ticket_id=row.ticket_id,
        reviewer_id=row.reviewer_id,
        status=row.status,
        comments=row.comments,
        gov_docs_verified=bool(row.gov_docs_verified),
        decided_by_id=row.decided_by_id,
        decided_at=row.decided_at,
    )


def classification_from_row(row: models.TicketClassification) -> Classification:
    return Classification(
        ticket_id=row.ticket_id,
        user_root_cause=row.user_root_cause,
        user_issue_category=row.user_issue_category,
        confirmed_root_cause=row.confirmed_root_cause,
        confirmed_issue_category=row.confirmed_issue_category,
        override_reason=row.override_reason,
        confirmed_by_id=row.confirmed_by_id,
        confirmed_at=row.confirmed_at,
        locked=bool(row.locked),
        locked_by_id=row.locked_by_id,
        lock_reason=row.lock_reason,
    )


class SqlTicketStore:
    """Ticket store over a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def read_ticket(self, ticket_id: UUID) -> Ticket | None:
        row = self.db.query(models.Ticket).filter(models.Ticket.id == ticket_id).first()
        return ticket_from_row(row) if row else None

    def read_compliance_approval(self, ticket_id: UUID) -> ComplianceApproval | None:
        row = (
            self.db.query(models.ComplianceApproval)
            .filter(models.ComplianceApproval.ticket_id == ticket_id)
            .first()
        )
        return compliance_from_row(row) if row else None

    def read_classification(self, ticket_id: UUID) -> Classification | None:
        row = (
            self.db.query(models.TicketClassification)
            .filter(models.TicketClassification.ticket_id == ticket_id)
            .first()
        )
        return classification_from_row(row) if row else None

    def read_service_category(self, category_id: UUID) -> ServiceCategory | None:
        row = self.db.query(models.ServiceCategory).filter(models.ServiceCategory.id == category_id).first()
        if row is None:
            return None
        return ServiceCategory(
            id=row.id,
            name=row.name,
            department_id=row.department_id,
            requires_approval=bool(row.requires_approval),
            requires_compliance_approval=bool(row.requires_compliance_approval),
            is_government=bool(row.is_government),
            is_active=bool(row.is_active),
        )

    def list_technicians(self, department_id: UUID) -> list[AssignmentCandidate]:
        rows = (
            self.db.query(models.User)
            .filter(
                models.User.role == ROLE_TECHNICIAN,
                models.User.department_id == department_id,
            )
            .order_by(models.User.id)
            .all()
        )
        return [
            AssignmentCandidate(
                technician_id=row.id,
                department_id=row.department_id,
                current_workload=int(row.current_workload or 0),
                workload_capacity=int(row.workload_capacity or 0),
                is_available=bool(row.is_available),
                is_active=bool(row.is_active),
            )
            for row in rows
        ]

    def find_compliance_reviewer(self, department_id: UUID) -> UUID | None:
        row = (
            self.db.query(models.User.id)
            .filter(
                models.User.department_id == department_id,
                models.User.is_authorized_reviewer == True,  # noqa: E712
                models.User.is_active == True,  # noqa: E712
                models.User.role.in_([ROLE_MANAGER, ROLE_ADMIN]),
            )
            .order_by(models.User.id)
            .first()
        )
        return row[0] if row else None

    def list_tickets(
        self,
        *,
        statuses: Iterable[str] | None = None,
        branch_id: UUID | None = None,
        unconfirmed_only: bool = False,
        limit: int = 200,
    ) -> list[Ticket]:
        query = self.db.query(models.Ticket)
        if statuses is not None:
            query = query.filter(models.Ticket.status.in_(list(statuses)))
        if branch_id is not None:
            query = query.filter(models.Ticket.branch_id == branch_id)
        if unconfirmed_only:
            query = query.outerjoin(
                models.TicketClassification,
                models.TicketClassification.ticket_id == models.Ticket.id,
            ).filter(
                (models.TicketClassification.ticket_id == None)  # noqa: E711
                | (models.TicketClassification.confirmed_root_cause == None)  # noqa: E711
                | (models.TicketClassification.confirmed_issue_category == None)  # noqa: E711
            )
        rows = query.order_by(models.Ticket.created_at.desc(), models.Ticket.id).limit(limit).all()
        return [ticket_from_row(row) for row in rows]

    def write_ticket_atomic(self, batch: WriteBatch) -> None:
        """Commit inserts and guarded updates together, or nothing."""
        try:
            for insert in batch.inserts:
                self.db.add(ENTITY_MODELS[insert.entity](**insert.values))
                # Flush per row so parent rows exist before their children.
                self.db.flush()

            for update in batch.updates:
                model = ENTITY_MODELS[update.entity]
                query = self.db.query(model).filter(_primary_key(model) == update.entity_id)
                for name, expected in update.expected.items():
                    query = query.filter(_guard_clause(getattr(model, name), expected))

                values = {}
                for name, value in update.values.items():
                    if isinstance(value, Increment):
                        values[getattr(model, name)] = getattr(model, name) + value.amount
                    else:
                        values[getattr(model, name)] = value

                rowcount = query.update(values, synchronize_session=False)
                if rowcount != 1 and update.required:
                    logger.info(
                        "store.guard_miss entity=%s id=%s expected=%s",
                        update.entity,
                        update.entity_id,
                        update.expected,
                    )
                    raise update.conflict_error()

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
