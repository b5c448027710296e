"""Collaborators shared by the workflow use-cases."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..directory import SqlBranchDirectory, SqlIdentityContext
from ..domain import (
    AssignmentCandidate,
    Branch,
    Classification,
    ComplianceApproval,
    Principal,
    ServiceCategory,
    Ticket,
)
from ..domain_errors import NotFound, Unauthorized
from ..events import CeleryEventSink, DomainEvent, EventSink, LoggingEventSink, emit_all
from ..services.sla import now_utc
from ..store import SqlTicketStore, WriteBatch


class TicketStore(Protocol):
    def read_ticket(self, ticket_id: UUID) -> Ticket | None: ...

    def read_compliance_approval(self, ticket_id: UUID) -> ComplianceApproval | None: ...

    def read_classification(self, ticket_id: UUID) -> Classification | None: ...

    def read_service_category(self, category_id: UUID) -> ServiceCategory | None: ...

    def list_technicians(self, department_id: UUID) -> list[AssignmentCandidate]: ...

    def find_compliance_reviewer(self, department_id: UUID) -> UUID | None: ...

    def list_tickets(
        self,
        *,
        statuses: Iterable[str] | None = None,
        branch_id: UUID | None = None,
        unconfirmed_only: bool = False,
        limit: int = 200,
    ) -> list[Ticket]: ...

    def write_ticket_atomic(self, batch: WriteBatch) -> None: ...


class BranchDirectory(Protocol):
    def get_branch(self, branch_id: UUID) -> Branch | None: ...

    def is_active(self, branch_id: UUID) -> bool: ...


class IdentityContext(Protocol):
    def get_principal(self, user_id: UUID) -> Principal | None: ...


@dataclass(frozen=True)
class WorkflowContext:
    """Everything a workflow use-case touches, built per request (or per test)."""

    store: TicketStore
    branches: BranchDirectory
    identities: IdentityContext
    events: EventSink
    settings: Settings
    clock: Callable[[], datetime] = now_utc


def build_workflow_context(db: Session, *, settings: Settings | None = None) -> WorkflowContext:
    settings = settings or get_settings()
    return WorkflowContext(
        store=SqlTicketStore(db),
        branches=SqlBranchDirectory(db),
        identities=SqlIdentityContext(db),
        events=CeleryEventSink() if settings.EVENTS_ENABLED else LoggingEventSink(),
        settings=settings,
    )


def get_actor(ctx: WorkflowContext, actor_id: UUID) -> Principal:
    actor = ctx.identities.get_principal(actor_id)
    if actor is None or not actor.is_active:
        raise Unauthorized(
            code="PRINCIPAL_INACTIVE",
            message="User not found or inactive",
            predicate="principal.is_active",
        )
    return actor


def get_ticket(ctx: WorkflowContext, ticket_id: UUID) -> Ticket:
    ticket = ctx.store.read_ticket(ticket_id)
    if ticket is None:
        raise NotFound(code="TICKET_NOT_FOUND", message="Ticket not found")
    return ticket


def get_category(ctx: WorkflowContext, category_id: UUID) -> ServiceCategory:
    category = ctx.store.read_service_category(category_id)
    if category is None:
        raise NotFound(code="SERVICE_CATEGORY_NOT_FOUND", message="Service category not found")
    return category


def add_audit(
    batch: WriteBatch,
    *,
    action: str,
    ticket: Ticket,
    actor: Principal,
    entity_type: str = "ticket",
    entity_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    batch.insert(
        "audit_event",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id or ticket.id,
        branch_id=ticket.branch_id,
        user_id=actor.id,
        details=details or {},
    )


def make_event(
    ctx: WorkflowContext,
    event_type: str,
    *,
    ticket: Ticket,
    actor: Principal,
    **payload: Any,
) -> DomainEvent:
    return DomainEvent(
        event_type=event_type,
        ticket_id=ticket.id,
        occurred_at=ctx.clock(),
        branch_id=ticket.branch_id,
        actor_id=actor.id,
        payload=payload,
    )


def commit(ctx: WorkflowContext, batch: WriteBatch, events: list[DomainEvent]) -> None:
    """Write the batch, then emit its events. Emission never fails the commit."""
    ctx.store.write_ticket_atomic(batch)
    emit_all(ctx.events, events)
