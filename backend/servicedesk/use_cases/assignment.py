"""Ticket assignment use-cases (manual, self pickup and auto-assignment)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from uuid import UUID

from ..domain import ROLE_TECHNICIAN, Principal, Ticket
from ..domain_errors import AlreadyAssigned, InvalidTransition, Unauthorized, ValidationError
from ..events import TICKET_ASSIGNED
from ..services import auto_assignment
from ..services.authorization import can_assign
from ..services.ticket_state import ASSIGNABLE_STATUSES, STATUS_ASSIGNED, normalize_status
from ..store import Increment, WriteBatch
from .context import WorkflowContext, add_audit, commit, get_actor, get_category, get_ticket, make_event

logger = logging.getLogger(__name__)

METHOD_AUTO = "auto"
METHOD_MANUAL = "manual"


@dataclass(frozen=True)
class AssignmentOutcome:
    ticket: Ticket
    assignee_id: UUID | None
    method: str | None = None
    # True when auto-assignment found nobody; the ticket stays approved/open.
    no_candidate: bool = False
    changed: bool = False


def _ensure_assignee(ctx: WorkflowContext, technician_id: UUID) -> Principal:
    technician = ctx.identities.get_principal(technician_id)
    if technician is None or technician.role != ROLE_TECHNICIAN or not technician.is_active:
        raise ValidationError(
            code="INVALID_ASSIGNEE",
            message="Assignee must be an active technician",
            details={"technician_id": str(technician_id)},
        )
    return technician


def _commit_assignment(
    ctx: WorkflowContext,
    *,
    ticket: Ticket,
    actor: Principal,
    technician_id: UUID,
    method: str,
) -> AssignmentOutcome:
    batch = WriteBatch()
    batch.update(
        "ticket",
        ticket.id,
        {"assignee_id": technician_id, "status": STATUS_ASSIGNED},
        expected={"assignee_id": None, "status": ASSIGNABLE_STATUSES},
        conflict=AlreadyAssigned(predicate="ticket.assignee_id is null and ticket.status in {approved, open}"),
    )
    batch.update("user", technician_id, {"current_workload": Increment(1)})
    batch.insert(
        "assignment_log",
        ticket_id=ticket.id,
        assignee_id=technician_id,
        method=method,
        assigned_by_id=actor.id,
        reason="Workload-balanced auto-assignment" if method == METHOD_AUTO else None,
    )
    add_audit(
        batch,
        action="ticket_assigned",
        ticket=ticket,
        actor=actor,
        details={"assignee_id": str(technician_id), "method": method, "from_status": ticket.status},
    )
    updated = replace(ticket, assignee_id=technician_id, status=STATUS_ASSIGNED)
    commit(ctx, batch, [make_event(ctx, TICKET_ASSIGNED, ticket=updated, actor=actor,
                                   assignee_id=str(technician_id), method=method)])
    logger.info("assignment.committed ticket=%s technician=%s method=%s", ticket.id, technician_id, method)
    return AssignmentOutcome(ticket=updated, assignee_id=technician_id, method=method, changed=True)


def auto_assign_ticket(ctx: WorkflowContext, *, ticket: Ticket, actor: Principal) -> AssignmentOutcome:
    """Pick the least-loaded technician of the ticket's department, if any."""
    category = get_category(ctx, ticket.service_category_id)
    technician_id = auto_assignment.resolve(
        ctx.store.list_technicians(category.department_id),
        department_id=category.department_id,
        respect_capacity=ctx.settings.AUTO_ASSIGN_RESPECT_CAPACITY,
    )
    if technician_id is None:
        logger.info("assignment.no_candidate ticket=%s department=%s", ticket.id, category.department_id)
        return AssignmentOutcome(ticket=ticket, assignee_id=None, no_candidate=True)
    return _commit_assignment(ctx, ticket=ticket, actor=actor, technician_id=technician_id, method=METHOD_AUTO)


def assign_ticket(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    technician_id: UUID | None = None,
) -> AssignmentOutcome:
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    category = get_category(ctx, ticket.service_category_id)

    # Technicians can only pick tickets up for themselves.
    if actor.role == ROLE_TECHNICIAN and technician_id is None:
        technician_id = actor.id

    if not can_assign(actor, ticket, technician_id=technician_id, ticket_department_id=category.department_id):
        raise Unauthorized(
            code="ASSIGNMENT_FORBIDDEN",
            message="You are not allowed to assign this ticket",
            predicate="admin or same-branch manager or technician self-pickup in ticket department",
        )

    if ticket.assignee_id is not None:
        if technician_id is None or technician_id == ticket.assignee_id:
            return AssignmentOutcome(ticket=ticket, assignee_id=ticket.assignee_id)
        raise AlreadyAssigned(details={"assignee_id": str(ticket.assignee_id)})

    if normalize_status(ticket.status) not in ASSIGNABLE_STATUSES:
        raise InvalidTransition(
            code="TICKET_NOT_ASSIGNABLE",
            message=f"Tickets in status {ticket.status} cannot be assigned",
            details={"status": ticket.status, "allowed": sorted(ASSIGNABLE_STATUSES)},
        )

    if technician_id is None:
        return auto_assign_ticket(ctx, ticket=ticket, actor=actor)

    _ensure_assignee(ctx, technician_id)
    return _commit_assignment(ctx, ticket=ticket, actor=actor, technician_id=technician_id, method=METHOD_MANUAL)
