"""Ticket creation and lifecycle transitions."""
from __future__ import annotations

import logging
from dataclasses import asdict, replace
from uuid import UUID, uuid4

from ..domain import PRIORITIES, ROLE_TECHNICIAN, Classification, Principal, ServiceCategory, Ticket
from ..domain_errors import InvalidTransition, Unauthorized, ValidationError
from ..events import TICKET_CREATED, TICKET_STATUS_CHANGED, TICKET_SUBMITTED
from ..schemas import TicketCreate
from ..services.authorization import require_ticket_access, require_transition, visible_to
from ..services.categorization import validate_optional_pair
from ..services.sla import sla_due_at
from ..services.ticket_state import (
    STATUS_APPROVED,
    STATUS_ASSIGNED,
    STATUS_DRAFT,
    STATUS_REJECTED,
    STATUS_RESOLVED,
    becomes_workable,
    initial_status,
    is_government_request,
    is_known_status,
    normalize_status,
    requires_compliance_review,
    submission_status,
    validate_status_transition,
)
from ..store import AtLeast, Increment, WriteBatch
from .approvals import approve_ticket, reject_ticket
from .assignment import assign_ticket
from .context import WorkflowContext, add_audit, commit, get_actor, get_category, get_ticket, make_event

logger = logging.getLogger(__name__)


def _resolve_branch(ctx: WorkflowContext, actor: Principal, requested: UUID | None) -> UUID:
    if requested is not None and requested != actor.branch_id and not actor.is_admin:
        raise Unauthorized(
            code="BRANCH_SCOPE_DENIED",
            message="Tickets can only be filed for your own branch",
            predicate="ticket.branch_id == actor.branch_id",
        )
    branch_id = requested or actor.branch_id
    if branch_id is None:
        raise ValidationError(code="BRANCH_REQUIRED", message="branch_id is required")
    if not ctx.branches.is_active(branch_id):
        raise ValidationError(code="BRANCH_INACTIVE", message="Branch is unknown or inactive")
    return branch_id


def _add_compliance_row(ctx: WorkflowContext, batch: WriteBatch, *, ticket: Ticket, category: ServiceCategory) -> None:
    reviewer_id = ctx.store.find_compliance_reviewer(category.department_id)
    if reviewer_id is None:
        # Branch managers of the ticket's branch can still act on it.
        logger.warning(
            "compliance.no_reviewer ticket=%s department=%s", ticket.id, category.department_id
        )
    batch.insert(
        "compliance_approval",
        id=uuid4(),
        ticket_id=ticket.id,
        reviewer_id=reviewer_id,
        status="pending",
    )


def create_ticket(ctx: WorkflowContext, *, actor_id: UUID, data: TicketCreate) -> Ticket:
    actor = get_actor(ctx, actor_id)
    if not actor.can("canCreateTickets"):
        raise Unauthorized(
            code="TICKET_CREATE_FORBIDDEN",
            message="You are not allowed to create tickets",
            predicate="actor.can(canCreateTickets)",
        )

    priority = (data.priority or "").strip().lower()
    if priority not in PRIORITIES:
        raise ValidationError(
            code="INVALID_PRIORITY",
            message=f"Invalid priority: {data.priority!r}",
            details={"allowed": list(PRIORITIES)},
        )
    category = get_category(ctx, data.service_category_id)
    if not category.is_active:
        raise ValidationError(code="SERVICE_CATEGORY_INACTIVE", message="Service category is inactive")
    branch_id = _resolve_branch(ctx, actor, data.branch_id)
    root_cause, issue_category = validate_optional_pair(data.root_cause, data.issue_category)

    government_entity = (data.government_entity or "").strip() or None
    is_government = is_government_request(category=category, government_entity=government_entity)
    status = initial_status(category=category, government_entity=government_entity, draft=data.draft)
    now = ctx.clock()
    ticket = Ticket(
        id=uuid4(),
        title=data.title.strip(),
        priority=priority,
        status=status,
        branch_id=branch_id,
        creator_id=actor.id,
        service_category_id=category.id,
        description=data.description,
        requires_compliance_approval=requires_compliance_review(
            category=category, government_entity=government_entity
        ),
        is_government_ticket=is_government,
        government_entity=government_entity,
        sla_due_at=(
            sla_due_at(priority=priority, is_government=is_government, settings=ctx.settings, at=now)
            if becomes_workable(status) else None
        ),
        created_at=now,
    )

    batch = WriteBatch()
    batch.insert("ticket", **asdict(ticket))
    if ticket.requires_compliance_approval and status != STATUS_DRAFT:
        _add_compliance_row(ctx, batch, ticket=ticket, category=category)

    classification = Classification(
        ticket_id=ticket.id, user_root_cause=root_cause, user_issue_category=issue_category
    )
    batch.insert("classification", **asdict(classification))
    for field_name, value in (("user_root_cause", root_cause), ("user_issue_category", issue_category)):
        if value is not None:
            batch.insert(
                "classification_audit",
                ticket_id=ticket.id,
                changed_by_id=actor.id,
                field_changed=field_name,
                old_value=None,
                new_value=value,
            )

    add_audit(
        batch,
        action="ticket_created",
        ticket=ticket,
        actor=actor,
        details={
            "status": status,
            "priority": priority,
            "service_category_id": str(category.id),
            "requires_compliance_approval": ticket.requires_compliance_approval,
        },
    )
    commit(ctx, batch, [make_event(ctx, TICKET_CREATED, ticket=ticket, actor=actor, status=status)])
    logger.info("ticket.created ticket=%s branch=%s status=%s", ticket.id, branch_id, status)
    return ticket


def _submit(ctx: WorkflowContext, *, ticket: Ticket, actor: Principal, target: str) -> Ticket:
    category = get_category(ctx, ticket.service_category_id)
    expected_target = submission_status(category=category, government_entity=ticket.government_entity)
    if target != expected_target:
        raise InvalidTransition(
            message=f"This ticket must be submitted to {expected_target}",
            details={"from": ticket.status, "to": target, "expected": expected_target},
        )
    require_transition(actor, ticket, target)

    now = ctx.clock()
    values: dict[str, object] = {"status": target}
    if becomes_workable(target):
        values["sla_due_at"] = sla_due_at(
            priority=ticket.priority, is_government=ticket.is_government_ticket, settings=ctx.settings, at=now
        )

    batch = WriteBatch()
    batch.update(
        "ticket",
        ticket.id,
        values,
        expected={"status": STATUS_DRAFT},
        conflict=InvalidTransition(code="TICKET_STATUS_CHANGED", message="Ticket status changed concurrently"),
    )
    if ticket.requires_compliance_approval and ctx.store.read_compliance_approval(ticket.id) is None:
        _add_compliance_row(ctx, batch, ticket=ticket, category=category)
    add_audit(batch, action="ticket_submitted", ticket=ticket, actor=actor, details={"to": target})

    updated = replace(ticket, status=target, sla_due_at=values.get("sla_due_at", ticket.sla_due_at))
    commit(ctx, batch, [make_event(ctx, TICKET_SUBMITTED, ticket=updated, actor=actor, status=target)])
    return updated


def transition_status(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    target_status: str,
    comments: str | None = None,
) -> Ticket:
    """Move a ticket along a legal lifecycle edge.

    Approval outcomes and assignment are delegated to their own use-cases so
    that their guards apply no matter which endpoint is used.
    """
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    require_ticket_access(actor, ticket, ctx.store.read_compliance_approval(ticket.id))

    target = normalize_status(target_status)
    if not is_known_status(target):
        raise ValidationError(code="UNKNOWN_STATUS", message=f"Unknown ticket status: {target_status}")
    current = normalize_status(ticket.status)
    if target == current:
        return ticket

    if target in {STATUS_APPROVED, STATUS_REJECTED}:
        if target == STATUS_APPROVED:
            return approve_ticket(ctx, ticket_id=ticket.id, actor_id=actor.id, comments=comments).ticket
        return reject_ticket(ctx, ticket_id=ticket.id, actor_id=actor.id, comments=comments).ticket

    if target == STATUS_ASSIGNED:
        technician_id = actor.id if actor.role == ROLE_TECHNICIAN else None
        return assign_ticket(ctx, ticket_id=ticket.id, actor_id=actor.id, technician_id=technician_id).ticket

    try:
        validate_status_transition(current_status=current, next_status=target)
    except ValueError as error:
        raise InvalidTransition(
            message=str(error),
            details={"from": current, "to": target},
        ) from error

    if current == STATUS_DRAFT:
        return _submit(ctx, ticket=ticket, actor=actor, target=target)

    require_transition(actor, ticket, target)

    batch = WriteBatch()
    batch.update(
        "ticket",
        ticket.id,
        {"status": target},
        expected={"status": ticket.status},
        conflict=InvalidTransition(
            code="TICKET_STATUS_CHANGED",
            message="Ticket status changed concurrently",
            details={"from": current, "to": target},
        ),
    )
    if target == STATUS_RESOLVED and ticket.assignee_id is not None:
        batch.update(
            "user",
            ticket.assignee_id,
            {"current_workload": Increment(-1)},
            expected={"current_workload": AtLeast(1)},
            required=False,
        )
    add_audit(
        batch,
        action="ticket_status_changed",
        ticket=ticket,
        actor=actor,
        details={"from": current, "to": target, "comments": comments},
    )
    updated = replace(ticket, status=target)
    commit(ctx, batch, [make_event(
        ctx, TICKET_STATUS_CHANGED, ticket=updated, actor=actor, previous=current, status=target,
    )])
    logger.info("ticket.status_changed ticket=%s from=%s to=%s actor=%s", ticket.id, current, target, actor.id)
    return updated


def get_ticket_for_actor(ctx: WorkflowContext, *, ticket_id: UUID, actor_id: UUID) -> Ticket:
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    require_ticket_access(actor, ticket, ctx.store.read_compliance_approval(ticket.id))
    return ticket


def list_tickets_for_actor(
    ctx: WorkflowContext,
    *,
    actor_id: UUID,
    status: str | None = None,
) -> list[Ticket]:
    actor = get_actor(ctx, actor_id)
    statuses = [normalize_status(status)] if status else None
    scoped_branch = None if actor.is_admin or actor.is_department_technician else actor.branch_id
    tickets = ctx.store.list_tickets(statuses=statuses, branch_id=scoped_branch)
    return [ticket for ticket in tickets if visible_to(actor, ticket)]
