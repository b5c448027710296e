"""Business / compliance approval use-cases."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from uuid import UUID

from ..domain import (
    COMPLIANCE_APPROVED,
    COMPLIANCE_PENDING,
    COMPLIANCE_REJECTED,
    ROLE_ADMIN,
    ROLE_MANAGER,
    Ticket,
)
from ..domain_errors import AlreadyProcessed, InvalidTransition, NotFound, Unauthorized, ValidationError
from ..events import COMPLIANCE_OVERRIDDEN, TICKET_APPROVED, TICKET_REJECTED
from ..services.authorization import (
    DENY_NOT_PENDING,
    ApprovalDecision,
    approval_is_pending,
    can_override_compliance,
    evaluate_approval,
)
from ..services.sla import sla_due_at
from ..services.ticket_state import STATUS_APPROVED, STATUS_PENDING_APPROVAL, STATUS_REJECTED
from ..store import WriteBatch
from .context import WorkflowContext, add_audit, commit, get_actor, get_ticket, make_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalOutcome:
    ticket: Ticket
    decision: ApprovalDecision


def _already_processed(ticket: Ticket) -> AlreadyProcessed:
    return AlreadyProcessed(
        code="APPROVAL_ALREADY_PROCESSED",
        message="This approval has already been processed",
        details={"status": ticket.status},
        predicate="approval.status == pending",
    )


def _decide(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    approve: bool,
    comments: str | None,
    gov_docs_verified: bool,
) -> ApprovalOutcome:
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    compliance = ctx.store.read_compliance_approval(ticket.id)

    decision = evaluate_approval(ticket, compliance, actor)
    if not decision.allowed:
        if decision.reason_code == DENY_NOT_PENDING:
            raise _already_processed(ticket)
        raise Unauthorized(
            code=f"APPROVAL_DENIED_{decision.reason_code}",
            message="You are not authorized to approve or reject this ticket",
            predicate=decision.predicate,
        )
    # Admins pass the gate unconditionally, the pending state still applies.
    if not approval_is_pending(ticket, compliance):
        raise _already_processed(ticket)

    now = ctx.clock()
    target = STATUS_APPROVED if approve else STATUS_REJECTED
    ticket_values: dict[str, object] = {"status": target, "manager_comments": comments}
    if approve:
        ticket_values["sla_due_at"] = sla_due_at(
            priority=ticket.priority,
            is_government=ticket.is_government_ticket,
            settings=ctx.settings,
            at=now,
        )

    batch = WriteBatch()
    batch.update(
        "ticket",
        ticket.id,
        ticket_values,
        expected={"status": STATUS_PENDING_APPROVAL},
        conflict=_already_processed(ticket),
    )
    if compliance is not None:
        batch.update(
            "compliance_approval",
            compliance.id,
            {
                "status": COMPLIANCE_APPROVED if approve else COMPLIANCE_REJECTED,
                "comments": comments,
                "gov_docs_verified": bool(gov_docs_verified),
                "decided_by_id": actor.id,
                "decided_at": now,
            },
            expected={"status": COMPLIANCE_PENDING},
            conflict=_already_processed(ticket),
        )
    add_audit(
        batch,
        action="ticket_approved" if approve else "ticket_rejected",
        ticket=ticket,
        actor=actor,
        details={
            "reason_code": decision.reason_code,
            "predicate": decision.predicate,
            "comments": comments,
            "gov_docs_verified": bool(gov_docs_verified),
            "compliance_approval_id": str(compliance.id) if compliance else None,
        },
    )

    updated = replace(
        ticket,
        status=target,
        manager_comments=comments,
        sla_due_at=ticket_values.get("sla_due_at", ticket.sla_due_at),
    )
    commit(ctx, batch, [make_event(
        ctx,
        TICKET_APPROVED if approve else TICKET_REJECTED,
        ticket=updated,
        actor=actor,
        reason_code=decision.reason_code,
    )])
    logger.info(
        "approval.decided ticket=%s actor=%s status=%s reason=%s",
        ticket.id, actor.id, target, decision.reason_code,
    )
    return ApprovalOutcome(ticket=updated, decision=decision)


def approve_ticket(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    comments: str | None = None,
    gov_docs_verified: bool = False,
) -> ApprovalOutcome:
    """Approve a pending ticket. Assignment is a separate request."""
    return _decide(
        ctx,
        ticket_id=ticket_id,
        actor_id=actor_id,
        approve=True,
        comments=comments,
        gov_docs_verified=gov_docs_verified,
    )


def reject_ticket(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    comments: str | None = None,
) -> ApprovalOutcome:
    comments = (comments or "").strip() or None
    if comments is None and ctx.settings.REJECTION_COMMENTS_REQUIRED:
        raise ValidationError(
            code="REJECTION_COMMENTS_REQUIRED",
            message="Comments are required when rejecting a ticket",
        )
    return _decide(
        ctx,
        ticket_id=ticket_id,
        actor_id=actor_id,
        approve=False,
        comments=comments,
        gov_docs_verified=False,
    )


def override_compliance_decision(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    status: str,
    comments: str,
):
    """Admin correction of a compliance record. Ticket status is left as is."""
    actor = get_actor(ctx, actor_id)
    if not can_override_compliance(actor):
        raise Unauthorized(
            code="COMPLIANCE_OVERRIDE_FORBIDDEN",
            message="Only administrators can override compliance decisions",
            predicate="actor.role == admin",
        )
    ticket = get_ticket(ctx, ticket_id)
    compliance = ctx.store.read_compliance_approval(ticket.id)
    if compliance is None:
        raise NotFound(code="COMPLIANCE_APPROVAL_NOT_FOUND", message="Ticket has no compliance approval")
    if compliance.is_open:
        raise InvalidTransition(
            code="COMPLIANCE_NOT_DECIDED",
            message="Compliance approval is still pending, approve or reject the ticket instead",
            details={"status": compliance.status},
        )

    status = (status or "").strip().lower()
    if status not in {COMPLIANCE_APPROVED, COMPLIANCE_REJECTED}:
        raise ValidationError(
            code="INVALID_COMPLIANCE_STATUS",
            message="Compliance status must be approved or rejected",
        )
    comments = (comments or "").strip()
    if not comments:
        raise ValidationError(
            code="OVERRIDE_COMMENTS_REQUIRED",
            message="Comments are required for a compliance override",
        )
    if compliance.status == status:
        return compliance

    now = ctx.clock()
    batch = WriteBatch()
    batch.update(
        "compliance_approval",
        compliance.id,
        {"status": status, "comments": comments, "decided_by_id": actor.id, "decided_at": now},
        expected={"status": compliance.status},
        conflict=AlreadyProcessed(
            code="COMPLIANCE_CHANGED",
            message="Compliance decision changed concurrently",
        ),
    )
    add_audit(
        batch,
        action="compliance_override",
        ticket=ticket,
        actor=actor,
        entity_type="compliance_approval",
        entity_id=compliance.id,
        details={"from": compliance.status, "to": status, "comments": comments},
    )
    commit(ctx, batch, [make_event(
        ctx, COMPLIANCE_OVERRIDDEN, ticket=ticket, actor=actor, status=status, previous=compliance.status,
    )])
    logger.warning(
        "compliance.admin_override ticket=%s actor=%s from=%s to=%s",
        ticket.id, actor.id, compliance.status, status,
    )
    return replace(compliance, status=status, comments=comments, decided_by_id=actor.id, decided_at=now)


def list_pending_approvals(ctx: WorkflowContext, *, actor_id: UUID) -> list[Ticket]:
    """Pending tickets the actor is allowed to approve or reject."""
    actor = get_actor(ctx, actor_id)
    if actor.role not in {ROLE_MANAGER, ROLE_ADMIN}:
        return []
    pending = ctx.store.list_tickets(statuses=[STATUS_PENDING_APPROVAL])
    return [
        ticket
        for ticket in pending
        if evaluate_approval(ticket, ctx.store.read_compliance_approval(ticket.id), actor).allowed
    ]
