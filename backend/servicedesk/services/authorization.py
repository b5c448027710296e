"""Authorization predicates for ticket workflow actions.

Every role/branch check used by the workflow lives here. Branch kind
(PRIMARY / SUB) appears in no predicate and the parent link is never
traversed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..domain import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_TECHNICIAN,
    ComplianceApproval,
    Principal,
    Ticket,
)
from ..domain_errors import Unauthorized
from .ticket_state import (
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_PENDING_APPROVAL,
    STATUS_RESOLVED,
    STATUS_CLOSED,
    STATUS_ASSIGNED,
    STATUS_DRAFT,
    normalize_status,
)

logger = logging.getLogger(__name__)

APPROVER_ROLES: frozenset[str] = frozenset({ROLE_MANAGER, ROLE_ADMIN})

# Reason codes
ALLOW_ADMIN_OVERRIDE = "ADMIN_OVERRIDE"
ALLOW_EXPLICIT_REVIEWER = "EXPLICIT_REVIEWER"
ALLOW_SAME_BRANCH_MANAGER = "SAME_BRANCH_MANAGER"
DENY_INACTIVE_PRINCIPAL = "INACTIVE_PRINCIPAL"
DENY_ROLE_NOT_PERMITTED = "ROLE_NOT_PERMITTED"
DENY_NOT_AUTHORIZED_REVIEWER = "NOT_AUTHORIZED_REVIEWER"
DENY_NOT_PENDING = "NOT_PENDING"
DENY_CROSS_BRANCH = "CROSS_BRANCH"


@dataclass(frozen=True)
class ApprovalDecision:
    allowed: bool
    reason_code: str
    # Internal description of the predicate that decided (audit only).
    predicate: str

    def __bool__(self) -> bool:
        return self.allowed


def _deny(reason_code: str, predicate: str) -> ApprovalDecision:
    return ApprovalDecision(allowed=False, reason_code=reason_code, predicate=predicate)


def approval_is_pending(ticket: Ticket, compliance: ComplianceApproval | None) -> bool:
    """Approval is pending while the ticket awaits it and any compliance record is still open."""
    if normalize_status(ticket.status) != STATUS_PENDING_APPROVAL:
        return False
    if compliance is not None and not compliance.is_open:
        return False
    return True


def is_explicit_reviewer(actor: Principal, compliance: ComplianceApproval | None) -> bool:
    return compliance is not None and compliance.reviewer_id is not None and compliance.reviewer_id == actor.id


def evaluate_approval(
    ticket: Ticket,
    compliance: ComplianceApproval | None,
    actor: Principal,
) -> ApprovalDecision:
    """Decide whether ``actor`` may approve or reject ``ticket``."""
    if not actor.is_active:
        return _deny(DENY_INACTIVE_PRINCIPAL, "actor.is_active")

    if actor.role not in APPROVER_ROLES:
        return _deny(DENY_ROLE_NOT_PERMITTED, "actor.role in {manager, admin}")

    if actor.role == ROLE_ADMIN:
        logger.info("approval.admin_override ticket=%s actor=%s", ticket.id, actor.id)
        return ApprovalDecision(True, ALLOW_ADMIN_OVERRIDE, "actor.role == admin")

    if not actor.is_authorized_reviewer:
        return _deny(DENY_NOT_AUTHORIZED_REVIEWER, "actor.is_authorized_reviewer")

    # Scope precedes the pending check.
    if is_explicit_reviewer(actor, compliance):
        allow = ApprovalDecision(True, ALLOW_EXPLICIT_REVIEWER, "actor.id == compliance.reviewer_id")
    elif actor.branch_id is not None and actor.branch_id == ticket.branch_id:
        # Any authorized manager of the ticket's branch may act; first commit wins.
        allow = ApprovalDecision(True, ALLOW_SAME_BRANCH_MANAGER, "actor.branch_id == ticket.branch_id")
    else:
        return _deny(
            DENY_CROSS_BRANCH,
            "actor.id == compliance.reviewer_id or actor.branch_id == ticket.branch_id",
        )

    if not approval_is_pending(ticket, compliance):
        return _deny(DENY_NOT_PENDING, "approval.status == pending")

    return allow


def require_approval(ticket: Ticket, compliance: ComplianceApproval | None, actor: Principal) -> ApprovalDecision:
    decision = evaluate_approval(ticket, compliance, actor)
    if not decision.allowed:
        raise Unauthorized(
            code=f"APPROVAL_DENIED_{decision.reason_code}",
            message="You are not authorized to approve or reject this ticket",
            predicate=decision.predicate,
        )
    return decision


def can_access_ticket(actor: Principal, ticket: Ticket, compliance: ComplianceApproval | None = None) -> bool:
    """Tenant isolation: branch match, department technicians, explicit reviewers and admins."""
    if not actor.is_active:
        return False
    if actor.role == ROLE_ADMIN:
        return True
    if actor.branch_id is not None and actor.branch_id == ticket.branch_id:
        return True
    if actor.is_department_technician:
        return True
    if is_explicit_reviewer(actor, compliance):
        return True
    return False


def require_ticket_access(actor: Principal, ticket: Ticket, compliance: ComplianceApproval | None = None) -> None:
    if not can_access_ticket(actor, ticket, compliance):
        raise Unauthorized(
            code="TICKET_ACCESS_DENIED",
            message="Access denied",
            predicate="actor.branch_id == ticket.branch_id or department technician or reviewer or admin",
        )


def can_assign(actor: Principal, ticket: Ticket, *, technician_id=None, ticket_department_id=None) -> bool:
    """Who may put a technician on a ticket.

    Admins and managers of the ticket's branch may assign anyone; a technician
    may only pick the ticket up for themself within the ticket's department.
    """
    if not actor.is_active:
        return False
    if actor.role == ROLE_ADMIN:
        return True
    if actor.role == ROLE_MANAGER:
        return actor.branch_id is not None and actor.branch_id == ticket.branch_id
    if actor.role == ROLE_TECHNICIAN:
        if technician_id is not None and technician_id != actor.id:
            return False
        if not can_access_ticket(actor, ticket):
            return False
        return ticket_department_id is None or actor.department_id == ticket_department_id
    return False


def can_transition(actor: Principal, ticket: Ticket, next_status: str) -> bool:
    """Role guard for lifecycle edges outside approval and assignment."""
    if not can_access_ticket(actor, ticket):
        return False
    nxt = normalize_status(next_status)
    current = normalize_status(ticket.status)

    if actor.role == ROLE_ADMIN:
        return True

    if current == STATUS_DRAFT:
        return actor.id == ticket.creator_id

    if nxt in {STATUS_IN_PROGRESS, STATUS_PENDING, STATUS_RESOLVED} and current in {
        STATUS_ASSIGNED, STATUS_IN_PROGRESS, STATUS_PENDING
    }:
        return ticket.assignee_id is not None and ticket.assignee_id == actor.id

    if nxt == STATUS_CLOSED:
        if actor.id == ticket.creator_id:
            return True
        return actor.role == ROLE_MANAGER and actor.branch_id == ticket.branch_id

    return False


def require_transition(actor: Principal, ticket: Ticket, next_status: str) -> None:
    if not can_transition(actor, ticket, next_status):
        raise Unauthorized(
            code="TRANSITION_FORBIDDEN",
            message=f"You are not allowed to move this ticket to {normalize_status(next_status)}",
            predicate=f"can_transition({normalize_status(ticket.status)} -> {normalize_status(next_status)})",
        )


def can_suggest_classification(actor: Principal, ticket: Ticket) -> bool:
    return actor.is_active and actor.id == ticket.creator_id


def can_confirm_classification(actor: Principal, ticket: Ticket) -> bool:
    if not actor.can("canConfirmClassification"):
        return False
    return can_access_ticket(actor, ticket)


def can_lock_classification(actor: Principal) -> bool:
    return actor.can("canLockClassification")


def can_override_compliance(actor: Principal) -> bool:
    return actor.can("canOverrideCompliance")


def visible_to(actor: Principal, ticket: Ticket) -> bool:
    """Listing filter; same predicate as single-ticket access."""
    return can_access_ticket(actor, ticket)
