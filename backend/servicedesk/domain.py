"""In-memory records the workflow engine operates on.

The store maps ORM rows into these immutable values; use-cases derive new
values with ``dataclasses.replace`` and hand the field changes to the store
as one atomic batch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

ROLE_REQUESTER = "requester"
ROLE_MANAGER = "manager"
ROLE_TECHNICIAN = "technician"
ROLE_ADMIN = "admin"
ROLES: frozenset[str] = frozenset({ROLE_REQUESTER, ROLE_MANAGER, ROLE_TECHNICIAN, ROLE_ADMIN})

BRANCH_PRIMARY = "PRIMARY"
BRANCH_SUB = "SUB"

PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent", "critical")
ROOT_CAUSES: tuple[str, ...] = ("human_error", "system_error", "external_factor", "undetermined")
ISSUE_CATEGORIES: tuple[str, ...] = ("request", "complaint", "problem")

COMPLIANCE_PENDING = "pending"
COMPLIANCE_APPROVED = "approved"
COMPLIANCE_REJECTED = "rejected"
COMPLIANCE_STATUSES: frozenset[str] = frozenset({COMPLIANCE_PENDING, COMPLIANCE_APPROVED, COMPLIANCE_REJECTED})

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_REQUESTER: frozenset({
        "canCreateTickets",
        "canSuggestClassification",
    }),
    ROLE_MANAGER: frozenset({
        "canCreateTickets",
        "canSuggestClassification",
        "canAssignTickets",
        "canCloseBranchTickets",
    }),
    ROLE_TECHNICIAN: frozenset({
        "canWorkTickets",
        "canSelfAssign",
        "canConfirmClassification",
    }),
    ROLE_ADMIN: frozenset({
        "canCreateTickets",
        "canSuggestClassification",
        "canApproveTickets",
        "canAssignTickets",
        "canCloseBranchTickets",
        "canWorkTickets",
        "canConfirmClassification",
        "canLockClassification",
        "canOverrideCompliance",
        "canViewAllBranches",
    }),
}


@dataclass(frozen=True)
class Branch:
    id: UUID
    code: str
    kind: str
    is_active: bool = True
    name: str = ""
    # Informational only.
    parent_id: UUID | None = None


@dataclass(frozen=True)
class Principal:
    """Acting user resolved by the identity context."""

    id: UUID
    role: str
    branch_id: UUID | None = None
    department_id: UUID | None = None
    is_authorized_reviewer: bool = False
    is_active: bool = True
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_department_technician(self) -> bool:
        return self.role == ROLE_TECHNICIAN and self.branch_id is None and self.department_id is not None

    def capabilities(self) -> frozenset[str]:
        caps = ROLE_CAPABILITIES.get(self.role, frozenset())
        # Managers only gain approval authority through the reviewer flag.
        if self.role == ROLE_MANAGER and self.is_authorized_reviewer:
            caps = caps | {"canApproveTickets"}
        return caps

    def can(self, capability: str) -> bool:
        return self.is_active and capability in self.capabilities()


@dataclass(frozen=True)
class ServiceCategory:
    id: UUID
    name: str
    department_id: UUID
    requires_approval: bool = True
    requires_compliance_approval: bool = False
    is_government: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class Ticket:
    id: UUID
    title: str
    priority: str
    status: str
    branch_id: UUID
    creator_id: UUID
    service_category_id: UUID
    description: str | None = None
    assignee_id: UUID | None = None
    requires_compliance_approval: bool = False
    is_government_ticket: bool = False
    government_entity: str | None = None
    manager_comments: str | None = None
    sla_due_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ComplianceApproval:
    id: UUID
    ticket_id: UUID
    reviewer_id: UUID | None
    status: str = COMPLIANCE_PENDING
    comments: str | None = None
    gov_docs_verified: bool = False
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == COMPLIANCE_PENDING


@dataclass(frozen=True)
class Classification:
    ticket_id: UUID
    user_root_cause: str | None = None
    user_issue_category: str | None = None
    confirmed_root_cause: str | None = None
    confirmed_issue_category: str | None = None
    override_reason: str | None = None
    confirmed_by_id: UUID | None = None
    confirmed_at: datetime | None = None
    locked: bool = False
    locked_by_id: UUID | None = None
    lock_reason: str | None = None

    @property
    def has_suggestion(self) -> bool:
        return self.user_root_cause is not None or self.user_issue_category is not None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_root_cause is not None and self.confirmed_issue_category is not None


@dataclass(frozen=True)
class AssignmentCandidate:
    """Technician snapshot used for one assignment decision (never stored)."""

    technician_id: UUID
    department_id: UUID | None
    current_workload: int
    workload_capacity: int
    is_available: bool = True
    is_active: bool = True

    @property
    def load_ratio(self) -> float:
        if self.workload_capacity <= 0:
            return float("inf")
        return self.current_workload / self.workload_capacity
