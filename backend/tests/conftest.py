from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest

from servicedesk.config import Settings
from servicedesk.domain import (
    AssignmentCandidate,
    Branch,
    Classification,
    ComplianceApproval,
    Principal,
    ServiceCategory,
    Ticket,
)
from servicedesk.store import Increment, WriteBatch, matches_expected
from servicedesk.use_cases.context import WorkflowContext

FIXED_NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class _StoreStub:
    """In-memory ticket store with the same guarded-write semantics as the SQL store."""

    def __init__(self, principals: dict[UUID, Principal]) -> None:
        self.principals = principals
        self.tickets: dict[UUID, Ticket] = {}
        self.compliance: dict[UUID, ComplianceApproval] = {}
        self.classifications: dict[UUID, Classification] = {}
        self.categories: dict[UUID, ServiceCategory] = {}
        self.technicians: dict[UUID, AssignmentCandidate] = {}
        self.rows: dict[str, list[dict]] = {}
        self.lock = threading.Lock()
        self.barrier: threading.Barrier | None = None
        self.commit_calls = 0

    # reads
    def read_ticket(self, ticket_id):
        return self.tickets.get(ticket_id)

    def read_compliance_approval(self, ticket_id):
        for record in self.compliance.values():
            if record.ticket_id == ticket_id:
                return record
        return None

    def read_classification(self, ticket_id):
        return self.classifications.get(ticket_id)

    def read_service_category(self, category_id):
        return self.categories.get(category_id)

    def list_technicians(self, department_id):
        return sorted(
            (tech for tech in self.technicians.values() if tech.department_id == department_id),
            key=lambda tech: tech.technician_id,
        )

    def find_compliance_reviewer(self, department_id):
        reviewers = sorted(
            principal.id
            for principal in self.principals.values()
            if principal.department_id == department_id
            and principal.is_authorized_reviewer
            and principal.is_active
            and principal.role in {"manager", "admin"}
        )
        return reviewers[0] if reviewers else None

    def list_tickets(self, *, statuses=None, branch_id=None, unconfirmed_only=False, limit=200):
        result = []
        for ticket in self.tickets.values():
            if statuses is not None and ticket.status not in set(statuses):
                continue
            if branch_id is not None and ticket.branch_id != branch_id:
                continue
            if unconfirmed_only:
                classification = self.classifications.get(ticket.id)
                if classification is not None and classification.is_confirmed:
                    continue
            result.append(ticket)
        return result[:limit]

    # writes
    def _table(self, entity):
        return {
            "ticket": self.tickets,
            "compliance_approval": self.compliance,
            "classification": self.classifications,
            "user": self.technicians,
        }[entity]

    def write_ticket_atomic(self, batch: WriteBatch) -> None:
        barrier = self.barrier
        if barrier is not None:
            barrier.wait(timeout=5)
            self.barrier = None
        with self.lock:
            staged = []
            for update in batch.updates:
                table = self._table(update.entity)
                current = table.get(update.entity_id)
                matched = current is not None and all(
                    matches_expected(getattr(current, name), expected)
                    for name, expected in update.expected.items()
                )
                if not matched:
                    if update.required:
                        raise update.conflict_error()
                    continue
                values = {
                    name: getattr(current, name) + value.amount if isinstance(value, Increment) else value
                    for name, value in update.values.items()
                }
                staged.append((table, update.entity_id, replace(current, **values)))

            for insert in batch.inserts:
                values = dict(insert.values)
                if insert.entity == "ticket":
                    self.tickets[values["id"]] = Ticket(**values)
                elif insert.entity == "compliance_approval":
                    self.compliance[values["id"]] = ComplianceApproval(**values)
                elif insert.entity == "classification":
                    self.classifications[values["ticket_id"]] = Classification(**values)
                else:
                    self.rows.setdefault(insert.entity, []).append(values)

            for table, key, record in staged:
                table[key] = record
            self.commit_calls += 1

    def audit_actions(self) -> list[str]:
        return [row["action"] for row in self.rows.get("audit_event", [])]


class _BranchDirectoryStub:
    def __init__(self) -> None:
        self.branches: dict[UUID, Branch] = {}

    def get_branch(self, branch_id):
        return self.branches.get(branch_id)

    def is_active(self, branch_id):
        branch = self.branches.get(branch_id)
        return branch is not None and branch.is_active


class _IdentityStub:
    def __init__(self, principals: dict[UUID, Principal]) -> None:
        self.principals = principals

    def get_principal(self, user_id):
        return self.principals.get(user_id)


class _RecordingSink:
    def __init__(self) -> None:
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]


class World:
    """Per-test set of branches, users, categories and the workflow context over them."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.principals: dict[UUID, Principal] = {}
        self.store = _StoreStub(self.principals)
        self.branches = _BranchDirectoryStub()
        self.identities = _IdentityStub(self.principals)
        self.sink = _RecordingSink()
        self.settings = settings or Settings()
        self.ctx = WorkflowContext(
            store=self.store,
            branches=self.branches,
            identities=self.identities,
            events=self.sink,
            settings=self.settings,
            clock=lambda: FIXED_NOW,
        )

    def branch(self, *, kind="PRIMARY", code=None, parent_id=None, is_active=True) -> Branch:
        branch = Branch(
            id=uuid4(),
            code=code or f"BR-{len(self.branches.branches) + 1}",
            kind=kind,
            is_active=is_active,
            parent_id=parent_id,
        )
        self.branches.branches[branch.id] = branch
        return branch

    def user(self, role, *, branch=None, department_id=None, reviewer=False, active=True, name="") -> Principal:
        principal = Principal(
            id=uuid4(),
            role=role,
            branch_id=branch.id if branch is not None else None,
            department_id=department_id,
            is_authorized_reviewer=reviewer,
            is_active=active,
            name=name,
        )
        self.principals[principal.id] = principal
        return principal

    def technician(self, department_id, *, workload=0, capacity=10, available=True, technician_id=None) -> Principal:
        principal = Principal(id=technician_id or uuid4(), role="technician", department_id=department_id)
        self.principals[principal.id] = principal
        self.store.technicians[principal.id] = AssignmentCandidate(
            technician_id=principal.id,
            department_id=department_id,
            current_workload=workload,
            workload_capacity=capacity,
            is_available=available,
        )
        return principal

    def category(self, *, name="Network Access", department_id=None, requires_approval=True,
                 requires_compliance=False, is_government=False, is_active=True) -> ServiceCategory:
        category = ServiceCategory(
            id=uuid4(),
            name=name,
            department_id=department_id or uuid4(),
            requires_approval=requires_approval,
            requires_compliance_approval=requires_compliance,
            is_government=is_government,
            is_active=is_active,
        )
        self.store.categories[category.id] = category
        return category

    def ticket(self, *, branch, creator, category, status="pending_approval", assignee=None,
               compliance_reviewer=None, compliance_status=None, priority="medium") -> Ticket:
        ticket = Ticket(
            id=uuid4(),
            title="Printer offline",
            priority=priority,
            status=status,
            branch_id=branch.id,
            creator_id=creator.id,
            service_category_id=category.id,
            assignee_id=assignee.id if assignee is not None else None,
            requires_compliance_approval=compliance_status is not None,
        )
        self.store.tickets[ticket.id] = ticket
        if compliance_status is not None:
            record = ComplianceApproval(
                id=uuid4(),
                ticket_id=ticket.id,
                reviewer_id=compliance_reviewer.id if compliance_reviewer is not None else None,
                status=compliance_status,
            )
            self.store.compliance[record.id] = record
        return ticket

    def classification(self, ticket, **values) -> Classification:
        record = Classification(ticket_id=ticket.id, **values)
        self.store.classifications[ticket.id] = record
        return record

    def workload(self, technician) -> int:
        return self.store.technicians[technician.id].current_workload


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def make_world():
    return World
