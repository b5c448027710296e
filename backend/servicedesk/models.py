"""SQLAlchemy models for branches, principals, tickets and their workflow records."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text, JSON, Uuid,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base
from .domain import ISSUE_CATEGORIES, PRIORITIES, ROOT_CAUSES

JSONType = JSON().with_variant(JSONB(), "postgresql")

TICKET_STATUSES = (
    'draft', 'pending_approval', 'approved', 'rejected', 'open',
    'assigned', 'in_progress', 'pending', 'resolved', 'closed',
)


def _in(column, values, *, nullable=False):
    clause = column.in_(values)
    if nullable:
        clause = clause | (column == None)  # noqa: E711
    return clause


class Branch(Base):
    """Organizational unit. Kind is metadata only, never an approval path."""
    __tablename__ = "branches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    kind = Column(String(20), nullable=False, default='PRIMARY')
    is_active = Column(Boolean, default=True, nullable=False)
    # Informational hierarchy link; not consulted by authorization.
    parent_id = Column(Uuid, ForeignKey("branches.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(kind.in_(['PRIMARY', 'SUB']), name='chk_branch_kind'),
    )

    users = relationship("User", back_populates="branch")


class Department(Base):
    """Technical department that owns service categories."""
    __tablename__ = "departments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    categories = relationship("ServiceCategory", back_populates="department")


class ServiceCategory(Base):
    """Service catalog entry with its routing and approval flags."""
    __tablename__ = "service_categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    department_id = Column(Uuid, ForeignKey("departments.id"), nullable=False, index=True)
    requires_approval = Column(Boolean, default=True, nullable=False)
    requires_compliance_approval = Column(Boolean, default=False, nullable=False)
    # KASDA / treasury linkage
    is_government = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    department = relationship("Department", back_populates="categories")


class User(Base):
    """User model (requesters, managers, technicians, admins)."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, index=True)
    # Null for department-level technicians.
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=True, index=True)
    # Null for branch-scoped actors.
    department_id = Column(Uuid, ForeignKey("departments.id"), nullable=True, index=True)
    is_authorized_reviewer = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # Technician workload
    is_available = Column(Boolean, default=True, nullable=False)
    current_workload = Column(Integer, default=0, nullable=False)
    workload_capacity = Column(Integer, default=10, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            role.in_(['requester', 'manager', 'technician', 'admin']),
            name='chk_user_role'
        ),
        CheckConstraint(current_workload >= 0, name='chk_user_workload_non_negative'),
        CheckConstraint(workload_capacity >= 0, name='chk_user_capacity_non_negative'),
    )

    branch = relationship("Branch", back_populates="users")


class Ticket(Base):
    """Ticket model. branch_id is the tenant key and never changes."""
    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, default='medium')
    status = Column(String(30), nullable=False, default='open', index=True)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False, index=True)
    creator_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    service_category_id = Column(Uuid, ForeignKey("service_categories.id"), nullable=False, index=True)
    requires_compliance_approval = Column(Boolean, default=False, nullable=False)
    is_government_ticket = Column(Boolean, default=False, nullable=False)
    government_entity = Column(String(255), nullable=True)
    manager_comments = Column(Text, nullable=True)
    sla_due_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(priority.in_(PRIORITIES), name='chk_ticket_priority'),
        CheckConstraint(status.in_(TICKET_STATUSES), name='chk_ticket_status'),
        Index('idx_tickets_branch_status', 'branch_id', 'status'),
    )

    compliance_approval = relationship(
        "ComplianceApproval", back_populates="ticket", uselist=False, cascade="all, delete-orphan"
    )
    classification = relationship(
        "TicketClassification", back_populates="ticket", uselist=False, cascade="all, delete-orphan"
    )


class ComplianceApproval(Base):
    """Business / KASDA approval record, at most one per ticket."""
    __tablename__ = "compliance_approvals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, unique=True)
    reviewer_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default='pending', index=True)
    comments = Column(Text, nullable=True)
    gov_docs_verified = Column(Boolean, default=False, nullable=False)
    decided_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(['pending', 'approved', 'rejected']),
            name='chk_compliance_status'
        ),
    )

    ticket = relationship("Ticket", back_populates="compliance_approval")


class TicketClassification(Base):
    """Root cause x issue category tagging of a ticket."""
    __tablename__ = "ticket_classifications"

    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), primary_key=True)
    user_root_cause = Column(String(30), nullable=True)
    user_issue_category = Column(String(30), nullable=True)
    confirmed_root_cause = Column(String(30), nullable=True, index=True)
    confirmed_issue_category = Column(String(30), nullable=True, index=True)
    override_reason = Column(Text, nullable=True)
    confirmed_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    locked = Column(Boolean, default=False, nullable=False)
    locked_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    lock_reason = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(_in(user_root_cause, ROOT_CAUSES, nullable=True), name='chk_cls_user_root_cause'),
        CheckConstraint(_in(confirmed_root_cause, ROOT_CAUSES, nullable=True), name='chk_cls_confirmed_root_cause'),
        CheckConstraint(
            _in(user_issue_category, ISSUE_CATEGORIES, nullable=True), name='chk_cls_user_issue_category'
        ),
        CheckConstraint(
            _in(confirmed_issue_category, ISSUE_CATEGORIES, nullable=True), name='chk_cls_confirmed_issue_category'
        ),
    )

    ticket = relationship("Ticket", back_populates="classification")


class ClassificationAudit(Base):
    """Per-field classification change journal."""
    __tablename__ = "classification_audits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    changed_by_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    field_changed = Column(String(50), nullable=False)
    old_value = Column(String(100), nullable=True)
    new_value = Column(String(100), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class TicketAssignmentLog(Base):
    """Assignment history (auto and manual)."""
    __tablename__ = "ticket_assignment_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    assignee_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    method = Column(String(10), nullable=False)
    reason = Column(Text, nullable=True)
    assigned_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(method.in_(['auto', 'manual']), name='chk_assignment_method'),
    )


class AuditEvent(Base):
    """Audit event model."""
    __tablename__ = "audit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Uuid, nullable=False)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    details = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            action.in_([
                'ticket_created', 'ticket_submitted', 'ticket_status_changed',
                'ticket_approved', 'ticket_rejected', 'ticket_assigned',
                'compliance_override', 'classification_suggested',
                'classification_confirmed', 'classification_locked',
                'classification_unlocked',
            ]),
            name='chk_audit_action'
        ),
        CheckConstraint(
            entity_type.in_(['ticket', 'compliance_approval', 'classification']),
            name='chk_audit_entity_type'
        ),
        Index('idx_audit_events_entity', 'entity_type', 'entity_id'),
    )


class EventOutbox(Base):
    """
    Domain event outbox - ONE ROW PER EVENT.
    Filled by the Celery worker that consumes the event sink.
    """
    __tablename__ = "event_outbox"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(String(50), nullable=False, index=True)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(Uuid, nullable=True)
    actor_id = Column(Uuid, nullable=True)
    payload = Column(JSONType, default=dict)
    status = Column(String(20), default='pending', index=True)  # pending/sent/failed
    # Format: event_type:ticket_id:occurred_at
    idempotency_key = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            status.in_(['pending', 'sent', 'failed']),
            name='chk_event_outbox_status'
        ),
    )
