"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from uuid import UUID


# Ticket schemas
class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: str = "medium"
    service_category_id: UUID
    # Admins without a home branch must name the branch explicitly.
    branch_id: Optional[UUID] = None
    government_entity: Optional[str] = Field(None, max_length=255)
    draft: bool = False
    # Optional requester classification suggestion
    root_cause: Optional[str] = None
    issue_category: Optional[str] = None


class TicketResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    priority: str
    status: str
    branch_id: UUID
    creator_id: UUID
    assignee_id: Optional[UUID] = None
    service_category_id: UUID
    requires_compliance_approval: bool
    is_government_ticket: bool
    government_entity: Optional[str] = None
    manager_comments: Optional[str] = None
    sla_due_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class StatusTransitionRequest(BaseModel):
    status: str
    comments: Optional[str] = None


class ApprovalRequest(BaseModel):
    comments: Optional[str] = None
    gov_docs_verified: bool = False


class RejectionRequest(BaseModel):
    comments: Optional[str] = None


class ApprovalResponse(BaseModel):
    ticket: TicketResponse
    reason_code: str


class AssignRequest(BaseModel):
    # Omit to let the auto-assignment resolver pick a technician.
    technician_id: Optional[UUID] = None


class AssignmentResponse(BaseModel):
    ticket: TicketResponse
    assignee_id: Optional[UUID] = None
    method: Optional[str] = None
    no_candidate: bool = False


class ComplianceOverrideRequest(BaseModel):
    status: str
    comments: str = Field(..., min_length=1)


class ComplianceApprovalResponse(BaseModel):
    id: UUID
    ticket_id: UUID
    reviewer_id: Optional[UUID] = None
    status: str
    comments: Optional[str] = None
    gov_docs_verified: bool
    decided_by_id: Optional[UUID] = None
    decided_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Categorization schemas
class CategorizationSuggestRequest(BaseModel):
    root_cause: Optional[str] = None
    issue_category: Optional[str] = None


class CategorizationConfirmRequest(BaseModel):
    root_cause: str
    issue_category: str
    reason: Optional[str] = None


class BulkCategorizationRequest(BaseModel):
    ticket_ids: list[UUID]
    root_cause: str
    issue_category: str
    reason: str


class CategorizationLockRequest(BaseModel):
    locked: bool
    reason: Optional[str] = None


class ClassificationResponse(BaseModel):
    ticket_id: UUID
    user_root_cause: Optional[str] = None
    user_issue_category: Optional[str] = None
    confirmed_root_cause: Optional[str] = None
    confirmed_issue_category: Optional[str] = None
    override_reason: Optional[str] = None
    confirmed_by_id: Optional[UUID] = None
    confirmed_at: Optional[datetime] = None
    locked: bool = False
    lock_reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class BulkItemResponse(BaseModel):
    ticket_id: UUID
    success: bool
    code: Optional[str] = None
    message: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class BulkCategorizationResponse(BaseModel):
    results: list[BulkItemResponse]
    processed_count: int
    failed_count: int
    model_config = ConfigDict(from_attributes=True)
