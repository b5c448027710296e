"""Ticket lifecycle, approval and assignment endpoints."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from ..auth import get_current_principal
from ..dependencies import get_workflow_context
from ..domain import Principal
from ..schemas import (
    ApprovalRequest,
    ApprovalResponse,
    AssignmentResponse,
    AssignRequest,
    ComplianceApprovalResponse,
    ComplianceOverrideRequest,
    RejectionRequest,
    StatusTransitionRequest,
    TicketCreate,
    TicketResponse,
)
from ..use_cases import approvals, assignment, tickets
from ..use_cases.context import WorkflowContext

router = APIRouter(tags=["tickets"])


def _approval_response(outcome: approvals.ApprovalOutcome) -> ApprovalResponse:
    return ApprovalResponse(
        ticket=TicketResponse.model_validate(outcome.ticket),
        reason_code=outcome.decision.reason_code,
    )


@router.post("/tickets", response_model=TicketResponse, status_code=201)
def create_ticket(
    data: TicketCreate,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return tickets.create_ticket(ctx, actor_id=principal.id, data=data)


@router.get("/tickets", response_model=list[TicketResponse])
def list_tickets(
    status: Optional[str] = None,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return tickets.list_tickets_for_actor(ctx, actor_id=principal.id, status=status)


@router.get("/tickets/pending-approvals", response_model=list[TicketResponse])
def list_pending_approvals(
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return approvals.list_pending_approvals(ctx, actor_id=principal.id)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: UUID,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return tickets.get_ticket_for_actor(ctx, ticket_id=ticket_id, actor_id=principal.id)


@router.post("/tickets/{ticket_id}/transition", response_model=TicketResponse)
def transition_ticket(
    ticket_id: UUID,
    data: StatusTransitionRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return tickets.transition_status(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        target_status=data.status,
        comments=data.comments,
    )


@router.post("/tickets/{ticket_id}/approve", response_model=ApprovalResponse)
def approve_ticket(
    ticket_id: UUID,
    data: ApprovalRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    outcome = approvals.approve_ticket(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        comments=data.comments,
        gov_docs_verified=data.gov_docs_verified,
    )
    return _approval_response(outcome)


@router.post("/tickets/{ticket_id}/reject", response_model=ApprovalResponse)
def reject_ticket(
    ticket_id: UUID,
    data: RejectionRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    outcome = approvals.reject_ticket(ctx, ticket_id=ticket_id, actor_id=principal.id, comments=data.comments)
    return _approval_response(outcome)


@router.post("/tickets/{ticket_id}/assign", response_model=AssignmentResponse)
def assign_ticket(
    ticket_id: UUID,
    data: AssignRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    outcome = assignment.assign_ticket(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        technician_id=data.technician_id,
    )
    return AssignmentResponse(
        ticket=TicketResponse.model_validate(outcome.ticket),
        assignee_id=outcome.assignee_id,
        method=outcome.method,
        no_candidate=outcome.no_candidate,
    )


@router.post("/tickets/{ticket_id}/compliance/override", response_model=ComplianceApprovalResponse)
def override_compliance(
    ticket_id: UUID,
    data: ComplianceOverrideRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return approvals.override_compliance_decision(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        status=data.status,
        comments=data.comments,
    )
