"""Ticket classification endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from ..auth import get_current_principal
from ..dependencies import get_workflow_context
from ..domain import Principal
from ..schemas import (
    BulkCategorizationRequest,
    BulkCategorizationResponse,
    CategorizationConfirmRequest,
    CategorizationLockRequest,
    CategorizationSuggestRequest,
    ClassificationResponse,
    TicketResponse,
)
from ..use_cases import categorization
from ..use_cases.context import WorkflowContext

router = APIRouter(tags=["categorization"])


@router.get("/tickets/{ticket_id}/classification", response_model=ClassificationResponse)
def get_classification(
    ticket_id: UUID,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return categorization.get_classification(ctx, ticket_id=ticket_id, actor_id=principal.id)


@router.post("/tickets/{ticket_id}/classification/suggest", response_model=ClassificationResponse)
def suggest_classification(
    ticket_id: UUID,
    data: CategorizationSuggestRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return categorization.suggest_categorization(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        root_cause=data.root_cause,
        issue_category=data.issue_category,
    )


@router.post("/tickets/{ticket_id}/classification/confirm", response_model=ClassificationResponse)
def confirm_classification(
    ticket_id: UUID,
    data: CategorizationConfirmRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return categorization.confirm_categorization(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        root_cause=data.root_cause,
        issue_category=data.issue_category,
        reason=data.reason,
    )


@router.post("/tickets/{ticket_id}/classification/lock", response_model=ClassificationResponse)
def lock_classification(
    ticket_id: UUID,
    data: CategorizationLockRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return categorization.lock_categorization(
        ctx,
        ticket_id=ticket_id,
        actor_id=principal.id,
        locked=data.locked,
        reason=data.reason,
    )


@router.post("/classification/bulk-confirm", response_model=BulkCategorizationResponse)
def bulk_confirm_classification(
    data: BulkCategorizationRequest,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    result = categorization.bulk_confirm_categorization(
        ctx,
        ticket_ids=data.ticket_ids,
        actor_id=principal.id,
        root_cause=data.root_cause,
        issue_category=data.issue_category,
        reason=data.reason,
    )
    return BulkCategorizationResponse.model_validate(result)


@router.get("/classification/uncategorized", response_model=list[TicketResponse])
def list_uncategorized(
    principal: Principal = Depends(get_current_principal),
    ctx: WorkflowContext = Depends(get_workflow_context),
):
    return categorization.list_uncategorized(ctx, actor_id=principal.id)
