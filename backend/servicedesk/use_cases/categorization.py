"""Classification use-cases: suggest, confirm, bulk confirm, lock."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from uuid import UUID

from ..domain import Classification, Principal, Ticket
from ..domain_errors import AlreadyProcessed, DomainError, Unauthorized, ValidationError
from ..events import CLASSIFICATION_CONFIRMED, CLASSIFICATION_LOCKED
from ..services import categorization as rules
from ..services.authorization import (
    can_confirm_classification,
    can_lock_classification,
    can_suggest_classification,
    visible_to,
)
from ..store import WriteBatch
from .context import WorkflowContext, add_audit, commit, get_actor, get_ticket, make_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkItemResult:
    ticket_id: UUID
    success: bool
    code: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class BulkResult:
    results: list[BulkItemResult] = field(default_factory=list)
    processed_count: int = 0

    @property
    def failed_count(self) -> int:
        return len(self.results) - self.processed_count


def _concurrent_change() -> AlreadyProcessed:
    return AlreadyProcessed(
        code="CLASSIFICATION_CHANGED",
        message="Classification changed concurrently, reload and retry",
    )


def _load(ctx: WorkflowContext, ticket: Ticket) -> tuple[Classification, bool]:
    existing = ctx.store.read_classification(ticket.id)
    if existing is None:
        return Classification(ticket_id=ticket.id), False
    return existing, True


def _write_classification(
    batch: WriteBatch,
    *,
    before: Classification,
    after: Classification,
    exists: bool,
    fields: tuple[str, ...],
    guard: tuple[str, ...],
    actor: Principal,
) -> None:
    if not exists:
        batch.insert("classification", **asdict(after))
        return
    expected = {name: getattr(before, name) for name in guard}
    if not actor.is_admin:
        expected["locked"] = False
    batch.update(
        "classification",
        before.ticket_id,
        {name: getattr(after, name) for name in fields},
        expected=expected,
        conflict=_concurrent_change(),
    )


def _audit_changes(
    batch: WriteBatch,
    *,
    ticket: Ticket,
    actor: Principal,
    changes: list[rules.ClassificationChange],
    reason: str | None,
) -> None:
    for change in changes:
        batch.insert(
            "classification_audit",
            ticket_id=ticket.id,
            changed_by_id=actor.id,
            field_changed=change.field,
            old_value=change.old_value,
            new_value=change.new_value,
            reason=reason,
        )


def suggest_categorization(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    root_cause: str | None,
    issue_category: str | None,
) -> Classification:
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    if not can_suggest_classification(actor, ticket):
        raise Unauthorized(
            code="CLASSIFICATION_SUGGEST_FORBIDDEN",
            message="Only the ticket creator can suggest a classification",
            predicate="actor.id == ticket.creator_id",
        )

    classification, exists = _load(ctx, ticket)
    updated, changes = rules.apply_suggestion(
        classification, actor=actor, root_cause=root_cause, issue_category=issue_category
    )
    if not changes:
        return updated

    batch = WriteBatch()
    _write_classification(
        batch,
        before=classification,
        after=updated,
        exists=exists,
        fields=("user_root_cause", "user_issue_category"),
        guard=("user_root_cause", "user_issue_category"),
        actor=actor,
    )
    _audit_changes(batch, ticket=ticket, actor=actor, changes=changes, reason=None)
    add_audit(
        batch,
        action="classification_suggested",
        ticket=ticket,
        actor=actor,
        entity_type="classification",
        details={"root_cause": updated.user_root_cause, "issue_category": updated.user_issue_category},
    )
    commit(ctx, batch, [])
    return updated


def _confirm_one(
    ctx: WorkflowContext,
    *,
    ticket: Ticket,
    actor: Principal,
    root_cause: str,
    issue_category: str,
    reason: str | None,
) -> Classification:
    classification, exists = _load(ctx, ticket)
    updated, changes = rules.apply_confirmation(
        classification,
        actor=actor,
        root_cause=root_cause,
        issue_category=issue_category,
        reason=reason,
        min_reason_length=ctx.settings.OVERRIDE_REASON_MIN_LENGTH,
        max_reason_length=ctx.settings.OVERRIDE_REASON_MAX_LENGTH,
        at=ctx.clock(),
    )
    if updated is classification:
        return classification

    override = rules.is_override(classification, updated.confirmed_root_cause, updated.confirmed_issue_category)
    batch = WriteBatch()
    # The confirmed pair and the override reason land in one statement. Last
    # confirmation wins; only the suggestion the override was judged against is guarded.
    _write_classification(
        batch,
        before=classification,
        after=updated,
        exists=exists,
        fields=rules.CONFIRMATION_FIELDS,
        guard=("user_root_cause", "user_issue_category"),
        actor=actor,
    )
    _audit_changes(batch, ticket=ticket, actor=actor, changes=changes, reason=updated.override_reason)
    add_audit(
        batch,
        action="classification_confirmed",
        ticket=ticket,
        actor=actor,
        entity_type="classification",
        details={
            "root_cause": updated.confirmed_root_cause,
            "issue_category": updated.confirmed_issue_category,
            "override": override,
        },
    )
    commit(ctx, batch, [make_event(
        ctx,
        CLASSIFICATION_CONFIRMED,
        ticket=ticket,
        actor=actor,
        root_cause=updated.confirmed_root_cause,
        issue_category=updated.confirmed_issue_category,
        override=override,
    )])
    return updated


def _require_confirm(actor: Principal, ticket: Ticket) -> None:
    if not can_confirm_classification(actor, ticket):
        raise Unauthorized(
            code="CLASSIFICATION_CONFIRM_FORBIDDEN",
            message="You are not allowed to confirm this ticket's classification",
            predicate="actor.can(canConfirmClassification) and can_access_ticket",
        )


def confirm_categorization(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    root_cause: str,
    issue_category: str,
    reason: str | None = None,
) -> Classification:
    """Technician confirmation; overriding the requester's suggestion needs a reason."""
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    _require_confirm(actor, ticket)
    return _confirm_one(
        ctx, ticket=ticket, actor=actor, root_cause=root_cause, issue_category=issue_category, reason=reason
    )


def bulk_confirm_categorization(
    ctx: WorkflowContext,
    *,
    ticket_ids: list[UUID],
    actor_id: UUID,
    root_cause: str,
    issue_category: str,
    reason: str,
) -> BulkResult:
    """Apply one classification to many tickets; each ticket commits on its own."""
    actor = get_actor(ctx, actor_id)
    if not actor.can("canConfirmClassification"):
        raise Unauthorized(
            code="CLASSIFICATION_CONFIRM_FORBIDDEN",
            message="You are not allowed to confirm classifications",
            predicate="actor.can(canConfirmClassification)",
        )

    unique_ids = list(dict.fromkeys(ticket_ids or []))
    limit = ctx.settings.BULK_CATEGORIZATION_MAX_TICKETS
    if not unique_ids or len(unique_ids) > limit:
        raise ValidationError(
            code="BULK_TICKET_COUNT",
            message=f"Provide between 1 and {limit} ticket ids",
        )
    root_cause = rules.validate_root_cause(root_cause)
    issue_category = rules.validate_issue_category(issue_category)
    reason = rules.normalize_reason(
        reason,
        min_length=ctx.settings.OVERRIDE_REASON_MIN_LENGTH,
        max_length=ctx.settings.OVERRIDE_REASON_MAX_LENGTH,
    )
    if reason is None:
        raise ValidationError(code="BULK_REASON_REQUIRED", message="A reason is required for bulk reclassification")

    results: list[BulkItemResult] = []
    processed = 0
    for ticket_id in unique_ids:
        try:
            ticket = get_ticket(ctx, ticket_id)
            _require_confirm(actor, ticket)
            _confirm_one(
                ctx,
                ticket=ticket,
                actor=actor,
                root_cause=root_cause,
                issue_category=issue_category,
                reason=reason,
            )
        except DomainError as exc:
            results.append(BulkItemResult(ticket_id=ticket_id, success=False, code=exc.code, message=exc.message))
            continue
        processed += 1
        results.append(BulkItemResult(ticket_id=ticket_id, success=True))

    logger.info(
        "classification.bulk_confirm actor=%s requested=%s processed=%s",
        actor.id, len(unique_ids), processed,
    )
    return BulkResult(results=results, processed_count=processed)


def lock_categorization(
    ctx: WorkflowContext,
    *,
    ticket_id: UUID,
    actor_id: UUID,
    locked: bool,
    reason: str | None = None,
) -> Classification:
    actor = get_actor(ctx, actor_id)
    if not can_lock_classification(actor):
        raise Unauthorized(
            code="CLASSIFICATION_LOCK_FORBIDDEN",
            message="Only administrators can lock classifications",
            predicate="actor.role == admin",
        )
    ticket = get_ticket(ctx, ticket_id)
    reason = (reason or "").strip() or None

    classification, exists = _load(ctx, ticket)
    updated, changes = rules.apply_lock(classification, actor_id=actor.id, locked=locked, reason=reason)
    if not changes:
        return updated

    batch = WriteBatch()
    if exists:
        batch.update(
            "classification",
            ticket.id,
            {"locked": updated.locked, "locked_by_id": updated.locked_by_id, "lock_reason": updated.lock_reason},
            expected={"locked": classification.locked},
            conflict=_concurrent_change(),
        )
    else:
        batch.insert("classification", **asdict(updated))
    _audit_changes(batch, ticket=ticket, actor=actor, changes=changes, reason=reason)
    add_audit(
        batch,
        action="classification_locked" if locked else "classification_unlocked",
        ticket=ticket,
        actor=actor,
        entity_type="classification",
        details={"reason": reason},
    )
    commit(ctx, batch, [make_event(ctx, CLASSIFICATION_LOCKED, ticket=ticket, actor=actor, locked=locked)])
    logger.info("classification.lock ticket=%s actor=%s locked=%s", ticket.id, actor.id, locked)
    return updated


def get_classification(ctx: WorkflowContext, *, ticket_id: UUID, actor_id: UUID) -> Classification:
    actor = get_actor(ctx, actor_id)
    ticket = get_ticket(ctx, ticket_id)
    if not visible_to(actor, ticket):
        raise Unauthorized(code="TICKET_ACCESS_DENIED", message="Access denied")
    classification, _ = _load(ctx, ticket)
    return classification


def list_uncategorized(ctx: WorkflowContext, *, actor_id: UUID) -> list[Ticket]:
    """Visible tickets still lacking a confirmed classification."""
    actor = get_actor(ctx, actor_id)
    scoped_branch = None if actor.is_admin or actor.is_department_technician else actor.branch_id
    tickets = ctx.store.list_tickets(branch_id=scoped_branch, unconfirmed_only=True)
    return [ticket for ticket in tickets if visible_to(actor, ticket)]
