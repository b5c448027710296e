"""Ticket classification rules (root cause x issue category)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from ..domain import ISSUE_CATEGORIES, ROOT_CAUSES, Classification, Principal
from ..domain_errors import (
    AlreadyProcessed,
    ClassificationLocked,
    InvalidCategorizationValue,
    MissingOverrideReason,
    ValidationError,
)

# Columns written together by a confirmation.
CONFIRMATION_FIELDS: tuple[str, ...] = (
    "confirmed_root_cause",
    "confirmed_issue_category",
    "override_reason",
    "confirmed_by_id",
    "confirmed_at",
)


@dataclass(frozen=True)
class ClassificationChange:
    field: str
    old_value: str | None
    new_value: str | None


def validate_root_cause(value: str | None) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in ROOT_CAUSES:
        raise InvalidCategorizationValue(
            message=f"Invalid root cause: {value!r}",
            details={"field": "rootCause", "allowed": list(ROOT_CAUSES)},
        )
    return normalized


def validate_issue_category(value: str | None) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in ISSUE_CATEGORIES:
        raise InvalidCategorizationValue(
            message=f"Invalid issue category: {value!r}",
            details={"field": "issueCategory", "allowed": list(ISSUE_CATEGORIES)},
        )
    return normalized


def validate_optional_pair(root_cause: str | None, issue_category: str | None) -> tuple[str | None, str | None]:
    """Validate a requester suggestion where either axis may be omitted."""
    return (
        validate_root_cause(root_cause) if root_cause is not None else None,
        validate_issue_category(issue_category) if issue_category is not None else None,
    )


def normalize_reason(reason: str | None, *, min_length: int, max_length: int) -> str | None:
    """Blank reasons count as missing; supplied reasons must fit the length bounds."""
    if reason is None:
        return None
    text = reason.strip()
    if not text:
        return None
    if len(text) < min_length or len(text) > max_length:
        raise ValidationError(
            code="OVERRIDE_REASON_LENGTH",
            message=f"Reason must be between {min_length} and {max_length} characters",
        )
    return text


def is_override(classification: Classification, root_cause: str, issue_category: str) -> bool:
    """A confirmation overrides the requester when it contradicts a suggested axis."""
    if classification.user_root_cause is not None and classification.user_root_cause != root_cause:
        return True
    if classification.user_issue_category is not None and classification.user_issue_category != issue_category:
        return True
    return False


def ensure_unlocked(classification: Classification, actor: Principal) -> None:
    if classification.locked and not actor.is_admin:
        raise ClassificationLocked(predicate="classification.locked == false or actor.role == admin")


def _changes(before: Classification, after: Classification, fields: tuple[str, ...]) -> list[ClassificationChange]:
    changes = []
    for name in fields:
        old, new = getattr(before, name), getattr(after, name)
        if old != new:
            changes.append(ClassificationChange(
                field=name,
                old_value=None if old is None else str(old),
                new_value=None if new is None else str(new),
            ))
    return changes


def apply_suggestion(
    classification: Classification,
    *,
    actor: Principal,
    root_cause: str | None,
    issue_category: str | None,
) -> tuple[Classification, list[ClassificationChange]]:
    """Store the requester's suggestion (once, before technician confirmation)."""
    ensure_unlocked(classification, actor)
    root_cause, issue_category = validate_optional_pair(root_cause, issue_category)
    if root_cause is None and issue_category is None:
        raise ValidationError(message="Provide a root cause or an issue category")

    if classification.is_confirmed:
        raise AlreadyProcessed(
            code="CLASSIFICATION_ALREADY_CONFIRMED",
            message="Classification has already been confirmed by a technician",
        )
    if classification.has_suggestion:
        if (classification.user_root_cause, classification.user_issue_category) == (root_cause, issue_category):
            return classification, []
        raise AlreadyProcessed(
            code="CLASSIFICATION_ALREADY_SUGGESTED",
            message="A classification has already been suggested for this ticket",
        )

    updated = replace(classification, user_root_cause=root_cause, user_issue_category=issue_category)
    return updated, _changes(classification, updated, ("user_root_cause", "user_issue_category"))


def apply_confirmation(
    classification: Classification,
    *,
    actor: Principal,
    root_cause: str,
    issue_category: str,
    reason: str | None,
    min_reason_length: int,
    max_reason_length: int,
    at: datetime,
) -> tuple[Classification, list[ClassificationChange]]:
    """Technician confirmation, with a mandatory reason when overriding the requester."""
    root_cause = validate_root_cause(root_cause)
    issue_category = validate_issue_category(issue_category)
    ensure_unlocked(classification, actor)
    reason = normalize_reason(reason, min_length=min_reason_length, max_length=max_reason_length)

    override = is_override(classification, root_cause, issue_category)
    if override and reason is None:
        raise MissingOverrideReason(details={
            "userRootCause": classification.user_root_cause,
            "userIssueCategory": classification.user_issue_category,
        })

    if (
        classification.confirmed_root_cause == root_cause
        and classification.confirmed_issue_category == issue_category
        and (reason is None or reason == classification.override_reason)
    ):
        return classification, []

    updated = replace(
        classification,
        confirmed_root_cause=root_cause,
        confirmed_issue_category=issue_category,
        override_reason=reason,
        confirmed_by_id=actor.id,
        confirmed_at=at,
    )
    changes = _changes(classification, updated, ("confirmed_root_cause", "confirmed_issue_category"))
    return updated, changes


def apply_lock(
    classification: Classification,
    *,
    actor_id: UUID,
    locked: bool,
    reason: str | None,
) -> tuple[Classification, list[ClassificationChange]]:
    if classification.locked == locked:
        return classification, []
    updated = replace(
        classification,
        locked=locked,
        locked_by_id=actor_id if locked else None,
        lock_reason=reason,
    )
    return updated, [ClassificationChange(
        field="classification_lock",
        old_value="locked" if classification.locked else "unlocked",
        new_value="locked" if locked else "unlocked",
    )]


def confirmation_values(classification: Classification) -> dict[str, object]:
    return {name: getattr(classification, name) for name in CONFIRMATION_FIELDS}
