from datetime import datetime, timezone
from uuid import uuid4

import pytest

from servicedesk.domain import Classification, Principal
from servicedesk.domain_errors import (
    AlreadyProcessed,
    ClassificationLocked,
    InvalidCategorizationValue,
    MissingOverrideReason,
    ValidationError,
)
from servicedesk.services.categorization import (
    apply_confirmation,
    apply_lock,
    apply_suggestion,
    is_override,
    normalize_reason,
)

AT = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
TECHNICIAN = Principal(id=uuid4(), role="technician", department_id=uuid4())
ADMIN = Principal(id=uuid4(), role="admin")


def _confirm(classification: Classification, *, actor=TECHNICIAN, root_cause="system_error",
             issue_category="problem", reason=None):
    return apply_confirmation(
        classification,
        actor=actor,
        root_cause=root_cause,
        issue_category=issue_category,
        reason=reason,
        min_reason_length=10,
        max_reason_length=500,
        at=AT,
    )


def test_confirmation_matching_suggestion_needs_no_reason() -> None:
    suggested = Classification(ticket_id=uuid4(), user_root_cause="system_error", user_issue_category="problem")

    updated, changes = _confirm(suggested)

    assert updated.confirmed_root_cause == "system_error"
    assert updated.confirmed_issue_category == "problem"
    assert updated.confirmed_by_id == TECHNICIAN.id
    assert {change.field for change in changes} == {"confirmed_root_cause", "confirmed_issue_category"}


def test_override_without_reason_is_rejected() -> None:
    suggested = Classification(ticket_id=uuid4(), user_root_cause="human_error", user_issue_category="request")

    with pytest.raises(MissingOverrideReason) as exc:
        _confirm(suggested)

    assert exc.value.http_status == 400
    assert exc.value.code == "OVERRIDE_REASON_REQUIRED"


def test_override_on_single_axis_counts_as_override() -> None:
    suggested = Classification(ticket_id=uuid4(), user_root_cause="system_error", user_issue_category="request")
    assert is_override(suggested, "system_error", "problem")


def test_override_with_reason_is_recorded() -> None:
    suggested = Classification(ticket_id=uuid4(), user_root_cause="human_error", user_issue_category="request")

    updated, _ = _confirm(suggested, reason="Core banking batch job failed overnight")

    assert updated.override_reason == "Core banking batch job failed overnight"
    assert updated.user_root_cause == "human_error"


def test_no_suggestion_means_no_override_and_reason_optional() -> None:
    updated, _ = _confirm(Classification(ticket_id=uuid4()))
    assert updated.is_confirmed
    assert updated.override_reason is None


@pytest.mark.parametrize("reason", ["too short", "x" * 501])
def test_reason_length_is_bounded(reason: str) -> None:
    with pytest.raises(ValidationError, match="between 10 and 500"):
        normalize_reason(reason, min_length=10, max_length=500)


def test_blank_reason_counts_as_missing() -> None:
    assert normalize_reason("   ", min_length=10, max_length=500) is None


@pytest.mark.parametrize(
    ("root_cause", "issue_category"),
    [("hardware_failure", "problem"), ("system_error", "incident"), ("", "problem")],
)
def test_values_outside_taxonomy_are_rejected(root_cause: str, issue_category: str) -> None:
    with pytest.raises(InvalidCategorizationValue):
        _confirm(Classification(ticket_id=uuid4()), root_cause=root_cause, issue_category=issue_category)


def test_identical_reconfirmation_is_a_noop() -> None:
    confirmed, _ = _confirm(Classification(ticket_id=uuid4()))

    again, changes = _confirm(confirmed)

    assert again is confirmed
    assert changes == []


def test_locked_classification_rejects_technician_but_not_admin() -> None:
    locked = Classification(ticket_id=uuid4(), locked=True)

    with pytest.raises(ClassificationLocked) as exc:
        _confirm(locked)
    assert exc.value.http_status == 423

    updated, _ = _confirm(locked, actor=ADMIN)
    assert updated.confirmed_root_cause == "system_error"


def test_suggestion_is_accepted_once() -> None:
    requester = Principal(id=uuid4(), role="requester", branch_id=uuid4())
    suggested, changes = apply_suggestion(
        Classification(ticket_id=uuid4()), actor=requester, root_cause="human_error", issue_category=None
    )
    assert suggested.user_root_cause == "human_error"
    assert len(changes) == 1

    with pytest.raises(AlreadyProcessed):
        apply_suggestion(suggested, actor=requester, root_cause="system_error", issue_category=None)


def test_suggestion_after_confirmation_is_rejected() -> None:
    confirmed, _ = _confirm(Classification(ticket_id=uuid4()))
    requester = Principal(id=uuid4(), role="requester", branch_id=uuid4())

    with pytest.raises(AlreadyProcessed, match="already been confirmed"):
        apply_suggestion(confirmed, actor=requester, root_cause="human_error", issue_category="request")


def test_lock_is_idempotent() -> None:
    locked, changes = apply_lock(Classification(ticket_id=uuid4()), actor_id=ADMIN.id, locked=True, reason="audit")
    assert locked.locked and locked.locked_by_id == ADMIN.id
    assert len(changes) == 1

    same, no_changes = apply_lock(locked, actor_id=ADMIN.id, locked=True, reason="audit")
    assert same is locked
    assert no_changes == []
