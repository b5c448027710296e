import logging
import threading
from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from servicedesk.domain_errors import AlreadyProcessed, InvalidTransition, NotFound, Unauthorized, ValidationError
from servicedesk.use_cases.approvals import (
    approve_ticket,
    list_pending_approvals,
    override_compliance_decision,
    reject_ticket,
)
from servicedesk.use_cases.assignment import assign_ticket


def _pending(world, *, department_id=None, **ticket_fields):
    branch = world.branch()
    requester = world.user("requester", branch=branch)
    manager = world.user("manager", branch=branch, reviewer=True)
    category = world.category(department_id=department_id or uuid4())
    ticket = world.ticket(branch=branch, creator=requester, category=category, **ticket_fields)
    return branch, manager, ticket


def test_approval_stamps_sla_and_leaves_assignment_to_assign(world) -> None:
    it = uuid4()
    busy = world.technician(it, workload=3)
    light = world.technician(it, workload=2)
    _, manager, ticket = _pending(world, department_id=it, priority="high")

    outcome = approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id, comments="ok")

    assert outcome.decision.reason_code == "SAME_BRANCH_MANAGER"
    assert outcome.ticket.status == "approved"
    assert outcome.ticket.assignee_id is None
    assert outcome.ticket.sla_due_at == world.ctx.clock() + timedelta(hours=world.settings.SLA_HOURS_HIGH)
    assert world.store.commit_calls == 1
    assert world.store.audit_actions() == ["ticket_approved"]
    assert world.sink.types() == ["ticket.approved"]

    assigned = assign_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id)

    assert assigned.ticket.status == "assigned"
    assert assigned.assignee_id == light.id
    assert world.workload(light) == 3
    assert world.workload(busy) == 3
    assert world.store.audit_actions() == ["ticket_approved", "ticket_assigned"]
    assert world.sink.types() == ["ticket.approved", "ticket.assigned"]


def test_assign_without_candidates_leaves_ticket_approved(world) -> None:
    _, manager, ticket = _pending(world)
    approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id)

    outcome = assign_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id)

    assert outcome.no_candidate
    assert world.store.read_ticket(ticket.id).status == "approved"
    assert world.store.read_ticket(ticket.id).assignee_id is None


def test_sub_branch_manager_approves_own_branch_ticket(world) -> None:
    primary = world.branch(kind="PRIMARY")
    sub = world.branch(kind="SUB", parent_id=primary.id)
    requester = world.user("requester", branch=sub)
    sub_manager = world.user("manager", branch=sub, reviewer=True)
    ticket = world.ticket(branch=sub, creator=requester, category=world.category())

    outcome = approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=sub_manager.id)

    assert outcome.ticket.status == "approved"


def test_cross_branch_manager_is_denied_and_nothing_changes(world) -> None:
    _, _, ticket = _pending(world)
    outsider = world.user("manager", branch=world.branch(), reviewer=True)

    with pytest.raises(Unauthorized) as exc:
        approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=outsider.id)

    assert exc.value.code == "APPROVAL_DENIED_CROSS_BRANCH"
    assert world.store.read_ticket(ticket.id).status == "pending_approval"
    assert world.store.commit_calls == 0
    assert world.sink.events == []


def test_explicit_reviewer_decides_compliance_of_other_branch(world) -> None:
    reviewer = world.user("manager", branch=world.branch(), reviewer=True)
    _, _, ticket = _pending(world, compliance_reviewer=reviewer, compliance_status="pending")

    outcome = approve_ticket(
        world.ctx, ticket_id=ticket.id, actor_id=reviewer.id, comments="SP2D verified", gov_docs_verified=True
    )

    assert outcome.decision.reason_code == "EXPLICIT_REVIEWER"
    compliance = world.store.read_compliance_approval(ticket.id)
    assert compliance.status == "approved"
    assert compliance.gov_docs_verified
    assert compliance.decided_by_id == reviewer.id
    assert compliance.decided_at == world.ctx.clock()


def test_rejection_requires_comments(world) -> None:
    _, manager, ticket = _pending(world)

    with pytest.raises(ValidationError) as exc:
        reject_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id, comments="  ")

    assert exc.value.code == "REJECTION_COMMENTS_REQUIRED"

    outcome = reject_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id, comments="Duplicate request")
    assert outcome.ticket.status == "rejected"
    assert outcome.ticket.manager_comments == "Duplicate request"
    assert world.sink.types() == ["ticket.rejected"]


def test_second_decision_is_already_processed(world) -> None:
    branch, manager, ticket = _pending(world)
    colleague = world.user("manager", branch=branch, reviewer=True)
    approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id)

    with pytest.raises(AlreadyProcessed) as exc:
        reject_ticket(world.ctx, ticket_id=ticket.id, actor_id=colleague.id, comments="Too late")

    assert exc.value.code == "APPROVAL_ALREADY_PROCESSED"
    assert exc.value.http_status == 409


def test_admin_override_still_respects_pending_state(world) -> None:
    _, manager, ticket = _pending(world)
    admin = world.user("admin")

    outcome = approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=admin.id)
    assert outcome.decision.reason_code == "ADMIN_OVERRIDE"

    with pytest.raises(AlreadyProcessed):
        approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=admin.id)


def test_concurrent_approvals_commit_exactly_once(world) -> None:
    it = uuid4()
    technician = world.technician(it)
    branch, manager, ticket = _pending(world, department_id=it)
    colleague = world.user("manager", branch=branch, reviewer=True)
    world.store.barrier = threading.Barrier(2)
    results, errors = [], []

    def decide(actor_id):
        try:
            results.append(approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=actor_id))
        except AlreadyProcessed as exc:
            errors.append(exc)

    threads = [threading.Thread(target=decide, args=(actor.id,)) for actor in (manager, colleague)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == 1
    assert len(errors) == 1
    assert errors[0].code == "APPROVAL_ALREADY_PROCESSED"
    assert world.store.read_ticket(ticket.id).status == "approved"
    assert world.store.audit_actions().count("ticket_approved") == 1
    assert world.workload(technician) == 0

    assign_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id)
    assert world.workload(technician) == 1


def test_admin_compliance_override_is_logged_and_audited(world, caplog) -> None:
    _, _, ticket = _pending(world, status="approved", compliance_status="approved")
    admin = world.user("admin")

    with caplog.at_level(logging.WARNING):
        updated = override_compliance_decision(
            world.ctx, ticket_id=ticket.id, actor_id=admin.id, status="rejected", comments="Documents were forged"
        )

    assert updated.status == "rejected"
    assert updated.decided_by_id == admin.id
    assert world.store.read_compliance_approval(ticket.id).status == "rejected"
    assert world.store.read_ticket(ticket.id).status == "approved"
    assert world.store.audit_actions() == ["compliance_override"]
    assert world.sink.types() == ["compliance.overridden"]
    assert "compliance.admin_override" in caplog.text


def test_compliance_override_is_admin_only(world) -> None:
    _, manager, ticket = _pending(world, compliance_status="pending")

    with pytest.raises(Unauthorized) as exc:
        override_compliance_decision(
            world.ctx, ticket_id=ticket.id, actor_id=manager.id, status="approved", comments="Looks fine"
        )

    assert exc.value.code == "COMPLIANCE_OVERRIDE_FORBIDDEN"


def test_compliance_override_validates_input(world) -> None:
    admin = world.user("admin")
    _, _, ticket = _pending(world, status="rejected", compliance_status="rejected")
    _, _, plain = _pending(world)

    with pytest.raises(ValidationError) as exc:
        override_compliance_decision(world.ctx, ticket_id=ticket.id, actor_id=admin.id, status="approved", comments="")
    assert exc.value.code == "OVERRIDE_COMMENTS_REQUIRED"

    with pytest.raises(ValidationError) as exc:
        override_compliance_decision(world.ctx, ticket_id=ticket.id, actor_id=admin.id, status="maybe", comments="x")
    assert exc.value.code == "INVALID_COMPLIANCE_STATUS"

    with pytest.raises(NotFound):
        override_compliance_decision(world.ctx, ticket_id=plain.id, actor_id=admin.id, status="approved", comments="x")


def test_pending_compliance_cannot_be_overridden(world) -> None:
    _, manager, ticket = _pending(world, compliance_status="pending")
    admin = world.user("admin")

    with pytest.raises(InvalidTransition) as exc:
        override_compliance_decision(
            world.ctx, ticket_id=ticket.id, actor_id=admin.id, status="approved", comments="Fast-track"
        )

    assert exc.value.code == "COMPLIANCE_NOT_DECIDED"
    assert world.store.read_compliance_approval(ticket.id).status == "pending"
    assert world.store.commit_calls == 0

    # The ticket is still decidable through the normal approval path.
    outcome = approve_ticket(world.ctx, ticket_id=ticket.id, actor_id=manager.id)
    assert outcome.ticket.status == "approved"
    assert world.store.read_compliance_approval(ticket.id).status == "approved"


def test_pending_list_only_contains_tickets_the_manager_may_decide(world) -> None:
    _, manager, own = _pending(world)
    _, _, foreign = _pending(world)
    reviewer = world.user("manager", branch=world.branch(), reviewer=True)
    _, _, reviewed = _pending(world, compliance_reviewer=reviewer, compliance_status="pending")
    no_flag = world.user("manager", branch=world.branch(), reviewer=False)

    assert [ticket.id for ticket in list_pending_approvals(world.ctx, actor_id=manager.id)] == [own.id]
    assert [ticket.id for ticket in list_pending_approvals(world.ctx, actor_id=reviewer.id)] == [reviewed.id]
    assert list_pending_approvals(world.ctx, actor_id=no_flag.id) == []
    assert foreign.id not in {ticket.id for ticket in list_pending_approvals(world.ctx, actor_id=manager.id)}


class _ExplodingSink:
    def emit(self, event) -> None:
        raise RuntimeError("broker unavailable")


def test_event_delivery_failure_does_not_fail_committed_approval(world, caplog) -> None:
    _, manager, ticket = _pending(world)
    ctx = replace(world.ctx, events=_ExplodingSink())

    with caplog.at_level(logging.ERROR):
        outcome = approve_ticket(ctx, ticket_id=ticket.id, actor_id=manager.id)

    assert outcome.ticket.status == "approved"
    assert world.store.read_ticket(ticket.id).status == "approved"
    assert "event.emit_failed" in caplog.text
