from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from servicedesk import models
from servicedesk.celery_app import outbox_idempotency_key, record_event
from servicedesk.config import Settings
from servicedesk.database import Base
from servicedesk.domain_errors import AlreadyProcessed
from servicedesk.events import DomainEvent
from servicedesk.store import AtLeast, Increment, SqlTicketStore, WriteBatch
from servicedesk.use_cases.approvals import approve_ticket
from servicedesk.use_cases.assignment import assign_ticket
from servicedesk.use_cases.context import build_workflow_context


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'servicedesk.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    db = session_factory()
    branch = models.Branch(id=uuid4(), code="KC-JKT", name="Kantor Cabang Jakarta", kind="PRIMARY")
    department = models.Department(id=uuid4(), code="IT", name="IT Support")
    category = models.ServiceCategory(
        id=uuid4(), name="Network Access", department_id=department.id, requires_approval=True
    )
    requester = models.User(id=uuid4(), username="req", name="Requester", role="requester", branch_id=branch.id)
    manager = models.User(
        id=uuid4(), username="mgr", name="Manager", role="manager", branch_id=branch.id,
        department_id=department.id, is_authorized_reviewer=True,
    )
    busy = models.User(
        id=uuid4(), username="tech1", name="Busy Tech", role="technician",
        department_id=department.id, current_workload=3, workload_capacity=10,
    )
    light = models.User(
        id=uuid4(), username="tech2", name="Light Tech", role="technician",
        department_id=department.id, current_workload=2, workload_capacity=10,
    )
    ticket = models.Ticket(
        id=uuid4(), title="VPN down", priority="medium", status="pending_approval",
        branch_id=branch.id, creator_id=requester.id, service_category_id=category.id,
    )
    db.add_all([branch, department, category, requester, manager, busy, light])
    db.flush()
    db.add(ticket)
    db.commit()
    ids = {
        "branch": branch.id,
        "department": department.id,
        "manager": manager.id,
        "busy": busy.id,
        "light": light.id,
        "ticket": ticket.id,
    }
    db.close()
    return ids


def _approve_batch(ticket_id) -> WriteBatch:
    batch = WriteBatch()
    batch.update("ticket", ticket_id, {"status": "approved"}, expected={"status": "pending_approval"})
    return batch


def test_stale_guarded_update_is_rejected_and_rolled_back(session_factory, seeded) -> None:
    first, second = session_factory(), session_factory()
    try:
        # Both sessions read the pending ticket before either writes.
        assert SqlTicketStore(first).read_ticket(seeded["ticket"]).status == "pending_approval"
        assert SqlTicketStore(second).read_ticket(seeded["ticket"]).status == "pending_approval"

        SqlTicketStore(first).write_ticket_atomic(_approve_batch(seeded["ticket"]))

        stale = _approve_batch(seeded["ticket"])
        stale.insert(
            "audit_event", action="ticket_approved", entity_type="ticket",
            entity_id=seeded["ticket"], details={},
        )
        with pytest.raises(AlreadyProcessed):
            SqlTicketStore(second).write_ticket_atomic(stale)
    finally:
        first.close()
        second.close()

    check = session_factory()
    try:
        assert check.query(models.AuditEvent).count() == 0
    finally:
        check.close()


def test_optional_update_is_skipped_when_guard_misses(session_factory, seeded) -> None:
    db = session_factory()
    try:
        batch = WriteBatch()
        batch.update("user", seeded["manager"], {"current_workload": Increment(-1)},
                     expected={"current_workload": AtLeast(1)}, required=False)
        SqlTicketStore(db).write_ticket_atomic(batch)
        manager = db.query(models.User).filter(models.User.id == seeded["manager"]).one()
        assert manager.current_workload == 0
    finally:
        db.close()


def test_approval_then_assign_picks_least_loaded_technician_in_database(session_factory, seeded) -> None:
    db = session_factory()
    try:
        ctx = build_workflow_context(db, settings=Settings(EVENTS_ENABLED=False))
        approved = approve_ticket(ctx, ticket_id=seeded["ticket"], actor_id=seeded["manager"])
        assert approved.ticket.status == "approved"
        assert approved.ticket.assignee_id is None

        outcome = assign_ticket(ctx, ticket_id=seeded["ticket"], actor_id=seeded["manager"])
        assert outcome.assignee_id == seeded["light"]
    finally:
        db.close()

    check = session_factory()
    try:
        ticket = check.query(models.Ticket).filter(models.Ticket.id == seeded["ticket"]).one()
        assert ticket.status == "assigned"
        assert ticket.assignee_id == seeded["light"]
        assert ticket.sla_due_at is not None
        light = check.query(models.User).filter(models.User.id == seeded["light"]).one()
        assert light.current_workload == 3
        actions = sorted(row.action for row in check.query(models.AuditEvent).all())
        assert actions == ["ticket_approved", "ticket_assigned"]
        assert check.query(models.TicketAssignmentLog).one().method == "auto"
    finally:
        check.close()


def test_store_finds_department_reviewer_and_unconfirmed_tickets(session_factory, seeded) -> None:
    db = session_factory()
    try:
        store = SqlTicketStore(db)
        assert store.find_compliance_reviewer(seeded["department"]) == seeded["manager"]
        assert store.find_compliance_reviewer(uuid4()) is None

        technicians = store.list_technicians(seeded["department"])
        assert {tech.technician_id for tech in technicians} == {seeded["busy"], seeded["light"]}

        assert [ticket.id for ticket in store.list_tickets(unconfirmed_only=True)] == [seeded["ticket"]]
        db.add(models.TicketClassification(
            ticket_id=seeded["ticket"], confirmed_root_cause="system_error", confirmed_issue_category="problem",
        ))
        db.commit()
        assert store.list_tickets(unconfirmed_only=True) == []
    finally:
        db.close()


def test_outbox_records_each_event_once(session_factory, seeded) -> None:
    message = DomainEvent(
        event_type="ticket.approved",
        ticket_id=seeded["ticket"],
        occurred_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
        branch_id=seeded["branch"],
        actor_id=seeded["manager"],
        payload={"reason_code": "SAME_BRANCH_MANAGER"},
    ).to_message()

    db = session_factory()
    try:
        assert record_event(db, message) is True
        db.commit()
        assert record_event(db, message) is False
        db.commit()
        rows = db.query(models.EventOutbox).all()
        assert len(rows) == 1
        assert rows[0].idempotency_key == f"ticket.approved:{seeded['ticket']}:2026-03-02T09:00:00+00:00"
        assert rows[0].payload["reason_code"] == "SAME_BRANCH_MANAGER"
    finally:
        db.close()


def test_outbox_keeps_later_occurrences_of_the_same_event(session_factory, seeded) -> None:
    def occurrence(minute):
        return DomainEvent(
            event_type="ticket.status_changed",
            ticket_id=seeded["ticket"],
            occurred_at=datetime(2026, 3, 2, 9, minute, tzinfo=timezone.utc),
        ).to_message()

    first, later = occurrence(0), occurrence(5)
    assert outbox_idempotency_key(first) == f"ticket.status_changed:{seeded['ticket']}:{first['occurred_at']}"

    db = session_factory()
    try:
        assert record_event(db, first) is True
        assert record_event(db, later) is True
        db.commit()
        keys = sorted(row.idempotency_key for row in db.query(models.EventOutbox).all())
        assert keys == sorted([outbox_idempotency_key(first), outbox_idempotency_key(later)])
    finally:
        db.close()
