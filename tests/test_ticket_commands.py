# tests/test_ticket_commands.py

from datetime import datetime, timedelta

import pytest

from campus_helpdesk.backend.app.errors import (
    ConcurrentModificationError,
    ForwardLimitExceeded,
    GuardViolation,
    PayloadTooLarge,
    PermissionDenied,
    StaleReferenceError,
    TicketCommandError,
    TicketNotFound,
)
from campus_helpdesk.backend.app.models import (
    Comment,
    Escalation,
    OutboxEntry,
    Ticket,
    TicketHistory,
    TicketStatus,
)
from campus_helpdesk.backend.app.schemas.metadata import load_metadata
from campus_helpdesk.backend.app.schemas.ticket import TicketCreate
from campus_helpdesk.backend.app.services.assignment import (
    STEP_DOMAIN_SCOPE,
    STEP_MANUAL,
    STEP_SUBCATEGORY,
    STEP_UNASSIGNED,
)
from campus_helpdesk.backend.app.services.outbox import (
    COMMENT_ADDED,
    STATUS_CHANGED,
    TICKET_CREATED,
    TICKET_ESCALATED,
    TICKET_REMINDER,
)
from campus_helpdesk.backend.app.services.tickets import unit_of_work

from conftest import T0, identity


def status_of(db, ticket_id):
    return (
        db.query(TicketStatus.value)
        .join(Ticket, Ticket.status_id == TicketStatus.id)
        .filter(Ticket.id == ticket_id)
        .scalar()
    )


def events(db, event_type=None):
    q = db.query(OutboxEntry)
    if event_type:
        q = q.filter(OutboxEntry.event_type == event_type)
    return q.order_by(OutboxEntry.id).all()


def history(db, ticket_id, field=None):
    q = db.query(TicketHistory).filter(TicketHistory.ticket_id == ticket_id)
    if field:
        q = q.filter(TicketHistory.field == field)
    return q.order_by(TicketHistory.id).all()


@pytest.fixture
def setup(db, factory):
    """Student, assigned admin, a super admin and a plain category."""
    admin = factory.user(role="admin")
    boss = factory.user(role="super_admin")
    student = factory.student(hostel="Neeladri")
    cat = factory.category(default_admin_id=admin.id)
    return {"admin": admin, "boss": boss, "student": student, "category": cat}


def open_ticket(service, db, setup, **kw):
    data = TicketCreate(category_id=setup["category"].id, description="Fan broken", **kw)
    return service.create_ticket(db, identity(setup["student"]), data)


# create_ticket

def test_create_routes_through_subcategory_override(db, factory, service):
    student = factory.student()
    a = factory.user()
    cat = factory.category()
    sub = factory.subcategory(cat, assigned_admin_id=a.id)

    ticket = service.create_ticket(
        db, identity(student), TicketCreate(category_id=cat.id, subcategory_id=sub.id)
    )

    assert ticket.assigned_to == a.id
    assert ticket.assignment_step == STEP_SUBCATEGORY
    assert ticket.needs_attention is False
    assert status_of(db, ticket.id) == "OPEN"
    assert ticket.created_at == T0
    assert ticket.acknowledgement_due_at == T0 + timedelta(hours=24)
    assert ticket.resolution_due_at is None
    assert ticket.escalation_level == 0


def test_create_routes_dynamic_hostel_scope(db, factory, service):
    hostel = factory.domain("Hostel")
    factory.scope(hostel, "Neeladri")
    velankani = factory.scope(hostel, "Velankani")
    warden = factory.user()
    factory.rule(hostel, 1, warden, scope=velankani)
    cat = factory.category(domain=hostel, scope_mode="dynamic", scope_student_field="hostel")
    student = factory.student(hostel="Velankani")

    ticket = service.create_ticket(db, identity(student), TicketCreate(category_id=cat.id))
    assert ticket.assigned_to == warden.id
    assert ticket.assignment_step == STEP_DOMAIN_SCOPE


def test_create_writes_history_and_event(db, service, setup):
    ticket = open_ticket(service, db, setup)

    fields = [h.field for h in history(db, ticket.id)]
    assert fields == ["status", "assigned_to", "assignment_step"]
    assert history(db, ticket.id, "status")[0].new_value == "OPEN"
    assert history(db, ticket.id, "assigned_to")[0].new_value == str(setup["admin"].id)

    created = events(db, TICKET_CREATED)
    assert len(created) == 1
    assert created[0].payload["ticket_id"] == ticket.id
    assert created[0].payload["assigned_to"] == setup["admin"].id
    assert created[0].processed_at is None
    assert created[0].attempts == 0


def test_create_without_any_handler_is_flagged(db, factory, service):
    student = factory.student()
    cat = factory.category()

    ticket = service.create_ticket(db, identity(student), TicketCreate(category_id=cat.id))
    assert ticket.assigned_to is None
    assert ticket.needs_attention is True
    assert ticket.assignment_step == STEP_UNASSIGNED
    assert events(db, TICKET_CREATED)[0].payload["needs_attention"] is True


def test_create_rejects_oversized_metadata(db, service, setup):
    with pytest.raises(PayloadTooLarge):
        open_ticket(service, db, setup, dynamic_fields={"notes": "x" * (70 * 1024)})
    assert db.query(Ticket).count() == 0
    assert events(db) == []


def test_create_rejects_inactive_category(db, service, setup):
    setup["category"].active = False
    db.commit()
    with pytest.raises(StaleReferenceError):
        open_ticket(service, db, setup)
    assert db.query(Ticket).count() == 0


def test_create_rejects_subcategory_of_another_category(db, factory, service, setup):
    other = factory.category()
    foreign = factory.subcategory(other)
    with pytest.raises(StaleReferenceError):
        open_ticket(service, db, setup, subcategory_id=foreign.id)


def test_create_enforces_required_fields(db, factory, service, setup):
    sub = factory.subcategory(setup["category"])
    factory.field(sub, "room", required=True)

    with pytest.raises(TicketCommandError, match="required"):
        open_ticket(service, db, setup, subcategory_id=sub.id)

    ticket = open_ticket(
        service, db, setup, subcategory_id=sub.id, dynamic_fields={"room": "B-204"}
    )
    assert load_metadata(ticket.meta).dynamic_fields == {"room": "B-204"}


# change_status

def test_admin_drives_ticket_to_resolution(db, service, setup, clock):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)

    clock.advance(hours=1)
    service.change_status(db, staff, ticket.id, "IN_PROGRESS")
    ticket = db.get(Ticket, ticket.id)
    assert ticket.acknowledged_at == T0 + timedelta(hours=1)
    assert ticket.resolution_due_at == T0 + timedelta(hours=49)

    clock.advance(hours=2)
    service.change_status(db, staff, ticket.id, "RESOLVED", reason="Fan replaced")
    assert status_of(db, ticket.id) == "RESOLVED"
    assert db.get(Ticket, ticket.id).resolved_at == T0 + timedelta(hours=3)

    statuses = [(h.old_value, h.new_value) for h in history(db, ticket.id, "status")]
    assert statuses == [(None, "OPEN"), ("OPEN", "IN_PROGRESS"), ("IN_PROGRESS", "RESOLVED")]

    changed = events(db, STATUS_CHANGED)
    assert [e.payload["new_status"] for e in changed] == ["IN_PROGRESS", "RESOLVED"]
    assert changed[-1].payload["reason"] == "Fan replaced"


def test_legacy_status_names_are_accepted(db, service, setup):
    ticket = open_ticket(service, db, setup)
    service.change_status(db, identity(setup["admin"]), ticket.id, "closed")
    assert status_of(db, ticket.id) == "RESOLVED"


def test_illegal_transition_leaves_ticket_untouched(db, service, setup):
    ticket = open_ticket(service, db, setup)
    before = len(events(db))

    with pytest.raises(GuardViolation):
        service.change_status(db, identity(setup["admin"]), ticket.id, "REOPENED")
    with pytest.raises(GuardViolation):
        service.change_status(db, identity(setup["admin"]), ticket.id, "archived")

    assert status_of(db, ticket.id) == "OPEN"
    assert len(events(db)) == before
    assert len(history(db, ticket.id, "status")) == 1


def test_student_cannot_resolve(db, service, setup):
    ticket = open_ticket(service, db, setup)
    with pytest.raises(PermissionDenied):
        service.change_status(db, identity(setup["student"]), ticket.id, "RESOLVED")


def test_creator_reopens_resolved_ticket(db, factory, service, setup, clock):
    ticket = open_ticket(service, db, setup)
    staff = identity(setup["admin"])
    service.change_status(db, staff, ticket.id, "IN_PROGRESS")
    service.change_status(db, staff, ticket.id, "RESOLVED")

    stranger = factory.student()
    with pytest.raises(PermissionDenied):
        service.change_status(db, identity(stranger), ticket.id, "REOPENED")

    clock.advance(days=1)
    service.change_status(db, identity(setup["student"]), ticket.id, "REOPENED")

    ticket = db.get(Ticket, ticket.id)
    assert status_of(db, ticket.id) == "REOPENED"
    assert ticket.reopen_count == 1
    assert ticket.resolved_at is None
    assert ticket.resolution_due_at is None
    assert ticket.assigned_to == setup["admin"].id
    assert history(db, ticket.id, "reopen_count")[0].new_value == "1"


def test_committee_resolves_only_assigned_ticket(db, factory, service, setup):
    member = factory.user(role="committee")
    ticket = open_ticket(service, db, setup)

    with pytest.raises(PermissionDenied):
        service.change_status(db, identity(member), ticket.id, "RESOLVED")

    service.reassign(db, identity(setup["admin"]), ticket.id, member.id)
    service.change_status(db, identity(member), ticket.id, "RESOLVED")
    assert status_of(db, ticket.id) == "RESOLVED"


def test_unknown_ticket(db, service, setup):
    with pytest.raises(TicketNotFound):
        service.change_status(db, identity(setup["admin"]), 9999, "IN_PROGRESS")


# Comments and the student clock pause

def test_question_pauses_clock_and_student_reply_resumes(db, service, setup, clock):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.change_status(db, staff, ticket.id, "IN_PROGRESS")

    clock.advance(hours=2)
    service.add_comment(db, staff, ticket.id, "Which room?", ask_question=True)
    assert status_of(db, ticket.id) == "AWAITING_STUDENT"
    meta = load_metadata(db.get(Ticket, ticket.id).meta)
    assert meta.tat.pause_started_at == T0 + timedelta(hours=2)

    clock.advance(hours=3)
    service.add_comment(db, identity(setup["student"]), ticket.id, "Room B-204")
    assert status_of(db, ticket.id) == "IN_PROGRESS"
    meta = load_metadata(db.get(Ticket, ticket.id).meta)
    assert meta.tat.pause_started_at is None
    assert meta.tat.paused_seconds == 3 * 3600

    assert len(events(db, COMMENT_ADDED)) == 2
    actions = [e.payload["action"] for e in events(db, STATUS_CHANGED)]
    assert actions == ["status", "comment", "comment"]


def test_internal_notes_are_staff_only(db, service, setup):
    ticket = open_ticket(service, db, setup)
    with pytest.raises(PermissionDenied):
        service.add_comment(db, identity(setup["student"]), ticket.id, "psst", visibility="internal")

    note = service.add_comment(db, identity(setup["admin"]), ticket.id, "check stock", visibility="internal")
    assert note.visibility == "internal"
    assert db.query(Comment).count() == 1


def test_comment_by_unrelated_student_is_denied(db, factory, service, setup):
    ticket = open_ticket(service, db, setup)
    with pytest.raises(PermissionDenied):
        service.add_comment(db, identity(factory.student()), ticket.id, "me too")


def test_question_on_open_ticket_is_rejected(db, service, setup):
    ticket = open_ticket(service, db, setup)
    with pytest.raises(GuardViolation):
        service.add_comment(db, identity(setup["admin"]), ticket.id, "?", ask_question=True)
    assert db.query(Comment).count() == 0


# Escalation

def test_escalation_walks_the_rule_chain(db, factory, service):
    hostel = factory.domain("Hostel")
    neeladri = factory.scope(hostel, "Neeladri")
    warden, chief = factory.user(), factory.user()
    boss = factory.user(role="super_admin")
    factory.rule(hostel, 1, warden, scope=neeladri)
    factory.rule(hostel, 2, chief, scope=neeladri, notify_channel="email")
    cat = factory.category(domain=hostel, scope_id=neeladri.id)
    student = factory.student()

    ticket = service.create_ticket(db, identity(student), TicketCreate(category_id=cat.id))
    assert ticket.assigned_to == warden.id

    first = service.escalate(db, identity(student), ticket.id, reason="No response")
    assert first.level == 1
    assert first.escalated_to == warden.id

    second = service.escalate(db, identity(warden), ticket.id)
    assert second.level == 2
    assert second.escalated_to == chief.id

    third = service.escalate(db, identity(chief), ticket.id)
    assert third.level == 3
    assert third.escalated_to == boss.id

    ticket = db.get(Ticket, ticket.id)
    assert ticket.escalation_level == 3
    assert ticket.assigned_to == boss.id
    assert status_of(db, ticket.id) == "ESCALATED"

    payloads = [e.payload for e in events(db, TICKET_ESCALATED)]
    assert [p["level"] for p in payloads] == [1, 2, 3]
    assert [p["notify_channel"] for p in payloads] == ["slack", "email", "email"]
    assert payloads[0]["escalated_by"] == student.id


def test_escalation_without_target_flags_ticket(db, factory, service):
    student = factory.student()
    admin = factory.user()
    cat = factory.category(default_admin_id=admin.id)
    ticket = service.create_ticket(db, identity(student), TicketCreate(category_id=cat.id))

    record = service.escalate(db, identity(admin), ticket.id)
    ticket = db.get(Ticket, ticket.id)
    assert record.escalated_to is None
    assert ticket.assigned_to == admin.id
    assert ticket.needs_attention is True


def test_resolved_ticket_cannot_be_escalated(db, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.change_status(db, staff, ticket.id, "RESOLVED")
    with pytest.raises(GuardViolation):
        service.escalate(db, staff, ticket.id)
    assert db.query(Escalation).count() == 0


def test_status_change_to_escalated_delegates(db, service, setup):
    ticket = open_ticket(service, db, setup)
    service.change_status(db, identity(setup["admin"]), ticket.id, "ESCALATED")
    assert db.get(Ticket, ticket.id).escalation_level == 1
    assert len(events(db, TICKET_ESCALATED)) == 1


# Forwarding

def test_forward_limit(db, factory, service, setup):
    staff = identity(setup["admin"])
    h1, h2 = factory.user(), factory.user()
    ticket = open_ticket(service, db, setup)

    for target in (h1, h2, h1):
        service.forward(db, staff, ticket.id, target.id, reason="wrong desk")
        assert db.get(Ticket, ticket.id).assigned_to == target.id

    with pytest.raises(ForwardLimitExceeded):
        service.forward(db, staff, ticket.id, h2.id)

    ticket = db.get(Ticket, ticket.id)
    assert ticket.assigned_to == h1.id
    assert load_metadata(ticket.meta).forward_count == 3
    assert status_of(db, ticket.id) == "FORWARDED"

    forwards = [e.payload for e in events(db, STATUS_CHANGED) if e.payload["action"] == "forwarded"]
    assert [p["forward_count"] for p in forwards] == [1, 2, 3]


def test_forward_auto_uses_escalation_chain(db, factory, service, setup):
    general = factory.general_domain()
    level1 = factory.user()
    factory.rule(general, 1, level1)
    ticket = open_ticket(service, db, setup)

    service.forward(db, identity(setup["admin"]), ticket.id)
    assert db.get(Ticket, ticket.id).assigned_to == level1.id
    assert db.get(Ticket, ticket.id).escalation_level == 0


def test_forward_requires_handler_roles(db, factory, service, setup):
    ticket = open_ticket(service, db, setup)
    with pytest.raises(PermissionDenied):
        service.forward(db, identity(setup["student"]), ticket.id, setup["admin"].id)
    with pytest.raises(GuardViolation):
        service.forward(db, identity(setup["admin"]), ticket.id, setup["student"].id)


# Reassign

def test_reassign_is_admin_only(db, factory, service, setup):
    other = factory.user()
    member = factory.user(role="committee")
    ticket = open_ticket(service, db, setup)

    with pytest.raises(PermissionDenied):
        service.reassign(db, identity(member), ticket.id, other.id)

    service.reassign(db, identity(setup["boss"]), ticket.id, other.id)
    ticket = db.get(Ticket, ticket.id)
    assert ticket.assigned_to == other.id
    assert ticket.assignment_step == STEP_MANUAL
    assert status_of(db, ticket.id) == "OPEN"
    assert events(db, STATUS_CHANGED)[-1].payload["action"] == "reassigned"


# TAT

def test_set_then_extend_tat(db, service, setup, clock):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)

    service.set_tat(db, staff, ticket.id, 8, mark_in_progress=True)
    ticket = db.get(Ticket, ticket.id)
    assert status_of(db, ticket.id) == "IN_PROGRESS"
    assert ticket.resolution_due_at == T0 + timedelta(hours=8)

    clock.advance(hours=6)
    service.set_tat(db, staff, ticket.id, 12)
    clock.advance(hours=1)
    service.set_tat(db, staff, ticket.id, 24)

    ticket = db.get(Ticket, ticket.id)
    tat = load_metadata(ticket.meta).tat
    assert tat.tat_hours == 24
    assert [e.new_tat_hours for e in tat.extensions] == [12, 24]
    assert [e.previous_tat_hours for e in tat.extensions] == [8, 12]
    assert ticket.resolution_due_at == T0 + timedelta(hours=7 + 24)

    actions = [e.payload["action"] for e in events(db, STATUS_CHANGED)]
    assert actions == ["tat_set", "tat_extended", "tat_extended"]


def test_tat_rejected_while_waiting_on_student(db, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.change_status(db, staff, ticket.id, "IN_PROGRESS")
    service.add_comment(db, staff, ticket.id, "Which room?", ask_question=True)

    with pytest.raises(GuardViolation):
        service.set_tat(db, staff, ticket.id, 4)
    with pytest.raises(PermissionDenied):
        service.set_tat(db, identity(setup["student"]), ticket.id, 4)


# Rating

def test_only_creator_rates_resolved_ticket(db, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)

    with pytest.raises(GuardViolation):
        service.rate_ticket(db, identity(setup["student"]), ticket.id, 5)

    service.change_status(db, staff, ticket.id, "RESOLVED")
    with pytest.raises(PermissionDenied):
        service.rate_ticket(db, staff, ticket.id, 5)
    with pytest.raises(TicketCommandError):
        service.rate_ticket(db, identity(setup["student"]), ticket.id, 9)

    service.rate_ticket(db, identity(setup["student"]), ticket.id, 4, "Quick fix")
    ticket = db.get(Ticket, ticket.id)
    assert ticket.rating == 4
    assert ticket.feedback == "Quick fix"


def test_students_only_see_their_own_tickets(db, factory, service, setup):
    ticket = open_ticket(service, db, setup)
    assert service.get_ticket(db, identity(setup["student"]), ticket.id).id == ticket.id
    assert service.get_ticket(db, identity(setup["admin"]), ticket.id).id == ticket.id
    with pytest.raises(PermissionDenied):
        service.get_ticket(db, identity(factory.student()), ticket.id)


# Automatic escalation

def test_overdue_tickets_are_escalated_once_per_cooldown(db, service, setup, clock):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    fresh = open_ticket(service, db, setup)
    service.set_tat(db, staff, ticket.id, 4, mark_in_progress=True)

    assert service.auto_escalate_overdue(db, now=T0 + timedelta(hours=3)) == []

    late = T0 + timedelta(hours=5)
    assert service.auto_escalate_overdue(db, now=late) == [ticket.id]
    record = db.query(Escalation).filter_by(ticket_id=ticket.id).one()
    assert record.escalated_by is None
    assert record.reason == "TAT breached"

    # Inside the cooldown window nothing happens again
    assert service.auto_escalate_overdue(db, now=late + timedelta(hours=10)) == []
    assert db.get(Ticket, fresh.id).escalation_level == 0

    # By now the untouched ticket has also missed its acknowledgement deadline
    assert service.auto_escalate_overdue(db, now=late + timedelta(hours=49)) == [
        ticket.id,
        fresh.id,
    ]


def test_unacknowledged_ticket_is_escalated_after_ack_deadline(db, service, setup):
    ticket = open_ticket(service, db, setup)
    assert ticket.resolution_due_at is None

    assert service.auto_escalate_overdue(db, now=T0 + timedelta(hours=23)) == []
    assert service.auto_escalate_overdue(db, now=T0 + timedelta(days=30)) == [ticket.id]

    record = db.query(Escalation).filter_by(ticket_id=ticket.id).one()
    assert record.reason == "Acknowledgement overdue"
    assert record.level == 1
    assert status_of(db, ticket.id) == "ESCALATED"


def test_paused_ticket_is_not_escalated(db, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.set_tat(db, staff, ticket.id, 4, mark_in_progress=True)
    service.add_comment(db, staff, ticket.id, "Which room?", ask_question=True, now=T0 + timedelta(hours=1))

    assert service.auto_escalate_overdue(db, now=T0 + timedelta(hours=30)) == []


def test_repeated_extensions_trigger_escalation(db, service, setup, clock):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.set_tat(db, staff, ticket.id, 4, mark_in_progress=True)
    for hours in (8, 12, 16):
        service.set_tat(db, staff, ticket.id, hours)

    escalated = service.auto_escalate_overdue(db, now=T0 + timedelta(hours=1))
    assert escalated == [ticket.id]
    assert db.query(Escalation).one().reason == "TAT extended 3 times"


def test_concurrent_sweeps_escalate_a_breach_once(db, session_factory, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.set_tat(db, staff, ticket.id, 4, mark_in_progress=True)
    late = T0 + timedelta(hours=5)

    first, second = session_factory(), session_factory()
    try:
        candidates = service.overdue_candidates(first, late)
        assert candidates == [(ticket.id, "TAT breached")]

        # Another worker escalates the same breach in between
        assert service.auto_escalate_overdue(second, now=late) == [ticket.id]

        results = [
            service.escalate(first, None, ticket_id, reason=reason, now=late, auto=True)
            for ticket_id, reason in candidates
        ]
        assert results == [None]
    finally:
        first.close()
        second.close()

    db.expire_all()
    assert db.get(Ticket, ticket.id).escalation_level == 1
    assert db.query(Escalation).filter_by(ticket_id=ticket.id).count() == 1
    assert len(events(db, TICKET_ESCALATED)) == 1


def test_manual_escalation_ignores_the_sweep_cooldown(db, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.set_tat(db, staff, ticket.id, 4, mark_in_progress=True)
    late = T0 + timedelta(hours=5)

    assert service.auto_escalate_overdue(db, now=late) == [ticket.id]
    assert service.escalate(db, None, ticket.id, now=late, auto=True) is None
    record = service.escalate(db, identity(setup["student"]), ticket.id, now=late)
    assert record.level == 2


# Reminders

def test_unacknowledged_ticket_gets_one_reminder_per_day(db, service, setup):
    ticket = open_ticket(service, db, setup)
    assert service.send_reminders(db, now=T0 + timedelta(hours=23)) == []

    first_day = T0 + timedelta(hours=25)
    assert service.send_reminders(db, now=first_day) == [ticket.id]
    assert service.send_reminders(db, now=first_day + timedelta(hours=2)) == []

    (entry,) = events(db, TICKET_REMINDER)
    assert entry.payload == {
        "ticket_id": ticket.id,
        "kind": "unacknowledged",
        "assigned_to": setup["admin"].id,
        "due_at": (T0 + timedelta(hours=24)).isoformat(),
    }
    assert load_metadata(db.get(Ticket, ticket.id).meta).reminded_at == first_day

    assert service.send_reminders(db, now=first_day + timedelta(days=1)) == [ticket.id]
    assert len(events(db, TICKET_REMINDER)) == 2


def test_handler_is_reminded_on_the_due_day(db, service, setup):
    staff = identity(setup["admin"])
    ticket = open_ticket(service, db, setup)
    service.set_tat(db, staff, ticket.id, 30, mark_in_progress=True)

    assert service.send_reminders(db, now=T0 + timedelta(hours=2)) == []
    due_day = datetime(2026, 3, 3, 8, 0)
    assert service.send_reminders(db, now=due_day) == [ticket.id]
    assert events(db, TICKET_REMINDER)[-1].payload["kind"] == "due_today"


def test_resolved_ticket_gets_no_reminder(db, service, setup):
    ticket = open_ticket(service, db, setup)
    service.change_status(db, identity(setup["admin"]), ticket.id, "RESOLVED")

    assert service.send_reminders(db, now=T0 + timedelta(days=3)) == []
    assert events(db, TICKET_REMINDER) == []


def test_unassigned_ticket_gets_no_reminder(db, factory, service):
    ticket = service.create_ticket(
        db, identity(factory.student()), TicketCreate(category_id=factory.category().id)
    )
    assert ticket.assigned_to is None

    assert service.send_reminders(db, now=T0 + timedelta(days=3)) == []
    assert events(db, TICKET_REMINDER) == []


# Concurrency

def test_stale_write_is_reported_as_conflict(db, session_factory, service, setup):
    ticket = open_ticket(service, db, setup)

    other = session_factory()
    try:
        stale = other.get(Ticket, ticket.id)
        other.commit()

        service.change_status(db, identity(setup["admin"]), ticket.id, "IN_PROGRESS")

        with pytest.raises(ConcurrentModificationError):
            with unit_of_work(other):
                stale.description = "edited elsewhere"
    finally:
        other.close()

    assert db.get(Ticket, ticket.id, populate_existing=True).description == "Fan broken"
