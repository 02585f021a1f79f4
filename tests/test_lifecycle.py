# tests/test_lifecycle.py

from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from campus_helpdesk.backend.app.errors import (
    ForwardLimitExceeded,
    GuardViolation,
    PermissionDenied,
    TicketCommandError,
)
from campus_helpdesk.backend.app.models import Escalation, Ticket
from campus_helpdesk.backend.app.schemas.metadata import TicketMetadata
from campus_helpdesk.backend.app.schemas.ticket import TicketCreate
from campus_helpdesk.backend.app.services import lifecycle
from campus_helpdesk.backend.app.services.status_registry import StatusValue as S

from conftest import T0, identity


# Transition table

@pytest.mark.parametrize(
    "current,target",
    [
        (S.OPEN, S.IN_PROGRESS),
        (S.IN_PROGRESS, S.AWAITING_STUDENT),
        (S.AWAITING_STUDENT, S.IN_PROGRESS),
        (S.IN_PROGRESS, S.ESCALATED),
        (S.REOPENED, S.ESCALATED),
        (S.ESCALATED, S.ESCALATED),
        (S.FORWARDED, S.RESOLVED),
        (S.RESOLVED, S.REOPENED),
        (S.REOPENED, S.IN_PROGRESS),
    ],
)
def test_legal_transitions(current, target):
    lifecycle.check_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (S.RESOLVED, S.RESOLVED),
        (S.OPEN, S.REOPENED),
        (S.IN_PROGRESS, S.REOPENED),
        (S.RESOLVED, S.ESCALATED),
        (S.RESOLVED, S.FORWARDED),
        (S.OPEN, S.AWAITING_STUDENT),
        (S.OPEN, S.OPEN),
    ],
)
def test_illegal_transitions_raise_guard_violation(current, target):
    with pytest.raises(GuardViolation):
        lifecycle.check_transition(current, target)


def test_student_may_only_reopen_own_ticket():
    lifecycle.check_actor("student", S.REOPENED, is_creator=True, is_assignee=False)
    with pytest.raises(PermissionDenied):
        lifecycle.check_actor("student", S.REOPENED, is_creator=False, is_assignee=False)
    with pytest.raises(PermissionDenied):
        lifecycle.check_actor("student", S.RESOLVED, is_creator=True, is_assignee=False)


def test_committee_may_resolve_assigned_tickets_only():
    lifecycle.check_actor("committee", S.RESOLVED, is_creator=False, is_assignee=True)
    with pytest.raises(PermissionDenied):
        lifecycle.check_actor("committee", S.RESOLVED, is_creator=False, is_assignee=False)
    with pytest.raises(PermissionDenied):
        lifecycle.check_actor("committee", S.IN_PROGRESS, is_creator=False, is_assignee=True)


def test_admin_may_reopen_any_ticket():
    lifecycle.check_actor("admin", S.REOPENED, is_creator=False, is_assignee=False)
    lifecycle.check_actor("super_admin", S.IN_PROGRESS, is_creator=False, is_assignee=False)


# TAT

def test_in_progress_sets_resolution_due_from_default_tat():
    ticket = Ticket()
    meta = TicketMetadata()
    lifecycle.apply_transition(ticket, meta, S.OPEN, S.IN_PROGRESS, T0)
    assert ticket.resolution_due_at == T0 + timedelta(hours=48)
    assert ticket.acknowledged_at == T0


def test_in_progress_uses_explicit_tat():
    ticket = Ticket()
    meta = TicketMetadata()
    meta.tat.tat_hours = 6
    lifecycle.apply_transition(ticket, meta, S.OPEN, S.IN_PROGRESS, T0, default_tat_hours=72)
    assert ticket.resolution_due_at == T0 + timedelta(hours=6)


def test_paused_time_is_excluded_from_overdue():
    due = T0 + timedelta(hours=48)
    ticket = Ticket(resolution_due_at=due)
    meta = TicketMetadata()

    lifecycle.apply_transition(ticket, meta, S.IN_PROGRESS, S.AWAITING_STUDENT, due - timedelta(hours=2))
    assert meta.tat.pause_started_at == due - timedelta(hours=2)
    # Still paused one hour past the original deadline
    assert not lifecycle.is_overdue(S.AWAITING_STUDENT, due, meta.tat, due + timedelta(hours=1))

    lifecycle.apply_transition(ticket, meta, S.AWAITING_STUDENT, S.IN_PROGRESS, due + timedelta(hours=3))
    assert meta.tat.pause_started_at is None
    assert meta.tat.paused_seconds == 5 * 3600
    assert ticket.resolution_due_at == due

    assert not lifecycle.is_overdue(S.IN_PROGRESS, due, meta.tat, due + timedelta(hours=1))
    assert not lifecycle.is_overdue(S.IN_PROGRESS, due, meta.tat, due + timedelta(hours=5))
    assert lifecycle.is_overdue(S.IN_PROGRESS, due, meta.tat, due + timedelta(hours=5, seconds=1))


def test_resolved_and_reopened_tickets_are_never_overdue():
    meta = TicketMetadata()
    past = T0 - timedelta(days=10)
    assert not lifecycle.is_overdue(S.RESOLVED, past, meta.tat, T0)
    assert not lifecycle.is_overdue(S.REOPENED, past, meta.tat, T0)
    assert not lifecycle.is_overdue(S.IN_PROGRESS, None, meta.tat, T0)
    assert lifecycle.is_overdue(S.ESCALATED, past, meta.tat, T0)


def test_reopen_clears_resolution_and_counts():
    ticket = Ticket(resolution_due_at=T0, resolved_at=T0, reopen_count=1)
    meta = TicketMetadata()
    meta.tat.paused_seconds = 300

    lifecycle.apply_transition(ticket, meta, S.RESOLVED, S.REOPENED, T0 + timedelta(hours=1))
    assert ticket.reopen_count == 2
    assert ticket.resolved_at is None
    assert ticket.resolution_due_at is None
    assert ticket.reopened_at == T0 + timedelta(hours=1)
    assert meta.tat.paused_seconds == 0


def test_escalation_deadline_falls_back_to_acknowledgement():
    ack_due = T0 + timedelta(hours=24)
    ticket = Ticket(acknowledgement_due_at=ack_due)
    assert lifecycle.escalation_due_at(ticket) == ack_due

    ticket.acknowledged_at = T0 + timedelta(hours=1)
    assert lifecycle.escalation_due_at(ticket) is None

    ticket.resolution_due_at = T0 + timedelta(hours=6)
    assert lifecycle.escalation_due_at(ticket) == T0 + timedelta(hours=6)


# Reminders

def test_unacknowledged_ticket_needs_reminder_once_ack_is_due():
    ticket = Ticket(acknowledgement_due_at=T0 + timedelta(hours=24))
    tat = TicketMetadata().tat
    assert lifecycle.reminder_kind(S.OPEN, ticket, tat, T0 + timedelta(hours=23)) is None
    assert (
        lifecycle.reminder_kind(S.OPEN, ticket, tat, T0 + timedelta(hours=24))
        == lifecycle.REMINDER_UNACKNOWLEDGED
    )


def test_reminder_on_the_day_the_resolution_is_due():
    due = T0 + timedelta(hours=30)
    ticket = Ticket(acknowledged_at=T0, resolution_due_at=due)
    tat = TicketMetadata().tat

    assert lifecycle.reminder_kind(S.IN_PROGRESS, ticket, tat, T0) is None
    morning = due.replace(hour=0, minute=5)
    assert lifecycle.reminder_kind(S.IN_PROGRESS, ticket, tat, morning) == lifecycle.REMINDER_DUE_TODAY
    assert lifecycle.reminder_kind(S.RESOLVED, ticket, tat, morning) is None


def test_forward_guard():
    lifecycle.check_forward_allowed(0, limit=3)
    lifecycle.check_forward_allowed(2, limit=3)
    with pytest.raises(ForwardLimitExceeded):
        lifecycle.check_forward_allowed(3, limit=3)


def test_escalation_level_steps_by_one():
    assert lifecycle.next_escalation_level(None) == 1
    assert lifecycle.next_escalation_level(0) == 1
    assert lifecycle.next_escalation_level(4) == 5


@given(st.lists(st.integers(min_value=1, max_value=240), min_size=1, max_size=12),
       st.lists(st.integers(min_value=0, max_value=600), min_size=12, max_size=12))
def test_extension_history_records_every_change(hours, gaps):
    ticket = Ticket(resolution_due_at=T0 + timedelta(hours=48))
    meta = TicketMetadata()
    now = T0
    for new_hours, gap in zip(hours, gaps):
        now = now + timedelta(minutes=gap)
        lifecycle.extend_tat(ticket, meta, new_hours, now, actor_id=7)

    history = meta.tat.extensions
    assert len(history) == len(hours)
    stamps = [e.extended_at for e in history]
    assert stamps == sorted(stamps)
    assert meta.tat.tat_hours == history[-1].new_tat_hours
    assert ticket.resolution_due_at == history[-1].new_due_at
    for prev, entry in zip(history, history[1:]):
        assert entry.previous_tat_hours == prev.new_tat_hours


def test_extension_history_survives_serialization():
    from campus_helpdesk.backend.app.schemas.metadata import dump_metadata, load_metadata

    ticket = Ticket(resolution_due_at=T0)
    meta = TicketMetadata()
    lifecycle.extend_tat(ticket, meta, 12, T0, actor_id=1)
    lifecycle.extend_tat(ticket, meta, 24, T0 + timedelta(hours=1), actor_id=2)

    restored = load_metadata(dump_metadata(meta))
    assert restored.tat.extensions == meta.tat.extensions
    assert restored.tat.tat_hours == 24


# Escalation level never decreases, whatever the sequence of commands

ACTIONS = st.lists(
    st.sampled_from(
        ["in_progress", "await", "resolve", "reopen", "escalate", "forward"]
    ),
    min_size=1,
    max_size=15,
)


@settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
@given(actions=ACTIONS)
def test_escalation_level_is_monotonic(db, factory, service, actions):
    admin = factory.user(role="admin")
    other = factory.user(role="admin")
    student = factory.student()
    cat = factory.category(default_admin_id=admin.id)
    ticket = service.create_ticket(db, identity(student), TicketCreate(category_id=cat.id))

    staff = identity(admin)
    levels = [ticket.escalation_level]
    forward_to = [other.id, admin.id]

    for i, action in enumerate(actions):
        before = db.get(Ticket, ticket.id).escalation_level
        try:
            if action == "in_progress":
                service.change_status(db, staff, ticket.id, "IN_PROGRESS")
            elif action == "await":
                service.change_status(db, staff, ticket.id, "AWAITING_STUDENT")
            elif action == "resolve":
                service.change_status(db, staff, ticket.id, "RESOLVED")
            elif action == "reopen":
                service.change_status(db, identity(student), ticket.id, "REOPENED")
            elif action == "escalate":
                service.escalate(db, staff, ticket.id)
            else:
                service.forward(db, staff, ticket.id, forward_to[i % 2])
        except TicketCommandError:
            assert db.get(Ticket, ticket.id).escalation_level == before
            continue

        after = db.get(Ticket, ticket.id).escalation_level
        if action == "escalate":
            assert after == before + 1
        else:
            assert after == before
        levels.append(after)

    assert levels == sorted(levels)
    recorded = [
        e.level
        for e in db.query(Escalation).filter_by(ticket_id=ticket.id).order_by(Escalation.id)
    ]
    assert recorded == list(range(1, len(recorded) + 1))
