# campus_helpdesk/backend/app/services/lifecycle.py
"""
Ticket status state machine.

Everything here is pure: functions take the current values (status,
role, TAT state, timestamps) and either return the new values or raise
GuardViolation / PermissionDenied. The command layer in services/tickets.py
loads rows, calls into this module and persists the outcome.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from ..config import DEFAULT_TAT_HOURS, FORWARD_LIMIT
from ..errors import ForwardLimitExceeded, GuardViolation, PermissionDenied
from ..models.ticket import Ticket
from ..schemas.metadata import TatExtension, TatState, TicketMetadata
from .status_registry import StatusValue

S = StatusValue

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLE_COMMITTEE = "committee"

STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})
HANDLER_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_COMMITTEE})

# from-status -> statuses reachable through change_status / escalate / forward
TRANSITIONS: Dict[StatusValue, FrozenSet[StatusValue]] = {
    S.OPEN: frozenset({S.IN_PROGRESS, S.ESCALATED, S.FORWARDED, S.RESOLVED}),
    S.REOPENED: frozenset({S.IN_PROGRESS, S.ESCALATED, S.FORWARDED, S.RESOLVED}),
    S.IN_PROGRESS: frozenset({S.AWAITING_STUDENT, S.ESCALATED, S.FORWARDED, S.RESOLVED}),
    S.AWAITING_STUDENT: frozenset({S.IN_PROGRESS, S.ESCALATED, S.FORWARDED, S.RESOLVED}),
    S.ESCALATED: frozenset({S.IN_PROGRESS, S.ESCALATED, S.FORWARDED, S.RESOLVED}),
    S.FORWARDED: frozenset({S.IN_PROGRESS, S.ESCALATED, S.FORWARDED, S.RESOLVED}),
    S.RESOLVED: frozenset({S.REOPENED}),
}

# States whose TAT clock is not running
_CLOCK_STOPPED = frozenset({S.RESOLVED, S.REOPENED})


def check_transition(current: StatusValue, target: StatusValue) -> None:
    """Reject transitions that are not in the table."""
    if target not in TRANSITIONS.get(current, frozenset()):
        raise GuardViolation(
            f"Cannot move ticket from {current.value} to {target.value}"
        )


def check_actor(
    role: str,
    target: StatusValue,
    *,
    is_creator: bool,
    is_assignee: bool,
) -> None:
    """
    Role guard for a direct status change.

    Staff may drive any legal transition. Students may only reopen their
    own resolved ticket. Committee members may resolve tickets assigned to
    them and reopen tickets they raised.
    """
    if role in STAFF_ROLES:
        return

    if target == S.REOPENED:
        if is_creator:
            return
        raise PermissionDenied("Only the ticket creator or an admin can reopen a ticket")

    if role == ROLE_COMMITTEE and target == S.RESOLVED and is_assignee:
        return

    raise PermissionDenied(f"Role {role!r} cannot move a ticket to {target.value}")


# TAT arithmetic

def resolution_due(now: datetime, tat_hours: Optional[int]) -> datetime:
    return now + timedelta(hours=tat_hours or DEFAULT_TAT_HOURS)


def pause_clock(tat: TatState, now: datetime) -> TatState:
    if tat.pause_started_at is None:
        tat.pause_started_at = now
    return tat


def resume_clock(tat: TatState, now: datetime) -> float:
    """Close an open pause. Returns the seconds added to the accumulator."""
    if tat.pause_started_at is None:
        return 0.0
    paused = max((now - tat.pause_started_at).total_seconds(), 0.0)
    tat.paused_seconds += paused
    tat.pause_started_at = None
    return paused


def effective_due_at(
    resolution_due_at: Optional[datetime],
    tat: TatState,
    now: datetime,
) -> Optional[datetime]:
    """Resolution deadline pushed back by every paused interval, the open one included."""
    if resolution_due_at is None:
        return None
    paused = tat.paused_seconds
    if tat.pause_started_at is not None:
        paused += max((now - tat.pause_started_at).total_seconds(), 0.0)
    return resolution_due_at + timedelta(seconds=paused)


def is_overdue(
    status: StatusValue,
    resolution_due_at: Optional[datetime],
    tat: TatState,
    now: datetime,
) -> bool:
    """
    True when the ticket is past its pause-adjusted resolution deadline.

    Depends only on persisted values, so any process can recompute it.
    """
    if status in _CLOCK_STOPPED:
        return False
    due = effective_due_at(resolution_due_at, tat, now)
    if due is None:
        return False
    return now > due


def escalation_due_at(ticket: Ticket) -> Optional[datetime]:
    """
    Deadline the escalation sweep measures a ticket against: the resolution
    deadline once one is running, otherwise the acknowledgement deadline of
    a ticket nobody has picked up yet.
    """
    if ticket.resolution_due_at is not None:
        return ticket.resolution_due_at
    if ticket.acknowledged_at is None:
        return ticket.acknowledgement_due_at
    return None


# Handler reminders

REMINDER_UNACKNOWLEDGED = "unacknowledged"
REMINDER_DUE_TODAY = "due_today"


def reminder_kind(
    status: StatusValue,
    ticket: Ticket,
    tat: TatState,
    now: datetime,
) -> Optional[str]:
    """Which reminder, if any, the handler of `ticket` should get on the day of `now`."""
    if status in _CLOCK_STOPPED:
        return None
    if ticket.acknowledged_at is None:
        due = ticket.acknowledgement_due_at
        if due is not None and now >= due:
            return REMINDER_UNACKNOWLEDGED
    due = effective_due_at(ticket.resolution_due_at, tat, now)
    if due is not None and due.date() == now.date():
        return REMINDER_DUE_TODAY
    return None


# Transition side effects

def apply_transition(
    ticket: Ticket,
    meta: TicketMetadata,
    current: StatusValue,
    target: StatusValue,
    now: datetime,
    default_tat_hours: Optional[int] = None,
) -> None:
    """
    Mutate `ticket` and `meta` for a legal `current -> target` move.

    Does not touch status_id, the assignee or the escalation level; the
    caller owns those.
    """
    tat = meta.tat

    if current == S.AWAITING_STUDENT and target != S.AWAITING_STUDENT:
        resume_clock(tat, now)

    if target == S.IN_PROGRESS:
        if ticket.acknowledged_at is None:
            ticket.acknowledged_at = now
        if ticket.resolution_due_at is None:
            ticket.resolution_due_at = resolution_due(
                now, tat.tat_hours or default_tat_hours
            )

    elif target == S.AWAITING_STUDENT:
        pause_clock(tat, now)

    elif target == S.RESOLVED:
        ticket.resolved_at = now

    elif target == S.REOPENED:
        ticket.reopen_count = (ticket.reopen_count or 0) + 1
        ticket.reopened_at = now
        ticket.resolved_at = None
        ticket.resolution_due_at = None
        tat.pause_started_at = None
        tat.paused_seconds = 0.0


def next_escalation_level(current_level: Optional[int]) -> int:
    return (current_level or 0) + 1


def check_forward_allowed(forward_count: int, limit: int = FORWARD_LIMIT) -> None:
    if forward_count >= limit:
        raise ForwardLimitExceeded(
            f"Ticket has already been forwarded {forward_count} times "
            f"(limit {limit}); escalate or reassign instead"
        )


def extend_tat(
    ticket: Ticket,
    meta: TicketMetadata,
    new_tat_hours: int,
    now: datetime,
    actor_id: Optional[int],
    default_tat_hours: Optional[int] = None,
) -> TatExtension:
    """
    Replace the TAT of an in-progress ticket and record the change.

    The new deadline runs from `now`; earlier pauses no longer apply to it.
    """
    tat = meta.tat
    previous_hours = tat.tat_hours or default_tat_hours or DEFAULT_TAT_HOURS
    new_due = resolution_due(now, new_tat_hours)

    entry = TatExtension(
        previous_tat_hours=previous_hours,
        new_tat_hours=new_tat_hours,
        previous_due_at=ticket.resolution_due_at,
        new_due_at=new_due,
        extended_at=now,
        extended_by=actor_id,
    )
    tat.extensions.append(entry)
    tat.tat_hours = new_tat_hours
    tat.paused_seconds = 0.0
    tat.pause_started_at = None
    ticket.resolution_due_at = new_due
    return entry


def current_tat_hours(meta: TicketMetadata, default_tat_hours: Optional[int] = None) -> int:
    return meta.tat.tat_hours or default_tat_hours or DEFAULT_TAT_HOURS
