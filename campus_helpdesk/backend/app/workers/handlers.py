# campus_helpdesk/backend/app/workers/handlers.py
"""
Outbox event handlers.

Each handler receives (db, entry, notifier), reads what it needs from the
database and sends notifications through the notifier. Raising anything
marks the outbox entry as failed so it is retried with backoff.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..errors import TicketNotFound
from ..models.comment import VISIBILITY_PUBLIC, Comment
from ..models.outbox import OutboxEntry
from ..models.ticket import Ticket
from ..models.user import User
from ..services.lifecycle import REMINDER_UNACKNOWLEDGED
from .channels import EMAIL, SLACK, NotificationMessage
from .notifier import Notifier

logger = logging.getLogger(__name__)

SLACK_BROADCAST = "channel"


def _ticket(db: Session, entry: OutboxEntry) -> Ticket:
    ticket_id = (entry.payload or {}).get("ticket_id")
    ticket = db.get(Ticket, ticket_id) if ticket_id is not None else None
    if ticket is None:
        raise TicketNotFound(f"Ticket {ticket_id} for outbox entry {entry.id} not found")
    return ticket


def _user(db: Session, user_id: Optional[int]) -> Optional[User]:
    if user_id is None:
        return None
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def _mention(user: User) -> str:
    if user.slack_user_id:
        return f"<@{user.slack_user_id}>"
    return user.full_name or user.email


async def _email(
    db: Session,
    entry: OutboxEntry,
    notifier: Notifier,
    user: Optional[User],
    ticket: Ticket,
    subject: str,
    text: str,
) -> None:
    if user is None:
        return
    await notifier.deliver(
        db,
        entry,
        EMAIL,
        NotificationMessage(recipient=user.email, subject=subject, text=text, ticket_id=ticket.id),
        user_id=user.id,
    )


async def _slack(
    db: Session,
    entry: OutboxEntry,
    notifier: Notifier,
    ticket: Ticket,
    subject: str,
    text: str,
    user: Optional[User] = None,
) -> None:
    recipient = user.slack_user_id if user and user.slack_user_id else SLACK_BROADCAST
    await notifier.deliver(
        db,
        entry,
        SLACK,
        NotificationMessage(recipient=recipient, subject=subject, text=text, ticket_id=ticket.id),
        user_id=user.id if user else None,
    )


async def handle_ticket_created(db: Session, entry: OutboxEntry, notifier: Notifier) -> None:
    ticket = _ticket(db, entry)
    subject = f"Ticket #{ticket.id} created"

    handler = _user(db, ticket.assigned_to)
    if handler is not None:
        await _slack(
            db, entry, notifier, ticket, subject,
            f"{_mention(handler)} you have a new ticket: {ticket.description or ''}".strip(),
            user=handler,
        )
        await _email(
            db, entry, notifier, handler, ticket,
            f"New ticket #{ticket.id} assigned to you",
            ticket.description or "A new ticket was assigned to you.",
        )
    else:
        await _slack(
            db, entry, notifier, ticket,
            f"Ticket #{ticket.id} needs attention",
            "No handler could be resolved for this ticket. Please assign it manually.",
        )

    creator = _user(db, ticket.created_by)
    await _email(
        db, entry, notifier, creator, ticket, subject,
        "We have received your ticket and routed it to the responsible team.",
    )


async def handle_comment_added(db: Session, entry: OutboxEntry, notifier: Notifier) -> None:
    ticket = _ticket(db, entry)
    payload = entry.payload or {}
    comment = db.get(Comment, payload.get("comment_id"))
    if comment is None:
        raise LookupError(f"Comment {payload.get('comment_id')} not found")

    subject = f"New comment on ticket #{ticket.id}"

    if comment.author_id != ticket.created_by and comment.visibility == VISIBILITY_PUBLIC:
        creator = _user(db, ticket.created_by)
        await _email(db, entry, notifier, creator, ticket, subject, comment.body)

    if ticket.assigned_to and comment.author_id != ticket.assigned_to:
        handler = _user(db, ticket.assigned_to)
        await _email(db, entry, notifier, handler, ticket, subject, comment.body)


async def handle_status_changed(db: Session, entry: OutboxEntry, notifier: Notifier) -> None:
    ticket = _ticket(db, entry)
    payload = entry.payload or {}
    action = payload.get("action")
    old_status = payload.get("old_status")
    new_status = payload.get("new_status")

    if old_status != new_status:
        creator = _user(db, ticket.created_by)
        text = f"Your ticket moved from {old_status} to {new_status}."
        if payload.get("reason"):
            text += f"\nReason: {payload['reason']}"
        await _email(
            db, entry, notifier, creator, ticket,
            f"Ticket #{ticket.id} is now {new_status}", text,
        )

    if action in ("forwarded", "reassigned"):
        handler = _user(db, payload.get("assigned_to"))
        if handler is not None:
            await _slack(
                db, entry, notifier, ticket,
                f"Ticket #{ticket.id} {action} to you",
                f"{_mention(handler)} ticket #{ticket.id} was {action} to you.",
                user=handler,
            )
            await _email(
                db, entry, notifier, handler, ticket,
                f"Ticket #{ticket.id} {action} to you",
                ticket.description or f"Ticket #{ticket.id} was {action} to you.",
            )


async def handle_ticket_escalated(db: Session, entry: OutboxEntry, notifier: Notifier) -> None:
    ticket = _ticket(db, entry)
    payload = entry.payload or {}
    level = payload.get("level")
    subject = f"Ticket #{ticket.id} escalated to level {level}"
    reason = payload.get("reason") or "No reason given"

    target = _user(db, payload.get("escalated_to"))
    if target is not None:
        if payload.get("notify_channel") == SLACK:
            await _slack(
                db, entry, notifier, ticket, subject,
                f"{_mention(target)} ticket #{ticket.id} was escalated to you. Reason: {reason}",
                user=target,
            )
        await _email(
            db, entry, notifier, target, ticket, subject,
            f"Ticket #{ticket.id} was escalated to you.\nReason: {reason}",
        )
    else:
        await _slack(
            db, entry, notifier, ticket, subject,
            "Escalation has no configured handler at this level. Please assign it manually.",
        )

    creator = _user(db, ticket.created_by)
    await _email(
        db, entry, notifier, creator, ticket, subject,
        "Your ticket has been escalated for faster resolution.",
    )


async def handle_ticket_reminder(db: Session, entry: OutboxEntry, notifier: Notifier) -> None:
    ticket = _ticket(db, entry)
    payload = entry.payload or {}

    handler = _user(db, ticket.assigned_to)
    if handler is None:
        logger.info("[NOTIFY] Ticket %s has no active handler to remind", ticket.id)
        return

    if payload.get("kind") == REMINDER_UNACKNOWLEDGED:
        subject = f"Reminder: ticket #{ticket.id} is waiting to be picked up"
    else:
        subject = f"Reminder: ticket #{ticket.id} is due today"
    text = subject
    if payload.get("due_at"):
        text += f"\nDue: {payload['due_at']}"

    if handler.slack_user_id:
        await _slack(db, entry, notifier, ticket, subject, f"{_mention(handler)} {text}", user=handler)
    await _email(db, entry, notifier, handler, ticket, subject, text)
