# campus_helpdesk/backend/app/services/outbox.py
"""
Outbox table access: appending events inside a command transaction, and
the claim / settle operations the dispatcher runs on it.

A row is claimed by writing a lease (`locked_until`, `locked_by`) with a
conditional UPDATE; only the worker whose UPDATE touched the row may
settle it. An expired lease makes the row claimable again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import (
    OUTBOX_BATCH_SIZE,
    OUTBOX_CLAIM_LEASE,
    OUTBOX_MAX_ATTEMPTS,
    OUTBOX_MAX_BACKOFF_MINUTES,
)
from ..models.outbox import OutboxEntry

logger = logging.getLogger(__name__)

TICKET_CREATED = "ticket.created"
COMMENT_ADDED = "ticket.comment_added"
STATUS_CHANGED = "ticket.status_changed"
TICKET_ESCALATED = "ticket.escalated"
TICKET_REMINDER = "ticket.reminder"

EVENT_TYPES = (
    TICKET_CREATED,
    COMMENT_ADDED,
    STATUS_CHANGED,
    TICKET_ESCALATED,
    TICKET_REMINDER,
)


def enqueue(db: Session, event_type: str, payload: dict) -> OutboxEntry:
    """
    Add an event to the current transaction. The caller commits.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown outbox event type: {event_type}")
    if "ticket_id" not in payload:
        raise ValueError("Outbox payload must carry ticket_id")

    entry = OutboxEntry(event_type=event_type, payload=payload, attempts=0)
    db.add(entry)
    return entry


def backoff_delay(attempts: int, cap_minutes: int = OUTBOX_MAX_BACKOFF_MINUTES) -> timedelta:
    """2^attempts minutes, capped."""
    return timedelta(minutes=min(2 ** attempts, cap_minutes))


def _claimable(now: datetime, max_attempts: int):
    return (
        OutboxEntry.processed_at.is_(None),
        OutboxEntry.attempts < max_attempts,
        or_(OutboxEntry.next_retry_at.is_(None), OutboxEntry.next_retry_at < now),
        or_(OutboxEntry.locked_until.is_(None), OutboxEntry.locked_until < now),
    )


def select_candidates(
    db: Session,
    now: Optional[datetime] = None,
    limit: int = OUTBOX_BATCH_SIZE,
    max_attempts: int = OUTBOX_MAX_ATTEMPTS,
) -> List[int]:
    now = now or utcnow()
    stmt = (
        select(OutboxEntry.id)
        .where(*_claimable(now, max_attempts))
        .order_by(OutboxEntry.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(db.execute(stmt).scalars().all())


def try_claim(
    db: Session,
    entry_id: int,
    worker_id: str,
    now: datetime,
    lease_seconds: int = OUTBOX_CLAIM_LEASE,
    max_attempts: int = OUTBOX_MAX_ATTEMPTS,
) -> bool:
    """Take the lease on one row. False when another worker got there first."""
    result = db.execute(
        update(OutboxEntry)
        .where(OutboxEntry.id == entry_id, *_claimable(now, max_attempts))
        .values(
            locked_until=now + timedelta(seconds=lease_seconds),
            locked_by=worker_id,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def claim_batch(
    db: Session,
    worker_id: str,
    now: Optional[datetime] = None,
    limit: int = OUTBOX_BATCH_SIZE,
    lease_seconds: int = OUTBOX_CLAIM_LEASE,
    max_attempts: int = OUTBOX_MAX_ATTEMPTS,
) -> List[OutboxEntry]:
    """
    Select up to `limit` due rows and lease them to `worker_id`.

    Commits the claim before returning so other workers see the lease
    while the handlers run.
    """
    now = now or utcnow()
    try:
        ids = select_candidates(db, now=now, limit=limit, max_attempts=max_attempts)
        claimed = [
            entry_id
            for entry_id in ids
            if try_claim(db, entry_id, worker_id, now, lease_seconds, max_attempts)
        ]
        db.commit()
    except Exception:
        db.rollback()
        raise

    if not claimed:
        return []

    return (
        db.query(OutboxEntry)
        .filter(OutboxEntry.id.in_(claimed))
        .order_by(OutboxEntry.id)
        .populate_existing()
        .all()
    )


def _settle(db: Session, entry: OutboxEntry, worker_id: str, **values) -> bool:
    result = db.execute(
        update(OutboxEntry)
        .where(OutboxEntry.id == entry.id, OutboxEntry.locked_by == worker_id)
        .values(locked_until=None, locked_by=None, **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        logger.warning(
            "[OUTBOX] Lost lease on entry %s before it was settled by %s",
            entry.id, worker_id,
        )
        return False
    db.refresh(entry)
    return True


def mark_processed(
    db: Session,
    entry: OutboxEntry,
    worker_id: str,
    now: Optional[datetime] = None,
) -> bool:
    return _settle(db, entry, worker_id, processed_at=now or utcnow(), last_error=None)


def mark_skipped(
    db: Session,
    entry: OutboxEntry,
    worker_id: str,
    reason: str,
    now: Optional[datetime] = None,
) -> bool:
    """Settle without delivery (unknown event type). Attempts are left alone."""
    return _settle(db, entry, worker_id, processed_at=now or utcnow(), last_error=reason)


def mark_failed(
    db: Session,
    entry: OutboxEntry,
    worker_id: str,
    error: str,
    now: Optional[datetime] = None,
) -> bool:
    now = now or utcnow()
    attempts = (entry.attempts or 0) + 1
    return _settle(
        db,
        entry,
        worker_id,
        attempts=attempts,
        next_retry_at=now + backoff_delay(attempts),
        last_error=error[:2000],
    )


def is_dead_lettered(entry: OutboxEntry, max_attempts: int = OUTBOX_MAX_ATTEMPTS) -> bool:
    return entry.processed_at is None and (entry.attempts or 0) >= max_attempts
