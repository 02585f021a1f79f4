# campus_helpdesk/backend/app/workers/dispatcher.py
"""
Outbox dispatcher.

Each cycle claims a batch of due outbox rows and runs the registered
handler for every row, each in its own session and under a timeout:

  - success            -> processed_at set
  - failure / timeout  -> attempts + 1, next_retry_at = now + 2^attempts min
  - unknown event type -> processed_at set, logged as skipped, attempts untouched
  - lease lost         -> nothing written, the row belongs to whoever reclaimed it

Rows that reach OUTBOX_MAX_ATTEMPTS stay in the table unprocessed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ..clock import utcnow
from ..config import (
    OUTBOX_BATCH_SIZE,
    OUTBOX_CLAIM_LEASE,
    OUTBOX_HANDLER_TIMEOUT,
    OUTBOX_MAX_ATTEMPTS,
    OUTBOX_POLL_INTERVAL,
)
from ..db import SessionLocal
from ..models.outbox import OutboxEntry
from ..services import outbox
from .channels import build_default_channels
from .notifier import Notifier
from .registry import EVENT_HANDLERS, EventHandler, resolve_event_handler

logger = logging.getLogger(__name__)

PROCESSED = "processed"
FAILED = "failed"
SKIPPED = "skipped"
LOST = "lost"


@dataclass
class DispatchStats:
    claimed: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    lost: int = 0

    def add(self, outcome: str) -> None:
        if outcome == PROCESSED:
            self.processed += 1
        elif outcome == FAILED:
            self.failed += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        elif outcome == LOST:
            self.lost += 1


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        handlers: Mapping[str, EventHandler] = EVENT_HANDLERS,
        notifier: Optional[Notifier] = None,
        batch_size: int = OUTBOX_BATCH_SIZE,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
        poll_interval: float = OUTBOX_POLL_INTERVAL,
        handler_timeout: float = OUTBOX_HANDLER_TIMEOUT,
        lease_seconds: int = OUTBOX_CLAIM_LEASE,
        worker_id: Optional[str] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.handlers = handlers
        self.notifier = notifier or Notifier(build_default_channels())
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.handler_timeout = handler_timeout
        self.lease_seconds = lease_seconds
        self.worker_id = worker_id or default_worker_id()
        self.clock = clock

    async def run_once(self) -> DispatchStats:
        stats = DispatchStats()

        with self.session_factory() as db:
            entries = outbox.claim_batch(
                db,
                self.worker_id,
                now=self.clock(),
                limit=self.batch_size,
                lease_seconds=self.lease_seconds,
                max_attempts=self.max_attempts,
            )
            claimed_ids = [e.id for e in entries]

        stats.claimed = len(claimed_ids)
        if claimed_ids:
            logger.info("[OUTBOX] Claimed %s entries", len(claimed_ids))

        for entry_id in claimed_ids:
            stats.add(await self._process(entry_id))
        return stats

    async def _process(self, entry_id: int) -> str:
        with self.session_factory() as db:
            entry = db.get(OutboxEntry, entry_id)
            if entry is None:
                return SKIPPED

            handler = resolve_event_handler(entry.event_type, self.handlers)
            if handler is None:
                logger.warning(
                    "[OUTBOX] Entry %s has unknown event type %r, skipping",
                    entry.id, entry.event_type,
                )
                settled = outbox.mark_skipped(
                    db, entry, self.worker_id,
                    reason=f"unknown event type {entry.event_type}",
                    now=self.clock(),
                )
                return SKIPPED if settled else LOST

            try:
                await asyncio.wait_for(
                    handler(db, entry, self.notifier), timeout=self.handler_timeout
                )
            except asyncio.TimeoutError:
                db.rollback()
                return self._fail(db, entry, f"handler timed out after {self.handler_timeout}s")
            except Exception as exc:
                db.rollback()
                return self._fail(db, entry, f"{type(exc).__name__}: {exc}")

            if not outbox.mark_processed(db, entry, self.worker_id, now=self.clock()):
                logger.warning(
                    "[OUTBOX] Entry %s (%s) was handled after its lease expired; "
                    "the new owner will settle it",
                    entry.id, entry.event_type,
                )
                return LOST
            logger.info("[OUTBOX] Entry %s (%s) processed", entry.id, entry.event_type)
            return PROCESSED

    def _fail(self, db, entry: OutboxEntry, error: str) -> str:
        if not outbox.mark_failed(db, entry, self.worker_id, error, now=self.clock()):
            logger.warning(
                "[OUTBOX] Entry %s (%s) failed after its lease expired: %s",
                entry.id, entry.event_type, error,
            )
            return LOST
        if entry.attempts >= self.max_attempts:
            logger.error(
                "[OUTBOX] Entry %s (%s) dead-lettered after %s attempts: %s",
                entry.id, entry.event_type, entry.attempts, error,
            )
        else:
            logger.warning(
                "[OUTBOX] Entry %s (%s) failed (attempt %s), retry at %s: %s",
                entry.id, entry.event_type, entry.attempts, entry.next_retry_at, error,
            )
        return FAILED

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        logger.info(
            "[OUTBOX] Dispatcher %s starting (poll interval: %ss, batch size: %s)",
            self.worker_id, self.poll_interval, self.batch_size,
        )
        while stop_event is None or not stop_event.is_set():
            try:
                stats = await self.run_once()
            except Exception:
                logger.exception("[OUTBOX] Error in dispatcher loop")
                stats = DispatchStats()

            if stats.claimed == 0:
                await asyncio.sleep(self.poll_interval)
