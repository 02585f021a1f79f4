# campus_helpdesk/backend/app/worker.py
"""
Background worker: drains the outbox and runs the automatic escalation
and handler reminder sweep.

Usage:
    python -m campus_helpdesk.backend.app.worker

Run it as its own process next to the API. Several workers may run at
once; outbox rows are claimed with a lease so each is handled by one
worker at a time.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from .config import AUTO_ESCALATION_INTERVAL, LOG_LEVEL
from .db import SessionLocal
from .services.status_registry import seed_statuses
from .services.tickets import TicketService
from .workers.dispatcher import OutboxDispatcher

logger = logging.getLogger(__name__)


def run_sweep(
    service: TicketService,
    session_factory: Callable = SessionLocal,
) -> Tuple[List[int], List[int]]:
    """One blocking escalation and reminder pass in its own session."""
    with session_factory() as db:
        escalated = service.auto_escalate_overdue(db)
        reminded = service.send_reminders(db)
    return escalated, reminded


async def escalation_loop(
    service: TicketService,
    interval: float = AUTO_ESCALATION_INTERVAL,
    stop_event: Optional[asyncio.Event] = None,
    session_factory: Callable = SessionLocal,
) -> None:
    logger.info("[LIFECYCLE] Auto-escalation and reminder sweep every %ss", interval)
    while stop_event is None or not stop_event.is_set():
        try:
            # Blocking database work stays off the event loop
            await asyncio.to_thread(run_sweep, service, session_factory)
        except Exception:
            logger.exception("[LIFECYCLE] Auto-escalation sweep failed")
        await asyncio.sleep(interval)


async def run_worker() -> None:
    with SessionLocal() as db:
        seed_statuses(db)

    dispatcher = OutboxDispatcher()
    service = TicketService()
    await asyncio.gather(
        dispatcher.run_forever(),
        escalation_loop(service),
    )


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
