# campus_helpdesk/backend/app/services/status_registry.py
"""
Canonical ticket statuses and the process-wide cached view of the
`ticket_statuses` table.

Ticket-processing code only ever talks in `StatusValue` members. Legacy
spellings ("closed", lowercase values) are converted once, at the
boundary, by `normalize_status`.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import GENERAL_DOMAIN_NAME, STATUS_CACHE_TTL
from ..errors import GuardViolation
from ..models.domain import Domain
from ..models.ticket_status import TicketStatus

logger = logging.getLogger(__name__)


class StatusValue(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_STUDENT = "AWAITING_STUDENT"
    ESCALATED = "ESCALATED"
    FORWARDED = "FORWARDED"
    RESOLVED = "RESOLVED"
    REOPENED = "REOPENED"


DEFAULT_STATUSES = [
    # (value, label, progress_percent, is_final, display_order)
    (StatusValue.OPEN, "Open", 10, False, 1),
    (StatusValue.IN_PROGRESS, "In Progress", 50, False, 2),
    (StatusValue.AWAITING_STUDENT, "Awaiting Student Response", 70, False, 3),
    (StatusValue.REOPENED, "Reopened", 30, False, 4),
    (StatusValue.ESCALATED, "Escalated", 60, False, 5),
    (StatusValue.FORWARDED, "Forwarded", 45, False, 6),
    (StatusValue.RESOLVED, "Resolved", 100, True, 7),
]

# Spellings found in older stores
LEGACY_ALIASES = {
    "closed": StatusValue.RESOLVED,
    "awaiting_student_response": StatusValue.AWAITING_STUDENT,
    "awaiting_response": StatusValue.AWAITING_STUDENT,
    "new": StatusValue.OPEN,
}


def normalize_status(raw) -> StatusValue:
    """
    Map a raw status string (any case, legacy aliases included) to a
    canonical StatusValue. Raises ValueError for anything unknown.
    """
    if isinstance(raw, StatusValue):
        return raw
    if raw is None:
        raise ValueError("Status is required")

    key = str(raw).strip()
    try:
        return StatusValue(key.upper())
    except ValueError:
        pass

    alias = LEGACY_ALIASES.get(key.lower())
    if alias is None:
        raise ValueError(f"Unknown ticket status: {raw!r}")
    return alias


@dataclass(frozen=True)
class StatusInfo:
    id: int
    value: StatusValue
    label: str
    progress_percent: int
    is_final: bool
    display_order: int


class StatusRegistry:
    """
    TTL cache over active `ticket_statuses` rows.

    Entries are plain StatusInfo values, never ORM instances, so one
    registry can be shared by every session in the process. Call
    `invalidate()` after editing the status table.
    """

    def __init__(
        self,
        ttl: float = STATUS_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._by_value: Dict[StatusValue, StatusInfo] = {}
        self._by_id: Dict[int, StatusInfo] = {}
        self._loaded_at: Optional[float] = None

    def invalidate(self) -> None:
        self._loaded_at = None
        self._by_value = {}
        self._by_id = {}

    def _is_fresh(self) -> bool:
        if self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self.ttl

    def _load(self, db: Session) -> None:
        rows = (
            db.query(TicketStatus)
            .filter(TicketStatus.is_active.is_(True))
            .order_by(TicketStatus.display_order, TicketStatus.id)
            .all()
        )
        by_value: Dict[StatusValue, StatusInfo] = {}
        by_id: Dict[int, StatusInfo] = {}
        for row in rows:
            try:
                value = normalize_status(row.value)
            except ValueError:
                logger.warning("[STATUS] Ignoring unknown status row %r", row.value)
                continue
            info = StatusInfo(
                id=row.id,
                value=value,
                label=row.label,
                progress_percent=row.progress_percent,
                is_final=bool(row.is_final),
                display_order=row.display_order,
            )
            by_value[value] = info
            by_id[row.id] = info

        self._by_value = by_value
        self._by_id = by_id
        self._loaded_at = self._clock()
        logger.debug("[STATUS] Loaded %s statuses", len(by_value))

    def _ensure(self, db: Session) -> None:
        if not self._is_fresh():
            self._load(db)

    def all(self, db: Session) -> List[StatusInfo]:
        self._ensure(db)
        return sorted(self._by_value.values(), key=lambda s: s.display_order)

    def get(self, db: Session, value) -> StatusInfo:
        status_value = normalize_status(value)
        self._ensure(db)
        info = self._by_value.get(status_value)
        if info is None:
            raise GuardViolation(f"Status {status_value.value} is not configured")
        return info

    def by_id(self, db: Session, status_id: int) -> StatusInfo:
        self._ensure(db)
        info = self._by_id.get(status_id)
        if info is None:
            # Row added or re-activated since the last load
            self._load(db)
            info = self._by_id.get(status_id)
        if info is None:
            raise GuardViolation(f"Status id {status_id} is not configured")
        return info

    def final_ids(self, db: Session) -> List[int]:
        self._ensure(db)
        return [info.id for info in self._by_value.values() if info.is_final]


def seed_statuses(db: Session) -> int:
    """Insert missing canonical statuses. Returns the number of rows added."""
    existing = {row.value for row in db.query(TicketStatus.value).all()}
    added = 0
    for value, label, progress, is_final, order in DEFAULT_STATUSES:
        if value.value in existing:
            continue
        db.add(
            TicketStatus(
                value=value.value,
                label=label,
                progress_percent=progress,
                is_final=is_final,
                is_active=True,
                display_order=order,
            )
        )
        added += 1

    if db.query(Domain).filter(Domain.name == GENERAL_DOMAIN_NAME).first() is None:
        db.add(Domain(name=GENERAL_DOMAIN_NAME, is_active=True))

    db.commit()
    if added:
        logger.info("[STATUS] Seeded %s ticket statuses", added)
    return added
