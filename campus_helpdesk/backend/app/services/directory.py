# campus_helpdesk/backend/app/services/directory.py

from __future__ import annotations

import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import DIRECTORY_CACHE_TTL
from ..models.user import User

_MISSING = object()


class DirectoryCache:
    """
    Memoized user-directory lookups that every ticket command needs,
    currently just the super-admin sentinel used as the last routing and
    escalation fallback.
    """

    def __init__(
        self,
        ttl: float = DIRECTORY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._super_admin = _MISSING
        self._loaded_at: Optional[float] = None

    def invalidate(self) -> None:
        self._super_admin = _MISSING
        self._loaded_at = None

    def super_admin_id(self, db: Session) -> Optional[int]:
        now = self._clock()
        if (
            self._super_admin is not _MISSING
            and self._loaded_at is not None
            and now - self._loaded_at < self.ttl
        ):
            return self._super_admin

        row = (
            db.query(User.id)
            .filter(User.role == "super_admin", User.is_active.is_(True))
            .order_by(User.id)
            .first()
        )
        self._super_admin = row[0] if row else None
        self._loaded_at = now
        return self._super_admin
