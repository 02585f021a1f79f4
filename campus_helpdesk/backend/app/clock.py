# campus_helpdesk/backend/app/clock.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the `timestamp without time zone` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
