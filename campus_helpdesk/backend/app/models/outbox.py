# backend/app/models/outbox.py

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from ..db import Base
from .types import JSONType


class OutboxEntry(Base):
    """
    Append-only event record, written in the same transaction as the
    ticket change it describes and drained by the outbox dispatcher.

    processed_at stays NULL until delivery succeeds (or the event type is
    unknown). Rows that exhaust their attempts are kept for inspection.
    """
    __tablename__ = "outbox"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(64), nullable=False)
    payload = Column(JSONType, nullable=False)

    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    next_retry_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True, index=True)

    # Claim lease held by one dispatcher instance
    locked_until = Column(DateTime, nullable=True)
    locked_by = Column(String(64), nullable=True)

    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
