# backend/app/models/notification.py

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from ..db import Base


class Notification(Base):
    """Delivered notification, one row per (outbox event, channel, recipient)."""
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("outbox_id", "channel", "recipient", name="unique_delivery"),
    )

    id = Column(Integer, primary_key=True, index=True)
    outbox_id = Column(Integer, ForeignKey("outbox.id"), nullable=False, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    channel = Column(String(32), nullable=False)
    recipient = Column(String(255), nullable=False)
    event_type = Column(String(64), nullable=False)

    sent_at = Column(DateTime, server_default=func.now(), nullable=False)
