# backend/app/models/escalation.py

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..db import Base


class EscalationRule(Base):
    __tablename__ = "escalation_rules"
    __table_args__ = (
        UniqueConstraint("domain_id", "scope_id", "level", name="unique_escalation_rule"),
    )

    id = Column(Integer, primary_key=True, index=True)
    domain_id = Column(Integer, ForeignKey("domains.id"), nullable=False)
    scope_id = Column(Integer, ForeignKey("scopes.id"), nullable=True)
    level = Column(Integer, nullable=False)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notify_channel = Column(String(32), nullable=False, default="slack", server_default="slack")  # slack | email
    tat_hours = Column(Integer, nullable=True)


class Escalation(Base):
    """Escalation history, one row per level reached."""
    __tablename__ = "escalations"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    escalated_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # null = system
    escalated_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason = Column(Text, nullable=True)
    level = Column(Integer, nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    ticket = relationship("Ticket", back_populates="escalations")
