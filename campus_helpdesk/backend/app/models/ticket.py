# backend/app/models/ticket.py

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.sql.expression import false

from ..db import Base
from .types import JSONType


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)

    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)

    status_id = Column(Integer, ForeignKey("ticket_statuses.id"), nullable=False)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), nullable=True)
    sub_subcategory_id = Column(
        Integer, ForeignKey("sub_subcategories.id"), nullable=True
    )

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Null only while the resolver has not run, or when flagged for an operator
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    needs_attention = Column(Boolean, nullable=False, default=False, server_default=false())
    assignment_step = Column(String(50), nullable=True)

    escalation_level = Column(Integer, nullable=False, default=0, server_default="0")
    last_escalation_at = Column(DateTime, nullable=True)

    acknowledgement_due_at = Column(DateTime, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    resolution_due_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    reopened_at = Column(DateTime, nullable=True)
    reopen_count = Column(Integer, nullable=False, default=0, server_default="0")

    rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)

    # Serialized TicketMetadata (TAT state, dynamic fields, attachments, forwards)
    meta = Column("metadata", JSONType, nullable=False, default=dict)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    status = relationship("TicketStatus")
    category = relationship("Category")
    subcategory = relationship("Subcategory")
    sub_subcategory = relationship("SubSubcategory")

    history_entries = relationship(
        "TicketHistory", back_populates="ticket", order_by="TicketHistory.id"
    )
    comments = relationship("Comment", back_populates="ticket", order_by="Comment.id")
    escalations = relationship(
        "Escalation", back_populates="ticket", order_by="Escalation.level"
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_value(self):
        return self.status.value if self.status is not None else None
