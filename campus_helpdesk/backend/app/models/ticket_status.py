# backend/app/models/ticket_status.py

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.sql.expression import false, true

from ..db import Base


class TicketStatus(Base):
    """Status registry row. Edited by configuration actions only."""
    __tablename__ = "ticket_statuses"

    id = Column(Integer, primary_key=True, index=True)
    value = Column(String(50), unique=True, nullable=False)
    label = Column(String(100), nullable=False)
    progress_percent = Column(Integer, nullable=False, default=0, server_default="0")
    is_final = Column(Boolean, nullable=False, default=False, server_default=false())
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    display_order = Column(Integer, nullable=False, default=0, server_default="0")
