# backend/app/models/comment.py

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..db import Base

VISIBILITY_PUBLIC = "public"
VISIBILITY_INTERNAL = "internal"


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    visibility = Column(String(16), nullable=False, default=VISIBILITY_PUBLIC, server_default=VISIBILITY_PUBLIC)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    ticket = relationship("Ticket", back_populates="comments")
