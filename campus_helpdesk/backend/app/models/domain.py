# backend/app/models/domain.py

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql.expression import true

from ..db import Base


class Domain(Base):
    """Operational routing domain (Hostel, College, General, ...)."""
    __tablename__ = "domains"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    scopes = relationship("Scope", back_populates="domain")


class Scope(Base):
    __tablename__ = "scopes"
    __table_args__ = (UniqueConstraint("domain_id", "name", name="unique_domain_scope"),)

    id = Column(Integer, primary_key=True, index=True)
    domain_id = Column(Integer, ForeignKey("domains.id"), nullable=False)
    name = Column(String(120), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    domain = relationship("Domain", back_populates="scopes")
