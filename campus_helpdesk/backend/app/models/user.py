# backend/app/models/user.py

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.sql.expression import true

from ..db import Base

ROLES = ("student", "admin", "super_admin", "committee")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # Subject claim issued by the identity provider
    external_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255), nullable=True)

    role = Column(String(32), nullable=False, default="student", server_default="student")
    slack_user_id = Column(String(128), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    created_at = Column(
        DateTime, server_default=func.now(), nullable=False
    )
