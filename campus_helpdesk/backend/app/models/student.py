# backend/app/models/student.py

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from ..db import Base


class StudentProfile(Base):
    """
    Student attributes that routing can key off.
    Categories with a "dynamic" scope read one of these columns
    (e.g. hostel) to pick the scope.
    """
    __tablename__ = "student_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    roll_no = Column(String(32), nullable=True)
    hostel = Column(String(120), nullable=True)
    room_number = Column(String(32), nullable=True)
    batch_year = Column(Integer, nullable=True)

    user = relationship("User")
