"""User model definitions."""

from sqlalchemy import Column, DateTime, Integer, JSON, String

from chesscoach.core.timeutils import utcnow
from chesscoach.database import Base

COACH_ROLE = "coach"
STUDENT_ROLE = "student"
USER_ROLES = (COACH_ROLE, STUDENT_ROLE)


class User(Base):
    """Represents a coach or a student."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False)  # coach/student
    email = Column(String)
    avatar = Column(String)
    preferences = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)
