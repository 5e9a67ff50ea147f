"""Class schedule model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text

from chesscoach.core.timeutils import utcnow
from chesscoach.database import Base

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
MEETING_PROVIDERS = ("zoom", "google_meet")


class ClassSchedule(Base):
    """A coach-run video class with a fixed time window."""
    __tablename__ = "class_schedules"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, default="")
    coach_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    student_ids = Column(JSON, nullable=False, default=list)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String, default="UTC")
    meeting_url = Column(String, nullable=False)
    meeting_provider = Column(String, nullable=False)
    status = Column(String, default=NOT_STARTED, nullable=False)
    actual_start_time = Column(DateTime)
    actual_end_time = Column(DateTime)
    attendee_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow)
