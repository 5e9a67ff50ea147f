from datetime import datetime

from fastapi import HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.database import ensure_class_schedule_schema, ensure_user_schema
from chesscoach.models.user import User

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class UserSummary(BaseModel):
    id: int
    username: str
    name: str

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: int
    username: str
    name: str
    role: str
    email: str | None = None
    avatar: str | None = None
    preferences: dict = {}
    created_at: datetime | None = None

    class Config:
        from_attributes = True

    @field_validator('preferences', mode='before')
    @classmethod
    def default_preferences(cls, value: dict | None) -> dict:
        return value or {}


def ensure_database_ready() -> None:
    try:
        ensure_user_schema()
        ensure_class_schedule_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def load_user_summaries(db: Session, user_ids: list[int]) -> list[UserSummary]:
    if not user_ids:
        return []

    users = db.query(User).filter(User.id.in_(user_ids)).all()
    users_by_id = {user.id: user for user in users}
    return [UserSummary.model_validate(users_by_id[user_id]) for user_id in user_ids if user_id in users_by_id]
