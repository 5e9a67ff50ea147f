from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.auth.dependencies import get_current_user, require_coach
from chesscoach.auth.passwords import hash_password, verify_password
from chesscoach.database import get_db
from chesscoach.models.class_schedule import MEETING_PROVIDERS
from chesscoach.models.user import User
from chesscoach.routes.auth_routes import normalize_email, validate_password_length
from chesscoach.routes.common import DATABASE_UNAVAILABLE, UserResponse, ensure_database_ready

router = APIRouter(tags=['profile'])


def validate_meeting_url(value: str) -> str:
    normalized = value.strip()
    parsed = urlparse(normalized)
    if parsed.scheme not in {'http', 'https'} or not parsed.netloc:
        raise ValueError('Invalid meeting URL')
    return normalized


def validate_meeting_provider(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in MEETING_PROVIDERS:
        raise ValueError('Meeting provider must be zoom or google_meet.')
    return normalized


class UpdateProfileRequest(BaseModel):
    name: str
    email: str | None = None
    current_password: str | None = None
    new_password: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return normalize_email(value)

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_password_length(value)


class PreferencesRequest(BaseModel):
    default_meeting_provider: str
    default_meeting_url: str

    @field_validator('default_meeting_provider')
    @classmethod
    def validate_provider(cls, value: str) -> str:
        return validate_meeting_provider(value)

    @field_validator('default_meeting_url')
    @classmethod
    def validate_url(cls, value: str) -> str:
        return validate_meeting_url(value)


@router.put('/profile', response_model=UserResponse)
def update_profile(
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    wants_password_change = data.current_password is not None or data.new_password is not None
    if wants_password_change and not (data.current_password and data.new_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Both current and new password are required to change password.',
        )

    ensure_database_ready()

    try:
        user = db.query(User).filter(User.id == current_user.id).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')

        if wants_password_change:
            if not verify_password(data.current_password, user.hashed_password):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail='Current password is incorrect',
                )
            user.hashed_password = hash_password(data.new_password)

        user.name = data.name
        user.email = data.email
        db.commit()
        db.refresh(user)

        return user
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/preferences')
def get_preferences(current_user: User = Depends(require_coach)):
    return current_user.preferences or {}


@router.put('/preferences', response_model=UserResponse)
def update_preferences(
    data: PreferencesRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.id == current_user.id).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')

        user.preferences = {
            'default_meeting_provider': data.default_meeting_provider,
            'default_meeting_url': data.default_meeting_url,
        }
        db.commit()
        db.refresh(user)

        return user
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
