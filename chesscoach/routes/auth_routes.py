import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.auth import jwt_handler
from chesscoach.auth.dependencies import get_current_user
from chesscoach.auth.passwords import hash_password, verify_password
from chesscoach.core import config
from chesscoach.database import get_db
from chesscoach.models.user import COACH_ROLE, USER_ROLES, User
from chesscoach.routes.common import DATABASE_UNAVAILABLE, UserResponse, ensure_database_ready

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


def normalize_username(value: str) -> str:
    normalized = value.strip()
    if len(normalized) < MIN_USERNAME_LENGTH:
        raise ValueError(f'Username must be at least {MIN_USERNAME_LENGTH} characters.')
    return normalized


def normalize_email(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip().lower()
    if not normalized:
        return None
    if '@' not in normalized or normalized.startswith('@') or normalized.endswith('@'):
        raise ValueError('Invalid email address.')
    return normalized


def validate_password_length(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
    return value


class RegisterRequest(BaseModel):
    username: str
    password: str
    name: str
    role: str
    email: str | None = None

    @field_validator('username')
    @classmethod
    def validate_username(cls, value: str) -> str:
        return normalize_username(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return validate_password_length(value)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in USER_ROLES:
            raise ValueError('Role must be coach or student.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return normalize_email(value)


class LoginRequest(BaseModel):
    username: str
    password: str

    @field_validator('username')
    @classmethod
    def strip_username(cls, value: str) -> str:
        return value.strip()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    user: UserResponse


def ensure_default_coach(db: Session) -> User | None:
    existing = db.query(User).filter(User.username == config.DEFAULT_COACH_USERNAME).first()
    if existing:
        return None

    coach = User(
        username=config.DEFAULT_COACH_USERNAME,
        hashed_password=hash_password(config.DEFAULT_COACH_PASSWORD),
        name=config.DEFAULT_COACH_NAME,
        role=COACH_ROLE,
        preferences={},
    )
    db.add(coach)
    db.commit()
    db.refresh(coach)
    logger.info('Created default coach account %r', coach.username)
    return coach


@router.post('/register', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        if db.query(User).filter(User.username == data.username).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Username already exists.',
            )

        user = User(
            username=data.username,
            hashed_password=hash_password(data.password),
            name=data.name,
            role=data.role,
            email=data.email,
            preferences={},
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        return user
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Username already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.username == data.username).first()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    if user is None or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')

    token = jwt_handler.create_access_token(subject=user.username, role=user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post('/logout')
def logout(current_user: User = Depends(get_current_user)):
    logger.info('User %r logged out', current_user.username)
    return {'message': 'Logged out'}


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
