import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.auth.dependencies import require_coach
from chesscoach.auth.passwords import hash_password
from chesscoach.core import config
from chesscoach.database import get_db
from chesscoach.models.puzzle import Assignment, PuzzleAttempt
from chesscoach.models.user import STUDENT_ROLE, User
from chesscoach.routes.assignment_routes import AssignmentResponse, list_student_assignments
from chesscoach.routes.auth_routes import normalize_username
from chesscoach.routes.common import DATABASE_UNAVAILABLE, UserResponse, ensure_database_ready

router = APIRouter(tags=['students'])

logger = logging.getLogger(__name__)


class CreateStudentRequest(BaseModel):
    username: str
    name: str

    @field_validator('username')
    @classmethod
    def validate_username(cls, value: str) -> str:
        return normalize_username(value)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized


@router.post('', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_student(
    data: CreateStudentRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if db.query(User).filter(User.username == data.username).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Username already exists.',
            )

        student = User(
            username=data.username,
            name=data.name,
            hashed_password=hash_password(config.DEFAULT_STUDENT_PASSWORD),
            role=STUDENT_ROLE,
            preferences={},
        )
        db.add(student)
        db.commit()
        db.refresh(student)

        logger.info('Coach %s created student %r', current_user.id, student.username)
        return student
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


@router.get('', response_model=list[UserResponse])
def list_students(
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return db.query(User).filter(User.role == STUDENT_ROLE).order_by(User.name.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{student_id}/puzzles', response_model=list[AssignmentResponse])
def list_student_puzzles(
    student_id: int,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return list_student_assignments(db, student_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.delete('/{student_id}/puzzles/{assignment_id}')
def delete_student_assignment(
    student_id: int,
    assignment_id: int,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignment = db.query(Assignment).filter(
            Assignment.id == assignment_id,
            Assignment.student_id == student_id,
            Assignment.completed.is_(False),
        ).first()

        if assignment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Assignment not found or already completed',
            )

        db.query(PuzzleAttempt).filter(PuzzleAttempt.assignment_id == assignment.id).delete(
            synchronize_session=False
        )
        db.delete(assignment)
        db.commit()

        logger.info('Deleted assignment %s for student %s', assignment_id, student_id)
        return {'message': 'Assignment deleted successfully'}
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
