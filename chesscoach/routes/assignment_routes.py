import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.auth.dependencies import require_coach, require_student
from chesscoach.core.moves import evaluate_attempt, format_line, san_line
from chesscoach.database import get_db
from chesscoach.models.puzzle import Assignment, Puzzle, PuzzleAttempt
from chesscoach.models.user import STUDENT_ROLE, User
from chesscoach.routes.common import DATABASE_UNAVAILABLE, ensure_database_ready
from chesscoach.routes.puzzle_routes import normalize_moves

router = APIRouter(tags=['assignments'])

logger = logging.getLogger(__name__)


class CreateAssignmentRequest(BaseModel):
    puzzle_id: int
    student_id: int


class AttemptRequest(BaseModel):
    moves: list[str]

    @field_validator('moves')
    @classmethod
    def validate_moves(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError('An attempt needs at least one move.')
        return normalize_moves(value)


class AttemptResponse(BaseModel):
    id: int
    moves: list[str]
    san: list[str]
    line: str
    is_correct: bool
    timestamp: datetime | None = None


class AssignedPuzzleResponse(BaseModel):
    fen: str
    solution: list[str]
    themes: list[str]


class AssignmentResponse(BaseModel):
    id: int
    puzzle_id: int
    student_id: int
    completed: bool
    assigned_at: datetime | None = None
    attempts: list[AttemptResponse] = []
    puzzle: AssignedPuzzleResponse | None = None


def serialize_attempt(attempt: PuzzleAttempt, puzzle: Puzzle | None) -> AttemptResponse:
    moves = list(attempt.moves or [])
    san = san_line(puzzle.fen, moves) if puzzle else moves
    return AttemptResponse(
        id=attempt.id,
        moves=moves,
        san=san,
        line=format_line(san),
        is_correct=attempt.is_correct,
        timestamp=attempt.timestamp,
    )


def serialize_assignment(assignment: Assignment, db: Session) -> AssignmentResponse:
    puzzle = db.query(Puzzle).filter(Puzzle.id == assignment.puzzle_id).first()
    attempts = db.query(PuzzleAttempt).filter(
        PuzzleAttempt.assignment_id == assignment.id,
    ).order_by(PuzzleAttempt.timestamp.asc(), PuzzleAttempt.id.asc()).all()

    return AssignmentResponse(
        id=assignment.id,
        puzzle_id=assignment.puzzle_id,
        student_id=assignment.student_id,
        completed=assignment.completed,
        assigned_at=assignment.assigned_at,
        attempts=[serialize_attempt(attempt, puzzle) for attempt in attempts],
        puzzle=AssignedPuzzleResponse(
            fen=puzzle.fen,
            solution=list(puzzle.solution or []),
            themes=list(puzzle.themes or []),
        ) if puzzle else None,
    )


def list_student_assignments(db: Session, student_id: int, completed: bool | None = None) -> list[AssignmentResponse]:
    query = db.query(Assignment).filter(Assignment.student_id == student_id)
    if completed is not None:
        query = query.filter(Assignment.completed.is_(completed))

    assignments = query.order_by(Assignment.assigned_at.desc(), Assignment.id.desc()).all()
    return [serialize_assignment(assignment, db) for assignment in assignments]


def record_attempt(db: Session, assignment: Assignment, moves: list[str], is_correct: bool) -> PuzzleAttempt:
    attempt = PuzzleAttempt(assignment_id=assignment.id, moves=moves, is_correct=is_correct)
    db.add(attempt)
    return attempt


@router.post('', response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(
    data: CreateAssignmentRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        puzzle = db.query(Puzzle).filter(Puzzle.id == data.puzzle_id).first()
        student = db.query(User).filter(User.id == data.student_id).first()

        if puzzle is None or student is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Puzzle or student not found',
            )

        if student.role != STUDENT_ROLE:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Can only assign to students',
            )

        assignment = Assignment(puzzle_id=puzzle.id, student_id=student.id, completed=False)
        db.add(assignment)
        db.commit()
        db.refresh(assignment)

        logger.info('Assigned puzzle %s to student %s', puzzle.id, student.id)
        return serialize_assignment(assignment, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/mine', response_model=list[AssignmentResponse])
def list_my_assignments(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return list_student_assignments(db, current_user.id, completed=False)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/mine/completed', response_model=list[AssignmentResponse])
def list_my_completed_assignments(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return list_student_assignments(db, current_user.id, completed=True)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{assignment_id}/attempt', response_model=AssignmentResponse)
def record_puzzle_attempt(
    assignment_id: int,
    data: AttemptRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignment = db.query(Assignment).filter(
            Assignment.id == assignment_id,
            Assignment.student_id == current_user.id,
        ).first()
        if assignment is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Assignment not found')

        puzzle = db.query(Puzzle).filter(Puzzle.id == assignment.puzzle_id).first()
        is_correct = bool(puzzle) and evaluate_attempt(puzzle.fen, puzzle.solution, data.moves).correct

        record_attempt(db, assignment, data.moves, is_correct)
        db.commit()
        db.refresh(assignment)

        return serialize_assignment(assignment, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{assignment_id}/complete', response_model=AssignmentResponse)
def complete_assignment(
    assignment_id: int,
    data: AttemptRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignment = db.query(Assignment).filter(
            Assignment.id == assignment_id,
            Assignment.student_id == current_user.id,
            Assignment.completed.is_(False),
        ).first()
        if assignment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Assignment not found or already completed',
            )

        puzzle = db.query(Puzzle).filter(Puzzle.id == assignment.puzzle_id).first()
        if puzzle is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Puzzle not found')

        evaluation = evaluate_attempt(puzzle.fen, puzzle.solution, data.moves)
        if not evaluation.correct:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Moves do not solve the puzzle.',
            )

        record_attempt(db, assignment, data.moves, True)
        assignment.completed = True
        db.commit()
        db.refresh(assignment)

        logger.info('Student %s completed assignment %s', current_user.id, assignment.id)
        return serialize_assignment(assignment, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
