import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.auth.dependencies import get_current_user, require_coach
from chesscoach.core import config
from chesscoach.core.moves import PuzzleLineError, check_move, load_board, normalize_uci, validate_solution
from chesscoach.database import get_db
from chesscoach.models.puzzle import Assignment, Puzzle, PuzzleAttempt
from chesscoach.models.user import User
from chesscoach.routes.common import DATABASE_UNAVAILABLE, ensure_database_ready

router = APIRouter(tags=['puzzles'])

logger = logging.getLogger(__name__)


def normalize_themes(themes: list[str]) -> list[str]:
    normalized: list[str] = []
    for theme in themes:
        cleaned = theme.strip()
        if cleaned and cleaned not in normalized:
            normalized.append(cleaned)
    return normalized


def parse_theme_filter(themes: str | None) -> list[str]:
    if not themes:
        return []
    return normalize_themes(themes.split(','))


def normalize_moves(moves: list[str]) -> list[str]:
    return [normalize_uci(move) for move in moves]


def normalize_solution(moves: list[str]) -> list[str]:
    if not moves:
        raise ValueError('Solution must contain at least one move.')
    return normalize_moves(moves)


class CreatePuzzleRequest(BaseModel):
    fen: str
    solution: list[str]
    themes: list[str] = []

    @field_validator('fen')
    @classmethod
    def validate_fen(cls, value: str) -> str:
        return load_board(value.strip()).fen()

    @field_validator('solution')
    @classmethod
    def validate_moves(cls, value: list[str]) -> list[str]:
        return normalize_solution(value)

    @field_validator('themes')
    @classmethod
    def validate_themes(cls, value: list[str]) -> list[str]:
        return normalize_themes(value)


class UpdatePuzzleRequest(BaseModel):
    solution: list[str]
    themes: list[str]

    @field_validator('solution')
    @classmethod
    def validate_moves(cls, value: list[str]) -> list[str]:
        return normalize_solution(value)

    @field_validator('themes')
    @classmethod
    def validate_themes(cls, value: list[str]) -> list[str]:
        return normalize_themes(value)


class CheckMoveRequest(BaseModel):
    moves: list[str] = []
    move: str

    @field_validator('moves')
    @classmethod
    def validate_moves(cls, value: list[str]) -> list[str]:
        return normalize_moves(value)

    @field_validator('move')
    @classmethod
    def validate_move(cls, value: str) -> str:
        return normalize_uci(value)


class PuzzleResponse(BaseModel):
    id: int
    fen: str
    solution: list[str]
    themes: list[str]
    created_by: int
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PuzzlePageResponse(BaseModel):
    puzzles: list[PuzzleResponse]
    total: int
    themes: list[str]
    page: int
    page_size: int


class CheckMoveResponse(BaseModel):
    legal: bool
    correct: bool
    move: str | None = None
    fen: str
    reply: str | None = None
    solved: bool
    next_index: int


def get_puzzle_or_404(puzzle_id: int, db: Session) -> Puzzle:
    puzzle = db.query(Puzzle).filter(Puzzle.id == puzzle_id).first()
    if puzzle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Puzzle not found')
    return puzzle


def filter_by_themes(puzzles: list[Puzzle], theme_filter: list[str]) -> list[Puzzle]:
    if not theme_filter:
        return puzzles
    wanted = set(theme_filter)
    return [puzzle for puzzle in puzzles if wanted.intersection(puzzle.themes or [])]


def collect_themes(puzzles: list[Puzzle]) -> list[str]:
    themes: set[str] = set()
    for puzzle in puzzles:
        themes.update(puzzle.themes or [])
    return sorted(themes)


@router.post('', response_model=PuzzleResponse, status_code=status.HTTP_201_CREATED)
def create_puzzle(
    data: CreatePuzzleRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        validate_solution(data.fen, data.solution)
    except PuzzleLineError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        puzzle = Puzzle(
            fen=data.fen,
            solution=data.solution,
            themes=data.themes,
            created_by=current_user.id,
        )
        db.add(puzzle)
        db.commit()
        db.refresh(puzzle)

        logger.info('Coach %s created puzzle %s', current_user.id, puzzle.id)
        return puzzle
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('', response_model=PuzzlePageResponse)
def list_puzzles(
    page: int = Query(default=1, ge=1),
    themes: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        all_puzzles = db.query(Puzzle).order_by(Puzzle.created_at.desc(), Puzzle.id.desc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    matching = filter_by_themes(all_puzzles, parse_theme_filter(themes))
    page_size = config.PUZZLES_PAGE_SIZE
    offset = (page - 1) * page_size

    return PuzzlePageResponse(
        puzzles=[PuzzleResponse.model_validate(puzzle) for puzzle in matching[offset:offset + page_size]],
        total=len(matching),
        themes=collect_themes(all_puzzles),
        page=page,
        page_size=page_size,
    )


@router.get('/ids', response_model=list[int])
def list_puzzle_ids(
    themes: str | None = Query(default=None),
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        puzzles = db.query(Puzzle).order_by(Puzzle.created_at.desc(), Puzzle.id.desc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return [puzzle.id for puzzle in filter_by_themes(puzzles, parse_theme_filter(themes))]


@router.get('/{puzzle_id}', response_model=PuzzleResponse)
def get_puzzle(
    puzzle_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    return get_puzzle_or_404(puzzle_id, db)


@router.put('/{puzzle_id}', response_model=PuzzleResponse)
def update_puzzle(
    puzzle_id: int,
    data: UpdatePuzzleRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        puzzle = get_puzzle_or_404(puzzle_id, db)

        try:
            validate_solution(puzzle.fen, data.solution)
        except PuzzleLineError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        puzzle.solution = data.solution
        puzzle.themes = data.themes
        db.commit()
        db.refresh(puzzle)

        return puzzle
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.delete('/{puzzle_id}')
def delete_puzzle(
    puzzle_id: int,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        puzzle = get_puzzle_or_404(puzzle_id, db)

        assignment_ids = [
            assignment_id
            for (assignment_id,) in db.query(Assignment.id).filter(Assignment.puzzle_id == puzzle.id).all()
        ]
        if assignment_ids:
            db.query(PuzzleAttempt).filter(PuzzleAttempt.assignment_id.in_(assignment_ids)).delete(
                synchronize_session=False
            )
            db.query(Assignment).filter(Assignment.id.in_(assignment_ids)).delete(synchronize_session=False)

        db.delete(puzzle)
        db.commit()

        logger.info('Coach %s deleted puzzle %s', current_user.id, puzzle_id)
        return {'message': 'Puzzle deleted successfully'}
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{puzzle_id}/check-move', response_model=CheckMoveResponse)
def check_puzzle_move(
    puzzle_id: int,
    data: CheckMoveRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        puzzle = get_puzzle_or_404(puzzle_id, db)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    try:
        result = check_move(puzzle.fen, puzzle.solution, data.moves, data.move)
    except PuzzleLineError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return CheckMoveResponse(
        legal=result.legal,
        correct=result.correct,
        move=result.move,
        fen=result.fen,
        reply=result.reply,
        solved=result.solved,
        next_index=result.next_index,
    )
