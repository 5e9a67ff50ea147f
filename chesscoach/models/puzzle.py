"""Puzzle, assignment and attempt model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String

from chesscoach.core.timeutils import utcnow
from chesscoach.database import Base


class Puzzle(Base):
    """A starting position plus the UCI moves that solve it."""
    __tablename__ = "puzzles"

    id = Column(Integer, primary_key=True, index=True)
    fen = Column(String, nullable=False)
    solution = Column(JSON, nullable=False, default=list)
    themes = Column(JSON, nullable=False, default=list)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)


class Assignment(Base):
    """Links one puzzle to one student."""
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True)
    puzzle_id = Column(Integer, ForeignKey("puzzles.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    completed = Column(Boolean, default=False, nullable=False)
    assigned_at = Column(DateTime, default=utcnow)


class PuzzleAttempt(Base):
    __tablename__ = "puzzle_attempts"

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False, index=True)
    moves = Column(JSON, nullable=False, default=list)
    is_correct = Column(Boolean, default=False, nullable=False)
    timestamp = Column(DateTime, default=utcnow)
