import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('AUTO_END_ENABLED', 'false')

from chesscoach.auth.passwords import hash_password  # noqa: E402
from chesscoach.database import Base  # noqa: E402
from chesscoach.models.class_schedule import ClassSchedule  # noqa: E402
from chesscoach.models.puzzle import Assignment, Puzzle, PuzzleAttempt  # noqa: E402
from chesscoach.models.user import COACH_ROLE, STUDENT_ROLE, User  # noqa: E402

ROUTE_MODULES = (
    'auth_routes',
    'profile_routes',
    'student_routes',
    'puzzle_routes',
    'assignment_routes',
    'schedule_routes',
)

TABLES = [User.__table__, Puzzle.__table__, Assignment.__table__, PuzzleAttempt.__table__, ClassSchedule.__table__]


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    for module_name in ROUTE_MODULES:
        monkeypatch.setattr(f'chesscoach.routes.{module_name}.ensure_database_ready', lambda: None)


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


def add_user(db, username: str, role: str, password: str = 'secret123', **fields) -> User:
    user = User(
        username=username,
        hashed_password=hash_password(password),
        name=fields.pop('name', username.title()),
        role=role,
        preferences=fields.pop('preferences', {}),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def coach(db_session) -> User:
    return add_user(db_session, 'coach', COACH_ROLE)


@pytest.fixture
def student(db_session) -> User:
    return add_user(db_session, 'alice', STUDENT_ROLE)


@pytest.fixture
def other_student(db_session) -> User:
    return add_user(db_session, 'bob', STUDENT_ROLE)
