from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from chesscoach.core import config


DATABASE_URL = config.DATABASE_URL

connect_args = {'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_user_schema_checked = False
_class_schedule_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _apply_migration_steps(table_name: str, migration_steps: list[tuple[str, str]], indexes: list[str]) -> None:
    inspector = inspect(engine)

    if table_name not in inspector.get_table_names():
        return

    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

    with engine.begin() as connection:
        for column_name, statement in migration_steps:
            if column_name not in existing_columns:
                connection.execute(text(statement))
        for statement in indexes:
            connection.execute(text(statement))


def ensure_user_schema() -> None:
    global _user_schema_checked

    if _user_schema_checked:
        return

    with _schema_lock:
        if _user_schema_checked:
            return

        _apply_migration_steps(
            'users',
            [
                ('email', 'ALTER TABLE users ADD COLUMN email VARCHAR'),
                ('avatar', 'ALTER TABLE users ADD COLUMN avatar VARCHAR'),
                ('preferences', 'ALTER TABLE users ADD COLUMN preferences JSON'),
            ],
            ['CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)'],
        )

        _user_schema_checked = True


def ensure_class_schedule_schema() -> None:
    global _class_schedule_schema_checked

    if _class_schedule_schema_checked:
        return

    with _schema_lock:
        if _class_schedule_schema_checked:
            return

        _apply_migration_steps(
            'class_schedules',
            [
                ('timezone', "ALTER TABLE class_schedules ADD COLUMN timezone VARCHAR DEFAULT 'UTC'"),
                ('actual_start_time', 'ALTER TABLE class_schedules ADD COLUMN actual_start_time TIMESTAMP'),
                ('actual_end_time', 'ALTER TABLE class_schedules ADD COLUMN actual_end_time TIMESTAMP'),
                ('attendee_ids', 'ALTER TABLE class_schedules ADD COLUMN attendee_ids JSON'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_class_schedules_coach_start ON class_schedules(coach_id, start_time)',
                'CREATE INDEX IF NOT EXISTS idx_class_schedules_status_end ON class_schedules(status, end_time)',
            ],
        )

        _class_schedule_schema_checked = True
