import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from chesscoach.core import config
from chesscoach.database import Base, SessionLocal, engine, ensure_class_schedule_schema, ensure_user_schema
from chesscoach.models import class_schedule, puzzle, user  # noqa: F401
from chesscoach.routes import (
    assignment_routes,
    auth_routes,
    classroom_routes,
    profile_routes,
    puzzle_routes,
    schedule_routes,
    student_routes,
)

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
)

app = FastAPI(title='Chess Coach API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def run_auto_end_pass() -> int:
    db = SessionLocal()
    try:
        return schedule_routes.end_expired_classes(db)
    finally:
        db.close()


async def auto_end_classes_once() -> int:
    try:
        return await asyncio.to_thread(run_auto_end_pass)
    except Exception:
        logger.exception('Auto-ending expired classes failed.')
        return 0


async def auto_end_classes_loop() -> None:
    while True:
        await auto_end_classes_once()
        await asyncio.sleep(config.AUTO_END_INTERVAL_SECONDS)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_user_schema()
        ensure_class_schedule_schema()

        db = SessionLocal()
        try:
            auth_routes.ensure_default_coach(db)
        finally:
            db.close()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('startup')
async def start_background_tasks() -> None:
    if config.AUTO_END_ENABLED:
        task = asyncio.create_task(auto_end_classes_loop())
        _background_tasks.add(task)


@app.on_event('shutdown')
async def stop_background_tasks() -> None:
    for task in _background_tasks:
        task.cancel()
    _background_tasks.clear()


@app.get('/')
def root():
    return {'status': 'Chess Coach API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(profile_routes.router)
app.include_router(student_routes.router, prefix='/students')
app.include_router(puzzle_routes.router, prefix='/puzzles')
app.include_router(assignment_routes.router, prefix='/assignments')
app.include_router(schedule_routes.router, prefix='/class-schedules')
app.include_router(classroom_routes.router)
