import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chesscoach.auth.dependencies import get_current_user, require_coach, require_student
from chesscoach.core import config
from chesscoach.core.timeutils import to_naive_utc, utcnow
from chesscoach.database import get_db
from chesscoach.models.class_schedule import COMPLETED, IN_PROGRESS, NOT_STARTED, ClassSchedule
from chesscoach.models.user import COACH_ROLE, STUDENT_ROLE, User
from chesscoach.routes.common import DATABASE_UNAVAILABLE, UserSummary, ensure_database_ready, load_user_summaries
from chesscoach.routes.profile_routes import validate_meeting_provider, validate_meeting_url

router = APIRouter(tags=['class-schedules'])

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000


class CreateClassScheduleRequest(BaseModel):
    title: str
    description: str = ''
    student_ids: list[int] = []
    start_time: datetime
    end_time: datetime
    timezone: str = 'UTC'
    meeting_url: str | None = None
    meeting_provider: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required')
        return normalized

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f'Description must be {MAX_DESCRIPTION_LENGTH} characters or fewer.')
        return normalized

    @field_validator('student_ids')
    @classmethod
    def dedupe_student_ids(cls, value: list[int]) -> list[int]:
        return list(dict.fromkeys(value))

    @field_validator('start_time', 'end_time')
    @classmethod
    def convert_to_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return value.strip() or 'UTC'

    @field_validator('meeting_url')
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return validate_meeting_url(value)

    @field_validator('meeting_provider')
    @classmethod
    def validate_provider(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return validate_meeting_provider(value)

    @model_validator(mode='after')
    def validate_window(self) -> 'CreateClassScheduleRequest':
        if self.end_time <= self.start_time:
            raise ValueError('End time must be after start time.')
        return self


class ClassScheduleResponse(BaseModel):
    id: int
    title: str
    description: str
    coach_id: int
    coach: UserSummary | None = None
    student_ids: list[int]
    students: list[UserSummary]
    start_time: datetime
    end_time: datetime
    timezone: str
    meeting_url: str
    meeting_provider: str
    status: str
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    attendee_ids: list[int]
    attendees: list[UserSummary]
    created_at: datetime | None = None


def derive_status(schedule: ClassSchedule, now: datetime) -> str:
    if schedule.status == COMPLETED or schedule.actual_end_time is not None:
        return COMPLETED
    if now >= schedule.end_time:
        return COMPLETED
    if schedule.status == IN_PROGRESS or schedule.actual_start_time is not None:
        return IN_PROGRESS
    if now >= schedule.start_time:
        return IN_PROGRESS
    return NOT_STARTED


def is_class_member(schedule: ClassSchedule, user: User) -> bool:
    if user.role == COACH_ROLE:
        return schedule.coach_id == user.id
    return user.id in (schedule.student_ids or [])


def serialize_schedule(schedule: ClassSchedule, db: Session, now: datetime | None = None) -> ClassScheduleResponse:
    now = now or utcnow()
    coaches = load_user_summaries(db, [schedule.coach_id])

    return ClassScheduleResponse(
        id=schedule.id,
        title=schedule.title,
        description=schedule.description or '',
        coach_id=schedule.coach_id,
        coach=coaches[0] if coaches else None,
        student_ids=list(schedule.student_ids or []),
        students=load_user_summaries(db, list(schedule.student_ids or [])),
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        timezone=schedule.timezone or 'UTC',
        meeting_url=schedule.meeting_url,
        meeting_provider=schedule.meeting_provider,
        status=derive_status(schedule, now),
        actual_start_time=schedule.actual_start_time,
        actual_end_time=schedule.actual_end_time,
        attendee_ids=list(schedule.attendee_ids or []),
        attendees=load_user_summaries(db, list(schedule.attendee_ids or [])),
        created_at=schedule.created_at,
    )


def end_expired_classes(db: Session, now: datetime | None = None) -> int:
    """Complete in-progress classes whose scheduled end has passed."""
    now = now or utcnow()
    expired = db.query(ClassSchedule).filter(
        ClassSchedule.status == IN_PROGRESS,
        ClassSchedule.end_time <= now,
    ).all()

    for schedule in expired:
        schedule.status = COMPLETED
        schedule.actual_end_time = now
    if expired:
        db.commit()
        logger.info('Auto-ended %d expired classes', len(expired))
    return len(expired)


def get_schedule_or_404(schedule_id: int, db: Session) -> ClassSchedule:
    schedule = db.query(ClassSchedule).filter(ClassSchedule.id == schedule_id).first()
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found')
    return schedule


@router.post('', response_model=ClassScheduleResponse, status_code=status.HTTP_201_CREATED)
def create_class_schedule(
    data: CreateClassScheduleRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    preferences = current_user.preferences or {}
    meeting_url = data.meeting_url or preferences.get('default_meeting_url')
    meeting_provider = data.meeting_provider or preferences.get('default_meeting_provider')
    if not meeting_url or not meeting_provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Meeting URL and provider are required.',
        )

    ensure_database_ready()

    try:
        if data.student_ids:
            found_ids = {
                student_id
                for (student_id,) in db.query(User.id).filter(
                    User.id.in_(data.student_ids),
                    User.role == STUDENT_ROLE,
                ).all()
            }
            missing_ids = [student_id for student_id in data.student_ids if student_id not in found_ids]
            if missing_ids:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f'Unknown student ids: {missing_ids}',
                )

        schedule = ClassSchedule(
            title=data.title,
            description=data.description,
            coach_id=current_user.id,
            student_ids=data.student_ids,
            start_time=data.start_time,
            end_time=data.end_time,
            timezone=data.timezone,
            meeting_url=meeting_url,
            meeting_provider=meeting_provider,
            status=NOT_STARTED,
            attendee_ids=[],
        )
        db.add(schedule)
        db.commit()
        db.refresh(schedule)

        logger.info('Coach %s scheduled class %s at %s', current_user.id, schedule.id, schedule.start_time)
        return serialize_schedule(schedule, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/coach', response_model=list[ClassScheduleResponse])
def list_coach_schedules(
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedules = db.query(ClassSchedule).filter(
            ClassSchedule.coach_id == current_user.id,
        ).order_by(ClassSchedule.start_time.asc()).all()

        now = utcnow()
        return [serialize_schedule(schedule, db, now) for schedule in schedules]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/student', response_model=list[ClassScheduleResponse])
def list_student_schedules(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        # student_ids is a JSON list; containment operators differ per dialect,
        # so enrolment is filtered after loading.
        schedules = db.query(ClassSchedule).order_by(ClassSchedule.start_time.asc()).all()

        now = utcnow()
        return [
            serialize_schedule(schedule, db, now)
            for schedule in schedules
            if current_user.id in (schedule.student_ids or [])
        ]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{schedule_id}', response_model=ClassScheduleResponse)
def get_class_schedule(
    schedule_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedule = get_schedule_or_404(schedule_id, db)
        if not is_class_member(schedule, current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not a member of this class')
        return serialize_schedule(schedule, db)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{schedule_id}/start', response_model=ClassScheduleResponse)
def start_class(
    schedule_id: int,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = utcnow()
        schedule = db.query(ClassSchedule).filter(
            ClassSchedule.id == schedule_id,
            ClassSchedule.coach_id == current_user.id,
        ).first()

        if schedule is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found')

        early_access_time = schedule.start_time - timedelta(minutes=config.CLASS_EARLY_START_MINUTES)
        if now < early_access_time:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Too early to start class')

        if schedule.status == COMPLETED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Class is already completed')

        schedule.status = IN_PROGRESS
        schedule.actual_start_time = now
        db.commit()
        db.refresh(schedule)

        logger.info('Class %s started by coach %s', schedule.id, current_user.id)
        return serialize_schedule(schedule, db, now)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{schedule_id}/end', response_model=ClassScheduleResponse)
def end_class(
    schedule_id: int,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedule = db.query(ClassSchedule).filter(
            ClassSchedule.id == schedule_id,
            ClassSchedule.coach_id == current_user.id,
            ClassSchedule.status == IN_PROGRESS,
        ).first()

        if schedule is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Schedule not found or cannot be ended',
            )

        now = utcnow()
        schedule.status = COMPLETED
        schedule.actual_end_time = now
        db.commit()
        db.refresh(schedule)

        logger.info('Class %s ended by coach %s', schedule.id, current_user.id)
        return serialize_schedule(schedule, db, now)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{schedule_id}/attend', response_model=ClassScheduleResponse)
def attend_class(
    schedule_id: int,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        # attendee_ids may have changed since this session loaded the row.
        schedule = db.query(ClassSchedule).filter(
            ClassSchedule.id == schedule_id,
            ClassSchedule.status == IN_PROGRESS,
        ).with_for_update().populate_existing().first()

        attendee_ids = list(schedule.attendee_ids or []) if schedule else []
        if (
            schedule is None
            or current_user.id not in (schedule.student_ids or [])
            or current_user.id in attendee_ids
        ):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Schedule not found or attendance already marked',
            )

        schedule.attendee_ids = attendee_ids + [current_user.id]
        db.commit()
        db.refresh(schedule)

        return serialize_schedule(schedule, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
