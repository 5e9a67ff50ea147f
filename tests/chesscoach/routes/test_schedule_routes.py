from datetime import datetime, timedelta, timezone

import pytest
from conftest import add_user
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from chesscoach.core.timeutils import utcnow
from chesscoach.database import Base
from chesscoach.models.class_schedule import COMPLETED, IN_PROGRESS, NOT_STARTED, ClassSchedule
from chesscoach.models.user import COACH_ROLE, STUDENT_ROLE
from chesscoach.routes.schedule_routes import (
    CreateClassScheduleRequest,
    attend_class,
    create_class_schedule,
    derive_status,
    end_class,
    end_expired_classes,
    get_class_schedule,
    list_coach_schedules,
    list_student_schedules,
    start_class,
)


def _add_schedule(db, coach, student_ids, start: datetime, end: datetime, **fields) -> ClassSchedule:
    schedule = ClassSchedule(
        title=fields.pop('title', 'Endgame basics'),
        description='',
        coach_id=coach.id,
        student_ids=student_ids,
        start_time=start,
        end_time=end,
        meeting_url='https://zoom.us/j/1',
        meeting_provider='zoom',
        attendee_ids=fields.pop('attendee_ids', []),
        **fields,
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def _request(**overrides) -> CreateClassScheduleRequest:
    start = utcnow() + timedelta(days=1)
    payload = {
        'title': 'Rook endings',
        'start_time': start,
        'end_time': start + timedelta(hours=1),
    }
    payload.update(overrides)
    return CreateClassScheduleRequest(**payload)


def test_create_request_converts_aware_times_to_utc() -> None:
    start = datetime(2026, 3, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))

    request = _request(start_time=start, end_time=start + timedelta(hours=1))

    assert request.start_time == datetime(2026, 3, 1, 8, 0)
    assert request.start_time.tzinfo is None


@pytest.mark.parametrize(
    'overrides',
    [
        {'title': '  '},
        {'meeting_provider': 'skype'},
        {'meeting_url': 'not a url'},
        {'start_time': datetime(2026, 3, 1, 10, 0), 'end_time': datetime(2026, 3, 1, 9, 0)},
    ],
)
def test_create_request_rejects_invalid_values(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _request(**overrides)


def test_derive_status_follows_window_and_actions() -> None:
    start = datetime(2026, 3, 1, 10, 0)
    schedule = ClassSchedule(start_time=start, end_time=start + timedelta(hours=1), status=NOT_STARTED)

    assert derive_status(schedule, start - timedelta(minutes=1)) == NOT_STARTED
    assert derive_status(schedule, start + timedelta(minutes=1)) == IN_PROGRESS
    assert derive_status(schedule, start + timedelta(hours=2)) == COMPLETED

    schedule.status = IN_PROGRESS
    assert derive_status(schedule, start - timedelta(minutes=5)) == IN_PROGRESS

    schedule.actual_end_time = start + timedelta(minutes=30)
    assert derive_status(schedule, start + timedelta(minutes=40)) == COMPLETED


def test_create_schedule_falls_back_to_coach_preferences(db_session, coach, student) -> None:
    coach.preferences = {'default_meeting_provider': 'google_meet', 'default_meeting_url': 'https://meet.google.com/x'}
    db_session.commit()

    response = create_class_schedule(_request(student_ids=[student.id]), current_user=coach, db=db_session)

    assert response.meeting_provider == 'google_meet'
    assert response.meeting_url == 'https://meet.google.com/x'
    assert response.status == NOT_STARTED
    assert [item.username for item in response.students] == ['alice']


def test_create_schedule_requires_meeting_details(db_session, coach) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_class_schedule(_request(), current_user=coach, db=db_session)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Meeting URL and provider are required.'


def test_create_schedule_rejects_unknown_students(db_session, coach) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_class_schedule(
            _request(student_ids=[coach.id, 999], meeting_url='https://zoom.us/j/1', meeting_provider='zoom'),
            current_user=coach,
            db=db_session,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == f'Unknown student ids: {[coach.id, 999]}'


def test_list_schedules_are_scoped_to_coach_and_enrolment(db_session, coach, student, other_student) -> None:
    now = utcnow()
    later = _add_schedule(db_session, coach, [student.id], now + timedelta(days=2), now + timedelta(days=2, hours=1))
    sooner = _add_schedule(db_session, coach, [other_student.id], now + timedelta(days=1), now + timedelta(days=1, hours=1))

    coach_view = list_coach_schedules(current_user=coach, db=db_session)
    student_view = list_student_schedules(current_user=student, db=db_session)

    assert [item.id for item in coach_view] == [sooner.id, later.id]
    assert [item.id for item in student_view] == [later.id]
    assert student_view[0].coach.username == 'coach'


def test_get_schedule_forbids_non_members(db_session, coach, student, other_student) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [student.id], now, now + timedelta(hours=1))

    assert get_class_schedule(schedule_id=schedule.id, current_user=student, db=db_session).id == schedule.id
    with pytest.raises(HTTPException) as exception_info:
        get_class_schedule(schedule_id=schedule.id, current_user=other_student, db=db_session)

    assert exception_info.value.status_code == 403


def test_start_class_rejects_early_start(db_session, coach) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [], now + timedelta(minutes=30), now + timedelta(minutes=90))

    with pytest.raises(HTTPException) as exception_info:
        start_class(schedule_id=schedule.id, current_user=coach, db=db_session)

    assert exception_info.value.detail == 'Too early to start class'


def test_start_class_allows_early_access_window(db_session, coach) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [], now + timedelta(minutes=5), now + timedelta(minutes=65))

    response = start_class(schedule_id=schedule.id, current_user=coach, db=db_session)

    assert response.status == IN_PROGRESS
    assert response.actual_start_time is not None


def test_start_class_rejects_completed_class(db_session, coach) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [], now - timedelta(minutes=5), now + timedelta(minutes=55), status=COMPLETED)

    with pytest.raises(HTTPException) as exception_info:
        start_class(schedule_id=schedule.id, current_user=coach, db=db_session)

    assert exception_info.value.detail == 'Class is already completed'


def test_end_class_requires_in_progress(db_session, coach) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [], now, now + timedelta(hours=1))

    with pytest.raises(HTTPException) as exception_info:
        end_class(schedule_id=schedule.id, current_user=coach, db=db_session)
    assert exception_info.value.detail == 'Schedule not found or cannot be ended'

    start_class(schedule_id=schedule.id, current_user=coach, db=db_session)
    response = end_class(schedule_id=schedule.id, current_user=coach, db=db_session)

    assert response.status == COMPLETED
    assert response.actual_end_time is not None


def test_attend_class_marks_attendance_once(db_session, coach, student) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [student.id], now, now + timedelta(hours=1), status=IN_PROGRESS)

    response = attend_class(schedule_id=schedule.id, current_user=student, db=db_session)
    assert response.attendee_ids == [student.id]
    assert [item.username for item in response.attendees] == ['alice']

    with pytest.raises(HTTPException) as exception_info:
        attend_class(schedule_id=schedule.id, current_user=student, db=db_session)
    assert exception_info.value.status_code == 404


@pytest.mark.parametrize('status_value', [NOT_STARTED, COMPLETED])
def test_attend_class_requires_running_class(db_session, coach, student, status_value: str) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [student.id], now, now + timedelta(hours=1), status=status_value)

    with pytest.raises(HTTPException) as exception_info:
        attend_class(schedule_id=schedule.id, current_user=student, db=db_session)

    assert exception_info.value.detail == 'Schedule not found or attendance already marked'


def test_attend_class_rejects_unenrolled_student(db_session, coach, student, other_student) -> None:
    now = utcnow()
    schedule = _add_schedule(db_session, coach, [student.id], now, now + timedelta(hours=1), status=IN_PROGRESS)

    with pytest.raises(HTTPException):
        attend_class(schedule_id=schedule.id, current_user=other_student, db=db_session)


def test_end_expired_classes_completes_overdue_running_classes(db_session, coach) -> None:
    now = utcnow()
    overdue = _add_schedule(db_session, coach, [], now - timedelta(hours=2), now - timedelta(hours=1), status=IN_PROGRESS)
    running = _add_schedule(db_session, coach, [], now - timedelta(minutes=10), now + timedelta(hours=1), status=IN_PROGRESS)
    never_started = _add_schedule(db_session, coach, [], now - timedelta(hours=2), now - timedelta(hours=1))

    assert end_expired_classes(db_session, now) == 1

    db_session.refresh(overdue)
    db_session.refresh(running)
    db_session.refresh(never_started)
    assert overdue.status == COMPLETED
    assert overdue.actual_end_time == now
    assert running.status == IN_PROGRESS
    assert never_started.status == NOT_STARTED


def test_attend_class_keeps_concurrent_attendance(tmp_path) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "attendance.db"}')
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    first_session = session_factory()
    second_session = session_factory()

    try:
        coach = add_user(first_session, 'coach', COACH_ROLE)
        alice = add_user(first_session, 'alice', STUDENT_ROLE)
        bob = add_user(first_session, 'bob', STUDENT_ROLE)
        now = utcnow()
        schedule = _add_schedule(
            first_session, coach, [alice.id, bob.id], now, now + timedelta(hours=1), status=IN_PROGRESS,
        )

        stale = second_session.query(ClassSchedule).filter(ClassSchedule.id == schedule.id).first()
        assert stale.attendee_ids == []

        attend_class(schedule_id=schedule.id, current_user=alice, db=first_session)
        response = attend_class(schedule_id=schedule.id, current_user=bob, db=second_session)

        assert sorted(response.attendee_ids) == sorted([alice.id, bob.id])
    finally:
        first_session.close()
        second_session.close()
        engine.dispose()
