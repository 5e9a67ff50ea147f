import asyncio
import json
from datetime import timedelta

import chess
import pytest
from fastapi import HTTPException, WebSocketDisconnect, status

from chesscoach.auth import jwt_handler
from chesscoach.core.classroom import BOARD_UPDATE, ERROR, ClassroomManager
from chesscoach.core.timeutils import utcnow
from chesscoach.models.class_schedule import ClassSchedule
from chesscoach.routes import classroom_routes


class _SessionProxy:
    def __init__(self, session) -> None:
        self._session = session

    def query(self, *args, **kwargs):
        return self._session.query(*args, **kwargs)

    def close(self) -> None:
        pass


class _ScriptedWebSocket:
    def __init__(self, messages: list[str]) -> None:
        self._messages = list(messages)
        self.sent: list[dict] = []
        self.accepted = False
        self.close_code: int | None = None

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict) -> None:
        self.sent.append(payload)

    async def receive_text(self) -> str:
        if not self._messages:
            raise WebSocketDisconnect(code=1000)
        return self._messages.pop(0)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code


async def _run_inline(func, *args):
    return func(*args)


@pytest.fixture
def classroom(db_session, coach, student) -> ClassSchedule:
    now = utcnow()
    schedule = ClassSchedule(
        title='Live analysis',
        coach_id=coach.id,
        student_ids=[student.id],
        start_time=now,
        end_time=now + timedelta(hours=1),
        meeting_url='https://zoom.us/j/1',
        meeting_provider='zoom',
        attendee_ids=[],
    )
    db_session.add(schedule)
    db_session.commit()
    db_session.refresh(schedule)
    return schedule


@pytest.fixture
def manager(db_session, monkeypatch: pytest.MonkeyPatch) -> ClassroomManager:
    fresh_manager = ClassroomManager()
    monkeypatch.setattr(classroom_routes, 'SessionLocal', lambda: _SessionProxy(db_session))
    monkeypatch.setattr(classroom_routes, 'run_in_threadpool', _run_inline)
    monkeypatch.setattr(classroom_routes, 'classroom_manager', fresh_manager)
    return fresh_manager


def _token_for(user) -> str:
    return jwt_handler.create_access_token(subject=user.username, role=user.role)


def test_authorize_classroom_member_accepts_coach_and_enrolled_student(manager, classroom, coach, student) -> None:
    assert classroom_routes.authorize_classroom_member(classroom.id, _token_for(coach)).id == coach.id
    assert classroom_routes.authorize_classroom_member(classroom.id, _token_for(student)).id == student.id


def test_authorize_classroom_member_rejects_outsider(manager, classroom, other_student) -> None:
    with pytest.raises(HTTPException) as exception_info:
        classroom_routes.authorize_classroom_member(classroom.id, _token_for(other_student))

    assert exception_info.value.status_code == 403


def test_authorize_classroom_member_requires_token(manager, classroom) -> None:
    with pytest.raises(HTTPException) as exception_info:
        classroom_routes.authorize_classroom_member(classroom.id, '')

    assert exception_info.value.status_code == 401


def test_authorize_classroom_member_rejects_unknown_class(manager, coach) -> None:
    with pytest.raises(HTTPException) as exception_info:
        classroom_routes.authorize_classroom_member(404, _token_for(coach))

    assert exception_info.value.status_code == 404


def test_socket_is_closed_for_outsider(manager, classroom, other_student) -> None:
    websocket = _ScriptedWebSocket([])

    asyncio.run(classroom_routes.classroom_socket(websocket, classroom.id, _token_for(other_student)))

    assert websocket.accepted is False
    assert websocket.close_code == status.WS_1008_POLICY_VIOLATION


def test_socket_broadcasts_board_updates_and_leaves_room(manager, classroom, coach) -> None:
    websocket = _ScriptedWebSocket([
        json.dumps({'type': BOARD_UPDATE, 'fen': chess.STARTING_FEN}),
        'not json',
    ])

    asyncio.run(classroom_routes.classroom_socket(websocket, classroom.id, _token_for(coach)))

    assert websocket.accepted is True
    assert websocket.sent[0] == {'type': BOARD_UPDATE, 'fen': chess.STARTING_FEN}
    assert websocket.sent[1]['type'] == ERROR
    assert manager.connection_count(classroom.id) == 0


class _BinaryFrameWebSocket(_ScriptedWebSocket):
    async def receive_text(self) -> str:
        if self._messages:
            return self._messages.pop(0)
        raise KeyError('text')


def test_socket_leaves_room_when_receive_fails(manager, classroom, coach) -> None:
    websocket = _BinaryFrameWebSocket([json.dumps({'type': BOARD_UPDATE, 'fen': chess.STARTING_FEN})])

    with pytest.raises(KeyError):
        asyncio.run(classroom_routes.classroom_socket(websocket, classroom.id, _token_for(coach)))

    assert manager.connection_count(classroom.id) == 0
    assert classroom.id not in manager.rooms
