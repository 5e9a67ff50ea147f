import json
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from chesscoach.auth.dependencies import resolve_token_user
from chesscoach.core.classroom import ERROR, classroom_manager
from chesscoach.database import SessionLocal
from chesscoach.models.class_schedule import ClassSchedule
from chesscoach.models.user import User
from chesscoach.routes.schedule_routes import is_class_member

router = APIRouter(tags=['classroom'])

logger = logging.getLogger(__name__)


def authorize_classroom_member(class_id: int, token: str) -> User:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Not authenticated')

    db = SessionLocal()
    try:
        user = resolve_token_user(token, db)
        schedule = db.query(ClassSchedule).filter(ClassSchedule.id == class_id).first()
    finally:
        db.close()

    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found')
    if not is_class_member(schedule, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not a member of this class')
    return user


@router.websocket('/ws/classroom/{class_id}')
async def classroom_socket(websocket: WebSocket, class_id: int, token: str = Query(default='')):
    try:
        user = await run_in_threadpool(authorize_classroom_member, class_id, token)
    except HTTPException as exc:
        logger.info('Rejected classroom %s socket: %s', class_id, exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await classroom_manager.connect(class_id, websocket)
    logger.info('User %s joined classroom %s', user.id, class_id)

    try:
        while True:
            raw_message = await websocket.receive_text()
            try:
                message = json.loads(raw_message)
            except ValueError:
                message = None

            if not isinstance(message, dict):
                await websocket.send_json({'type': ERROR, 'detail': 'Messages must be JSON objects.'})
                continue

            await classroom_manager.handle_message(class_id, websocket, message)
    except WebSocketDisconnect:
        logger.info('User %s left classroom %s', user.id, class_id)
    finally:
        classroom_manager.disconnect(class_id, websocket)
