"""Per-class WebSocket rooms sharing one board position."""

import logging
from dataclasses import dataclass, field

import chess
from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

BOARD_UPDATE = 'board_update'
ERROR = 'error'


@dataclass
class ClassroomRoom:
    connections: set[WebSocket] = field(default_factory=set)
    fen: str | None = None


class ClassroomManager:
    def __init__(self) -> None:
        self.rooms: dict[int, ClassroomRoom] = {}

    def current_position(self, class_id: int) -> str | None:
        room = self.rooms.get(class_id)
        return room.fen if room else None

    def connection_count(self, class_id: int) -> int:
        room = self.rooms.get(class_id)
        return len(room.connections) if room else 0

    async def connect(self, class_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        room = self.rooms.setdefault(class_id, ClassroomRoom())
        room.connections.add(websocket)
        logger.info('Socket joined classroom %s (%d connected)', class_id, len(room.connections))

        if room.fen is not None:
            await self._send(class_id, websocket, {'type': BOARD_UPDATE, 'fen': room.fen})

    def disconnect(self, class_id: int, websocket: WebSocket) -> None:
        room = self.rooms.get(class_id)
        if room is None:
            return

        room.connections.discard(websocket)
        if not room.connections:
            del self.rooms[class_id]
        logger.info('Socket left classroom %s', class_id)

    async def handle_message(self, class_id: int, websocket: WebSocket, message: dict) -> None:
        if message.get('type', BOARD_UPDATE) != BOARD_UPDATE:
            await self._send(class_id, websocket, {'type': ERROR, 'detail': 'Unsupported message type.'})
            return

        fen = message.get('fen')
        if not isinstance(fen, str):
            await self._send(class_id, websocket, {'type': ERROR, 'detail': 'Board update requires a FEN.'})
            return

        try:
            fen = chess.Board(fen).fen()
        except ValueError:
            await self._send(class_id, websocket, {'type': ERROR, 'detail': 'Invalid FEN.'})
            return

        await self.broadcast_position(class_id, fen)

    async def broadcast_position(self, class_id: int, fen: str) -> None:
        room = self.rooms.setdefault(class_id, ClassroomRoom())
        room.fen = fen

        for connection in list(room.connections):
            await self._send(class_id, connection, {'type': BOARD_UPDATE, 'fen': fen})

    async def _send(self, class_id: int, websocket: WebSocket, payload: dict) -> None:
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError):
            logger.warning('Dropping dead socket in classroom %s', class_id)
            self.disconnect(class_id, websocket)


classroom_manager = ClassroomManager()
