import asyncio
import logging
from typing import Any, Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from classroom_quiz.events import LEADERBOARD_UPDATE, event_bus

logger = logging.getLogger(__name__)

QUIZ_ROOM = "quiz-room"

router = APIRouter(tags=["realtime"])


class ConnectionManager:
    """WebSocket rooms fed from the event bus. Pushes are best-effort."""

    def __init__(self):
        self.rooms: dict[str, list[WebSocket]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._loop = asyncio.get_running_loop()

    def join(self, websocket: WebSocket, room: str = QUIZ_ROOM):
        members = self.rooms.setdefault(room, [])
        if websocket not in members:
            members.append(websocket)

    def disconnect(self, websocket: WebSocket):
        for members in self.rooms.values():
            if websocket in members:
                members.remove(websocket)

    def member_count(self, room: str = QUIZ_ROOM) -> int:
        return len(self.rooms.get(room, []))

    async def broadcast(self, message: dict, room: str = QUIZ_ROOM):
        for conn in list(self.rooms.get(room, [])):
            try:
                await conn.send_json(message)
            except Exception as e:
                logger.warning("Dropping websocket after failed send: %s", e)
                self.disconnect(conn)

    def handle_event(self, topic: str, payload: Any):
        """Event bus callback. May run in a worker thread, so hop onto the socket loop."""
        if self._loop is None or self._loop.is_closed() or not self.member_count():
            return
        asyncio.run_coroutine_threadsafe(
            self.broadcast({"event": topic, "data": payload}), self._loop
        )


manager = ConnectionManager()
event_bus.subscribe(LEADERBOARD_UPDATE, manager.handle_event)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("event") == "join-quiz":
                manager.join(websocket)
                logger.info("%s joined %s", message.get("name", "Someone"), QUIZ_ROOM)
                await websocket.send_json({"event": "joined", "room": QUIZ_ROOM})
    except WebSocketDisconnect:
        manager.disconnect(websocket)
