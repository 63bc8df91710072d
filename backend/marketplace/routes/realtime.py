"""
Realtime websocket endpoint for auction and sale chat rooms
"""

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from typing import Optional
import json

from ..auth.dependencies import get_user_for_token
from ..core.logging import get_logger
from ..models.user import User
from ..realtime.connection import WebSocketConnection
from ..realtime.rooms import RoomManager

router = APIRouter()

logger = get_logger(__name__)


def get_room_manager(request: Request) -> Optional[RoomManager]:
    return getattr(request.app.state, "rooms", None)


def _handshake_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def _resolve_user(session_factory, token: str) -> Optional[User]:
    with session_factory() as db:
        user = get_user_for_token(db, token)
        if user is None or not user.is_active:
            return None
        return user


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket):
    """WebSocket endpoint for auction and sale chat rooms"""
    token = _handshake_token(websocket)
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Token required")
        return

    user = await run_in_threadpool(_resolve_user, websocket.app.state.session_factory, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    rooms: RoomManager = websocket.app.state.rooms
    connection = WebSocketConnection.for_user(websocket, user)
    await websocket.accept()
    rooms.connect(connection)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await connection.send("error", {"message": "Invalid message format"})
                continue
            await rooms.dispatch_frame(connection, frame)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for user {connection.user_id}: {e}", exc_info=True)
    finally:
        await rooms.disconnect(connection)
