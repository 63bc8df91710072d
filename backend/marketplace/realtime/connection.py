"""
Authenticated websocket connection
"""

from typing import Any, Dict, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from ..models.user import User


class WebSocketConnection:
    """A verified user's socket; frames are ``{"type": ..., "data": {...}}``"""

    def __init__(self, websocket: Optional[WebSocket], user_id: int, username: str, profile_image: Optional[str] = None):
        self.websocket = websocket
        self.user_id = user_id
        self.username = username
        self.profile_image = profile_image

    @classmethod
    def for_user(cls, websocket: WebSocket, user: User) -> "WebSocketConnection":
        return cls(websocket, user.id, user.username, user.profile_image)

    def identity(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "username": self.username, "profileImage": self.profile_image}

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        await self.websocket.send_json({"type": event, "data": jsonable_encoder(data)})

    def __repr__(self) -> str:
        return f"<WebSocketConnection user={self.user_id} ({self.username})>"
