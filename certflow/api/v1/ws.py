"""WebSocket endpoint for real-time notifications.

Clients connect to /api/v1/ws?token=<jwt> and receive one message per
notification addressed to them::

    {"type": "notification", "category": "approval_required", "data": {...}}
"""

from __future__ import annotations

import json
from collections import defaultdict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from certflow.common.logging import get_logger
from certflow.common.security import decode_token

router = APIRouter(tags=["WebSocket"])

logger = get_logger("ws")


class ConnectionManager:
    """Open sockets per user. Process-local; one user may hold several tabs."""

    def __init__(self) -> None:
        self.active: dict[str, list[WebSocket]] = defaultdict(list)

    async def connect(self, user_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self.active[user_id].append(ws)
        logger.info("WebSocket connected: user=%s (open=%d)", user_id, len(self.active[user_id]))

    def disconnect(self, user_id: str, ws: WebSocket) -> None:
        sockets = self.active.get(user_id, [])
        if ws in sockets:
            sockets.remove(ws)
        if not sockets:
            self.active.pop(user_id, None)
        logger.info("WebSocket disconnected: user=%s", user_id)

    async def send_to_user(self, user_id: str, message: dict) -> int:
        """Returns the number of sockets the message reached."""
        sent = 0
        dead = []
        for ws in list(self.active.get(user_id, [])):
            try:
                await ws.send_json(message)
                sent += 1
            except (RuntimeError, WebSocketDisconnect) as e:
                logger.debug("Dropping dead socket for user=%s: %s", user_id, e)
                dead.append(ws)
        for ws in dead:
            self.disconnect(user_id, ws)
        return sent

    def is_connected(self, user_id: str) -> bool:
        return bool(self.active.get(user_id))

    @property
    def connected_users(self) -> int:
        return len(self.active)


manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    """Authenticate via token query param, then stream notifications."""
    token = ws.query_params.get("token", "")
    try:
        payload = decode_token(token)
    except ValueError:
        await ws.close(code=4001, reason="Invalid token")
        return
    user_id = payload.get("sub", "")
    if not user_id or payload.get("type") != "access":
        await ws.close(code=4001, reason="Invalid token")
        return

    await manager.connect(user_id, ws)
    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await ws.send_json({"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(user_id, ws)


async def notify_user(user_id: str, category: str, data: dict) -> int:
    """Push a notification to every open socket of ``user_id``."""
    return await manager.send_to_user(user_id, {
        "type": "notification",
        "category": category,
        "data": data,
    })
