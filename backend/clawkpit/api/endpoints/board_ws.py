"""
Board change channel.
"""

import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from clawkpit.core.database import get_db
from clawkpit.services.board_broadcast import board_hub
from clawkpit.utils.websocket_auth import require_websocket_auth

router = APIRouter()


@router.websocket("/ws")
async def board_websocket(websocket: WebSocket, db: AsyncSession = Depends(get_db)):
    """
    WebSocket endpoint for board change notifications.

    Pushes ``{"type": "items:changed"}`` whenever the user's items change;
    clients refetch. Answers ``{"type": "ping"}`` with ``{"type": "pong"}``.
    """
    try:
        caller = await require_websocket_auth(websocket, db)
    except WebSocketDisconnect:
        logger.warning("Board WebSocket authentication failed")
        return
    await db.close()

    await websocket.accept()
    board_hub.register(caller.user_id, websocket)
    try:
        await websocket.send_json({"type": "connected"})
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info(f"Board WebSocket disconnected for user {caller.user_id}")
    finally:
        board_hub.unregister(caller.user_id, websocket)
