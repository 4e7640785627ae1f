"""
WebSocket authentication utilities.
"""

from typing import Optional
from fastapi import WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from clawkpit.services.auth_service import auth_service
from clawkpit.services.caller import CallerIdentity


async def authenticate_websocket(
    websocket: WebSocket,
    db: AsyncSession,
    token: Optional[str] = None
) -> Optional[CallerIdentity]:
    """
    Authenticate a WebSocket connection with a session token or API key.

    Args:
        websocket: WebSocket connection
        db: Database session
        token: Credential (read from the ``token`` query param or headers when omitted)

    Returns:
        CallerIdentity or None if authentication fails
    """
    # Browsers cannot set headers on a websocket; the query param comes first
    if not token:
        token = websocket.query_params.get("token")

    if not token:
        token = websocket.headers.get("Authorization", "").replace("Bearer ", "")

    if not token:
        token = websocket.headers.get("X-API-Key")

    if not token:
        logger.warning("WebSocket connection attempted without token")
        return None

    resolved = await auth_service.resolve_caller(token, db)
    if resolved is None:
        logger.warning("WebSocket credential rejected")
        return None
    return resolved[1]


async def require_websocket_auth(websocket: WebSocket, db: AsyncSession) -> CallerIdentity:
    """
    Require WebSocket authentication, reject connection if not authenticated.

    Raises:
        WebSocketDisconnect: If authentication fails
    """
    caller = await authenticate_websocket(websocket, db)

    if caller is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        raise WebSocketDisconnect(code=1008, reason="Authentication required")

    return caller
