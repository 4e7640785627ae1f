"""
Main API router configuration.
"""

from fastapi import APIRouter
from clawkpit.api.endpoints import agent_content, auth, board_ws, device, items, me

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(me.router, prefix="/me", tags=["me"])
api_router.include_router(items.router, prefix="/v1", tags=["items"])
api_router.include_router(agent_content.router, tags=["agent content"])
api_router.include_router(device.router, prefix="/openclaw/device", tags=["device pairing"])
api_router.include_router(board_ws.router, tags=["board"])
