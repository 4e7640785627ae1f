"""
Device pairing endpoints (agent side: start/poll, human side: confirm).
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.config import settings
from clawkpit.core.database import get_db
from clawkpit.core.rate_limit import get_client_ip
from clawkpit.models.user import User
from clawkpit.schemas.device import (
    DeviceConfirmRequest,
    DeviceConfirmResponse,
    DevicePollRequest,
    DevicePollResponse,
    DeviceStartRequest,
    DeviceStartResponse,
)
from clawkpit.services.auth_service import get_session_user
from clawkpit.services.device_pairing_service import device_pairing_service

router = APIRouter()


@router.post("/start", response_model=DeviceStartResponse)
async def start_pairing(
    body: DeviceStartRequest,
    db: AsyncSession = Depends(get_db),
):
    """Begin pairing. Show ``display_code`` to the human and keep ``device_code`` secret."""
    session = await device_pairing_service.start(db, body.email)
    return DeviceStartResponse(
        display_code=session.display_code,
        device_code=session.device_code,
        expires_at=session.expires_at,
        interval=settings.DEVICE_POLL_INTERVAL_SECONDS,
    )


@router.post("/confirm", response_model=DeviceConfirmResponse)
async def confirm_pairing(
    request: Request,
    body: DeviceConfirmRequest,
    current_user: User = Depends(get_session_user),
    db: AsyncSession = Depends(get_db),
):
    """Confirm a display code from a signed-in browser session."""
    device_pairing_service.enforce_confirm_rate_limit(get_client_ip(request))
    await device_pairing_service.confirm(db, body.display_code, current_user.id)
    return DeviceConfirmResponse()


@router.post("/poll", response_model=DevicePollResponse, response_model_exclude_none=True)
async def poll_pairing(
    body: DevicePollRequest,
    db: AsyncSession = Depends(get_db),
):
    """Poll for the credential. It is returned once; later polls fail."""
    device_pairing_service.enforce_poll_rate_limit(body.device_code)
    return DevicePollResponse(**await device_pairing_service.poll(db, body.device_code))
