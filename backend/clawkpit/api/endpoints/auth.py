"""
Authentication-related API endpoints.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.database import get_db
from clawkpit.core.config import settings
from clawkpit.core.rate_limit import limiter, AUTH_LIMIT, get_client_ip
from clawkpit.services.auth_service import auth_service, bearer_scheme
from clawkpit.schemas.auth import (
    ConfirmEmailChangeRequest,
    ConsumeLinkRequest,
    MagicLinkRequest,
    MagicLinkResponse,
    TokenResponse,
    UserResponse,
)

router = APIRouter()


@router.post("/request-link", response_model=MagicLinkResponse)
async def request_link(
    request: Request,
    body: MagicLinkRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Request a sign-in link.

    Email delivery happens outside this service; in debug mode the token is
    returned directly so local setups can sign in.
    """
    token, expires_at = await auth_service.request_magic_link(
        body.email,
        db,
        name=body.name,
        client_ip=get_client_ip(request),
    )
    return MagicLinkResponse(expires_at=expires_at, token=token if settings.DEBUG else None)


@router.post("/consume-link", response_model=TokenResponse)
@limiter.limit(AUTH_LIMIT)
async def consume_link(
    request: Request,
    body: ConsumeLinkRequest,
    db: AsyncSession = Depends(get_db)
):
    """Exchange a sign-in token for a session token."""
    session_token, user = await auth_service.consume_magic_link(body.token, db)
    return TokenResponse(access_token=session_token, user=UserResponse.model_validate(user))


@router.post("/confirm-email-change", response_model=TokenResponse)
@limiter.limit(AUTH_LIMIT)
async def confirm_email_change(
    request: Request,
    body: ConfirmEmailChangeRequest,
    db: AsyncSession = Depends(get_db)
):
    """Apply a pending email change and sign in on the new address."""
    session_token, user = await auth_service.confirm_email_change(body.token, db)
    return TokenResponse(access_token=session_token, user=UserResponse.model_validate(user))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
):
    """End the current session."""
    if credentials is not None:
        await auth_service.logout(credentials.credentials, db)
