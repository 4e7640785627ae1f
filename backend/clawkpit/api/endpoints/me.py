"""
Current-user endpoints: profile and API keys.
"""

from uuid import UUID
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.config import settings
from clawkpit.core.database import get_db
from clawkpit.models.user import User
from clawkpit.services.api_key_service import api_key_service
from clawkpit.services.auth_service import auth_service, get_current_user, get_session_user, normalize_email
from clawkpit.schemas.api_key import APIKeyCreate, APIKeyCreateResponse, APIKeyListResponse, APIKeyResponse
from clawkpit.schemas.auth import UserResponse, UserUpdate, UserUpdateResponse
from clawkpit.utils.exceptions import NotFoundError

router = APIRouter()


@router.get("", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get the signed-in user (session or API key)."""
    return UserResponse.model_validate(current_user)


@router.patch("", response_model=UserUpdateResponse)
async def update_me(
    body: UserUpdate,
    current_user: User = Depends(get_session_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update the display name, or start an email change.

    A new email takes effect only once confirmed through
    ``POST /auth/confirm-email-change``. In debug mode the confirmation token
    is returned directly.
    """
    user = current_user
    if body.name is not None:
        user = await auth_service.update_user(current_user, db, name=body.name)

    pending = {}
    if body.email is not None and normalize_email(body.email) != normalize_email(user.email):
        token, expires_at = await auth_service.request_email_change(user, body.email, db)
        pending = {
            "pending_email_change": True,
            "message": "Verification email sent to the new address. Click the link there to confirm.",
            "expires_at": expires_at,
            "token": token if settings.DEBUG else None,
        }
    return UserUpdateResponse.model_validate(user).model_copy(update=pending)



@router.get("/keys", response_model=APIKeyListResponse)
async def list_keys(
    current_user: User = Depends(get_session_user),
    db: AsyncSession = Depends(get_db),
):
    """List active API keys."""
    keys = await api_key_service.list_keys(db, current_user.id)
    return APIKeyListResponse(
        api_keys=[APIKeyResponse.model_validate(key) for key in keys],
        total=len(keys),
    )


@router.post("/keys", response_model=APIKeyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_key(
    body: APIKeyCreate,
    current_user: User = Depends(get_session_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new API key.

    The API key will be shown only once in the response. Store it securely!
    """
    api_key, plain_key = await api_key_service.create_key(db, current_user.id, name=body.name)
    return APIKeyCreateResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        api_key=plain_key,
        created_at=api_key.created_at,
    )


@router.delete("/keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_key(
    key_id: UUID,
    current_user: User = Depends(get_session_user),
    db: AsyncSession = Depends(get_db),
):
    """Revoke an API key."""
    if not await api_key_service.revoke_key(db, key_id, user_id=current_user.id):
        raise NotFoundError("API key not found")
