"""
Authentication-related Pydantic schemas.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field


class MagicLinkRequest(BaseModel):
    """Schema for requesting a sign-in link."""
    email: EmailStr
    name: Optional[str] = Field(None, max_length=255)


class MagicLinkResponse(BaseModel):
    """Sign-in link issued. ``token`` is only returned in debug mode."""
    message: str = "Check your email for a sign-in link."
    expires_at: datetime
    token: Optional[str] = None


class ConsumeLinkRequest(BaseModel):
    token: str = Field(..., min_length=10, max_length=255)


class UserResponse(BaseModel):
    """Schema for user response."""
    id: UUID
    email: str
    name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Schema for token response."""
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class UserUpdate(BaseModel):
    """Profile patch. A new ``email`` starts a verified change instead of applying directly."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None


class UserUpdateResponse(UserResponse):
    """Updated profile, plus the pending email change if one was started."""
    pending_email_change: bool = False
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    token: Optional[str] = None


class ConfirmEmailChangeRequest(BaseModel):
    token: str = Field(..., min_length=10, max_length=255)
