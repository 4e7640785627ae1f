"""
Pydantic schemas for API key operations.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field


class APIKeyCreate(BaseModel):
    """Schema for creating a new API key."""
    name: Optional[str] = Field(None, min_length=1, max_length=255, description="Human-readable name for the key")


class APIKeyResponse(BaseModel):
    """Schema for API key response (without the actual key)."""
    id: UUID
    name: Optional[str] = None
    key_prefix: str  # Leading characters for identification
    last_used_at: Optional[datetime] = None
    created_at: datetime
    revoked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class APIKeyCreateResponse(BaseModel):
    """Schema for API key creation response (includes the actual key - shown only once!)."""
    id: UUID
    name: Optional[str] = None
    key_prefix: str
    api_key: str  # The full API key - ONLY shown at creation time!
    created_at: datetime
    message: str = "Store this API key securely. It will not be shown again!"


class APIKeyListResponse(BaseModel):
    """Schema for listing API keys."""
    api_keys: List[APIKeyResponse]
    total: int
