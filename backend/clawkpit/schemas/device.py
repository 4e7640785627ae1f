"""
Device pairing schemas.

The pairing endpoints speak snake_case like other device-authorization
flows, unlike the camelCase board API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class DeviceStartRequest(BaseModel):
    email: EmailStr


class DeviceStartResponse(BaseModel):
    display_code: str
    device_code: str
    expires_at: datetime
    interval: int = Field(..., description="Minimum seconds between polls")


class DeviceConfirmRequest(BaseModel):
    display_code: str = Field(..., min_length=1, max_length=32)


class DeviceConfirmResponse(BaseModel):
    status: str = "authorized"


class DevicePollRequest(BaseModel):
    device_code: str = Field(..., min_length=1, max_length=64)


class DevicePollResponse(BaseModel):
    status: str
    api_token: Optional[str] = None
