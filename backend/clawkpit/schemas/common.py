"""
Common Pydantic schemas for API responses.
"""

from datetime import datetime
from typing import Generic, TypeVar, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from clawkpit.utils.formatters import as_utc

T = TypeVar('T')


class CamelModel(BaseModel):
    """Board payloads travel as camelCase JSON; attributes stay snake_case."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Datetimes cross the API in UTC; naive input is taken as UTC."""
    return as_utc(value)


class PaginatedResponse(CamelModel, Generic[T]):
    """
    Standard paginated response schema.

    Attributes:
        items: List of items in the current page
        total: Total number of matches before pagination
        page: Current page number (1-indexed)
        page_size: Number of items per page
    """
    items: List[T]
    total: int = Field(..., ge=0, description="Total number of items")
    page: int = Field(..., ge=1, description="Current page number (1-indexed)")
    page_size: int = Field(..., ge=1, le=500, description="Number of items per page")


class TimestampedResponse(CamelModel):
    """Base for responses carrying created/updated timestamps."""
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def utc_timestamps(cls, value):
        return normalize_datetime(value)
