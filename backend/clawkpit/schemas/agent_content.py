"""
Schemas for agent-pushed markdown and forms.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field, field_validator

from clawkpit.schemas.common import CamelModel, TimestampedResponse, normalize_datetime


class MarkdownPush(CamelModel):
    """Markdown an agent wants the user to read."""
    title: Optional[str] = Field(None, max_length=500)
    markdown: str = Field(..., min_length=1)
    external_id: Optional[str] = Field(None, min_length=1, max_length=255)


class FormPush(CamelModel):
    """Form (as markdown) an agent wants the user to fill in."""
    title: Optional[str] = Field(None, max_length=500)
    form_markdown: str = Field(..., min_length=1)
    external_id: Optional[str] = Field(None, min_length=1, max_length=255)


class MarkdownPushResponse(CamelModel):
    markdown_id: UUID
    content_id: UUID
    item_id: UUID


class FormPushResponse(CamelModel):
    form_id: UUID
    content_id: UUID
    item_id: UUID


class MarkdownResponse(TimestampedResponse):
    id: UUID
    title: Optional[str] = None
    markdown: str
    external_id: Optional[str] = None


class FormContentResponse(TimestampedResponse):
    id: UUID
    title: Optional[str] = None
    form_markdown: str
    external_id: Optional[str] = None


class FormSubmit(CamelModel):
    """A filled-in form. ``item_id`` marks the backing item done."""
    item_id: Optional[UUID] = None
    response: Dict[str, Any]


class FormSubmitResponse(CamelModel):
    response_id: UUID


class FormResponseItem(CamelModel):
    id: UUID
    content_id: UUID
    item_id: Optional[UUID] = None
    response: Dict[str, Any]
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def utc_timestamps(cls, value):
        return normalize_datetime(value)


class FormResponseListResponse(CamelModel):
    responses: List[FormResponseItem]
