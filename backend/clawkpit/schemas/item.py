"""
Item and note schemas.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from clawkpit.models.item import Actor, Importance, ItemStatus, Tag, Urgency
from clawkpit.schemas.common import CamelModel, PaginatedResponse, TimestampedResponse, normalize_datetime

MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 10_000
MAX_NOTE_LENGTH = 50_000
MAX_BATCH_SIZE = 100


class ItemCreate(CamelModel):
    """Schema for creating an item. ``created_by`` defaults to the caller's actor."""
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field("", max_length=MAX_DESCRIPTION_LENGTH)
    urgency: Urgency = Urgency.UNCLEAR
    tag: Tag = Tag.TO_DO
    importance: Importance = Importance.MEDIUM
    deadline: Optional[datetime] = None
    status: ItemStatus = ItemStatus.ACTIVE
    created_by: Optional[Actor] = None

    @field_validator("deadline")
    @classmethod
    def deadline_utc(cls, value):
        return normalize_datetime(value)


# Patch fields that may not be cleared with an explicit null
_NON_NULLABLE_PATCH_FIELDS = ("title", "description", "urgency", "tag", "importance", "status", "opened_at")


class ItemUpdate(CamelModel):
    """
    Partial item update.

    A field is "provided" when its key is present in the payload, so an
    explicit ``"deadline": null`` clears the deadline while an absent
    ``deadline`` leaves it alone. ``modified_by`` and ``has_ai_changes`` are
    provenance controls rather than item fields.
    """
    title: Optional[str] = Field(None, min_length=1, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    urgency: Optional[Urgency] = None
    tag: Optional[Tag] = None
    importance: Optional[Importance] = None
    deadline: Optional[datetime] = None
    status: Optional[ItemStatus] = None
    opened_at: Optional[datetime] = None
    modified_by: Optional[Actor] = None
    has_ai_changes: Optional[bool] = Field(None, alias="hasAIChanges")

    @field_validator("deadline", "opened_at")
    @classmethod
    def utc_timestamps(cls, value):
        return normalize_datetime(value)

    @model_validator(mode="after")
    def reject_nulls(self):
        for name in _NON_NULLABLE_PATCH_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def field_changes(self) -> Dict[str, Any]:
        """Provided item fields, keyed by attribute name."""
        return self.model_dump(exclude_unset=True, exclude={"modified_by", "has_ai_changes"})

    @property
    def has_ai_changes_provided(self) -> bool:
        return "has_ai_changes" in self.model_fields_set and self.has_ai_changes is not None


class ItemResponse(TimestampedResponse):
    """Schema for item response."""
    id: UUID
    human_id: int
    title: str
    description: str
    urgency: Urgency
    tag: Tag
    importance: Importance
    deadline: Optional[datetime] = None
    status: ItemStatus
    created_by: Actor
    modified_by: Actor
    has_ai_changes: bool = Field(..., alias="hasAIChanges")
    content_id: Optional[UUID] = None
    content_type: Optional[str] = None
    opened_at: datetime

    @field_validator("deadline", "opened_at")
    @classmethod
    def optional_utc(cls, value):
        return normalize_datetime(value)


class ItemListResponse(PaginatedResponse[ItemResponse]):
    """One page of board items."""


class DoneRequest(CamelModel):
    actor: Optional[Actor] = None


class DropRequest(CamelModel):
    actor: Optional[Actor] = None
    note: Optional[str] = Field(None, min_length=1, max_length=MAX_NOTE_LENGTH)


# Batch

class BatchCreateOperation(CamelModel):
    action: Literal["create"]
    item: ItemCreate


class BatchUpdateOperation(CamelModel):
    action: Literal["update"]
    id: UUID
    changes: ItemUpdate


BatchOperation = Annotated[
    Union[BatchCreateOperation, BatchUpdateOperation],
    Field(discriminator="action"),
]


class BatchRequest(CamelModel):
    operations: List[BatchOperation] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


class BatchResult(CamelModel):
    ok: bool
    item: Optional[ItemResponse] = None
    error: Optional[Dict[str, Any]] = None


class BatchResponse(CamelModel):
    results: List[BatchResult]


# Notes

class NoteCreate(CamelModel):
    """``author`` defaults to the caller's actor."""
    content: str = Field(..., min_length=1, max_length=MAX_NOTE_LENGTH)
    author: Optional[Actor] = None


class NoteUpdate(CamelModel):
    content: str = Field(..., min_length=1, max_length=MAX_NOTE_LENGTH)
    actor: Optional[Actor] = None


class NoteResponse(TimestampedResponse):
    id: UUID
    item_id: UUID
    author: Actor
    content: str


class NoteListResponse(CamelModel):
    notes: List[NoteResponse]
