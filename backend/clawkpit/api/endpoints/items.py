"""
Board item endpoints.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.database import get_db
from clawkpit.models.item import Actor, Importance, Tag, Urgency
from clawkpit.schemas.common import normalize_datetime
from clawkpit.schemas.item import (
    BatchRequest,
    BatchResponse,
    BatchResult,
    DoneRequest,
    DropRequest,
    ItemCreate,
    ItemListResponse,
    ItemResponse,
    ItemUpdate,
    NoteCreate,
    NoteListResponse,
    NoteResponse,
    NoteUpdate,
)
from clawkpit.services.auth_service import get_caller
from clawkpit.services.caller import CallerIdentity
from clawkpit.services.item_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ItemFilters, item_service

router = APIRouter()


@router.post("/items", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    body: ItemCreate,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Create an item. Without ``createdBy`` the caller's credential decides (API key means AI)."""
    item = await item_service.create_item(db, caller, body)
    return ItemResponse.model_validate(item)


@router.get("/items", response_model=ItemListResponse)
async def list_items(
    status_filter: str = Query("Active", alias="status", pattern="^(Active|Done|Dropped|All)$"),
    tag: Optional[Tag] = None,
    importance: Optional[Importance] = None,
    urgency: Optional[Urgency] = None,
    created_by: Optional[Actor] = Query(None, alias="createdBy"),
    modified_by: Optional[Actor] = Query(None, alias="modifiedBy"),
    deadline_before: Optional[datetime] = Query(None, alias="deadlineBefore"),
    deadline_after: Optional[datetime] = Query(None, alias="deadlineAfter"),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, alias="pageSize"),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """List board items (Active by default) in board order."""
    filters = ItemFilters(
        status=status_filter,
        tag=tag.value if tag else None,
        importance=importance.value if importance else None,
        urgency=urgency.value if urgency else None,
        created_by=created_by.value if created_by else None,
        modified_by=modified_by.value if modified_by else None,
        deadline_before=normalize_datetime(deadline_before),
        deadline_after=normalize_datetime(deadline_after),
    )
    items, total = await item_service.list_items(db, caller.user_id, filters, page=page, page_size=page_size)
    return ItemListResponse(
        items=[ItemResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/items/batch", response_model=BatchResponse)
async def batch_items(
    body: BatchRequest,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Run up to 100 create/update operations; each succeeds or fails on its own."""
    results = await item_service.batch(db, caller, body.operations)
    return BatchResponse(results=[
        BatchResult(
            ok=result["ok"],
            item=ItemResponse.model_validate(result["item"]) if result.get("item") is not None else None,
            error=result.get("error"),
        )
        for result in results
    ])


@router.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    item = await item_service.get_item(db, caller.user_id, item_id)
    return ItemResponse.model_validate(item)


@router.patch("/items/{item_id}", response_model=ItemResponse)
async def update_item(
    item_id: UUID,
    body: ItemUpdate,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Partially update an item. ``"deadline": null`` clears the deadline."""
    item = await item_service.update_item(db, caller, item_id, body)
    return ItemResponse.model_validate(item)


@router.post("/items/{item_id}/done", response_model=ItemResponse)
async def mark_done(
    item_id: UUID,
    body: Optional[DoneRequest] = None,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Mark an item done. ToThinkAbout items need a note first."""
    item = await item_service.mark_done(db, caller, item_id, actor=body.actor if body else None)
    return ItemResponse.model_validate(item)


@router.post("/items/{item_id}/drop", response_model=ItemResponse)
async def drop_item(
    item_id: UUID,
    body: Optional[DropRequest] = None,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Drop an item. Needs an existing note or one passed along in ``note``."""
    item = await item_service.drop_item(
        db,
        caller,
        item_id,
        actor=body.actor if body else None,
        note=body.note if body else None,
    )
    return ItemResponse.model_validate(item)


# Notes

@router.get("/items/{item_id}/notes", response_model=NoteListResponse)
async def list_notes(
    item_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    notes = await item_service.list_notes(db, caller.user_id, item_id)
    return NoteListResponse(notes=[NoteResponse.model_validate(note) for note in notes])


@router.post("/items/{item_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def add_note(
    item_id: UUID,
    body: NoteCreate,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    note = await item_service.add_note(db, caller, item_id, body.content, author=body.author)
    return NoteResponse.model_validate(note)


@router.patch("/notes/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: UUID,
    body: NoteUpdate,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Edit a note. Only a User may edit notes."""
    note = await item_service.update_note(db, caller, note_id, body.content, actor=body.actor)
    return NoteResponse.model_validate(note)
