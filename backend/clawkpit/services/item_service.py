"""
Item lifecycle service.

Owns every board mutation: item creation (with human id allocation), field
updates, notes, and the note-gated Done/Dropped transitions. Each public
operation runs in one transaction and, once it has committed, tells the
owner's open board channels that items changed.

Provenance rules:
- any mutation by ``AI`` sets ``has_ai_changes``, whatever the payload says
- only a ``User`` patch that passes ``has_ai_changes`` explicitly changes it
- a patch carrying only ``has_ai_changes`` just sets the flag; it is an
  acknowledgement, not an edit, so ``updated_at``/``modified_by`` stay put
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from clawkpit.core.database import atomic
from clawkpit.core.logging import service_call
from clawkpit.models.item import IMPORTANCE_RANK, Actor, Item, ItemStatus, Note, Tag
from clawkpit.schemas.item import BatchCreateOperation, ItemCreate, ItemUpdate
from clawkpit.services.board_broadcast import board_hub
from clawkpit.services.caller import CallerIdentity
from clawkpit.services.id_allocator import human_id_allocator
from clawkpit.utils.exceptions import (
    AiEditForbidden,
    ClawkpitException,
    DoneNoteRequired,
    DropNoteRequired,
    NoFieldsProvided,
    NotFoundError,
)
from clawkpit.utils.formatters import utcnow

STATUS_ALL = "All"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass
class ItemFilters:
    """Board listing filters. ``status`` accepts ``All``."""
    status: str = ItemStatus.ACTIVE.value
    tag: Optional[str] = None
    importance: Optional[str] = None
    urgency: Optional[str] = None
    created_by: Optional[str] = None
    modified_by: Optional[str] = None
    deadline_before: Optional[datetime] = None
    deadline_after: Optional[datetime] = None


class ItemService:
    """Service for board items and their notes."""

    # Reads

    async def get_item(self, db: AsyncSession, user_id: UUID, item_id: UUID, for_update: bool = False) -> Item:
        """Load an owned item; absent and foreign items are both NotFound."""
        query = (
            select(Item)
            .where(Item.id == item_id, Item.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("Item not found")
        return item

    async def list_items(
        self,
        db: AsyncSession,
        user_id: UUID,
        filters: Optional[ItemFilters] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Item], int]:
        """
        List a user's items in board order.

        Order: items with a deadline first (earliest first), then importance
        High/Medium/Low, then most recently updated.

        Returns:
            Tuple of (page of items, total matches before pagination)
        """
        filters = filters or ItemFilters()
        page = max(1, page)
        page_size = min(max(1, page_size), MAX_PAGE_SIZE)

        conditions = [Item.user_id == user_id]
        if filters.status and filters.status != STATUS_ALL:
            conditions.append(Item.status == filters.status)
        if filters.tag:
            conditions.append(Item.tag == filters.tag)
        if filters.importance:
            conditions.append(Item.importance == filters.importance)
        if filters.urgency:
            conditions.append(Item.urgency == filters.urgency)
        if filters.created_by:
            conditions.append(Item.created_by == filters.created_by)
        if filters.modified_by:
            conditions.append(Item.modified_by == filters.modified_by)
        if filters.deadline_before or filters.deadline_after:
            conditions.append(Item.deadline.is_not(None))
            if filters.deadline_before:
                conditions.append(Item.deadline < filters.deadline_before)
            if filters.deadline_after:
                conditions.append(Item.deadline > filters.deadline_after)

        total = await db.scalar(select(func.count(Item.id)).where(*conditions))

        importance_rank = case(
            *[(Item.importance == value, rank) for value, rank in IMPORTANCE_RANK.items()],
            else_=max(IMPORTANCE_RANK.values()),
        )
        result = await db.execute(
            select(Item)
            .where(*conditions)
            .order_by(
                Item.deadline.is_(None),
                Item.deadline.asc(),
                importance_rank,
                Item.updated_at.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def list_notes(self, db: AsyncSession, user_id: UUID, item_id: UUID) -> List[Note]:
        """Notes of an owned item, newest first."""
        await self.get_item(db, user_id, item_id)
        result = await db.execute(
            select(Note).where(Note.item_id == item_id).order_by(Note.created_at.desc())
        )
        return list(result.scalars().all())

    # Building blocks: run inside the caller's transaction, never commit

    async def _create_item(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        title: str,
        created_by: Actor,
        description: str = "",
        tag: str = Tag.TO_DO.value,
        urgency: Optional[str] = None,
        importance: Optional[str] = None,
        deadline: Optional[datetime] = None,
        status: str = ItemStatus.ACTIVE.value,
        content_id: Optional[UUID] = None,
    ) -> Item:
        now = utcnow()
        human_id = await human_id_allocator.next_human_id(db, user_id)
        item = Item(
            human_id=human_id,
            user_id=user_id,
            title=title,
            description=description,
            tag=tag,
            deadline=deadline,
            status=status,
            created_by=created_by.value,
            modified_by=created_by.value,
            has_ai_changes=created_by == Actor.AI,
            content_id=content_id,
            created_at=now,
            updated_at=now,
            opened_at=now,
        )
        if urgency is not None:
            item.urgency = urgency
        if importance is not None:
            item.importance = importance
        db.add(item)
        await db.flush()
        logger.info(f"Created item #{human_id} for user {user_id} (by {created_by.value})")
        return item

    async def _create_from_schema(self, db: AsyncSession, caller: CallerIdentity, data: ItemCreate) -> Item:
        # A new item has no notes, so the note rules alone decide whether it may start closed
        if data.status == ItemStatus.DROPPED:
            logger.warning("Refused to create an item as Dropped: note required")
            raise DropNoteRequired()
        if data.status == ItemStatus.DONE and data.tag == Tag.TO_THINK_ABOUT:
            logger.warning("Refused to create a ToThinkAbout item as Done: reflection note required")
            raise DoneNoteRequired()
        return await self._create_item(
            db,
            caller.user_id,
            title=data.title.strip(),
            description=data.description,
            tag=data.tag.value,
            urgency=data.urgency.value,
            importance=data.importance.value,
            deadline=data.deadline,
            status=data.status.value,
            created_by=caller.actor(data.created_by),
        )

    def _touch(self, item: Item, actor: Actor) -> None:
        """Record a mutation by ``actor`` on ``item``."""
        item.updated_at = utcnow()
        item.modified_by = actor.value
        if actor == Actor.AI:
            item.has_ai_changes = True

    async def _count_notes(self, db: AsyncSession, item_id: UUID) -> int:
        return await db.scalar(select(func.count(Note.id)).where(Note.item_id == item_id)) or 0

    async def _add_note(self, db: AsyncSession, item: Item, content: str, author: Actor) -> Note:
        now = utcnow()
        note = Note(item_id=item.id, author=author.value, content=content, created_at=now, updated_at=now)
        db.add(note)
        self._touch(item, author)
        await db.flush()
        return note

    async def _ensure_done_allowed(self, db: AsyncSession, item: Item, tag: Optional[str] = None) -> None:
        if (tag or item.tag) == Tag.TO_THINK_ABOUT.value and await self._count_notes(db, item.id) == 0:
            logger.warning(f"Refused to mark item #{item.human_id} done: reflection note required")
            raise DoneNoteRequired()

    async def _ensure_drop_allowed(self, db: AsyncSession, item: Item) -> None:
        if await self._count_notes(db, item.id) == 0:
            logger.warning(f"Refused to drop item #{item.human_id}: note required")
            raise DropNoteRequired()

    async def _mark_done(self, db: AsyncSession, item: Item, actor: Actor) -> Item:
        await self._ensure_done_allowed(db, item)
        item.status = ItemStatus.DONE.value
        self._touch(item, actor)
        logger.info(f"Item #{item.human_id} marked done by {actor.value}")
        return item

    async def _apply_update(self, db: AsyncSession, item: Item, update: ItemUpdate, actor: Actor) -> Item:
        changes = update.field_changes()
        if not changes:
            if not update.has_ai_changes_provided:
                raise NoFieldsProvided()
            item.has_ai_changes = update.has_ai_changes or actor == Actor.AI
            return item

        new_status = changes.get("status")
        if new_status is not None and new_status != item.status:
            # Note-gated transitions hold whichever endpoint requests them
            if new_status == ItemStatus.DONE.value:
                await self._ensure_done_allowed(db, item, tag=changes.get("tag"))
            elif new_status == ItemStatus.DROPPED.value:
                await self._ensure_drop_allowed(db, item)

        for field, value in changes.items():
            setattr(item, field, value.value if hasattr(value, "value") else value)

        self._touch(item, actor)
        if actor == Actor.USER and update.has_ai_changes_provided:
            item.has_ai_changes = update.has_ai_changes
        return item

    # Public operations: one transaction each, broadcast after commit

    async def create_item(self, db: AsyncSession, caller: CallerIdentity, data: ItemCreate) -> Item:
        """Create an item on the caller's board; ``created_by`` defaults to the caller's actor."""
        async with atomic(db):
            item = await self._create_from_schema(db, caller, data)
        await board_hub.notify_items_changed(caller.user_id)
        return await self.get_item(db, caller.user_id, item.id)

    async def update_item(self, db: AsyncSession, caller: CallerIdentity, item_id: UUID, update: ItemUpdate) -> Item:
        """
        Apply a partial update.

        Raises:
            NotFoundError: item absent or not owned
            NoFieldsProvided: nothing to change
            DoneNoteRequired, DropNoteRequired: status change blocked by its note rule
        """
        async with atomic(db):
            item = await self.get_item(db, caller.user_id, item_id, for_update=True)
            await self._apply_update(db, item, update, caller.actor(update.modified_by))
        await board_hub.notify_items_changed(caller.user_id)
        return await self.get_item(db, caller.user_id, item_id)

    async def add_note(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        item_id: UUID,
        content: str,
        author: Optional[Actor] = None,
    ) -> Note:
        """Append a note; ``author`` defaults to the caller's actor."""
        author = caller.actor(author)
        async with atomic(db):
            item = await self.get_item(db, caller.user_id, item_id, for_update=True)
            note = await self._add_note(db, item, content, author)
        logger.info(f"Note added to item #{item.human_id} by {author.value}")
        await board_hub.notify_items_changed(caller.user_id)
        return note

    async def update_note(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        note_id: UUID,
        content: str,
        actor: Optional[Actor] = None,
    ) -> Note:
        """
        Replace a note's content. Only a User may edit notes, whoever wrote them.

        Raises:
            NotFoundError: note absent or on another user's item
            AiEditForbidden: acting as AI
        """
        actor = caller.actor(actor)
        async with atomic(db):
            result = await db.execute(
                select(Note, Item)
                .join(Item, Note.item_id == Item.id)
                .where(Note.id == note_id, Item.user_id == caller.user_id)
            )
            row = result.first()
            if row is None:
                raise NotFoundError("Note not found")
            note, item = row
            if actor == Actor.AI:
                logger.warning(f"Refused AI edit of note {note_id}")
                raise AiEditForbidden()

            note.content = content
            note.updated_at = utcnow()
            self._touch(item, actor)
        await board_hub.notify_items_changed(caller.user_id)
        return note

    async def mark_done(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        item_id: UUID,
        actor: Optional[Actor] = None,
    ) -> Item:
        """
        Move an item to Done.

        Raises:
            NotFoundError: item absent or not owned
            DoneNoteRequired: a ToThinkAbout item has no notes yet
        """
        async with atomic(db):
            item = await self.get_item(db, caller.user_id, item_id, for_update=True)
            await self._mark_done(db, item, caller.actor(actor))
        await board_hub.notify_items_changed(caller.user_id)
        return await self.get_item(db, caller.user_id, item_id)

    async def drop_item(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        item_id: UUID,
        actor: Optional[Actor] = None,
        note: Optional[str] = None,
    ) -> Item:
        """
        Move an item to Dropped, optionally appending ``note`` first.

        The note and the transition commit together; when the item still has
        no notes nothing is written.

        Raises:
            NotFoundError: item absent or not owned
            DropNoteRequired: the item would have no notes
        """
        actor = caller.actor(actor)
        async with atomic(db):
            item = await self.get_item(db, caller.user_id, item_id, for_update=True)
            if note and note.strip():
                await self._add_note(db, item, note, actor)
            await self._ensure_drop_allowed(db, item)
            item.status = ItemStatus.DROPPED.value
            self._touch(item, actor)
        logger.info(f"Item #{item.human_id} dropped by {actor.value}")
        await board_hub.notify_items_changed(caller.user_id)
        return await self.get_item(db, caller.user_id, item_id)

    async def batch(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        operations: Sequence[Any],
    ) -> List[Dict[str, Any]]:
        """
        Run create/update operations independently.

        A failing operation is reported in its result slot and does not undo
        the others. Subscribers get one notification for the whole batch.

        Returns:
            One ``{"ok": True, "item": Item}`` or ``{"ok": False, "error": {...}}`` per operation
        """
        outcomes: List[Dict[str, Any]] = []
        with service_call("ItemService", "batch", user_id=str(caller.user_id), operations=len(operations)) as record:
            for operation in operations:
                try:
                    async with atomic(db):
                        if isinstance(operation, BatchCreateOperation):
                            item = await self._create_from_schema(db, caller, operation.item)
                        else:
                            item = await self.get_item(db, caller.user_id, operation.id, for_update=True)
                            await self._apply_update(
                                db, item, operation.changes, caller.actor(operation.changes.modified_by)
                            )
                        item_id = item.id
                    outcomes.append({"ok": True, "item_id": item_id})
                except ClawkpitException as e:
                    outcomes.append({"ok": False, "error": {"code": e.code, "kind": e.error_kind, "message": e.message}})
            record["failed"] = sum(1 for outcome in outcomes if not outcome["ok"])

        # A failed operation's rollback expires everything loaded before it; reload once at the end
        results: List[Dict[str, Any]] = []
        for outcome in outcomes:
            if outcome["ok"]:
                results.append({"ok": True, "item": await self.get_item(db, caller.user_id, outcome["item_id"])})
            else:
                results.append(outcome)

        if any(outcome["ok"] for outcome in outcomes):
            await board_hub.notify_items_changed(caller.user_id)
        return results


# Singleton instance
item_service = ItemService()
