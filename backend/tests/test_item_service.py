"""
Tests for the item lifecycle service.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.models.item import Actor, Importance, Item, ItemStatus, Note, Tag, Urgency
from clawkpit.schemas.item import BatchCreateOperation, BatchUpdateOperation, ItemCreate, ItemUpdate
from clawkpit.services.caller import CallerIdentity
from clawkpit.services.item_service import ItemFilters, item_service
from clawkpit.utils.exceptions import (
    AiEditForbidden,
    DoneNoteRequired,
    DropNoteRequired,
    NoFieldsProvided,
    NotFoundError,
)
from clawkpit.utils.formatters import as_utc
from tests.factories import create_test_item, create_test_note


async def note_count(db: AsyncSession, item_id) -> int:
    return await db.scalar(select(func.count(Note.id)).where(Note.item_id == item_id))


# Creation and provenance

@pytest.mark.asyncio
async def test_create_item_defaults(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller, title="  Read the paper  ")

    assert item.title == "Read the paper"
    assert item.human_id == 1
    assert item.status == ItemStatus.ACTIVE.value
    assert item.urgency == Urgency.UNCLEAR.value
    assert item.importance == Importance.MEDIUM.value
    assert item.created_by == Actor.USER.value
    assert item.modified_by == Actor.USER.value
    assert item.has_ai_changes is False
    assert item.content_type is None


@pytest.mark.asyncio
async def test_agent_created_item_is_flagged(db_session: AsyncSession, agent_caller):
    item = await create_test_item(db_session, agent_caller)

    assert item.created_by == Actor.AI.value
    assert item.has_ai_changes is True


@pytest.mark.asyncio
async def test_explicit_created_by_overrides_credential(db_session: AsyncSession, agent_caller):
    item = await create_test_item(db_session, agent_caller, created_by=Actor.USER)

    assert item.created_by == Actor.USER.value
    assert item.has_ai_changes is False


@pytest.mark.asyncio
async def test_create_closed_item_follows_note_rules(db_session: AsyncSession, user_caller):
    with pytest.raises(DropNoteRequired):
        await create_test_item(db_session, user_caller, status=ItemStatus.DROPPED)
    with pytest.raises(DoneNoteRequired):
        await create_test_item(db_session, user_caller, tag=Tag.TO_THINK_ABOUT, status=ItemStatus.DONE)

    count = await db_session.scalar(select(func.count(Item.id)).where(Item.user_id == user_caller.user_id))
    assert count == 0

    # Done needs no note outside ToThinkAbout, and the refused creates used no human id
    item = await create_test_item(db_session, user_caller, status=ItemStatus.DONE)
    assert item.status == ItemStatus.DONE.value
    assert item.human_id == 1


@pytest.mark.asyncio
async def test_ai_patch_sets_flag_and_plain_user_patch_keeps_it(db_session: AsyncSession, user_caller, agent_caller):
    item = await create_test_item(db_session, user_caller)

    item = await item_service.update_item(db_session, agent_caller, item.id, ItemUpdate(urgency=Urgency.DO_NOW))
    assert item.has_ai_changes is True
    assert item.modified_by == Actor.AI.value

    # Moving the card is not an acknowledgement of the agent's change
    item = await item_service.update_item(db_session, user_caller, item.id, ItemUpdate(urgency=Urgency.DO_TODAY))
    assert item.has_ai_changes is True
    assert item.modified_by == Actor.USER.value


@pytest.mark.asyncio
async def test_user_patch_clears_flag_when_asked(db_session: AsyncSession, agent_caller, user_caller):
    item = await create_test_item(db_session, agent_caller)

    item = await item_service.update_item(
        db_session, user_caller, item.id, ItemUpdate(urgency=Urgency.DO_TODAY, has_ai_changes=False)
    )
    assert item.urgency == Urgency.DO_TODAY.value
    assert item.modified_by == Actor.USER.value
    assert item.has_ai_changes is False


@pytest.mark.asyncio
async def test_agent_cannot_clear_flag(db_session: AsyncSession, agent_caller):
    item = await create_test_item(db_session, agent_caller)

    item = await item_service.update_item(db_session, agent_caller, item.id, ItemUpdate(has_ai_changes=False))
    assert item.has_ai_changes is True

    item = await item_service.update_item(
        db_session, agent_caller, item.id, ItemUpdate(title="Agent rename", has_ai_changes=False)
    )
    assert item.title == "Agent rename"
    assert item.has_ai_changes is True


@pytest.mark.asyncio
async def test_user_patch_can_keep_flag_explicitly(db_session: AsyncSession, agent_caller, user_caller):
    item = await create_test_item(db_session, agent_caller)

    item = await item_service.update_item(
        db_session, user_caller, item.id, ItemUpdate(title="Renamed", has_ai_changes=True)
    )
    assert item.title == "Renamed"
    assert item.has_ai_changes is True


@pytest.mark.asyncio
async def test_flag_only_patch_does_not_touch_updated_at(db_session: AsyncSession, agent_caller, user_caller):
    item = await create_test_item(db_session, agent_caller)
    updated_at = item.updated_at

    item = await item_service.update_item(db_session, user_caller, item.id, ItemUpdate(has_ai_changes=False))

    assert item.has_ai_changes is False
    assert item.updated_at == updated_at
    assert item.modified_by == Actor.AI.value


@pytest.mark.asyncio
async def test_empty_patch_is_rejected(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller)
    item_id = item.id

    with pytest.raises(NoFieldsProvided):
        await item_service.update_item(db_session, user_caller, item_id, ItemUpdate())

    with pytest.raises(NoFieldsProvided):
        await item_service.update_item(db_session, user_caller, item_id, ItemUpdate(modified_by=Actor.AI))


@pytest.mark.asyncio
async def test_patch_null_deadline_clears_it(db_session: AsyncSession, user_caller):
    deadline = datetime(2030, 1, 1, tzinfo=timezone.utc)
    item = await create_test_item(db_session, user_caller, deadline=deadline)
    assert as_utc(item.deadline) == deadline

    item = await item_service.update_item(
        db_session, user_caller, item.id, ItemUpdate.model_validate({"deadline": None})
    )
    assert item.deadline is None


@pytest.mark.asyncio
async def test_patch_without_deadline_keeps_it(db_session: AsyncSession, user_caller):
    deadline = datetime(2030, 1, 1, tzinfo=timezone.utc)
    item = await create_test_item(db_session, user_caller, deadline=deadline)

    item = await item_service.update_item(db_session, user_caller, item.id, ItemUpdate(title="Other"))
    assert as_utc(item.deadline) == deadline


def test_patch_rejects_null_title():
    with pytest.raises(ValueError):
        ItemUpdate.model_validate({"title": None})


# Notes

@pytest.mark.asyncio
async def test_add_note_updates_item(db_session: AsyncSession, user_caller, agent_caller):
    item = await create_test_item(db_session, user_caller)

    note = await create_test_note(db_session, agent_caller, item, "Found a related link")
    assert note.author == Actor.AI.value

    item = await item_service.get_item(db_session, user_caller.user_id, item.id)
    assert item.modified_by == Actor.AI.value
    assert item.has_ai_changes is True


@pytest.mark.asyncio
async def test_user_note_leaves_flag_untouched(db_session: AsyncSession, agent_caller, user_caller):
    item = await create_test_item(db_session, agent_caller)

    await create_test_note(db_session, user_caller, item)
    item = await item_service.get_item(db_session, user_caller.user_id, item.id)
    assert item.has_ai_changes is True


@pytest.mark.asyncio
async def test_list_notes_newest_first(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller)
    await create_test_note(db_session, user_caller, item, "first")
    await create_test_note(db_session, user_caller, item, "second")

    notes = await item_service.list_notes(db_session, user_caller.user_id, item.id)
    assert [note.content for note in notes] == ["second", "first"]


@pytest.mark.asyncio
async def test_ai_cannot_edit_any_note(db_session: AsyncSession, user_caller, agent_caller):
    item = await create_test_item(db_session, user_caller)
    item_id = item.id
    note_id = (await create_test_note(db_session, agent_caller, item, "AI wrote this")).id

    with pytest.raises(AiEditForbidden):
        await item_service.update_note(db_session, agent_caller, note_id, "changed")

    with pytest.raises(AiEditForbidden):
        await item_service.update_note(db_session, user_caller, note_id, "changed", actor=Actor.AI)

    notes = await item_service.list_notes(db_session, user_caller.user_id, item_id)
    assert notes[0].content == "AI wrote this"


@pytest.mark.asyncio
async def test_user_can_edit_ai_note(db_session: AsyncSession, user_caller, agent_caller):
    item = await create_test_item(db_session, user_caller)
    ai_note = await create_test_note(db_session, agent_caller, item, "AI wrote this")

    note = await item_service.update_note(db_session, user_caller, ai_note.id, "Edited by me")
    assert note.content == "Edited by me"
    assert note.author == Actor.AI.value


# Note-gated transitions

@pytest.mark.asyncio
async def test_think_about_needs_note_before_done(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller, tag=Tag.TO_THINK_ABOUT)
    item_id = item.id

    with pytest.raises(DoneNoteRequired):
        await item_service.mark_done(db_session, user_caller, item_id)

    item = await item_service.get_item(db_session, user_caller.user_id, item_id)
    assert item.status == ItemStatus.ACTIVE.value

    await create_test_note(db_session, user_caller, item, "My reflection")
    item = await item_service.mark_done(db_session, user_caller, item.id)
    assert item.status == ItemStatus.DONE.value


@pytest.mark.asyncio
async def test_other_tags_mark_done_without_note(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller, tag=Tag.TO_DO)

    item = await item_service.mark_done(db_session, user_caller, item.id)
    assert item.status == ItemStatus.DONE.value


@pytest.mark.asyncio
async def test_drop_without_notes_fails(db_session: AsyncSession, user_caller):
    item_id = (await create_test_item(db_session, user_caller)).id

    with pytest.raises(DropNoteRequired):
        await item_service.drop_item(db_session, user_caller, item_id)

    item = await item_service.get_item(db_session, user_caller.user_id, item_id)
    assert item.status == ItemStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_drop_with_inline_note(db_session: AsyncSession, user_caller, agent_caller):
    item = await create_test_item(db_session, user_caller)

    item = await item_service.drop_item(db_session, agent_caller, item.id, note="No longer relevant")

    assert item.status == ItemStatus.DROPPED.value
    notes = await item_service.list_notes(db_session, user_caller.user_id, item.id)
    assert len(notes) == 1
    assert notes[0].author == Actor.AI.value
    assert notes[0].content == "No longer relevant"


@pytest.mark.asyncio
async def test_drop_with_existing_note(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller)
    await create_test_note(db_session, user_caller, item)

    item = await item_service.drop_item(db_session, user_caller, item.id)
    assert item.status == ItemStatus.DROPPED.value
    assert await note_count(db_session, item.id) == 1


@pytest.mark.asyncio
async def test_patch_status_follows_note_rules(db_session: AsyncSession, user_caller):
    think_id = (await create_test_item(db_session, user_caller, tag=Tag.TO_THINK_ABOUT)).id
    plain_id = (await create_test_item(db_session, user_caller)).id

    with pytest.raises(DoneNoteRequired):
        await item_service.update_item(db_session, user_caller, think_id, ItemUpdate(status=ItemStatus.DONE))
    with pytest.raises(DropNoteRequired):
        await item_service.update_item(db_session, user_caller, plain_id, ItemUpdate(status=ItemStatus.DROPPED))


@pytest.mark.asyncio
async def test_reactivation_is_unconditional(db_session: AsyncSession, user_caller):
    item = await create_test_item(db_session, user_caller)
    await item_service.drop_item(db_session, user_caller, item.id, note="not now")

    item = await item_service.update_item(db_session, user_caller, item.id, ItemUpdate(status=ItemStatus.ACTIVE))
    assert item.status == ItemStatus.ACTIVE.value


# Listing

@pytest.mark.asyncio
async def test_list_board_order(db_session: AsyncSession, user_caller):
    a = await create_test_item(db_session, user_caller, title="A", importance=Importance.LOW)
    b = await create_test_item(
        db_session, user_caller, title="B", importance=Importance.LOW,
        deadline=datetime.now(timezone.utc) + timedelta(days=1),
    )
    c = await create_test_item(db_session, user_caller, title="C", importance=Importance.HIGH)

    items, total = await item_service.list_items(db_session, user_caller.user_id)

    assert total == 3
    assert [item.id for item in items] == [b.id, c.id, a.id]


@pytest.mark.asyncio
async def test_list_defaults_to_active(db_session: AsyncSession, user_caller):
    active = await create_test_item(db_session, user_caller, title="Active")
    done = await create_test_item(db_session, user_caller, title="Done")
    await item_service.mark_done(db_session, user_caller, done.id)

    items, total = await item_service.list_items(db_session, user_caller.user_id)
    assert [item.id for item in items] == [active.id]
    assert total == 1

    items, total = await item_service.list_items(db_session, user_caller.user_id, ItemFilters(status="All"))
    assert total == 2

    items, _ = await item_service.list_items(db_session, user_caller.user_id, ItemFilters(status="Done"))
    assert [item.id for item in items] == [done.id]


@pytest.mark.asyncio
async def test_list_filters(db_session: AsyncSession, user_caller, agent_caller):
    soon = datetime.now(timezone.utc) + timedelta(days=1)
    later = datetime.now(timezone.utc) + timedelta(days=30)
    read = await create_test_item(db_session, agent_caller, title="Read", tag=Tag.TO_READ, deadline=soon)
    await create_test_item(db_session, user_caller, title="Do", tag=Tag.TO_DO, deadline=later)
    await create_test_item(db_session, user_caller, title="No deadline", tag=Tag.TO_DO)

    items, _ = await item_service.list_items(db_session, user_caller.user_id, ItemFilters(tag="ToRead"))
    assert [item.id for item in items] == [read.id]

    items, _ = await item_service.list_items(db_session, user_caller.user_id, ItemFilters(created_by="AI"))
    assert [item.id for item in items] == [read.id]

    before = datetime.now(timezone.utc) + timedelta(days=7)
    items, total = await item_service.list_items(
        db_session, user_caller.user_id, ItemFilters(deadline_before=before)
    )
    assert [item.id for item in items] == [read.id]

    items, total = await item_service.list_items(
        db_session, user_caller.user_id, ItemFilters(deadline_after=datetime.now(timezone.utc))
    )
    assert total == 2


@pytest.mark.asyncio
async def test_pagination_counts_before_slicing(db_session: AsyncSession, user_caller):
    for i in range(5):
        await create_test_item(db_session, user_caller, title=f"Item {i}")

    items, total = await item_service.list_items(db_session, user_caller.user_id, page=2, page_size=2)
    assert total == 5
    assert len(items) == 2

    items, total = await item_service.list_items(db_session, user_caller.user_id, page=3, page_size=2)
    assert total == 5
    assert len(items) == 1


# Ownership

@pytest.mark.asyncio
async def test_foreign_items_are_not_found(db_session: AsyncSession, user_caller, other_user):
    item_id = (await create_test_item(db_session, user_caller)).id
    other_id = other_user.id
    intruder = CallerIdentity.session(other_id)

    with pytest.raises(NotFoundError):
        await item_service.get_item(db_session, other_id, item_id)
    with pytest.raises(NotFoundError):
        await item_service.update_item(db_session, intruder, item_id, ItemUpdate(title="Mine now"))
    with pytest.raises(NotFoundError):
        await item_service.add_note(db_session, intruder, item_id, "hi")
    with pytest.raises(NotFoundError):
        await item_service.mark_done(db_session, intruder, item_id)
    with pytest.raises(NotFoundError):
        await item_service.drop_item(db_session, intruder, item_id, note="bye")

    items, total = await item_service.list_items(db_session, other_id)
    assert items == [] and total == 0


@pytest.mark.asyncio
async def test_foreign_notes_are_not_found(db_session: AsyncSession, user_caller, other_user):
    item = await create_test_item(db_session, user_caller)
    note = await create_test_note(db_session, user_caller, item)

    with pytest.raises(NotFoundError):
        await item_service.update_note(db_session, CallerIdentity.session(other_user.id), note.id, "x")


@pytest.mark.asyncio
async def test_unknown_item_is_not_found(db_session: AsyncSession, user_caller):
    with pytest.raises(NotFoundError):
        await item_service.mark_done(db_session, user_caller, uuid4())


# Batch

@pytest.mark.asyncio
async def test_batch_runs_operations_independently(db_session: AsyncSession, user_caller):
    existing = await create_test_item(db_session, user_caller, tag=Tag.TO_THINK_ABOUT)

    results = await item_service.batch(db_session, user_caller, [
        BatchCreateOperation(action="create", item=ItemCreate(title="New one")),
        BatchUpdateOperation(action="update", id=existing.id, changes=ItemUpdate(status=ItemStatus.DONE)),
        BatchUpdateOperation(action="update", id=uuid4(), changes=ItemUpdate(title="Ghost")),
        BatchUpdateOperation(action="update", id=existing.id, changes=ItemUpdate(importance=Importance.HIGH)),
    ])

    assert [r["ok"] for r in results] == [True, False, False, True]
    assert results[0]["item"].title == "New one"
    assert results[1]["error"]["kind"] == "DoneNoteRequired"
    assert results[2]["error"]["code"] == "NOT_FOUND"
    assert results[3]["item"].importance == Importance.HIGH.value

    count = await db_session.scalar(select(func.count(Item.id)).where(Item.user_id == user_caller.user_id))
    assert count == 2


@pytest.mark.asyncio
async def test_batch_create_follows_note_rules(db_session: AsyncSession, user_caller):
    results = await item_service.batch(db_session, user_caller, [
        BatchCreateOperation(action="create", item=ItemCreate(title="Gone", status=ItemStatus.DROPPED)),
        BatchCreateOperation(
            action="create",
            item=ItemCreate(title="Ponder", tag=Tag.TO_THINK_ABOUT, status=ItemStatus.DONE),
        ),
        BatchCreateOperation(action="create", item=ItemCreate(title="Kept")),
    ])

    assert [r["ok"] for r in results] == [False, False, True]
    assert results[0]["error"]["kind"] == "DropNoteRequired"
    assert results[1]["error"]["kind"] == "DoneNoteRequired"
    assert results[2]["item"].status == ItemStatus.ACTIVE.value
    assert results[2]["item"].human_id == 1
