"""
Tests for per-user human id allocation.
"""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.database import atomic
from clawkpit.models.item import UserCounter
from clawkpit.schemas.item import ItemCreate
from clawkpit.services.caller import CallerIdentity
from clawkpit.services.id_allocator import human_id_allocator
from clawkpit.services.item_service import item_service
from tests.factories import create_test_item, create_test_user


@pytest.mark.asyncio
async def test_first_allocation_is_one(db_session: AsyncSession, test_user):
    assert await human_id_allocator.next_human_id(db_session, test_user.id) == 1
    await db_session.commit()

    counter = (await db_session.execute(
        select(UserCounter).where(UserCounter.user_id == test_user.id)
    )).scalar_one()
    assert counter.next_human_id == 2


@pytest.mark.asyncio
async def test_allocations_are_sequential(db_session: AsyncSession, test_user):
    ids = [await human_id_allocator.next_human_id(db_session, test_user.id) for _ in range(5)]
    assert ids == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_counters_are_per_user(db_session: AsyncSession, test_user, other_user):
    assert await human_id_allocator.next_human_id(db_session, test_user.id) == 1
    assert await human_id_allocator.next_human_id(db_session, test_user.id) == 2
    assert await human_id_allocator.next_human_id(db_session, other_user.id) == 1


@pytest.mark.asyncio
async def test_rolled_back_allocation_is_reused(db_session: AsyncSession, test_user):
    assert await human_id_allocator.next_human_id(db_session, test_user.id) == 1
    await db_session.commit()

    assert await human_id_allocator.next_human_id(db_session, test_user.id) == 2
    await db_session.rollback()

    assert await human_id_allocator.next_human_id(db_session, test_user.id) == 2


@pytest.mark.asyncio
async def test_items_get_consecutive_human_ids(db_session: AsyncSession, user_caller):
    items = [await create_test_item(db_session, user_caller, title=f"Item {i}") for i in range(3)]
    assert [item.human_id for item in items] == [1, 2, 3]


@pytest.mark.asyncio
async def test_concurrent_allocations_never_collide(file_sessions):
    async with file_sessions() as db:
        user_id = (await create_test_user(db, email="busy@example.com")).id
        other_id = (await create_test_user(db, email="quiet@example.com")).id

    async def allocate(owner_id):
        async with file_sessions() as db:
            async with atomic(db):
                return await human_id_allocator.next_human_id(db, owner_id)

    ids = await asyncio.gather(*(allocate(user_id) for _ in range(8)), allocate(other_id))

    assert sorted(ids[:8]) == list(range(1, 9))
    assert ids[8] == 1


@pytest.mark.asyncio
async def test_concurrent_item_creation_numbers_densely(file_sessions):
    async with file_sessions() as db:
        caller = CallerIdentity.session((await create_test_user(db)).id)

    async def create(title):
        async with file_sessions() as db:
            return await item_service.create_item(db, caller, ItemCreate(title=title))

    items = await asyncio.gather(*(create(f"Item {i}") for i in range(6)))

    assert sorted(item.human_id for item in items) == [1, 2, 3, 4, 5, 6]
