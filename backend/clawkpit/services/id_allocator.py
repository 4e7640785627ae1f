"""
Per-user human id allocation.
"""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.database import dialect_insert
from clawkpit.models.item import UserCounter


class HumanIdAllocator:
    """Hands out 1, 2, 3, ... per user for the ``#n`` shown on cards."""

    async def next_human_id(self, db: AsyncSession, user_id: UUID) -> int:
        """
        Allocate the next human id for ``user_id``.

        Runs as a single upsert inside the caller's transaction: the first
        call creates the counter row, later calls increment it. The row lock
        taken by the upsert is held until the caller commits, so concurrent
        item creations for one user serialize here. If the caller rolls back
        the increment is undone with it.
        """
        table = UserCounter.__table__
        stmt = (
            dialect_insert(db, table)
            .values(user_id=user_id, next_human_id=2)
            .on_conflict_do_update(
                index_elements=[table.c.user_id],
                set_={"next_human_id": table.c.next_human_id + 1},
            )
            .returning(table.c.next_human_id)
        )
        result = await db.execute(stmt)
        return result.scalar_one() - 1


# Singleton instance
human_id_allocator = HumanIdAllocator()
