"""
Agent content ingestion.

Agents push markdown (to read) and forms (to fill). Pushes are idempotent:
content is keyed per user by ``external_id`` when the agent sends one and by
``(content_hash, type)`` otherwise, and a re-push reuses the item that
already represents the content instead of cluttering the board.
"""

import hashlib
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from clawkpit.core.config import settings
from clawkpit.core.database import atomic, dialect_insert
from clawkpit.core.logging import service_call
from clawkpit.models.agent_content import AgentContent, ContentType, FormResponse
from clawkpit.models.item import Actor, Importance, Item, ItemStatus, Tag, Urgency
from clawkpit.services.board_broadcast import board_hub
from clawkpit.services.caller import CallerIdentity
from clawkpit.services.item_service import item_service
from clawkpit.utils.exceptions import NotAForm, NotFoundError, ValidationError
from clawkpit.utils.formatters import utcnow

DEFAULT_TITLE = "Untitled"
HEADING_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)

# Board tag given to items created for each content type
CONTENT_TAGS = {
    ContentType.MARKDOWN: Tag.TO_READ,
    ContentType.FORM: Tag.TO_DO,
}


def content_hash(body: str) -> str:
    """SHA-256 hex digest of the UTF-8 body."""
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def derive_title(body: str, title: Optional[str] = None) -> str:
    """Explicit title if non-blank, else the first ``# heading`` of the body, else ``Untitled``."""
    if title and title.strip():
        return title.strip()
    match = HEADING_RE.search(body)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return DEFAULT_TITLE


class AgentContentService:
    """Service for markdown/form ingestion and form submissions."""

    def _validate_body(self, body: str) -> None:
        if not body or not body.strip():
            raise ValidationError("Content body must not be empty", field="body")
        if len(body.encode("utf-8")) > settings.MAX_AGENT_BODY_BYTES:
            raise ValidationError(
                f"Content body exceeds {settings.MAX_AGENT_BODY_BYTES} bytes", field="body"
            )

    async def _upsert_content(
        self,
        db: AsyncSession,
        user_id: UUID,
        content_type: ContentType,
        body: str,
        title: str,
        external_id: Optional[str],
    ) -> Tuple[AgentContent, bool]:
        """
        Insert the content or land on the row that already holds its key.

        The insert is ``ON CONFLICT DO NOTHING`` against the unique key, so
        two concurrent pushes of the same content end with one row.

        Returns:
            Tuple of (content row, created)
        """
        digest = content_hash(body)
        now = utcnow()
        table = AgentContent.__table__
        stmt = dialect_insert(db, table).values(
            id=uuid.uuid4(),
            user_id=user_id,
            type=content_type.value,
            title=title,
            body=body,
            external_id=external_id,
            content_hash=digest,
            created_at=now,
            updated_at=now,
        )
        if external_id:
            stmt = stmt.on_conflict_do_nothing(index_elements=[table.c.user_id, table.c.external_id])
        else:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[table.c.user_id, table.c.content_hash, table.c.type],
                index_where=table.c.external_id.is_(None),
            )
        new_id = (await db.execute(stmt.returning(table.c.id))).scalar_one_or_none()

        if new_id is not None:
            content = await db.get(AgentContent, new_id)
            return content, True

        query = select(AgentContent).where(AgentContent.user_id == user_id)
        if external_id:
            query = query.where(AgentContent.external_id == external_id)
        else:
            query = query.where(
                AgentContent.content_hash == digest,
                AgentContent.type == content_type.value,
                AgentContent.external_id.is_(None),
            )
        result = await db.execute(query.with_for_update().execution_options(populate_existing=True))
        content = result.scalar_one()

        content.body = body
        content.content_hash = digest
        content.title = title
        content.updated_at = now
        return content, False

    async def _find_reusable_item(
        self,
        db: AsyncSession,
        user_id: UUID,
        content: AgentContent,
    ) -> Optional[Item]:
        """
        Item already standing for ``content``.

        Forms reuse only an Active item so a completed form can be asked
        again. Markdown reuses its latest item whatever its status.
        """
        query = select(Item).where(Item.user_id == user_id, Item.content_id == content.id)
        if content.type == ContentType.FORM.value:
            query = query.where(Item.status == ItemStatus.ACTIVE.value)
        result = await db.execute(query.order_by(Item.created_at.desc()).limit(1).with_for_update())
        return result.scalar_one_or_none()

    async def ingest(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        content_type: ContentType,
        body: str,
        title: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Tuple[AgentContent, Item]:
        """
        Store pushed content and make sure an item represents it.

        Raises:
            ValidationError: empty or oversized body
        """
        self._validate_body(body)
        external_id = external_id.strip() if external_id and external_id.strip() else None
        resolved_title = derive_title(body, title)

        with service_call(
            "AgentContentService", "ingest", user_id=str(caller.user_id), content_type=content_type.value
        ) as record:
            async with atomic(db):
                content, created = await self._upsert_content(
                    db, caller.user_id, content_type, body, resolved_title, external_id
                )
                item = None if created else await self._find_reusable_item(db, caller.user_id, content)
                if item is None:
                    item = await item_service._create_item(
                        db,
                        caller.user_id,
                        title=resolved_title,
                        tag=CONTENT_TAGS[ContentType(content.type)].value,
                        urgency=Urgency.UNCLEAR.value,
                        importance=Importance.MEDIUM.value,
                        created_by=Actor.AI,
                        content_id=content.id,
                    )
                else:
                    item_service._touch(item, Actor.AI)

            record.update(content_id=str(content.id), item_id=str(item.id), reused=not created)

        await board_hub.notify_items_changed(caller.user_id)
        return content, item

    async def push_markdown(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        markdown: str,
        title: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Tuple[AgentContent, Item]:
        return await self.ingest(db, caller, ContentType.MARKDOWN, markdown, title, external_id)

    async def push_form(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        form_markdown: str,
        title: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Tuple[AgentContent, Item]:
        return await self.ingest(db, caller, ContentType.FORM, form_markdown, title, external_id)

    async def get_content(
        self,
        db: AsyncSession,
        user_id: UUID,
        content_id: UUID,
        content_type: Optional[ContentType] = None,
    ) -> AgentContent:
        """Load owned content, optionally of one type; anything else is NotFound."""
        query = select(AgentContent).where(AgentContent.id == content_id, AgentContent.user_id == user_id)
        if content_type is not None:
            query = query.where(AgentContent.type == content_type.value)
        content = (await db.execute(query)).scalar_one_or_none()
        if content is None:
            raise NotFoundError("Content not found")
        return content

    async def submit_form_response(
        self,
        db: AsyncSession,
        caller: CallerIdentity,
        content_id: UUID,
        response: Dict[str, Any],
        item_id: Optional[UUID] = None,
    ) -> FormResponse:
        """
        Record a form submission.

        When ``item_id`` names one of the caller's items, that item is marked
        Done by ``User`` in the same transaction.

        Raises:
            NotFoundError: content absent or not owned
            NotAForm: content is markdown
        """
        async with atomic(db):
            content = await self.get_content(db, caller.user_id, content_id)
            if content.type != ContentType.FORM.value:
                raise NotAForm()

            item = None
            if item_id is not None:
                result = await db.execute(
                    select(Item)
                    .where(Item.id == item_id, Item.user_id == caller.user_id)
                    .with_for_update()
                )
                item = result.scalar_one_or_none()

            form_response = FormResponse(
                user_id=caller.user_id,
                content_id=content.id,
                item_id=item.id if item is not None else None,
                response=response,
                created_at=utcnow(),
            )
            db.add(form_response)
            if item is not None:
                await item_service._mark_done(db, item, Actor.USER)
            await db.flush()

        logger.info(f"Form {content_id} submitted by user {caller.user_id}")
        if item is not None:
            await board_hub.notify_items_changed(caller.user_id)
        return form_response

    async def list_form_responses(self, db: AsyncSession, user_id: UUID, content_id: UUID) -> List[FormResponse]:
        """Submissions of an owned form, newest first."""
        await self.get_content(db, user_id, content_id, ContentType.FORM)
        result = await db.execute(
            select(FormResponse)
            .where(FormResponse.content_id == content_id, FormResponse.user_id == user_id)
            .order_by(FormResponse.created_at.desc())
        )
        return list(result.scalars().all())


# Singleton instance
agent_content_service = AgentContentService()
