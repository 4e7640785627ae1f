"""
Agent content endpoints: markdown and form pushes, reads, and submissions.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from clawkpit.core.database import get_db
from clawkpit.models.agent_content import ContentType
from clawkpit.schemas.agent_content import (
    FormContentResponse,
    FormPush,
    FormPushResponse,
    FormResponseItem,
    FormResponseListResponse,
    FormSubmit,
    FormSubmitResponse,
    MarkdownPush,
    MarkdownPushResponse,
    MarkdownResponse,
)
from clawkpit.services.agent_content_service import agent_content_service
from clawkpit.services.auth_service import get_caller
from clawkpit.services.caller import CallerIdentity

router = APIRouter()


@router.post("/agent/markdown", response_model=MarkdownPushResponse)
async def push_markdown(
    body: MarkdownPush,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """
    Push markdown for the user to read.

    Re-pushing the same ``externalId`` (or, without one, the same body)
    updates the stored content and reuses its item.
    """
    content, item = await agent_content_service.push_markdown(
        db, caller, body.markdown, title=body.title, external_id=body.external_id
    )
    return MarkdownPushResponse(markdown_id=content.id, content_id=content.id, item_id=item.id)


@router.post("/agent/form", response_model=FormPushResponse)
async def push_form(
    body: FormPush,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Push a form for the user to fill in. A completed form gets a fresh item when pushed again."""
    content, item = await agent_content_service.push_form(
        db, caller, body.form_markdown, title=body.title, external_id=body.external_id
    )
    return FormPushResponse(form_id=content.id, content_id=content.id, item_id=item.id)


@router.get("/markdown/{content_id}", response_model=MarkdownResponse)
async def get_markdown(
    content_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    content = await agent_content_service.get_content(db, caller.user_id, content_id, ContentType.MARKDOWN)
    return MarkdownResponse(
        id=content.id,
        title=content.title,
        markdown=content.body,
        external_id=content.external_id,
        created_at=content.created_at,
        updated_at=content.updated_at,
    )


@router.get("/forms/{content_id}", response_model=FormContentResponse)
async def get_form(
    content_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    content = await agent_content_service.get_content(db, caller.user_id, content_id, ContentType.FORM)
    return FormContentResponse(
        id=content.id,
        title=content.title,
        form_markdown=content.body,
        external_id=content.external_id,
        created_at=content.created_at,
        updated_at=content.updated_at,
    )


@router.post("/forms/{content_id}/submit", response_model=FormSubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_form(
    content_id: UUID,
    body: FormSubmit,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Store a form response; passing ``itemId`` marks that item done."""
    form_response = await agent_content_service.submit_form_response(
        db, caller, content_id, body.response, item_id=body.item_id
    )
    return FormSubmitResponse(response_id=form_response.id)


@router.get("/agent/forms/{content_id}/responses", response_model=FormResponseListResponse)
async def list_form_responses(
    content_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Submissions of a form, newest first."""
    responses = await agent_content_service.list_form_responses(db, caller.user_id, content_id)
    return FormResponseListResponse(responses=[FormResponseItem.model_validate(r) for r in responses])
