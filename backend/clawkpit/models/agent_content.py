"""
Agent-pushed content (markdown to read, forms to fill) and form submissions.
"""

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum

from clawkpit.core.database import Base
from clawkpit.utils.formatters import utcnow


class ContentType(str, enum.Enum):
    MARKDOWN = "markdown"
    FORM = "form"


class AgentContent(Base):
    """
    Markdown or form body pushed by an agent.

    Deduplicated per owner: by ``external_id`` when the agent supplies one,
    otherwise by ``(content_hash, type)``. Both keys are enforced by unique
    indexes so concurrent pushes collapse onto one row.
    """

    __tablename__ = "agent_contents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    type = Column(String(20), nullable=False)
    title = Column(String(500), nullable=True)
    body = Column(Text, nullable=False)

    # Dedup keys
    external_id = Column(String(255), nullable=True)
    content_hash = Column(String(64), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_agent_contents_user_external_id"),
        Index(
            "uq_agent_contents_user_hash_type",
            user_id,
            content_hash,
            type,
            unique=True,
            postgresql_where=external_id.is_(None),
            sqlite_where=external_id.is_(None),
        ),
    )

    def __repr__(self):
        return f"<AgentContent(id={self.id}, type={self.type}, user_id={self.user_id})>"


class FormResponse(Base):
    """One submission of a form. Append-only."""

    __tablename__ = "form_responses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content_id = Column(UUID(as_uuid=True), ForeignKey("agent_contents.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.id", ondelete="SET NULL"), nullable=True)
    response = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
