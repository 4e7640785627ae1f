"""
Board item models: items, their notes, and the per-user human id counter.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum

from clawkpit.core.database import Base
from clawkpit.utils.formatters import utcnow


class Actor(str, enum.Enum):
    """Who performed a mutation."""
    USER = "User"
    AI = "AI"


class ItemStatus(str, enum.Enum):
    ACTIVE = "Active"
    DONE = "Done"
    DROPPED = "Dropped"


class Tag(str, enum.Enum):
    """Activity categorization."""
    TO_READ = "ToRead"
    TO_THINK_ABOUT = "ToThinkAbout"
    TO_USE = "ToUse"
    TO_DO = "ToDo"


class Urgency(str, enum.Enum):
    """Board column: when to do it."""
    DO_NOW = "DoNow"
    DO_TODAY = "DoToday"
    DO_THIS_WEEK = "DoThisWeek"
    DO_LATER = "DoLater"
    UNCLEAR = "Unclear"


class Importance(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# Sort rank used by board listings (lower sorts first)
IMPORTANCE_RANK = {
    Importance.HIGH.value: 0,
    Importance.MEDIUM.value: 1,
    Importance.LOW.value: 2,
}


class UserCounter(Base):
    """Next human id to hand out for a user's items."""

    __tablename__ = "user_counters"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    next_human_id = Column(Integer, nullable=False, default=1)


class Item(Base):
    """A board card."""

    __tablename__ = "items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    human_id = Column(Integer, nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Content
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")

    # Board placement
    tag = Column(String(20), nullable=False, default=Tag.TO_DO.value)
    urgency = Column(String(20), nullable=False, default=Urgency.UNCLEAR.value)
    importance = Column(String(10), nullable=False, default=Importance.MEDIUM.value)
    deadline = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(10), nullable=False, default=ItemStatus.ACTIVE.value)

    # Provenance
    created_by = Column(String(10), nullable=False, default=Actor.USER.value)
    modified_by = Column(String(10), nullable=False, default=Actor.USER.value)
    has_ai_changes = Column(Boolean, nullable=False, default=False)

    # Agent-pushed content backing this item
    content_id = Column(UUID(as_uuid=True), ForeignKey("agent_contents.id", ondelete="SET NULL"), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    opened_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    content = relationship("AgentContent", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "human_id", name="uq_items_user_human_id"),
        Index("ix_items_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return f"<Item(id={self.id}, human_id={self.human_id}, status={self.status})>"

    @property
    def content_type(self):
        return self.content.type if self.content is not None else None


class Note(Base):
    """Free-text annotation on an item. AI-authored or not, only a User may edit it."""

    __tablename__ = "notes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    author = Column(String(10), nullable=False, default=Actor.USER.value)
    content = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Note(id={self.id}, item_id={self.item_id}, author={self.author})>"
