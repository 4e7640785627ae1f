"""
API key model for agent authentication.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid

from clawkpit.core.database import Base
from clawkpit.utils.formatters import utcnow


class APIKey(Base):
    """Durable credential an agent uses to act on behalf of a user."""

    __tablename__ = "api_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Key identification
    name = Column(String(255), nullable=True)  # Human-readable name
    key_prefix = Column(String(16), nullable=False)  # Shown in listings
    key_hash = Column(String(64), nullable=False, unique=True, index=True)  # SHA256 of the full key

    # Ownership
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Usage tracking
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<APIKey(id={self.id}, name='{self.name}', user_id={self.user_id})>"

    def is_valid(self) -> bool:
        """Check if the API key is currently valid."""
        return self.revoked_at is None
