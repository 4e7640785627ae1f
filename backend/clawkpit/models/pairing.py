"""
Device pairing sessions (device-authorization style flow for agents).
"""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum

from clawkpit.core.database import Base
from clawkpit.utils.formatters import as_utc, utcnow


class PairingStatus(str, enum.Enum):
    """Pairing lifecycle. Transitions only move forward."""
    PENDING = "pending"          # Started by the agent, waiting for the human
    AUTHORIZED = "authorized"    # Human confirmed; credential waiting for the poll
    CONSUMED = "consumed"        # Credential handed to the agent
    EXPIRED = "expired"


class PairingSession(Base):
    """A pending or completed device pairing."""

    __tablename__ = "pairing_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    display_code = Column(String(16), nullable=False, unique=True, index=True)  # Typed by the human
    device_code = Column(String(64), nullable=False, unique=True, index=True)  # Polled by the agent
    email = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default=PairingStatus.PENDING.value)

    # Bound at confirmation time; the plain credential lives here only until polled
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    api_key_id = Column(UUID(as_uuid=True), ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True)
    issued_credential = Column(String(255), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    authorized_at = Column(DateTime(timezone=True), nullable=True)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PairingSession(id={self.id}, status={self.status})>"

    def is_expired(self, now=None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())
