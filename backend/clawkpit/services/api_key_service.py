"""
API Key management service.

Handles creation, resolution, and revocation of the durable credentials
agents use to act on a user's board.
"""

import secrets
import hashlib
from typing import Optional, List, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from loguru import logger

from clawkpit.core.config import settings
from clawkpit.models.api_key import APIKey
from clawkpit.models.user import User
from clawkpit.utils.formatters import mask_secret, utcnow


class APIKeyService:
    """Service for managing API keys."""

    # API key format: prefix_randomstring (e.g., "ckp_abc123...")
    KEY_PREFIX = settings.API_KEY_PREFIX
    KEY_LENGTH = 32  # Random bytes before url-safe encoding

    def generate_key(self) -> Tuple[str, str, str]:
        """
        Generate a new API key.

        Returns:
            Tuple of (full_key, key_prefix, key_hash)
            - full_key: The complete API key to give to the user (shown only once)
            - key_prefix: Leading characters for identification
            - key_hash: SHA256 hash of the full key for storage
        """
        random_part = secrets.token_urlsafe(self.KEY_LENGTH)
        full_key = f"{self.KEY_PREFIX}_{random_part}"
        key_prefix = full_key[:len(self.KEY_PREFIX) + 9]
        return full_key, key_prefix, self.hash_key(full_key)

    def hash_key(self, key: str) -> str:
        """Hash an API key for comparison."""
        return hashlib.sha256(key.encode()).hexdigest()

    def looks_like_key(self, token: Optional[str]) -> bool:
        return bool(token) and token.startswith(f"{self.KEY_PREFIX}_")

    async def add_key(self, db: AsyncSession, user_id: UUID, name: Optional[str] = None) -> Tuple[APIKey, str]:
        """Stage a new key in the current transaction without committing."""
        full_key, key_prefix, key_hash = self.generate_key()
        api_key = APIKey(
            name=name,
            key_prefix=key_prefix,
            key_hash=key_hash,
            user_id=user_id,
        )
        db.add(api_key)
        await db.flush()
        return api_key, full_key

    async def create_key(
        self,
        db: AsyncSession,
        user_id: UUID,
        name: Optional[str] = None,
    ) -> Tuple[APIKey, str]:
        """
        Create a new API key for a user.

        Returns:
            Tuple of (APIKey model, plain_text_key)
            The plain_text_key is only available at creation time!
        """
        api_key, full_key = await self.add_key(db, user_id, name)
        await db.commit()
        await db.refresh(api_key)

        logger.info(f"Created API key '{name}' ({api_key.key_prefix}...) for user {user_id}")
        return api_key, full_key

    async def resolve_key(self, db: AsyncSession, key: str) -> Optional[User]:
        """
        Resolve a plain API key to its owner.

        Returns:
            The owning User, or None for unknown or revoked keys
        """
        if not self.looks_like_key(key):
            return None

        result = await db.execute(
            select(APIKey, User)
            .join(User, APIKey.user_id == User.id)
            .where(APIKey.key_hash == self.hash_key(key))
        )
        row = result.first()
        if not row:
            return None

        api_key, user = row
        if not api_key.is_valid():
            logger.warning(f"Revoked API key attempted: {mask_secret(key)}")
            return None

        api_key.last_used_at = utcnow()
        await db.commit()
        return user

    async def list_keys(self, db: AsyncSession, user_id: UUID, include_revoked: bool = False) -> List[APIKey]:
        """List a user's API keys, newest first."""
        query = select(APIKey).where(APIKey.user_id == user_id)

        if not include_revoked:
            query = query.where(APIKey.revoked_at.is_(None))

        query = query.order_by(APIKey.created_at.desc())
        result = await db.execute(query)

        return list(result.scalars().all())

    async def get_key(self, db: AsyncSession, key_id: UUID, user_id: Optional[UUID] = None) -> Optional[APIKey]:
        """Get a specific API key by ID."""
        query = select(APIKey).where(APIKey.id == key_id)

        if user_id:
            query = query.where(APIKey.user_id == user_id)

        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def revoke_key(self, db: AsyncSession, key_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """
        Revoke an API key.

        Returns:
            True if revoked, False if not found
        """
        api_key = await self.get_key(db, key_id, user_id)

        if not api_key:
            return False

        if api_key.revoked_at is None:
            api_key.revoked_at = utcnow()
        await db.commit()
        logger.info(f"Revoked API key: {api_key.key_prefix}... (name: {api_key.name})")

        return True


# Singleton instance
api_key_service = APIKeyService()
