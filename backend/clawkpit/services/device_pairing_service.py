"""
Device pairing.

A headless agent gets a durable credential without ever handling the
user's sign-in:

1. the agent calls ``start`` with the user's email and receives a short
   display code (for the human) plus a long device code (kept secret)
2. the signed-in human types the display code; ``confirm`` mints an API key
   bound to that human and parks it on the pairing session
3. the agent ``poll``s with its device code and receives the key exactly once

Codes expire ``DEVICE_CODE_EXPIRE_MINUTES`` after start. Expiry is applied
lazily when a code is touched.
"""

import secrets
from datetime import timedelta
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from clawkpit.core.config import settings
from clawkpit.core.database import atomic
from clawkpit.core import rate_limit
from clawkpit.models.api_key import APIKey
from clawkpit.models.pairing import PairingSession, PairingStatus
from clawkpit.services.api_key_service import api_key_service
from clawkpit.services.auth_service import auth_service, normalize_email
from clawkpit.utils.exceptions import (
    AlreadyConsumed,
    CodeAlreadyUsed,
    CodeExpired,
    DisplayCodeUnavailable,
    Expired,
    InvalidCode,
    InvalidDeviceCode,
    RateLimitedError,
    UserNotFound,
)
from clawkpit.utils.formatters import mask_secret, utcnow

# No 0/O or 1/I: the code is read off a screen and typed by hand
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_SEGMENT_LENGTH = 4
CODE_SEGMENTS = 2
DEVICE_CODE_BYTES = 24
CREDENTIAL_NAME = "Agent device"
MAX_CODE_ATTEMPTS = 5


def generate_display_code() -> str:
    """Random ``XXXX-XXXX`` code from CODE_ALPHABET."""
    return "-".join(
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SEGMENT_LENGTH))
        for _ in range(CODE_SEGMENTS)
    )


def normalize_display_code(code: str) -> str:
    """Accept lower case, stray spaces, and a missing dash."""
    cleaned = "".join(code.split()).upper()
    if "-" not in cleaned and len(cleaned) == CODE_SEGMENT_LENGTH * CODE_SEGMENTS:
        cleaned = f"{cleaned[:CODE_SEGMENT_LENGTH]}-{cleaned[CODE_SEGMENT_LENGTH:]}"
    return cleaned


class DevicePairingService:
    """Service running the device pairing protocol."""

    # Quotas

    def enforce_confirm_rate_limit(self, client_ip: str) -> None:
        """Confirmation attempts per network identity; display codes are short enough to guess."""
        quota = rate_limit.consume(f"device_confirm:{client_ip}", settings.DEVICE_CONFIRM_RATE_LIMIT)
        if not quota.allowed:
            logger.warning(f"Device confirm rate limit hit for {client_ip}")
            raise RateLimitedError("Too many attempts. Try again later.", quota.retry_after)

    def enforce_poll_rate_limit(self, device_code: str) -> None:
        """At most one poll per interval for each device code."""
        interval = settings.DEVICE_POLL_INTERVAL_SECONDS
        quota = rate_limit.consume(f"device_poll:{device_code}", f"1/{interval} seconds")
        if not quota.allowed:
            raise RateLimitedError(f"Polling too fast. Wait {interval} seconds between polls.", quota.retry_after)

    # Protocol

    async def start(self, db: AsyncSession, email: str) -> PairingSession:
        """
        Open a pending pairing for the account behind ``email``.

        Raises:
            UserNotFound: no account uses this email
        """
        email = normalize_email(email)
        user = await auth_service.get_user_by_email(email, db)
        if user is None:
            raise UserNotFound()

        display_code = await self._unused_display_code(db)
        session = PairingSession(
            display_code=display_code,
            device_code=secrets.token_hex(DEVICE_CODE_BYTES),
            email=email,
            status=PairingStatus.PENDING.value,
            expires_at=utcnow() + timedelta(minutes=settings.DEVICE_CODE_EXPIRE_MINUTES),
            created_at=utcnow(),
        )
        db.add(session)
        await db.commit()

        logger.info(f"Pairing started for {email} with display code {display_code}")
        return session

    async def _unused_display_code(self, db: AsyncSession) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_display_code()
            taken = await db.scalar(select(PairingSession.id).where(PairingSession.display_code == code))
            if taken is None:
                return code
        logger.error(f"No unused display code after {MAX_CODE_ATTEMPTS} attempts")
        raise DisplayCodeUnavailable()

    async def confirm(self, db: AsyncSession, display_code: str, user_id: UUID) -> PairingSession:
        """
        Authorize a pending pairing on behalf of the signed-in ``user_id``.

        Mints the API key the agent will collect on its next poll.

        Raises:
            InvalidCode: no pairing uses this display code
            CodeExpired: the code is past its expiry
            CodeAlreadyUsed: the code was already confirmed
        """
        expired = False
        async with atomic(db):
            result = await db.execute(
                select(PairingSession)
                .where(PairingSession.display_code == normalize_display_code(display_code))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            session = result.scalar_one_or_none()
            if session is None:
                raise InvalidCode()
            if session.status == PairingStatus.EXPIRED.value:
                raise CodeExpired()
            if session.status != PairingStatus.PENDING.value:
                raise CodeAlreadyUsed()

            if session.is_expired():
                session.status = PairingStatus.EXPIRED.value
                expired = True
            else:
                api_key, plain_key = await api_key_service.add_key(db, user_id, name=CREDENTIAL_NAME)
                session.user_id = user_id
                session.api_key_id = api_key.id
                session.issued_credential = plain_key
                session.status = PairingStatus.AUTHORIZED.value
                session.authorized_at = utcnow()

        if expired:
            logger.warning(f"Pairing code {session.display_code} confirmed after expiry")
            raise CodeExpired()

        logger.info(f"Pairing {session.display_code} authorized by user {user_id}")
        return session

    async def poll(self, db: AsyncSession, device_code: str) -> Dict[str, Optional[str]]:
        """
        Check a pairing from the agent side.

        Returns ``{"status": "pending"}`` until the human confirms, then
        ``{"status": "authorized", "api_token": ...}`` exactly once.

        Raises:
            InvalidDeviceCode: unknown device code
            Expired: the code is past its expiry
            AlreadyConsumed: the credential was already handed out
        """
        outcome = None
        async with atomic(db):
            result = await db.execute(
                select(PairingSession)
                .where(PairingSession.device_code == device_code)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            session = result.scalar_one_or_none()
            if session is None:
                raise InvalidDeviceCode()

            if session.status == PairingStatus.EXPIRED.value or session.is_expired():
                await self._expire(db, session)
                outcome = "expired"
            elif session.status == PairingStatus.PENDING.value:
                return {"status": PairingStatus.PENDING.value}
            elif session.status == PairingStatus.AUTHORIZED.value and session.issued_credential:
                credential = session.issued_credential
                session.issued_credential = None
                session.status = PairingStatus.CONSUMED.value
                session.consumed_at = utcnow()
                outcome = "consumed"
            else:
                raise AlreadyConsumed()

        if outcome == "expired":
            raise Expired()

        logger.info(f"Pairing {session.display_code} delivered credential {mask_secret(credential)}")
        return {"status": PairingStatus.AUTHORIZED.value, "api_token": credential}

    async def _expire(self, db: AsyncSession, session: PairingSession) -> None:
        """Mark expired; a confirmed-but-never-collected key is revoked with it."""
        if session.status == PairingStatus.AUTHORIZED.value and session.api_key_id is not None:
            api_key = await db.get(APIKey, session.api_key_id)
            if api_key is not None and api_key.revoked_at is None:
                api_key.revoked_at = utcnow()
                logger.info(f"Revoked uncollected pairing key {api_key.key_prefix}...")
        if session.status in (PairingStatus.PENDING.value, PairingStatus.AUTHORIZED.value):
            session.status = PairingStatus.EXPIRED.value
        session.issued_credential = None


# Singleton instance
device_pairing_service = DevicePairingService()
