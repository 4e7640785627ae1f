"""
Authentication service: magic-link sign-in and JWT sessions, verified email
changes, plus the request dependencies that turn a credential into a
CallerIdentity.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID
import hashlib
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, select
from jose import JWTError, jwt
from loguru import logger

from clawkpit.core.config import settings
from clawkpit.core.database import atomic, get_db
from clawkpit.core import rate_limit
from clawkpit.models.user import EmailChangeRequest, MagicLink, User, UserSession
from clawkpit.services.api_key_service import api_key_service
from clawkpit.services.caller import CallerIdentity, CredentialKind
from clawkpit.utils.exceptions import RateLimitedError, ValidationError
from clawkpit.utils.formatters import as_utc, utcnow

API_KEY_HEADER = "X-API-Key"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Service for authentication and authorization."""

    def hash_token(self, token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    async def get_user_by_email(self, email: str, db: AsyncSession) -> Optional[User]:
        """Get user by email."""
        result = await db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: str, db: AsyncSession) -> Optional[User]:
        """Get user by ID."""
        try:
            user_uuid = UUID(str(user_id))
        except ValueError:
            return None
        result = await db.execute(
            select(User).where(User.id == user_uuid)
        )
        return result.scalar_one_or_none()

    async def ensure_user(self, email: str, db: AsyncSession, name: Optional[str] = None) -> User:
        """Return the user for ``email``, creating it on first sight."""
        user = await self.get_user_by_email(email, db)
        if user:
            if name and not user.name:
                user.name = name
                await db.commit()
            return user

        user = User(email=normalize_email(email), name=name)
        db.add(user)
        await db.commit()
        await db.refresh(user)

        logger.info(f"Created new user: {user.email}")
        return user

    # Magic links

    async def request_magic_link(
        self,
        email: str,
        db: AsyncSession,
        name: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> Tuple[str, datetime]:
        """
        Issue a single-use sign-in token for ``email``.

        Returns:
            Tuple of (plain token, expiry). Only the token hash is stored.
        """
        email = normalize_email(email)
        if client_ip is not None:
            quota = rate_limit.consume(f"magic_link:{client_ip}:{email}", settings.MAGIC_LINK_RATE_LIMIT)
            if not quota.allowed:
                raise RateLimitedError("Too many sign-in requests. Try again later.", quota.retry_after)

        user = await self.ensure_user(email, db, name=name)

        token = secrets.token_urlsafe(32)
        expires_at = utcnow() + timedelta(minutes=settings.MAGIC_LINK_EXPIRE_MINUTES)
        db.add(MagicLink(user_id=user.id, token_hash=self.hash_token(token), expires_at=expires_at))
        await db.commit()

        logger.info(f"Issued magic link for user {user.id}")
        return token, expires_at

    async def consume_magic_link(self, token: str, db: AsyncSession) -> Tuple[str, User]:
        """
        Exchange a magic-link token for a session token.

        Raises:
            ValidationError: token unknown, used, or expired
        """
        async with atomic(db):
            result = await db.execute(
                select(MagicLink)
                .where(MagicLink.token_hash == self.hash_token(token))
                .with_for_update()
            )
            link = result.scalar_one_or_none()
            if link is None or link.consumed_at is not None or as_utc(link.expires_at) <= utcnow():
                raise ValidationError("Invalid or expired token")

            link.consumed_at = utcnow()
            user = await db.get(User, link.user_id)
            session_token = await self._open_session(db, user.id)

        logger.info(f"User {user.id} signed in")
        return session_token, user

    # Sessions

    def create_session_token(self, user_id: UUID, session_id: UUID, expires_at: datetime) -> str:
        """Create a JWT session token."""
        to_encode = {
            "sub": str(user_id),
            "sid": str(session_id),
            "exp": expires_at,
            "type": "session",
        }
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    async def _open_session(self, db: AsyncSession, user_id: UUID) -> str:
        expires_at = utcnow() + timedelta(days=settings.SESSION_EXPIRE_DAYS)
        session = UserSession(user_id=user_id, expires_at=expires_at)
        db.add(session)
        await db.flush()
        return self.create_session_token(user_id, session.id, expires_at)

    async def create_session(self, db: AsyncSession, user_id: UUID) -> str:
        """Open a session for ``user_id`` and return its token."""
        async with atomic(db):
            token = await self._open_session(db, user_id)
        return token

    def decode_session_token(self, token: str) -> Optional[dict]:
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != "session" or not payload.get("sub") or not payload.get("sid"):
            return None
        return payload

    async def resolve_session_token(self, token: str, db: AsyncSession) -> Optional[User]:
        """Resolve a session JWT to its user while the backing session row is live."""
        payload = self.decode_session_token(token)
        if payload is None:
            return None

        try:
            session_id = UUID(payload["sid"])
        except ValueError:
            return None
        session = await db.get(UserSession, session_id)
        if session is None or as_utc(session.expires_at) <= utcnow():
            return None
        if str(session.user_id) != str(payload["sub"]):
            return None
        return await self.get_user_by_id(payload["sub"], db)

    async def logout(self, token: str, db: AsyncSession) -> None:
        """Delete the session behind ``token``; the JWT stops resolving."""
        payload = self.decode_session_token(token)
        if payload is None:
            return
        await db.execute(delete(UserSession).where(UserSession.id == UUID(payload["sid"])))
        await db.commit()
        logger.info(f"User {payload['sub']} signed out")

    async def update_user(self, user: User, db: AsyncSession, name: Optional[str] = None) -> User:
        if name is not None:
            user.name = name.strip()
        await db.commit()
        await db.refresh(user)
        return user

    # Email change

    async def request_email_change(self, user: User, new_email: str, db: AsyncSession) -> Tuple[str, datetime]:
        """
        Park an address change until the new address confirms it.

        A new request replaces the user's previous one.

        Returns:
            Tuple of (plain token, expiry). Only the token hash is stored.

        Raises:
            ValidationError: the address is the current one or belongs to another account
        """
        new_email = normalize_email(new_email)
        if new_email == normalize_email(user.email) or await self.get_user_by_email(new_email, db) is not None:
            raise ValidationError("Cannot use that email (same as current or already taken)")

        token = secrets.token_urlsafe(32)
        expires_at = utcnow() + timedelta(minutes=settings.EMAIL_CHANGE_EXPIRE_MINUTES)
        async with atomic(db):
            await db.execute(delete(EmailChangeRequest).where(EmailChangeRequest.user_id == user.id))
            db.add(EmailChangeRequest(
                user_id=user.id,
                new_email=new_email,
                token_hash=self.hash_token(token),
                expires_at=expires_at,
            ))

        logger.info(f"Email change requested for user {user.id}")
        return token, expires_at

    async def confirm_email_change(self, token: str, db: AsyncSession) -> Tuple[str, User]:
        """
        Apply a pending address change and open a session on it.

        Raises:
            ValidationError: token unknown or expired, or the address was taken meanwhile
        """
        async with atomic(db):
            result = await db.execute(
                select(EmailChangeRequest)
                .where(EmailChangeRequest.token_hash == self.hash_token(token))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            change = result.scalar_one_or_none()
            if change is None:
                raise ValidationError("Invalid or expired link")
            if as_utc(change.expires_at) <= utcnow():
                raise ValidationError("Verification link has expired")
            if await self.get_user_by_email(change.new_email, db) is not None:
                raise ValidationError("That email is already in use")

            user = await db.get(User, change.user_id)
            user.email = change.new_email
            await db.delete(change)
            session_token = await self._open_session(db, user.id)

        logger.info(f"User {user.id} confirmed an email change")
        return session_token, user

    # Request credentials

    async def resolve_caller(self, token: Optional[str], db: AsyncSession) -> Optional[Tuple[User, CallerIdentity]]:
        """
        Resolve a raw credential (API key or session JWT).

        Tokens carrying the API key prefix are looked up as keys, anything
        else is decoded as a session token.
        """
        if not token:
            return None
        if api_key_service.looks_like_key(token):
            user = await api_key_service.resolve_key(db, token)
            kind = CredentialKind.API_KEY
        else:
            user = await self.resolve_session_token(token, db)
            kind = CredentialKind.SESSION
        if user is None:
            return None
        return user, CallerIdentity(user_id=user.id, kind=kind)


# Global instance for dependency injection
auth_service = AuthService()

bearer_scheme = HTTPBearer(auto_error=False)


def _credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.headers.get(API_KEY_HEADER)


async def get_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> CallerIdentity:
    """Dependency resolving either credential kind to a CallerIdentity."""
    resolved = await auth_service.resolve_caller(extract_token(request, credentials), db)
    if resolved is None:
        raise _credentials_exception()
    return resolved[1]


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency for getting the user behind either credential kind."""
    resolved = await auth_service.resolve_caller(extract_token(request, credentials), db)
    if resolved is None:
        raise _credentials_exception()
    return resolved[0]


async def get_session_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency accepting human sessions only (no API keys)."""
    if credentials is None or api_key_service.looks_like_key(credentials.credentials):
        raise _credentials_exception("Sign in to continue")
    user = await auth_service.resolve_session_token(credentials.credentials, db)
    if user is None:
        raise _credentials_exception()
    return user
