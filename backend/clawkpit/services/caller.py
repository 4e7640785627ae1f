"""
Caller identity threaded through every board operation.

Which credential authenticated a request decides the default actor: a human
session acts as ``User``, a durable agent credential acts as ``AI``. The
identity is resolved once by the auth dependency and passed explicitly to
services instead of being inferred deeper down.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID
import enum

from clawkpit.models.item import Actor


class CredentialKind(str, enum.Enum):
    SESSION = "session"
    API_KEY = "api_key"


@dataclass(frozen=True)
class CallerIdentity:
    user_id: UUID
    kind: CredentialKind

    @property
    def default_actor(self) -> Actor:
        return Actor.AI if self.kind == CredentialKind.API_KEY else Actor.USER

    def actor(self, explicit: Optional[Actor] = None) -> Actor:
        """The explicit actor when the caller named one, else the credential default."""
        return Actor(explicit) if explicit is not None else self.default_actor

    @classmethod
    def session(cls, user_id: UUID) -> "CallerIdentity":
        return cls(user_id=user_id, kind=CredentialKind.SESSION)

    @classmethod
    def api_key(cls, user_id: UUID) -> "CallerIdentity":
        return cls(user_id=user_id, kind=CredentialKind.API_KEY)
