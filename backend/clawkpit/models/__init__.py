"""
Database models for the Clawkpit application.
"""

from .user import User, MagicLink, UserSession, EmailChangeRequest
from .api_key import APIKey
from .agent_content import AgentContent, FormResponse, ContentType
from .item import Item, Note, UserCounter, Actor, ItemStatus, Tag, Urgency, Importance
from .pairing import PairingSession, PairingStatus

__all__ = [
    "User",
    "MagicLink",
    "UserSession",
    "EmailChangeRequest",
    "APIKey",
    "AgentContent",
    "FormResponse",
    "ContentType",
    "Item",
    "Note",
    "UserCounter",
    "Actor",
    "ItemStatus",
    "Tag",
    "Urgency",
    "Importance",
    "PairingSession",
    "PairingStatus",
]
