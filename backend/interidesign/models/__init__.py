"""Database models."""

from interidesign.models.identity import ProviderKind, UserIdentity
from interidesign.models.session import AuthSession
from interidesign.models.user import User

__all__ = [
    "AuthSession",
    "ProviderKind",
    "User",
    "UserIdentity",
]
