"""Service layer for business logic."""

from interidesign.services.auth_service import AuthResult, AuthService
from interidesign.services.provider_service import (
    FirebaseAdapter,
    SupabaseAdapter,
    get_firebase_adapter,
    get_supabase_adapter,
)
from interidesign.services.session_service import SessionService
from interidesign.services.user_service import UserService

__all__ = [
    "AuthResult",
    "AuthService",
    "FirebaseAdapter",
    "SupabaseAdapter",
    "get_firebase_adapter",
    "get_supabase_adapter",
    "SessionService",
    "UserService",
]
