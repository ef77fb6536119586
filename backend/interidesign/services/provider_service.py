"""Provider adapters that turn a sign-in proof into a verified ProviderIdentity.

Firebase covers phone OTP and Google sign-in, Supabase covers email/password
and OAuth. Each adapter verifies the token with its provider and checks that
the token's subject is the identifier the client claimed. In development mode
an unconfigured provider trusts the claimed identity instead.
"""

import logging
from typing import Any

import httpx
from jose import JWTError, jwt

from interidesign.config import Settings, get_settings
from interidesign.exceptions import ProviderNotConfigured, ProviderVerificationFailed
from interidesign.models.identity import ProviderKind
from interidesign.schemas.auth import (
    FirebaseAuthRequest,
    ProviderIdentity,
    ProviderProfile,
    SupabaseAuthRequest,
)
from interidesign.utils.jwks import call_provider, fetch_jwks

logger = logging.getLogger(__name__)

FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)
FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
SUPABASE_AUDIENCE = "authenticated"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _normalize_email(email: str | None) -> str | None:
    email = _clean(email)
    return email.lower() if email else None


def _check_subject(claimed: str, verified: str | None) -> None:
    if verified != claimed:
        raise ProviderVerificationFailed("Token subject does not match the claimed user id")


class FirebaseAdapter:
    provider = ProviderKind.firebase

    def __init__(self, settings: Settings):
        self.settings = settings

    async def _decode(self, id_token: str) -> dict[str, Any]:
        project_id = self.settings.firebase_project_id
        jwks = await fetch_jwks(FIREBASE_JWKS_URL, timeout=self.settings.provider_timeout)
        try:
            return jwt.decode(
                id_token,
                jwks,
                algorithms=["RS256"],
                audience=project_id,
                issuer=f"{FIREBASE_ISSUER_PREFIX}{project_id}",
                options={"verify_exp": True, "verify_at_hash": False},
            )
        except JWTError as e:
            raise ProviderVerificationFailed(f"Invalid Firebase token: {e}") from None

    async def verify(self, data: FirebaseAuthRequest) -> ProviderIdentity:
        if not self.settings.firebase_configured():
            if self.settings.get_auth_mode() != "dev":
                raise ProviderNotConfigured("Firebase sign-in is not configured")
            logger.debug("Firebase not configured, trusting claimed uid in dev mode")
            return ProviderIdentity(
                provider=self.provider,
                subject=data.firebase_uid,
                email=_normalize_email(data.email),
                profile=ProviderProfile(
                    display_name=_clean(data.display_name),
                    avatar_url=_clean(data.photo_url),
                    phone=_clean(data.phone),
                ),
            )

        if not data.id_token:
            raise ProviderVerificationFailed("Firebase id_token is required")

        claims = await self._decode(data.id_token)
        _check_subject(data.firebase_uid, claims.get("sub"))

        # Only a provider-verified email may be used to match an existing account
        email = claims.get("email") if claims.get("email_verified") else None
        return ProviderIdentity(
            provider=self.provider,
            subject=claims["sub"],
            email=_normalize_email(email),
            profile=ProviderProfile(
                display_name=_clean(claims.get("name")) or _clean(data.display_name),
                avatar_url=_clean(claims.get("picture")) or _clean(data.photo_url),
                phone=_clean(claims.get("phone_number")),
            ),
        )


class SupabaseAdapter:
    provider = ProviderKind.supabase

    def __init__(self, settings: Settings):
        self.settings = settings

    def _decode_locally(self, access_token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                access_token,
                self.settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience=SUPABASE_AUDIENCE,
                options={"verify_exp": True},
            )
        except JWTError as e:
            raise ProviderVerificationFailed(f"Invalid Supabase token: {e}") from None

    async def _fetch_user(self, access_token: str) -> dict[str, Any]:
        url = f"{self.settings.supabase_url.rstrip('/')}/auth/v1/user"
        headers = {
            "apikey": self.settings.supabase_anon_key or "",
            "Authorization": f"Bearer {access_token}",
        }

        async def _get() -> dict[str, Any]:
            async with httpx.AsyncClient(timeout=self.settings.provider_timeout) as client:
                resp = await client.get(url, headers=headers)
                resp.raise_for_status()
                return resp.json()

        user = await call_provider("Supabase user lookup", _get)
        # Shape the REST user like the JWT claims so both paths share parsing
        return {
            "sub": user.get("id"),
            "email": user.get("email"),
            "phone": user.get("phone"),
            "user_metadata": user.get("user_metadata") or {},
        }

    async def verify(self, data: SupabaseAuthRequest) -> ProviderIdentity:
        if not self.settings.supabase_configured():
            if self.settings.get_auth_mode() != "dev":
                raise ProviderNotConfigured("Supabase sign-in is not configured")
            logger.debug("Supabase not configured, trusting claimed uid in dev mode")
            return ProviderIdentity(
                provider=self.provider,
                subject=data.supabase_uid,
                email=_normalize_email(data.email),
                profile=ProviderProfile(
                    display_name=_clean(data.display_name),
                    avatar_url=_clean(data.avatar_url),
                ),
            )

        if not data.access_token:
            raise ProviderVerificationFailed("Supabase access_token is required")

        if self.settings.supabase_jwt_secret:
            claims = self._decode_locally(data.access_token)
        else:
            claims = await self._fetch_user(data.access_token)
        _check_subject(data.supabase_uid, claims.get("sub"))

        metadata = claims.get("user_metadata") or {}
        return ProviderIdentity(
            provider=self.provider,
            subject=claims["sub"],
            email=_normalize_email(claims.get("email")),
            profile=ProviderProfile(
                display_name=_clean(metadata.get("full_name") or metadata.get("name"))
                or _clean(data.display_name),
                avatar_url=_clean(metadata.get("avatar_url")) or _clean(data.avatar_url),
                phone=_clean(claims.get("phone")),
            ),
        )


def get_firebase_adapter() -> FirebaseAdapter:
    return FirebaseAdapter(get_settings())


def get_supabase_adapter() -> SupabaseAdapter:
    return SupabaseAdapter(get_settings())
