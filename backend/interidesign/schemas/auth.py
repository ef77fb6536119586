from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from interidesign.models.identity import ProviderKind


class TokenPayload(BaseModel):
    sub: str  # Canonical user id
    sid: str  # Session row id
    exp: int
    iat: int | None = None


class LoginRequest(BaseModel):
    # Accepts a username or an email address
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class FirebaseAuthRequest(BaseModel):
    firebase_uid: str = Field(..., min_length=1, max_length=255)
    id_token: str | None = Field(
        None, description="Firebase ID token (required when Firebase is configured)"
    )
    email: str | None = None
    phone: str | None = Field(None, max_length=32)
    display_name: str | None = Field(None, max_length=100)
    photo_url: str | None = Field(None, max_length=500)


class SupabaseAuthRequest(BaseModel):
    supabase_uid: str = Field(..., min_length=1, max_length=255)
    access_token: str | None = Field(
        None, description="Supabase access token (required when Supabase is configured)"
    )
    email: str | None = None
    display_name: str | None = Field(None, max_length=100)
    avatar_url: str | None = Field(None, max_length=500)


class ProviderProfile(BaseModel):
    """Profile fields a provider may contribute to the canonical user."""

    display_name: str | None = None
    avatar_url: str | None = None
    phone: str | None = None


class ProviderIdentity(BaseModel):
    """Verified identity assertion; lives only for one reconciliation call."""

    provider: ProviderKind
    subject: str
    email: str | None = None
    profile: ProviderProfile = Field(default_factory=ProviderProfile)


class PasswordCredential(BaseModel):
    kind: Literal["password"] = "password"
    username: str
    password: str


class PhoneCredential(BaseModel):
    kind: Literal["phone"] = "phone"
    firebase_uid: str
    id_token: str | None = None
    email: str | None = None
    phone: str | None = None
    display_name: str | None = None
    photo_url: str | None = None


class OAuthCredential(BaseModel):
    kind: Literal["oauth"] = "oauth"
    supabase_uid: str
    access_token: str | None = None
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None


Credential = Annotated[
    Union[PasswordCredential, PhoneCredential, OAuthCredential],
    Field(discriminator="kind"),
]


class MessageResponse(BaseModel):
    message: str


class AuthStatusResponse(BaseModel):
    mode: str
    providers: list[str]
