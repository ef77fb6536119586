from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from interidesign.models.identity import ProviderKind
from interidesign.models.user import User

Role = Literal["admin", "designer", "sales"]


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str
    email: str | None = None
    phone: str | None = None
    role: str
    company: str | None = None
    avatar_url: str | None = None
    firebase_uid: str | None = None
    supabase_uid: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            email=user.email,
            phone=user.phone,
            role=user.role,
            company=user.company,
            avatar_url=user.avatar_url,
            firebase_uid=user.external_id(ProviderKind.firebase),
            supabase_uid=user.external_id(ProviderKind.supabase),
            is_active=user.is_active,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserEnvelope(BaseModel):
    user: UserResponse


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=128)
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=100)
    company: str | None = Field(None, max_length=200)


class UserUpdate(BaseModel):
    display_name: str | None = Field(None, min_length=1, max_length=100)
    company: str | None = Field(None, max_length=200)
    avatar_url: str | None = Field(None, max_length=500)

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: str | None) -> str:
        # Omit the field to leave it unchanged; it can never be cleared
        if v is None or not v.strip():
            raise ValueError("Display name cannot be empty")
        return v.strip()


class RoleUpdate(BaseModel):
    role: Role


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
