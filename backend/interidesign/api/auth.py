from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from interidesign.config import get_settings
from interidesign.database import get_db
from interidesign.schemas.auth import (
    AuthStatusResponse,
    FirebaseAuthRequest,
    LoginRequest,
    MessageResponse,
    SupabaseAuthRequest,
)
from interidesign.schemas.user import UserCreate, UserEnvelope, UserResponse
from interidesign.services.auth_service import AuthResult, AuthService
from interidesign.services.provider_service import (
    FirebaseAdapter,
    SupabaseAdapter,
    get_firebase_adapter,
    get_supabase_adapter,
)
from interidesign.utils.auth import CurrentUser, bearer_scheme, get_session_tokens

router = APIRouter(prefix="/auth", tags=["Authentication"])
settings = get_settings()


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


async def _finish_login(db: AsyncSession, response: Response, result: AuthResult) -> UserEnvelope:
    # Session row and user changes commit together, or not at all
    await db.commit()
    set_session_cookie(response, result.token)
    return UserEnvelope(user=UserResponse.from_user(result.user))


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status() -> AuthStatusResponse:
    providers = ["password"]
    dev_mode = settings.get_auth_mode() == "dev"
    if settings.firebase_configured() or dev_mode:
        providers.append("firebase")
    if settings.supabase_configured() or dev_mode:
        providers.append("supabase")
    return AuthStatusResponse(mode=settings.get_auth_mode(), providers=providers)


@router.post("/login", response_model=UserEnvelope)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserEnvelope:
    result = await AuthService(db).authenticate_by_password(
        credentials.username,
        credentials.password,
        user_agent=request.headers.get("user-agent"),
    )
    return await _finish_login(db, response, result)


@router.post("/register", response_model=UserEnvelope, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserEnvelope:
    result = await AuthService(db).register(
        user_data, user_agent=request.headers.get("user-agent")
    )
    return await _finish_login(db, response, result)


@router.post("/firebase-auth", response_model=UserEnvelope)
async def firebase_auth(
    data: FirebaseAuthRequest,
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    adapter: Annotated[FirebaseAdapter, Depends(get_firebase_adapter)],
) -> UserEnvelope:
    identity = await adapter.verify(data)
    result = await AuthService(db).authenticate_by_external_token(
        identity, user_agent=request.headers.get("user-agent")
    )
    return await _finish_login(db, response, result)


@router.post("/supabase-auth", response_model=UserEnvelope)
async def supabase_auth(
    data: SupabaseAuthRequest,
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    adapter: Annotated[SupabaseAdapter, Depends(get_supabase_adapter)],
) -> UserEnvelope:
    identity = await adapter.verify(data)
    result = await AuthService(db).authenticate_by_external_token(
        identity, user_agent=request.headers.get("user-agent")
    )
    return await _finish_login(db, response, result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    # Idempotent: no session, an expired one or a revoked one all log out cleanly
    service = AuthService(db)
    revoked = False
    for token in get_session_tokens(request, credentials):
        revoked = await service.logout(token) or revoked
    if revoked:
        await db.commit()
    clear_session_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserEnvelope)
async def get_me(current_user: CurrentUser) -> UserEnvelope:
    return UserEnvelope(user=UserResponse.from_user(current_user))
