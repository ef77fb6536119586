import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from interidesign.config import get_settings
from interidesign.exceptions import NotAuthenticated, SessionExpired
from interidesign.models.session import AuthSession
from interidesign.models.user import User
from interidesign.schemas.auth import TokenPayload

logger = logging.getLogger(__name__)
settings = get_settings()

ALGORITHM = "HS256"


def encode_session_token(session: AuthSession) -> str:
    to_encode = {
        "sub": str(session.user_id),
        "sid": session.id,
        "iat": datetime.now(timezone.utc),
        "exp": session.expires_at,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_session_token(token: str, verify_exp: bool = True) -> TokenPayload:
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[ALGORITHM],
            options={"verify_exp": verify_exp},
        )
        return TokenPayload(**payload)
    except ExpiredSignatureError:
        raise SessionExpired() from None
    except (JWTError, ValueError):
        raise NotAuthenticated("Invalid session") from None


class SessionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user: User,
        user_agent: str | None = None,
        ttl: timedelta | None = None,
    ) -> tuple[AuthSession, str]:
        """Persist a new session for the user and return it with its cookie token."""
        ttl = ttl if ttl is not None else timedelta(hours=settings.session_ttl_hours)
        session = AuthSession(
            id=secrets.token_urlsafe(32),
            user_id=user.id,
            user_agent=user_agent[:500] if user_agent else None,
            expires_at=datetime.now(timezone.utc) + ttl,
        )
        self.db.add(session)
        await self.db.flush()
        return session, encode_session_token(session)

    async def get(self, session_id: str) -> Optional[AuthSession]:
        result = await self.db.execute(select(AuthSession).where(AuthSession.id == session_id))
        return result.scalar_one_or_none()

    async def resolve(self, token: str) -> tuple[AuthSession, User]:
        """Map a cookie token to its live session and user."""
        payload = decode_session_token(token)
        session = await self.get(payload.sid)

        if session is None or session.is_revoked or str(session.user_id) != payload.sub:
            raise NotAuthenticated("Invalid session")
        if session.is_expired():
            raise SessionExpired()

        result = await self.db.execute(select(User).where(User.id == session.user_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            raise NotAuthenticated("Invalid session")
        return session, user

    async def revoke(self, session_id: str) -> bool:
        """Revoke a session. Returns False when there was nothing left to revoke."""
        session = await self.get(session_id)
        if session is None or session.is_revoked:
            return False
        session.revoked_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("Revoked session for user %s", session.user_id)
        return True

    async def revoke_token(self, token: str | None) -> bool:
        if not token:
            return False
        try:
            payload = decode_session_token(token, verify_exp=False)
        except NotAuthenticated:
            return False
        return await self.revoke(payload.sid)
