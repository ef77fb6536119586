import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from interidesign.config import get_settings
from interidesign.exceptions import DuplicateEmail, DuplicateUsername, InvalidCredentials
from interidesign.models.session import AuthSession
from interidesign.models.user import User
from interidesign.schemas.auth import ProviderIdentity
from interidesign.schemas.user import UserCreate
from interidesign.services.session_service import SessionService
from interidesign.services.user_service import UserService
from interidesign.utils.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class AuthResult:
    user: User
    session: AuthSession
    token: str
    is_new_user: bool = False


class AuthService:
    """Single entry point for every sign-in method; each one ends in a new session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserService(db)
        self.sessions = SessionService(db)

    async def _issue(self, user: User, user_agent: str | None, is_new: bool) -> AuthResult:
        session, token = await self.sessions.create(user, user_agent=user_agent)
        return AuthResult(user=user, session=session, token=token, is_new_user=is_new)

    async def authenticate_by_password(
        self, username: str, password: str, user_agent: str | None = None
    ) -> AuthResult:
        user = await self.users.get_by_username(username)
        if user is None and "@" in username:
            user = await self.users.get_by_email(username)

        if user is None or not verify_password(password, user.hashed_password):
            logger.info("Failed password login for %r", username)
            raise InvalidCredentials()
        if not user.is_active:
            raise InvalidCredentials("This account has been deactivated")

        await self.users.update_last_login(user)
        return await self._issue(user, user_agent, is_new=False)

    async def authenticate_by_external_token(
        self, identity: ProviderIdentity, user_agent: str | None = None
    ) -> AuthResult:
        """Reconcile an already-verified provider identity and start a session."""
        user, is_new = await self.users.reconcile_identity(
            identity, default_role=settings.default_user_role
        )
        if not user.is_active:
            raise InvalidCredentials("This account has been deactivated")
        return await self._issue(user, user_agent, is_new=is_new)

    async def register(self, user_data: UserCreate, user_agent: str | None = None) -> AuthResult:
        email = user_data.email.lower()
        if await self.users.get_by_username(user_data.username) is not None:
            raise DuplicateUsername()
        if await self.users.get_by_email(email) is not None:
            raise DuplicateEmail()

        try:
            user = await self.users.create(
                User(
                    username=user_data.username,
                    display_name=user_data.full_name,
                    email=email,
                    company=user_data.company,
                    role=settings.default_user_role,
                    hashed_password=hash_password(user_data.password),
                    identities=[],
                )
            )
        except IntegrityError:
            # Lost a race against a concurrent registration
            await self.db.rollback()
            if await self.users.get_by_username(user_data.username) is not None:
                raise DuplicateUsername() from None
            raise DuplicateEmail() from None
        logger.info("Registered user %s", user.id)
        await self.users.update_last_login(user)
        return await self._issue(user, user_agent, is_new=True)

    async def logout(self, token: str | None) -> bool:
        return await self.sessions.revoke_token(token)
