import logging
import re
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from interidesign.exceptions import IdentityConflict
from interidesign.models.identity import UserIdentity
from interidesign.models.user import User
from interidesign.schemas.auth import ProviderIdentity
from interidesign.schemas.user import UserUpdate

logger = logging.getLogger(__name__)

_USERNAME_STRIP = re.compile(r"[^A-Za-z0-9_]")

# A lost insert race is retried once; the second pass finds the winner's row
RECONCILE_ATTEMPTS = 2


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.phone == phone))
        return result.scalar_one_or_none()

    async def get_by_identity(self, provider: str, subject: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .join(UserIdentity, UserIdentity.user_id == User.id)
            .where(UserIdentity.provider == provider, UserIdentity.subject == subject)
        )
        return result.scalar_one_or_none()

    async def list_users(self, limit: int = 100, offset: int = 0) -> tuple[list[User], int]:
        total = await self.db.scalar(select(func.count()).select_from(User))
        result = await self.db.execute(
            select(User).order_by(User.id).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def create(self, user: User) -> User:
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update(self, user: User, user_data: UserUpdate) -> User:
        update_data = user_data.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            setattr(user, field, value)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def set_role(self, user: User, role: str) -> User:
        user.role = role
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update_last_login(self, user: User) -> None:
        user.last_login_at = datetime.now(timezone.utc)
        await self.db.flush()
        await self.db.refresh(user)

    async def generate_username(self, identity: ProviderIdentity) -> str:
        """Derive a free username from the email, phone or provider subject."""
        base = ""
        if identity.email:
            base = _USERNAME_STRIP.sub("", identity.email.split("@")[0])
        if not base and identity.profile.phone:
            base = "user_" + re.sub(r"\D", "", identity.profile.phone)
        if not base or base == "user_":
            base = f"user_{identity.subject[:8]}"

        candidate = base
        counter = 1
        while await self.get_by_username(candidate) is not None:
            candidate = f"{base}{counter}"
            counter += 1
        return candidate

    async def reconcile_identity(
        self, identity: ProviderIdentity, default_role: str
    ) -> tuple[User, bool]:
        """
        Map a verified provider identity onto exactly one canonical user.
        Returns (user, is_new_user).

        Lookup order is (provider, subject), then email. A user found by email
        gets the provider identifier attached. Unique constraints on email,
        username and (provider, subject) decide concurrent first logins: the
        losing insert rolls back and the retry links to the winning row.
        """
        for attempt in range(1, RECONCILE_ATTEMPTS + 1):
            try:
                user = await self._find_for_identity(identity)
                if user is not None:
                    await self._link_and_refresh(user, identity)
                    return user, False
                return await self._create_from_identity(identity, default_role), True
            except IntegrityError:
                await self.db.rollback()
                if attempt == RECONCILE_ATTEMPTS:
                    raise
                logger.info(
                    "Concurrent sign-in for %s identity, retrying lookup", identity.provider
                )
        raise AssertionError("unreachable")

    async def _find_for_identity(self, identity: ProviderIdentity) -> Optional[User]:
        user = await self.get_by_identity(identity.provider, identity.subject)
        if user is not None:
            return user
        if identity.email:
            return await self.get_by_email(identity.email)
        return None

    async def _link_and_refresh(self, user: User, identity: ProviderIdentity) -> None:
        now = datetime.now(timezone.utc)
        linked = next((i for i in user.identities if i.provider == identity.provider), None)

        if linked is None:
            user.identities.append(
                UserIdentity(
                    provider=str(identity.provider),
                    subject=identity.subject,
                    last_used_at=now,
                )
            )
            logger.info("Linked %s identity to user %s", identity.provider, user.id)
        elif linked.subject != identity.subject:
            raise IdentityConflict(
                f"This account is already linked to a different {identity.provider} user"
            )
        else:
            linked.last_used_at = now

        # Only fields the provider actually supplied overwrite the stored profile
        profile = identity.profile
        if profile.display_name:
            user.display_name = profile.display_name
        if profile.avatar_url:
            user.avatar_url = profile.avatar_url
        if profile.phone and user.phone != profile.phone:
            owner = await self.get_by_phone(profile.phone)
            if owner is None:
                user.phone = profile.phone
        if identity.email and not user.email:
            if await self.get_by_email(identity.email) is None:
                user.email = identity.email

        user.last_login_at = now
        await self.db.flush()
        await self.db.refresh(user)

    async def _create_from_identity(self, identity: ProviderIdentity, role: str) -> User:
        now = datetime.now(timezone.utc)
        profile = identity.profile

        phone = profile.phone
        if phone and await self.get_by_phone(phone) is not None:
            phone = None

        display_name = (
            profile.display_name
            or (identity.email.split("@")[0] if identity.email else None)
            or profile.phone
            or "New User"
        )

        user = User(
            username=await self.generate_username(identity),
            display_name=display_name[:100],
            email=identity.email,
            phone=phone,
            avatar_url=profile.avatar_url,
            role=role,
            last_login_at=now,
            identities=[
                UserIdentity(
                    provider=str(identity.provider),
                    subject=identity.subject,
                    last_used_at=now,
                )
            ],
        )
        user = await self.create(user)
        logger.info("Created user %s from %s sign-in", user.id, identity.provider)
        return user
