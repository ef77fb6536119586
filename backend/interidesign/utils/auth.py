from collections.abc import Awaitable, Callable
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from interidesign.config import get_settings
from interidesign.database import get_db
from interidesign.exceptions import AuthError, NotAuthenticated, Unauthorized
from interidesign.models.user import User
from interidesign.services.session_service import SessionService

settings = get_settings()

# Non-browser clients may send the session token as a bearer token instead of the cookie
bearer_scheme = HTTPBearer(auto_error=False)


def get_session_tokens(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> list[str]:
    """Candidate session tokens in precedence order: cookie, then bearer header."""
    tokens = []
    cookie_token = request.cookies.get(settings.session_cookie_name)
    if cookie_token:
        tokens.append(cookie_token)
    if credentials and credentials.credentials not in tokens:
        tokens.append(credentials.credentials)
    return tokens


async def get_current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get the user behind the current session.

    The cookie is tried first. When it does not resolve to a live session a
    bearer token, if present, is tried next, and the error of the last
    candidate is raised: NotAuthenticated when no valid session exists,
    SessionExpired when the session has run out.
    Tests replace this dependency through app.dependency_overrides.
    """
    tokens = get_session_tokens(request, credentials)
    if not tokens:
        raise NotAuthenticated()

    sessions = SessionService(db)
    for token in tokens[:-1]:
        try:
            _, user = await sessions.resolve(token)
            return user
        except AuthError:
            continue

    _, user = await sessions.resolve(tokens[-1])
    return user


def require_role(*roles: str) -> Callable[..., Awaitable[User]]:
    """Dependency factory restricting a route to the given roles."""

    async def _check_role(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.role not in roles:
            raise Unauthorized()
        return user

    return _check_role


# Type aliases for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_role("admin"))]
