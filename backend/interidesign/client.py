"""Client-side session state for front-ends talking to the auth API.

SessionStateHolder caches "who is signed in" and exposes one method per
sign-in flow. It mirrors what the web UI's auth context does: check for an
existing session on start-up, swap the cached principal on every login, wipe
cached application data when the principal changes, and send the user back to
the login page on logout or when the session expires.
"""

import enum
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from interidesign.exceptions import ERRORS_BY_CODE, AuthError, SessionExpired
from interidesign.schemas.auth import (
    Credential,
    OAuthCredential,
    PasswordCredential,
    PhoneCredential,
)
from interidesign.schemas.user import UserResponse

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"


class AuthState(enum.StrEnum):
    unknown = "unknown"
    authenticated = "authenticated"
    unauthenticated = "unauthenticated"


class AuthOperationInProgress(Exception):
    """Raised when a second auth operation starts while one is still running."""


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"


Notifier = Callable[[Notification], None]


class SessionStateHolder:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        notify: Optional[Notifier] = None,
        clear_cache: Optional[Callable[[], None]] = None,
        navigate: Optional[Callable[[str], None]] = None,
        provider_sign_out: Optional[Callable[[], None]] = None,
    ):
        self.http = http
        self._notify = notify
        self._clear_cache = clear_cache
        self._navigate = navigate
        self._provider_sign_out = provider_sign_out
        self._in_flight = False

        self.state = AuthState.unknown
        self.user: Optional[UserResponse] = None

    @property
    def is_loading(self) -> bool:
        return self.state == AuthState.unknown or self._in_flight

    @property
    def is_authenticated(self) -> bool:
        return self.state == AuthState.authenticated

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        # Reject rather than queue so a stale response can never overwrite a newer user
        if self._in_flight:
            raise AuthOperationInProgress("Another sign-in operation is already in progress")
        self._in_flight = True
        try:
            yield
        finally:
            self._in_flight = False

    def _emit(self, title: str, description: str, variant: str = "default") -> None:
        if self._notify:
            self._notify(Notification(title=title, description=description, variant=variant))

    def _go(self, path: str) -> None:
        if self._navigate:
            self._navigate(path)

    def _set_authenticated(self, user: UserResponse) -> None:
        # A different principal may see different data
        if self._clear_cache:
            self._clear_cache()
        self.user = user
        self.state = AuthState.authenticated

    def _set_unauthenticated(self) -> None:
        self.user = None
        self.state = AuthState.unauthenticated

    @staticmethod
    def _error_from(response: httpx.Response) -> AuthError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            # Proxies and gateways may answer with arbitrary JSON
            body = {}
        message = body.get("message")
        if not isinstance(message, str) or not message:
            message = f"Request failed with status {response.status_code}"
        code = body.get("code")
        error_cls = ERRORS_BY_CODE.get(code, AuthError) if isinstance(code, str) else AuthError
        error = error_cls(message)
        error.status_code = response.status_code
        return error

    async def _post_for_user(self, path: str, payload: dict[str, Any]) -> UserResponse:
        response = await self.http.post(path, json=payload)
        if response.is_error:
            raise self._error_from(response)
        return UserResponse.model_validate(response.json()["user"])

    async def _run_auth(self, title: str, path: str, payload: dict[str, Any]) -> UserResponse:
        async with self._exclusive():
            try:
                user = await self._post_for_user(path, payload)
            except (AuthError, httpx.HTTPError) as e:
                description = e.message if isinstance(e, AuthError) else "Network error"
                self._emit(f"{title} failed", description, variant="destructive")
                raise
            self._set_authenticated(user)
            self._emit(f"{title} successful", f"Welcome, {user.display_name}!")
            return user

    async def refresh(self) -> Optional[UserResponse]:
        """
        Resolve the cached user from the server's view of the session.

        Runs exclusively like the sign-in operations, so a slow /me response
        can never replace a user that a concurrent login just stored.
        """
        async with self._exclusive():
            try:
                response = await self.http.get("/api/auth/me")
            except httpx.HTTPError as e:
                logger.error("Failed to check auth status: %s", e)
                self._set_unauthenticated()
                return None

            if response.is_success:
                self.user = UserResponse.model_validate(response.json()["user"])
                self.state = AuthState.authenticated
                return self.user

            error = self._error_from(response)
            self._set_unauthenticated()
            if isinstance(error, SessionExpired):
                self.handle_session_expired(error)
            return None

    def handle_session_expired(self, error: Optional[SessionExpired] = None) -> None:
        """Drop the cached user and send the user to login; never retried silently."""
        self._set_unauthenticated()
        message = error.message if error else SessionExpired.default_message
        self._emit("Session expired", message, variant="destructive")
        self._go(LOGIN_PATH)

    async def login(self, username: str, password: str) -> UserResponse:
        return await self._run_auth(
            "Login", "/api/auth/login", {"username": username, "password": password}
        )

    async def register(
        self,
        username: str,
        password: str,
        email: str,
        full_name: str,
        company: Optional[str] = None,
    ) -> UserResponse:
        payload = {
            "username": username,
            "password": password,
            "email": email,
            "full_name": full_name,
            "company": company,
        }
        return await self._run_auth("Registration", "/api/auth/register", payload)

    async def login_with_external_provider(
        self, credential: Union[PhoneCredential, OAuthCredential]
    ) -> UserResponse:
        if isinstance(credential, PhoneCredential):
            path = "/api/auth/firebase-auth"
        else:
            path = "/api/auth/supabase-auth"
        payload = credential.model_dump(exclude={"kind"}, exclude_none=True)
        return await self._run_auth("Login", path, payload)

    async def authenticate(self, credential: Credential) -> UserResponse:
        if isinstance(credential, PasswordCredential):
            return await self.login(credential.username, credential.password)
        return await self.login_with_external_provider(credential)

    async def logout(self) -> None:
        async with self._exclusive():
            try:
                response = await self.http.post("/api/auth/logout")
                if response.is_error:
                    logger.warning("Logout returned HTTP %s", response.status_code)
            except httpx.HTTPError as e:
                # Local state is cleared regardless; the server session will expire
                logger.warning("Logout request failed: %s", e)

            if self._provider_sign_out:
                self._provider_sign_out()
            if self._clear_cache:
                self._clear_cache()
            self._set_unauthenticated()
            self._emit("Logged out", "You have been signed out.")
            self._go(LOGIN_PATH)
