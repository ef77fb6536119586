from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from interidesign.config import get_settings
from interidesign.exceptions import NotAuthenticated, SessionExpired
from interidesign.models import AuthSession, User
from interidesign.services.session_service import SessionService, decode_session_token

settings = get_settings()


async def _count_users(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(User))


class TestSessionToken:
    """Tests for session token creation and validation."""

    @pytest.mark.asyncio
    async def test_create_session_token(self, db_session, test_user):
        session, token = await SessionService(db_session).create(test_user)
        payload = decode_session_token(token)
        assert payload.sub == str(test_user.id)
        assert payload.sid == session.id

    @pytest.mark.asyncio
    async def test_decode_expired_token(self, db_session, test_user):
        """Expired tokens are reported as an expired session, not a generic failure."""
        _, token = await SessionService(db_session).create(test_user, ttl=timedelta(hours=-1))
        with pytest.raises(SessionExpired):
            decode_session_token(token)

    def test_decode_garbage_token(self):
        with pytest.raises(NotAuthenticated):
            decode_session_token("not-a-token")


class TestPasswordLogin:
    @pytest.mark.asyncio
    async def test_login_sets_http_only_cookie(self, password, client: AsyncClient, test_user):
        response = await client.post(
            "/api/auth/login",
            json={"username": test_user.username, "password": password},
        )
        assert response.status_code == 200
        assert response.json()["user"]["id"] == test_user.id

        set_cookie = response.headers["set-cookie"]
        assert settings.session_cookie_name in set_cookie
        assert "httponly" in set_cookie.lower()

    @pytest.mark.asyncio
    async def test_login_with_email(self, password, client: AsyncClient, test_user):
        response = await client.post(
            "/api/auth/login",
            json={"username": test_user.email, "password": password},
        )
        assert response.status_code == 200
        assert response.json()["user"]["username"] == test_user.username

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, client: AsyncClient, test_user):
        response = await client.post(
            "/api/auth/login",
            json={"username": test_user.username, "password": "wrong-password"},
        )
        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"
        assert "message" in response.json()

    @pytest.mark.asyncio
    async def test_login_unknown_user(self, password, client: AsyncClient):
        response = await client.post(
            "/api/auth/login", json={"username": "nobody", "password": password}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"

    @pytest.mark.asyncio
    async def test_login_provider_only_account(self, password, client: AsyncClient, make_user):
        """Accounts created through a provider have no local password to match."""
        user = await make_user(hashed_password=None)
        response = await client.post(
            "/api/auth/login", json={"username": user.username, "password": password}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_login_inactive_account(self, password, client: AsyncClient, make_user):
        user = await make_user(is_active=False)
        response = await client.post(
            "/api/auth/login", json={"username": user.username, "password": password}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_creates_user_and_session(self, password, client: AsyncClient):
        response = await client.post(
            "/api/auth/register",
            json={
                "username": "lena",
                "password": password,
                "email": "Lena@Studio.com",
                "full_name": "Lena Park",
                "company": "Park Interiors",
            },
        )
        assert response.status_code == 201
        user = response.json()["user"]
        assert user["email"] == "lena@studio.com"
        assert user["display_name"] == "Lena Park"
        assert user["role"] == settings.default_user_role

        me = await client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["user"]["id"] == user["id"]

    @pytest.mark.asyncio
    async def test_register_duplicate_username(
        self, password, client: AsyncClient, db_session, test_user
    ):
        before = await _count_users(db_session)
        response = await client.post(
            "/api/auth/register",
            json={
                "username": test_user.username,
                "password": password,
                "email": "fresh@example.com",
                "full_name": "Someone Else",
            },
        )
        assert response.status_code == 409
        assert response.json()["code"] == "duplicate_username"
        assert await _count_users(db_session) == before

    @pytest.mark.asyncio
    async def test_register_duplicate_email(
        self, password, client: AsyncClient, db_session, test_user
    ):
        before = await _count_users(db_session)
        response = await client.post(
            "/api/auth/register",
            json={
                "username": "brand_new",
                "password": password,
                "email": test_user.email.upper(),
                "full_name": "Someone Else",
            },
        )
        assert response.status_code == 409
        assert response.json()["code"] == "duplicate_email"
        assert await _count_users(db_session) == before

    @pytest.mark.asyncio
    async def test_register_cannot_choose_role(self, password, client: AsyncClient):
        response = await client.post(
            "/api/auth/register",
            json={
                "username": "sneaky",
                "password": password,
                "email": "sneaky@example.com",
                "full_name": "Sneaky",
                "role": "admin",
            },
        )
        assert response.status_code == 201
        assert response.json()["user"]["role"] == settings.default_user_role

    @pytest.mark.asyncio
    async def test_register_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={"username": "abc"})
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_then_me_is_unauthenticated(
        self, password, client: AsyncClient, test_user
    ):
        await client.post(
            "/api/auth/login",
            json={"username": test_user.username, "password": password},
        )
        assert (await client.get("/api/auth/me")).status_code == 200

        response = await client.post("/api/auth/logout")
        assert response.status_code == 200

        me = await client.get("/api/auth/me")
        assert me.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_revokes_server_session(
        self, client: AsyncClient, db_session, auth_headers
    ):
        """A copied token is useless after logout even though its JWT has not expired."""
        response = await client.post("/api/auth/logout", headers=auth_headers)
        assert response.status_code == 200

        me = await client.get("/api/auth/me", headers=auth_headers)
        assert me.status_code == 401
        assert me.json()["code"] == "not_authenticated"

        revoked = await db_session.scalar(
            select(func.count()).select_from(AuthSession).where(AuthSession.revoked_at.is_not(None))
        )
        assert revoked == 1

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, client: AsyncClient, auth_headers):
        first = await client.post("/api/auth/logout", headers=auth_headers)
        second = await client.post("/api/auth/logout", headers=auth_headers)
        anonymous = await client.post("/api/auth/logout")
        assert first.status_code == second.status_code == anonymous.status_code == 200


class TestMe:
    @pytest.mark.asyncio
    async def test_unauthenticated_request_fails(self, client: AsyncClient):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["code"] == "not_authenticated"

    @pytest.mark.asyncio
    async def test_invalid_token_fails(self, client: AsyncClient):
        response = await client.get(
            "/api/auth/me", headers={"Authorization": "Bearer invalid-token"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_token_succeeds(self, client: AsyncClient, test_user, auth_headers):
        response = await client.get("/api/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["user"]["email"] == test_user.email

    @pytest.mark.asyncio
    async def test_expired_session(self, client: AsyncClient, db_session, test_user):
        _, token = await SessionService(db_session).create(test_user, ttl=timedelta(seconds=-5))
        await db_session.commit()

        response = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "session_expired"

    @pytest.mark.asyncio
    async def test_stale_cookie_falls_back_to_bearer(
        self, client: AsyncClient, test_user, auth_headers
    ):
        headers = {**auth_headers, "Cookie": f"{settings.session_cookie_name}=stale-token"}
        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["user"]["id"] == test_user.id

    @pytest.mark.asyncio
    async def test_valid_cookie_wins_over_bearer(
        self, client: AsyncClient, db_session, test_user, make_user
    ):
        other = await make_user()
        _, cookie_token = await SessionService(db_session).create(test_user)
        _, bearer_token = await SessionService(db_session).create(other)
        await db_session.commit()

        response = await client.get(
            "/api/auth/me",
            headers={
                "Authorization": f"Bearer {bearer_token}",
                "Cookie": f"{settings.session_cookie_name}={cookie_token}",
            },
        )
        assert response.json()["user"]["id"] == test_user.id

    @pytest.mark.asyncio
    async def test_stale_cookie_and_bad_bearer(self, client: AsyncClient):
        response = await client.get(
            "/api/auth/me",
            headers={
                "Authorization": "Bearer also-invalid",
                "Cookie": f"{settings.session_cookie_name}=stale-token",
            },
        )
        assert response.status_code == 401
        assert response.json()["code"] == "not_authenticated"

    @pytest.mark.asyncio
    async def test_logout_revokes_cookie_and_bearer_sessions(
        self, client: AsyncClient, db_session, test_user
    ):
        _, cookie_token = await SessionService(db_session).create(test_user)
        _, bearer_token = await SessionService(db_session).create(test_user)
        await db_session.commit()

        response = await client.post(
            "/api/auth/logout",
            headers={
                "Authorization": f"Bearer {bearer_token}",
                "Cookie": f"{settings.session_cookie_name}={cookie_token}",
            },
        )
        assert response.status_code == 200

        for token in (cookie_token, bearer_token):
            me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
            assert me.status_code == 401

    @pytest.mark.asyncio
    async def test_auth_status(self, client: AsyncClient):
        response = await client.get("/api/auth/status")
        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "dev"
        assert "password" in data["providers"]
