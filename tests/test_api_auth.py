"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/* and /api/v1/users/*.

Covers:
  - full register -> login -> logout -> logout-again flow over HTTP
  - SessionError -> HTTP status mapping (400/401/404/409/500)
  - wrong-typed bodies -> 400 validation_error
  - Cache-Control: no-store on token-bearing responses
  - access-token refresh without rotation
  - Bearer middleware: missing 401, expired 401, forged 403, refresh-as-access 403
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from auth.errors import StorageError

PASSWORD = "longpass1"


def _register(client, email: str, full_name: str = "Ann Lee", password: str = PASSWORD):
    return client.post(
        "/api/v1/auth/register",
        json={"full_name": full_name, "email": email, "password": password},
    )


def _login(client, email: str, password: str = PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


@pytest.fixture
def session(api_client, new_email):
    """Register and log in a fresh user; return (user_json, tokens_json)."""
    client, _ = api_client
    email = new_email("ann")
    user = _register(client, email).json()
    tokens = _login(client, email).json()
    return user, tokens


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# End-to-end flow
# ---------------------------------------------------------------------------


class TestSessionFlow:
    def test_register_login_logout(self, api_client, new_email) -> None:
        client, core = api_client
        email = new_email("ann")

        resp = _register(client, email)
        assert resp.status_code == 201
        user = resp.json()
        assert user["email"] == email
        assert user["full_name"] == "Ann Lee"
        assert "password" not in user
        assert "hashed_password" not in user

        resp = _login(client, email)
        assert resp.status_code == 200
        tokens = resp.json()
        assert tokens["accessToken"] and tokens["refreshToken"]
        assert tokens["accessToken"] != tokens["refreshToken"]
        assert core.whitelist.exists(user["id"], tokens["refreshToken"])

        body = {"user_id": user["id"], "refresh_token": tokens["refreshToken"]}
        resp = client.post("/api/v1/auth/logout", json=body)
        assert resp.status_code == 200
        assert resp.json() == body
        assert not core.whitelist.exists(user["id"], tokens["refreshToken"])

        resp = client.post("/api/v1/auth/logout", json=body)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "refresh_token_not_whitelisted"

    def test_login_sets_no_store(self, api_client, new_email) -> None:
        client, _ = api_client
        email = new_email()
        _register(client, email)
        resp = _login(client, email)
        assert resp.headers["cache-control"] == "no-store"


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestRegisterErrors:
    def test_missing_field(self, api_client, new_email) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/register", json={"email": new_email(), "password": PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "all_fields_required"

    def test_invalid_email(self, api_client) -> None:
        client, _ = api_client
        resp = _register(client, "not-an-email")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_email_format"

    def test_short_password(self, api_client, new_email) -> None:
        client, _ = api_client
        resp = _register(client, new_email(), password="short1")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_too_short"

    def test_duplicate_email_any_case(self, api_client, new_email) -> None:
        client, _ = api_client
        email = new_email()
        assert _register(client, email).status_code == 201
        resp = _register(client, email.upper(), full_name="Other")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_exists"

    def test_wrong_type_is_validation_error(self, api_client, new_email) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"full_name": ["Ann"], "email": new_email(), "password": PASSWORD},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestLoginErrors:
    def test_unknown_email_and_wrong_password_match(self, api_client, new_email) -> None:
        client, _ = api_client
        email = new_email()
        _register(client, email)
        wrong_password = _login(client, email, password="wrongpass1")
        unknown_email = _login(client, new_email("ghost"))
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "invalid_credentials"

    def test_missing_fields(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/login", json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "all_fields_required"

    def test_storage_failure_is_500(self, api_client, new_email, monkeypatch) -> None:
        client, core = api_client
        email = new_email()
        _register(client, email)

        def broken_insert(*args, **kwargs):
            raise StorageError()

        monkeypatch.setattr(core.whitelist, "insert", broken_insert)
        resp = _login(client, email)
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "storage_failure"
        assert error["message"] == "An unexpected error occurred."
        assert "accessToken" not in resp.text


class TestLogoutErrors:
    def test_missing_fields(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/logout", json={"user_id": 1})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "logout_fields_required"

    def test_non_integer_user_id(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/logout", json={"user_id": "ann", "refresh_token": "tok"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_another_users_token(self, api_client, session, new_email) -> None:
        client, core = api_client
        user, tokens = session
        other = _register(client, new_email("bob"), full_name="Bob").json()
        resp = client.post(
            "/api/v1/auth/logout",
            json={"user_id": other["id"], "refresh_token": tokens["refreshToken"]},
        )
        assert resp.status_code == 401
        assert core.whitelist.exists(user["id"], tokens["refreshToken"])


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_issues_access_token(self, api_client, session) -> None:
        client, core = api_client
        user, tokens = session
        resp = client.post(
            "/api/v1/auth/refresh",
            json={"user_id": user["id"], "refresh_token": tokens["refreshToken"]},
        )
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        access = resp.json()["accessToken"]
        assert core.codec.verify(access).user_id == user["id"]
        # Not rotated: the same refresh token still works.
        assert core.whitelist.exists(user["id"], tokens["refreshToken"])

    def test_refresh_after_logout(self, api_client, session) -> None:
        client, _ = api_client
        user, tokens = session
        body = {"user_id": user["id"], "refresh_token": tokens["refreshToken"]}
        client.post("/api/v1/auth/logout", json=body)
        resp = client.post("/api/v1/auth/refresh", json=body)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "refresh_token_not_whitelisted"


# ---------------------------------------------------------------------------
# Bearer-protected user routes
# ---------------------------------------------------------------------------


class TestUserRoutes:
    def test_details(self, api_client, session) -> None:
        client, _ = api_client
        user, tokens = session
        resp = client.get("/api/v1/users/details", headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 200
        assert resp.json() == user

    def test_user_by_id(self, api_client, session) -> None:
        client, _ = api_client
        user, tokens = session
        resp = client.get(f"/api/v1/users/{user['id']}", headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 200
        assert resp.json()["email"] == user["email"]

    def test_list_users(self, api_client, session) -> None:
        client, _ = api_client
        user, tokens = session
        resp = client.get("/api/v1/users", headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 200
        listed = resp.json()
        assert user in listed
        assert all(set(u) == {"id", "full_name", "email", "created_at"} for u in listed)

    def test_list_users_requires_token(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/users")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_missing"

    def test_unknown_user_is_404(self, api_client, session) -> None:
        client, _ = api_client
        _, tokens = session
        resp = client.get("/api/v1/users/987654", headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "unknown_user"

    def test_missing_token(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/users/details")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_missing"

    def test_expired_token(self, api_client, session) -> None:
        client, core = api_client
        user, _ = session
        stale = core.codec.sign_access_token(user["id"], issued_at=datetime.now(timezone.utc) - timedelta(hours=1))
        resp = client.get("/api/v1/users/details", headers=_bearer(stale))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"

    def test_forged_token(self, api_client, session) -> None:
        client, _ = api_client
        _, tokens = session
        resp = client.get("/api/v1/users/details", headers=_bearer(tokens["accessToken"] + "x"))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_signature"

    def test_refresh_token_is_not_an_access_token(self, api_client, session) -> None:
        client, _ = api_client
        _, tokens = session
        resp = client.get("/api/v1/users/details", headers=_bearer(tokens["refreshToken"]))
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------


class TestMiddlewareOrder:
    def test_outermost_to_innermost(self, api_client) -> None:
        """user_middleware lists the stack outermost first; the last one added runs first."""
        client, _ = api_client
        stack = [m.cls for m in client.app.user_middleware]
        assert stack == [BaseHTTPMiddleware, CORSMiddleware, TrustedHostMiddleware]
