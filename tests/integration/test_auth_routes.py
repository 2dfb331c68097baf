"""Integration tests for the /auth routes.

The app is wired with in-memory stores and a recording email provider; every
request goes through the real services, dependency graph and error handlers.
"""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from authlib.integrations.starlette_client import OAuthError
from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from config import AppSettings, DatabaseSettings, JWTSettings, OAuthProviderSettings
from dependencies import get_account_repo, get_challenge_repo, get_oauth_providers
from errors import register_error_handlers
from infrastructure.tokens import TokenSigner
from routes.auth_routes import router as auth_router
from fakes import FakeEmailProvider, InMemoryAccountStore, InMemoryChallengeStore

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/")

FRONTEND = "http://frontend.test"
PASSWORD = "hunter22"


def _build_test_app(google_client=None) -> SimpleNamespace:
    settings = AppSettings(
        db=DatabaseSettings(mongodb_uri="mongodb://localhost:27017/"),
        jwt=JWTSettings(jwt_secret="integration-secret"),
        oauth=OAuthProviderSettings(frontend_url=FRONTEND),
    )
    accounts = InMemoryAccountStore()
    challenges = InMemoryChallengeStore()
    mailer = FakeEmailProvider()

    app = FastAPI()
    register_error_handlers(app)
    app.include_router(auth_router)
    app.state.settings = settings
    app.state.db = MagicMock()
    app.state.redis = None
    app.state.token_signer = TokenSigner(settings.jwt)
    app.state.email_provider = mailer

    app.dependency_overrides[get_account_repo] = lambda: accounts
    app.dependency_overrides[get_challenge_repo] = lambda: challenges
    providers = {"google": google_client} if google_client is not None else {}
    app.dependency_overrides[get_oauth_providers] = lambda: providers

    return SimpleNamespace(
        client=TestClient(app),
        accounts=accounts,
        challenges=challenges,
        mailer=mailer,
    )


def _google_client(userinfo=None, error=None):
    client = MagicMock()
    if error is not None:
        client.authorize_access_token = AsyncMock(side_effect=error)
    else:
        client.authorize_access_token = AsyncMock(return_value={"userinfo": userinfo})
    client.authorize_redirect = AsyncMock(
        return_value=RedirectResponse("https://accounts.google.com/o/oauth2/auth?state=x")
    )
    return client


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


@pytest.fixture
def ctx():
    return _build_test_app()


def _register(ctx, email="jane@example.com", user_name=None):
    payload = {"email": email, "password": PASSWORD}
    if user_name:
        payload["user_name"] = user_name
    return ctx.client.post("/auth/register", json=payload)


# ── Registration and login ────────────────────────────────────────────────────


class TestRegister:
    def test_created_with_token_and_pending_verification(self, ctx):
        resp = _register(ctx)

        assert resp.status_code == 201
        body = resp.json()
        assert body["token"]
        assert body["user"]["email"] == "jane@example.com"
        assert body["user"]["user_name"] == "jane"
        assert body["user"]["is_verified"] is False
        assert body["requires_verification"] is True
        assert body["verification_sent"] is True
        assert "password_hash" not in body["user"]
        assert len(ctx.mailer.sent) == 1

    def test_duplicate_email(self, ctx):
        _register(ctx)
        resp = _register(ctx)
        assert resp.status_code == 409
        assert resp.json()["code"] == "conflict"

    def test_invalid_email(self, ctx):
        resp = ctx.client.post("/auth/register", json={"email": "nope", "password": PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["field"] == "email"

    def test_missing_fields(self, ctx):
        resp = ctx.client.post("/auth/register", json={"email": "jane@example.com"})
        assert resp.status_code == 422


class TestLogin:
    def test_unverified_login_requires_verification(self, ctx):
        _register(ctx)
        resp = ctx.client.post(
            "/auth/login", json={"email": "jane@example.com", "password": PASSWORD}
        )
        assert resp.status_code == 200
        assert resp.json()["requires_verification"] is True

    def test_wrong_password(self, ctx):
        _register(ctx)
        resp = ctx.client.post(
            "/auth/login", json={"email": "jane@example.com", "password": "wrong-pass"}
        )
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid credentials", "code": "authentication_error"}


# ── Email verification ────────────────────────────────────────────────────────


class TestVerification:
    def test_verify_then_me(self, ctx):
        _register(ctx)

        resp = ctx.client.post(
            "/auth/verify-otp",
            json={"email": "jane@example.com", "code": ctx.mailer.last_code},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["is_verified"] is True
        assert body["requires_verification"] is False
        me = ctx.client.get("/auth/me", headers=_bearer(body["token"]))
        assert me.json()["user"]["is_verified"] is True

    def test_wrong_code_reports_remaining_attempts(self, ctx):
        _register(ctx)
        resp = ctx.client.post(
            "/auth/verify-otp",
            json={"email": "jane@example.com", "code": _wrong(ctx.mailer.last_code)},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "challenge_mismatch"
        assert resp.json()["details"] == {"remaining_attempts": 4}

    def test_exhausted_after_five_wrong_codes(self, ctx):
        _register(ctx)
        code = ctx.mailer.last_code
        for _ in range(5):
            resp = ctx.client.post(
                "/auth/verify-otp",
                json={"email": "jane@example.com", "code": _wrong(code)},
            )
        assert resp.status_code == 429
        assert resp.json()["code"] == "challenge_exhausted"

    def test_code_without_challenge(self, ctx):
        resp = ctx.client.post(
            "/auth/verify-otp", json={"email": "ghost@example.com", "code": "123456"}
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "challenge_not_found"

    def test_resend_inside_cooldown_sets_retry_after(self, ctx):
        _register(ctx)

        resp = ctx.client.post("/auth/resend-otp", json={"email": "jane@example.com"})

        assert resp.status_code == 429
        retry_after = int(resp.headers["Retry-After"])
        assert 0 < retry_after <= 60
        assert resp.json()["details"]["retry_after"] == retry_after

    def test_send_otp(self, ctx):
        ctx.accounts.seed(email="jane@example.com", user_name="jane")
        resp = ctx.client.post("/auth/send-otp", json={"email": "jane@example.com"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["expires_in"] == 600
        assert body["delivered"] is True
        assert "code" not in body

    def test_send_otp_unknown_email(self, ctx):
        resp = ctx.client.post("/auth/send-otp", json={"email": "ghost@example.com"})
        assert resp.status_code == 404


# ── Password reset ────────────────────────────────────────────────────────────


class TestPasswordReset:
    def test_same_response_for_known_and_unknown_email(self, ctx):
        ctx.accounts.seed(email="jane@example.com", user_name="jane", password_hash="x")

        known = ctx.client.post("/auth/forgot-password", json={"email": "jane@example.com"})
        unknown = ctx.client.post("/auth/forgot-password", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        strip = lambda b: {k: v for k, v in b.items() if k != "email"}  # noqa: E731
        assert strip(known.json()) == strip(unknown.json())
        assert len(ctx.mailer.sent) == 1

    def test_reset_flow(self, ctx):
        _register(ctx)
        ctx.client.post("/auth/forgot-password", json={"email": "jane@example.com"})

        resp = ctx.client.post(
            "/auth/reset-password",
            json={
                "email": "jane@example.com",
                "code": ctx.mailer.last_code,
                "password": "brand-new-pass",
            },
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Password reset successfully"}
        login = ctx.client.post(
            "/auth/login", json={"email": "jane@example.com", "password": "brand-new-pass"}
        )
        assert login.status_code == 200


# ── Session ───────────────────────────────────────────────────────────────────


class TestSession:
    def test_me_requires_token(self, ctx):
        assert ctx.client.get("/auth/me").status_code == 401

    def test_me_rejects_garbage_token(self, ctx):
        assert ctx.client.get("/auth/me", headers=_bearer("garbage")).status_code == 401

    def test_logout_marks_offline(self, ctx):
        token = _register(ctx).json()["token"]

        resp = ctx.client.post("/auth/logout", headers=_bearer(token))

        assert resp.status_code == 200
        account = next(iter(ctx.accounts.docs.values()))
        assert account.is_online is False
        assert account.last_seen is not None


# ── Google sign-in ────────────────────────────────────────────────────────────


class TestGoogleNotConfigured:
    def test_status(self, ctx):
        resp = ctx.client.get("/auth/google/status")
        assert resp.json() == {"enabled": False, "message": "Google sign-in is not configured"}

    def test_login_501(self, ctx):
        resp = ctx.client.get("/auth/google", follow_redirects=False)
        assert resp.status_code == 501
        assert resp.json()["code"] == "provider_not_configured"

    def test_callback_redirects_with_error(self, ctx):
        resp = ctx.client.get("/auth/google/callback", follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == f"{FRONTEND}/login?error=google_not_configured"


class TestGoogleCallback:
    USERINFO = {
        "sub": "google-42",
        "email": "a@x.com",
        "email_verified": True,
        "name": "Someone Else",
        "picture": "https://img.test/a.png",
    }

    def test_status_enabled(self):
        ctx = _build_test_app(_google_client(self.USERINFO))
        assert ctx.client.get("/auth/google/status").json()["enabled"] is True

    def test_login_redirects_to_provider(self):
        google = _google_client(self.USERINFO)
        ctx = _build_test_app(google)
        resp = ctx.client.get("/auth/google", follow_redirects=False)
        assert resp.status_code in (302, 307)
        assert resp.headers["location"].startswith("https://accounts.google.com/")
        _, redirect_uri = google.authorize_redirect.call_args[0]
        assert redirect_uri.endswith("/auth/google/callback")

    def test_links_existing_password_account(self):
        ctx = _build_test_app(_google_client(self.USERINFO))
        _register(ctx, email="a@x.com", user_name="alice")

        resp = ctx.client.get("/auth/google/callback?code=abc&state=x", follow_redirects=False)

        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert f"{location.scheme}://{location.netloc}" == FRONTEND
        assert location.path == "/auth/callback"
        token = parse_qs(location.query)["token"][0]

        user = ctx.client.get("/auth/me", headers=_bearer(token)).json()["user"]
        assert user["user_name"] == "alice"
        assert user["is_verified"] is True
        assert user["email"] == "a@x.com"
        assert len(ctx.accounts.docs) == 1

    def test_creates_new_account(self):
        ctx = _build_test_app(_google_client(self.USERINFO))
        resp = ctx.client.get("/auth/google/callback?code=abc", follow_redirects=False)
        token = parse_qs(urlparse(resp.headers["location"]).query)["token"][0]
        user = ctx.client.get("/auth/me", headers=_bearer(token)).json()["user"]
        assert user["user_name"] == "someoneelse"
        assert user["avatar_url"] == "https://img.test/a.png"

    def test_provider_error_param(self):
        ctx = _build_test_app(_google_client(self.USERINFO))
        resp = ctx.client.get("/auth/google/callback?error=access_denied", follow_redirects=False)
        assert resp.headers["location"] == f"{FRONTEND}/login?error=google_auth_failed"

    def test_state_mismatch(self):
        ctx = _build_test_app(_google_client(error=OAuthError(error="mismatching_state")))
        resp = ctx.client.get("/auth/google/callback?code=abc", follow_redirects=False)
        assert resp.headers["location"] == f"{FRONTEND}/login?error=google_auth_failed"

    def test_unverified_provider_email(self):
        userinfo = {**self.USERINFO, "email_verified": False}
        ctx = _build_test_app(_google_client(userinfo))
        resp = ctx.client.get("/auth/google/callback?code=abc", follow_redirects=False)
        assert resp.headers["location"] == f"{FRONTEND}/login?error=identity_ambiguous"
        assert ctx.accounts.docs == {}
