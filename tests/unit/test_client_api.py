"""Unit tests for ApiClient against an httpx.MockTransport."""

import json

import httpx
import pytest

from client.api import ApiClient, ApiError
from client.auth_state import PROFILE_KEY, TOKEN_KEY, AuthStateSynchronizer
from client.storage import LocalStorage

USER = {
    "id": "507f1f77bcf86cd799439011",
    "email": "jane@example.com",
    "user_name": "jane",
    "is_verified": True,
    "avatar_url": "",
    "role": "user",
}


class Server:
    """Routes requests to canned responses and records what it saw."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, status: int = 200, body=None) -> None:
        self.routes[(method, path)] = httpx.Response(status, json=body if body is not None else {})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes.get(
            (request.method, request.url.path),
            httpx.Response(404, json={"error": "Not found", "code": "not_found"}),
        )


@pytest.fixture
def storage():
    return LocalStorage()


@pytest.fixture
def auth(storage):
    return AuthStateSynchronizer(storage)


@pytest.fixture
def server():
    return Server()


@pytest.fixture
async def api(auth, server):
    async with ApiClient(
        "http://api.test", auth, transport=httpx.MockTransport(server)
    ) as client:
        yield client


class TestLogin:
    async def test_login_commits_session(self, api, auth, server, storage):
        server.on("POST", "/auth/login", body={"token": "jwt-1", "user": USER})

        snapshot = await api.login("jane@example.com", "hunter22")

        assert snapshot.token == "jwt-1"
        assert storage.get_item(TOKEN_KEY) == "jwt-1"
        assert json.loads(storage.get_item(PROFILE_KEY))["user_name"] == "jane"
        assert json.loads(server.requests[0].content) == {
            "email": "jane@example.com",
            "password": "hunter22",
        }
        assert "Authorization" not in server.requests[0].headers

    async def test_register_requiring_verification_marks_pending(self, api, auth, server):
        server.on(
            "POST",
            "/auth/register",
            status=201,
            body={
                "token": "jwt-1",
                "user": {**USER, "is_verified": False},
                "requires_verification": True,
                "verification_sent": True,
            },
        )

        snapshot = await api.register("jane@example.com", "hunter22")

        assert snapshot.is_verified is False
        assert auth.pending_verification_email() == "jane@example.com"
        assert auth.is_authenticated() is False

    async def test_verify_otp_clears_pending(self, api, auth, server):
        auth.mark_pending_verification("jane@example.com")
        server.on("POST", "/auth/verify-otp", body={"token": "jwt-2", "user": USER})

        snapshot = await api.verify_otp("jane@example.com", "123456")

        assert snapshot.is_verified is True
        assert auth.pending_verification_email() is None

    async def test_error_body_surfaced(self, api, server):
        server.on(
            "POST",
            "/auth/verify-otp",
            status=400,
            body={
                "error": "Invalid code",
                "code": "challenge_mismatch",
                "details": {"remaining_attempts": 2},
            },
        )

        with pytest.raises(ApiError) as exc_info:
            await api.verify_otp("jane@example.com", "000000")

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "challenge_mismatch"
        assert exc_info.value.details == {"remaining_attempts": 2}


class TestBearer:
    async def test_requests_carry_token(self, api, auth, server):
        auth.commit_session("jwt-1", USER)
        server.on("GET", "/auth/me", body={"user": USER})

        await api.me()

        assert server.requests[0].headers["Authorization"] == "Bearer jwt-1"

    async def test_401_clears_session(self, api, auth, server):
        auth.commit_session("jwt-1", USER)
        server.on("GET", "/auth/me", status=401, body={"error": "Session expired"})

        with pytest.raises(ApiError) as exc_info:
            await api.me()

        assert exc_info.value.status_code == 401
        assert auth.read_session() is None

    async def test_401_clears_other_tabs(self, api, auth, server, storage):
        other_tab = AuthStateSynchronizer(storage)
        seen = []
        other_tab.subscribe(seen.append)
        auth.commit_session("jwt-1", USER)
        server.on("GET", "/auth/me", status=401, body={"error": "Session expired"})

        with pytest.raises(ApiError):
            await api.me()

        assert seen[-1] is None

    async def test_non_json_error_body(self, api, server):
        server.routes[("GET", "/auth/me")] = httpx.Response(502, text="Bad gateway")
        with pytest.raises(ApiError) as exc_info:
            await api.get("/auth/me")
        assert exc_info.value.status_code == 502
        assert exc_info.value.code is None


class TestProviderCallback:
    async def test_stores_token_then_fetches_profile(self, api, auth, server):
        server.on("GET", "/auth/me", body={"user": USER})

        snapshot = await api.complete_provider_login("jwt-google")

        assert snapshot.token == "jwt-google"
        assert snapshot.profile.user_name == "jane"
        assert server.requests[0].headers["Authorization"] == "Bearer jwt-google"
        assert auth.is_authenticated() is True


class TestLogout:
    async def test_posts_then_clears(self, api, auth, server):
        auth.commit_session("jwt-1", USER)
        server.on("POST", "/auth/logout", body={"success": True})

        await api.logout()

        assert server.requests[0].url.path == "/auth/logout"
        assert auth.read_session() is None

    async def test_clears_even_when_server_fails(self, api, auth, server):
        auth.commit_session("jwt-1", USER)
        server.on("POST", "/auth/logout", status=500, body={"error": "boom"})

        with pytest.raises(ApiError):
            await api.logout()

        assert auth.read_session() is None

    async def test_no_request_without_token(self, api, server):
        await api.logout()
        assert server.requests == []


class TestOtpRequests:
    async def test_forgot_password_passthrough(self, api, server):
        body = {
            "success": True,
            "message": "If the email exists, a reset code has been sent",
            "email": "ghost@example.com",
        }
        server.on("POST", "/auth/forgot-password", body=body)
        assert await api.forgot_password("ghost@example.com") == body

    async def test_resend_throttled(self, api, server):
        server.on(
            "POST",
            "/auth/resend-otp",
            status=429,
            body={"error": "Please wait", "code": "resend_throttled", "details": {"retry_after": 40}},
        )
        with pytest.raises(ApiError) as exc_info:
            await api.resend_otp("jane@example.com")
        assert exc_info.value.details["retry_after"] == 40
