"""
Client for the /auth API that keeps the tab's session in step.

Every request carries the stored bearer token. A 401 means the server no
longer accepts it, so the session is cleared for all tabs before the error
is raised.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from client.auth_state import AuthStateSynchronizer, SessionSnapshot
from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)


class ApiError(Exception):
    """Non-2xx response; carries the server's ``{"error", "code", ...}`` body."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details

    @classmethod
    def from_response(cls, resp: httpx.Response) -> "ApiError":
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return cls(
            resp.status_code,
            body.get("error") or resp.reason_phrase or "Request failed",
            code=body.get("code"),
            details=body.get("details"),
        )


class ApiClient:
    def __init__(
        self,
        base_url: str,
        auth: AuthStateSynchronizer,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._auth = auth
        self._http = HttpClient(timeout, base_url=base_url, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def request(self, method: str, path: str, **kwargs: Any) -> dict:
        headers = dict(kwargs.pop("headers", None) or {})
        token = self._auth.current_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        resp = await self._http.request(method, path, headers=headers, **kwargs)
        if resp.status_code == 401 and token:
            log.info("session_rejected", path=path)
            self._auth.clear_session()
        if resp.is_error:
            raise ApiError.from_response(resp)
        return resp.json() if resp.content else {}

    async def get(self, path: str, **kwargs: Any) -> dict:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> dict:
        return await self.request("POST", path, **kwargs)

    # ── auth flows ────────────────────────────────────────────────────────────

    def _adopt(self, data: dict) -> SessionSnapshot:
        snapshot = self._auth.commit_session(data["token"], data["user"])
        if data.get("requires_verification"):
            self._auth.mark_pending_verification(data["user"]["email"])
        return snapshot

    async def register(
        self, email: str, password: str, user_name: Optional[str] = None
    ) -> SessionSnapshot:
        payload = {"email": email, "password": password}
        if user_name:
            payload["user_name"] = user_name
        return self._adopt(await self.post("/auth/register", json=payload))

    async def login(self, email: str, password: str) -> SessionSnapshot:
        return self._adopt(
            await self.post("/auth/login", json={"email": email, "password": password})
        )

    async def send_otp(self, email: str) -> dict:
        return await self.post("/auth/send-otp", json={"email": email})

    async def resend_otp(self, email: str) -> dict:
        return await self.post("/auth/resend-otp", json={"email": email})

    async def verify_otp(self, email: str, code: str) -> SessionSnapshot:
        data = await self.post("/auth/verify-otp", json={"email": email, "code": code})
        return self._adopt(data)

    async def forgot_password(self, email: str) -> dict:
        return await self.post("/auth/forgot-password", json={"email": email})

    async def reset_password(self, email: str, code: str, password: str) -> dict:
        return await self.post(
            "/auth/reset-password",
            json={"email": email, "code": code, "password": password},
        )

    async def me(self) -> SessionSnapshot:
        data = await self.get("/auth/me")
        if self._auth.current_token() is None:
            # cleared by another tab while the request was in flight
            raise ApiError(401, "Session ended")
        self._auth.update_profile(data["user"])
        return self._auth.read_session()

    async def complete_provider_login(self, token: str) -> SessionSnapshot:
        """Adopt the token handed back by /auth/google/callback and fetch its profile."""
        self._auth.store_token(token)
        return await self.me()

    async def logout(self) -> None:
        try:
            if self._auth.current_token():
                await self.post("/auth/logout")
        finally:
            self._auth.clear_session()
