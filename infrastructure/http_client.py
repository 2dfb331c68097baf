"""Shared async HTTP client used by outbound integrations (email, client API)."""

from typing import Any, Optional

import httpx

_USER_AGENT = "quickping-identity/1.0"


class HttpClient:
    """Thin async wrapper around httpx.AsyncClient.

    One instance per external service keeps timeouts and base URLs
    independently configurable. Connection failures are retried at the
    transport level (``retries``); HTTP error statuses are returned as-is.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        *,
        base_url: str = "",
        retries: int = 1,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"User-Agent": _USER_AGENT, **(headers or {})},
            transport=transport or httpx.AsyncHTTPTransport(retries=retries),
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
