"""HTTP client wrapper with transparent, single-retry token refresh.

``AuthenticatedClient`` attaches the stored access token to every request.
On a 401 it refreshes once and retries once. Parallel requests that hit a
401 at the same time share one in-flight refresh, because every rotation
invalidates the previous refresh token and racing refreshes would knock each
other out.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

REFRESH_PATH = "/api/auth/refresh"
LOGIN_PATH = "/api/auth/login"


class SessionExpiredError(Exception):
    """The refresh token was rejected; the user has to log in again."""


class TokenStore:
    """In-memory credential holder shared by the client and the session coordinator."""

    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
        self.access_token = access_token
        self.refresh_token = refresh_token

    def update(self, tokens: dict) -> None:
        self.access_token = tokens.get("accessToken")
        # Servers that only use the cookie omit the body copy.
        self.refresh_token = tokens.get("refreshToken") or self.refresh_token

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None

    @property
    def authenticated(self) -> bool:
        return self.access_token is not None


class AuthenticatedClient:
    def __init__(
        self,
        base_url: str,
        store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.store = store or TokenStore()
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self._refresh_task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, headers: Optional[dict]) -> dict:
        merged = dict(headers or {})
        if self.store.access_token:
            merged["Authorization"] = f"Bearer {self.store.access_token}"
        return merged

    async def login(self, email: str, password: str) -> dict:
        response = await self._http.post(LOGIN_PATH, json={"email": email, "password": password})
        response.raise_for_status()
        data = response.json()["data"]
        if "tokens" in data:
            self.store.update(data["tokens"])
        return data

    async def refresh(self) -> bool:
        """Refresh the token pair; concurrent callers await the same attempt."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> bool:
        body = {"refreshToken": self.store.refresh_token} if self.store.refresh_token else None
        try:
            response = await self._http.post(REFRESH_PATH, json=body)
        except httpx.HTTPError as e:
            logger.warning("Token refresh failed: %s", e)
            return False

        if response.status_code != 200:
            logger.info("Token refresh rejected with %s", response.status_code)
            return False

        self.store.update(response.json()["data"]["tokens"])
        return True

    async def request(self, method: str, url: str, headers: Optional[dict] = None, **kwargs: Any) -> httpx.Response:
        sent_token = self.store.access_token
        response = await self._http.request(method, url, headers=self._headers(headers), **kwargs)
        if response.status_code != 401 or url.startswith((REFRESH_PATH, LOGIN_PATH)):
            return response

        # Another request may have refreshed while this one was in flight.
        if self.store.access_token == sent_token or self.store.access_token is None:
            if not await self.refresh():
                self.store.clear()
                raise SessionExpiredError("Session expired, please log in again")

        return await self._http.request(method, url, headers=self._headers(headers), **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def logout(self) -> None:
        body = {"refreshToken": self.store.refresh_token} if self.store.refresh_token else None
        try:
            await self._http.post("/api/auth/logout", json=body)
        finally:
            self.store.clear()
