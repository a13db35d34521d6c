"""
Client-side session handling for the marketplace API.

``SessionStore`` keeps the bearer token and a cached copy of the user in a
cookie jar and slides the cookie expiry forward while the session is open.
The slide is local only: the server is consulted on ``load()`` and
``refresh_user()``, never by the background refresh task.
"""

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

import httpx

import config

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "marketplace_token"
USER_COOKIE = "marketplace_user"
COOKIE_TTL = 24 * 60 * 60
AUTO_REFRESH_INTERVAL = 5 * 60


# API results


@dataclass
class ApiSuccess:
    data: Dict[str, Any]
    status: int = 200


@dataclass
class ApiFailure:
    message: str
    status: int
    details: Any = None


ApiResult = Union[ApiSuccess, ApiFailure]


class ApiClient:
    """Thin async wrapper over the auth endpoints. Never raises for HTTP or network errors."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._client = httpx.AsyncClient(base_url=base_url or config.API_BASE_URL, transport=transport, timeout=timeout)

    async def _request(self, method: str, path: str, token: Optional[str] = None, payload: Optional[dict] = None) -> ApiResult:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await self._client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            return ApiFailure(message=str(exc) or "Network error", status=0)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if response.is_success:
            return ApiSuccess(data=body, status=response.status_code)
        message = body.get("error") or f"Request failed with status {response.status_code}"
        return ApiFailure(message=message, status=response.status_code, details=body.get("details"))

    async def register(self, email: str, password: str, name: Optional[str] = None, role: str = "buyer") -> ApiResult:
        payload = {"email": email, "password": password, "role": role}
        if name:
            payload["name"] = name
        return await self._request("POST", "/api/auth/register", payload=payload)

    async def login(self, email: str, password: str) -> ApiResult:
        return await self._request("POST", "/api/auth/login", payload={"email": email, "password": password})

    async def me(self, token: str) -> ApiResult:
        return await self._request("GET", "/api/auth/me", token=token)

    async def aclose(self) -> None:
        await self._client.aclose()


# Cookies


@dataclass
class Cookie:
    value: str
    expires_at: float
    path: str = "/"
    same_site: str = "strict"
    secure: bool = False


class CookieJar:
    """In-memory cookie store; expiry is evaluated against ``clock``."""

    def __init__(self, clock: Callable[[], float] = time.time, secure: Optional[bool] = None):
        self.clock = clock
        self.secure = config.ENVIRONMENT == "production" if secure is None else secure
        self._cookies: Dict[str, Cookie] = {}

    def set(self, name: str, value: str, max_age: int = COOKIE_TTL, path: str = "/") -> Cookie:
        cookie = Cookie(value=value, expires_at=self.clock() + max_age, path=path, secure=self.secure)
        self._cookies[name] = cookie
        return cookie

    def get(self, name: str) -> Optional[str]:
        cookie = self._cookies.get(name)
        if cookie is None:
            return None
        if cookie.expires_at <= self.clock():
            del self._cookies[name]
            return None
        return cookie.value

    def cookie(self, name: str) -> Optional[Cookie]:
        return self._cookies.get(name) if self.get(name) is not None else None

    def remove(self, name: str) -> None:
        self._cookies.pop(name, None)


# Session


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"


@dataclass
class SessionStore:
    api: ApiClient
    cookies: CookieJar = field(default_factory=CookieJar)
    refresh_interval: float = AUTO_REFRESH_INTERVAL
    state: SessionState = SessionState.LOADING
    token: Optional[str] = None
    user: Optional[dict] = None
    refresh_count: int = 0
    _refresh_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and bool(self.token) and self.user is not None

    @property
    def is_loading(self) -> bool:
        return self.state is SessionState.LOADING

    @property
    def refresh_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def _extend_session(self, token: str, user: dict) -> None:
        self.cookies.set(TOKEN_COOKIE, token)
        self.cookies.set(USER_COOKIE, json.dumps(user))

    def _authenticate(self, token: str, user: dict) -> None:
        self.token = token
        self.user = user
        self.state = SessionState.AUTHENTICATED
        self._extend_session(token, user)
        self._start_refresh()

    def _clear(self) -> None:
        self.cookies.remove(TOKEN_COOKIE)
        self.cookies.remove(USER_COOKIE)
        self.token = None
        self.user = None
        self.state = SessionState.UNAUTHENTICATED

    async def load(self) -> None:
        """Restore the session from cookies, verifying the token with the server."""
        token = self.cookies.get(TOKEN_COOKIE)
        raw_user = self.cookies.get(USER_COOKIE)
        if not token or not raw_user:
            self._clear()
            return
        try:
            cached_user = json.loads(raw_user)
        except ValueError:
            self._clear()
            return

        self.state = SessionState.LOADING
        self.token = token
        self.user = cached_user
        result = await self.api.me(token)
        if isinstance(result, ApiFailure):
            logger.info("Stored session rejected (%s): %s", result.status, result.message)
            self._clear()
            return
        self._authenticate(token, result.data["user"])

    async def login(self, email: str, password: str) -> ApiResult:
        result = await self.api.login(email, password)
        if isinstance(result, ApiSuccess):
            self._authenticate(result.data["token"], result.data["user"])
        return result

    async def register(self, email: str, password: str, name: Optional[str] = None, role: str = "buyer") -> ApiResult:
        result = await self.api.register(email, password, name=name, role=role)
        if isinstance(result, ApiSuccess):
            self._authenticate(result.data["token"], result.data["user"])
        return result

    def logout(self) -> None:
        self._clear()
        self._stop_refresh()

    async def refresh_user(self) -> Optional[ApiResult]:
        if not self.token:
            return None
        result = await self.api.me(self.token)
        if isinstance(result, ApiFailure):
            logger.info("Session refresh failed (%s): %s", result.status, result.message)
            self.logout()
            return result
        self._authenticate(self.token, result.data["user"])
        return result

    # Background refresh

    def _start_refresh(self) -> None:
        if self.refresh_running:
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    def _stop_refresh(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            token = self.cookies.get(TOKEN_COOKIE)
            raw_user = self.cookies.get(USER_COOKIE)
            if token and raw_user:
                self.cookies.set(TOKEN_COOKIE, token)
                self.cookies.set(USER_COOKIE, raw_user)
                self.refresh_count += 1
                logger.debug("Session extended automatically")

    async def aclose(self) -> None:
        task = self._refresh_task
        self._stop_refresh()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.api.aclose()
