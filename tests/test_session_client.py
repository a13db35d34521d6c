"""Session store tests, run against the app through an in-process ASGI transport."""

import asyncio

import httpx
import pytest
import pytest_asyncio

from conftest import DEFAULT_PASSWORD
from main import app
from session_client import (
    COOKIE_TTL,
    TOKEN_COOKIE,
    USER_COOKIE,
    ApiClient,
    ApiFailure,
    ApiSuccess,
    CookieJar,
    SessionState,
    SessionStore,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cookies(clock):
    return CookieJar(clock=clock)


@pytest_asyncio.fixture
async def api(db):
    client = ApiClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app))
    yield client
    await client.aclose()


def _store(api, cookies, refresh_interval=300):
    return SessionStore(api=api, cookies=cookies, refresh_interval=refresh_interval)


def test_cookie_jar_expiry(cookies, clock):
    cookie = cookies.set("a", "1")
    assert cookie.same_site == "strict"
    assert cookie.path == "/"
    assert cookie.secure is False
    assert cookie.expires_at == clock.now + COOKIE_TTL

    clock.now += COOKIE_TTL - 1
    assert cookies.get("a") == "1"
    clock.now += 1
    assert cookies.get("a") is None


def test_cookie_jar_secure_in_production(monkeypatch, clock):
    import config

    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    assert CookieJar(clock=clock).set("a", "1").secure is True


@pytest.mark.asyncio
async def test_api_client_returns_server_error_message(api):
    result = await api.login("ghost@example.com", DEFAULT_PASSWORD)
    assert isinstance(result, ApiFailure)
    assert result.status == 401
    assert result.message == "Invalid email or password"


@pytest.mark.asyncio
async def test_api_client_transport_error_is_status_zero():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = ApiClient(base_url="http://testserver", transport=httpx.MockTransport(boom))
    result = await client.me("token")
    await client.aclose()
    assert isinstance(result, ApiFailure)
    assert result.status == 0


@pytest.mark.asyncio
async def test_register_authenticates_and_sets_cookies(api, cookies):
    store = _store(api, cookies)
    assert store.state is SessionState.LOADING

    result = await store.register("new@example.com", DEFAULT_PASSWORD, name="New User", role="seller")
    assert isinstance(result, ApiSuccess)
    assert store.is_authenticated
    assert store.user["role"] == "seller"
    assert cookies.get(TOKEN_COOKIE) == store.token
    assert store.refresh_running
    await store.aclose()
    assert not store.refresh_running


@pytest.mark.asyncio
async def test_failed_login_leaves_store_unchanged(api, cookies):
    store = _store(api, cookies)
    result = await store.login("ghost@example.com", DEFAULT_PASSWORD)
    assert isinstance(result, ApiFailure)
    assert not store.is_authenticated
    assert cookies.get(TOKEN_COOKIE) is None
    assert not store.refresh_running


@pytest.mark.asyncio
async def test_load_without_cookies_is_unauthenticated(api, cookies):
    store = _store(api, cookies)
    await store.load()
    assert store.state is SessionState.UNAUTHENTICATED
    assert not store.refresh_running


@pytest.mark.asyncio
async def test_load_restores_session_and_slides_cookie(api, cookies, clock, buyer):
    # an earlier visit that left cookies behind
    first = _store(ApiClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app)), cookies)
    await first.login(buyer.email, DEFAULT_PASSWORD)
    await first.aclose()

    clock.now += 3600
    store = _store(api, cookies)
    await store.load()
    assert store.state is SessionState.AUTHENTICATED
    assert store.user["id"] == buyer.id
    assert cookies.cookie(TOKEN_COOKIE).expires_at == clock.now + COOKIE_TTL
    assert store.refresh_running
    store.logout()


@pytest.mark.asyncio
async def test_load_with_rejected_token_clears_cookies(api, cookies):
    cookies.set(TOKEN_COOKIE, "not-a-jwt")
    cookies.set(USER_COOKIE, '{"id": "x"}')
    store = _store(api, cookies)
    await store.load()
    assert store.state is SessionState.UNAUTHENTICATED
    assert store.user is None
    assert cookies.get(TOKEN_COOKIE) is None
    assert cookies.get(USER_COOKIE) is None


@pytest.mark.asyncio
async def test_load_with_corrupt_user_cookie(api, cookies):
    cookies.set(TOKEN_COOKIE, "token")
    cookies.set(USER_COOKIE, "{not json")
    store = _store(api, cookies)
    await store.load()
    assert store.state is SessionState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_logout_clears_state_and_stops_refresh(api, cookies, buyer):
    store = _store(api, cookies)
    await store.login(buyer.email, DEFAULT_PASSWORD)
    store.logout()
    assert store.state is SessionState.UNAUTHENTICATED
    assert store.token is None
    assert cookies.get(TOKEN_COOKIE) is None
    assert not store.refresh_running


@pytest.mark.asyncio
async def test_refresh_task_slides_expiry_without_server(api, cookies, clock, buyer, monkeypatch):
    store = _store(api, cookies, refresh_interval=0.01)
    await store.login(buyer.email, DEFAULT_PASSWORD)

    calls = []

    async def no_server(token):
        calls.append(token)
        return ApiFailure("should not be called", 0)

    monkeypatch.setattr(api, "me", no_server)
    clock.now += 600
    await asyncio.sleep(0.05)

    assert store.refresh_count >= 1
    assert cookies.cookie(TOKEN_COOKIE).expires_at == clock.now + COOKIE_TTL
    assert calls == []
    assert store.is_authenticated

    store.logout()
    count = store.refresh_count
    await asyncio.sleep(0.03)
    assert store.refresh_count == count


@pytest.mark.asyncio
async def test_refresh_user_picks_up_server_changes(api, cookies, db, buyer):
    store = _store(api, cookies)
    await store.login(buyer.email, DEFAULT_PASSWORD)
    db["user"].update_one({"email": buyer.email}, {"$set": {"is_verified_seller": True}})

    result = await store.refresh_user()
    assert isinstance(result, ApiSuccess)
    assert store.user["is_verified_seller"] is True
    store.logout()


@pytest.mark.asyncio
async def test_refresh_user_logs_out_when_account_is_gone(api, cookies, db, buyer):
    store = _store(api, cookies)
    await store.login(buyer.email, DEFAULT_PASSWORD)
    db["user"].delete_many({})

    result = await store.refresh_user()
    assert isinstance(result, ApiFailure)
    assert result.status == 404
    assert store.state is SessionState.UNAUTHENTICATED
    assert not store.refresh_running


@pytest.mark.asyncio
async def test_refresh_user_without_token_is_noop(api, cookies):
    store = _store(api, cookies)
    assert await store.refresh_user() is None
