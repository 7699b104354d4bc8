import asyncio

import httpx
import pytest

from app.client import AuthenticatedClient, SessionExpiredError, SessionState, SessionTimeoutCoordinator, TokenStore


class FakeAPI:
    """Mock backend: ``/api/data`` needs the current access token."""

    def __init__(self, refresh_status=200, refresh_delay=0.0, always_unauthorized=False):
        self.valid_token = "old-access"
        self.refresh_status = refresh_status
        self.refresh_delay = refresh_delay
        self.always_unauthorized = always_unauthorized
        self.data_calls = 0
        self.refresh_calls = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/auth/login":
            return httpx.Response(200, json={"success": True, "data": {
                "tokens": {"accessToken": "old-access", "refreshToken": "old-refresh"},
            }})

        if request.url.path == "/api/auth/refresh":
            self.refresh_calls += 1
            if self.refresh_delay:
                await asyncio.sleep(self.refresh_delay)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"success": False, "error": {"code": "INVALID_SESSION"}})
            self.valid_token = f"access-{self.refresh_calls}"
            return httpx.Response(200, json={"success": True, "data": {
                "tokens": {"accessToken": self.valid_token, "refreshToken": f"refresh-{self.refresh_calls}"},
            }})

        self.data_calls += 1
        authorized = request.headers.get("Authorization") == f"Bearer {self.valid_token}"
        if self.always_unauthorized or not authorized:
            return httpx.Response(401, json={"success": False, "error": {"code": "TOKEN_EXPIRED"}})
        return httpx.Response(200, json={"success": True, "data": {"ok": True}})


def make_client(api, access="stale-access", refresh="old-refresh"):
    store = TokenStore(access_token=access, refresh_token=refresh)
    return AuthenticatedClient("http://api.test", store=store, transport=httpx.MockTransport(api))


@pytest.mark.asyncio
async def test_login_stores_tokens():
    api = FakeAPI()
    async with make_client(api, access=None, refresh=None) as client:
        await client.login("a@b.com", "Abcdef12")
        assert client.store.access_token == "old-access"
        assert client.store.refresh_token == "old-refresh"
        assert (await client.get("/api/data")).status_code == 200
    assert api.refresh_calls == 0


@pytest.mark.asyncio
async def test_401_refreshes_and_retries_once():
    api = FakeAPI()
    async with make_client(api) as client:
        resp = await client.get("/api/data")
        assert resp.status_code == 200
        assert client.store.access_token == "access-1"
        assert client.store.refresh_token == "refresh-1"
    assert api.data_calls == 2
    assert api.refresh_calls == 1


@pytest.mark.asyncio
async def test_second_401_is_returned_not_retried():
    api = FakeAPI(always_unauthorized=True)
    async with make_client(api) as client:
        resp = await client.get("/api/data")
        assert resp.status_code == 401
    assert api.data_calls == 2
    assert api.refresh_calls == 1


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_refresh():
    api = FakeAPI(refresh_delay=0.05)
    async with make_client(api) as client:
        responses = await asyncio.gather(*(client.get("/api/data") for _ in range(5)))
    assert [r.status_code for r in responses] == [200] * 5
    assert api.refresh_calls == 1
    assert api.data_calls == 10


@pytest.mark.asyncio
async def test_failed_refresh_clears_credentials():
    api = FakeAPI(refresh_status=401)
    async with make_client(api) as client:
        with pytest.raises(SessionExpiredError):
            await client.get("/api/data")
        assert client.store.access_token is None
        assert client.store.refresh_token is None
    assert api.data_calls == 1


@pytest.mark.asyncio
async def test_logout_clears_credentials_even_on_error():
    async def handler(request):
        raise httpx.ConnectError("down", request=request)

    store = TokenStore(access_token="a", refresh_token="r")
    client = AuthenticatedClient("http://api.test", store=store, transport=httpx.MockTransport(handler))
    with pytest.raises(httpx.ConnectError):
        await client.logout()
    assert not store.authenticated
    await client.aclose()


class Recorder:
    def __init__(self, refresh_result=True, refresh_delay=0.0, store=None):
        self.refresh_result = refresh_result
        self.refresh_delay = refresh_delay
        self.store = store
        self.refreshes = 0
        self.warnings = []
        self.ticks = []
        self.logouts = 0

    async def refresh(self):
        self.refreshes += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.store is not None and self.refresh_result is True:
            self.store.update({"accessToken": "fresh-access", "refreshToken": "fresh-refresh"})
        if isinstance(self.refresh_result, Exception):
            raise self.refresh_result
        return self.refresh_result

    def coordinator(self, store=None):
        return SessionTimeoutCoordinator(
            self.refresh,
            session_duration=0.3,
            warning_window=0.1,
            on_warning=self.warnings.append,
            on_tick=self.ticks.append,
            on_logout=self._logout,
            tick_interval=0.02,
            store=store,
        )

    def _logout(self):
        self.logouts += 1


def test_warning_window_must_fit_in_session():
    with pytest.raises(ValueError):
        SessionTimeoutCoordinator(Recorder().refresh, session_duration=60, warning_window=60)


@pytest.mark.asyncio
async def test_warning_then_logout_without_extension():
    rec = Recorder()
    store = TokenStore(access_token="a", refresh_token="r")
    coordinator = rec.coordinator(store=store)

    coordinator.start()
    assert coordinator.state == SessionState.ACTIVE

    await asyncio.sleep(0.25)
    assert coordinator.state == SessionState.WARNING_SHOWN
    assert len(rec.warnings) == 1
    assert rec.ticks

    await asyncio.sleep(0.15)
    assert coordinator.state == SessionState.LOGGED_OUT
    assert rec.logouts == 1
    assert rec.refreshes == 0
    assert not store.authenticated


@pytest.mark.asyncio
async def test_extend_reschedules_both_timers():
    rec = Recorder(refresh_result=True)
    coordinator = rec.coordinator()

    coordinator.start()
    await asyncio.sleep(0.25)
    assert coordinator.state == SessionState.WARNING_SHOWN

    assert await coordinator.extend() is True
    assert coordinator.state == SessionState.ACTIVE

    # the original logout deadline passes without effect
    await asyncio.sleep(0.1)
    assert coordinator.state == SessionState.ACTIVE
    assert rec.logouts == 0
    coordinator.stop()


@pytest.mark.asyncio
async def test_failed_extend_logs_out():
    rec = Recorder(refresh_result=False)
    coordinator = rec.coordinator()
    coordinator.start()

    assert await coordinator.extend() is False
    assert coordinator.state == SessionState.LOGGED_OUT
    assert rec.logouts == 1

    # logged out sessions cannot be extended
    assert await coordinator.extend() is False
    assert rec.refreshes == 1


@pytest.mark.asyncio
async def test_refresh_error_logs_out():
    rec = Recorder(refresh_result=RuntimeError("network down"))
    coordinator = rec.coordinator()
    coordinator.start()

    assert await coordinator.extend() is False
    assert coordinator.state == SessionState.LOGGED_OUT


@pytest.mark.asyncio
async def test_stop_cancels_timers():
    rec = Recorder()
    coordinator = rec.coordinator()
    coordinator.start()
    coordinator.stop()

    await asyncio.sleep(0.4)
    assert rec.warnings == []
    assert rec.logouts == 0


@pytest.mark.asyncio
async def test_refresh_finishing_after_hard_logout_stays_logged_out():
    store = TokenStore(access_token="a", refresh_token="r")
    rec = Recorder(refresh_result=True, refresh_delay=0.2, store=store)
    coordinator = rec.coordinator(store=store)

    coordinator.start()
    await asyncio.sleep(0.25)
    assert coordinator.state == SessionState.WARNING_SHOWN

    # the hard-logout deadline (0.3s) passes while the refresh is in flight
    assert await coordinator.extend() is False
    assert coordinator.state == SessionState.LOGGED_OUT
    assert rec.logouts == 1
    assert not store.authenticated

    await asyncio.sleep(0.4)
    assert coordinator.state == SessionState.LOGGED_OUT
    assert rec.logouts == 1


@pytest.mark.asyncio
async def test_extend_after_stop_does_not_restart_timers():
    rec = Recorder()
    coordinator = rec.coordinator()
    assert coordinator.state == SessionState.STOPPED

    coordinator.start()
    coordinator.stop()
    assert coordinator.state == SessionState.STOPPED

    assert await coordinator.extend() is False
    assert rec.refreshes == 0

    await asyncio.sleep(0.4)
    assert rec.warnings == []
    assert rec.logouts == 0
    assert coordinator.state == SessionState.STOPPED


@pytest.mark.asyncio
async def test_stop_during_refresh_keeps_timers_cancelled():
    rec = Recorder(refresh_result=True, refresh_delay=0.05)
    coordinator = rec.coordinator()
    coordinator.start()

    extending = asyncio.ensure_future(coordinator.extend())
    await asyncio.sleep(0.01)
    coordinator.stop()

    assert await extending is False
    await asyncio.sleep(0.4)
    assert rec.warnings == []
    assert rec.logouts == 0
