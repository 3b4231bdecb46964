import asyncio
import base64
import json
from typing import Any, Callable

import httpx
import pytest

from gymauth.config import SessionSettings
from gymauth.primitives.navigation import InMemoryNavigator
from gymauth.primitives.storage import InMemoryStorage
from gymauth.services.cache import SessionCache
from gymauth.services.lifecycle import TokenLifecycleManager
from gymauth.services.token_store import TokenStore

NOW = 1_700_000_000.0


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def make_token(claims: dict[str, Any] | None = None, **extra: Any) -> str:
    """Build an unsigned three-part token carrying ``claims``."""
    payload = dict(claims or {"sub": "admin-1"})
    payload.update(extra)
    header = _b64url(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    body = _b64url(json.dumps(payload).encode())
    return f"{header}.{body}.signature"


class FakeClock:
    """Controllable wall clock."""

    def __init__(self, start: float = NOW):
        self.now = start

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement for poll delays.

    Short delays are recorded and only yield control once. Timer-length
    delays really sleep, so refresh and inactivity loops never fire on
    their own during a test.
    """

    def __init__(self, timer_threshold: float = 1.0):
        self.calls: list[float] = []
        self._timer_threshold = timer_threshold

    async def __call__(self, seconds: float) -> None:
        if seconds >= self._timer_threshold:
            await asyncio.sleep(seconds)
            return
        self.calls.append(seconds)
        await asyncio.sleep(0)


class LifecycleHarness:
    """Lifecycle manager wired to in-memory collaborators and a mock API."""

    def __init__(
        self,
        handler: Callable[[httpx.Request], Any] | None = None,
        settings: SessionSettings | None = None,
    ):
        self.requests: list[httpx.Request] = []
        self._handler = handler or (lambda request: httpx.Response(200, json={}))
        self.clock = FakeClock()
        self.sleep = RecordingSleep()
        self.settings = settings or SessionSettings()
        self.durable = InMemoryStorage()
        self.session = InMemoryStorage()
        self.navigator = InMemoryNavigator("https://gym.example.com/admin/dashboard")
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(self._record))
        self.store = TokenStore(self.durable, self.session, self.navigator, self.settings)
        self.cache = SessionCache(ttl=self.settings.cache_ttl, clock=self.clock)
        self.manager = TokenLifecycleManager(
            store=self.store,
            navigator=self.navigator,
            http_client=self.http_client,
            settings=self.settings,
            clock=self.clock,
            cache=self.cache,
            sleep=self.sleep,
            device_fingerprint="fingerprint-123",
        )

    async def _record(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._handler(request)
        if asyncio.iscoroutine(response):
            response = await response
        return response

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path)]

    def valid_token(self, **claims: Any) -> str:
        return make_token({"sub": "admin-1", "exp": self.clock.now + 3600, **claims})

    async def close(self) -> None:
        await self.manager.close()
        await self.http_client.aclose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def harness():
    h = LifecycleHarness()
    yield h
    await h.close()
