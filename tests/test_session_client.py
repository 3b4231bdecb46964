"""Tests for the session client facade.

High-impact tests covering:
- Gym id resolution through memory, cache and the profile endpoint
- Server-side session verification
- Wiring of storage, navigation and teardown across components
"""

import httpx
import pytest

from gymauth.config import SessionSettings
from gymauth.models.errors import Unauthorized
from gymauth.primitives.navigation import InMemoryNavigator
from gymauth.primitives.storage import InMemoryStorage
from gymauth.session_client import GymSessionClient
from tests.conftest import FakeClock, RecordingSleep, make_token


class ApiStub:
    """Routes requests to canned responses and records them."""

    def __init__(self, routes: dict[str, httpx.Response | Exception]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for path, outcome in self.routes.items():
            if request.url.path.endswith(path):
                if isinstance(outcome, Exception):
                    raise outcome
                return httpx.Response(outcome.status_code, content=outcome.content)
        return httpx.Response(404)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith(path))


def make_client(
    routes: dict[str, httpx.Response | Exception], **kwargs
) -> tuple[GymSessionClient, ApiStub, FakeClock]:
    stub = ApiStub(routes)
    clock = FakeClock()
    client = GymSessionClient(
        settings=SessionSettings(api_base_url="https://gym.example.com/api/admin"),
        durable_storage=InMemoryStorage(),
        session_storage=InMemoryStorage(),
        navigator=InMemoryNavigator("https://gym.example.com/admin/dashboard"),
        clock=clock,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
        sleep=RecordingSleep(),
        device_fingerprint="fingerprint-123",
        **kwargs,
    )
    return client, stub, clock


def valid_token(clock: FakeClock) -> str:
    return make_token({"sub": "admin-1", "exp": clock.now + 3600})


class TestGymId:
    """Test gym id resolution and caching."""

    async def test_fetches_profile_once_then_serves_from_memory(self):
        # Arrange
        client, stub, clock = make_client(
            {"/profile": httpx.Response(200, json={"admin": {"gymId": "gym-42"}})}
        )
        client.login(valid_token(clock))

        async with client:
            # Act
            first = await client.get_current_gym_id()
            second = await client.get_current_gym_id()

            # Assert
            assert first == second == "gym-42"
            assert stub.count("/profile") == 1
            assert stub.requests[0].url == "https://gym.example.com/api/admin/profile"

    async def test_cache_serves_within_ttl_then_refetches(self):
        # Arrange
        client, stub, clock = make_client(
            {"/profile": httpx.Response(200, json={"gymId": "gym-42"})}
        )
        client.login(valid_token(clock))

        async with client:
            await client.get_current_gym_id()

            # Act
            client._gym_id = None
            clock.advance(29)
            within_ttl = await client.get_current_gym_id()
            calls_within_ttl = stub.count("/profile")

            client._gym_id = None
            clock.advance(2)
            after_ttl = await client.get_current_gym_id()

            # Assert
            assert within_ttl == after_ttl == "gym-42"
            assert calls_within_ttl == 1
            assert stub.count("/profile") == 2

    async def test_profile_error_returns_none(self):
        client, stub, clock = make_client({"/profile": httpx.Response(500)})
        client.login(valid_token(clock))

        async with client:
            assert await client.get_current_gym_id() is None
            assert client.navigator.redirects == []

    async def test_profile_transport_error_returns_none(self):
        client, stub, clock = make_client(
            {"/profile": httpx.ConnectError("offline")}
        )
        client.login(valid_token(clock))

        async with client:
            assert await client.get_current_gym_id() is None
            assert client.get_token() is not None

    async def test_unauthorized_profile_propagates(self):
        client, stub, clock = make_client({"/profile": httpx.Response(401)})
        client.login(valid_token(clock))

        async with client:
            with pytest.raises(Unauthorized):
                await client.get_current_gym_id()
            assert client.navigator.redirects == ["/public/admin-login.html"]

    async def test_teardown_forgets_gym_id(self):
        client, stub, clock = make_client(
            {"/profile": httpx.Response(200, json={"gymId": "gym-42"})}
        )
        client.login(valid_token(clock))

        async with client:
            await client.get_current_gym_id()
            await client.logout()

            assert client.debug_info()["gym_id"] is None
            assert len(client.cache) == 0

    async def test_gym_scoped_key(self):
        client, stub, clock = make_client(
            {"/profile": httpx.Response(200, json={"gymId": "gym-42"})}
        )
        client.login(valid_token(clock))

        async with client:
            with pytest.raises(ValueError):
                client.gym_scoped_key("attendance")

            await client.get_current_gym_id()

            assert client.gym_scoped_key("attendance") == "attendance_gym-42"
            assert client.gym_scoped_key("attendance", "gym-7") == "attendance_gym-7"


class TestValidateSession:
    """Test server-side verification."""

    async def test_success(self):
        client, stub, clock = make_client({"/verify-token": httpx.Response(200)})
        client.login(valid_token(clock))

        async with client:
            assert await client.validate_session() is True

    async def test_non_success_status(self):
        client, stub, clock = make_client({"/verify-token": httpx.Response(403)})
        client.login(valid_token(clock))

        async with client:
            assert await client.validate_session() is False
            assert client.navigator.redirects == []

    async def test_expired_session_is_rejected_without_request(self):
        # Arrange
        client, stub, clock = make_client({"/verify-token": httpx.Response(200)})
        client.login(valid_token(clock))
        clock.advance(30 * 60 + 1)

        async with client:
            # Act
            result = await client.validate_session()

            # Assert
            assert result is False
            assert stub.count("/verify-token") == 0
            assert client.navigator.redirects == ["/public/admin-login.html"]
            assert client.snapshot().last_teardown_reason == "session_expired"

    async def test_unauthorized_redirects(self):
        client, stub, clock = make_client({"/verify-token": httpx.Response(401)})
        client.login(valid_token(clock))

        async with client:
            with pytest.raises(Unauthorized):
                await client.validate_session()
            assert client.is_authenticated() is False


class TestWiring:
    """Test how the facade composes its components."""

    async def test_token_from_url_is_captured(self):
        # Arrange
        client, stub, clock = make_client({})
        token = valid_token(clock)
        client.navigator.push(f"https://gym.example.com/admin/dashboard?token={token}")

        async with client:
            # Act
            result = await client.wait_for_token()

            # Assert
            assert result == token
            assert client.navigator.current_url == "https://gym.example.com/admin/dashboard"
            assert client.debug_info()["locations"]["durable:gymAdminToken"] is True

    async def test_debug_info(self):
        client, stub, clock = make_client({})
        client.login(valid_token(clock), refresh_token="refresh-abc")

        async with client:
            info = client.debug_info()

        assert info["has_token"] is True
        assert info["token_valid"] is True
        assert info["legacy_keys"] == ["gymAuthToken", "adminToken"]
        assert info["generation"] == 0

    async def test_from_path_persists_to_file(self, tmp_path):
        # Arrange
        path = tmp_path / "session.json"
        clock = FakeClock()
        token = valid_token(clock)

        async with GymSessionClient.from_path(path, clock=clock) as client:
            client.login(token)

        # Act
        async with GymSessionClient.from_path(path, clock=clock) as reopened:
            result = reopened.get_token()

        # Assert
        assert result == token

    async def test_record_activity_delegates(self):
        client, stub, clock = make_client({})

        async with client:
            assert client.record_activity("scroll") is True
            assert client.record_activity("focus") is False
