"""Session client for the gym admin dashboard.

Wires the token store, validity checks, session cache, lifecycle manager
and authenticated HTTP wrapper into one object. Construct it once at
application start and pass it to whatever needs authenticated access.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from gymauth.config import SessionSettings
from gymauth.models.api import ProfileResponse
from gymauth.models.errors import AuthenticationError
from gymauth.models.session import SessionSnapshot
from gymauth.primitives.clock import Clock, SleepFunc, SystemClock
from gymauth.primitives.navigation import InMemoryNavigator, Navigator
from gymauth.primitives.storage import InMemoryStorage, JsonFileStorage, KeyValueStorage
from gymauth.services.cache import SessionCache
from gymauth.services.lifecycle import TokenLifecycleManager
from gymauth.services.requests import AuthenticatedHttpClient
from gymauth.services.token_store import TokenStore

logger = logging.getLogger(__name__)

GYM_ID_CACHE_KEY = "currentGymAdminId"


class GymSessionClient:
    """Authenticated session against the gym admin API."""

    def __init__(
        self,
        settings: SessionSettings | None = None,
        durable_storage: KeyValueStorage | None = None,
        session_storage: KeyValueStorage | None = None,
        navigator: Navigator | None = None,
        clock: Clock | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
        device_fingerprint: str | None = None,
    ):
        self.settings = settings or SessionSettings()
        self.navigator = navigator or InMemoryNavigator()
        self.clock = clock or SystemClock()

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.http_timeout
        )

        self.store = TokenStore(
            durable=durable_storage if durable_storage is not None else InMemoryStorage(),
            session=session_storage if session_storage is not None else InMemoryStorage(),
            navigator=self.navigator,
            settings=self.settings,
        )
        self.cache = SessionCache(ttl=self.settings.cache_ttl, clock=self.clock)
        self.lifecycle = TokenLifecycleManager(
            store=self.store,
            navigator=self.navigator,
            http_client=self._http_client,
            settings=self.settings,
            clock=self.clock,
            cache=self.cache,
            sleep=sleep,
            device_fingerprint=device_fingerprint,
        )
        self.http = AuthenticatedHttpClient(self.lifecycle, self._http_client)

        self._gym_id: str | None = None
        self.lifecycle.add_teardown_listener(self._on_teardown)

    @classmethod
    def from_path(
        cls, storage_path: Path | str, settings: SessionSettings | None = None, **kwargs: Any
    ) -> GymSessionClient:
        """Create a client whose durable storage is a JSON file."""
        return cls(
            settings=settings,
            durable_storage=JsonFileStorage(storage_path),
            **kwargs,
        )

    async def __aenter__(self) -> GymSessionClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ================================
    # Tokens
    # ================================

    def get_token(self) -> str | None:
        return self.lifecycle.get_token()

    async def wait_for_token(
        self, max_attempts: int | None = None, delay: float | None = None
    ) -> str:
        return await self.lifecycle.wait_for_token(max_attempts, delay)

    def login(self, token: str, refresh_token: str | None = None) -> None:
        """Store credentials issued by a login endpoint."""
        self.lifecycle.set_session(token, refresh_token)

    def is_authenticated(self) -> bool:
        return self.get_token() is not None

    async def refresh_token(self) -> str:
        return await self.lifecycle.refresh_token()

    async def logout(self, reason: str = "logout") -> bool:
        return await self.lifecycle.logout(reason)

    def record_activity(self, event: str = "click") -> bool:
        return self.lifecycle.record_activity(event)

    # ================================
    # Derived identifiers
    # ================================

    async def get_current_gym_id(self) -> str | None:
        """Resolve the gym id of the logged-in admin.

        Served from memory, then from the 30 second cache, and only then
        fetched from the profile endpoint.

        Returns:
            The gym id, or None if the profile could not provide one

        Raises:
            AuthenticationError: If no token is available or the server
                rejected it; the redirect has already happened
        """
        if self._gym_id:
            return self._gym_id

        cached = self.cache.get(GYM_ID_CACHE_KEY)
        if cached:
            self._gym_id = cached
            return cached

        try:
            response = await self.http.get(
                self.settings.endpoint(self.settings.profile_path)
            )
            if response.status_code != 200:
                logger.warning(f"Profile lookup returned {response.status_code}")
                return None
            profile = ProfileResponse.model_validate(response.json())
        except AuthenticationError:
            raise
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(f"Failed to get gym admin id: {e}")
            return None

        gym_id = profile.resolve_gym_id()
        if gym_id:
            self._gym_id = gym_id
            self.cache.set(GYM_ID_CACHE_KEY, gym_id)
        return gym_id

    def gym_scoped_key(self, base_key: str, gym_id: str | None = None) -> str:
        """Build a storage key namespaced by gym id.

        Raises:
            ValueError: If no gym id is given or resolved yet
        """
        current = gym_id or self._gym_id or self.cache.get(GYM_ID_CACHE_KEY)
        if not current:
            raise ValueError("No gym id available for storage key generation")
        return f"{base_key}_{current}"

    # ================================
    # Verification and diagnostics
    # ================================

    async def validate_session(self) -> bool:
        """Ask the server whether the current token is still accepted.

        A session older than ``max_session_age`` is torn down locally
        without asking the server.

        Returns:
            True on a 2xx verification response, False on any other status
            or when the session had expired

        Raises:
            AuthenticationError: If no token is available or the server
                answered 401
            httpx.TransportError: On network failure
        """
        if await self.lifecycle.check_session_age():
            return False

        response = await self.http.get(self.settings.endpoint(self.settings.verify_path))
        if response.is_success:
            logger.debug("Session verified by server")
            return True

        logger.warning(f"Token verification returned {response.status_code}")
        return False

    def snapshot(self) -> SessionSnapshot:
        return self.lifecycle.snapshot()

    def debug_info(self) -> dict[str, Any]:
        token = self.lifecycle.get_token()
        return {
            "has_token": token is not None,
            "token_valid": self.lifecycle.is_valid(token),
            "state": self.lifecycle.state.value,
            "generation": self.lifecycle.generation,
            "cache_size": len(self.cache),
            "gym_id": self._gym_id,
            "legacy_keys": list(self.store.legacy_keys),
            "locations": self.store.describe(),
        }

    async def aclose(self) -> None:
        """Stop background monitors and close the owned HTTP client."""
        await self.lifecycle.close()
        if self._owns_http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _on_teardown(self, reason: str) -> None:
        self._gym_id = None
