"""Token lifecycle orchestration.

Owns the session state machine: acquisition by bounded polling, proactive
refresh, inactivity expiry, and teardown with redirect-to-login. The refresh
and inactivity timers are two background tasks owned by the manager and
cancelled together whenever the session is torn down.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, NoReturn

import httpx
from pydantic import ValidationError

from gymauth.config import SessionSettings
from gymauth.models.api import LogoutRequest, RefreshTokenRequest, RefreshTokenResponse
from gymauth.models.errors import AuthenticationTimeout, RefreshFailed, Unauthorized
from gymauth.models.session import ACTIVITY_EVENTS, SessionSnapshot, SessionState
from gymauth.primitives.clock import Clock, SleepFunc, SystemClock, default_sleep
from gymauth.primitives.fingerprint import generate_device_fingerprint
from gymauth.primitives.navigation import Navigator
from gymauth.services.cache import SessionCache
from gymauth.services.token_store import TokenStore
from gymauth.services.validity import is_token_valid

logger = logging.getLogger(__name__)

TeardownListener = Callable[[str], None]


class TokenLifecycleManager:
    """Manages acquisition, refresh, inactivity and teardown of one session.

    Teardown is idempotent per session generation: every teardown bumps the
    generation, and a failure reported against an older generation, or
    while a teardown is still running, is a no-op. Two requests failing
    with 401 at the same time therefore cause a single logout notification
    and a single redirect.
    """

    def __init__(
        self,
        store: TokenStore,
        navigator: Navigator,
        http_client: httpx.AsyncClient,
        settings: SessionSettings | None = None,
        clock: Clock | None = None,
        cache: SessionCache | None = None,
        sleep: SleepFunc | None = None,
        device_fingerprint: str | None = None,
    ):
        self._store = store
        self._navigator = navigator
        self._http_client = http_client
        self._settings = settings or SessionSettings()
        self._clock = clock or SystemClock()
        self._cache = cache
        self._sleep = sleep or default_sleep
        self._device_fingerprint = device_fingerprint

        self.state = SessionState.UNAUTHENTICATED
        self._token: str | None = None
        self._generation = 0
        self._teardown_in_progress = False
        self._last_teardown_reason: str | None = None
        self._last_activity = self._clock.time()
        self._teardown_listeners: list[TeardownListener] = []

        self._refresh_task: asyncio.Task[None] | None = None
        self._inactivity_task: asyncio.Task[None] | None = None

    # ================================
    # Properties
    # ================================

    @property
    def generation(self) -> int:
        """Identifier of the current session; bumped by every teardown."""
        return self._generation

    @property
    def teardown_in_progress(self) -> bool:
        return self._teardown_in_progress

    @property
    def idle_seconds(self) -> float:
        return self._clock.time() - self._last_activity

    @property
    def monitors_running(self) -> bool:
        return any(
            task is not None and not task.done()
            for task in (self._refresh_task, self._inactivity_task)
        )

    @property
    def device_fingerprint(self) -> str:
        if self._device_fingerprint is None:
            self._device_fingerprint = generate_device_fingerprint()
        return self._device_fingerprint

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            generation=self._generation,
            has_token=self._token is not None,
            last_activity=self._last_activity,
            teardown_in_progress=self._teardown_in_progress,
            last_teardown_reason=self._last_teardown_reason,
        )

    def add_teardown_listener(self, listener: TeardownListener) -> None:
        """Register a callback invoked with the reason after each teardown."""
        self._teardown_listeners.append(listener)

    # ================================
    # Acquisition
    # ================================

    def is_valid(self, token: str | None) -> bool:
        return is_token_valid(token, now=self._clock.time())

    def get_token(self) -> str | None:
        """Return a locally valid token without waiting, or None."""
        if self._token is not None and self.is_valid(self._token):
            return self._token

        self._token = self._store.get_token(accept=self.is_valid)
        return self._token

    async def wait_for_token(
        self,
        max_attempts: int | None = None,
        delay: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Poll the token store until a valid token appears.

        Makes at most ``max_attempts`` lookups with a fixed ``delay`` between
        them; there is no pause after the final attempt.

        Args:
            max_attempts: Lookup ceiling; defaults to the configured 50
            delay: Seconds between lookups; defaults to the configured 0.1
            cancel_event: Optional event that ends polling early once set

        Returns:
            The bearer token

        Raises:
            AuthenticationTimeout: If no token was found. The session has
                been torn down and the redirect performed by then.
        """
        if max_attempts is None:
            max_attempts = self._settings.max_attempts
        if delay is None:
            delay = self._settings.retry_delay
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        generation = self._generation

        for attempt in range(1, max_attempts + 1):
            token = self.get_token()
            if token:
                if attempt > 1:
                    logger.debug(f"Token found after {attempt} attempts")
                self._mark_authenticated(token)
                return token

            if self.state in (SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATED):
                self.state = SessionState.ACQUIRING

            if attempt == max_attempts:
                break
            if cancel_event is not None and cancel_event.is_set():
                logger.debug("Token polling cancelled")
                break
            await self._sleep(delay)

        logger.error(f"No token found after {attempt} attempts, redirecting to login")
        await self._teardown("timeout", generation)
        raise AuthenticationTimeout(
            "Authentication token not found", reason="timeout"
        )

    def set_session(self, token: str, refresh_token: str | None = None) -> None:
        """Persist freshly issued credentials, e.g. right after a login."""
        self._store.set_token(token)
        if refresh_token:
            self._store.set_refresh_token(refresh_token)
        self._store.set_login_timestamp(self._now_iso())
        self._token = token

    def _mark_authenticated(self, token: str) -> None:
        if self._teardown_in_progress:
            # The running teardown owns the state and the monitors.
            return
        self._token = token
        if self.state is not SessionState.REFRESHING:
            if self.state is not SessionState.AUTHENTICATED:
                logger.info("Session authenticated")
            self.state = SessionState.AUTHENTICATED
        self._start_monitors()

    # ================================
    # Activity
    # ================================

    def record_activity(self, event: str = "click") -> bool:
        """Record a user interaction event.

        Returns:
            True if the event counts as activity and was recorded
        """
        if event not in ACTIVITY_EVENTS:
            return False
        self._last_activity = self._clock.time()
        return True

    async def check_inactivity(self) -> bool:
        """Log out if the session has been idle for too long.

        Returns:
            True if this check tore the session down
        """
        if self.state is SessionState.UNAUTHENTICATED:
            return False
        if self.idle_seconds <= self._settings.inactivity_timeout:
            return False

        logger.warning(
            f"Session idle for {self.idle_seconds:.0f}s, logging out for inactivity"
        )
        return await self.logout("inactivity")

    def session_age(self) -> float | None:
        """Seconds since the stored login timestamp, or None if there is none."""
        stamp = self._store.get_login_timestamp()
        if not stamp:
            return None
        try:
            logged_in_at = datetime.fromisoformat(stamp)
        except ValueError:
            logger.warning(f"Ignoring unparseable login timestamp: {stamp!r}")
            return None
        if logged_in_at.tzinfo is None:
            logged_in_at = logged_in_at.replace(tzinfo=timezone.utc)
        return self._clock.time() - logged_in_at.timestamp()

    async def check_session_age(self) -> bool:
        """Log out if the session outlived ``max_session_age``.

        Returns:
            True if this check tore the session down
        """
        age = self.session_age()
        if age is None or age <= self._settings.max_session_age:
            return False

        logger.warning(f"Session is {age:.0f}s old, logging out")
        return await self.logout("session_expired")

    # ================================
    # Refresh
    # ================================

    async def refresh_token(self) -> str:
        """Exchange the refresh token for a new bearer token.

        A result that arrives after a teardown has started is discarded.

        Returns:
            The new bearer token

        Raises:
            RefreshFailed: If there is no refresh token, the server refuses,
                the transport fails, or the session was torn down meanwhile.
                In every case the session is torn down.
        """
        generation = self._generation
        if self._teardown_in_progress:
            raise RefreshFailed("Session teardown in progress", reason="refresh_failed")

        refresh_token = self._store.get_refresh_token()
        if not refresh_token:
            logger.warning("No refresh token available")
            await self._teardown("refresh_failed", generation)
            raise RefreshFailed("No refresh token available", reason="refresh_failed")

        self.state = SessionState.REFRESHING
        request = RefreshTokenRequest(
            refresh_token=refresh_token,
            device_fingerprint=self.device_fingerprint,
        )

        error: Exception | None = None
        new_token: str | None = None
        try:
            response = await self._http_client.post(
                self._settings.endpoint(self._settings.refresh_path),
                json=request.to_json(),
                headers=self._bearer_headers(),
            )
            response.raise_for_status()
            new_token = RefreshTokenResponse.model_validate(response.json()).token
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            error = e

        if generation != self._generation or self._teardown_in_progress:
            logger.info("Discarding refresh result for a torn down session")
            raise RefreshFailed(
                "Session was torn down during refresh", reason="refresh_failed"
            )

        if new_token is None:
            logger.error(f"Token refresh failed: {error}")
            await self._teardown("refresh_failed", generation)
            raise RefreshFailed(
                f"Token refresh failed: {error}", reason="refresh_failed"
            ) from error

        self._store.set_token(new_token)
        self._store.set_login_timestamp(self._now_iso())
        self._token = new_token
        self.state = SessionState.AUTHENTICATED
        self._rearm_refresh()
        logger.info("Token refreshed successfully")
        return new_token

    # ================================
    # Teardown
    # ================================

    async def logout(self, reason: str = "logout") -> bool:
        """Tear down the current session and redirect to the login page.

        Returns:
            True if this call performed the teardown, False if it was a no-op
        """
        return await self._teardown(reason, self._generation)

    async def handle_unauthorized(self, generation: int | None = None) -> NoReturn:
        """Tear down the session the server rejected and raise.

        Args:
            generation: Session generation the rejected request was sent
                with; defaults to the current one

        Raises:
            Unauthorized: Always
        """
        if generation is None:
            generation = self._generation
        logger.warning("Server rejected the bearer token")
        await self._teardown("unauthorized", generation)
        raise Unauthorized("Authentication failed", reason="unauthorized")

    async def close(self) -> None:
        """Stop the background monitors without touching persisted state."""
        tasks = [t for t in (self._refresh_task, self._inactivity_task) if t]
        self._cancel_monitors()
        current = asyncio.current_task()
        pending = [t for t in tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _teardown(self, reason: str, generation: int) -> bool:
        if self._teardown_in_progress or generation != self._generation:
            logger.debug(f"Ignoring teardown ({reason}) for a session already torn down")
            return False

        self._teardown_in_progress = True
        self.state = SessionState.EXPIRING
        logger.info(f"Tearing down session: {reason}")
        try:
            self._cancel_monitors()
            await self._notify_logout()
            try:
                self._store.clear_token()
            except OSError as e:
                logger.error(f"Failed to clear persisted token: {e}")
            if self._cache is not None:
                self._cache.clear()
            self._token = None
            self._last_teardown_reason = reason
            self._generation += 1
            self.state = SessionState.UNAUTHENTICATED
        finally:
            self._teardown_in_progress = False

        for listener in self._teardown_listeners:
            try:
                listener(reason)
            except Exception as e:
                logger.error(f"Teardown listener failed: {e}")

        self._navigator.replace(self._settings.login_path)
        return True

    async def _notify_logout(self) -> None:
        refresh_token = self._store.get_refresh_token()
        if not refresh_token:
            return

        try:
            await self._http_client.post(
                self._settings.endpoint(self._settings.logout_path),
                json=LogoutRequest(refresh_token=refresh_token).to_json(),
                headers=self._bearer_headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Logout notification failed: {e}")

    # ================================
    # Monitors
    # ================================

    def _start_monitors(self) -> None:
        if not self.monitors_running:
            # A new session starts its idle clock now.
            self._last_activity = self._clock.time()

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = self._spawn(self._refresh_loop(), "session_refresh")
        if self._inactivity_task is None or self._inactivity_task.done():
            self._inactivity_task = self._spawn(
                self._inactivity_loop(), "session_inactivity"
            )

    def _rearm_refresh(self) -> None:
        """Restart the refresh countdown unless called from the refresh task."""
        task = self._refresh_task
        if task is not None and task is asyncio.current_task():
            return
        if task is not None and not task.done():
            task.cancel()
        self._refresh_task = None
        self._start_monitors()

    def _cancel_monitors(self) -> None:
        current = asyncio.current_task()
        for task in (self._refresh_task, self._inactivity_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._refresh_task = None
        self._inactivity_task = None

    def _spawn(self, coro, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_monitor_done)
        return task

    def _on_monitor_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Session monitor '{task.get_name()}' crashed: {error}")

    async def _refresh_loop(self) -> None:
        while True:
            await self._sleep(self._settings.refresh_interval)
            try:
                await self.refresh_token()
            except RefreshFailed:
                return

    async def _inactivity_loop(self) -> None:
        while True:
            await self._sleep(self._settings.inactivity_check_interval)
            if await self.check_inactivity():
                return

    # ================================
    # Helpers
    # ================================

    def _bearer_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock.time(), tz=timezone.utc).isoformat()
