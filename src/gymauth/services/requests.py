"""Authenticated HTTP requests.

Wraps ``httpx.AsyncClient`` so every call carries the session's bearer
token, and turns a 401 response into a session teardown plus an
``Unauthorized`` error instead of a response the caller might try to parse.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gymauth.services.lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)


class AuthenticatedHttpClient:
    """HTTP client that authenticates every request through the lifecycle.

    Transport errors (``httpx.TransportError``) propagate untouched and never
    clear the session. Non-401 error statuses are returned to the caller.
    """

    def __init__(self, lifecycle: TokenLifecycleManager, http_client: httpx.AsyncClient):
        self._lifecycle = lifecycle
        self._http_client = http_client

    async def auth_headers(self) -> dict[str, str]:
        """Wait for a token and return the headers to authenticate with it."""
        token = await self._lifecycle.wait_for_token()
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send an authenticated request.

        Args:
            method: HTTP method
            url: Absolute URL, or a path relative to the client's base URL
            headers: Extra headers; they override the defaults except for
                ``Authorization``
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Returns:
            The response, for any status other than 401

        Raises:
            AuthenticationTimeout: If no token became available
            Unauthorized: If the server answered 401
            httpx.TransportError: On network failure
        """
        token = await self._lifecycle.wait_for_token()
        generation = self._lifecycle.generation

        # Header names are case-insensitive; Authorization always comes last.
        merged_headers = httpx.Headers({"Content-Type": "application/json"})
        merged_headers.update(headers or {})
        merged_headers["Authorization"] = f"Bearer {token}"

        response = await self._http_client.request(
            method, url, headers=merged_headers, **kwargs
        )

        if response.status_code == 401:
            logger.warning(f"{method} {url} returned 401, ending session")
            await self._lifecycle.handle_unauthorized(generation)

        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
