"""Navigation primitives.

A ``Navigator`` exposes the current location, lets the token store rewrite
the visible URL without navigating, and performs the replace-style redirect
to the login page.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

logger = logging.getLogger(__name__)


class Navigator(Protocol):
    """Current location and history operations."""

    @property
    def current_url(self) -> str: ...

    def replace_state(self, url: str) -> None:
        """Rewrite the visible URL without navigating."""
        ...

    def replace(self, url: str) -> None:
        """Navigate to ``url`` replacing the current history entry."""
        ...


class InMemoryNavigator:
    """Navigator that tracks its location and history in memory.

    ``replace`` never adds a history entry, so the page that failed
    authentication is not reachable through ``history``.
    """

    def __init__(
        self,
        url: str = "/",
        on_redirect: Callable[[str], None] | None = None,
    ):
        self._url = url
        self._on_redirect = on_redirect
        self.history: list[str] = [url]
        self.redirects: list[str] = []

    @property
    def current_url(self) -> str:
        return self._url

    def push(self, url: str) -> None:
        self._url = url
        self.history.append(url)

    def replace_state(self, url: str) -> None:
        self._url = url
        self.history[-1] = url

    def replace(self, url: str) -> None:
        logger.info(f"Redirecting to {url}")
        self._url = url
        self.history[-1] = url
        self.redirects.append(url)
        if self._on_redirect is not None:
            self._on_redirect(url)


def get_query_param(url: str, name: str) -> str | None:
    """Return the first value of query parameter ``name`` in ``url``."""
    for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key == name:
            return value
    return None


def strip_query_param(url: str, name: str) -> str:
    """Return ``url`` with every occurrence of query parameter ``name`` removed."""
    parsed = urlparse(url)
    kept = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key != name
    ]
    return urlunparse(parsed._replace(query=urlencode(kept)))
