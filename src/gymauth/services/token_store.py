"""Bearer token persistence across fallback locations.

Resolves the token from the URL query, the primary durable key, legacy
durable keys and the session-scoped fallback, in that order. Whenever a
token is found anywhere but the primary key it is migrated there and the
source copy is removed, so at most one canonical copy exists after a read.
"""

from __future__ import annotations

import logging
from typing import Callable

from gymauth.config import SessionSettings
from gymauth.primitives.navigation import Navigator, get_query_param, strip_query_param
from gymauth.primitives.storage import KeyValueStorage

logger = logging.getLogger(__name__)

TokenPredicate = Callable[[str], bool]


class TokenStore:
    """Single point of truth for where the bearer token lives.

    Args:
        durable: Storage that survives restarts
        session: Session-scoped storage, consulted as the last resort
        navigator: Source of the current URL; None disables the query step
        settings: Key names and the query parameter name
    """

    def __init__(
        self,
        durable: KeyValueStorage,
        session: KeyValueStorage,
        navigator: Navigator | None = None,
        settings: SessionSettings | None = None,
    ):
        settings = settings or SessionSettings()
        self._durable = durable
        self._session = session
        self._navigator = navigator
        self.primary_key = settings.primary_token_key
        self.legacy_keys = tuple(settings.legacy_token_keys)
        self.refresh_token_key = settings.refresh_token_key
        self.login_timestamp_key = settings.login_timestamp_key
        self.query_param = settings.token_query_param

    # ================================
    # Access token
    # ================================

    def get_token(self, accept: TokenPredicate | None = None) -> str | None:
        """Resolve the bearer token, migrating it to the primary key.

        Args:
            accept: Optional predicate. Candidates it rejects are skipped
                without touching storage and resolution moves on to the
                next location.

        Returns:
            The token, or None if no location holds an acceptable one
        """
        token = self._from_query(accept)
        if token:
            return token

        token = self._durable.get_item(self.primary_key)
        if token and self._accepts(accept, token):
            return token

        for legacy_key in self.legacy_keys:
            token = self._durable.get_item(legacy_key)
            if token and self._accepts(accept, token):
                self._durable.set_item(self.primary_key, token)
                self._durable.remove_item(legacy_key)
                logger.info(f"Migrated token from legacy key '{legacy_key}'")
                return token

        token = self._session.get_item(self.primary_key)
        if token and self._accepts(accept, token):
            self._durable.set_item(self.primary_key, token)
            self._session.remove_item(self.primary_key)
            logger.info("Promoted session-scoped token to durable storage")
            return token

        return None

    def set_token(self, token: str) -> None:
        """Store ``token`` under the primary key and drop stale copies."""
        if not token:
            raise ValueError("Token must be a non-empty string")

        self._durable.set_item(self.primary_key, token)
        for legacy_key in self.legacy_keys:
            self._durable.remove_item(legacy_key)
        self._session.remove_item(self.primary_key)

    def clear_token(self) -> None:
        """Remove every copy of the token and the refresh token.

        Best-effort: each location is cleared independently, with no
        transaction spanning them.
        """
        for key in (self.primary_key, *self.legacy_keys):
            self._durable.remove_item(key)
            self._session.remove_item(key)
        self._durable.remove_item(self.refresh_token_key)
        self._durable.remove_item(self.login_timestamp_key)
        logger.debug("Cleared all persisted token locations")

    # ================================
    # Refresh token and metadata
    # ================================

    def get_refresh_token(self) -> str | None:
        return self._durable.get_item(self.refresh_token_key)

    def set_refresh_token(self, refresh_token: str) -> None:
        self._durable.set_item(self.refresh_token_key, refresh_token)

    def get_login_timestamp(self) -> str | None:
        return self._durable.get_item(self.login_timestamp_key)

    def set_login_timestamp(self, timestamp: str) -> None:
        self._durable.set_item(self.login_timestamp_key, timestamp)

    def describe(self) -> dict[str, bool]:
        """Report which locations currently hold a token."""
        locations: dict[str, bool] = {}
        for key in (self.primary_key, *self.legacy_keys):
            locations[f"durable:{key}"] = self._durable.get_item(key) is not None
        locations[f"session:{self.primary_key}"] = (
            self._session.get_item(self.primary_key) is not None
        )
        return locations

    # ================================
    # Helpers
    # ================================

    def _from_query(self, accept: TokenPredicate | None) -> str | None:
        if self._navigator is None:
            return None

        url = self._navigator.current_url
        token = get_query_param(url, self.query_param)
        if token is None:
            return None

        self._navigator.replace_state(strip_query_param(url, self.query_param))
        if not token or not self._accepts(accept, token):
            return None

        self._durable.set_item(self.primary_key, token)
        logger.info("Captured token from URL query parameter")
        return token

    @staticmethod
    def _accepts(accept: TokenPredicate | None, token: str) -> bool:
        if accept is None or accept(token):
            return True
        logger.debug("Skipping stored token rejected by validity check")
        return False
