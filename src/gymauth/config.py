"""Session client configuration.

All keys, intervals and endpoint paths used by the session client live in
one validated settings model. ``from_env`` reads ``GYMAUTH_*`` variables,
loading a ``.env`` file first when one is present.
"""

from __future__ import annotations

import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "GYMAUTH_"


class SessionSettings(BaseModel):
    """Settings for token storage, lifecycle timers and the admin API."""

    # Admin API
    api_base_url: str = "http://localhost:5000/api/admin"
    profile_path: str = "/profile"
    refresh_path: str = "/auth/refresh-token"
    logout_path: str = "/auth/logout"
    verify_path: str = "/verify-token"
    login_path: str = "/public/admin-login.html"
    http_timeout: float = Field(default=30.0, gt=0)

    # Persisted locations
    primary_token_key: str = Field(default="gymAdminToken", min_length=1)
    legacy_token_keys: tuple[str, ...] = ("gymAuthToken", "adminToken")
    refresh_token_key: str = Field(default="adminRefreshToken", min_length=1)
    login_timestamp_key: str = Field(default="loginTimestamp", min_length=1)
    token_query_param: str = Field(default="token", min_length=1)

    # Acquisition polling
    max_attempts: int = Field(default=50, ge=1)
    retry_delay: float = Field(default=0.1, ge=0)

    # Timers, in seconds
    cache_ttl: float = Field(default=30.0, gt=0)
    refresh_interval: float = Field(default=25 * 60, gt=0)
    inactivity_timeout: float = Field(default=30 * 60, gt=0)
    inactivity_check_interval: float = Field(default=60.0, gt=0)
    max_session_age: float = Field(default=30 * 60, gt=0)

    @field_validator("api_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be a valid HTTP URL")
        return v.rstrip("/")

    @field_validator("legacy_token_keys", mode="before")
    @classmethod
    def split_legacy_keys(cls, v: Any) -> Any:
        if isinstance(v, str):
            return tuple(key.strip() for key in v.split(",") if key.strip())
        return v

    def endpoint(self, path: str) -> str:
        """Join an endpoint path onto the API base URL."""
        return f"{self.api_base_url}/{path.lstrip('/')}"

    @classmethod
    def from_env(cls, env_file: str | None = None, **overrides: Any) -> SessionSettings:
        """Build settings from ``GYMAUTH_*`` environment variables.

        Args:
            env_file: Optional path to a dotenv file; defaults to the nearest
                ``.env`` found searching up from the working directory
            **overrides: Explicit values that win over the environment

        Returns:
            Validated settings
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))

        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        return cls(**values)
