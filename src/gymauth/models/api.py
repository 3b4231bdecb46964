"""Request and response models for the admin API endpoints.

Requests are immutable dataclasses that know their JSON body; responses are
pydantic models validated straight from the decoded JSON.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Body of ``POST /auth/refresh-token``."""

    refresh_token: str
    device_fingerprint: str

    def to_json(self) -> dict[str, str]:
        return {
            "refreshToken": self.refresh_token,
            "deviceFingerprint": self.device_fingerprint,
        }


@dataclass(frozen=True)
class LogoutRequest:
    """Body of ``POST /auth/logout``."""

    refresh_token: str

    def to_json(self) -> dict[str, str]:
        return {"refreshToken": self.refresh_token}


class RefreshTokenResponse(BaseModel):
    """Successful refresh response carrying the new bearer token."""

    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1)


class AdminProfile(BaseModel):
    """The ``admin`` object embedded in a profile response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = Field(default=None, alias="_id")
    name: str | None = None
    email: str | None = None
    role: str | None = None
    gym_id: str | None = Field(default=None, alias="gymId")


class ProfileResponse(BaseModel):
    """Response of ``GET /profile``.

    The gym id is read from ``admin.gymId`` first and from the top-level
    ``gymId`` when the nested one is missing.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    admin: AdminProfile | None = None
    gym_id: str | None = Field(default=None, alias="gymId")

    def resolve_gym_id(self) -> str | None:
        if self.admin is not None and self.admin.gym_id:
            return self.admin.gym_id
        return self.gym_id or None
