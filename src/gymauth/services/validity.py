"""Local token validity checks.

Decodes the payload segment of a compact three-part token and compares its
``exp`` claim with the current time. There is no signature verification:
the result is a hint used to skip needless network calls, and the server
remains the authority on whether a token is accepted.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from typing import Any

from gymauth.models.errors import TokenStructurallyInvalid

logger = logging.getLogger(__name__)


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def decode_token_payload(token: str) -> dict[str, Any]:
    """Decode the claims of a compact token without verifying it.

    Args:
        token: Dot-separated three-part token

    Returns:
        The decoded payload mapping

    Raises:
        TokenStructurallyInvalid: If the token is not three segments, or its
            payload segment is not base64-encoded JSON object
    """
    if not isinstance(token, str):
        raise TokenStructurallyInvalid("Token must be a string")

    parts = token.split(".")
    if len(parts) != 3:
        raise TokenStructurallyInvalid(
            f"Token must have 3 segments, found {len(parts)}"
        )

    try:
        payload = json.loads(_b64url_decode(parts[1]))
    except (binascii.Error, ValueError) as e:
        raise TokenStructurallyInvalid(f"Token payload is not decodable: {e}") from e

    if not isinstance(payload, dict):
        raise TokenStructurallyInvalid("Token payload is not a JSON object")
    return payload


def token_expires_at(token: str) -> float | None:
    """Return the ``exp`` claim of a token, or None when it has none.

    Raises:
        TokenStructurallyInvalid: If the token cannot be decoded or ``exp``
            is not a number
    """
    payload = decode_token_payload(token)
    exp = payload.get("exp")
    if exp is None:
        return None
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise TokenStructurallyInvalid("Token exp claim is not numeric")
    return float(exp)


def is_token_valid(token: str | None, now: float | None = None) -> bool:
    """Check whether a token is structurally sound and not yet expired.

    A token without an ``exp`` claim is treated as non-expiring. A token
    whose ``exp`` equals ``now`` is already expired.

    Args:
        token: Token to check; None and empty strings are invalid
        now: Current Unix time in seconds; defaults to ``time.time()``
    """
    if not token:
        return False

    try:
        exp = token_expires_at(token)
    except TokenStructurallyInvalid as e:
        logger.debug(f"Token validation failed: {e}")
        return False

    if exp is None:
        return True

    current = time.time() if now is None else now
    return exp > current
