"""Device fingerprint sent with token refresh requests.

The backend binds refresh tokens to the device that logged in, so the
fingerprint must be stable across calls on the same machine.
"""

from __future__ import annotations

import base64
import locale
import platform
import time


def collect_device_traits() -> list[str]:
    """Collect stable traits describing the current host."""
    language = locale.getlocale()[0] or "C"
    return [
        f"{platform.system()} {platform.release()} ({platform.machine()})",
        language,
        platform.node(),
        str(time.timezone // 60),
        f"python/{platform.python_version()}",
    ]


def generate_device_fingerprint(traits: list[str] | None = None) -> str:
    """Generate a 32 character fingerprint from device traits.

    Args:
        traits: Traits to encode; defaults to ``collect_device_traits()``

    Returns:
        First 32 characters of the base64-encoded, pipe-joined traits
    """
    if traits is None:
        traits = collect_device_traits()
    encoded = base64.b64encode("|".join(traits).encode("utf-8")).decode("ascii")
    return encoded[:32]
