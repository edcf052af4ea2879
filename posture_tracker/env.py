from __future__ import annotations

import os

PREFIX = "POSTURE_TRACKER_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve a `POSTURE_TRACKER_`-prefixed environment variable.

    Empty values are treated as set so callers can explicitly blank an option.
    """
    value = os.getenv(f"{PREFIX}{name}")
    if value is not None:
        return value
    return default
