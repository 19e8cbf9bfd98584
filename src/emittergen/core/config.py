"""Configuration helpers and feature flag evaluation."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional


_TRUE_VALUES = {"1", "true", "yes", "on"}
ENV_PREFIX = "EMITTERGEN_"


def _env_key(name: str) -> str:
    return ENV_PREFIX + name.upper().replace(".", "_")


@lru_cache(maxsize=None)
def feature_enabled(name: str, default: bool = False) -> bool:
    """Return True when the named feature flag is enabled via environment variable.

    Feature names map to environment variables using the pattern:
        feature.callsites.relative_paths → EMITTERGEN_FEATURE_CALLSITES_RELATIVE_PATHS
    Values are interpreted case-insensitively; "1", "true", "yes", "on" enable the flag.
    """

    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    """Integer knob from the environment (``max_resolve_depth`` → EMITTERGEN_MAX_RESOLVE_DEPTH)."""
    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return minimum
    return value
