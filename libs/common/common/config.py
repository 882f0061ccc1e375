"""
12-Factor configuration helper.

Every harness knob is read from environment variables.
This module provides the typed helpers the harness modules use.
"""

from __future__ import annotations

import os


def env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def env_int(key: str, default: int = 0) -> int:
    return int(os.environ.get(key, str(default)))


def env_float(key: str, default: float = 0.0) -> float:
    return float(os.environ.get(key, str(default)))


def env_bool(key: str, default: bool = False) -> bool:
    return os.environ.get(key, str(default)).lower() in ("1", "true", "yes")


# ── Shared defaults ───────────────────────────────────────────────────

LOG_LEVEL = env("LOG_LEVEL", "INFO")
LOG_FORMAT = env("LOG_FORMAT", "json")
PLATFORM_API_URL = env("PLATFORM_API_URL", "http://localhost:2022")
PLATFORM_API_SECRET = env("PLATFORM_API_SECRET", "")
