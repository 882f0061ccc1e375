"""
Centralised harness configuration.

Every value is overridable via environment variables so CI and local
invocations share the same harness with different knobs.

Hierarchy:  env var → default here.
"""

from __future__ import annotations

import os

from common.config import PLATFORM_API_SECRET, PLATFORM_API_URL, env, env_bool, env_float, env_int

# ── Platform endpoints ───────────────────────────────────────────────
API_URL = PLATFORM_API_URL
API_SECRET = PLATFORM_API_SECRET
HTTP_URL = env("PLATFORM_HTTP_URL", "http://localhost:8080")
RTMP_URL = env("PLATFORM_RTMP_URL", "rtmp://localhost")

# ── HTTP settings ────────────────────────────────────────────────────
REQUEST_TIMEOUT = env_float("QA_REQUEST_TIMEOUT", 15.0)

# ── Media tools ──────────────────────────────────────────────────────
FFMPEG_BIN = env("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = env("FFPROBE_BIN", "ffprobe")
INPUT_FILE = env("MEDIA_QA_INPUT_FILE", "source.200kbps.768x320.flv")

# ── Budgets (milliseconds, like the CLI flags of the platform tests) ─
TIMEOUT_MS = env_int("MEDIA_QA_TIMEOUT_MS", 30_000)
LONG_TIMEOUT_MS = env_int("MEDIA_QA_LONG_TIMEOUT_MS", 300_000)
PROBE_DURATION_MS = env_int("MEDIA_QA_PROBE_DURATION_MS", 16_000)
PROBE_TIMEOUT_MS = env_int("MEDIA_QA_PROBE_TIMEOUT_MS", 21_000)

# Fresh context budget used by teardown (restore / remove) calls
RESTORE_TIMEOUT = env_float("MEDIA_QA_RESTORE_TIMEOUT", 10.0)

NO_MEDIA_TEST = env_bool("MEDIA_QA_NO_MEDIA_TEST", False)

# ── Virtual live staging ─────────────────────────────────────────────
UPLOAD_DIRS: list[str] = [
    "/data/upload/",
    "platform/containers/data/upload",
    "../platform/containers/data/upload",
]

# ── Record scenario ──────────────────────────────────────────────────
RECORD_WAIT_S = env_float("MEDIA_QA_RECORD_WAIT", 25.0)
RECORD_POLL_ATTEMPTS = env_int("MEDIA_QA_RECORD_POLL_ATTEMPTS", 60)
RECORD_POLL_INTERVAL = env_float("MEDIA_QA_RECORD_POLL_INTERVAL", 1.0)
RECORD_MIN_DURATION = env_float("MEDIA_QA_RECORD_MIN_DURATION", 10.0)
RECORD_SETTLE_S = env_float("MEDIA_QA_RECORD_SETTLE", 3.0)

# ── Artifacts ────────────────────────────────────────────────────────
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
ARTIFACTS_DIR = env("MEDIA_QA_ARTIFACTS_DIR", os.path.join(PROJECT_ROOT, "artifacts", "media-qa"))
