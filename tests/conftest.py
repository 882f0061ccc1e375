"""Test fixtures for the media QA harness.

The control API is a FastAPI app served in-process through
``httpx.ASGITransport``; ffmpeg / ffprobe are replaced by small Python
scripts driven by environment variables.
"""

import json
import os
import stat
import sys
from typing import Any

import httpx
import pytest
import pytest_asyncio

os.environ["LOG_FORMAT"] = "text"
os.environ["MEDIA_QA_NO_MEDIA_TEST"] = "false"

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from common.http_client import ControlClient
from tools.media_qa.control_api import PlatformApi

SECRET = "test-secret"
PUBLISH_SECRET = "pub-secret"
STREAM_ID = "stream-test-1"


# ═══════════════════════════════════════════════════════════════════════
#  Fake control API
# ═══════════════════════════════════════════════════════════════════════


class FakePlatform:
    """In-memory stand-in for the platform's control API."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail_paths: set[str] = set()
        self.vlive_conf: dict[str, Any] = {
            "bilibili": {"platform": "bilibili", "enabled": False, "server": "", "secret": "", "custom": False},
        }
        self.vlive_applied: list[dict[str, Any]] = []
        self.codec: dict[str, Any] = {
            "audio": {"codec_name": "aac", "channels": 2, "sample_rate": "44100"},
            "video": {"codec_name": "h264", "profile": "High", "width": 768, "height": 320},
        }
        self.record_conf: dict[str, Any] = {"all": False, "home": "/data/record"}
        self.record_applied: list[dict[str, Any]] = []
        self.record_stream: str | None = STREAM_ID
        self.record_duration = 25.0
        self.record_progress_listings = 2
        self.record_files: list[dict[str, Any]] = []
        self.removed: list[str] = []
        self.app = self._build()

    def calls_to(self, path: str) -> list[Any]:
        return [body for p, body in self.calls if p == path]

    def _build(self) -> FastAPI:
        app = FastAPI()
        fake = self

        def ok(data: Any = None) -> dict[str, Any]:
            return {"code": 0, "data": data}

        async def enter(request: Request) -> tuple[Any, JSONResponse | None]:
            raw = await request.body()
            body = json.loads(raw) if raw else None
            fake.calls.append((request.url.path, body))
            if request.url.path in fake.fail_paths:
                return body, JSONResponse(status_code=200, content={"code": 100, "data": None})
            return body, None

        @app.middleware("http")
        async def check_auth(request: Request, call_next):
            if request.headers.get("Authorization") != f"Bearer {SECRET}":
                return JSONResponse(status_code=401, content={"code": 401, "data": None})
            return await call_next(request)

        @app.post("/terraform/v1/hooks/srs/secret/query")
        async def secret_query(request: Request):
            _, failed = await enter(request)
            return failed or ok({"publish": PUBLISH_SECRET})

        @app.post("/terraform/v1/ffmpeg/vlive/server")
        async def vlive_server(request: Request, file: str):
            _, failed = await enter(request)
            return failed or ok({"name": os.path.basename(file), "size": 1024, "target": file, "uuid": "file-uuid-1"})

        @app.post("/terraform/v1/ffmpeg/vlive/source")
        async def vlive_source(request: Request):
            body, failed = await enter(request)
            return failed or ok({"files": [{"uuid": body["files"][0]["uuid"], **fake.codec}]})

        @app.post("/terraform/v1/ffmpeg/vlive/secret")
        async def vlive_secret(request: Request):
            body, failed = await enter(request)
            if failed:
                return failed
            if body is None:
                return ok(json.loads(json.dumps(fake.vlive_conf)))
            fake.vlive_applied.append(body)
            return ok()

        @app.post("/terraform/v1/hooks/record/query")
        async def record_query(request: Request):
            _, failed = await enter(request)
            return failed or ok(dict(fake.record_conf))

        @app.post("/terraform/v1/hooks/record/apply")
        async def record_apply(request: Request):
            body, failed = await enter(request)
            if failed:
                return failed
            fake.record_applied.append(body)
            if body == {"all": False} and fake.record_stream:
                fake.record_files.append({
                    "stream": fake.record_stream, "uuid": "record-uuid-1",
                    "duration": fake.record_duration, "progress": True,
                })
            return ok()

        @app.post("/terraform/v1/hooks/record/files")
        async def record_files(request: Request):
            _, failed = await enter(request)
            if failed:
                return failed
            listing = [dict(f) for f in fake.record_files]
            if listing and fake.record_progress_listings > 0:
                fake.record_progress_listings -= 1
            else:
                for f in listing:
                    f["progress"] = False
            return ok(listing)

        @app.post("/terraform/v1/hooks/record/remove")
        async def record_remove(request: Request):
            body, failed = await enter(request)
            if failed:
                return failed
            fake.removed.append(body["uuid"])
            return ok()

        return app


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest_asyncio.fixture
async def api(platform):
    client = ControlClient("http://platform", secret=SECRET, transport=httpx.ASGITransport(app=platform.app))
    yield PlatformApi(client)
    await client.close()


# ═══════════════════════════════════════════════════════════════════════
#  Fake media tools
# ═══════════════════════════════════════════════════════════════════════

FAKE_FFMPEG = """\
import os, signal, sys, time
args = sys.argv[1:]
if os.environ.get("FAKE_FFMPEG_FAIL") == "1":
    sys.stderr.write("Connection refused\\n")
    sys.exit(1)
if "-t" in args:
    time.sleep(float(os.environ.get("FAKE_FFMPEG_CAPTURE_DELAY", "0.1")))
    with open(args[-1], "wb") as f:
        f.write(b"FLV")
    sys.exit(0)
signal.signal(signal.SIGTERM, lambda *_: sys.exit(255))
while True:
    time.sleep(0.05)
"""

FAKE_FFPROBE = """\
import os, sys
if os.environ.get("FAKE_FFPROBE_FAIL") == "1":
    sys.stderr.write("Invalid data found when processing input\\n")
    sys.exit(1)
with open(os.environ["FAKE_PROBE_JSON"]) as f:
    sys.stdout.write(f.read())
"""


def _write_script(path, body: str) -> str:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def fake_ffmpeg(tmp_path) -> str:
    return _write_script(tmp_path / "ffmpeg", FAKE_FFMPEG)


@pytest.fixture
def fake_ffprobe(tmp_path) -> str:
    return _write_script(tmp_path / "ffprobe", FAKE_FFPROBE)


def probe_output(streams: int = 2, score: int = 100, duration: float = 2.0) -> dict[str, Any]:
    kinds = [
        {"index": 0, "codec_name": "h264", "codec_type": "video", "profile": "High", "width": 768, "height": 320},
        {"index": 1, "codec_name": "aac", "codec_type": "audio", "channels": 2, "sample_rate": "44100"},
    ]
    return {
        "streams": kinds[:streams],
        "format": {
            "filename": "capture.flv",
            "nb_streams": streams,
            "format_name": "flv",
            "duration": f"{duration:.6f}",
            "bit_rate": "215000",
            "probe_score": score,
        },
    }


@pytest.fixture
def probe_json(tmp_path, monkeypatch):
    """Write the fake ffprobe output; returns a setter taking probe_output kwargs."""
    path = tmp_path / "probe.json"
    monkeypatch.setenv("FAKE_PROBE_JSON", str(path))

    def _set(raw: str | None = None, **kwargs) -> str:
        path.write_text(raw if raw is not None else json.dumps(probe_output(**kwargs)))
        return str(path)

    _set()
    return _set
