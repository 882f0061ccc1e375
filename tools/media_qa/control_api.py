"""
Typed wrappers around the streaming platform's control API.

Every method is a single ``POST`` through :class:`common.http_client.ControlClient`;
JSON marshaling stays in the client, field mapping in :mod:`tools.media_qa.models`.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from common.errors import ApiError
from common.http_client import ControlClient
from tools.media_qa.models import RecordFile, SourceCodec, UploadedFile

logger = logging.getLogger(__name__)

SECRET_QUERY = "/terraform/v1/hooks/srs/secret/query"
VLIVE_SERVER = "/terraform/v1/ffmpeg/vlive/server"
VLIVE_SOURCE = "/terraform/v1/ffmpeg/vlive/source"
VLIVE_SECRET = "/terraform/v1/ffmpeg/vlive/secret"
RECORD_QUERY = "/terraform/v1/hooks/record/query"
RECORD_APPLY = "/terraform/v1/hooks/record/apply"
RECORD_FILES = "/terraform/v1/hooks/record/files"
RECORD_REMOVE = "/terraform/v1/hooks/record/remove"


def _as_dict(data: Any, path: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ApiError(f"request {path} returned {type(data).__name__}, want object", path=path)
    return data


class PlatformApi:
    def __init__(self, client: ControlClient):
        self.client = client

    # ── Hooks ────────────────────────────────────────────────────────

    async def query_publish_secret(self) -> str:
        data = _as_dict(await self.client.request_json(SECRET_QUERY), SECRET_QUERY)
        secret = data.get("publish")
        if not isinstance(secret, str) or not secret:
            raise ApiError(f"request {SECRET_QUERY} returned no publish secret", path=SECRET_QUERY)
        return secret

    # ── Virtual live ─────────────────────────────────────────────────

    async def vlive_server(self, file: str) -> UploadedFile:
        path = f"{VLIVE_SERVER}?file={quote(file, safe='/')}"
        data = await self.client.request_json(path)
        try:
            return UploadedFile.model_validate(_as_dict(data, path))
        except ValidationError as exc:
            raise ApiError(f"request {path} returned invalid file", path=path) from exc

    async def vlive_source(self, platform: str, files: list[UploadedFile]) -> list[SourceCodec]:
        body = {"platform": platform, "files": [f.model_dump() for f in files]}
        data = _as_dict(await self.client.request_json(VLIVE_SOURCE, body), VLIVE_SOURCE)
        try:
            return [SourceCodec.model_validate(f) for f in data.get("files") or []]
        except ValidationError as exc:
            raise ApiError(f"request {VLIVE_SOURCE} returned invalid codec", path=VLIVE_SOURCE) from exc

    async def vlive_secret(self) -> dict[str, Any]:
        return _as_dict(await self.client.request_json(VLIVE_SECRET), VLIVE_SECRET)

    async def apply_vlive_secret(self, conf: dict[str, Any]) -> None:
        await self.client.request_json(VLIVE_SECRET, conf)

    # ── Record ───────────────────────────────────────────────────────

    async def record_query(self) -> dict[str, Any]:
        return _as_dict(await self.client.request_json(RECORD_QUERY), RECORD_QUERY)

    async def record_apply(self, conf: dict[str, Any]) -> None:
        await self.client.request_json(RECORD_APPLY, conf)

    async def record_files(self) -> list[RecordFile]:
        data = await self.client.request_json(RECORD_FILES)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ApiError(f"request {RECORD_FILES} returned {type(data).__name__}, want list", path=RECORD_FILES)
        try:
            return [RecordFile.model_validate(f) for f in data]
        except ValidationError as exc:
            raise ApiError(f"request {RECORD_FILES} returned invalid file", path=RECORD_FILES) from exc

    async def record_remove(self, uuid: str) -> None:
        logger.info("remove record file %s", uuid)
        await self.client.request_json(RECORD_REMOVE, {"uuid": uuid})
