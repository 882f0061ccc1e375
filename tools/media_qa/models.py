"""Pydantic wire models for control API payloads and ffprobe output."""

from __future__ import annotations

import json

from pydantic import BaseModel, Field, ValidationError

from common.errors import ParseError


# ── Control API ──────────────────────────────────────────────────────


class UploadedFile(BaseModel):
    name: str = ""
    size: int = 0
    target: str = ""
    uuid: str = ""


class AudioCodec(BaseModel):
    codec_name: str = ""
    channels: int = 0
    sample_rate: str = ""


class VideoCodec(BaseModel):
    codec_name: str = ""
    profile: str = ""
    width: int = 0
    height: int = 0


class SourceCodec(BaseModel):
    uuid: str = ""
    audio: AudioCodec = Field(default_factory=AudioCodec)
    video: VideoCodec = Field(default_factory=VideoCodec)


class RecordFile(BaseModel):
    stream: str = ""
    uuid: str = ""
    duration: float = 0.0
    progress: bool = False


# ── ffprobe ──────────────────────────────────────────────────────────


class ProbeStream(BaseModel):
    index: int = 0
    codec_name: str = ""
    codec_type: str = ""
    profile: str | None = None
    width: int | None = None
    height: int | None = None
    channels: int | None = None
    sample_rate: str | None = None


class ProbeFormat(BaseModel):
    filename: str = ""
    nb_streams: int = 0
    format_name: str = ""
    duration: float = 0.0
    bit_rate: str = ""
    probe_score: int = 0


class ProbeResult(BaseModel):
    format: ProbeFormat = Field(default_factory=ProbeFormat)
    streams: list[ProbeStream] = Field(default_factory=list)

    def duration(self) -> float:
        """Measured duration in seconds."""
        return self.format.duration

    def summary(self) -> str:
        codecs = ",".join(f"{s.codec_type}/{s.codec_name}" for s in self.streams)
        return (
            f"format={self.format.format_name} streams={len(self.streams)}({codecs}) "
            f"duration={self.format.duration:.3f}s score={self.format.probe_score} "
            f"bitrate={self.format.bit_rate}"
        )

    @classmethod
    def parse(cls, raw: str) -> "ProbeResult":
        """Parse ``ffprobe -print_format json`` output; raises :class:`ParseError`."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"ffprobe output is not json: {raw[:200]!r}") from exc
        if not isinstance(data, dict) or "format" not in data:
            raise ParseError(f"ffprobe output has no format section: {raw[:200]!r}")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ParseError("ffprobe output does not match schema") from exc
