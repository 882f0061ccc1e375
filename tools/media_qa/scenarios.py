"""
Media scenarios driven through the control API and external media tools.

Each scenario returns a ``ScenarioResult`` so the runner can aggregate
PASS / FAIL status.  A scenario runs:

  1. Precondition  – fetch the publish secret (fail fast)
  2. Setup         – stage inputs, back up then mutate platform config
  3. Execution     – launch publisher and/or prober under one deadline
  4. Collection    – wait for every task, read results
  5. Assertion     – one outcome slot per predicate
  6. Verdict       – slots + deadline reduced to a single error

Teardown actions (config restore, record file removal) run on every exit
path in reverse order of registration, each under a fresh context since
the scenario's own may already be expired.

Scenarios:
  - rtmp_play_flv:  RTMP publish → HTTP-FLV playback probed by ffprobe
  - vlive_play_flv: virtual-live source → HTTP-FLV playback probed by ffprobe
  - record_mp4:     RTMP publish with recording on → record file settles
"""

from __future__ import annotations

import abc
import logging
import os
import random
import tempfile
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from common.correlation import new_correlation_id
from common.errors import (
    HarnessError,
    PreconditionError,
    ScenarioAssertionError,
    ScenarioFailed,
    SetupError,
    kind_of,
)
from tools.media_qa import config
from tools.media_qa.context import BoundedContext, CancelReason, wait_any
from tools.media_qa.control_api import PlatformApi
from tools.media_qa.models import AudioCodec, RecordFile, SourceCodec, VideoCodec
from tools.media_qa.outcomes import OutcomeSlots, reduce_outcomes
from tools.media_qa.polling import wait_record_files
from tools.media_qa.processes import FFmpegPublisher, FFprobeProber, TaskSet
from tools.media_qa.staging import copy_to_dest, first_existing

logger = logging.getLogger(__name__)


# ── Result model ─────────────────────────────────────────────────────


@dataclass
class ScenarioResult:
    name: str
    passed: bool
    skipped: bool = False
    duration_ms: float = 0.0
    detail: str = ""
    failures: list[str] = field(default_factory=list)
    correlation_id: str = ""
    error: ScenarioFailed | None = field(default=None, repr=False)


def new_stream_id() -> str:
    return f"stream-{os.getpid()}-{random.randint(0, 2**63 - 1)}"


# ── Driver ───────────────────────────────────────────────────────────


class Scenario(abc.ABC):
    """Base driver. Subclasses declare ``slots`` and implement :meth:`execute`.

    :meth:`execute` raises :class:`HarnessError` for fail-fast conditions
    (recorded in the ``setup`` slot); every other failure is written into
    its own slot.
    """

    name = "scenario"
    slots: tuple[str, ...] = ("setup",)

    def __init__(
        self,
        api: PlatformApi,
        *,
        timeout: float,
        restore_timeout: float = config.RESTORE_TIMEOUT,
        skip: bool = config.NO_MEDIA_TEST,
    ):
        self.api = api
        self.timeout = timeout
        self.restore_timeout = restore_timeout
        self.skip = skip

    @abc.abstractmethod
    async def execute(
        self,
        ctx: BoundedContext,
        outcomes: OutcomeSlots,
        tasks: TaskSet,
        teardown: AsyncExitStack,
    ) -> None: ...

    async def run(self) -> ScenarioResult:
        t0 = time.monotonic()
        cid = new_correlation_id()
        if self.skip:
            logger.info("Scenario %s skipped, media tests disabled", self.name)
            return ScenarioResult(name=self.name, passed=True, skipped=True, detail="media tests disabled",
                                  correlation_id=cid)

        logger.info("Scenario %s start, budget=%ss", self.name, self.timeout)
        ctx = BoundedContext(self.timeout, name=self.name)
        outcomes = OutcomeSlots(self.slots)
        tasks = TaskSet(outcomes)

        async with AsyncExitStack() as teardown:
            try:
                await self.execute(ctx, outcomes, tasks, teardown)
            except HarnessError as exc:
                logger.warning("Scenario %s aborted: %s", self.name, exc)
                outcomes.set("setup", exc)
            except Exception as exc:
                logger.exception("Scenario %s crashed", self.name)
                outcomes.set("setup", exc)
            finally:
                context_failure = ctx.failure()
                ctx.cancel(CancelReason.COMPLETED)
                if tasks.pending:
                    logger.info("Scenario %s waiting for %d task(s)", self.name, tasks.pending)
                await tasks.wait_all()

        verdict = reduce_outcomes(context_failure, outcomes)
        duration_ms = (time.monotonic() - t0) * 1000
        if verdict is None:
            logger.info("Scenario %s passed in %.0fms", self.name, duration_ms)
            return ScenarioResult(name=self.name, passed=True, duration_ms=duration_ms, detail="ok",
                                  correlation_id=cid)

        logger.error("Scenario %s failed: %s", self.name, verdict)
        return ScenarioResult(
            name=self.name,
            passed=False,
            duration_ms=duration_ms,
            detail=verdict.detail.splitlines()[0],
            failures=[f"[{slot}] {kind_of(exc)}: {exc}" for slot, exc in verdict.causes],
            correlation_id=cid,
            error=verdict,
        )

    # ── Teardown helpers ─────────────────────────────────────────────

    def defer(
        self,
        teardown: AsyncExitStack,
        label: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> None:
        """Schedule ``fn(*args)`` on scenario exit, best effort."""
        teardown.push_async_callback(self._best_effort, label, fn, *args)

    async def _best_effort(self, label: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        fresh = BoundedContext(self.restore_timeout, name=f"{self.name}.teardown")
        logger.info("%s", label)
        try:
            await fresh.run(fn(*args))
        except Exception as exc:
            logger.warning("%s failed: %s", label, exc)
        finally:
            fresh.cancel(CancelReason.COMPLETED)

    async def publish_secret(self, ctx: BoundedContext) -> str:
        try:
            return await ctx.run(self.api.query_publish_secret())
        except HarnessError as exc:
            raise PreconditionError("query publish secret failed") from exc


# ── Probe step shared by the playback scenarios ──────────────────────


class ProbeScenario(Scenario):
    """Base for scenarios that end by probing ``<http>/live/<stream>.flv``.

    The probe predicates run even if the prober failed, so the verdict
    lists every check the missing result implies.
    """

    def __init__(
        self,
        api: PlatformApi,
        *,
        http_url: str = config.HTTP_URL,
        probe_duration: float = config.PROBE_DURATION_MS / 1000,
        probe_timeout: float = config.PROBE_TIMEOUT_MS / 1000,
        timeout: float = config.TIMEOUT_MS / 1000,
        min_streams: int = 2,
        min_score: int = 90,
        work_dir: str | None = None,
        ffmpeg: str = config.FFMPEG_BIN,
        ffprobe: str = config.FFPROBE_BIN,
        **kwargs: Any,
    ):
        super().__init__(api, timeout=timeout, **kwargs)
        self.http_url = http_url.rstrip("/")
        self.probe_duration = probe_duration
        self.probe_timeout = probe_timeout
        self.min_streams = min_streams
        self.min_score = min_score
        self.work_dir = work_dir or tempfile.gettempdir()
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe

    async def probe_and_check(
        self,
        stream_id: str,
        ctx: BoundedContext,
        outcomes: OutcomeSlots,
        tasks: TaskSet,
        teardown: AsyncExitStack,
    ) -> None:
        prober = FFprobeProber(
            stream_url=f"{self.http_url}/live/{stream_id}.flv",
            dvr_file=os.path.join(self.work_dir, f"srs-ffprobe-{stream_id}.flv"),
            duration=self.probe_duration,
            timeout=self.probe_timeout,
            ffmpeg=self.ffmpeg,
            ffprobe=self.ffprobe,
        )
        self.defer(teardown, f"remove {prober.dvr_file}", _remove_file, prober.dvr_file)
        tasks.spawn("prober", prober.run(ctx))

        # Fast quit once the probe is done; this also stops any publisher.
        if await wait_any(ctx, prober.probe_done) is prober.probe_done:
            ctx.cancel(CancelReason.COMPLETED)
        await tasks.wait_all()

        raw, m = prober.result()
        if len(m.streams) < self.min_streams:
            outcomes.fail("streams", ScenarioAssertionError(
                f"invalid streams={len(m.streams)} < {self.min_streams}, {m.summary()}, {raw[:300]}"))
        if m.format.probe_score < self.min_score:
            outcomes.fail("score", ScenarioAssertionError(
                f"low score={m.format.probe_score} < {self.min_score}, {m.summary()}"))
        if m.duration() < self.probe_duration / 2:
            outcomes.fail("duration", ScenarioAssertionError(
                f"short duration={m.duration():.3f}s < {self.probe_duration / 2:.3f}s, {m.summary()}"))


async def _remove_file(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)


# ── Scenario: RTMP publish → HTTP-FLV ────────────────────────────────


class RtmpPlayFlvScenario(ProbeScenario):
    """Publish over RTMP and probe the same stream over HTTP-FLV."""

    name = "rtmp_play_flv"
    slots = ("setup", "publisher", "prober", "streams", "score", "duration")

    def __init__(
        self,
        api: PlatformApi,
        *,
        input_file: str = config.INPUT_FILE,
        rtmp_url: str = config.RTMP_URL,
        **kwargs: Any,
    ):
        super().__init__(api, **kwargs)
        self.input_file = input_file
        self.rtmp_url = rtmp_url.rstrip("/")
        self.publisher: FFmpegPublisher | None = None

    async def execute(self, ctx, outcomes, tasks, teardown) -> None:
        secret = await self.publish_secret(ctx)

        stream_id = new_stream_id()
        self.publisher = FFmpegPublisher(
            [
                "-re", "-stream_loop", "-1", "-i", self.input_file, "-c", "copy",
                "-f", "flv", f"{self.rtmp_url}/live/{stream_id}?secret={secret}",
            ],
            ffmpeg=self.ffmpeg,
        )
        tasks.spawn("publisher", self.publisher.run(ctx))

        await self.probe_and_check(stream_id, ctx, outcomes, tasks, teardown)


# ── Scenario: virtual live → HTTP-FLV ────────────────────────────────


class VirtualLiveScenario(ProbeScenario):
    """Push an uploaded file as a virtual live stream and probe its playback."""

    name = "vlive_play_flv"
    slots = ("setup", "prober", "streams", "score", "duration")

    def __init__(
        self,
        api: PlatformApi,
        *,
        input_file: str = config.INPUT_FILE,
        upload_dirs: list[str] | None = None,
        platform: str = "bilibili",
        expected_audio: AudioCodec | None = None,
        expected_video: VideoCodec | None = None,
        **kwargs: Any,
    ):
        super().__init__(api, **kwargs)
        self.input_file = input_file
        self.upload_dirs = upload_dirs if upload_dirs is not None else list(config.UPLOAD_DIRS)
        self.platform = platform
        self.expected_audio = expected_audio or AudioCodec(codec_name="aac", channels=2, sample_rate="44100")
        self.expected_video = expected_video or VideoCodec(codec_name="h264", profile="High", width=768, height=320)

    def _source_path(self) -> str:
        copy_to_dest(self.input_file, self.upload_dirs)
        source = first_existing(os.path.basename(self.input_file), self.upload_dirs)
        if source is None:
            raise SetupError("no source file found")
        # Outside the absolute upload dir the platform expects a short path.
        if not source.startswith("/data/upload/"):
            source = "upload/" + os.path.basename(source)
        return source

    def _check_codec(self, codec: SourceCodec, uuid: str) -> None:
        if codec.uuid != uuid:
            raise SetupError(f"invalid codec uuid={codec.uuid}, {uuid}")
        if codec.audio != self.expected_audio:
            raise SetupError(f"invalid codec audio={codec.audio}")
        if codec.video != self.expected_video:
            raise SetupError(f"invalid codec video={codec.video}")

    async def execute(self, ctx, outcomes, tasks, teardown) -> None:
        secret = await self.publish_secret(ctx)
        source = self._source_path()

        try:
            uploaded = await ctx.run(self.api.vlive_server(source))
            codecs = await ctx.run(self.api.vlive_source(self.platform, [uploaded]))
        except HarnessError as exc:
            raise SetupError("request ffmpeg vlive source failed") from exc
        if not codecs:
            raise SetupError("vlive source returned no codec")
        self._check_codec(codecs[0], uploaded.uuid)

        try:
            conf = await ctx.run(self.api.vlive_secret())
        except HarnessError as exc:
            raise SetupError("request ffmpeg vlive secret failed") from exc
        target = conf.get(self.platform)
        if not isinstance(target, dict):
            raise SetupError(f"invalid {self.platform} secret")
        target["action"] = "update"

        backup = dict(target)
        self.defer(teardown, f"restore vlive config {backup}", self.api.apply_vlive_secret, backup)

        stream_id = new_stream_id()
        target["secret"] = f"{stream_id}?secret={secret}"
        target["server"] = "rtmp://localhost/live/"
        target["enabled"] = True
        try:
            await ctx.run(self.api.apply_vlive_secret(target))
        except HarnessError as exc:
            raise SetupError("request ffmpeg vlive secret failed") from exc

        await self.probe_and_check(stream_id, ctx, outcomes, tasks, teardown)


# ── Scenario: RTMP publish → record file ─────────────────────────────


class RecordScenario(Scenario):
    """Publish over RTMP with recording enabled and wait for the record file."""

    name = "record_mp4"
    slots = ("setup", "publisher", "record", "assertion")

    def __init__(
        self,
        api: PlatformApi,
        *,
        input_file: str = config.INPUT_FILE,
        rtmp_url: str = config.RTMP_URL,
        timeout: float = config.LONG_TIMEOUT_MS / 1000,
        record_wait: float = config.RECORD_WAIT_S,
        poll_attempts: int = config.RECORD_POLL_ATTEMPTS,
        poll_interval: float = config.RECORD_POLL_INTERVAL,
        min_duration: float = config.RECORD_MIN_DURATION,
        settle: float = config.RECORD_SETTLE_S,
        ffmpeg: str = config.FFMPEG_BIN,
        **kwargs: Any,
    ):
        super().__init__(api, timeout=timeout, **kwargs)
        self.input_file = input_file
        self.rtmp_url = rtmp_url.rstrip("/")
        self.record_wait = record_wait
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.min_duration = min_duration
        self.settle = settle
        self.ffmpeg = ffmpeg

    async def execute(self, ctx, outcomes, tasks, teardown) -> None:
        secret = await self.publish_secret(ctx)

        try:
            backup = await ctx.run(self.api.record_query())
        except HarnessError as exc:
            raise SetupError("request record query failed") from exc
        self.defer(teardown, f"restore record config {backup}", self.api.record_apply, backup)

        try:
            await ctx.run(self.api.record_apply({"all": True}))
        except HarnessError as exc:
            raise SetupError("request record apply failed") from exc

        stream_id = new_stream_id()
        publisher = FFmpegPublisher(
            [
                "-re", "-stream_loop", "-1", "-i", self.input_file, "-c", "copy",
                "-f", "flv", f"{self.rtmp_url}/live/{stream_id}?secret={secret}",
            ],
            ffmpeg=self.ffmpeg,
        )
        tasks.spawn("publisher", publisher.run(ctx))

        # Give the record worker time to write the file.
        await ctx.sleep(self.record_wait)

        try:
            await ctx.run(self.api.record_apply({"all": False}))
        except HarnessError as exc:
            outcomes.fail("record", SetupError("stop record worker failed").caused_by(exc))
            return
        logger.info("stop record worker done")

        seen: dict[str, RecordFile] = {}

        async def remove_seen() -> None:
            for uuid in seen:
                try:
                    await self.api.record_remove(uuid)
                except HarnessError as exc:
                    logger.warning("remove record file %s failed: %s", uuid, exc)

        self.defer(teardown, f"remove record files of {stream_id}", remove_seen)

        def on_seen(rf: RecordFile) -> None:
            if rf.uuid:
                seen[rf.uuid] = rf

        try:
            files = await wait_record_files(
                self.api,
                ctx,
                stream_id,
                attempts=self.poll_attempts,
                interval=self.poll_interval,
                on_seen=on_seen,
            )
        except HarnessError as exc:
            outcomes.fail("record", exc)
            return

        if len(files) != 1:
            outcomes.fail("assertion", ScenarioAssertionError(
                f"expected exactly one record file of {stream_id}, got {len(files)}: {[f.uuid for f in files]}"))
            return
        record = files[0]

        if record.duration < self.min_duration:
            outcomes.fail("assertion", ScenarioAssertionError(
                f"record file duration too short, {record.duration} < {self.min_duration}, {record}"))
            return

        await ctx.sleep(self.settle)
        logger.info("record ok, file is %s", record)
        ctx.cancel(CancelReason.COMPLETED)


# ── Registry ─────────────────────────────────────────────────────────

SCENARIOS: dict[str, type[Scenario]] = {
    RtmpPlayFlvScenario.name: RtmpPlayFlvScenario,
    VirtualLiveScenario.name: VirtualLiveScenario,
    RecordScenario.name: RecordScenario,
}


def build_scenarios(api: PlatformApi, names: list[str] | None = None) -> list[Scenario]:
    selected = names or list(SCENARIOS)
    unknown = [n for n in selected if n not in SCENARIOS]
    if unknown:
        raise ValueError(f"unknown scenario(s): {', '.join(unknown)}")
    return [SCENARIOS[n](api) for n in selected]
