"""
Subprocess-backed tasks: the media publisher and the media prober.

Each task wraps an external process started with
``asyncio.create_subprocess_exec``.  A task runs until the process exits
or the shared :class:`~tools.media_qa.context.BoundedContext` is done; in
the latter case the process gets SIGTERM, then SIGKILL after a grace
period.  :class:`TaskSet` launches tasks concurrently, writes exactly one
outcome per task into its slot and always waits for every task.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable

from common.errors import ContextCancelled, HarnessError, SubprocessError
from tools.media_qa.config import FFMPEG_BIN, FFPROBE_BIN
from tools.media_qa.context import BoundedContext, CancelReason
from tools.media_qa.models import ProbeResult
from tools.media_qa.outcomes import OutcomeSlots

logger = logging.getLogger(__name__)

_TERM_GRACE = 3.0
_TAIL = 500


@dataclass
class ProcessExit:
    returncode: int | None
    stdout: str
    stderr: str
    cancelled: bool

    def tail(self) -> str:
        return self.stderr[-_TAIL:].strip()


class ProcessTask:
    """Base class: spawn one process and supervise it against a context."""

    role = "process"

    def __init__(self, grace: float = _TERM_GRACE):
        self.grace = grace
        self.pid: int | None = None

    async def _spawn(self, argv: list[str]) -> asyncio.subprocess.Process:
        logger.info("%s start: %s", self.role, " ".join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SubprocessError(f"{self.role} failed to start {argv[0]}") from exc
        self.pid = proc.pid
        return proc

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.grace)
        except asyncio.TimeoutError:
            logger.warning("%s pid=%s ignored SIGTERM for %.1fs, killing", self.role, proc.pid, self.grace)
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    async def _run_process(self, ctx: BoundedContext, argv: list[str]) -> ProcessExit:
        """Run *argv* until it exits or *ctx* is done, whichever comes first."""
        proc = await self._spawn(argv)
        io = asyncio.ensure_future(proc.communicate())
        waiter = asyncio.ensure_future(ctx.wait())
        try:
            await asyncio.wait({io, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._terminate(proc)
            io.cancel()
            raise
        finally:
            waiter.cancel()

        cancelled = not io.done()
        if cancelled:
            logger.info("%s pid=%s stopping, %s is done (%s)", self.role, proc.pid, ctx.name, ctx.reason)
            await self._terminate(proc)
        out, err = await io
        result = ProcessExit(
            returncode=proc.returncode,
            stdout=(out or b"").decode(errors="replace"),
            stderr=(err or b"").decode(errors="replace"),
            cancelled=cancelled,
        )
        logger.info("%s pid=%s exit code=%s cancelled=%s", self.role, proc.pid, result.returncode, cancelled)
        return result


# ── Publisher ────────────────────────────────────────────────────────


class FFmpegPublisher(ProcessTask):
    """Publishes a stream with raw passthrough ffmpeg arguments.

    Stopping because the context is done is the normal end of a publisher.
    Exiting on its own with a non-zero code aborts the shared context so
    sibling tasks and the driver stop waiting.
    """

    role = "publisher"

    def __init__(self, args: list[str], ffmpeg: str = FFMPEG_BIN, grace: float = _TERM_GRACE):
        super().__init__(grace)
        self.args = list(args)
        self.ffmpeg = ffmpeg
        self.exit: ProcessExit | None = None

    async def run(self, ctx: BoundedContext) -> None:
        try:
            self.exit = await self._run_process(ctx, [self.ffmpeg, *self.args])
        except SubprocessError:
            ctx.cancel(CancelReason.ABORTED)
            raise

        if self.exit.cancelled or self.exit.returncode == 0:
            return
        ctx.cancel(CancelReason.ABORTED)
        raise SubprocessError(
            f"publisher exited code={self.exit.returncode}: {self.exit.tail()}",
            returncode=self.exit.returncode,
            output=self.exit.stderr,
        )


# ── Prober ───────────────────────────────────────────────────────────


class FFprobeProber(ProcessTask):
    """Captures *duration* seconds of a stream into a file, then probes it.

    :attr:`probe_done` is a context of its own, cancelled (reason
    ``COMPLETED``) when the prober finishes for any reason.  It is not
    derived from the scenario context, so a driver can race it against
    the scenario deadline.  Must be created inside a running loop.
    """

    role = "prober"

    def __init__(
        self,
        stream_url: str,
        dvr_file: str,
        duration: float,
        timeout: float,
        ffmpeg: str = FFMPEG_BIN,
        ffprobe: str = FFPROBE_BIN,
        grace: float = _TERM_GRACE,
    ):
        super().__init__(grace)
        self.stream_url = stream_url
        self.dvr_file = dvr_file
        self.duration = duration
        self.timeout = timeout
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.probe_done = BoundedContext(None, name="probe-done")
        self._raw = ""
        self._result = ProbeResult()

    def result(self) -> tuple[str, ProbeResult]:
        """Raw ffprobe output and parsed metadata; empty until probing succeeded."""
        return self._raw, self._result

    async def run(self, ctx: BoundedContext) -> None:
        try:
            await self._capture(ctx)
            await self._probe(ctx)
        finally:
            self.probe_done.cancel(CancelReason.COMPLETED)

    async def _capture(self, ctx: BoundedContext) -> None:
        argv = [
            self.ffmpeg, "-t", f"{self.duration:.3f}", "-i", self.stream_url,
            "-c", "copy", "-y", self.dvr_file,
        ]
        capture = ctx.child(self.timeout, name="prober.capture")
        try:
            res = await self._run_process(capture, argv)
        finally:
            capture.cancel(CancelReason.COMPLETED)

        if res.cancelled and ctx.is_done:
            raise SubprocessError(f"prober cancelled before completion of {self.stream_url}") from ctx.error()
        if res.cancelled:
            # Internal timeout: probe whatever was captured.
            if not os.path.exists(self.dvr_file):
                raise SubprocessError(f"prober captured nothing from {self.stream_url} in {self.timeout}s")
            logger.warning("prober capture timeout after %ss, probing partial %s", self.timeout, self.dvr_file)
            return
        if res.returncode != 0:
            raise SubprocessError(
                f"prober capture exited code={res.returncode}: {res.tail()}",
                returncode=res.returncode,
                output=res.stderr,
            )

    async def _probe(self, ctx: BoundedContext) -> None:
        argv = [
            self.ffprobe, "-show_error", "-show_private_data", "-v", "quiet", "-find_stream_info",
            "-print_format", "json", "-show_format", "-show_streams", self.dvr_file,
        ]
        if ctx.is_done:
            raise SubprocessError(f"prober cancelled before probing {self.dvr_file}") from ctx.error()
        res = await self._run_process(ctx, argv)
        if res.cancelled:
            raise SubprocessError(f"prober cancelled while probing {self.dvr_file}") from ctx.error()
        if res.returncode != 0:
            raise SubprocessError(
                f"ffprobe exited code={res.returncode}: {res.tail()}",
                returncode=res.returncode,
                output=res.stdout,
            )
        parsed = ProbeResult.parse(res.stdout)
        self._raw, self._result = res.stdout, parsed
        logger.info("probe done: %s", parsed.summary())


# ── Task set ─────────────────────────────────────────────────────────


class TaskSet:
    """Concurrently running tasks, each owning one outcome slot."""

    def __init__(self, slots: OutcomeSlots):
        self.slots = slots
        self._tasks: list[asyncio.Task] = []

    def spawn(self, slot: str, aw: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(slot, aw))
        self._tasks.append(task)
        return task

    async def _guard(self, slot: str, aw: Awaitable[None]) -> None:
        try:
            await aw
        except asyncio.CancelledError:
            self.slots.set(slot, ContextCancelled(f"{slot} task cancelled"))
            raise
        except HarnessError as exc:
            logger.warning("%s failed: %s", slot, exc)
            self.slots.set(slot, exc)
            return
        except Exception as exc:
            logger.exception("%s crashed", slot)
            self.slots.set(slot, exc)
            return
        self.slots.set(slot, None)

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def wait_all(self) -> None:
        """Wait until every spawned task returned."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
