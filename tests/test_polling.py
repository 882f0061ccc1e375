"""Unit tests – bounded polling reconciler."""

import asyncio
import time

import pytest

from common.errors import ApiError, PollTimeout
from tools.media_qa.context import BoundedContext, CancelReason
from tools.media_qa.models import RecordFile
from tools.media_qa.polling import PollState, classify_record, classify_records, poll, wait_record_files
from tests.conftest import STREAM_ID


def test_classify_record():
    assert classify_record(None) is PollState.NOT_FOUND
    assert classify_record(RecordFile(stream="s", progress=True)) is PollState.IN_PROGRESS
    assert classify_record(RecordFile(stream="s", progress=False)) is PollState.SETTLED


def test_classify_records_waits_for_every_file():
    done = RecordFile(stream="s", progress=False)
    busy = RecordFile(stream="s", progress=True)
    assert classify_records([]) is PollState.NOT_FOUND
    assert classify_records([done, busy]) is PollState.IN_PROGRESS
    assert classify_records([done, done]) is PollState.SETTLED


@pytest.mark.asyncio
async def test_poll_settles_after_in_progress():
    ctx = BoundedContext(5)
    seq = iter([None, RecordFile(stream="s", progress=True), RecordFile(stream="s", uuid="u", duration=12)])
    calls = []

    async def fetch():
        calls.append(1)
        return next(seq)

    rf = await poll(ctx, fetch, classify_record, attempts=10, interval=0.01)

    assert rf.uuid == "u"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_poll_never_exceeds_attempt_budget():
    ctx = BoundedContext(5)
    calls = []

    async def fetch():
        calls.append(1)
        return RecordFile(stream="s", progress=True)

    with pytest.raises(PollTimeout, match="still in_progress after 4 attempt"):
        await poll(ctx, fetch, classify_record, attempts=4, interval=0.01, label="record")
    assert len(calls) == 4


@pytest.mark.asyncio
async def test_poll_aborts_when_context_done():
    ctx = BoundedContext(5)
    calls = []

    async def fetch():
        calls.append(1)
        return None

    asyncio.get_running_loop().call_later(0.05, ctx.cancel, CancelReason.ABORTED)
    t0 = time.monotonic()
    with pytest.raises(PollTimeout, match="not found before deadline"):
        await poll(ctx, fetch, classify_record, attempts=1000, interval=0.02)

    assert time.monotonic() - t0 < 2
    assert len(calls) < 1000


@pytest.mark.asyncio
async def test_poll_on_expired_context_does_not_fetch():
    ctx = BoundedContext(0.0)
    await ctx.wait()

    async def fetch():
        raise AssertionError("must not be called")

    with pytest.raises(PollTimeout):
        await poll(ctx, fetch, classify_record, attempts=5, interval=0.01)


@pytest.mark.asyncio
async def test_poll_propagates_fetch_errors():
    ctx = BoundedContext(5)

    async def fetch():
        raise ApiError("request record files failed")

    with pytest.raises(ApiError):
        await poll(ctx, fetch, classify_record, attempts=5, interval=0.01)


@pytest.mark.asyncio
async def test_wait_record_files_against_platform(api, platform):
    platform.record_files.append({"stream": "other", "uuid": "x", "duration": 30, "progress": False})
    platform.record_files.append({"stream": STREAM_ID, "uuid": "record-uuid-1", "duration": 25, "progress": True})
    platform.record_progress_listings = 2
    seen = []

    ctx = BoundedContext(5)
    files = await wait_record_files(api, ctx, STREAM_ID, attempts=10, interval=0.01, on_seen=seen.append)

    assert [f.uuid for f in files] == ["record-uuid-1"]
    assert files[0].progress is False
    assert len(seen) == 3
    assert len(platform.calls_to("/terraform/v1/hooks/record/files")) == 3


@pytest.mark.asyncio
async def test_wait_record_files_returns_every_match(api, platform):
    platform.record_files.append({"stream": STREAM_ID, "uuid": "record-uuid-1", "duration": 25, "progress": True})
    platform.record_files.append({"stream": STREAM_ID, "uuid": "dup-uuid", "duration": 25, "progress": False})
    platform.record_progress_listings = 1
    seen = set()

    ctx = BoundedContext(5)
    files = await wait_record_files(api, ctx, STREAM_ID, attempts=10, interval=0.01,
                                    on_seen=lambda f: seen.add(f.uuid))

    assert sorted(f.uuid for f in files) == ["dup-uuid", "record-uuid-1"]
    assert seen == {"dup-uuid", "record-uuid-1"}
