"""
Bounded polling for state that the platform materialises asynchronously.

The platform offers no push notification when a record file is finalised,
so the harness lists, classifies and sleeps a fixed interval, up to a
fixed number of attempts, giving up early once the scenario context is
done.
"""

from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, TypeVar

from common.errors import ContextCancelled, DeadlineExceeded, PollTimeout
from tools.media_qa.context import BoundedContext
from tools.media_qa.control_api import PlatformApi
from tools.media_qa.models import RecordFile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollState(str, enum.Enum):
    NOT_FOUND = "not_found"
    IN_PROGRESS = "in_progress"
    SETTLED = "settled"


async def poll(
    ctx: BoundedContext,
    fetch: Callable[[], Awaitable[T | None]],
    classify: Callable[[T | None], PollState],
    *,
    attempts: int,
    interval: float,
    label: str = "resource",
) -> T:
    """Call *fetch* until *classify* says SETTLED; at most *attempts* times.

    Raises :class:`PollTimeout` when the budget is exhausted or the context
    is done first. Errors raised by *fetch* itself propagate unchanged.
    """
    last: T | None = None
    state = PollState.NOT_FOUND
    for attempt in range(1, attempts + 1):
        try:
            item = await ctx.run(fetch())
        except (DeadlineExceeded, ContextCancelled) as exc:
            raise PollTimeout(f"{label} not found before deadline", attempts=attempt) from exc

        state = classify(item)
        if state is PollState.SETTLED:
            logger.info("%s settled after %d attempt(s)", label, attempt)
            return item  # type: ignore[return-value]

        last = item
        logger.debug("%s %s (attempt %d/%d)", label, state.value, attempt, attempts)
        if attempt == attempts:
            break
        if not await ctx.sleep(interval):
            raise PollTimeout(f"{label} not found before deadline", attempts=attempt) from ctx.error()

    raise PollTimeout(
        f"{label} still {state.value} after {attempts} attempt(s), last={last}",
        attempts=attempts,
    )


def classify_record(rf: RecordFile | None) -> PollState:
    if rf is None:
        return PollState.NOT_FOUND
    if rf.progress:
        return PollState.IN_PROGRESS
    return PollState.SETTLED


def classify_records(files: list[RecordFile] | None) -> PollState:
    """Settled only once every matching file is."""
    if not files:
        return PollState.NOT_FOUND
    if any(classify_record(f) is PollState.IN_PROGRESS for f in files):
        return PollState.IN_PROGRESS
    return PollState.SETTLED


async def wait_record_files(
    api: PlatformApi,
    ctx: BoundedContext,
    stream_id: str,
    *,
    attempts: int,
    interval: float,
    on_seen: Callable[[RecordFile], None] | None = None,
) -> list[RecordFile]:
    """Poll the record file listing until every file of *stream_id* is settled.

    Returns all matching entries; the caller decides how many it expects.
    *on_seen* is called with every matching entry of every listing,
    settled or not, so a caller can schedule removal even if polling ends
    in failure.
    """

    async def fetch() -> list[RecordFile]:
        matched = [f for f in await api.record_files() if f.stream == stream_id]
        if on_seen is not None:
            for f in matched:
                on_seen(f)
        return matched

    return await poll(
        ctx,
        fetch,
        classify_records,
        attempts=attempts,
        interval=interval,
        label=f"record file of {stream_id}",
    )
