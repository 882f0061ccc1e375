"""
Bounded, cancellable execution scope shared by every task of a scenario.

A :class:`BoundedContext` combines a deadline with a cancellation signal.
Cancellation is monotonic: the first cause wins (deadline timer, explicit
:meth:`BoundedContext.cancel`, or the parent being cancelled) and the
context never becomes live again.  The cause is kept as a typed
:class:`CancelReason` so a driver that cancels because its work is done
can be told apart from a scenario that ran out of time.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable

from common.errors import ContextCancelled, DeadlineExceeded, HarnessError

logger = logging.getLogger(__name__)


class CancelReason(str, enum.Enum):
    COMPLETED = "completed"  # work finished, shut siblings down
    DEADLINE = "deadline"
    ABORTED = "aborted"  # a task failed and stopped the scenario early


class BoundedContext:
    """Deadline + cancellation signal. Must be created inside a running loop."""

    def __init__(
        self,
        timeout: float | None = None,
        *,
        name: str = "ctx",
        parent: BoundedContext | None = None,
    ):
        self.name = name
        self.timeout = timeout
        self._loop = asyncio.get_running_loop()
        self._done = asyncio.Event()
        self._reason: CancelReason | None = None
        self._children: list[BoundedContext] = []
        self._parent: BoundedContext | None = None
        self._timer: asyncio.TimerHandle | None = None

        own_deadline = self._loop.time() + timeout if timeout is not None else None
        parent_deadline = parent.deadline if parent is not None else None
        if own_deadline is None:
            self._deadline = parent_deadline
        elif parent_deadline is None:
            self._deadline = own_deadline
        else:
            self._deadline = min(own_deadline, parent_deadline)

        if parent is not None:
            if parent.is_done:
                self._fire(parent.reason or CancelReason.ABORTED)
                return
            parent._children.append(self)
            self._parent = parent

        if timeout is not None:
            self._timer = self._loop.call_later(max(timeout, 0.0), self._expire)

    # ── Observation ──────────────────────────────────────────────────

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    @property
    def deadline(self) -> float | None:
        """Absolute loop time at which this context expires, if any."""
        return self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline (``None`` when unbounded)."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._loop.time())

    async def wait(self) -> None:
        await self._done.wait()

    def error(self) -> HarnessError | None:
        """Terminal error of the context, ``None`` while still live."""
        if self._reason is None:
            return None
        if self._reason is CancelReason.DEADLINE:
            return DeadlineExceeded(f"{self.name} deadline of {self.timeout}s exceeded")
        return ContextCancelled(f"{self.name} cancelled ({self._reason.value})", reason=self._reason.value)

    def failure(self) -> HarnessError | None:
        """Error that counts against a verdict: only an expired deadline does."""
        if self._reason is CancelReason.DEADLINE:
            return self.error()
        return None

    # ── Control ──────────────────────────────────────────────────────

    def cancel(self, reason: CancelReason = CancelReason.COMPLETED) -> bool:
        """Cancel the context and all children. Returns False if already done."""
        if self.is_done:
            return False
        logger.debug("Cancel %s reason=%s", self.name, reason.value)
        self._fire(reason)
        return True

    def child(self, timeout: float | None = None, name: str | None = None) -> BoundedContext:
        return BoundedContext(timeout, name=name or f"{self.name}.child", parent=self)

    def _expire(self) -> None:
        if not self.is_done:
            logger.info("Context %s expired after %ss", self.name, self.timeout)
            self._fire(CancelReason.DEADLINE)

    def _fire(self, reason: CancelReason) -> None:
        self._reason = reason
        self._done.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None:
            # Finished children leave the parent's list.
            if self in self._parent._children:
                self._parent._children.remove(self)
            self._parent = None
        children, self._children = self._children, []
        for c in children:
            if not c.is_done:
                c._fire(reason)

    # ── Select helpers ───────────────────────────────────────────────

    async def run(self, aw: Awaitable[Any]) -> Any:
        """Await *aw* unless the context finishes first.

        When the context wins, *aw* is cancelled and awaited, then the
        context's terminal error is raised.
        """
        if self.is_done:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise self.error()  # type: ignore[misc]

        work = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._done.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise self.error()  # type: ignore[misc]

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to *seconds*. Returns False if the context finished first."""
        if self.is_done:
            return False
        try:
            await asyncio.wait_for(self._done.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    def __repr__(self) -> str:
        state = self._reason.value if self._reason else "live"
        return f"<BoundedContext {self.name} {state} remaining={self.remaining()}>"


async def wait_any(*contexts: BoundedContext) -> BoundedContext:
    """Block until one of *contexts* is done and return the first one found done."""
    for c in contexts:
        if c.is_done:
            return c
    waiters = [asyncio.ensure_future(c.wait()) for c in contexts]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in waiters:
            w.cancel()
    return next(c for c in contexts if c.is_done)
