"""Back-off gate in front of the price feed.

While the feed is rate limiting us the gate is ``open``: callers answer
from cache and park a refresh callback here. Once the reset deadline passes
the parked callbacks are replayed a few at a time with a pause between
requests, so the backlog does not trip the limit again straight away.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable

from core.exceptions import UpstreamRateLimited

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[object]]


class RateLimitGate:
    CLOSED = "closed"
    OPEN = "open"

    def __init__(
        self,
        default_backoff: float = 60.0,
        batch_size: int = 3,
        spacing: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.default_backoff = default_backoff
        self.batch_size = batch_size
        self.spacing = spacing
        self._clock = clock
        self._sleep = sleep

        self.reset_at: float | None = None
        self._queue: "OrderedDict[str, Callback]" = OrderedDict()
        self._drain_task: asyncio.Task | None = None

    @property
    def state(self) -> str:
        if self.reset_at is not None and self._clock() < self.reset_at:
            return self.OPEN
        return self.CLOSED

    def is_open(self) -> bool:
        return self.state == self.OPEN

    def seconds_until_reset(self) -> float:
        if self.reset_at is None:
            return 0.0
        return max(self.reset_at - self._clock(), 0.0)

    @property
    def pending(self) -> list[str]:
        return list(self._queue)

    def trip(self, retry_after: float | None = None) -> None:
        wait = retry_after if retry_after is not None and retry_after > 0 else self.default_backoff
        deadline = self._clock() + wait
        if self.reset_at is None or deadline > self.reset_at:
            self.reset_at = deadline
        logger.warning("Price feed gate open for %.1fs", self.seconds_until_reset())
        self._ensure_drain()

    def enqueue(self, key: str, callback: Callback) -> bool:
        """Park a callback for replay; returns False if ``key`` is already parked."""
        if key in self._queue:
            return False
        self._queue[key] = callback
        self._ensure_drain()
        return True

    def _ensure_drain(self) -> None:
        if not self._queue or (self._drain_task and not self._drain_task.done()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet; drain() can be awaited explicitly
            return
        self._drain_task = loop.create_task(self.drain())

    def _requeue_front(self, items: list[tuple[str, Callback]]) -> None:
        merged = OrderedDict(items)
        for key, callback in self._queue.items():
            merged.setdefault(key, callback)
        self._queue = merged

    async def drain(self) -> int:
        """Replay parked callbacks once the gate has closed. Returns how many ran."""
        replayed = 0
        while self._queue:
            wait = self.seconds_until_reset()
            if wait > 0:
                await self._sleep(wait)
                continue

            batch = [self._queue.popitem(last=False) for _ in range(min(self.batch_size, len(self._queue)))]
            logger.info("Replaying %d deferred price request(s), %d left", len(batch), len(self._queue))

            for index, (key, callback) in enumerate(batch):
                if self.is_open():
                    self._requeue_front(batch[index:])
                    break
                try:
                    await callback()
                    replayed += 1
                except UpstreamRateLimited as e:
                    if not self.is_open():
                        self.trip(e.retry_after)
                    self._requeue_front(batch[index:])
                    break
                except Exception as e:
                    logger.warning("Deferred price request %s failed: %s", key, e)

                if self._queue or index < len(batch) - 1:
                    await self._sleep(self.spacing)

        return replayed

    async def close(self) -> None:
        task, self._drain_task = self._drain_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._queue.clear()
