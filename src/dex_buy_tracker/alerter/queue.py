"""Rate-limited alert dispatch queue.

A bounded FIFO of `AlertJob`s drained by a fixed-rate ticker. Each tick
starts at most one job, subject to a sliding one-second throughput cap and
a concurrent in-flight cap. Overflow drops the oldest job.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from dex_buy_tracker.alerter.models import AlertJob

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CAPACITY = 5000
DEFAULT_MAX_PER_SECOND = 25
DEFAULT_MAX_IN_FLIGHT = 4
DEFAULT_TICK_INTERVAL_SECONDS = 0.1
RATE_WINDOW_SECONDS = 1.0


@dataclass
class DispatchStats:
    enqueued: int = 0
    started: int = 0
    succeeded: int = 0
    failed: int = 0


class AlertDispatchQueue:
    """Bounded FIFO with throughput and concurrency caps.

    Example:
        ```python
        queue = AlertDispatchQueue(max_per_second=25, max_in_flight=4)
        await queue.start()
        queue.enqueue(AlertJob(group_id=-100123, run=lambda: channel.send(-100123, rendered)))
        ...
        await queue.stop()
        ```
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        max_per_second: int = DEFAULT_MAX_PER_SECOND,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._max_per_second = max_per_second
        self._max_in_flight = max_in_flight
        self._tick_interval = tick_interval_seconds
        self._clock = clock

        self._jobs: deque[AlertJob] = deque()
        self._sent_at: deque[float] = deque()
        self._in_flight = 0
        self._running: set[asyncio.Task[None]] = set()
        self._ticker: asyncio.Task[None] | None = None

        self.dropped_count = 0
        self.stats = DispatchStats()

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def pending(self) -> list[AlertJob]:
        """Snapshot of queued jobs, oldest first."""
        return list(self._jobs)

    def enqueue(self, job: AlertJob) -> None:
        if len(self._jobs) >= self._capacity:
            self._jobs.popleft()
            self.dropped_count += 1
            logger.warning(
                "Alert queue overflow, dropped oldest job (size=%d, dropped_total=%d)",
                len(self._jobs),
                self.dropped_count,
            )
        self._jobs.append(job)
        self.stats.enqueued += 1

    def _can_send_now(self, now: float) -> bool:
        while self._sent_at and now - self._sent_at[0] > RATE_WINDOW_SECONDS:
            self._sent_at.popleft()
        return len(self._sent_at) < self._max_per_second

    def tick(self) -> bool:
        """Start at most one job. Returns True if a job was started."""
        if not self._jobs:
            return False
        if self._in_flight >= self._max_in_flight:
            return False
        now = self._clock()
        if not self._can_send_now(now):
            return False

        job = self._jobs.popleft()
        self._in_flight += 1
        self._sent_at.append(now)
        self.stats.started += 1

        task = asyncio.create_task(self._run_job(job))
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return True

    async def _run_job(self, job: AlertJob) -> None:
        try:
            await job.run()
            self.stats.succeeded += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failed += 1
            logger.error("Alert job for group %s failed: %s", job.group_id, e)
        finally:
            self._in_flight -= 1

    async def _tick_loop(self) -> None:
        while True:
            try:
                self.tick()
            except Exception as e:
                logger.warning("Alert queue tick failed: %s", e)
            await asyncio.sleep(self._tick_interval)

    async def start(self) -> None:
        if self.is_running:
            return
        self._ticker = asyncio.create_task(self._tick_loop())
        logger.info(
            "Alert queue started (max_per_second=%d, max_in_flight=%d)",
            self._max_per_second,
            self._max_in_flight,
        )

    async def stop(self, *, cancel_in_flight: bool = True) -> None:
        """Stop the ticker. Queued jobs stay queued."""
        if self._ticker is not None:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None

        if cancel_in_flight:
            running = list(self._running)
            for task in running:
                task.cancel()
            for task in running:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            # Tasks cancelled before their first step never reach _run_job's finally.
            self._in_flight = 0
        logger.info("Alert queue stopped (%d pending, %d dropped)", len(self._jobs), self.dropped_count)

    def clear(self) -> None:
        self._jobs.clear()
        self._sent_at.clear()
