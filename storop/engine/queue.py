import asyncio
import logging
import time
from collections import defaultdict
from logging import Logger
from typing import Awaitable, Callable, Dict, Hashable, List, Optional, Set

from storop.sensors import OperatorSensor

Handler = Callable[[Hashable, str], Awaitable[None]]


class ReconcileQueue:
    """Work queue with a fixed pool of workers and per-key deduplication.

    A key is handled by at most one worker at a time. Keys added while queued
    are coalesced; keys added while being handled are dispatched once more
    after the running pass completes. Failed passes are retried after an
    exponentially growing delay; nothing is dropped.
    """

    def __init__(
        self,
        handler: Handler,
        workers: int = 4,
        base_delay: float = 5.0,
        max_delay: float = 300.0,
        sensor: OperatorSensor = None,
        logger: Logger = None,
    ) -> None:
        self.handler = handler
        self.workers = max(1, workers)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sensor = sensor or OperatorSensor()
        self.logger = logger or logging.getLogger(__name__)

        self._queue: Optional[asyncio.Queue] = None
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiters: Dict[Hashable, List[asyncio.Future]] = defaultdict(list)
        self._failures: Dict[Hashable, int] = defaultdict(int)
        self._timers: Dict[Hashable, asyncio.TimerHandle] = {}
        self._triggers: Dict[Hashable, str] = {}
        self._queued_at: Dict[Hashable, float] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def in_flight(self) -> Set[Hashable]:
        return set(self._processing)

    def start(self) -> None:
        if self._tasks:
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"reconcile-worker-{i}")
            for i in range(self.workers)
        ]
        self.logger.info(f"Started {self.workers} reconciliation workers")

    async def stop(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for waiters in self._waiters.values():
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
        self._waiters.clear()
        self.logger.info("Stopped reconciliation workers")

    def add(
        self, key: Hashable, trigger_source: str = "event", wait: bool = False
    ) -> Optional[asyncio.Future]:
        """Request a pass for `key`.

        With `wait`, returns a future resolved when the next pass for the key
        completes, or failed with the error of that pass.
        """
        if self._queue is None:
            self._queue = asyncio.Queue()
        future = None
        if wait:
            future = asyncio.get_running_loop().create_future()
            self._waiters[key].append(future)
        if key in self._dirty:
            return future
        self._dirty.add(key)
        self._triggers[key] = trigger_source
        self._queued_at[key] = time.monotonic()
        if key not in self._processing:
            self._queue.put_nowait(key)
        self.sensor.on_reconcile_queued(self.depth())
        return future

    def add_after(self, key: Hashable, delay: float, trigger_source: str = "retry") -> None:
        """Request a pass for `key` once `delay` seconds have passed."""
        if key in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key, trigger_source)

    def _fire(self, key: Hashable, trigger_source: str) -> None:
        self._timers.pop(key, None)
        self.add(key, trigger_source)

    def backoff(self, key: Hashable) -> float:
        failures = self._failures.get(key, 0)
        if failures <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * 2 ** (failures - 1))

    def forget(self, key: Hashable) -> None:
        """Drop retry bookkeeping of a key whose object no longer exists."""
        self._failures.pop(key, None)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            try:
                await self._process(key)
            finally:
                self._queue.task_done()

    async def _process(self, key: Hashable) -> None:
        self._dirty.discard(key)
        self._processing.add(key)
        trigger_source = self._triggers.pop(key, "event")
        queued_at = self._queued_at.pop(key, time.monotonic())
        kind = getattr(key, "kind", "")
        self.sensor.on_reconcile_dequeued(
            kind,
            getattr(key, "name", str(key)),
            getattr(key, "namespace", None),
            time.monotonic() - queued_at,
        )
        # Waiters registered from now on are served by the next pass
        waiters = self._waiters.pop(key, [])
        try:
            await self.handler(key, trigger_source)
        except asyncio.CancelledError:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            raise
        except Exception as ex:
            self._failures[key] += 1
            delay = self.backoff(key)
            self.logger.error(
                f"Reconciliation of {key} failed ({self._failures[key]} in a row), "
                f"retrying in {delay:.1f}s: {ex}"
            )
            self.add_after(key, delay)
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(ex)
        else:
            self._failures.pop(key, None)
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)
        finally:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.put_nowait(key)
