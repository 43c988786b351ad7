"""Background workers that feed readings to the engine, one queue per user."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

from .engine import AlertRulesEngine
from .errors import EvaluationError
from .models.events import AlertEvent
from .models.readings import Reading

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 100
_DEFAULT_IDLE_TIMEOUT_S = 300.0

ResultCallback = Callable[[Reading, list[AlertEvent]], "Awaitable[None] | None"]


class ReadingDispatcher:
    """Serializes readings per user while users run concurrently.

    Each user gets a queue and a worker task started on first use; a reading
    is evaluated only after the previous reading for the same user finished.
    A worker that sees no reading for ``idle_timeout_s`` exits and its queue
    is dropped, so only recently active users hold resources.
    """

    def __init__(
        self,
        engine: AlertRulesEngine,
        queue_size: int = _DEFAULT_QUEUE_SIZE,
        on_result: ResultCallback | None = None,
        idle_timeout_s: float = _DEFAULT_IDLE_TIMEOUT_S,
    ) -> None:
        self.engine = engine
        self.queue_size = max(1, queue_size)
        self.on_result = on_result
        self.idle_timeout_s = idle_timeout_s
        self.processed = 0
        self.failures = 0
        self._queues: dict[str, asyncio.Queue[Reading]] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_users(self) -> int:
        return len(self._queues)

    def ensure_started(self, user_id: str) -> asyncio.Queue[Reading]:
        queue = self._queues.get(user_id)
        if queue is None:
            queue = self._queues[user_id] = asyncio.Queue(maxsize=self.queue_size)
        task = self._tasks.get(user_id)
        if isinstance(task, asyncio.Task) and not task.done():
            return queue
        self._tasks[user_id] = asyncio.create_task(self._worker(user_id, queue))
        return queue

    async def submit(self, reading: Reading) -> None:
        if not reading.user_id:
            raise ValueError("Reading has no user id")
        queue = self.ensure_started(reading.user_id)
        await queue.put(reading)

    async def _worker(self, user_id: str, queue: asyncio.Queue[Reading]) -> None:
        logger.debug("Starting reading worker for user %s", user_id)
        while True:
            try:
                reading = await asyncio.wait_for(queue.get(), timeout=self.idle_timeout_s)
            except asyncio.TimeoutError:
                if not queue.empty():
                    continue
                # no await between the check and the removal
                if self._queues.get(user_id) is queue:
                    del self._queues[user_id]
                    self._tasks.pop(user_id, None)
                logger.debug("Stopping idle reading worker for user %s", user_id)
                return
            try:
                events = await self.engine.evaluate_glucose_data(reading, user_id)
                self.processed += 1
                if self.on_result is not None:
                    result = self.on_result(reading, events)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except EvaluationError as exc:
                self.failures += 1
                logger.warning("Reading for user %s not evaluated: %s", user_id, exc)
            except Exception:
                self.failures += 1
                logger.exception("Reading worker error for user %s", user_id)
            finally:
                queue.task_done()

    async def join(self) -> None:
        """Wait until every queued reading has been evaluated."""
        await asyncio.gather(*(q.join() for q in list(self._queues.values())))

    async def close(self) -> None:
        await self.join()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self.engine.drain()


__all__ = ["ReadingDispatcher"]
