"""
Experience Recorder
===================

Writes experiences in the background so a chat call returns without
waiting on the store.

Records go into a bounded asyncio queue drained by a fixed number of
worker tasks. When the queue is full, the policy decides:

    drop_newest  the new record is discarded (default)
    drop_oldest  the oldest queued record is discarded to make room
    block        submit() waits for room

Write failures are logged and counted; they never reach the caller.
The queue belongs to the event loop that first used it. When the
recorder is used from a new loop it starts over there, and records the
old loop never wrote are counted as dropped.
Statistics read right after a call may not include it yet.
"""

import asyncio
from typing import Any

from learnloop.learning.experience import Experience, ExperienceStore
from learnloop.utils.logger import Logger

logger = Logger("Recorder")

POLICY_DROP_NEWEST = "drop_newest"
POLICY_DROP_OLDEST = "drop_oldest"
POLICY_BLOCK = "block"
POLICIES = (POLICY_DROP_NEWEST, POLICY_DROP_OLDEST, POLICY_BLOCK)


class ExperienceRecorder:
    """
    Bounded background writer for an ExperienceStore.

    Example:
        recorder = ExperienceRecorder(store, queue_size=100, workers=2)

        await recorder.submit(experience)   # returns immediately
        await recorder.drain()              # wait until written
        await recorder.close()
    """

    def __init__(
        self,
        store: ExperienceStore,
        queue_size: int = 100,
        workers: int = 2,
        policy: str = POLICY_DROP_NEWEST
    ):
        if policy not in POLICIES:
            raise ValueError(f"Unknown recorder policy '{policy}', expected one of {POLICIES}")

        self.store = store
        self.queue_size = max(queue_size, 1)
        self.worker_count = max(workers, 1)
        self.policy = policy

        self._queue: asyncio.Queue[Experience] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._workers: list[asyncio.Task] = []
        self.recorded = 0
        self.dropped = 0
        self.failed = 0

    def _bound_queue(self) -> asyncio.Queue | None:
        """The queue of the running event loop, None if there is none yet."""
        if self._queue is not None and self._loop is not asyncio.get_running_loop():
            self._abandon()
        return self._queue

    def _abandon(self) -> None:
        # Workers of a finished event loop never run again
        lost = self._queue.qsize()
        if lost:
            self.dropped += lost
            logger.warning(f"Event loop changed, {lost} queued experience(s) were never written")
        self._queue = None
        self._loop = None
        self._workers = []

    def _ensure_started(self) -> asyncio.Queue:
        # Created lazily so the queue binds to the running event loop
        if self._bound_queue() is None:
            self._loop = asyncio.get_running_loop()
            self._queue = asyncio.Queue(maxsize=self.queue_size)
            self._workers = [
                asyncio.create_task(self._work(self._queue), name=f"experience-recorder-{i}")
                for i in range(self.worker_count)
            ]
        return self._queue

    async def submit(self, experience: Experience) -> bool:
        """
        Queue an experience for writing.

        Returns:
            False if the record was dropped because the queue was full
        """
        queue = self._ensure_started()

        if self.policy == POLICY_BLOCK:
            await queue.put(experience)
            return True

        if queue.full():
            if self.policy == POLICY_DROP_NEWEST:
                self.dropped += 1
                logger.warning(f"Recorder queue full, dropped experience {experience.id}")
                return False

            oldest = queue.get_nowait()
            queue.task_done()
            self.dropped += 1
            logger.warning(f"Recorder queue full, dropped oldest experience {oldest.id}")

        queue.put_nowait(experience)
        return True

    async def _work(self, queue: asyncio.Queue) -> None:
        while True:
            experience = await queue.get()
            try:
                await self.store.record(experience)
                self.recorded += 1
            except asyncio.CancelledError:
                self.dropped += 1
                logger.warning(f"Recorder stopped before writing experience {experience.id}")
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Failed to record experience {experience.id}", e)
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued experience has been handled."""
        queue = self._bound_queue()
        if queue is not None:
            await queue.join()

    async def close(self) -> None:
        """Drain the queue, then stop the workers."""
        await self.drain()
        if self._queue is None:
            return
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        self._loop = None

    def stats(self) -> dict[str, Any]:
        return {
            "policy": self.policy,
            "queued": self._queue.qsize() if self._queue else 0,
            "recorded": self.recorded,
            "dropped": self.dropped,
            "failed": self.failed,
        }
