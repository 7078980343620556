"""Meal plan job workers.

Two ways jobs get processed:
1. JobDispatcher: in-process asyncio queue + worker tasks, fed by the API
   right after a job is created (automatic trigger) and by the explicit
   process endpoint.
2. Sweeper (`python -m mealplanner.worker`): polls the store for pending
   jobs the dispatcher never picked up (process restart, lost trigger) and
   claims/processes them until the queue is empty.

Both paths go through the store's atomic claim, so a job that is triggered
twice is still processed once.

Usage:
    python -m mealplanner.worker
"""

import asyncio
import logging
import sys
import uuid
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from .db import init_engine
from .schemas import JobRecord
from .services.pipeline import JobPipeline, get_pipeline
from .settings import settings

logger = logging.getLogger("mealplanner.worker")

WORKER_ID = f"worker-{uuid.uuid4().hex[:8]}"


class JobDispatcher:
    """Bounded pool of asyncio workers draining a queue of job work items."""

    def __init__(self, pipeline: JobPipeline, concurrency: Optional[int] = None):
        self.pipeline = pipeline
        self.concurrency = concurrency or settings.worker_concurrency
        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"meal-plan-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Job dispatcher started with {self.concurrency} workers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Job dispatcher stopped")

    def submit(self, job_id: str) -> None:
        """Queue a job that still has to be claimed."""
        self._queue.put_nowait(("claim", job_id))

    def submit_claimed(self, job: JobRecord) -> None:
        """Queue a job the caller already claimed."""
        self._queue.put_nowait(("process", job))

    async def drain(self) -> None:
        """Wait until every queued item has been handled."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            kind, item = await self._queue.get()
            try:
                if kind == "claim":
                    await self.pipeline.run(item)
                else:
                    await self.pipeline.process(item)
            except Exception as e:
                # process() records failures itself; this is store/infra trouble
                job_id = item if kind == "claim" else item.id
                logger.error(f"Worker {index} crashed handling job {job_id}: {e}")
            finally:
                self._queue.task_done()


async def sweep_once(pipeline: JobPipeline) -> int:
    """Claim and process pending jobs until none are left. Returns jobs processed."""
    processed = 0
    while True:
        job, found = await run_in_threadpool(pipeline.store.claim_oldest)
        if not found:
            return processed
        if job is None:
            # Lost the race to another worker; look again
            continue
        logger.info(f"[{WORKER_ID}] Claimed job {job.id}")
        await pipeline.process(job)
        processed += 1


async def run_sweeper(pipeline: JobPipeline, poll_interval: Optional[int] = None) -> None:
    interval = poll_interval or settings.sweeper_poll_interval
    logger.info(f"[{WORKER_ID}] Starting sweeper (poll: {interval}s)")

    while True:
        try:
            count = await sweep_once(pipeline)
            if count:
                logger.info(f"[{WORKER_ID}] Processed {count} job(s)")
        except Exception as e:
            logger.error(f"[{WORKER_ID}] Loop error: {e}")
            await asyncio.sleep(1)

        await asyncio.sleep(interval)


def main():
    """Main worker loop."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    init_engine()
    try:
        asyncio.run(run_sweeper(get_pipeline()))
    except KeyboardInterrupt:
        logger.info(f"[{WORKER_ID}] Stopped")


if __name__ == "__main__":
    main()
