# demand_replenishment/batch/workers.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple, Type

from demand_replenishment.batch.job_queue import Job, JobQueue
from demand_replenishment.batch.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
EventListener = Callable[[Job, Any], None]


class Worker:
    """Pool of coroutines draining one job queue.

    Concurrency is the number of jobs processed at once; the optional rate
    limiter caps how many jobs start per window. A failing job is recorded on
    the queue (and retried if allowed) without affecting other jobs.
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 1,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        non_retryable: Tuple[Type[BaseException], ...] = (),
        name: Optional[str] = None
    ):
        """Initialize the worker.

        Args:
            queue: Queue to consume
            handler: Coroutine function called with each job
            concurrency: Jobs processed in parallel
            rate_limiter: Limits job starts per time window
            non_retryable: Exception types that fail a job immediately
            name: Worker name used in logs
        """
        self.queue = queue
        self.handler = handler
        self.concurrency = max(1, concurrency)
        self.rate_limiter = rate_limiter
        self.non_retryable = non_retryable
        self.name = name or f"{queue.name}-worker"
        self._tasks: List[asyncio.Task] = []
        self._busy: Set[int] = set()
        self._stopping = False
        self._completed_listeners: List[EventListener] = [self._log_completed]
        self._failed_listeners: List[EventListener] = [self._log_failed]

    def on_completed(self, listener: EventListener):
        self._completed_listeners.append(listener)

    def on_failed(self, listener: EventListener):
        self._failed_listeners.append(listener)

    def _log_completed(self, job: Job, result: Any):
        logger.info(f"{self.name}: job {job.id} ({job.name}) completed: {result}")

    def _log_failed(self, job: Job, error: Any):
        logger.error(
            f"{self.name}: job {job.id} ({job.name}) failed on attempt "
            f"{job.attempts}/{job.max_attempts}: {error}"
        )

    def _emit(self, listeners: List[EventListener], job: Job, value: Any):
        for listener in listeners:
            try:
                listener(job, value)
            except Exception as e:
                logger.error(f"{self.name}: event listener raised {e.__class__.__name__}: {e}")

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping

    def start(self):
        """Start the worker coroutines on the running event loop."""
        if self._tasks:
            return
        self._stopping = False
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._run(slot), name=f"{self.name}-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info(f"Started {self.name} with concurrency {self.concurrency}")

    async def _run(self, slot: int):
        while not self._stopping:
            job = await self.queue.get()
            self._busy.add(slot)
            try:
                await self.process(job)
            finally:
                self._busy.discard(slot)
                self.queue.task_done()

    async def process(self, job: Job):
        """Run one job through the handler and record the outcome."""
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        job.attempts += 1
        try:
            result = await self.handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            retryable = not isinstance(e, self.non_retryable)
            self.queue.fail(job, e, retryable=retryable)
            self._emit(self._failed_listeners, job, e)
            return

        self.queue.complete(job, result)
        self._emit(self._completed_listeners, job, result)

    async def stop(self):
        """Stop taking jobs; jobs already in progress run to completion."""
        if not self._tasks:
            return
        self._stopping = True

        for slot, task in enumerate(self._tasks):
            if slot not in self._busy:
                task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"Stopped {self.name}")
