# demand_replenishment/batch/job_queue.py
import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from demand_replenishment.exceptions import QueueDispatchFailure, RateLimited
from demand_replenishment.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Job:
    id: int
    queue: str
    name: str
    payload: Dict[str, Any]
    max_attempts: int = 3
    attempts: int = 0
    status: str = 'waiting'
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None


class JobQueue:
    """In-process job queue with retries and bounded job history.

    Failed jobs are redelivered with exponential backoff until
    ``max_attempts`` is reached; the most recent completed and failed jobs
    are kept for inspection.
    """

    def __init__(
        self,
        name: str,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        keep_completed: int = 100,
        keep_failed: int = 50,
        max_size: int = 0
    ):
        """Initialize the queue.

        Args:
            name: Queue name used in logs
            max_attempts: Default delivery attempts per job
            backoff_seconds: Delay before the first retry (doubles each retry)
            keep_completed: Completed jobs kept in history
            keep_failed: Failed jobs kept in history
            max_size: Maximum waiting jobs (0 for unbounded)
        """
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.completed = deque(maxlen=keep_completed)
        self.failed = deque(maxlen=keep_failed)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._ids = itertools.count(1)
        self._delayed: Set[asyncio.Task] = set()

    def add(self, name: str, payload: Dict[str, Any], max_attempts: Optional[int] = None) -> Job:
        """Enqueue a job.

        Raises:
            QueueDispatchFailure: payload is not a dict or the queue is full
        """
        if not isinstance(payload, dict):
            raise QueueDispatchFailure(
                f"Job payload for {self.name}/{name} must be a dict",
                details={'queue': self.name, 'job': name}
            )

        job = Job(
            id=next(self._ids),
            queue=self.name,
            name=name,
            payload=dict(payload),
            max_attempts=max_attempts or self.max_attempts
        )
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            raise QueueDispatchFailure(
                f"Queue {self.name} is full, could not add {name}",
                details={'queue': self.name, 'job': name, 'payload': payload}
            )

        logger.debug(f"Queued {self.name} job {job.id} ({name}): {payload}")
        return job

    async def get(self) -> Job:
        job = await self._queue.get()
        job.status = 'active'
        return job

    def task_done(self):
        self._queue.task_done()

    def complete(self, job: Job, result: Any = None):
        job.status = 'completed'
        job.result = result
        job.finished_at = utcnow()
        self.completed.append(job)

    def retry_delay(self, job: Job, error: Exception) -> float:
        # FallbackPredictor absorbs RateLimited, so this only applies when the
        # forecast handler runs a predictor without the fallback wrapper
        if isinstance(error, RateLimited) and error.retry_after:
            return float(error.retry_after)
        return self.backoff_seconds * (2 ** max(job.attempts - 1, 0))

    def fail(self, job: Job, error: Exception, retryable: bool = True) -> bool:
        """Record a failed attempt and schedule a retry if attempts remain.

        Returns:
            True if the job will be retried
        """
        job.error = str(error)
        job.error_type = error.__class__.__name__

        if retryable and job.attempts < job.max_attempts:
            delay = self.retry_delay(job, error)
            job.status = 'delayed'
            task = asyncio.get_running_loop().create_task(self._requeue_later(job, delay))
            self._delayed.add(task)
            task.add_done_callback(self._delayed.discard)
            logger.info(
                f"{self.name} job {job.id} attempt {job.attempts}/{job.max_attempts} failed, "
                f"retrying in {delay:.1f}s"
            )
            return True

        job.status = 'failed'
        job.finished_at = utcnow()
        self.failed.append(job)
        return False

    async def _requeue_later(self, job: Job, delay: float):
        await asyncio.sleep(delay)
        job.status = 'waiting'
        await self._queue.put(job)

    def cancel_delayed(self):
        for task in list(self._delayed):
            task.cancel()

    def counts(self) -> Dict[str, int]:
        return {
            'waiting': self._queue.qsize(),
            'delayed': len(self._delayed),
            'completed': len(self.completed),
            'failed': len(self.failed)
        }

    def failed_jobs(self) -> List[Job]:
        return list(self.failed)

    async def join(self):
        """Wait until every queued job (including pending retries) is handled."""
        while True:
            await self._queue.join()
            if not self._delayed:
                return
            await asyncio.gather(*list(self._delayed), return_exceptions=True)
