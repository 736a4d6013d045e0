from .job_queue import Job, JobQueue
from .rate_limiter import SlidingWindowRateLimiter
from .workers import Worker
from .scheduler import DailyScheduler

__all__ = [
    'Job',
    'JobQueue',
    'SlidingWindowRateLimiter',
    'Worker',
    'DailyScheduler'
]
