# demand_replenishment/batch/runtime.py
import asyncio
import logging
import signal
from datetime import datetime
from typing import Dict, Optional

from demand_replenishment.batch.job_queue import JobQueue
from demand_replenishment.batch.rate_limiter import SlidingWindowRateLimiter
from demand_replenishment.batch.replenishment_jobs import (
    FORECAST_QUEUE, NOTIFICATION_QUEUE, TERMINAL_FORECAST_ERRORS,
    make_forecast_handler, make_notification_handler, schedule_daily_forecasts
)
from demand_replenishment.batch.scheduler import DailyScheduler
from demand_replenishment.batch.workers import Worker
from demand_replenishment.exceptions import NoInventoryRecord
from demand_replenishment.utils.date_utils import parse_time_of_day

logger = logging.getLogger(__name__)


class ReplenishmentRuntime:
    """Queues, workers and the daily trigger for background forecasting.

    The forecast worker is concurrency- and rate-limited to respect the
    predictor's call budget; the notification worker is not rate-limited.
    """

    def __init__(self, services, worker_config: Dict, scheduler_config: Dict):
        """Initialize the runtime.

        Args:
            services: Service container from ``bootstrap.build_services``
            worker_config: ``Config.worker_config`` dictionary
            scheduler_config: ``Config.scheduler_config`` dictionary
        """
        self.services = services
        self.horizon_days = scheduler_config.get('horizon_days', 30)

        queue_options = {
            'max_attempts': worker_config['max_attempts'],
            'backoff_seconds': worker_config['backoff_seconds'],
            'keep_completed': worker_config['keep_completed'],
            'keep_failed': worker_config['keep_failed']
        }
        self.forecast_queue = JobQueue(FORECAST_QUEUE, **queue_options)
        self.notification_queue = JobQueue(NOTIFICATION_QUEUE, **queue_options)

        self.forecast_worker = Worker(
            self.forecast_queue,
            make_forecast_handler(services.forecast_service, self.notification_queue),
            concurrency=worker_config['forecast_concurrency'],
            rate_limiter=SlidingWindowRateLimiter(
                worker_config['forecast_rate_limit'],
                worker_config['rate_window_seconds']
            ),
            non_retryable=TERMINAL_FORECAST_ERRORS,
            name='forecast-worker'
        )
        self.notification_worker = Worker(
            self.notification_queue,
            make_notification_handler(services.notification_service),
            concurrency=worker_config['notification_concurrency'],
            non_retryable=(NoInventoryRecord,),
            name='notification-worker'
        )

        self.scheduler = DailyScheduler(
            parse_time_of_day(scheduler_config['daily_fire_time']),
            self.run_schedule,
            name='daily-forecast-trigger'
        )

    async def run_schedule(self, scheduled_for: Optional[datetime] = None) -> Dict:
        return await schedule_daily_forecasts(
            self.services.inventory_service,
            self.forecast_queue,
            self.horizon_days,
            scheduled_for
        )

    def start(self, with_scheduler: bool = True):
        self.forecast_worker.start()
        self.notification_worker.start()
        if with_scheduler:
            self.scheduler.start()
            logger.info(f"Daily forecast trigger armed for {self.scheduler.next_fire_time()}")

    async def drain(self):
        """Wait until both queues have no waiting or delayed jobs."""
        await self.forecast_queue.join()
        await self.notification_queue.join()

    async def stop(self):
        """Stop the trigger and workers, letting in-flight jobs finish."""
        await self.scheduler.stop()
        await self.forecast_worker.stop()
        await self.notification_worker.stop()
        self.forecast_queue.cancel_delayed()
        self.notification_queue.cancel_delayed()
        logger.info(f"Runtime stopped; forecast queue {self.forecast_queue.counts()}, "
                    f"notification queue {self.notification_queue.counts()}")

    def status(self) -> Dict:
        return {
            FORECAST_QUEUE: self.forecast_queue.counts(),
            NOTIFICATION_QUEUE: self.notification_queue.counts(),
            'next_run': self.scheduler.next_fire_time()
        }


async def serve(runtime: ReplenishmentRuntime, stop_event: Optional[asyncio.Event] = None,
                run_schedule_now: bool = False):
    """Run the scheduler and workers until SIGINT/SIGTERM or ``stop_event``.

    Args:
        runtime: Runtime to run
        stop_event: Event that ends the run when set
        run_schedule_now: Queue the low-stock forecasts immediately as well
    """
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    runtime.start()
    try:
        if run_schedule_now:
            await runtime.run_schedule()
        await stop_event.wait()
    finally:
        await runtime.stop()


async def run_once(runtime: ReplenishmentRuntime) -> Dict:
    """Queue today's low-stock forecasts, process them and stop."""
    runtime.start(with_scheduler=False)
    try:
        scheduled = await runtime.run_schedule()
        await runtime.drain()
    finally:
        await runtime.stop()

    return {
        'scheduled': scheduled,
        'forecasts_completed': [job.result for job in runtime.forecast_queue.completed],
        'forecasts_failed': [
            {'sku': job.payload.get('sku'), 'error': job.error, 'error_type': job.error_type}
            for job in runtime.forecast_queue.failed
        ],
        'alerts_sent': len(runtime.notification_queue.completed)
    }
