# demand_replenishment/batch/replenishment_jobs.py
"""
Job bodies for the daily forecast run and the two worker queues.

Forecast jobs call the forecast service without forcing a refresh, so a
redelivered job reuses the forecast stored by its first attempt.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from demand_replenishment.batch.job_queue import Job, JobQueue
from demand_replenishment.core.demand_heuristics import VALID_HORIZONS
from demand_replenishment.exceptions import (
    NoHistoricalData, NoInventoryRecord, QueueDispatchFailure, ValidationError
)
from demand_replenishment.logging_setup import logger as log_manager
from demand_replenishment.services.forecast_service import ForecastService
from demand_replenishment.services.inventory_service import InventoryService
from demand_replenishment.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

FORECAST_QUEUE = 'forecast-generation'
NOTIFICATION_QUEUE = 'notifications'
FORECAST_JOB = 'generate-forecast'
LOW_STOCK_JOB = 'low-stock-alert'

# Failures that will not change on redelivery
TERMINAL_FORECAST_ERRORS = (NoHistoricalData, NoInventoryRecord, ValidationError)


def forecast_job_payload(sku: str, horizon_days: int = 30) -> Dict:
    if horizon_days not in VALID_HORIZONS:
        raise QueueDispatchFailure(
            f"Invalid horizon {horizon_days} for forecast job",
            details={'sku': sku, 'horizon_days': horizon_days}
        )
    return {'sku': sku, 'horizon_days': horizon_days}


def make_forecast_handler(forecast_service: ForecastService, notification_queue: JobQueue):
    """Build the forecast worker's job handler.

    A forecast that recommends reordering queues a low-stock alert.
    """
    async def handle_forecast_job(job: Job) -> Dict:
        sku = job.payload['sku']
        horizon_days = int(job.payload.get('horizon_days', 30))

        forecast = await forecast_service.generate_forecast(sku, horizon_days, force_refresh=False)

        recommendation = forecast.get('reorder_recommendation') or {}
        notification_job = None
        if recommendation.get('should_reorder'):
            notification_job = notification_queue.add(
                LOW_STOCK_JOB, {'sku': sku, 'recommendation': recommendation}
            )

        return {
            'sku': sku,
            'forecast_id': forecast['id'],
            'cached': forecast.get('cached', False),
            'notification_job_id': notification_job.id if notification_job else None
        }

    return handle_forecast_job


def make_notification_handler(notification_service: NotificationService):
    async def handle_notification_job(job: Job) -> Dict:
        alert = await notification_service.send_low_stock_alert(
            job.payload['sku'], job.payload.get('recommendation') or {}
        )
        return {'sku': alert['sku'], 'urgency': alert['urgency']}

    return handle_notification_job


async def schedule_daily_forecasts(
    inventory_service: InventoryService,
    forecast_queue: JobQueue,
    horizon_days: int = 30,
    scheduled_for: Optional[datetime] = None
) -> Dict:
    """Queue a forecast job for every SKU below its reorder point.

    Returns:
        Dictionary with the queued SKUs and any SKUs that failed to queue
    """
    log_info = log_manager.batch_start_log(
        'daily_forecast_schedule',
        f"horizon={horizon_days} scheduled_for={scheduled_for}"
    )

    queued, failed = [], []
    try:
        low_stock = await asyncio.to_thread(inventory_service.list_low_stock)
        for snapshot in low_stock:
            sku = snapshot['sku']
            try:
                forecast_queue.add(FORECAST_JOB, forecast_job_payload(sku, horizon_days))
                queued.append(sku)
            except QueueDispatchFailure as e:
                logger.error(f"Could not queue forecast for {sku}: {str(e)}")
                failed.append({'sku': sku, 'error': e.message})
    except Exception as e:
        log_manager.batch_end_log(log_info, success=False, result_info=str(e))
        raise

    results = {'queued': queued, 'failed': failed}
    log_manager.batch_end_log(
        log_info,
        success=not failed,
        result_info=f"{len(queued)} forecast jobs queued, {len(failed)} failed"
    )
    return results
