"""
Tests for the forecast and notification job handlers and a full scheduled run.
"""
import asyncio
import unittest
from unittest.mock import MagicMock, patch

from demand_replenishment.batch.job_queue import JobQueue
from demand_replenishment.batch.replenishment_jobs import (
    FORECAST_JOB, LOW_STOCK_JOB, forecast_job_payload, make_forecast_handler,
    make_notification_handler, schedule_daily_forecasts
)
from demand_replenishment.batch.runtime import ReplenishmentRuntime, run_once
from demand_replenishment.bootstrap import build_services
from demand_replenishment.config import Config
from demand_replenishment.db.connection import DatabaseConnection
from demand_replenishment.exceptions import NoInventoryRecord, QueueDispatchFailure
from demand_replenishment.services.forecast_service import ForecastService
from demand_replenishment.services.heuristic_predictor import HeuristicPredictor
from demand_replenishment.services.inventory_service import InventoryService
from demand_replenishment.services.notification_service import (
    LoggingNotifier, NotificationService, RecordingNotifier
)
from demand_replenishment.tests.helpers import FakeClock, add_daily_sales, make_gateway
from demand_replenishment.utils.date_utils import utcnow


class TestJobHandlers(unittest.TestCase):
    """Handlers wired to real services over an in-memory database."""

    def setUp(self):
        self.clock = FakeClock()
        self.gateway = make_gateway()
        self.forecast_service = ForecastService(self.gateway, HeuristicPredictor(seed=4), clock=self.clock)
        self.notifier = RecordingNotifier()
        self.notification_service = NotificationService(self.gateway, self.notifier, clock=self.clock)

        self.gateway.add_inventory('EMPTY', qty_available=0, safety_stock=5)
        self.gateway.add_inventory('FULL', qty_available=5000, safety_stock=0)
        for sku in ('EMPTY', 'FULL'):
            add_daily_sales(self.gateway, sku, self.clock.now, 7)

    def test_payload_validation(self):
        self.assertEqual(forecast_job_payload('A', 60), {'sku': 'A', 'horizon_days': 60})
        with self.assertRaises(QueueDispatchFailure):
            forecast_job_payload('A', 45)

    def test_reorder_queues_alert(self):
        async def scenario():
            forecast_queue = JobQueue('forecasts')
            notification_queue = JobQueue('notifications')
            handler = make_forecast_handler(self.forecast_service, notification_queue)

            first = await handler(forecast_queue.add(FORECAST_JOB, forecast_job_payload('EMPTY')))
            second = await handler(forecast_queue.add(FORECAST_JOB, forecast_job_payload('EMPTY')))
            alert_job = await notification_queue.get()
            return first, second, alert_job, notification_queue.counts()

        first, second, alert_job, counts = asyncio.run(scenario())

        self.assertFalse(first['cached'])
        self.assertIsNotNone(first['notification_job_id'])
        # Redelivery reuses the stored forecast
        self.assertTrue(second['cached'])
        self.assertEqual(second['forecast_id'], first['forecast_id'])
        self.assertEqual(alert_job.name, LOW_STOCK_JOB)
        self.assertEqual(alert_job.payload['sku'], 'EMPTY')
        self.assertTrue(alert_job.payload['recommendation']['should_reorder'])
        self.assertEqual(counts['waiting'], 1)

    def test_well_stocked_sku_sends_no_alert(self):
        async def scenario():
            notification_queue = JobQueue('notifications')
            handler = make_forecast_handler(self.forecast_service, notification_queue)
            result = await handler(JobQueue('forecasts').add(FORECAST_JOB, forecast_job_payload('FULL')))
            return result, notification_queue.counts()

        result, counts = asyncio.run(scenario())
        self.assertIsNone(result['notification_job_id'])
        self.assertEqual(counts['waiting'], 0)

    def test_notification_handler(self):
        async def scenario():
            queue = JobQueue('notifications')
            handler = make_notification_handler(self.notification_service)
            recommendation = {'should_reorder': True, 'suggested_qty': 40, 'reasoning': 'Out of stock'}
            result = await handler(queue.add(LOW_STOCK_JOB, {'sku': 'EMPTY', 'recommendation': recommendation}))
            with self.assertRaises(NoInventoryRecord):
                await handler(queue.add(LOW_STOCK_JOB, {'sku': 'GHOST', 'recommendation': recommendation}))
            return result

        result = asyncio.run(scenario())

        self.assertEqual(result, {'sku': 'EMPTY', 'urgency': 'critical'})
        alert = self.notifier.alerts[0]
        self.assertEqual(alert['suggested_qty'], 40)
        self.assertEqual(alert['current_stock'], 0)
        self.assertEqual(alert['created_at'], self.clock.now)

    def test_logging_notifier(self):
        service = NotificationService(self.gateway, LoggingNotifier(), clock=self.clock)
        with self.assertLogs('demand_replenishment.alerts', level='WARNING') as logs:
            asyncio.run(service.send_low_stock_alert('EMPTY', {'suggested_qty': 12, 'reasoning': 'Empty'}))
        self.assertIn('LOW STOCK [critical] EMPTY', logs.output[0])

    @patch('demand_replenishment.batch.replenishment_jobs.log_manager')
    def test_schedule_queues_low_stock_skus(self, log_manager):
        inventory_service = InventoryService(self.gateway, clock=self.clock)
        queue = JobQueue('forecasts', max_size=1)
        self.gateway.add_inventory('LOW', qty_available=3)

        results = asyncio.run(schedule_daily_forecasts(inventory_service, queue, 30))

        self.assertEqual(results['queued'], ['EMPTY'])
        self.assertEqual([f['sku'] for f in results['failed']], ['LOW'])
        log_manager.batch_start_log.assert_called_once()
        log_manager.batch_end_log.assert_called_once()
        self.assertFalse(log_manager.batch_end_log.call_args.kwargs['success'])


class TestScheduledRun(unittest.TestCase):
    """End-to-end: schedule, forecast worker, notification worker."""

    def setUp(self):
        self.config = Config('does-not-exist.ini', environ={})
        self.config.set('WORKERS', 'backoff_seconds', '0')
        self.notifier = RecordingNotifier()
        self.services = build_services(
            self.config,
            connection=DatabaseConnection('sqlite://'),
            predictor=HeuristicPredictor(seed=9),
            notifier=self.notifier
        )
        self.services.connection.create_all_tables()

        gateway = self.services.gateway
        gateway.add_inventory('EMPTY', qty_available=0, safety_stock=5)
        gateway.add_inventory('NO-SALES', qty_available=3)
        gateway.add_inventory('FULL', qty_available=500)
        add_daily_sales(gateway, 'EMPTY', utcnow(), 10)
        add_daily_sales(gateway, 'FULL', utcnow(), 10)

    @patch('demand_replenishment.batch.replenishment_jobs.log_manager', MagicMock())
    def test_run_once(self):
        async def scenario():
            runtime = ReplenishmentRuntime(
                self.services, self.config.worker_config, self.config.scheduler_config
            )
            results = await run_once(runtime)
            return results, runtime.status()

        results, status = asyncio.run(scenario())

        self.assertEqual(results['scheduled']['queued'], ['EMPTY', 'NO-SALES'])
        self.assertEqual([r['sku'] for r in results['forecasts_completed']], ['EMPTY'])
        self.assertEqual(results['forecasts_failed'][0]['sku'], 'NO-SALES')
        self.assertEqual(results['forecasts_failed'][0]['error_type'], 'NoHistoricalData')
        self.assertEqual(results['alerts_sent'], 1)
        self.assertEqual([a['sku'] for a in self.notifier.alerts], ['EMPTY'])
        self.assertEqual(status['forecast-generation']['waiting'], 0)
        self.assertEqual(status['notifications']['completed'], 1)


if __name__ == '__main__':
    unittest.main()
