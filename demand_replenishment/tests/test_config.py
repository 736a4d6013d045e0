"""
Unit tests for configuration, logging, the exception hierarchy and service wiring.
"""
import os
import tempfile
import unittest
from unittest.mock import patch

from demand_replenishment.bootstrap import build_predictor, build_services
from demand_replenishment.config import Config
from demand_replenishment.db.connection import DatabaseConnection
from demand_replenishment.exceptions import (
    ConfigError, InvalidTransition, NoHistoricalData, PredictionUnavailable, RateLimited,
    ReplenishmentError
)
from demand_replenishment.logging_setup import Logger
from demand_replenishment.services.heuristic_predictor import HeuristicPredictor
from demand_replenishment.services.llm_predictor import LLMPredictor
from demand_replenishment.services.predictor import FallbackPredictor


class TestConfig(unittest.TestCase):
    """Defaults, INI overrides and environment overrides."""

    def test_defaults(self):
        config = Config('does-not-exist.ini', environ={})

        self.assertEqual(config.forecast_config['cache_hours'], 24)
        self.assertEqual(config.worker_config['forecast_concurrency'], 3)
        self.assertEqual(config.worker_config['rate_window_seconds'], 60.0)
        self.assertEqual(config.scheduler_config['daily_fire_time'], '00:00')
        self.assertEqual(config.business_rules['default_reorder_level'], 15)
        self.assertEqual(config.predictor_config['provider'], 'auto')
        self.assertIsNone(config.predictor_config['api_key'])
        self.assertIsNone(config.predictor_config['seed'])

    def test_ini_file_overrides_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'settings.ini')
            with open(path, 'w') as f:
                f.write("[FORECAST]\ncache_hours = 6\n\n[PREDICTOR]\nprovider = Heuristic\nseed = 42\n")

            config = Config(path, environ={})

        self.assertEqual(config.forecast_config['cache_hours'], 6)
        self.assertEqual(config.forecast_config['history_days'], 90)
        self.assertEqual(config.predictor_config['provider'], 'heuristic')
        self.assertEqual(config.predictor_config['seed'], 42)

    def test_environment_overrides(self):
        config = Config('does-not-exist.ini', environ={
            'LLM_API_KEY': 'secret',
            'LLM_MODEL': 'other-model',
            'DEMAND_REPLENISHMENT_DB_URL': 'sqlite://'
        })

        self.assertEqual(config.predictor_config['api_key'], 'secret')
        self.assertEqual(config.predictor_config['model'], 'other-model')
        self.assertEqual(config.db_config['url'], 'sqlite://')

    def test_save_round_trip(self):
        config = Config('does-not-exist.ini', environ={})
        config.set('WORKERS', 'max_attempts', 7)

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'nested', 'settings.ini')
            config.save(path)
            reloaded = Config(path, environ={})

        self.assertEqual(reloaded.worker_config['max_attempts'], 7)

    def test_bad_values_fall_back(self):
        config = Config('does-not-exist.ini', environ={})
        config.set('FORECAST', 'cache_hours', 'soon')
        self.assertEqual(config.forecast_config['cache_hours'], 24)


class TestExceptions(unittest.TestCase):
    """Error payloads."""

    def test_to_dict(self):
        error = NoHistoricalData('SKU-1')
        self.assertEqual(error.to_dict(), {
            'error': 'NoHistoricalData',
            'message': 'No historical sales data found for SKU: SKU-1',
            'code': 'NO_HISTORICAL_DATA',
            'details': {'sku': 'SKU-1'}
        })
        self.assertEqual(str(error), '[NO_HISTORICAL_DATA] No historical sales data found for SKU: SKU-1')

    def test_hierarchy(self):
        self.assertTrue(issubclass(RateLimited, PredictionUnavailable))
        self.assertTrue(issubclass(InvalidTransition, ReplenishmentError))
        self.assertEqual(RateLimited(retry_after=3).retry_after, 3)

    def test_invalid_transition_message(self):
        error = InvalidTransition('received', 'cancel')
        self.assertEqual(error.message, 'Cannot cancel purchase order with status: received')
        self.assertEqual(error.details, {'current_status': 'received', 'action': 'cancel'})


class TestLoggingManager(unittest.TestCase):
    """Batch run logging and exception logging."""

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.log_dir = os.path.join(tmp.name, 'logs')

        patcher = patch.object(Logger, '_configure_root_logger')
        patcher.start()
        self.addCleanup(patcher.stop)

        log_config = Config('does-not-exist.ini', environ={}).log_config
        log_config.update(directory=self.log_dir, console_output=False)
        self.manager = Logger(log_config)

    def tearDown(self):
        for logger in self.manager._loggers.values():
            for handler in logger.handlers[:]:
                handler.close()
                logger.removeHandler(handler)

    def test_batch_run_logging(self):
        self.manager.get_logger('batch')

        with self.assertLogs('batch', level='INFO') as logs:
            info = self.manager.batch_start_log('daily_forecast_schedule', 'horizon=30')
            duration = self.manager.batch_end_log(info, success=False, result_info='1 failed')

        self.assertGreaterEqual(duration, 0)
        self.assertEqual(info['duration_seconds'], duration)
        self.assertIn('Starting daily_forecast_schedule (horizon=30)', logs.output[0])
        self.assertTrue(logs.output[1].startswith('ERROR:batch:Finished with failures'))
        self.assertTrue(os.path.exists(os.path.join(self.log_dir, 'batch.log')))

    def test_log_exception_includes_traceback(self):
        self.manager.get_logger('worker_runner')
        try:
            raise NoHistoricalData('SKU-1')
        except NoHistoricalData as e:
            error = e

        with self.assertLogs('worker_runner', level='ERROR') as logs:
            self.manager.log_exception('worker_runner', error, 'Forecast failed')

        self.assertIn('Forecast failed: [NO_HISTORICAL_DATA]', logs.output[0])
        self.assertIn('Traceback', logs.output[0])


class TestBootstrap(unittest.TestCase):
    """Predictor selection and service wiring."""

    def setUp(self):
        self.predictor_config = Config('does-not-exist.ini', environ={}).predictor_config

    def test_auto_without_key_is_heuristic(self):
        self.assertIsInstance(build_predictor(self.predictor_config), HeuristicPredictor)

    def test_key_enables_llm_with_fallback(self):
        self.predictor_config['api_key'] = 'secret'
        predictor = build_predictor(self.predictor_config)

        self.assertIsInstance(predictor, FallbackPredictor)
        self.assertIsInstance(predictor.primary, LLMPredictor)
        self.assertIsInstance(predictor.fallback, HeuristicPredictor)

    def test_forced_heuristic_ignores_key(self):
        self.predictor_config.update(provider='heuristic', api_key='secret')
        self.assertIsInstance(build_predictor(self.predictor_config), HeuristicPredictor)

    def test_invalid_provider_settings(self):
        self.predictor_config['provider'] = 'llm'
        with self.assertRaises(ConfigError):
            build_predictor(self.predictor_config)

        self.predictor_config['provider'] = 'crystal-ball'
        with self.assertRaises(ConfigError):
            build_predictor(self.predictor_config)

    def test_build_services_shares_gateway(self):
        config = Config('does-not-exist.ini', environ={})
        services = build_services(config, connection=DatabaseConnection('sqlite://'))

        self.assertIs(services.forecast_service.gateway, services.gateway)
        self.assertIs(services.po_service.forecast_service, services.forecast_service)
        self.assertIs(services.po_service.predictor, services.predictor)
        self.assertEqual(services.forecast_service.cache_hours, 24)


if __name__ == '__main__':
    unittest.main()
