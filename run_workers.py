#!/usr/bin/env python
# run_workers.py - Script to run the daily forecast trigger and both workers

import argparse
import asyncio
import logging
import sys

from demand_replenishment.batch.runtime import ReplenishmentRuntime, serve
from demand_replenishment.bootstrap import build_services
from demand_replenishment.config import Config
from demand_replenishment.exceptions import ReplenishmentError
from demand_replenishment.logging_setup import logger as log_manager


def main():
    """Run the scheduler and workers until SIGINT or SIGTERM."""
    parser = argparse.ArgumentParser(description='Run the demand replenishment workers')
    parser.add_argument('--config', '-c', help='Path to an INI configuration file')
    parser.add_argument('--now', action='store_true', help='Queue low-stock forecasts on startup')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    config = Config(args.config)
    log_config = config.log_config
    if args.verbose:
        log_config['level'] = 'DEBUG'
    log_manager.configure(log_config)

    logger = log_manager.get_logger('worker_runner')
    logger.setLevel(logging.DEBUG if args.verbose else logging.INFO)

    worker_config = config.worker_config
    logger.info("Starting demand replenishment workers...")
    logger.info(
        f"Forecast concurrency {worker_config['forecast_concurrency']}, "
        f"rate limit {worker_config['forecast_rate_limit']} per "
        f"{worker_config['rate_window_seconds']:.0f}s"
    )

    try:
        services = build_services(config)
        runtime = ReplenishmentRuntime(services, worker_config, config.scheduler_config)
        try:
            asyncio.run(serve(runtime, run_schedule_now=args.now))
        finally:
            services.connection.dispose()
        logger.info("Workers stopped")
        return 0

    except ReplenishmentError as e:
        logger.error(f"Worker startup failed: {str(e)}")
        return 1
    except Exception as e:
        log_manager.log_exception('worker_runner', e, "Error running workers")
        return 1


if __name__ == "__main__":
    sys.exit(main())
