# demand_replenishment/bootstrap.py
"""
Composition root: builds the database connection, predictor and services
from a ``Config`` instance. Nothing else in the package constructs
collaborators on its own.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from demand_replenishment.config import Config
from demand_replenishment.db.connection import DatabaseConnection
from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.exceptions import ConfigError
from demand_replenishment.services.forecast_service import ForecastService
from demand_replenishment.services.heuristic_predictor import HeuristicPredictor
from demand_replenishment.services.inventory_service import InventoryService
from demand_replenishment.services.llm_predictor import LLMPredictor
from demand_replenishment.services.notification_service import (
    LoggingNotifier, NotificationService, Notifier
)
from demand_replenishment.services.po_service import PurchaseOrderService
from demand_replenishment.services.predictor import DemandPredictor, FallbackPredictor
from demand_replenishment.services.supplier_service import SupplierService

logger = logging.getLogger(__name__)

PROVIDERS = ('auto', 'llm', 'heuristic')


@dataclass
class Services:
    connection: DatabaseConnection
    gateway: PersistenceGateway
    predictor: DemandPredictor
    forecast_service: ForecastService
    inventory_service: InventoryService
    supplier_service: SupplierService
    po_service: PurchaseOrderService
    notification_service: NotificationService


def build_predictor(predictor_config: dict) -> DemandPredictor:
    """Select the demand predictor.

    ``heuristic`` uses the local predictor only. ``llm`` requires an API key
    and wraps the LLM predictor with the heuristic fallback. ``auto`` does
    the same when a key is configured and uses the heuristic otherwise.
    """
    provider = predictor_config.get('provider', 'auto')
    if provider not in PROVIDERS:
        raise ConfigError(f"Unknown predictor provider {provider!r}, expected one of {PROVIDERS}")

    heuristic = HeuristicPredictor(seed=predictor_config.get('seed'))
    api_key = predictor_config.get('api_key')

    if provider == 'heuristic' or (provider == 'auto' and not api_key):
        logger.info("Using heuristic demand predictor")
        return heuristic

    if not api_key:
        raise ConfigError("Predictor provider 'llm' needs LLM_API_KEY or [PREDICTOR] api_key")

    llm = LLMPredictor(
        model=predictor_config['model'],
        api_key=api_key,
        base_url=predictor_config.get('base_url'),
        timeout_seconds=predictor_config.get('timeout_seconds', 30.0),
        forecast_temperature=predictor_config.get('forecast_temperature', 0.3),
        po_temperature=predictor_config.get('po_temperature', 0.4)
    )
    logger.info(f"Using LLM demand predictor {predictor_config['model']} with heuristic fallback")
    return FallbackPredictor(llm, heuristic)


def build_services(
    config: Config,
    connection: Optional[DatabaseConnection] = None,
    predictor: Optional[DemandPredictor] = None,
    notifier: Optional[Notifier] = None
) -> Services:
    """Wire every service from configuration.

    Args:
        config: Configuration
        connection: Existing connection (built from ``config`` if omitted)
        predictor: Predictor override (built from ``config`` if omitted)
        notifier: Alert channel (logs alerts if omitted)

    Returns:
        Service container
    """
    connection = connection or DatabaseConnection.from_config(config.db_config)
    rules = config.business_rules
    forecast_config = config.forecast_config

    gateway = PersistenceGateway(connection, default_location=rules['default_location'])
    predictor = predictor or build_predictor(config.predictor_config)

    forecast_service = ForecastService(
        gateway,
        predictor,
        cache_hours=forecast_config['cache_hours'],
        history_days=forecast_config['history_days']
    )

    return Services(
        connection=connection,
        gateway=gateway,
        predictor=predictor,
        forecast_service=forecast_service,
        inventory_service=InventoryService(
            gateway,
            default_reorder_level=rules['default_reorder_level'],
            high_urgency_stock=rules['high_urgency_stock']
        ),
        supplier_service=SupplierService(gateway),
        po_service=PurchaseOrderService(
            gateway,
            predictor,
            forecast_service,
            forecast_horizon=forecast_config['po_forecast_horizon']
        ),
        notification_service=NotificationService(gateway, notifier or LoggingNotifier())
    )
