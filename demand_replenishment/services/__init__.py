from .predictor import (
    DemandPredictor, FallbackPredictor, PredictionRequest, ForecastPayload,
    PODraftLine, PODraftRequest, PODraftPayload
)
from .heuristic_predictor import HeuristicPredictor
from .llm_predictor import LLMPredictor
from .forecast_service import ForecastService
from .inventory_service import InventoryService
from .supplier_service import SupplierService
from .po_service import PurchaseOrderService
from .notification_service import Notifier, LoggingNotifier, NotificationService

__all__ = [
    'DemandPredictor',
    'FallbackPredictor',
    'PredictionRequest',
    'ForecastPayload',
    'PODraftLine',
    'PODraftRequest',
    'PODraftPayload',
    'HeuristicPredictor',
    'LLMPredictor',
    'ForecastService',
    'InventoryService',
    'SupplierService',
    'PurchaseOrderService',
    'Notifier',
    'LoggingNotifier',
    'NotificationService'
]
