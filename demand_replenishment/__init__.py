from .config import Config, config
from .logging_setup import logger, get_logger
from .exceptions import (
    ReplenishmentError, NoHistoricalData, NoInventoryRecord, PredictionUnavailable,
    RateLimited, InvalidTransition, SupplierNotFound, POReceiptPartialFailure,
    QueueDispatchFailure
)

__all__ = [
    'Config',
    'config',
    'logger',
    'get_logger',
    'ReplenishmentError',
    'NoHistoricalData',
    'NoInventoryRecord',
    'PredictionUnavailable',
    'RateLimited',
    'InvalidTransition',
    'SupplierNotFound',
    'POReceiptPartialFailure',
    'QueueDispatchFailure'
]
