class ReplenishmentError(Exception):
    """Base exception for the demand replenishment pipeline."""

    default_message = "An error occurred in the demand replenishment pipeline"
    default_code = None

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Error code
            details: Additional error details
        """
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        """String representation of the error."""
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a dictionary."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class ConfigError(ReplenishmentError):
    """Exception raised for configuration errors."""

    default_message = "Configuration error"
    default_code = "CONFIG"


class DatabaseError(ReplenishmentError):
    """Exception raised for database-related errors."""

    default_message = "Database error"
    default_code = "DATABASE"


class ValidationError(ReplenishmentError):
    """Exception raised for data validation errors."""

    default_message = "Validation error"
    default_code = "VALIDATION"


class NotFoundError(ReplenishmentError):
    """Exception raised when a requested resource is not found."""

    default_message = "Resource not found"
    default_code = "NOT_FOUND"


class NoHistoricalData(ReplenishmentError):
    """No sales history in the lookback window for a SKU."""

    default_message = "No historical sales data found"
    default_code = "NO_HISTORICAL_DATA"

    def __init__(self, sku=None, message=None, code=None, details=None):
        self.sku = sku
        if message is None and sku is not None:
            message = f"No historical sales data found for SKU: {sku}"
        super().__init__(message, code, details or ({'sku': sku} if sku else None))


class NoInventoryRecord(ReplenishmentError):
    """No inventory snapshot exists for a SKU."""

    default_message = "No inventory record found"
    default_code = "NO_INVENTORY_RECORD"

    def __init__(self, sku=None, message=None, code=None, details=None):
        self.sku = sku
        if message is None and sku is not None:
            message = f"No inventory record found for SKU: {sku}"
        super().__init__(message, code, details or ({'sku': sku} if sku else None))


class ForecastNotFound(NotFoundError):
    """Exception raised when a forecast id does not exist."""

    default_message = "Forecast not found"
    default_code = "FORECAST_NOT_FOUND"


class PredictionUnavailable(ReplenishmentError):
    """The demand predictor could not produce a usable payload."""

    default_message = "Prediction unavailable"
    default_code = "PREDICTION_UNAVAILABLE"


class RateLimited(PredictionUnavailable):
    """The predictor's upstream provider rejected the call for rate reasons."""

    default_message = "Predictor rate limit exceeded"
    default_code = "RATE_LIMITED"

    def __init__(self, message=None, code=None, details=None, retry_after=None):
        self.retry_after = retry_after
        super().__init__(message, code, details)


class InvalidTransition(ReplenishmentError):
    """A purchase order action is not allowed from its current status."""

    default_message = "Invalid purchase order transition"
    default_code = "INVALID_TRANSITION"

    def __init__(self, current_status=None, action=None, message=None, code=None, details=None):
        self.current_status = current_status
        self.action = action
        if message is None and action is not None:
            message = f"Cannot {action} purchase order with status: {current_status}"
        super().__init__(
            message, code,
            details or {'current_status': current_status, 'action': action}
        )


class SupplierNotFound(NotFoundError):
    """Exception raised when a supplier id does not exist."""

    default_message = "Supplier not found"
    default_code = "SUPPLIER_NOT_FOUND"


class PurchaseOrderNotFound(NotFoundError):
    """Exception raised when a purchase order id does not exist."""

    default_message = "Purchase order not found"
    default_code = "PO_NOT_FOUND"


class InsufficientStock(ReplenishmentError):
    """A stock decrement would take available quantity below zero."""

    default_message = "Insufficient inventory"
    default_code = "INSUFFICIENT_STOCK"


class POReceiptPartialFailure(ReplenishmentError):
    """Receipt could not be applied to every line item; nothing was committed."""

    default_message = "Purchase order receipt failed and was rolled back"
    default_code = "PO_RECEIPT_FAILED"


class QueueDispatchFailure(ReplenishmentError):
    """A job could not be placed on a queue."""

    default_message = "Failed to dispatch job"
    default_code = "QUEUE_DISPATCH"
