# demand_replenishment/services/inventory_service.py
import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from demand_replenishment.core.reorder import (
    DEFAULT_REORDER_LEVEL, HIGH_URGENCY_STOCK, recommend_reorders
)
from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.exceptions import NoInventoryRecord, ValidationError
from demand_replenishment.models import ChangeType
from demand_replenishment.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

CHANGE_TYPES = tuple(c.value for c in ChangeType)


def stock_status(qty_available: int, safety_stock: int, reorder_point: int) -> str:
    """Classify a stock level as out_of_stock, critical, low_stock or in_stock."""
    if qty_available <= 0:
        return 'out_of_stock'
    if qty_available < safety_stock:
        return 'critical'
    if qty_available < reorder_point:
        return 'low_stock'
    return 'in_stock'


def stock_recommendation(qty_available: int, safety_stock: int, reorder_point: int,
                         forecast_demand: float) -> Dict:
    """Stock-based reorder suggestion for a single snapshot."""
    should_reorder = qty_available < reorder_point
    suggested = max(int(round(forecast_demand + safety_stock - qty_available)), safety_stock)

    if qty_available < safety_stock:
        urgency = 'high'
    elif qty_available < reorder_point * 0.5:
        urgency = 'medium'
    else:
        urgency = 'low'

    return {
        'should_reorder': should_reorder,
        'suggested_qty': suggested if should_reorder else 0,
        'urgency': urgency
    }


class InventoryService:
    """Service for inventory queries, stock changes and reorder advice."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        default_reorder_level: int = DEFAULT_REORDER_LEVEL,
        high_urgency_stock: int = HIGH_URGENCY_STOCK,
        clock: Callable = utcnow
    ):
        """Initialize the inventory service.

        Args:
            gateway: Persistence gateway
            default_reorder_level: Reorder level for snapshots without one
            high_urgency_stock: Stock at or below which urgency is high
            clock: Returns the current naive UTC datetime
        """
        self.gateway = gateway
        self.default_reorder_level = default_reorder_level
        self.high_urgency_stock = high_urgency_stock
        self.clock = clock

    def get_inventory(self, sku: str, location: Optional[str] = None) -> Dict:
        """Get a SKU's snapshot with status, recent sales and a recommendation.

        Args:
            sku: SKU
            location: Inventory location (defaults to the gateway default)

        Returns:
            Snapshot dictionary extended with status, sales_last_7_days,
            forecast_30_days and recommendation

        Raises:
            NoInventoryRecord: if the SKU has no snapshot
        """
        snapshot = self.gateway.get_inventory(sku, location)
        if snapshot is None:
            raise NoInventoryRecord(sku)

        now = self.clock()
        recent_sales = self.gateway.sum_sales_since(sku, now - timedelta(days=7))

        forecast = self.gateway.get_latest_forecast(sku, 30)
        forecast_demand = 0.0
        if forecast:
            forecast_demand = float((forecast.get('summary') or {}).get('total_predicted', 0) or 0)

        qty = snapshot['qty_available']
        safety = snapshot['safety_stock'] or 0
        reorder_point = snapshot['reorder_point'] or self.default_reorder_level

        return {
            **snapshot,
            'status': stock_status(qty, safety, reorder_point),
            'sales_last_7_days': recent_sales,
            'forecast_30_days': forecast_demand,
            'recommendation': stock_recommendation(qty, safety, reorder_point, forecast_demand)
        }

    def adjust_stock(self, sku: str, delta: int, change_type: str = ChangeType.ADJUSTMENT.value,
                     reference_id: Optional[str] = None, reason: Optional[str] = None,
                     changed_by: Optional[str] = None, location: Optional[str] = None) -> Dict:
        """Apply a stock delta server-side and record it in the audit log.

        Raises:
            ValidationError: unknown change type or zero delta
            NoInventoryRecord: the SKU has no snapshot
            InsufficientStock: the change would make stock negative
        """
        change_type = str(change_type)
        if change_type not in CHANGE_TYPES:
            raise ValidationError(f"Change type must be one of {CHANGE_TYPES}, got {change_type!r}")
        if int(delta) == 0:
            raise ValidationError("Stock change must be non-zero")

        snapshot = self.gateway.apply_stock_delta(
            sku, int(delta), change_type,
            reference_id=reference_id,
            reason=reason,
            changed_by=changed_by,
            location=location
        )
        logger.info(f"Stock for {sku} changed by {delta} ({change_type}), now {snapshot['qty_available']}")
        return snapshot

    def list_low_stock(self) -> List[Dict]:
        """SKUs below their reorder point, most depleted first."""
        return self.gateway.list_low_stock()

    def get_reorder_recommendations(self) -> List[Dict]:
        """Reorder recommendations for every active SKU from stock levels alone."""
        return recommend_reorders(
            self.gateway.list_inventory(active_only=True),
            default_reorder_level=self.default_reorder_level,
            high_urgency_stock=self.high_urgency_stock
        )
