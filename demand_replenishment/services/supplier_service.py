# demand_replenishment/services/supplier_service.py
from datetime import datetime
from typing import Callable, Dict, List, Optional

from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.exceptions import SupplierNotFound, ValidationError
from demand_replenishment.utils.date_utils import utcnow
from demand_replenishment.utils.math_utils import require_non_negative


class SupplierService:
    """Service for supplier and supplier price operations."""

    def __init__(self, gateway: PersistenceGateway, clock: Callable = utcnow):
        """Initialize the supplier service.

        Args:
            gateway: Persistence gateway
            clock: Returns the current naive UTC datetime
        """
        self.gateway = gateway
        self.clock = clock

    def get_supplier(self, supplier_id: int) -> Dict:
        """Get a supplier by ID.

        Raises:
            SupplierNotFound: unknown id
        """
        supplier = self.gateway.get_supplier(supplier_id)
        if supplier is None:
            raise SupplierNotFound(f"Supplier not found: {supplier_id}")
        return supplier

    def list_suppliers(self, active_only: bool = True) -> List[Dict]:
        return self.gateway.list_suppliers(active_only)

    def get_current_prices(self, supplier_id: int, skus: Optional[List[str]] = None) -> List[Dict]:
        """Get the supplier's prices that are valid now."""
        self.get_supplier(supplier_id)
        return self.gateway.get_current_prices(supplier_id, skus, self.clock())

    def set_supplier_price(self, supplier_id: int, sku: str, unit_price: float,
                           moq: int = 1, valid_until: Optional[datetime] = None) -> Dict:
        """Set the current price for (supplier, sku).

        Updates the existing current price if there is one, otherwise inserts
        a new price record, so at most one current price exists per pair.
        """
        self.get_supplier(supplier_id)
        unit_price = require_non_negative(unit_price, 'unit_price')
        if int(moq) < 1:
            raise ValidationError(f"moq must be >= 1, got {moq!r}")

        return self.gateway.upsert_supplier_price(
            supplier_id, sku, unit_price, int(moq), valid_until, now=self.clock()
        )
