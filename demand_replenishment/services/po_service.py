# demand_replenishment/services/po_service.py
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.exceptions import (
    NoInventoryRecord, PurchaseOrderNotFound, SupplierNotFound, ValidationError
)
from demand_replenishment.models import POStatus
from demand_replenishment.services.forecast_service import ForecastService
from demand_replenishment.services.predictor import DemandPredictor, PODraftLine, PODraftRequest
from demand_replenishment.utils.date_utils import convert_to_date, utcnow
from demand_replenishment.utils.math_utils import require_non_negative

logger = logging.getLogger(__name__)

# Source states from which each action is allowed
ALLOWED_TRANSITIONS = {
    'submit': (POStatus.DRAFT,),
    'approve': (POStatus.DRAFT, POStatus.PENDING_APPROVAL),
    'send': (POStatus.APPROVED,),
    'receive': (POStatus.SENT,),
    'update': (POStatus.DRAFT,),
    'cancel': (
        POStatus.DRAFT, POStatus.PENDING_APPROVAL, POStatus.APPROVED,
        POStatus.SENT, POStatus.CANCELLED
    )
}

UPDATABLE_FIELDS = (
    'line_items', 'notes', 'expected_delivery_date',
    'draft_email_subject', 'draft_email_body'
)


def normalize_line_items(line_items: List[Dict]) -> List[Dict]:
    """Validate line items and recompute each line's total price."""
    if not line_items:
        raise ValidationError("A purchase order needs at least one line item")

    normalized = []
    for item in line_items:
        try:
            sku = item['sku']
            qty = int(item['qty'])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Line item needs a sku and an integer qty: {item!r}")
        if qty <= 0:
            raise ValidationError(f"Line item qty must be positive for {sku}")

        unit_price = require_non_negative(item.get('unit_price', 0), f"unit_price for {sku}")
        line = dict(item)
        line.update({
            'sku': sku,
            'product_name': item.get('product_name') or sku,
            'qty': qty,
            'unit_price': unit_price,
            'total_price': round(qty * unit_price, 2)
        })
        normalized.append(line)
    return normalized


class PurchaseOrderService:
    """Service for drafting purchase orders and driving their lifecycle.

    States run draft -> approved -> sent -> received, with cancelled
    reachable from anything but received. Every transition is a single
    conditional update, so a rejected call leaves the order untouched.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        predictor: DemandPredictor,
        forecast_service: ForecastService,
        forecast_horizon: int = 30,
        clock: Callable = utcnow
    ):
        """Initialize the purchase order service.

        Args:
            gateway: Persistence gateway
            predictor: Predictor used for quantity recommendations
            forecast_service: Source of the latest forecast per SKU
            forecast_horizon: Forecast horizon used as demand input
            clock: Returns the current naive UTC datetime
        """
        self.gateway = gateway
        self.predictor = predictor
        self.forecast_service = forecast_service
        self.forecast_horizon = forecast_horizon
        self.clock = clock

    def _draft_line(self, sku: str, prices: Dict[str, Dict]) -> PODraftLine:
        inventory = self.gateway.get_inventory(sku)
        if inventory is None:
            raise NoInventoryRecord(sku)

        product = self.gateway.get_product(sku) or {}
        forecast = self.forecast_service.get_latest_forecast(sku, self.forecast_horizon)
        demand = float(forecast['summary']['total_predicted']) if forecast else 0.0

        price = prices.get(sku)
        if price is not None:
            unit_price, moq = float(price['unit_price']), int(price['moq'] or 1)
        else:
            logger.warning(f"No current supplier price for {sku}, using catalog price")
            unit_price, moq = float(product.get('price') or 0.0), 1

        return PODraftLine(
            sku=sku,
            product_name=product.get('name') or sku,
            current_stock=inventory['qty_available'],
            forecasted_demand=demand,
            safety_stock=inventory['safety_stock'] or 0,
            unit_price=unit_price,
            moq=moq,
            location=inventory['location']
        )

    def _load_draft_inputs(self, skus: List[str], supplier_id: int, now):
        supplier = self.gateway.get_supplier(supplier_id)
        if supplier is None:
            raise SupplierNotFound(f"Supplier not found: {supplier_id}")

        prices = {p['sku']: p for p in self.gateway.get_current_prices(supplier_id, skus, now)}
        return supplier, [self._draft_line(sku, prices) for sku in skus]

    async def generate_draft_po(self, skus: List[str], supplier_id: int, reason: str,
                                notes: Optional[str] = None,
                                created_by: Optional[str] = None) -> Dict:
        """Draft a purchase order for SKUs from one supplier.

        Args:
            skus: SKUs to order
            supplier_id: Supplier ID
            reason: Why the order is being placed
            notes: Free-text notes stored on the order
            created_by: User creating the draft

        Returns:
            Created purchase order in ``draft`` status

        Raises:
            SupplierNotFound: unknown supplier
            NoInventoryRecord: a SKU has no inventory snapshot
            PredictionUnavailable: no quantities could be drafted
        """
        skus = list(dict.fromkeys(skus or []))
        if not skus:
            raise ValidationError("At least one SKU is required to draft a purchase order")

        now = self.clock()
        supplier, lines = await asyncio.to_thread(self._load_draft_inputs, skus, supplier_id, now)

        draft = await self.predictor.draft_purchase_order(
            PODraftRequest(supplier=supplier, lines=lines, reason=reason, today=now.date())
        )

        by_sku = {line.sku: line for line in lines}
        line_items = normalize_line_items([
            {
                'sku': q['sku'],
                'product_name': by_sku[q['sku']].product_name,
                'qty': q['qty'],
                'unit_price': by_sku[q['sku']].unit_price,
                'location': by_sku[q['sku']].location
            }
            for q in draft.recommended_quantities
        ])

        po = await asyncio.to_thread(
            self.gateway.create_purchase_order,
            now.year,
            supplier_id=supplier_id,
            status=POStatus.DRAFT.value,
            line_items=line_items,
            total_amount=round(sum(item['total_price'] for item in line_items), 2),
            expected_delivery_date=draft.expected_delivery_date,
            ai_reasoning=draft.reasoning,
            draft_email_subject=draft.email_subject,
            draft_email_body=draft.email_body,
            notes=notes,
            created_by=created_by,
            created_at=now,
            updated_at=now
        )
        logger.info(
            f"Drafted {po['po_number']} for supplier {supplier['name']}: "
            f"{len(line_items)} lines, total {po['total_amount']:.2f}"
        )
        return po

    def get_po(self, po_id: int) -> Dict:
        """Get a purchase order by ID.

        Raises:
            PurchaseOrderNotFound: unknown id
        """
        po = self.gateway.get_purchase_order(po_id)
        if po is None:
            raise PurchaseOrderNotFound(f"Purchase order not found: {po_id}")
        return po

    def list_pos(self, status: Optional[str] = None, supplier_id: Optional[int] = None,
                 limit: int = 50, offset: int = 0) -> List[Dict]:
        """List purchase orders newest first."""
        if status is not None:
            try:
                status = POStatus(status).value
            except ValueError:
                raise ValidationError(
                    f"Unknown purchase order status: {status}",
                    details={'allowed': [s.value for s in POStatus]}
                )
        return self.gateway.list_purchase_orders(status, supplier_id, limit, offset)

    def _transition(self, po_id: int, action: str, updates: Dict[str, Any]) -> Dict:
        po = self.gateway.transition_purchase_order(
            po_id, ALLOWED_TRANSITIONS[action], action, updates
        )
        logger.info(f"Purchase order {po['po_number']}: {action} -> {po['status']}")
        return po

    def submit_for_approval(self, po_id: int) -> Dict:
        return self._transition(po_id, 'submit', {'status': POStatus.PENDING_APPROVAL.value})

    def approve_po(self, po_id: int, approved_by: str) -> Dict:
        """Approve a draft or pending purchase order.

        Raises:
            InvalidTransition: the order is not draft or pending_approval
        """
        return self._transition(po_id, 'approve', {
            'status': POStatus.APPROVED.value,
            'approved_by': approved_by,
            'approved_at': self.clock()
        })

    def send_po(self, po_id: int) -> Dict:
        """Mark an approved purchase order as sent to the supplier."""
        return self._transition(po_id, 'send', {
            'status': POStatus.SENT.value,
            'sent_at': self.clock()
        })

    def receive_po(self, po_id: int, received_by: Optional[str] = None) -> Dict:
        """Receive a sent purchase order into inventory.

        Stock increments, audit entries and the status change commit
        together or not at all. Receiving twice fails with
        ``InvalidTransition`` without touching stock.

        Raises:
            InvalidTransition: the order is not in sent status
            POReceiptPartialFailure: a line could not be applied
        """
        po = self.gateway.receive_purchase_order(po_id, received_by, self.clock())
        logger.info(f"Received {po['po_number']}: {len(po['line_items'])} lines into inventory")
        return po

    def update_po(self, po_id: int, fields: Dict[str, Any]) -> Dict:
        """Edit a draft purchase order.

        Only line items, notes, delivery date and the email draft may change;
        line totals and the order total are recomputed from line items.

        Raises:
            ValidationError: unknown or invalid fields
            InvalidTransition: the order is no longer a draft
        """
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
        if not fields:
            raise ValidationError("No fields to update")

        updates = dict(fields)
        if 'line_items' in updates:
            updates['line_items'] = normalize_line_items(updates['line_items'])
            updates['total_amount'] = round(sum(i['total_price'] for i in updates['line_items']), 2)
        if 'expected_delivery_date' in updates:
            updates['expected_delivery_date'] = convert_to_date(updates['expected_delivery_date'])

        return self._transition(po_id, 'update', updates)

    def cancel_po(self, po_id: int) -> Dict:
        """Cancel a purchase order that has not been received."""
        return self._transition(po_id, 'cancel', {'status': POStatus.CANCELLED.value})
