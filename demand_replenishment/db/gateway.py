# demand_replenishment/db/gateway.py
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from demand_replenishment.db.connection import DatabaseConnection
from demand_replenishment.exceptions import (
    DatabaseError, InsufficientStock, InvalidTransition, NoInventoryRecord,
    POReceiptPartialFailure, PurchaseOrderNotFound
)
from demand_replenishment.models import (
    Product, SalesRecord, InventorySnapshot, Forecast, Supplier, SupplierPrice,
    PurchaseOrder, InventoryAuditLog, POStatus, ChangeType
)
from demand_replenishment.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

PO_NUMBER_ATTEMPTS = 5


def to_dict(obj) -> Optional[Dict[str, Any]]:
    """Copy an ORM row's column values into a plain dictionary."""
    if obj is None:
        return None
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


def format_po_number(year: int, sequence: int) -> str:
    """Format a purchase order number as ``PO-<year>-<4-digit sequence>``."""
    return f"PO-{year:04d}-{sequence:04d}"


def parse_po_sequence(po_number: str) -> int:
    """Extract the sequence part of a purchase order number (0 if malformed)."""
    try:
        return int(po_number.split('-')[2])
    except (AttributeError, IndexError, ValueError):
        return 0


class PersistenceGateway:
    """Typed access to sales, inventory, forecast, supplier and PO records.

    Every public method opens its own transaction and returns plain
    dictionaries, so callers never hold sessions across awaits.
    """

    def __init__(self, connection: DatabaseConnection, default_location: str = 'main_warehouse'):
        """Initialize the gateway.

        Args:
            connection: Database connection
            default_location: Inventory location used when none is given
        """
        self.connection = connection
        self.default_location = default_location

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_product(self, sku: str) -> Optional[Dict]:
        with self.connection.session_scope() as session:
            product = session.execute(
                select(Product).where(Product.sku == sku)
            ).scalar_one_or_none()
            return to_dict(product)

    def upsert_product(self, sku: str, name: str, category: str = 'general',
                       brand: Optional[str] = None, price: float = 0.0,
                       is_active: bool = True) -> Dict:
        with self.connection.session_scope() as session:
            product = session.execute(
                select(Product).where(Product.sku == sku)
            ).scalar_one_or_none()
            if product is None:
                product = Product(sku=sku)
                session.add(product)
            product.name = name
            product.category = category
            product.brand = brand
            product.price = price
            product.is_active = is_active
            session.flush()
            return to_dict(product)

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def add_sales_record(self, sku: str, quantity: int, unit_price: float = 0.0,
                         discount: float = 0.0, sold_at: Optional[datetime] = None) -> Dict:
        with self.connection.session_scope() as session:
            record = SalesRecord(
                sku=sku,
                quantity=quantity,
                unit_price=unit_price,
                discount=discount,
                sold_at=sold_at or utcnow()
            )
            session.add(record)
            session.flush()
            return to_dict(record)

    def get_sales_history(self, sku: str, since: datetime) -> List[Dict]:
        """Get sales for a SKU sold at or after ``since``, oldest first."""
        with self.connection.session_scope() as session:
            rows = session.execute(
                select(SalesRecord)
                .where(SalesRecord.sku == sku, SalesRecord.sold_at >= since)
                .order_by(SalesRecord.sold_at.asc())
            ).scalars().all()
            return [to_dict(r) for r in rows]

    def get_daily_sales(self, sku: str, start: date, end: date) -> Dict[date, int]:
        """Get total units sold per calendar day between two dates (inclusive)."""
        start_dt = datetime.combine(start, datetime.min.time())
        end_dt = datetime.combine(end, datetime.max.time())

        with self.connection.session_scope() as session:
            rows = session.execute(
                select(SalesRecord.sold_at, SalesRecord.quantity)
                .where(
                    SalesRecord.sku == sku,
                    SalesRecord.sold_at >= start_dt,
                    SalesRecord.sold_at <= end_dt
                )
            ).all()

        totals: Dict[date, int] = defaultdict(int)
        for sold_at, quantity in rows:
            totals[sold_at.date()] += quantity
        return dict(totals)

    def sum_sales_since(self, sku: str, since: datetime) -> int:
        return sum(r['quantity'] for r in self.get_sales_history(sku, since))

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def add_inventory(self, sku: str, qty_available: int, safety_stock: int = 0,
                      reorder_point: int = 15, lead_time_days: int = 7,
                      location: Optional[str] = None) -> Dict:
        with self.connection.session_scope() as session:
            snapshot = InventorySnapshot(
                sku=sku,
                location=location or self.default_location,
                qty_available=qty_available,
                safety_stock=safety_stock,
                reorder_point=reorder_point,
                lead_time_days=lead_time_days
            )
            session.add(snapshot)
            session.flush()
            return to_dict(snapshot)

    def _find_snapshot(self, session, sku: str, location: Optional[str] = None):
        """Find a SKU's snapshot at ``location``.

        Without a location the default location is tried first, then the
        SKU's oldest snapshot anywhere.
        """
        snapshot = session.execute(
            select(InventorySnapshot).where(
                InventorySnapshot.sku == sku,
                InventorySnapshot.location == (location or self.default_location)
            )
        ).scalar_one_or_none()

        if snapshot is None and location is None:
            snapshot = session.execute(
                select(InventorySnapshot)
                .where(InventorySnapshot.sku == sku)
                .order_by(InventorySnapshot.id)
            ).scalars().first()

        return snapshot

    def get_inventory(self, sku: str, location: Optional[str] = None) -> Optional[Dict]:
        """Get the inventory snapshot for a SKU at a location."""
        with self.connection.session_scope() as session:
            return to_dict(self._find_snapshot(session, sku, location))

    def list_inventory(self, active_only: bool = True) -> List[Dict]:
        """List inventory snapshots joined with catalog attributes.

        SKUs with no catalog entry are treated as active.
        """
        with self.connection.session_scope() as session:
            query = (
                select(InventorySnapshot, Product)
                .outerjoin(Product, Product.sku == InventorySnapshot.sku)
                .order_by(InventorySnapshot.qty_available.asc())
            )
            if active_only:
                query = query.where(or_(Product.is_active.is_(None), Product.is_active.is_(True)))

            results = []
            for snapshot, product in session.execute(query).all():
                row = to_dict(snapshot)
                row['name'] = product.name if product else snapshot.sku
                row['is_active'] = product.is_active if product else True
                results.append(row)
            return results

    def list_low_stock(self) -> List[Dict]:
        """SKUs below their reorder point, most depleted (relative) first."""
        with self.connection.session_scope() as session:
            rows = session.execute(
                select(InventorySnapshot)
                .where(InventorySnapshot.qty_available < InventorySnapshot.reorder_point)
                .order_by((InventorySnapshot.qty_available - InventorySnapshot.reorder_point).asc())
            ).scalars().all()
            return [to_dict(r) for r in rows]

    def _increment_stock(self, session, sku: str, delta: int, location: str,
                         now: datetime, restock: bool):
        """Apply a server-side stock delta.

        Returns:
            Tuple (qty_before, qty_after), or None when no row matched
            (missing SKU or the delta would go below zero)
        """
        values = {'qty_available': InventorySnapshot.qty_available + delta, 'updated_at': now}
        if restock:
            values['last_restocked_at'] = now

        result = session.execute(
            update(InventorySnapshot)
            .where(
                InventorySnapshot.sku == sku,
                InventorySnapshot.location == location,
                InventorySnapshot.qty_available + delta >= 0
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None

        qty_after = session.execute(
            select(InventorySnapshot.qty_available).where(
                InventorySnapshot.sku == sku,
                InventorySnapshot.location == location
            )
        ).scalar_one()
        return qty_after - delta, qty_after

    def _append_audit_entry(self, session, **fields) -> InventoryAuditLog:
        entry = InventoryAuditLog(**fields)
        session.add(entry)
        session.flush()
        return entry

    def apply_stock_delta(self, sku: str, delta: int, change_type: str,
                          reference_id: Optional[str] = None, reason: Optional[str] = None,
                          changed_by: Optional[str] = None,
                          location: Optional[str] = None) -> Dict:
        """Atomically change stock by ``delta`` and write one audit entry.

        Raises:
            NoInventoryRecord: if the SKU has no snapshot at the location
            InsufficientStock: if the result would be negative
        """
        now = utcnow()

        with self.connection.session_scope() as session:
            snapshot = self._find_snapshot(session, sku, location)
            if snapshot is None:
                raise NoInventoryRecord(sku)
            location = snapshot.location

            change = self._increment_stock(
                session, sku, delta, location, now,
                restock=str(change_type) == ChangeType.RESTOCK.value
            )

            if change is None:
                current = session.execute(
                    select(InventorySnapshot.qty_available).where(
                        InventorySnapshot.sku == sku,
                        InventorySnapshot.location == location
                    )
                ).scalar_one_or_none()
                if current is None:
                    raise NoInventoryRecord(sku)
                raise InsufficientStock(
                    f"Insufficient inventory for SKU: {sku}. Available: {current}, change: {delta}",
                    details={'sku': sku, 'available': current, 'delta': delta}
                )

            qty_before, qty_after = change
            self._append_audit_entry(
                session,
                sku=sku,
                change_type=str(change_type),
                qty_change=delta,
                qty_before=qty_before,
                qty_after=qty_after,
                reference_id=reference_id,
                reason=reason,
                changed_by=changed_by,
                timestamp=now
            )

            snapshot = session.execute(
                select(InventorySnapshot).where(
                    InventorySnapshot.sku == sku,
                    InventorySnapshot.location == location
                )
            ).scalar_one()
            session.refresh(snapshot)
            return to_dict(snapshot)

    def list_audit_entries(self, reference_id: Optional[str] = None,
                           sku: Optional[str] = None) -> List[Dict]:
        with self.connection.session_scope() as session:
            query = select(InventoryAuditLog).order_by(InventoryAuditLog.id)
            if reference_id is not None:
                query = query.where(InventoryAuditLog.reference_id == reference_id)
            if sku is not None:
                query = query.where(InventoryAuditLog.sku == sku)
            return [to_dict(e) for e in session.execute(query).scalars().all()]

    # ------------------------------------------------------------------
    # Forecasts
    # ------------------------------------------------------------------

    def insert_forecast(self, sku: str, horizon_days: int, predictions: List[Dict],
                        summary: Dict, explanation: str, model_version: str,
                        reorder_recommendation: Optional[Dict] = None,
                        generated_at: Optional[datetime] = None) -> Dict:
        """Append a forecast record (existing forecasts are never overwritten)."""
        with self.connection.session_scope() as session:
            forecast = Forecast(
                sku=sku,
                horizon_days=horizon_days,
                generated_at=generated_at or utcnow(),
                predictions=predictions,
                summary=summary,
                explanation=explanation,
                model_version=model_version,
                reorder_recommendation=reorder_recommendation
            )
            session.add(forecast)
            session.flush()
            return to_dict(forecast)

    def get_forecast(self, forecast_id: int) -> Optional[Dict]:
        with self.connection.session_scope() as session:
            return to_dict(session.get(Forecast, forecast_id))

    def get_latest_forecast(self, sku: str, horizon_days: int,
                            generated_since: Optional[datetime] = None) -> Optional[Dict]:
        with self.connection.session_scope() as session:
            query = (
                select(Forecast)
                .where(Forecast.sku == sku, Forecast.horizon_days == horizon_days)
                .order_by(Forecast.generated_at.desc(), Forecast.id.desc())
            )
            if generated_since is not None:
                query = query.where(Forecast.generated_at >= generated_since)
            return to_dict(session.execute(query).scalars().first())

    def list_forecasts(self, sku: str, limit: int = 10) -> List[Dict]:
        with self.connection.session_scope() as session:
            rows = session.execute(
                select(Forecast)
                .where(Forecast.sku == sku)
                .order_by(Forecast.generated_at.desc(), Forecast.id.desc())
                .limit(limit)
            ).scalars().all()
            return [to_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    def add_supplier(self, name: str, email: Optional[str] = None, lead_time_days: int = 7,
                     payment_terms: Optional[str] = None, is_active: bool = True,
                     contact_person: Optional[str] = None) -> Dict:
        with self.connection.session_scope() as session:
            supplier = Supplier(
                name=name,
                email=email,
                lead_time_days=lead_time_days,
                payment_terms=payment_terms,
                is_active=is_active,
                contact_person=contact_person
            )
            session.add(supplier)
            session.flush()
            return to_dict(supplier)

    def get_supplier(self, supplier_id: int) -> Optional[Dict]:
        with self.connection.session_scope() as session:
            return to_dict(session.get(Supplier, supplier_id))

    def list_suppliers(self, active_only: bool = True) -> List[Dict]:
        with self.connection.session_scope() as session:
            query = select(Supplier).order_by(Supplier.name)
            if active_only:
                query = query.where(Supplier.is_active.is_(True))
            return [to_dict(s) for s in session.execute(query).scalars().all()]

    @staticmethod
    def _current_price_filter(now: datetime):
        return or_(SupplierPrice.valid_until.is_(None), SupplierPrice.valid_until >= now)

    def get_current_prices(self, supplier_id: int, skus: Optional[Iterable[str]] = None,
                           now: Optional[datetime] = None) -> List[Dict]:
        """Get prices that are valid now (``valid_until`` NULL or in the future)."""
        now = now or utcnow()
        with self.connection.session_scope() as session:
            query = select(SupplierPrice).where(
                SupplierPrice.supplier_id == supplier_id,
                self._current_price_filter(now)
            ).order_by(SupplierPrice.sku)
            if skus is not None:
                query = query.where(SupplierPrice.sku.in_(list(skus)))
            return [to_dict(p) for p in session.execute(query).scalars().all()]

    def upsert_supplier_price(self, supplier_id: int, sku: str, unit_price: float,
                              moq: int = 1, valid_until: Optional[datetime] = None,
                              now: Optional[datetime] = None) -> Dict:
        """Update the current price for (supplier, sku), inserting if none exists."""
        now = now or utcnow()
        with self.connection.session_scope() as session:
            price = session.execute(
                select(SupplierPrice).where(
                    SupplierPrice.supplier_id == supplier_id,
                    SupplierPrice.sku == sku,
                    self._current_price_filter(now)
                ).order_by(SupplierPrice.id.desc())
            ).scalars().first()

            if price is None:
                price = SupplierPrice(supplier_id=supplier_id, sku=sku)
                session.add(price)

            price.unit_price = unit_price
            price.moq = moq
            price.valid_until = valid_until
            session.flush()
            return to_dict(price)

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def get_purchase_order(self, po_id: int) -> Optional[Dict]:
        with self.connection.session_scope() as session:
            return to_dict(session.get(PurchaseOrder, po_id))

    def list_purchase_orders(self, status: Optional[str] = None, supplier_id: Optional[int] = None,
                             limit: int = 50, offset: int = 0) -> List[Dict]:
        with self.connection.session_scope() as session:
            query = select(PurchaseOrder)
            if status is not None:
                query = query.where(PurchaseOrder.status == str(status))
            if supplier_id is not None:
                query = query.where(PurchaseOrder.supplier_id == supplier_id)
            query = query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
            query = query.limit(limit).offset(offset)
            return [to_dict(po) for po in session.execute(query).scalars().all()]

    def _read_max_sequence(self, session, year: int) -> int:
        prefix = f"PO-{year:04d}-"
        numbers = session.execute(
            select(PurchaseOrder.po_number).where(PurchaseOrder.po_number.like(f"{prefix}%"))
        ).scalars().all()
        return max((parse_po_sequence(n) for n in numbers), default=0)

    def max_po_sequence(self, year: int) -> int:
        """Get the highest PO sequence used for a calendar year."""
        with self.connection.session_scope() as session:
            return self._read_max_sequence(session, year)

    def create_purchase_order(self, year: int, **fields) -> Dict:
        """Insert a purchase order with the next free number for ``year``.

        The number is read and inserted in one transaction; a unique
        violation from a concurrent writer triggers a re-read and retry.
        """
        last_error = None

        for attempt in range(1, PO_NUMBER_ATTEMPTS + 1):
            try:
                with self.connection.session_scope() as session:
                    sequence = self._read_max_sequence(session, year) + 1
                    po = PurchaseOrder(po_number=format_po_number(year, sequence), **fields)
                    session.add(po)
                    session.flush()
                    return to_dict(po)
            except IntegrityError as e:
                last_error = e
                logger.warning(f"PO number collision for year {year} (attempt {attempt}), retrying")

        raise DatabaseError(
            f"Could not allocate a purchase order number for {year}: {last_error}"
        )

    def transition_purchase_order(self, po_id: int, allowed_from: Iterable[str],
                                  action: str, updates: Dict[str, Any]) -> Dict:
        """Apply ``updates`` only if the PO is currently in ``allowed_from``.

        The status check and the write are one conditional UPDATE, so a
        rejected transition never mutates the record.

        Raises:
            PurchaseOrderNotFound: unknown id
            InvalidTransition: current status not in ``allowed_from``
        """
        allowed = [str(s) for s in allowed_from]

        with self.connection.session_scope() as session:
            result = session.execute(
                update(PurchaseOrder)
                .where(PurchaseOrder.id == po_id, PurchaseOrder.status.in_(allowed))
                .values(updated_at=utcnow(), **updates)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                current = session.execute(
                    select(PurchaseOrder.status).where(PurchaseOrder.id == po_id)
                ).scalar_one_or_none()
                if current is None:
                    raise PurchaseOrderNotFound(f"Purchase order not found: {po_id}")
                raise InvalidTransition(current, action)

            po = session.get(PurchaseOrder, po_id)
            session.refresh(po)
            return to_dict(po)

    def receive_purchase_order(self, po_id: int, received_by: Optional[str] = None,
                               now: Optional[datetime] = None) -> Dict:
        """Receive a sent PO: increment stock and audit every line, all or nothing.

        Raises:
            PurchaseOrderNotFound: unknown id
            InvalidTransition: the PO is not in ``sent`` status
            POReceiptPartialFailure: any line could not be applied; the whole
                receipt was rolled back
        """
        now = now or utcnow()

        try:
            with self.connection.session_scope() as session:
                # Claim the PO first; a second receiver matches zero rows
                claimed = session.execute(
                    update(PurchaseOrder)
                    .where(PurchaseOrder.id == po_id, PurchaseOrder.status == POStatus.SENT.value)
                    .values(status=POStatus.RECEIVED.value, received_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

                if claimed.rowcount == 0:
                    current = session.execute(
                        select(PurchaseOrder.status).where(PurchaseOrder.id == po_id)
                    ).scalar_one_or_none()
                    if current is None:
                        raise PurchaseOrderNotFound(f"Purchase order not found: {po_id}")
                    raise InvalidTransition(current, 'receive')

                po = session.get(PurchaseOrder, po_id)
                session.refresh(po)

                for item in po.line_items or []:
                    sku = item['sku']
                    qty = int(item['qty'])

                    snapshot = self._find_snapshot(session, sku, item.get('location'))
                    change = None
                    if snapshot is not None:
                        change = self._increment_stock(
                            session, sku, qty, snapshot.location, now, restock=True
                        )
                    if change is None:
                        raise POReceiptPartialFailure(
                            f"No inventory record for SKU {sku} while receiving {po.po_number}",
                            details={'po_number': po.po_number, 'sku': sku}
                        )

                    qty_before, qty_after = change
                    self._append_audit_entry(
                        session,
                        sku=sku,
                        change_type=ChangeType.RESTOCK.value,
                        qty_change=qty,
                        qty_before=qty_before,
                        qty_after=qty_after,
                        reference_id=po.po_number,
                        reason=f"Received from PO {po.po_number}",
                        changed_by=received_by,
                        timestamp=now
                    )

                return to_dict(po)

        except (PurchaseOrderNotFound, InvalidTransition, POReceiptPartialFailure):
            raise
        except Exception as e:
            raise POReceiptPartialFailure(
                f"Receipt of purchase order {po_id} rolled back: {str(e)}",
                details={'po_id': po_id}
            ) from e
