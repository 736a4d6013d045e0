# demand_replenishment/models.py
import enum

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Boolean, ForeignKey, Text,
    JSON, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from demand_replenishment.utils.date_utils import utcnow

Base = declarative_base()


class POStatus(str, enum.Enum):
    """Purchase order lifecycle states.

    Values:
        DRAFT: Generated, freely editable
        PENDING_APPROVAL: Waiting for a reviewer (approvable like a draft)
        APPROVED: Signed off, ready to send
        SENT: Transmitted to the supplier
        RECEIVED: Goods in, inventory incremented (terminal)
        CANCELLED: Abandoned before receipt (terminal)
    """
    DRAFT = 'draft'
    PENDING_APPROVAL = 'pending_approval'
    APPROVED = 'approved'
    SENT = 'sent'
    RECEIVED = 'received'
    CANCELLED = 'cancelled'

    def __str__(self):
        return self.value


class ChangeType(str, enum.Enum):
    SALE = 'sale'
    RESTOCK = 'restock'
    ADJUSTMENT = 'adjustment'
    RETURN = 'return'

    def __str__(self):
        return self.value


class Product(Base):
    """Catalog entry, owned by the external catalog service."""
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    category = Column(String(50), default='general')
    brand = Column(String(100))
    price = Column(Float, default=0.0)
    is_active = Column(Boolean, default=True)


class SalesRecord(Base):
    __tablename__ = 'sales'

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, default=0.0)
    discount = Column(Float, default=0.0)
    sold_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_sales_sku_sold_at', 'sku', 'sold_at'),
    )


class InventorySnapshot(Base):
    __tablename__ = 'inventory'

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False)
    location = Column(String(50), nullable=False, default='main_warehouse')
    qty_available = Column(Integer, nullable=False, default=0)
    qty_reserved = Column(Integer, nullable=False, default=0)
    safety_stock = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer, nullable=False, default=15)
    lead_time_days = Column(Integer, nullable=False, default=7)
    last_restocked_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('sku', 'location', name='uq_inventory_sku_location'),
        CheckConstraint('qty_available >= 0', name='ck_inventory_qty_non_negative'),
    )


class Forecast(Base):
    """Immutable forecast record; history is kept for accuracy tracking."""
    __tablename__ = 'forecasts'

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False)
    horizon_days = Column(Integer, nullable=False)
    generated_at = Column(DateTime, nullable=False, default=utcnow)
    predictions = Column(JSON, nullable=False)
    summary = Column(JSON)
    explanation = Column(Text)
    model_version = Column(String(100))
    reorder_recommendation = Column(JSON)

    __table_args__ = (
        Index('idx_forecast_sku_horizon_generated', 'sku', 'horizon_days', 'generated_at'),
    )


class Supplier(Base):
    __tablename__ = 'suppliers'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    contact_person = Column(String(100))
    email = Column(String(200))
    phone = Column(String(50))
    lead_time_days = Column(Integer, nullable=False, default=7)
    payment_terms = Column(String(100))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    prices = relationship("SupplierPrice", back_populates="supplier")


class SupplierPrice(Base):
    __tablename__ = 'supplier_prices'

    id = Column(Integer, primary_key=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False)
    sku = Column(String(64), nullable=False)
    unit_price = Column(Float, nullable=False)
    moq = Column(Integer, default=1)
    valid_until = Column(DateTime)  # NULL means always valid
    created_at = Column(DateTime, default=utcnow)

    supplier = relationship("Supplier", back_populates="prices")

    __table_args__ = (
        Index('idx_supplier_price_supplier_sku', 'supplier_id', 'sku'),
    )


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id = Column(Integer, primary_key=True)
    po_number = Column(String(20), nullable=False, unique=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False)
    status = Column(String(20), nullable=False, default=POStatus.DRAFT.value)
    line_items = Column(JSON, nullable=False)
    total_amount = Column(Float, default=0.0)
    expected_delivery_date = Column(Date)
    ai_reasoning = Column(Text)
    draft_email_subject = Column(String(300))
    draft_email_body = Column(Text)
    approved_by = Column(String(100))
    approved_at = Column(DateTime)
    sent_at = Column(DateTime)
    received_at = Column(DateTime)
    notes = Column(Text)
    created_by = Column(String(100))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier")


class InventoryAuditLog(Base):
    """Append-only record of every inventory-affecting event."""
    __tablename__ = 'inventory_audit_log'

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False)
    change_type = Column(String(20), nullable=False)
    qty_change = Column(Integer, nullable=False)
    qty_before = Column(Integer, nullable=False)
    qty_after = Column(Integer, nullable=False)
    reference_id = Column(String(64))
    reason = Column(Text)
    changed_by = Column(String(100))
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_audit_reference', 'reference_id'),
    )
