"""
Unit tests for the inventory and supplier services.
"""
import unittest
from datetime import datetime, timedelta

from demand_replenishment.exceptions import (
    InsufficientStock, NoInventoryRecord, SupplierNotFound, ValidationError
)
from demand_replenishment.services.inventory_service import (
    InventoryService, stock_recommendation, stock_status
)
from demand_replenishment.services.supplier_service import SupplierService
from demand_replenishment.tests.helpers import FakeClock, make_gateway


class TestStockHelpers(unittest.TestCase):
    """Status and recommendation helpers."""

    def test_stock_status(self):
        self.assertEqual(stock_status(0, 5, 15), 'out_of_stock')
        self.assertEqual(stock_status(3, 5, 15), 'critical')
        self.assertEqual(stock_status(10, 5, 15), 'low_stock')
        self.assertEqual(stock_status(15, 5, 15), 'in_stock')

    def test_stock_recommendation(self):
        self.assertEqual(
            stock_recommendation(3, 5, 15, forecast_demand=20),
            {'should_reorder': True, 'suggested_qty': 22, 'urgency': 'high'}
        )
        self.assertEqual(
            stock_recommendation(6, 5, 15, forecast_demand=0),
            {'should_reorder': True, 'suggested_qty': 5, 'urgency': 'medium'}
        )
        self.assertEqual(
            stock_recommendation(40, 5, 15, forecast_demand=10),
            {'should_reorder': False, 'suggested_qty': 0, 'urgency': 'low'}
        )


class TestInventoryService(unittest.TestCase):
    """Inventory queries and stock changes."""

    def setUp(self):
        self.clock = FakeClock()
        self.gateway = make_gateway()
        self.service = InventoryService(self.gateway, clock=self.clock)
        self.gateway.upsert_product('SKU-1', 'Widget')
        self.gateway.add_inventory('SKU-1', qty_available=8, safety_stock=5, reorder_point=15)

    def test_get_inventory_enriched(self):
        self.gateway.add_sales_record('SKU-1', 3, sold_at=self.clock.now - timedelta(days=2))
        self.gateway.add_sales_record('SKU-1', 9, sold_at=self.clock.now - timedelta(days=10))
        self.gateway.insert_forecast(
            sku='SKU-1', horizon_days=30,
            predictions=[{'date': '2024-06-01', 'predicted_qty': 20}],
            summary={'total_predicted': 20}, explanation='', model_version='test-model',
            generated_at=self.clock.now
        )

        inventory = self.service.get_inventory('SKU-1')

        self.assertEqual(inventory['qty_available'], 8)
        self.assertEqual(inventory['status'], 'low_stock')
        self.assertEqual(inventory['sales_last_7_days'], 3)
        self.assertEqual(inventory['forecast_30_days'], 20.0)
        self.assertEqual(inventory['recommendation']['suggested_qty'], 17)

    def test_get_inventory_missing(self):
        with self.assertRaises(NoInventoryRecord):
            self.service.get_inventory('NOPE')

    def test_adjust_stock(self):
        snapshot = self.service.adjust_stock('SKU-1', -3, 'sale', reference_id='ORD-9', changed_by='pos')
        self.assertEqual(snapshot['qty_available'], 5)

        entry = self.gateway.list_audit_entries(reference_id='ORD-9')[0]
        self.assertEqual(entry['change_type'], 'sale')
        self.assertEqual(entry['qty_change'], -3)

    def test_adjust_stock_validation(self):
        with self.assertRaises(ValidationError):
            self.service.adjust_stock('SKU-1', 2, 'theft')
        with self.assertRaises(ValidationError):
            self.service.adjust_stock('SKU-1', 0)
        with self.assertRaises(InsufficientStock):
            self.service.adjust_stock('SKU-1', -9, 'sale')
        self.assertEqual(self.gateway.get_inventory('SKU-1')['qty_available'], 8)

    def test_reorder_recommendations(self):
        self.gateway.upsert_product('SKU-2', 'Gadget', is_active=False)
        self.gateway.add_inventory('SKU-2', qty_available=0)
        self.gateway.add_inventory('SKU-3', qty_available=2)
        self.gateway.add_inventory('SKU-4', qty_available=80)

        recommendations = self.service.get_reorder_recommendations()

        self.assertEqual([r['sku'] for r in recommendations], ['SKU-3', 'SKU-1'])
        self.assertEqual(recommendations[0]['urgency'], 'high')
        self.assertEqual(recommendations[1]['urgency'], 'medium')
        self.assertEqual(recommendations[1]['name'], 'Widget')

    def test_list_low_stock(self):
        self.gateway.add_inventory('SKU-5', qty_available=100)
        self.assertEqual([r['sku'] for r in self.service.list_low_stock()], ['SKU-1'])


class TestSupplierService(unittest.TestCase):
    """Supplier lookups and price maintenance."""

    def setUp(self):
        self.clock = FakeClock()
        self.gateway = make_gateway()
        self.service = SupplierService(self.gateway, clock=self.clock)
        self.supplier = self.gateway.add_supplier('Acme', lead_time_days=5)
        self.gateway.add_supplier('Dormant', is_active=False)

    def test_lookup(self):
        self.assertEqual(self.service.get_supplier(self.supplier['id'])['name'], 'Acme')
        with self.assertRaises(SupplierNotFound):
            self.service.get_supplier(999)
        self.assertEqual([s['name'] for s in self.service.list_suppliers()], ['Acme'])
        self.assertEqual(len(self.service.list_suppliers(active_only=False)), 2)

    def test_set_price(self):
        self.service.set_supplier_price(self.supplier['id'], 'SKU-1', 4.5, moq=6)
        self.service.set_supplier_price(
            self.supplier['id'], 'SKU-2', 1.0, valid_until=datetime(2024, 5, 1)
        )

        prices = self.service.get_current_prices(self.supplier['id'])

        self.assertEqual([(p['sku'], p['unit_price'], p['moq']) for p in prices], [('SKU-1', 4.5, 6)])

    def test_set_price_validation(self):
        with self.assertRaises(ValidationError):
            self.service.set_supplier_price(self.supplier['id'], 'SKU-1', -1)
        with self.assertRaises(ValidationError):
            self.service.set_supplier_price(self.supplier['id'], 'SKU-1', 2.0, moq=0)
        with self.assertRaises(SupplierNotFound):
            self.service.set_supplier_price(999, 'SKU-1', 2.0)


if __name__ == '__main__':
    unittest.main()
