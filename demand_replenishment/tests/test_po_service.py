"""
Unit tests for purchase order drafting and the PO lifecycle.
"""
import asyncio
import unittest
from datetime import date
from unittest.mock import patch

from demand_replenishment.exceptions import (
    InvalidTransition, NoInventoryRecord, POReceiptPartialFailure, PurchaseOrderNotFound,
    SupplierNotFound, ValidationError
)
from demand_replenishment.services.forecast_service import ForecastService
from demand_replenishment.services.heuristic_predictor import HeuristicPredictor
from demand_replenishment.services.po_service import PurchaseOrderService
from demand_replenishment.tests.helpers import FakeClock, GatedPredictor, make_gateway


class POServiceTestCase(unittest.TestCase):
    """Shared setup: one supplier, two stocked SKUs and a 30-day forecast."""

    def setUp(self):
        self.clock = FakeClock()
        self.gateway = make_gateway()
        predictor = HeuristicPredictor(seed=2, clock=self.clock)
        forecast_service = ForecastService(self.gateway, predictor, clock=self.clock)
        self.service = PurchaseOrderService(self.gateway, predictor, forecast_service, clock=self.clock)

        self.supplier = self.gateway.add_supplier('Acme Supply', email='orders@acme.test', lead_time_days=10)
        self.gateway.upsert_product('SKU-1', 'Widget', price=3.0)
        self.gateway.upsert_product('SKU-2', 'Gadget', price=4.0)
        self.gateway.add_inventory('SKU-1', qty_available=10, safety_stock=5)
        self.gateway.add_inventory('SKU-2', qty_available=2, safety_stock=0)
        self.gateway.upsert_supplier_price(self.supplier['id'], 'SKU-1', 2.5, moq=1)
        self.gateway.insert_forecast(
            sku='SKU-1',
            horizon_days=30,
            predictions=[{'date': '2024-06-01', 'predicted_qty': 30}],
            summary={'trend': 'stable'},
            explanation='test',
            model_version='test-model',
            generated_at=self.clock.now
        )

    def draft(self, skus=('SKU-1',)):
        return asyncio.run(self.service.generate_draft_po(list(skus), self.supplier['id'], 'Low stock'))

    def stock(self, sku):
        return self.gateway.get_inventory(sku)['qty_available']


class TestGenerateDraft(POServiceTestCase):
    """Drafting purchase orders."""

    def test_draft_contents(self):
        po = self.draft()

        self.assertEqual(po['po_number'], 'PO-2024-0001')
        self.assertEqual(po['status'], 'draft')
        self.assertEqual(po['supplier_id'], self.supplier['id'])
        self.assertEqual(po['expected_delivery_date'], date(2024, 6, 11))
        self.assertEqual(po['total_amount'], 87.5)
        self.assertEqual(po['line_items'], [{
            'sku': 'SKU-1',
            'product_name': 'Widget',
            'qty': 35,
            'unit_price': 2.5,
            'total_price': 87.5,
            'location': 'main_warehouse'
        }])
        self.assertEqual(po['draft_email_subject'], 'Purchase Order Request - Acme Supply')
        self.assertIn('Low stock', po['ai_reasoning'])

    def test_numbers_increase_within_year(self):
        self.assertEqual(self.draft()['po_number'], 'PO-2024-0001')
        self.assertEqual(self.draft()['po_number'], 'PO-2024-0002')

    def test_overlapping_drafts_get_distinct_numbers(self):
        predictor = GatedPredictor(2, seed=2, clock=self.clock)
        service = PurchaseOrderService(
            self.gateway, predictor, self.service.forecast_service, clock=self.clock
        )

        async def draft_two():
            return await asyncio.gather(
                service.generate_draft_po(['SKU-1'], self.supplier['id'], 'A'),
                service.generate_draft_po(['SKU-2'], self.supplier['id'], 'B')
            )

        numbers = sorted(po['po_number'] for po in asyncio.run(draft_two()))
        # Both drafts were past their input reads before either was numbered
        self.assertEqual(predictor.in_flight, 2)
        self.assertEqual(numbers, ['PO-2024-0001', 'PO-2024-0002'])

    def test_receives_into_non_default_location(self):
        self.gateway.upsert_product('SKU-9', 'Sprocket', price=1.0)
        self.gateway.add_inventory('SKU-9', qty_available=1, safety_stock=4, location='store_1')
        self.gateway.upsert_supplier_price(self.supplier['id'], 'SKU-9', 1.0, moq=1)

        po = self.draft(['SKU-9'])
        line = po['line_items'][0]
        self.assertEqual(line['location'], 'store_1')

        self.service.approve_po(po['id'], 'alice')
        self.service.send_po(po['id'])
        received = self.service.receive_po(po['id'])

        self.assertEqual(received['status'], 'received')
        self.assertEqual(self.gateway.get_inventory('SKU-9', 'store_1')['qty_available'], 1 + line['qty'])
        entries = self.gateway.list_audit_entries(reference_id=po['po_number'])
        self.assertEqual([(e['sku'], e['qty_change']) for e in entries], [('SKU-9', line['qty'])])

    def test_edited_line_without_location_finds_only_snapshot(self):
        self.gateway.add_inventory('SKU-9', qty_available=1, location='store_1')
        po = self.draft()
        self.service.update_po(po['id'], {'line_items': [{'sku': 'SKU-9', 'qty': 6, 'unit_price': 1.0}]})
        self.service.approve_po(po['id'], 'alice')
        self.service.send_po(po['id'])

        self.service.receive_po(po['id'])

        self.assertEqual(self.gateway.get_inventory('SKU-9')['qty_available'], 7)

    def test_catalog_price_without_supplier_price(self):
        po = self.draft(['SKU-2'])
        line = po['line_items'][0]
        self.assertEqual(line['unit_price'], 4.0)
        self.assertEqual(line['total_price'], round(line['qty'] * 4.0, 2))

    def test_duplicate_skus_collapse(self):
        po = self.draft(['SKU-1', 'SKU-1', 'SKU-2'])
        self.assertEqual([item['sku'] for item in po['line_items']], ['SKU-1', 'SKU-2'])

    def test_invalid_requests(self):
        with self.assertRaises(ValidationError):
            self.draft([])
        with self.assertRaises(SupplierNotFound):
            asyncio.run(self.service.generate_draft_po(['SKU-1'], 999, 'Low stock'))
        with self.assertRaises(NoInventoryRecord):
            self.draft(['MISSING'])
        self.assertEqual(self.service.list_pos(), [])


class TestLifecycle(POServiceTestCase):
    """State machine transitions."""

    def test_full_flow_receives_into_inventory(self):
        po = self.draft()

        approved = self.service.approve_po(po['id'], 'alice')
        self.assertEqual(approved['status'], 'approved')
        self.assertEqual(approved['approved_by'], 'alice')
        self.assertEqual(approved['approved_at'], self.clock.now)

        sent = self.service.send_po(po['id'])
        self.assertEqual(sent['status'], 'sent')
        self.assertIsNotNone(sent['sent_at'])

        received = self.service.receive_po(po['id'], received_by='bob')
        self.assertEqual(received['status'], 'received')
        self.assertEqual(self.stock('SKU-1'), 45)

        entries = self.gateway.list_audit_entries(reference_id='PO-2024-0001')
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]['change_type'], 'restock')
        self.assertEqual(entries[0]['qty_change'], 35)
        self.assertEqual((entries[0]['qty_before'], entries[0]['qty_after']), (10, 45))
        self.assertEqual(entries[0]['changed_by'], 'bob')
        self.assertIsNotNone(self.gateway.get_inventory('SKU-1')['last_restocked_at'])

    def test_receiving_twice_does_not_double_count(self):
        po = self.draft()
        self.service.approve_po(po['id'], 'alice')
        self.service.send_po(po['id'])
        self.service.receive_po(po['id'])

        with self.assertRaises(InvalidTransition) as ctx:
            self.service.receive_po(po['id'])
        self.assertEqual(ctx.exception.current_status, 'received')
        self.assertEqual(self.stock('SKU-1'), 45)
        self.assertEqual(len(self.gateway.list_audit_entries(sku='SKU-1')), 1)

    def test_submit_then_approve(self):
        po = self.draft()
        self.assertEqual(self.service.submit_for_approval(po['id'])['status'], 'pending_approval')
        self.assertEqual(self.service.approve_po(po['id'], 'alice')['status'], 'approved')

    def test_rejected_transitions_leave_order_untouched(self):
        po = self.draft()

        for action in (self.service.send_po, self.service.receive_po):
            with self.subTest(action=action.__name__):
                with self.assertRaises(InvalidTransition):
                    action(po['id'])

        self.service.approve_po(po['id'], 'alice')
        with self.assertRaises(InvalidTransition):
            self.service.approve_po(po['id'], 'mallory')
        with self.assertRaises(InvalidTransition):
            self.service.submit_for_approval(po['id'])

        current = self.service.get_po(po['id'])
        self.assertEqual(current['status'], 'approved')
        self.assertEqual(current['approved_by'], 'alice')

    def test_cancel(self):
        po = self.draft()
        self.assertEqual(self.service.cancel_po(po['id'])['status'], 'cancelled')
        self.assertEqual(self.service.cancel_po(po['id'])['status'], 'cancelled')
        with self.assertRaises(InvalidTransition):
            self.service.approve_po(po['id'], 'alice')

    def test_cannot_cancel_received(self):
        po = self.draft()
        self.service.approve_po(po['id'], 'alice')
        self.service.send_po(po['id'])
        self.service.receive_po(po['id'])

        with self.assertRaises(InvalidTransition):
            self.service.cancel_po(po['id'])

    def test_unknown_po(self):
        with self.assertRaises(PurchaseOrderNotFound):
            self.service.get_po(404)
        with self.assertRaises(PurchaseOrderNotFound):
            self.service.approve_po(404, 'alice')
        with self.assertRaises(PurchaseOrderNotFound):
            self.service.receive_po(404)

    def test_list_by_status(self):
        first = self.draft()
        self.draft()
        self.service.cancel_po(first['id'])

        self.assertEqual(len(self.service.list_pos()), 2)
        self.assertEqual([po['id'] for po in self.service.list_pos(status='cancelled')], [first['id']])
        self.assertEqual(len(self.service.list_pos(status='draft')), 1)

    def test_list_unknown_status(self):
        self.draft()
        with self.assertRaises(ValidationError) as ctx:
            self.service.list_pos(status='shipped')
        self.assertIn('shipped', ctx.exception.message)
        self.assertIn('draft', ctx.exception.details['allowed'])


class TestUpdateDraft(POServiceTestCase):
    """Editing drafts."""

    def test_line_items_recomputed(self):
        po = self.draft()

        updated = self.service.update_po(po['id'], {
            'line_items': [{'sku': 'SKU-1', 'qty': 4, 'unit_price': 2.5}],
            'notes': 'Rush order',
            'expected_delivery_date': '2024-06-20'
        })

        self.assertEqual(updated['total_amount'], 10.0)
        self.assertEqual(updated['line_items'][0]['total_price'], 10.0)
        self.assertEqual(updated['line_items'][0]['product_name'], 'SKU-1')
        self.assertEqual(updated['notes'], 'Rush order')
        self.assertEqual(updated['expected_delivery_date'], date(2024, 6, 20))

    def test_invalid_updates(self):
        po = self.draft()
        with self.assertRaises(ValidationError):
            self.service.update_po(po['id'], {'status': 'approved'})
        with self.assertRaises(ValidationError):
            self.service.update_po(po['id'], {})
        with self.assertRaises(ValidationError):
            self.service.update_po(po['id'], {'line_items': [{'sku': 'SKU-1', 'qty': 0}]})

    def test_only_drafts_are_editable(self):
        po = self.draft()
        self.service.approve_po(po['id'], 'alice')
        with self.assertRaises(InvalidTransition):
            self.service.update_po(po['id'], {'notes': 'late edit'})


class TestReceiptAtomicity(POServiceTestCase):
    """A failing line rolls back the whole receipt."""

    def _sent_po(self, line_items):
        po = self.draft()
        self.service.update_po(po['id'], {'line_items': line_items})
        self.service.approve_po(po['id'], 'alice')
        self.service.send_po(po['id'])
        return po

    def test_missing_inventory_line(self):
        po = self._sent_po([
            {'sku': 'SKU-1', 'qty': 5, 'unit_price': 2.5},
            {'sku': 'GHOST', 'qty': 5, 'unit_price': 1.0}
        ])

        with self.assertRaises(POReceiptPartialFailure):
            self.service.receive_po(po['id'])

        self.assertEqual(self.stock('SKU-1'), 10)
        self.assertEqual(self.service.get_po(po['id'])['status'], 'sent')
        self.assertEqual(self.gateway.list_audit_entries(reference_id=po['po_number']), [])

    def test_failure_mid_receipt_rolls_back(self):
        po = self._sent_po([
            {'sku': 'SKU-1', 'qty': 5, 'unit_price': 2.5},
            {'sku': 'SKU-2', 'qty': 7, 'unit_price': 4.0}
        ])
        original = self.gateway._append_audit_entry
        calls = []

        def flaky(session, **fields):
            calls.append(fields['sku'])
            if len(calls) == 2:
                raise RuntimeError('audit store unavailable')
            return original(session, **fields)

        with patch.object(self.gateway, '_append_audit_entry', side_effect=flaky):
            with self.assertRaises(POReceiptPartialFailure):
                self.service.receive_po(po['id'])

        self.assertEqual(calls, ['SKU-1', 'SKU-2'])
        self.assertEqual((self.stock('SKU-1'), self.stock('SKU-2')), (10, 2))
        self.assertEqual(self.service.get_po(po['id'])['status'], 'sent')

        # A later retry succeeds exactly once
        self.service.receive_po(po['id'])
        self.assertEqual((self.stock('SKU-1'), self.stock('SKU-2')), (15, 9))


if __name__ == '__main__':
    unittest.main()
