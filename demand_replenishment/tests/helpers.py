"""Shared fixtures for the test suite."""
import asyncio
from datetime import datetime, timedelta

from demand_replenishment.db.connection import DatabaseConnection
from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.services.heuristic_predictor import HeuristicPredictor

NOW = datetime(2024, 6, 1, 12, 0, 0)


class FakeClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class CountingPredictor(HeuristicPredictor):
    """Heuristic predictor that counts forecast calls."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    async def predict(self, request):
        self.calls += 1
        return await super().predict(request)


class GatedPredictor(HeuristicPredictor):
    """Heuristic predictor that holds each draft until ``expected`` drafts are in flight."""

    def __init__(self, expected, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.expected = expected
        self.in_flight = 0
        self.all_in = asyncio.Event()

    async def draft_purchase_order(self, request):
        self.in_flight += 1
        if self.in_flight >= self.expected:
            self.all_in.set()
        await asyncio.wait_for(self.all_in.wait(), timeout=5)
        return await super().draft_purchase_order(request)


def make_gateway():
    """Create a gateway over a fresh in-memory SQLite database."""
    connection = DatabaseConnection('sqlite://')
    connection.create_all_tables()
    return PersistenceGateway(connection)


def add_daily_sales(gateway, sku, end, days, qty=2, unit_price=100.0):
    """Record one sale per day for ``days`` days ending the day before ``end``."""
    for offset in range(days, 0, -1):
        gateway.add_sales_record(sku, qty, unit_price=unit_price, sold_at=end - timedelta(days=offset))
