# demand_replenishment/services/notification_service.py
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.exceptions import NoInventoryRecord
from demand_replenishment.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivery channel for low-stock alerts."""

    @abstractmethod
    async def notify(self, alert: Dict) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes alerts to the log at WARNING level."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger('demand_replenishment.alerts')

    async def notify(self, alert: Dict) -> None:
        self.log.warning(
            f"LOW STOCK [{alert['urgency']}] {alert['sku']}: {alert['current_stock']} units on hand, "
            f"suggest ordering {alert['suggested_qty']}. {alert['reasoning']}"
        )


class RecordingNotifier(Notifier):
    """Keeps alerts in memory (used by the CLI dry runs and tests)."""

    def __init__(self):
        self.alerts: List[Dict] = []

    async def notify(self, alert: Dict) -> None:
        self.alerts.append(alert)


class NotificationService:
    """Builds low-stock alerts from reorder recommendations."""

    def __init__(self, gateway: PersistenceGateway, notifier: Notifier, clock: Callable = utcnow):
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock

    @staticmethod
    def alert_urgency(current_stock: int, safety_stock: int) -> str:
        if current_stock <= 0:
            return 'critical'
        if current_stock < safety_stock:
            return 'high'
        return 'medium'

    async def send_low_stock_alert(self, sku: str, recommendation: Dict) -> Dict:
        """Build a low-stock alert for a SKU and hand it to the notifier.

        Args:
            sku: SKU
            recommendation: Reorder recommendation from a forecast

        Returns:
            The alert that was sent

        Raises:
            NoInventoryRecord: the SKU has no inventory snapshot
        """
        inventory = await asyncio.to_thread(self.gateway.get_inventory, sku)
        if inventory is None:
            raise NoInventoryRecord(sku)

        current_stock = inventory['qty_available']
        alert = {
            'sku': sku,
            'current_stock': current_stock,
            'suggested_qty': int(recommendation.get('suggested_qty', 0) or 0),
            'reasoning': recommendation.get('reasoning', ''),
            'urgency': self.alert_urgency(current_stock, inventory['safety_stock'] or 0),
            'created_at': self.clock()
        }

        await self.notifier.notify(alert)
        return alert
