# demand_replenishment/services/forecast_service.py
import asyncio
import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from demand_replenishment.core.demand_heuristics import VALID_HORIZONS
from demand_replenishment.db.gateway import PersistenceGateway
from demand_replenishment.exceptions import (
    ForecastNotFound, NoHistoricalData, NoInventoryRecord, ReplenishmentError, ValidationError
)
from demand_replenishment.services.predictor import DemandPredictor, PredictionRequest
from demand_replenishment.utils.date_utils import convert_to_date, is_within_hours, utcnow
from demand_replenishment.utils.math_utils import (
    calculate_mape, mape_confidence, summarize_predictions
)

logger = logging.getLogger(__name__)


class ForecastService:
    """Service for generating, caching and scoring demand forecasts.

    Freshness is checked against stored forecasts, so the cache is shared by
    every process using the same database. Two concurrent refreshes of the
    same (sku, horizon) may both compute and both persist; the result is
    extra history, never a corrupted record.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        predictor: DemandPredictor,
        cache_hours: int = 24,
        history_days: int = 90,
        clock: Callable = utcnow
    ):
        """Initialize the forecast service.

        Args:
            gateway: Persistence gateway
            predictor: Demand predictor (usually a fallback composition)
            cache_hours: Age below which a stored forecast is reused
            history_days: Sales lookback window passed to the predictor
            clock: Returns the current naive UTC datetime
        """
        self.gateway = gateway
        self.predictor = predictor
        self.cache_hours = cache_hours
        self.history_days = history_days
        self.clock = clock

    @staticmethod
    def validate_horizon(horizon_days: int) -> int:
        try:
            horizon_days = int(horizon_days)
        except (TypeError, ValueError):
            raise ValidationError(f"Horizon must be one of {VALID_HORIZONS}, got {horizon_days!r}")

        if horizon_days not in VALID_HORIZONS:
            raise ValidationError(
                f"Horizon must be one of {VALID_HORIZONS}, got {horizon_days}",
                details={'horizon_days': horizon_days}
            )
        return horizon_days

    @staticmethod
    def _daily_history(sales: List[Dict]) -> List[Dict]:
        """Aggregate sales records into per-day quantity and average price."""
        days: Dict[str, Dict] = {}
        for sale in sales:
            day = sale['sold_at'].date().isoformat()
            entry = days.setdefault(day, {'date': day, 'qty': 0, 'revenue': 0.0})
            entry['qty'] += sale['quantity']
            entry['revenue'] += sale['quantity'] * float(sale.get('unit_price') or 0)

        history = []
        for entry in days.values():
            price = entry['revenue'] / entry['qty'] if entry['qty'] else 0.0
            history.append({'date': entry['date'], 'qty': entry['qty'], 'price': round(price, 2)})
        return history

    def _fresh_cached(self, sku: str, horizon_days: int, now) -> Optional[Dict]:
        cached = self.gateway.get_latest_forecast(
            sku, horizon_days, generated_since=now - timedelta(hours=self.cache_hours)
        )
        if cached and is_within_hours(cached['generated_at'], now, self.cache_hours):
            return cached
        return None

    def _build_request(self, sku: str, horizon_days: int, now) -> PredictionRequest:
        sales = self.gateway.get_sales_history(sku, now - timedelta(days=self.history_days))
        if not sales:
            raise NoHistoricalData(sku)

        inventory = self.gateway.get_inventory(sku)
        if inventory is None:
            raise NoInventoryRecord(sku)

        return PredictionRequest(
            sku=sku,
            horizon_days=horizon_days,
            current_stock=inventory['qty_available'],
            safety_stock=inventory['safety_stock'] or 0,
            history=self._daily_history(sales),
            product=self.gateway.get_product(sku) or {},
            start_date=now.date(),
            lead_time_days=inventory['lead_time_days'] or 7
        )

    async def generate_forecast(self, sku: str, horizon_days: int = 30,
                                force_refresh: bool = False) -> Dict:
        """Get a fresh forecast for a SKU, computing one if needed.

        Args:
            sku: SKU to forecast
            horizon_days: 30, 60 or 90
            force_refresh: Skip the freshness check and always compute

        Returns:
            Stored forecast record with a ``cached`` flag

        Raises:
            NoHistoricalData: no sales in the lookback window
            NoInventoryRecord: the SKU has no inventory snapshot
            PredictionUnavailable: the predictor could not produce a forecast
        """
        horizon_days = self.validate_horizon(horizon_days)
        now = self.clock()

        if not force_refresh:
            cached = await asyncio.to_thread(self._fresh_cached, sku, horizon_days, now)
            if cached is not None:
                logger.info(f"Using cached {horizon_days}-day forecast {cached['id']} for {sku}")
                return dict(cached, cached=True)

        request = await asyncio.to_thread(self._build_request, sku, horizon_days, now)
        payload = await self.predictor.predict(request)

        summary = dict(payload.summary)
        if payload.risk_level is not None:
            summary['risk_level'] = payload.risk_level
        if payload.confidence_score is not None:
            summary['confidence_score'] = payload.confidence_score

        record = await asyncio.to_thread(
            self.gateway.insert_forecast,
            sku=sku,
            horizon_days=horizon_days,
            predictions=payload.predictions,
            summary=summary,
            explanation=payload.explanation,
            model_version=payload.model_version,
            reorder_recommendation=payload.reorder_recommendation,
            generated_at=now
        )
        logger.info(
            f"Generated {horizon_days}-day forecast {record['id']} for {sku} "
            f"using {payload.model_version}: {summary['total_predicted']} units"
        )
        return dict(record, cached=False)

    def get_latest_forecast(self, sku: str, horizon_days: int = 30) -> Optional[Dict]:
        """Get the most recent forecast with summary figures recomputed.

        Total, daily average and peak day are derived from the stored
        predictions rather than the stored summary.
        """
        horizon_days = self.validate_horizon(horizon_days)
        forecast = self.gateway.get_latest_forecast(sku, horizon_days)
        if forecast is None:
            return None

        forecast = dict(forecast)
        forecast['summary'] = {
            **(forecast.get('summary') or {}),
            **summarize_predictions(forecast.get('predictions') or [])
        }
        return forecast

    def get_forecast_history(self, sku: str, limit: int = 10) -> List[Dict]:
        """Get the most recent forecasts for a SKU, newest first."""
        return [
            {
                'id': f['id'],
                'generated_at': f['generated_at'],
                'horizon_days': f['horizon_days'],
                'model_version': f['model_version'],
                'summary': f['summary']
            }
            for f in self.gateway.list_forecasts(sku, limit)
        ]

    def calculate_accuracy(self, forecast_id: int) -> Dict:
        """Score a forecast against realized daily sales with MAPE.

        Days without actual sales are skipped.

        Returns:
            Dictionary with forecast_id, sku, mape (None if no comparable
            days), data_points and confidence
        """
        forecast = self.gateway.get_forecast(forecast_id)
        if forecast is None:
            raise ForecastNotFound(f"Forecast not found: {forecast_id}")

        predictions = forecast.get('predictions') or []
        if not predictions:
            return {
                'forecast_id': forecast_id,
                'sku': forecast['sku'],
                'mape': None,
                'data_points': 0,
                'confidence': mape_confidence(None)
            }

        dates = [convert_to_date(p['date']) for p in predictions]
        actuals = self.gateway.get_daily_sales(forecast['sku'], min(dates), max(dates))

        pairs = [
            (float(p['predicted_qty']), float(actuals[day]))
            for p, day in zip(predictions, dates)
            if day in actuals
        ]
        mape, data_points = calculate_mape(pairs)

        return {
            'forecast_id': forecast_id,
            'sku': forecast['sku'],
            'mape': round(mape, 2) if mape is not None else None,
            'data_points': data_points,
            'confidence': mape_confidence(mape)
        }

    async def batch_generate_forecasts(self, skus: List[str], horizon_days: int = 30,
                                       force_refresh: bool = False) -> List[Dict]:
        """Generate forecasts for several SKUs independently.

        A failing SKU is reported as ``{'sku', 'success': False, 'error'}``
        and does not stop the remaining SKUs.
        """
        horizon_days = self.validate_horizon(horizon_days)
        results = []

        for sku in skus:
            try:
                forecast = await self.generate_forecast(sku, horizon_days, force_refresh)
                results.append({'sku': sku, 'success': True, 'forecast': forecast})
            except ReplenishmentError as e:
                logger.warning(f"Forecast failed for {sku}: {str(e)}")
                results.append({
                    'sku': sku,
                    'success': False,
                    'error': e.message,
                    'error_type': e.__class__.__name__
                })
            except Exception as e:
                logger.error(f"Unexpected error forecasting {sku}: {str(e)}", exc_info=True)
                results.append({
                    'sku': sku,
                    'success': False,
                    'error': str(e),
                    'error_type': e.__class__.__name__
                })

        succeeded = sum(1 for r in results if r['success'])
        logger.info(f"Batch forecast finished: {succeeded}/{len(results)} SKUs succeeded")
        return results
