# demand_replenishment/services/heuristic_predictor.py
import logging
import math
import zlib
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional

import numpy as np

from demand_replenishment.core.demand_heuristics import (
    get_seasonal_context, calculate_dynamic_demand, calculate_risk_level,
    calculate_confidence, demand_change_reason
)
from demand_replenishment.services.predictor import (
    DemandPredictor, PredictionRequest, ForecastPayload, PODraftRequest, PODraftPayload
)
from demand_replenishment.utils.date_utils import day_range, utcnow
from demand_replenishment.utils.math_utils import classify_trend

logger = logging.getLogger(__name__)

MODEL_VERSION = 'heuristic-v1'


class HeuristicPredictor(DemandPredictor):
    """Local predictor built on seasonal, brand and price multipliers.

    Performs no I/O. With a fixed ``seed`` every call derives its random
    generator from (seed, sku, horizon), so identical requests always give
    identical payloads.
    """

    name = 'heuristic'

    def __init__(self, seed: Optional[int] = None, clock: Callable = utcnow):
        """Initialize the predictor.

        Args:
            seed: Seed for the bounded random variation (None for entropy)
            clock: Returns the current naive UTC datetime
        """
        self.seed = seed
        self.clock = clock

    def _rng_for(self, sku: str, horizon_days: int) -> np.random.Generator:
        if self.seed is None:
            return np.random.default_rng()
        return np.random.default_rng([self.seed, zlib.crc32(sku.encode('utf-8')), horizon_days])

    @staticmethod
    def _reference_price(request: PredictionRequest) -> float:
        price = (request.product or {}).get('price')
        if price:
            return float(price)

        prices = [float(h['price']) for h in request.history if h.get('price')]
        return float(np.mean(prices)) if prices else 0.0

    async def predict(self, request: PredictionRequest) -> ForecastPayload:
        return self.forecast(request)

    def forecast(self, request: PredictionRequest) -> ForecastPayload:
        """Synchronous form of ``predict``."""
        days = request.horizon_days
        start = request.start_date or self.clock().date()
        product = request.product or {}
        price = self._reference_price(request)
        seasonal = get_seasonal_context(start, days)

        total = calculate_dynamic_demand(
            request.current_stock,
            days,
            seasonal,
            self._rng_for(request.sku, days),
            category=product.get('category'),
            brand=product.get('brand'),
            price=price
        )
        risk = calculate_risk_level(request.current_stock, total, days)
        confidence = calculate_confidence(product.get('brand'), price, request.current_stock, days)
        reason = demand_change_reason(product.get('name'), days, seasonal)

        daily = total / days
        spread = 1.0 - confidence
        predictions = [
            {
                'date': day.isoformat(),
                'predicted_qty': round(daily, 2),
                'confidence_lower': round(daily * (1 - spread), 2),
                'confidence_upper': round(daily * (1 + spread), 2)
            }
            for day in day_range(start, days)
        ]

        festival = seasonal['festival']
        data = {
            'predictions': predictions,
            'summary': {
                'trend': classify_trend([h.get('qty', 0) for h in request.history]),
                'seasonality_detected': festival['impact'] > 1.0
            },
            'explanation': (
                f"Heuristic forecast of {total} units over {days} days "
                f"({risk} risk, confidence {confidence:.0%}). {reason}. "
                f"Season {seasonal['current_season']} moving to {seasonal['upcoming_season']}, "
                f"{festival['name']} impact x{festival['impact']}. {seasonal['weather_impact']}."
            ),
            'reorder_recommendation': self._reorder_recommendation(request, total, risk),
            'risk_level': risk,
            'confidence_score': confidence
        }
        return ForecastPayload.from_dict(data, MODEL_VERSION)

    @staticmethod
    def _reorder_recommendation(request: PredictionRequest, total: int, risk: str) -> Dict:
        projected = request.current_stock - total
        should_reorder = risk in ('critical', 'high') or projected < request.safety_stock

        if not should_reorder:
            return {
                'should_reorder': False,
                'suggested_qty': 0,
                'reasoning': (
                    f"Stock of {request.current_stock} covers the predicted {total} units "
                    f"with {projected} left above safety stock {request.safety_stock}"
                )
            }

        suggested = max(int(math.ceil(total + request.safety_stock - request.current_stock)), 1)
        return {
            'should_reorder': True,
            'suggested_qty': suggested,
            'reasoning': (
                f"Predicted demand of {total} units leaves {projected} against safety stock "
                f"{request.safety_stock} ({risk} risk); order {suggested} units"
            )
        }

    async def draft_purchase_order(self, request: PODraftRequest) -> PODraftPayload:
        supplier = request.supplier
        lead_time = int(supplier.get('lead_time_days') or 7)

        quantities: List[Dict] = []
        for line in request.lines:
            # Cover forecast demand through the supplier lead time plus safety stock
            coverage = line.forecasted_demand * (30 + lead_time) / 30
            need = int(math.ceil(coverage + line.safety_stock - line.current_stock))
            qty = max(need, line.moq or 1, 1)
            quantities.append({'sku': line.sku, 'qty': qty})

        delivery: date = request.today + timedelta(days=lead_time)
        lines_text = '\n'.join(
            f"- {line.product_name} ({line.sku}): {q['qty']} units @ {line.unit_price:.2f}"
            for line, q in zip(request.lines, quantities)
        )

        data = {
            'recommended_quantities': quantities,
            'email_subject': f"Purchase Order Request - {supplier.get('name')}",
            'email_body': (
                f"Dear {supplier.get('contact_person') or supplier.get('name')},\n\n"
                f"Please supply the following items:\n{lines_text}\n\n"
                f"Requested delivery by {delivery.isoformat()}. "
                f"Payment terms: {supplier.get('payment_terms') or 'as agreed'}.\n\n"
                f"Regards,\nPurchasing"
            ),
            'reasoning': (
                f"{request.reason}. Quantities cover forecast demand over "
                f"{30 + lead_time} days plus safety stock, rounded up to supplier MOQ."
            ),
            'expected_delivery_date': delivery.isoformat()
        }
        return PODraftPayload.from_dict(data, request)
