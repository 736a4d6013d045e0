# demand_replenishment/services/predictor.py
"""
Demand predictor capability and the payloads it exchanges.

A predictor turns a ``PredictionRequest`` into a ``ForecastPayload`` and a
``PODraftRequest`` into a ``PODraftPayload``. Implementations are picked by
the composition root; ``FallbackPredictor`` wraps a primary predictor with a
single retry on a secondary one.
"""
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from demand_replenishment.exceptions import PredictionUnavailable
from demand_replenishment.utils.date_utils import convert_to_date

logger = logging.getLogger(__name__)


def finite_float(value: Any, field_name: str) -> float:
    """Convert to float, rejecting NaN and infinities."""
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite {field_name} {value!r}")
    return number


TRENDS = ('increasing', 'stable', 'decreasing')


@dataclass
class PredictionRequest:
    """Input for a demand forecast.

    ``history`` holds daily aggregates ``{'date', 'qty', 'price'}`` oldest
    first; ``product`` carries optional catalog attributes (name, category,
    brand, price).
    """
    sku: str
    horizon_days: int
    current_stock: int
    safety_stock: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)
    product: Dict[str, Any] = field(default_factory=dict)
    start_date: Optional[date] = None
    lead_time_days: int = 7


@dataclass
class ForecastPayload:
    predictions: List[Dict[str, Any]]
    summary: Dict[str, Any]
    explanation: str
    reorder_recommendation: Dict[str, Any]
    model_version: str
    risk_level: Optional[str] = None
    confidence_score: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any, model_version: str) -> 'ForecastPayload':
        """Validate a raw predictor response.

        Args:
            data: Decoded JSON object
            model_version: Identifier recorded with the forecast

        Returns:
            Normalized payload

        Raises:
            PredictionUnavailable: if the response violates the contract
        """
        if not isinstance(data, dict):
            raise PredictionUnavailable("Predictor response is not a JSON object")

        raw_predictions = data.get('predictions')
        if not isinstance(raw_predictions, list) or not raw_predictions:
            raise PredictionUnavailable("Predictor response has no predictions")

        predictions = []
        try:
            for item in raw_predictions:
                qty = finite_float(item['predicted_qty'], 'predicted_qty')
                if qty < 0:
                    raise ValueError(f"negative predicted_qty {qty}")
                lower = finite_float(item.get('confidence_lower', qty), 'confidence_lower')
                upper = finite_float(item.get('confidence_upper', qty), 'confidence_upper')
                predictions.append({
                    'date': convert_to_date(item['date']).isoformat(),
                    'predicted_qty': round(qty, 2),
                    'confidence_lower': round(min(lower, qty), 2),
                    'confidence_upper': round(max(upper, qty), 2)
                })
        except (KeyError, TypeError, ValueError) as e:
            raise PredictionUnavailable(f"Malformed prediction entry: {str(e)}")

        summary = data.get('summary') or {}
        recommendation = data.get('reorder_recommendation') or {}
        if not isinstance(summary, dict) or not isinstance(recommendation, dict):
            raise PredictionUnavailable("Predictor summary or recommendation is not an object")

        trend = summary.get('trend', 'stable')
        if trend not in TRENDS:
            trend = 'stable'

        try:
            suggested_qty = max(0, int(round(
                finite_float(recommendation.get('suggested_qty', 0) or 0, 'suggested_qty')
            )))
        except (TypeError, ValueError) as e:
            raise PredictionUnavailable(f"Malformed suggested_qty: {str(e)}")

        total = sum(p['predicted_qty'] for p in predictions)
        return cls(
            predictions=predictions,
            summary={
                'total_predicted': round(total, 2),
                'daily_average': round(total / len(predictions), 2),
                'trend': trend,
                'seasonality_detected': bool(summary.get('seasonality_detected', False))
            },
            explanation=str(data.get('explanation') or ''),
            reorder_recommendation={
                'should_reorder': bool(recommendation.get('should_reorder', False)),
                'suggested_qty': suggested_qty,
                'reasoning': str(recommendation.get('reasoning') or '')
            },
            model_version=model_version,
            risk_level=data.get('risk_level'),
            confidence_score=data.get('confidence_score')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'predictions': self.predictions,
            'summary': self.summary,
            'explanation': self.explanation,
            'reorder_recommendation': self.reorder_recommendation,
            'model_version': self.model_version,
            'risk_level': self.risk_level,
            'confidence_score': self.confidence_score
        }


@dataclass
class PODraftLine:
    sku: str
    product_name: str
    current_stock: int
    forecasted_demand: float
    safety_stock: int
    unit_price: float
    moq: int = 1
    location: Optional[str] = None


@dataclass
class PODraftRequest:
    supplier: Dict[str, Any]
    lines: List[PODraftLine]
    reason: str
    today: date


@dataclass
class PODraftPayload:
    recommended_quantities: List[Dict[str, Any]]
    total_order_value: float
    email_subject: str
    email_body: str
    reasoning: str
    expected_delivery_date: date

    @classmethod
    def from_dict(cls, data: Any, request: PODraftRequest) -> 'PODraftPayload':
        """Validate a raw drafting response against the request's SKUs.

        Quantities for SKUs that were not requested are dropped.

        Raises:
            PredictionUnavailable: if the response violates the contract
        """
        if not isinstance(data, dict):
            raise PredictionUnavailable("Draft response is not a JSON object")

        lines = {line.sku: line for line in request.lines}
        quantities = []
        try:
            for item in data.get('recommended_quantities') or []:
                sku = item['sku']
                if sku not in lines:
                    logger.warning(f"Ignoring drafted quantity for unrequested SKU {sku}")
                    continue
                qty = int(round(finite_float(item['qty'], 'qty')))
                if qty <= 0:
                    continue
                quantities.append({
                    'sku': sku,
                    'qty': qty,
                    'total': round(qty * lines[sku].unit_price, 2)
                })
        except (KeyError, TypeError, ValueError) as e:
            raise PredictionUnavailable(f"Malformed drafted quantity: {str(e)}")

        if not quantities:
            raise PredictionUnavailable("Draft response recommends no quantities")

        lead_time = int(request.supplier.get('lead_time_days') or 7)
        try:
            delivery = convert_to_date(data['expected_delivery_date'])
        except (KeyError, TypeError, ValueError):
            delivery = request.today + timedelta(days=lead_time)

        return cls(
            recommended_quantities=quantities,
            total_order_value=round(sum(q['total'] for q in quantities), 2),
            email_subject=str(data.get('email_subject') or f"Purchase Order - {request.supplier.get('name')}"),
            email_body=str(data.get('email_body') or ''),
            reasoning=str(data.get('reasoning') or request.reason),
            expected_delivery_date=delivery
        )


class DemandPredictor(ABC):
    """Capability interface implemented by every demand predictor."""

    name = 'predictor'

    @abstractmethod
    async def predict(self, request: PredictionRequest) -> ForecastPayload:
        """Forecast demand for one SKU over ``request.horizon_days``.

        Raises:
            PredictionUnavailable: if no usable forecast could be produced
        """

    @abstractmethod
    async def draft_purchase_order(self, request: PODraftRequest) -> PODraftPayload:
        """Recommend order quantities and a supplier message.

        Raises:
            PredictionUnavailable: if no usable draft could be produced
        """


class FallbackPredictor(DemandPredictor):
    """Run the primary predictor, retrying once on the fallback if it fails.

    A failure of the fallback itself surfaces as ``PredictionUnavailable``.
    """

    def __init__(self, primary: DemandPredictor, fallback: DemandPredictor):
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def _call(self, method: str, request):
        try:
            return await getattr(self.primary, method)(request)
        except Exception as e:
            logger.warning(
                f"{self.primary.name} {method} failed ({e.__class__.__name__}: {e}), "
                f"falling back to {self.fallback.name}"
            )

        try:
            return await getattr(self.fallback, method)(request)
        except PredictionUnavailable:
            raise
        except Exception as e:
            raise PredictionUnavailable(
                f"Fallback predictor {self.fallback.name} failed: {str(e)}"
            ) from e

    async def predict(self, request: PredictionRequest) -> ForecastPayload:
        return await self._call('predict', request)

    async def draft_purchase_order(self, request: PODraftRequest) -> PODraftPayload:
        return await self._call('draft_purchase_order', request)
