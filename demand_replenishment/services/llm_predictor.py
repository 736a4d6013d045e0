# demand_replenishment/services/llm_predictor.py
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import openai

from demand_replenishment.exceptions import PredictionUnavailable, RateLimited
from demand_replenishment.services.predictor import (
    DemandPredictor, PredictionRequest, ForecastPayload, PODraftRequest, PODraftPayload
)
from demand_replenishment.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

FORECAST_SYSTEM_PROMPT = (
    "You are a precise inventory forecasting assistant. Always respond with valid JSON only. "
    "Use statistical reasoning and consider trends, seasonality, and recent velocity changes."
)

PO_SYSTEM_PROMPT = (
    "You are an expert procurement assistant. Calculate optimal order quantities considering "
    "lead times and forecast accuracy. Be conservative to avoid overstocking. "
    "Respond with valid JSON only."
)

FORECAST_FORMAT = """{
  "predictions": [
    {"date": "YYYY-MM-DD", "predicted_qty": <number>, "confidence_lower": <number>, "confidence_upper": <number>}
  ],
  "summary": {
    "total_predicted": <number>,
    "daily_average": <number>,
    "trend": "increasing|stable|decreasing",
    "seasonality_detected": <boolean>
  },
  "explanation": "<detailed reasoning>",
  "reorder_recommendation": {
    "should_reorder": <boolean>,
    "suggested_qty": <number>,
    "reasoning": "<why this quantity>"
  }
}"""

PO_FORMAT = """{
  "recommended_quantities": [
    {"sku": "<sku>", "qty": <number>, "total": <number>}
  ],
  "total_order_value": <number>,
  "email_subject": "<subject>",
  "email_body": "<formatted email body>",
  "reasoning": "<detailed explanation of qty calculations>",
  "expected_delivery_date": "YYYY-MM-DD"
}"""


class LLMPredictor(DemandPredictor):
    """Predictor backed by an OpenAI-compatible chat completion endpoint.

    Any failure (timeout, provider error, malformed JSON or a response that
    breaks the payload contract) is raised as ``PredictionUnavailable``; HTTP
    429 responses are raised as ``RateLimited``.
    """

    name = 'llm'

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 30.0,
        forecast_temperature: float = 0.3,
        po_temperature: float = 0.4,
        client: Any = None
    ):
        """Initialize the predictor.

        Args:
            model: Chat model name
            api_key: Provider API key
            base_url: Endpoint for OpenAI-compatible providers
            timeout_seconds: Hard limit for a single completion call
            forecast_temperature: Sampling temperature for forecasts
            po_temperature: Sampling temperature for PO drafts
            client: Pre-built ``openai.AsyncOpenAI`` compatible client
        """
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.forecast_temperature = forecast_temperature
        self.po_temperature = po_temperature

        if client is None:
            client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or None,
                timeout=timeout_seconds,
                max_retries=0
            )
        self.client = client

    async def _complete_json(self, system_prompt: str, prompt: str, temperature: float) -> Dict:
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {'role': 'system', 'content': system_prompt},
                        {'role': 'user', 'content': prompt}
                    ],
                    response_format={'type': 'json_object'},
                    temperature=temperature
                ),
                timeout=self.timeout_seconds
            )
        except (asyncio.TimeoutError, openai.APITimeoutError):
            raise PredictionUnavailable(
                f"Predictor call timed out after {self.timeout_seconds}s",
                details={'model': self.model}
            )
        except openai.RateLimitError as e:
            retry_after = None
            headers = getattr(getattr(e, 'response', None), 'headers', None) or {}
            if headers.get('retry-after'):
                try:
                    retry_after = float(headers['retry-after'])
                except ValueError:
                    retry_after = None
            raise RateLimited(f"Predictor rate limited: {str(e)}", retry_after=retry_after)
        except openai.OpenAIError as e:
            raise PredictionUnavailable(f"Predictor provider error: {str(e)}")

        try:
            content = response.choices[0].message.content
            return json.loads(content)
        except (AttributeError, IndexError, TypeError, json.JSONDecodeError) as e:
            raise PredictionUnavailable(f"Predictor returned malformed JSON: {str(e)}")

    @staticmethod
    def _format_history(history: List[Dict]) -> str:
        if not history:
            return "(no sales recorded)"
        return '\n'.join(
            f"{h['date']}: {h['qty']} units sold @ {float(h.get('price') or 0):.2f}"
            for h in history
        )

    def build_forecast_prompt(self, request: PredictionRequest) -> str:
        start = request.start_date or utcnow().date()
        product = request.product or {}
        descriptor = ', '.join(
            f"{key}: {product[key]}" for key in ('name', 'category', 'brand', 'price') if product.get(key)
        )

        return (
            f"You are an expert inventory analyst. Analyze the following sales data and generate a "
            f"{request.horizon_days}-day demand forecast starting {start.isoformat()}.\n\n"
            f"Product SKU: {request.sku}\n"
            + (f"Product: {descriptor}\n" if descriptor else '')
            + f"Current Inventory: {request.current_stock} units\n"
            f"Safety Stock Requirement: {request.safety_stock} units\n"
            f"Supplier Lead Time: {request.lead_time_days} days\n\n"
            f"Historical Sales Data (last {len(request.history)} days with sales):\n"
            f"{self._format_history(request.history)}\n\n"
            f"Generate a forecast with:\n"
            f"1. Daily predicted quantities for each of the next {request.horizon_days} days\n"
            f"2. Confidence intervals (lower/upper bounds)\n"
            f"3. Plain-English explanation of demand trends\n"
            f"4. Reorder recommendation with reasoning\n\n"
            f"Return ONLY valid JSON in this exact format:\n{FORECAST_FORMAT}"
        )

    def build_po_prompt(self, request: PODraftRequest) -> str:
        supplier = request.supplier
        items = '\n'.join(
            f"- {line.product_name} (SKU: {line.sku})\n"
            f"  - Current Stock: {line.current_stock} units\n"
            f"  - 30-Day Forecast: {line.forecasted_demand} units\n"
            f"  - Safety Stock: {line.safety_stock} units\n"
            f"  - Unit Price: {line.unit_price:.2f}\n"
            f"  - Minimum Order Quantity: {line.moq}"
            for line in request.lines
        )

        return (
            f"You are a procurement assistant. Generate a professional purchase order draft.\n\n"
            f"Supplier: {supplier.get('name')} ({supplier.get('email') or 'no email'})\n"
            f"Lead Time: {supplier.get('lead_time_days')} days\n"
            f"Today: {request.today.isoformat()}\n\n"
            f"Items to Order:\n{items}\n\n"
            f"Reason for Order: {request.reason}\n\n"
            f"Generate:\n"
            f"1. Recommended order quantities for each item (consider lead time, forecast, safety stock, MOQ)\n"
            f"2. Professional email subject line\n"
            f"3. Complete email body in business format\n"
            f"4. Detailed reasoning for why these quantities are recommended\n\n"
            f"Return ONLY valid JSON:\n{PO_FORMAT}"
        )

    async def predict(self, request: PredictionRequest) -> ForecastPayload:
        data = await self._complete_json(
            FORECAST_SYSTEM_PROMPT, self.build_forecast_prompt(request), self.forecast_temperature
        )
        payload = ForecastPayload.from_dict(data, self.model)

        if len(payload.predictions) != request.horizon_days:
            logger.warning(
                f"Predictor returned {len(payload.predictions)} daily predictions for "
                f"{request.sku}, expected {request.horizon_days}"
            )
        return payload

    async def draft_purchase_order(self, request: PODraftRequest) -> PODraftPayload:
        data = await self._complete_json(
            PO_SYSTEM_PROMPT, self.build_po_prompt(request), self.po_temperature
        )
        return PODraftPayload.from_dict(data, request)
