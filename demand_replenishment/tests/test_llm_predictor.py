"""
Unit tests for the LLM-backed predictor with a mocked chat client.
"""
import asyncio
import json
import unittest
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai

from demand_replenishment.exceptions import PredictionUnavailable, RateLimited
from demand_replenishment.services.llm_predictor import LLMPredictor
from demand_replenishment.services.predictor import (
    PODraftLine, PODraftRequest, PredictionRequest
)

API_REQUEST = httpx.Request('POST', 'https://llm.test/v1/chat/completions')


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def forecast_body(days=3):
    return json.dumps({
        'predictions': [
            {'date': f'2024-06-0{day + 1}', 'predicted_qty': 4, 'confidence_lower': 3, 'confidence_upper': 5}
            for day in range(days)
        ],
        'summary': {'total_predicted': 999, 'trend': 'increasing', 'seasonality_detected': True},
        'explanation': 'Steady growth',
        'reorder_recommendation': {'should_reorder': True, 'suggested_qty': 20, 'reasoning': 'Low cover'}
    })


class TestLLMPredictor(unittest.TestCase):
    """Response decoding and error mapping."""

    def setUp(self):
        self.client = MagicMock()
        self.client.chat.completions.create = AsyncMock()
        self.predictor = LLMPredictor('demand-model', client=self.client, timeout_seconds=5)
        self.request = PredictionRequest(
            sku='SKU-1', horizon_days=3, current_stock=8, safety_stock=4,
            history=[{'date': '2024-05-30', 'qty': 3, 'price': 9.5}],
            start_date=date(2024, 6, 1)
        )

    def test_successful_forecast(self):
        self.client.chat.completions.create.return_value = completion(forecast_body())

        payload = asyncio.run(self.predictor.predict(self.request))

        self.assertEqual(payload.model_version, 'demand-model')
        self.assertEqual(len(payload.predictions), 3)
        self.assertEqual(payload.summary['total_predicted'], 12)
        self.assertEqual(payload.summary['trend'], 'increasing')
        self.assertTrue(payload.reorder_recommendation['should_reorder'])

        kwargs = self.client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs['model'], 'demand-model')
        self.assertEqual(kwargs['response_format'], {'type': 'json_object'})
        self.assertIn('SKU-1', kwargs['messages'][1]['content'])
        self.assertIn('2024-05-30: 3 units', kwargs['messages'][1]['content'])

    def test_short_forecast_is_accepted_with_warning(self):
        self.client.chat.completions.create.return_value = completion(forecast_body(days=2))

        with self.assertLogs('demand_replenishment.services.llm_predictor', level='WARNING'):
            payload = asyncio.run(self.predictor.predict(self.request))
        self.assertEqual(len(payload.predictions), 2)

    def test_malformed_json(self):
        self.client.chat.completions.create.return_value = completion('not json {')
        with self.assertRaises(PredictionUnavailable):
            asyncio.run(self.predictor.predict(self.request))

    def test_contract_violation(self):
        self.client.chat.completions.create.return_value = completion(json.dumps({'predictions': []}))
        with self.assertRaises(PredictionUnavailable):
            asyncio.run(self.predictor.predict(self.request))

    def test_timeout(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        self.client.chat.completions.create = slow
        predictor = LLMPredictor('demand-model', client=self.client, timeout_seconds=0.01)

        with self.assertRaises(PredictionUnavailable) as ctx:
            asyncio.run(predictor.predict(self.request))
        self.assertNotIsInstance(ctx.exception, RateLimited)
        self.assertIn('timed out', ctx.exception.message)

    def test_rate_limit_carries_retry_after(self):
        response = httpx.Response(429, headers={'retry-after': '12'}, request=API_REQUEST)
        self.client.chat.completions.create.side_effect = openai.RateLimitError(
            'Too many requests', response=response, body=None
        )

        with self.assertRaises(RateLimited) as ctx:
            asyncio.run(self.predictor.predict(self.request))
        self.assertEqual(ctx.exception.retry_after, 12.0)

    def test_provider_error(self):
        self.client.chat.completions.create.side_effect = openai.APIConnectionError(request=API_REQUEST)
        with self.assertRaises(PredictionUnavailable):
            asyncio.run(self.predictor.predict(self.request))

    def test_draft_purchase_order(self):
        self.client.chat.completions.create.return_value = completion(json.dumps({
            'recommended_quantities': [
                {'sku': 'SKU-1', 'qty': 40, 'total': 1},
                {'sku': 'OTHER', 'qty': 10, 'total': 1}
            ],
            'email_subject': 'PO for Acme',
            'email_body': 'Hello',
            'reasoning': 'Cover demand',
            'expected_delivery_date': '2024-06-09'
        }))
        request = PODraftRequest(
            supplier={'name': 'Acme', 'lead_time_days': 5},
            lines=[PODraftLine('SKU-1', 'Widget', 10, 30.0, 5, 2.0, moq=10)],
            reason='Low stock',
            today=date(2024, 6, 1)
        )

        payload = asyncio.run(self.predictor.draft_purchase_order(request))

        self.assertEqual(payload.recommended_quantities, [{'sku': 'SKU-1', 'qty': 40, 'total': 80.0}])
        self.assertEqual(payload.total_order_value, 80.0)
        self.assertEqual(payload.expected_delivery_date, date(2024, 6, 9))
        prompt = self.client.chat.completions.create.call_args.kwargs['messages'][1]['content']
        self.assertIn('Minimum Order Quantity: 10', prompt)


if __name__ == '__main__':
    unittest.main()
