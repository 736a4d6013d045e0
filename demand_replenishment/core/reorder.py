# demand_replenishment/core/reorder.py
import math
from typing import Dict, Iterable, List, Optional

DEFAULT_REORDER_LEVEL = 15
HIGH_URGENCY_STOCK = 5


def classify_reorder(
    current_stock: int,
    reorder_level: Optional[int] = None,
    high_urgency_stock: int = HIGH_URGENCY_STOCK
) -> Optional[Dict]:
    """Classify one SKU's stock into a reorder recommendation.

    Args:
        current_stock: Units available
        reorder_level: Reorder threshold (defaults to 15)
        high_urgency_stock: Stock at or below which urgency is high

    Returns:
        Dictionary with urgency, recommended_qty and
        estimated_days_until_stockout, or None if no reorder is needed
    """
    reorder_level = reorder_level or DEFAULT_REORDER_LEVEL
    stock = max(int(current_stock), 0)

    if stock <= high_urgency_stock:
        return {
            'urgency': 'high',
            'recommended_qty': max(30, reorder_level),
            'estimated_days_until_stockout': max(1, math.floor(stock / 2))
        }

    if stock <= reorder_level:
        return {
            'urgency': 'medium',
            'recommended_qty': max(20, reorder_level),
            'estimated_days_until_stockout': max(5, math.floor(stock / 3))
        }

    return None


def recommend_reorders(
    snapshots: Iterable[Dict],
    default_reorder_level: int = DEFAULT_REORDER_LEVEL,
    high_urgency_stock: int = HIGH_URGENCY_STOCK
) -> List[Dict]:
    """Derive low-stock recommendations from inventory snapshots.

    Works from stock levels alone, so it stays usable when forecasting is
    degraded. Inactive SKUs are skipped.

    Args:
        snapshots: Dicts with sku, qty_available and optionally
            reorder_point, name and is_active
        default_reorder_level: Used when a snapshot has no reorder point
        high_urgency_stock: Stock at or below which urgency is high

    Returns:
        Recommendations, high urgency first, then ascending current stock
    """
    recommendations = []

    for snapshot in snapshots:
        if not snapshot.get('is_active', True):
            continue

        stock = snapshot.get('qty_available', 0) or 0
        reorder_level = snapshot.get('reorder_point') or default_reorder_level
        result = classify_reorder(stock, reorder_level, high_urgency_stock)
        if result is None:
            continue

        recommendations.append({
            'sku': snapshot['sku'],
            'name': snapshot.get('name', snapshot['sku']),
            'current_stock': stock,
            'reorder_level': reorder_level,
            'recommended_qty': result['recommended_qty'],
            'urgency': result['urgency'],
            'estimated_days_until_stockout': result['estimated_days_until_stockout'],
            'reasoning': (
                f"Stock is low at {stock} units (reorder level {reorder_level}). "
                f"Recommend ordering {result['recommended_qty']} units."
            )
        })

    recommendations.sort(key=lambda r: (r['urgency'] != 'high', r['current_stock']))
    return recommendations
