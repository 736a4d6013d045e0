from .demand_heuristics import (
    VALID_HORIZONS, get_horizon_context, get_seasonal_context, base_demand,
    category_multiplier, brand_multiplier, price_elasticity, seasonal_multiplier,
    random_variation, calculate_dynamic_demand, calculate_risk_level,
    calculate_confidence, demand_change_reason
)
from .reorder import classify_reorder, recommend_reorders

__all__ = [
    'VALID_HORIZONS',
    'get_horizon_context',
    'get_seasonal_context',
    'base_demand',
    'category_multiplier',
    'brand_multiplier',
    'price_elasticity',
    'seasonal_multiplier',
    'random_variation',
    'calculate_dynamic_demand',
    'calculate_risk_level',
    'calculate_confidence',
    'demand_change_reason',
    'classify_reorder',
    'recommend_reorders'
]
