# demand_replenishment/core/demand_heuristics.py
"""
Deterministic demand factors used by the heuristic predictor.

Every function here is pure; the only source of variation is the numpy
``Generator`` passed to ``random_variation``.
"""
import math
from datetime import date, timedelta
from typing import Dict, Optional

import numpy as np

from demand_replenishment.utils.date_utils import get_season

VALID_HORIZONS = (30, 60, 90)

HORIZON_CONTEXT = {
    30: {
        'focus': 'immediate_trends',
        'planning_type': 'tactical',
        'seasonal_weight': 0.7,
        'trend_weight': 0.9,
        'festival_weight': 1.0
    },
    60: {
        'focus': 'seasonal_transitions',
        'planning_type': 'strategic',
        'seasonal_weight': 1.0,
        'trend_weight': 0.8,
        'festival_weight': 0.8
    },
    90: {
        'focus': 'long_term_planning',
        'planning_type': 'strategic',
        'seasonal_weight': 1.2,
        'trend_weight': 0.7,
        'festival_weight': 0.6
    }
}

FESTIVALS = {
    1: {'name': 'New Year', 'impact': 1.2, 'type': 'electronics_fashion'},
    3: {'name': 'Holi', 'impact': 1.3, 'type': 'fashion_home'},
    8: {'name': 'Raksha Bandhan', 'impact': 1.4, 'type': 'electronics_fashion'},
    9: {'name': 'Ganesh Chaturthi', 'impact': 1.2, 'type': 'home_electronics'},
    10: {'name': 'Diwali', 'impact': 1.8, 'type': 'all_categories'},
    11: {'name': 'Post-Diwali', 'impact': 1.3, 'type': 'electronics_home'},
    12: {'name': 'Christmas', 'impact': 1.4, 'type': 'electronics_fashion'}
}

NO_FESTIVAL = {'name': 'Regular', 'impact': 1.0, 'type': 'normal'}

# (short, medium, long) horizon multipliers
BRAND_STRENGTH = {
    'apple': (1.2, 1.3, 1.4),
    'samsung': (1.1, 1.2, 1.3),
    'sony': (1.05, 1.1, 1.15),
    'nike': (1.1, 1.2, 1.25),
    'adidas': (1.05, 1.15, 1.2),
    'lg': (1.0, 1.1, 1.15)
}

PREMIUM_BRANDS = ('apple', 'samsung', 'sony')

# Price band lower bounds, highest first: (>100k, >50k, >10k, rest)
PRICE_BANDS = (100000, 50000, 10000)
PRICE_ELASTICITY = {
    30: (0.9, 1.0, 1.1, 1.2),
    60: (1.1, 1.2, 1.15, 1.1),
    90: (1.3, 1.25, 1.2, 1.0)
}

# stock / demand ratio upper bounds per risk level, most severe first
RISK_THRESHOLDS = {
    30: (('critical', 0.3), ('high', 0.7), ('medium', 1.2)),
    60: (('high', 0.5), ('medium', 1.0)),
    90: (('medium', 0.8),)
}

# (share of current stock, floor)
BASE_DEMAND = {
    30: (0.15, 2),
    60: (0.25, 3),
    90: (0.35, 5)
}


def horizon_bucket(days: int) -> int:
    """Snap an arbitrary horizon to the 30/60/90 bucket that governs it."""
    if days <= 30:
        return 30
    if days <= 60:
        return 60
    return 90


def get_horizon_context(days: int) -> Dict:
    return dict(HORIZON_CONTEXT[horizon_bucket(days)])


def get_weather_impact(current: str, upcoming: str, days: int) -> str:
    if days <= 30:
        if current == 'winter':
            return 'Cold weather driving indoor electronics demand'
        if current == 'summer':
            return 'Hot weather increasing cooling product demand'
        if current == 'monsoon':
            return 'Rainy season boosting online shopping preference'
        return 'Pleasant weather maintaining normal shopping patterns'

    if days <= 60:
        if upcoming == 'summer':
            return 'Preparing for summer heat, cooling products surge expected'
        if upcoming == 'monsoon':
            return 'Monsoon preparation, waterproof and indoor products'
        if upcoming == 'winter':
            return 'Winter preparation, warm clothing and electronics'
        return 'Seasonal transition period with mixed demand patterns'

    return 'Long-term weather patterns suggest seasonal inventory diversification'


def get_seasonal_context(current_date: date, days: int) -> Dict:
    """Describe the season now, the season at the horizon end and its festival.

    Args:
        current_date: First day of the forecast
        days: Horizon in days

    Returns:
        Dictionary with current_season, upcoming_season, festival and
        weather_impact
    """
    future_date = current_date + timedelta(days=days)
    current_season = get_season(current_date.month)
    upcoming_season = get_season(future_date.month)

    return {
        'current_season': current_season,
        'upcoming_season': upcoming_season,
        'festival': dict(FESTIVALS.get(future_date.month, NO_FESTIVAL)),
        'weather_impact': get_weather_impact(current_season, upcoming_season, days)
    }


def base_demand(current_stock: int, days: int) -> int:
    """Stock-proportional base demand with a per-horizon floor."""
    share, floor = BASE_DEMAND[horizon_bucket(days)]
    return max(floor, int(math.floor(max(current_stock, 0) * share)))


def category_multiplier(category: Optional[str], days: int, seasonal: Dict) -> float:
    category = (category or 'general').lower()
    bucket = horizon_bucket(days)

    if bucket == 30:
        winter = seasonal['current_season'] == 'winter'
        multipliers = {
            'electronics': 1.4 if winter else 1.1,
            'fashion': 1.3 if winter else 1.0,
            'home': 1.1,
            'sports': 0.9 if winter else 1.2
        }
    elif bucket == 60:
        upcoming = seasonal['upcoming_season']
        multipliers = {
            'electronics': 1.5 if upcoming == 'summer' else 1.2,
            'fashion': 1.4 if upcoming == 'monsoon' else 1.1,
            'home': 1.2,
            'sports': 1.4 if upcoming == 'summer' else 1.0
        }
    else:
        multipliers = {
            'electronics': 1.3,
            'fashion': 1.2,
            'home': 1.25,
            'sports': 1.15
        }

    return multipliers.get(category, 1.0)


def brand_multiplier(brand: Optional[str], days: int) -> float:
    short, medium, long_ = BRAND_STRENGTH.get((brand or '').lower(), (1.0, 1.0, 1.0))
    if days <= 30:
        return short
    if days <= 60:
        return medium
    return long_


def price_elasticity(price: float, days: int) -> float:
    """Cheaper items move faster short-term, premium items dominate long-term."""
    factors = PRICE_ELASTICITY[horizon_bucket(days)]
    for index, lower_bound in enumerate(PRICE_BANDS):
        if price > lower_bound:
            return factors[index]
    return factors[-1]


def seasonal_multiplier(seasonal: Dict, days: int) -> float:
    return seasonal['festival']['impact'] * HORIZON_CONTEXT[horizon_bucket(days)]['seasonal_weight']


def random_variation(days: int, rng: np.random.Generator) -> float:
    """Bounded noise, wider for longer horizons.

    30 days: roughly +/-10% around the base band, 60: +/-20%, 90: +/-30%.
    """
    base = 0.8 + rng.random() * 0.4
    bucket = horizon_bucket(days)

    if bucket == 30:
        return base * (0.9 + rng.random() * 0.2)
    if bucket == 60:
        return base * (0.8 + rng.random() * 0.4)
    return base * (0.7 + rng.random() * 0.6)


def calculate_dynamic_demand(
    current_stock: int,
    days: int,
    seasonal: Dict,
    rng: np.random.Generator,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    price: float = 0.0
) -> int:
    """Predicted total units over the horizon (at least 1)."""
    demand = (
        base_demand(current_stock, days)
        * category_multiplier(category, days, seasonal)
        * brand_multiplier(brand, days)
        * price_elasticity(price, days)
        * seasonal_multiplier(seasonal, days)
        * (days / 30)
        * random_variation(days, rng)
    )
    return max(1, int(round(demand)))


def calculate_risk_level(current_stock: float, predicted_demand: float, days: int) -> str:
    """Classify stockout risk from the stock-to-demand ratio.

    Thresholds are tighter for short horizons: at 30 days a ratio below 0.3
    is critical, below 0.7 high and below 1.2 medium.
    """
    ratio = current_stock / max(predicted_demand, 1)

    for level, upper_bound in RISK_THRESHOLDS[horizon_bucket(days)]:
        if ratio < upper_bound:
            return level
    return 'low'


def calculate_confidence(brand: Optional[str], price: float, current_stock: int, days: int) -> float:
    """Per-item confidence score in [0.75, 0.95]."""
    bucket = horizon_bucket(days)
    confidence = 0.75

    if (brand or '').lower() in PREMIUM_BRANDS:
        confidence += {30: 0.1, 60: 0.15, 90: 0.2}[bucket]

    if price > 50000:
        confidence += {30: 0.05, 60: 0.1, 90: 0.15}[bucket]

    if current_stock > 20:
        confidence += 0.05

    return round(min(0.95, confidence), 4)


def demand_change_reason(product_name: Optional[str], days: int, seasonal: Dict) -> str:
    name = (product_name or '').lower()
    bucket = horizon_bucket(days)

    if bucket == 30:
        if 'phone' in name:
            return f"Immediate demand driven by the current {seasonal['current_season']} season and ongoing promotions"
        if 'laptop' in name:
            return 'Short-term demand from corporate purchases and student requirements'
        return 'Current market conditions and immediate consumer needs driving demand'

    if bucket == 60:
        if 'fitness' in name or 'sports' in name:
            return 'Seasonal fitness trends driving demand'
        return (
            f"Seasonal transition to {seasonal['upcoming_season']} and "
            f"{seasonal['festival']['name']} festival impact"
        )

    if 'premium' in name:
        return 'Long-term premium brand growth and market expansion'
    return 'Long-term market evolution and changing consumer preferences'
