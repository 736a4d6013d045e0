from .date_utils import utcnow, convert_to_date, next_daily_fire_time, get_season
from .math_utils import calculate_mape, mape_confidence, summarize_predictions, classify_trend

__all__ = [
    'utcnow',
    'convert_to_date',
    'next_daily_fire_time',
    'get_season',
    'calculate_mape',
    'mape_confidence',
    'summarize_predictions',
    'classify_trend'
]
