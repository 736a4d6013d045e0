# demand_replenishment/utils/math_utils.py
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from demand_replenishment.exceptions import ValidationError


def calculate_mape(pairs: Sequence[Tuple[float, float]]) -> Tuple[Optional[float], int]:
    """Calculate Mean Absolute Percentage Error.

    Pairs whose actual value is zero are skipped because their percentage
    error is undefined.

    Args:
        pairs: Sequence of (predicted, actual) values

    Returns:
        Tuple of (MAPE as a percentage or None, number of comparable points)
    """
    comparable = [(p, a) for p, a in pairs if a]
    if not comparable:
        return None, 0

    predicted = np.array([p for p, _ in comparable], dtype=float)
    actual = np.array([a for _, a in comparable], dtype=float)

    errors = np.abs(actual - predicted) / actual
    return float(np.mean(errors) * 100.0), len(comparable)


def mape_confidence(mape: Optional[float]) -> str:
    """Bucket a MAPE value into high/medium/low confidence."""
    if mape is None:
        return 'unknown'
    if mape < 20:
        return 'high'
    if mape < 35:
        return 'medium'
    return 'low'


def summarize_predictions(predictions: List[Dict]) -> Dict:
    """Compute total, daily average and peak day from a predictions array.

    Args:
        predictions: List of dicts with ``date`` and ``predicted_qty``

    Returns:
        Dictionary with total_predicted, daily_average and peak_day
    """
    if not predictions:
        return {'total_predicted': 0.0, 'daily_average': 0.0, 'peak_day': None}

    quantities = np.array([float(p.get('predicted_qty', 0) or 0) for p in predictions])
    peak_index = int(np.argmax(quantities))

    return {
        'total_predicted': round(float(quantities.sum()), 2),
        'daily_average': round(float(quantities.mean()), 2),
        'peak_day': dict(predictions[peak_index])
    }


def classify_trend(quantities: Sequence[float], tolerance: float = 0.1) -> str:
    """Classify a demand series as increasing, stable or decreasing.

    Compares the mean of the second half of the series with the first half.

    Args:
        quantities: Ordered demand values
        tolerance: Relative change treated as stable

    Returns:
        'increasing', 'stable' or 'decreasing'
    """
    if len(quantities) < 2:
        return 'stable'

    values = np.asarray(quantities, dtype=float)
    half = len(values) // 2
    first, second = values[:half].mean(), values[half:].mean()

    if first == 0:
        return 'increasing' if second > 0 else 'stable'

    change = (second - first) / first
    if change > tolerance:
        return 'increasing'
    if change < -tolerance:
        return 'decreasing'
    return 'stable'


def require_non_negative(value: float, field: str) -> float:
    """Validate that a numeric field is present and non-negative."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")

    if math.isnan(number) or number < 0:
        raise ValidationError(f"{field} must be >= 0, got {value!r}")

    return number
