"""Statistics and formatting helpers for delivery metrics.

This module provides utilities for:
- Rounding values to one decimal place the way every metric is reported.
- Computing the shared average/median/min/max summary over a sample.
- Converting timestamp pairs into elapsed hours.
- Formatting hour-based durations and percentages for text reports.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .models import Stats

SECONDS_PER_HOUR = 3600.0


def round_one(value: float) -> float:
    """Round to one decimal place, with halves rounded up.

    Python's built-in :func:`round` rounds halves to even, which would report
    ``0.25`` as ``0.2``; metrics are reported with halves rounded towards
    positive infinity instead.
    """
    return math.floor(value * 10 + 0.5) / 10


def round_optional(value: Optional[float]) -> Optional[float]:
    """Apply :func:`round_one` when a value is present."""
    if value is None:
        return None
    return round_one(value)


def mean(values: Sequence[float]) -> Optional[float]:
    """Return the unrounded arithmetic mean, or ``None`` for an empty sample."""
    if not values:
        return None
    return sum(values) / len(values)


def calculate_stats(values: Iterable[float]) -> Stats:
    """Compute average, median, minimum and maximum of a numeric sample.

    Every aggregator relies on the same contract:
    - Empty input returns a ``Stats`` whose four fields are ``None``.
    - The median of an even-length sample is the mean of the two middle values.
    - All four values are rounded to one decimal place.

    Args:
        values: Numeric samples in any order.

    Returns:
        ``Stats`` summary of the sample.
    """
    ordered = sorted(values)
    if not ordered:
        return Stats()

    count = len(ordered)
    middle = count // 2
    if count % 2:
        median = ordered[middle]
    else:
        median = (ordered[middle - 1] + ordered[middle]) / 2

    return Stats(
        avg=round_one(sum(ordered) / count),
        median=round_one(median),
        min=round_one(ordered[0]),
        max=round_one(ordered[-1]),
    )


def hours_between(start: datetime, end: datetime) -> float:
    """Return the unrounded number of hours from ``start`` to ``end``."""
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def format_hours(hours: Optional[float]) -> str:
    """Format an hour value as ``"12.5h"``; ``None`` renders as ``"n/a"``."""
    if hours is None:
        return "n/a"
    return f"{hours:.1f}h"


def format_percentage(rate: Optional[float]) -> str:
    """Format a 0-100 rate as ``"12.5%"``; ``None`` renders as ``"n/a"``."""
    if rate is None:
        return "n/a"
    return f"{rate:.1f}%"
