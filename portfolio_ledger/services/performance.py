"""Performance series for display: range extraction and down-sampling."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from ..config import MAX_DISPLAY_POINTS
from ..timeseries import TimeSeries


class PerformanceMode(str, Enum):
    GROSS_PROFIT = "gross_profit"
    PERCENT_RETURN = "percent_return"


@dataclass(frozen=True)
class PerformancePoint:
    date: date
    value: float


def clamp_range(
    series: TimeSeries,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> Optional[Tuple[date, date]]:
    """Clamp a requested range to the dates the series actually covers."""
    if not len(series):
        return None
    first, last = series.first_date, series.last_date
    lower = first if from_date is None else min(max(from_date, first), last)
    upper = last if to_date is None else max(min(to_date, last), first)
    return lower, upper


def extract_range(
    series: TimeSeries,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    mode: PerformanceMode = PerformanceMode.GROSS_PROFIT,
) -> List[PerformancePoint]:
    bounds = clamp_range(series, from_date, to_date)
    if bounds is None:
        return []
    lower, upper = bounds

    points = []
    for record in series:
        if record.date < lower or record.date > upper:
            continue
        profit = record.close_value - record.invested_capital
        if mode is PerformanceMode.PERCENT_RETURN:
            value = profit / record.invested_capital * 100 if record.invested_capital else float("nan")
        else:
            value = profit
        points.append(PerformancePoint(record.date, value))
    return points


def downsample(
    points: Sequence[PerformancePoint],
    max_points: int = MAX_DISPLAY_POINTS,
) -> List[PerformancePoint]:
    """Thin ``points`` to exactly ``max_points``, keeping both endpoints.

    Interior points are dropped at evenly spread positions
    ``ceil(m * length / (length - kept + 1))`` for ``m = 1, 2, ...``, so the
    surviving points never leave a gap wider than one removal stride.
    """
    if max_points < 2:
        raise ValueError("max_points must be at least 2")
    if len(points) <= max_points:
        return list(points)

    first, interior, last = points[0], list(points[1:-1]), points[-1]
    if max_points == 2:
        return [first, last]

    length = len(interior)
    divisor = length - (max_points - 2) + 1
    removed = set()
    m = 1
    while True:
        # Exact ceil(m * length / divisor).
        position = -(-m * length // divisor)
        if position >= length:
            break
        removed.add(position)
        m += 1

    kept = [point for index, point in enumerate(interior) if index not in removed]
    return [first, *kept, last]


def to_frame(points: Sequence[PerformancePoint]) -> pd.DataFrame:
    """Chart-ready frame with a datetime ``date`` column and a ``value`` column."""
    frame = pd.DataFrame(
        {"date": [point.date for point in points], "value": [point.value for point in points]},
        columns=["date", "value"],
    )
    frame["date"] = pd.to_datetime(frame["date"])
    return frame
