"""Gain/loss and 52-week statistics over the ledger's histories."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence

import pandas as pd

from ..config import PORTFOLIO_LABEL, STATS_MIN_RECORDS, STATS_WINDOW
from ..models import DailyRecord
from ..timeseries import TimeSeries
from .ledger import PortfolioRecord


@dataclass(frozen=True)
class GainLoss:
    """Percentage gain/loss per window; ``None`` when it cannot be computed."""

    day: Optional[float]
    month: Optional[float]
    year: Optional[float]


@dataclass(frozen=True)
class FiftyTwoWeekStats:
    high: Optional[float] = None
    low: Optional[float] = None
    average: Optional[float] = None
    current_sd: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.average is not None


@dataclass(frozen=True)
class StatsRow:
    label: str
    value: float
    gain_loss: GainLoss
    fifty_two_week: Optional[FiftyTwoWeekStats] = None


def _percent_return(value: float, invested: float) -> Optional[float]:
    if invested == 0:
        return None
    return (value - invested) / invested * 100


def _portfolio_change(latest: DailyRecord, reference: DailyRecord) -> Optional[float]:
    current = _percent_return(latest.close_value, latest.invested_capital)
    previous = _percent_return(reference.open_value, reference.invested_capital)
    if current is None or previous is None:
        return None
    return current - previous


def _asset_change(latest: DailyRecord, reference: DailyRecord) -> Optional[float]:
    if reference.open_value == 0:
        return None
    return (latest.close_value - reference.open_value) / reference.open_value * 100


def _find_reference(
    records: Sequence[DailyRecord],
    crossed: Callable[[DailyRecord], bool],
) -> Optional[DailyRecord]:
    """First record of the current window: the one just after the boundary."""
    for index in range(len(records) - 2, -1, -1):
        if crossed(records[index]):
            return records[index + 1]
    return None


def gain_loss(series: TimeSeries) -> GainLoss:
    records = series.records
    if not records:
        return GainLoss(None, None, None)

    latest = records[-1]
    change = _asset_change if latest.is_asset else _portfolio_change

    day_reference = records[-2] if len(records) > 1 else latest
    day = change(latest, day_reference)

    month_reference = _find_reference(
        records,
        lambda record: (record.date.year, record.date.month)
        != (latest.date.year, latest.date.month),
    )
    year_reference = _find_reference(records, lambda record: record.date.year != latest.date.year)

    month = change(latest, month_reference) if month_reference else day
    year = change(latest, year_reference) if year_reference else day
    return GainLoss(day, month, year)


def fifty_two_week_stats(series: TimeSeries) -> FiftyTwoWeekStats:
    """High, low, mean close and the latest close's z-score over the last 52 weeks.

    Only series with more than a year of trading days qualify; shorter ones
    get an empty result.
    """
    if len(series) <= STATS_MIN_RECORDS:
        return FiftyTwoWeekStats()

    frame = series.to_frame()
    lower_bound = pd.Timestamp(series.last_date - STATS_WINDOW)
    window = frame.loc[frame.index >= lower_bound]

    closes = window["close_value"]
    highs = window["high_value"].fillna(closes)
    lows = window["low_value"].fillna(closes)

    average = float(closes.mean())
    deviation = float(closes.std(ddof=0))
    latest_close = float(closes.iloc[-1])
    current_sd = None
    if deviation > 0 and not math.isnan(deviation):
        current_sd = (latest_close - average) / deviation

    return FiftyTwoWeekStats(
        high=float(highs.max()),
        low=float(lows.min()),
        average=average,
        current_sd=current_sd,
    )


def summarize(portfolio: PortfolioRecord, assets: Mapping[str, TimeSeries]) -> List[StatsRow]:
    """Stats table rows: the portfolio first, then each held asset by ticker."""
    if not len(portfolio.history):
        return []

    rows = [
        StatsRow(
            label=PORTFOLIO_LABEL,
            value=portfolio.current_value,
            gain_loss=gain_loss(portfolio.history),
        )
    ]
    for ticker in sorted(assets):
        series = assets[ticker]
        if not len(series):
            continue
        rows.append(
            StatsRow(
                label=ticker,
                value=series.latest.close_value,
                gain_loss=gain_loss(series),
                fifty_two_week=fifty_two_week_stats(series),
            )
        )
    return rows


def allocation_breakdown(portfolio: PortfolioRecord) -> pd.DataFrame:
    """Long positions with their percentage of the portfolio's invested capital."""
    return portfolio.allocations.to_frame(portfolio.current_invested)
