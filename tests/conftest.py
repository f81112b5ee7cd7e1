import threading
from datetime import date, datetime

import pandas as pd
import pytest
from yfinance.exceptions import YFTickerMissingError

from portfolio_ledger.config import RecordPaths
from portfolio_ledger.models import DailyRecord
from portfolio_ledger.services.history import PriceHistoryService
from portfolio_ledger.services.ledger import Ledger

# ── Fixed "today" for every test: a Thursday ──
TODAY = date(2024, 3, 28)

# ── Forty trading days ending on TODAY ──
TRADING_DAYS = pd.bdate_range(end=pd.Timestamp(TODAY), periods=40)
# Index 20 is Friday 2024-03-01; WEEKEND_DAY is the Saturday after it.
TRADE_DAY = TRADING_DAYS[20].date()
WEEKEND_DAY = date(2024, 3, 2)


def price_frame(days, base, step=1.0):
    """
    Daily bars in the shape yfinance returns.
    Open climbs by ``step`` per day from ``base``; Close = Open + 2,
    High = Close + 1, Low = Open - 1.
    """
    opens = [base + step * i for i in range(len(days))]
    closes = [value + 2 for value in opens]
    return pd.DataFrame(
        {
            "Open": opens,
            "High": [value + 1 for value in closes],
            "Low": [value - 1 for value in opens],
            "Close": closes,
            "Adj Close": closes,
        },
        index=pd.DatetimeIndex(days, name="Date"),
    )


def asset_records(days, base, step=1.0):
    frame = price_frame(days, base, step)
    return [
        DailyRecord.asset(day.date(), row.Open, row.Close, row.High, row.Low)
        for day, row in zip(frame.index, frame.itertuples())
    ]


class FakeMarket:
    """
    Stand-in for the yfinance loader.
    Serves slices of in-memory frames and records every request.
    Unknown tickers raise the same error yfinance raises.
    """

    def __init__(self, frames=None):
        self.frames = dict(frames or {})
        self.requests = []
        self._lock = threading.Lock()

    def __call__(self, request):
        with self._lock:
            self.requests.append(request)
        if request.ticker not in self.frames:
            raise YFTickerMissingError(request.ticker, "no such ticker")
        frame = self.frames[request.ticker]
        start = pd.Timestamp(request.start)
        end = pd.Timestamp(request.end)
        return frame.loc[(frame.index >= start) & (frame.index <= end)]

    def tickers_requested(self):
        return [request.ticker for request in self.requests]


class Clock:
    """Mutable clock so tests can move "today" forward."""

    def __init__(self, today=TODAY):
        self.current = today

    def today(self):
        return self.current

    def now(self):
        return datetime.combine(self.current, datetime.min.time()).replace(hour=18)


@pytest.fixture
def market():
    return FakeMarket(
        {
            "XYZ": price_frame(TRADING_DAYS, 50.0),
            "ABC": price_frame(TRADING_DAYS, 20.0, step=0.5),
            "QRS": price_frame(TRADING_DAYS, 100.0, step=-1.0),
        }
    )


@pytest.fixture
def gateway(market):
    return PriceHistoryService(loader=market, max_workers=4)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def ledger(gateway, clock):
    return Ledger(gateway, today=clock.today)


@pytest.fixture
def record_paths(tmp_path):
    """Isolated records directory under pytest's tmp_path."""
    return RecordPaths(tmp_path / "records")


def assert_portfolio_consistent(ledger):
    """
    At every portfolio date the close must equal the share-weighted sum of
    asset closes and the invested capital the sum of asset invested capital.
    """
    by_date = {}
    for series in ledger.assets.values():
        for record in series:
            by_date.setdefault(record.date, []).append(record)
    for record in ledger.history:
        assets = by_date.get(record.date, [])
        expected_close = sum((r.share_count or 0.0) * r.close_value for r in assets)
        expected_open = sum((r.share_count or 0.0) * r.open_value for r in assets)
        expected_invested = sum(r.invested_capital for r in assets)
        assert record.close_value == pytest.approx(expected_close, abs=1e-6)
        assert record.open_value == pytest.approx(expected_open, abs=1e-6)
        assert record.invested_capital == pytest.approx(expected_invested, abs=1e-6)


def assert_records_close(actual, expected):
    assert [r.date for r in actual] == [r.date for r in expected]
    for left, right in zip(actual, expected):
        assert left.open_value == pytest.approx(right.open_value, abs=1e-6)
        assert left.close_value == pytest.approx(right.close_value, abs=1e-6)
        assert left.invested_capital == pytest.approx(right.invested_capital, abs=1e-6)
        assert (left.share_count or 0.0) == pytest.approx(right.share_count or 0.0, abs=1e-9)
