import math
from datetime import date

import pandas as pd
import pytest

from portfolio_ledger.config import PORTFOLIO_ENTITY
from portfolio_ledger.models import DailyRecord
from portfolio_ledger.services.performance import (
    PerformanceMode,
    PerformancePoint,
    clamp_range,
    downsample,
    extract_range,
)
from portfolio_ledger.timeseries import TimeSeries


@pytest.fixture
def history():
    # Ten trading days; close = 1000 + 10 * i on 1000 invested
    days = pd.bdate_range("2024-03-04", periods=10)
    return TimeSeries(
        PORTFOLIO_ENTITY,
        [
            DailyRecord.portfolio(day.date(), 1000.0, 1000.0 + 10 * i, 1000.0)
            for i, day in enumerate(days)
        ],
    )


def points(count):
    start = date(2020, 1, 1).toordinal()
    return [PerformancePoint(date.fromordinal(start + i), float(i)) for i in range(count)]


class TestExtractRange:

    def test_gross_profit(self, history):
        result = extract_range(history, date(2024, 3, 5), date(2024, 3, 7))
        assert [point.date for point in result] == [date(2024, 3, 5), date(2024, 3, 6), date(2024, 3, 7)]
        assert [point.value for point in result] == pytest.approx([10.0, 20.0, 30.0])

    def test_percent_return(self, history):
        result = extract_range(history, mode=PerformanceMode.PERCENT_RETURN)
        assert result[-1].value == pytest.approx(9.0)

    def test_range_past_end_is_clamped(self, history):
        result = extract_range(history, date(2024, 3, 14), date(2030, 1, 1))
        assert [point.date for point in result] == [date(2024, 3, 14), date(2024, 3, 15)]

    def test_unbounded_range_returns_everything(self, history):
        assert len(extract_range(history)) == 10

    def test_from_before_first_record(self, history):
        result = extract_range(history, date(2020, 1, 1), date(2024, 3, 4))
        assert [point.date for point in result] == [date(2024, 3, 4)]

    def test_zero_invested_percent_is_nan(self):
        series = TimeSeries(PORTFOLIO_ENTITY, [DailyRecord.portfolio(date(2024, 3, 4), 0.0, 0.0, 0.0)])
        result = extract_range(series, mode=PerformanceMode.PERCENT_RETURN)
        assert math.isnan(result[0].value)

    def test_empty_series(self):
        assert extract_range(TimeSeries(PORTFOLIO_ENTITY)) == []
        assert clamp_range(TimeSeries(PORTFOLIO_ENTITY)) is None

    def test_clamp_range(self, history):
        assert clamp_range(history, date(2024, 1, 1), date(2025, 1, 1)) == (
            date(2024, 3, 4),
            date(2024, 3, 15),
        )


class TestDownsample:

    @pytest.mark.parametrize("count", [52, 100, 253, 2520])
    def test_exact_length_and_endpoints(self, count):
        original = points(count)
        result = downsample(original)

        assert len(result) == 51
        assert result[0] == original[0]
        assert result[-1] == original[-1]

    @pytest.mark.parametrize("count", [52, 100, 253, 2520])
    def test_gaps_are_bounded(self, count):
        result = downsample(points(count))
        interior = count - 2
        remove_every = interior / (interior - 49 + 1)
        # Thinning hard enough to keep fewer than half leaves one survivor per
        # remove_every / (remove_every - 1) positions.
        stride = max(remove_every, remove_every / (remove_every - 1))
        indices = [int(point.value) for point in result]

        assert indices == sorted(indices)
        gaps = [later - earlier for earlier, later in zip(indices, indices[1:])]
        assert max(gaps) <= math.ceil(stride) + 1

    def test_short_input_is_unchanged(self):
        original = points(51)
        assert downsample(original) == original

    def test_custom_size(self):
        result = downsample(points(30), max_points=10)
        assert len(result) == 10

    def test_two_points_keeps_endpoints(self):
        original = points(30)
        assert downsample(original, max_points=2) == [original[0], original[-1]]

    def test_rejects_fewer_than_two_points(self):
        with pytest.raises(ValueError):
            downsample(points(10), max_points=1)
