from datetime import date, datetime

import pytest

from conftest import TODAY, TRADING_DAYS, assert_portfolio_consistent
from portfolio_ledger.models import Transaction, TransactionKind
from portfolio_ledger.timeseries import TimeSeries


def day(index):
    return TRADING_DAYS[index].date()


@pytest.fixture
def stale_ledger(ledger, clock):
    """
    Ledger built while "today" was Friday 2024-03-22, holding 10 XYZ and 4 ABC.
    Refreshing on TODAY should pick up 25, 26, 27 and 28 March.
    """
    clock.current = day(35)
    ledger.apply_transaction(Transaction(TransactionKind.BUY, day(10), "XYZ", 10, 60.0))
    ledger.apply_transaction(Transaction(TransactionKind.BUY, day(20), "ABC", 4, 30.0))
    ledger.portfolio.last_update = datetime(2024, 3, 22, 17, 0)
    clock.current = TODAY
    return ledger


class TestRefresh:

    def test_appends_new_days_to_every_series(self, stale_ledger):
        summary = stale_ledger.refresh(datetime(2024, 3, 28, 18, 0))

        assert summary.tickers == ("ABC", "XYZ")
        assert summary.records_added == 4
        assert not summary.already_current
        assert stale_ledger.history.last_date == TODAY
        assert stale_ledger.assets["XYZ"].last_date == TODAY
        assert stale_ledger.assets["ABC"].last_date == TODAY

    def test_carries_position_onto_new_records(self, stale_ledger):
        stale_ledger.refresh(datetime(2024, 3, 28, 18, 0))

        latest = stale_ledger.assets["XYZ"].latest
        assert latest.share_count == pytest.approx(10.0)
        assert latest.invested_capital == pytest.approx(600.0)
        assert latest.close_value == pytest.approx(52.0 + 39)

    def test_portfolio_is_weighted_sum_after_refresh(self, stale_ledger):
        stale_ledger.refresh(datetime(2024, 3, 28, 18, 0))

        latest = stale_ledger.history.latest
        # XYZ closes at 91, ABC at 20 + 0.5 * 39 + 2
        assert latest.close_value == pytest.approx(10 * 91.0 + 4 * 41.5)
        assert latest.invested_capital == pytest.approx(600.0 + 120.0)
        assert_portfolio_consistent(stale_ledger)

    def test_updates_last_update_and_dirty(self, stale_ledger):
        stale_ledger.dirty = False
        now = datetime(2024, 3, 28, 18, 0)
        stale_ledger.refresh(now)

        assert stale_ledger.portfolio.last_update == now
        assert stale_ledger.dirty

    def test_requests_start_at_last_update(self, stale_ledger, market):
        market.requests.clear()
        stale_ledger.refresh(datetime(2024, 3, 28, 18, 0))

        assert {request.start for request in market.requests} == {date(2024, 3, 22)}
        assert {request.end for request in market.requests} == {TODAY}

    def test_closed_positions_follow_portfolio_dates(self, stale_ledger, market, clock):
        clock.current = day(35)
        stale_ledger.apply_transaction(Transaction(TransactionKind.BUY, day(15), "QRS", 2, 85.0))
        stale_ledger.apply_transaction(Transaction(TransactionKind.SELL, day(25), "QRS", 2, 75.0))
        clock.current = TODAY
        market.requests.clear()

        summary = stale_ledger.refresh(datetime(2024, 3, 28, 18, 0))

        assert summary.tickers == ("ABC", "XYZ")
        requested = market.tickers_requested()
        assert sorted(requested[:2]) == ["ABC", "XYZ"]
        assert requested[2:] == ["QRS"]

        qrs = stale_ledger.assets["QRS"]
        assert qrs.last_date == TODAY
        assert qrs.latest.share_count == 0.0
        assert qrs.latest.invested_capital == pytest.approx(170.0 - 150.0)
        # closed positions carry no weight in the portfolio value
        assert stale_ledger.history.latest.close_value == pytest.approx(10 * 91.0 + 4 * 41.5)
        assert_portfolio_consistent(stale_ledger)

    def test_no_new_data_counts_as_current(self, stale_ledger, clock):
        stale_ledger.refresh(datetime(2024, 3, 28, 18, 0))
        stale_ledger.portfolio.last_update = datetime(2024, 3, 29, 9, 0)
        clock.current = date(2024, 3, 30)
        history = stale_ledger.history.records

        now = datetime(2024, 3, 30, 12, 0)
        summary = stale_ledger.refresh(now)

        assert summary.already_current
        assert summary.records_added == 0
        assert stale_ledger.portfolio.last_update == now
        assert stale_ledger.history.records == history

    def test_without_allocations_is_a_no_op(self, ledger, market):
        summary = ledger.refresh(datetime(2024, 3, 28, 18, 0))

        assert summary.already_current
        assert market.requests == []


def buy(ticker, index, shares, price):
    return Transaction(TransactionKind.BUY, day(index), ticker, shares, price)


def sell(ticker, index, shares, price):
    return Transaction(TransactionKind.SELL, day(index), ticker, shares, price)


class TestClosedPositions:

    @pytest.fixture
    def closed_abc(self, ledger, clock):
        """Holds 10 XYZ; ABC bought and sold out before a refresh to TODAY."""
        clock.current = day(35)
        ledger.apply_transaction(buy("XYZ", 10, 10, 60.0))
        ledger.apply_transaction(buy("ABC", 10, 4, 25.0))
        ledger.apply_transaction(sell("ABC", 30, 4, 35.0))
        ledger.portfolio.last_update = datetime(2024, 3, 22, 17, 0)
        clock.current = TODAY
        ledger.refresh(datetime(2024, 3, 28, 18, 0))
        return ledger

    def test_rebuy_on_recent_day(self, closed_abc, market):
        market.requests.clear()
        summary = closed_abc.apply_transaction(buy("ABC", 37, 2, 39.0))

        assert summary.records_patched == 3
        assert market.requests == []
        assert closed_abc.assets["ABC"].latest.share_count == pytest.approx(2.0)
        assert_portfolio_consistent(closed_abc)

    def test_rebuy_before_refreshed_days(self, closed_abc):
        closed_abc.apply_transaction(buy("ABC", 33, 2, 37.0))

        assert closed_abc.history.last_date == TODAY
        assert closed_abc.assets["ABC"][-7].date == day(33)
        assert closed_abc.assets["ABC"][-7].share_count == pytest.approx(2.0)
        assert_portfolio_consistent(closed_abc)

    def test_undo_on_closed_ticker(self, closed_abc):
        closed_abc.undo_transaction(sell("ABC", 30, 4, 35.0))

        assert closed_abc.allocations.get("ABC").share_count == pytest.approx(4.0)
        assert closed_abc.assets["ABC"].latest.share_count == pytest.approx(4.0)
        assert_portfolio_consistent(closed_abc)

    def test_lagging_closed_history_caught_up_on_rebuy(self, closed_abc, market):
        # a closed history that missed the last refresh
        closed_abc.assets["ABC"] = TimeSeries("ABC", closed_abc.assets["ABC"].records[:-4])
        market.requests.clear()

        closed_abc.apply_transaction(buy("ABC", 38, 1, 40.0))

        assert market.tickers_requested() == ["ABC"]
        assert closed_abc.assets["ABC"].last_date == TODAY
        assert_portfolio_consistent(closed_abc)

    def test_rebuy_after_log_emptied(self, ledger, clock):
        clock.current = day(35)
        only = buy("XYZ", 10, 10, 60.0)
        ledger.apply_transaction(only)
        ledger.undo_transaction(only)
        clock.current = TODAY

        ledger.apply_transaction(buy("XYZ", 38, 1, 88.0))

        assert ledger.assets["XYZ"].last_date == TODAY
        assert len(ledger.history) == 2
        assert_portfolio_consistent(ledger)

    def test_new_ticker_after_everything_closed(self, ledger, clock):
        clock.current = day(35)
        ledger.apply_transaction(buy("XYZ", 10, 10, 60.0))
        ledger.apply_transaction(sell("XYZ", 20, 10, 70.0))
        clock.current = TODAY

        ledger.apply_transaction(buy("ABC", 37, 2, 39.0))

        assert ledger.history.last_date == TODAY
        assert ledger.assets["XYZ"].last_date == TODAY
        # nothing was held on day 36
        assert ledger.history[-4].date == day(36)
        assert ledger.history[-4].close_value == 0.0
        assert ledger.history.latest.invested_capital == pytest.approx(600.0 - 700.0 + 78.0)
        assert_portfolio_consistent(ledger)
