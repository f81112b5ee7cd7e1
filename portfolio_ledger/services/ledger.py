"""The portfolio ledger: applies, undoes and refreshes history in place.

Every transaction patches only the dates it affects. For a transaction on
day D the suffix of the asset's history from D to the newest record is
adjusted, and the same number of records at the end of the portfolio history
are adjusted by the matching value and capital deltas. Nothing before D is
touched, so the portfolio series stays the share-weighted sum of the asset
series without being rebuilt.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd
from dateutil.relativedelta import relativedelta

from ..config import HISTORY_YEARS, MAX_HISTORY_RECORDS, PORTFOLIO_ENTITY, STALENESS
from ..errors import (
    HistoryMisaligned,
    InvalidTransactionDate,
    NoDataForRange,
    TickerNotFound,
    UnknownTransaction,
)
from ..models import (
    DailyRecord,
    LedgerSnapshot,
    PatchSummary,
    RefreshSummary,
    Transaction,
    inverse,
)
from ..timeseries import TimeSeries
from .allocation import AllocationTable
from .history import PriceHistoryService

logger = logging.getLogger(__name__)


@dataclass
class PortfolioRecord:
    """Portfolio-wide state: its history, allocations and last refresh time."""

    history: TimeSeries = field(default_factory=lambda: TimeSeries(PORTFOLIO_ENTITY))
    allocations: AllocationTable = field(default_factory=AllocationTable)
    last_update: datetime = field(default_factory=datetime.now)

    @property
    def current_value(self) -> float:
        latest = self.history.latest
        return latest.close_value if latest else 0.0

    @property
    def current_invested(self) -> float:
        latest = self.history.latest
        return latest.invested_capital if latest else 0.0

    def update_needed(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        return now - self.last_update > STALENESS and len(self.allocations) > 0


class Ledger:
    """Single-writer owner of the portfolio and asset histories."""

    def __init__(
        self,
        gateway: PriceHistoryService,
        portfolio: Optional[PortfolioRecord] = None,
        assets: Optional[Mapping[str, TimeSeries]] = None,
        transactions: Sequence[Transaction] = (),
        today: Callable[[], date] = date.today,
    ) -> None:
        self._gateway = gateway
        self._today = today
        self.portfolio = portfolio or PortfolioRecord()
        self.assets: Dict[str, TimeSeries] = dict(assets or {})
        self.transactions: List[Transaction] = sorted(
            transactions, key=lambda txn: txn.date, reverse=True
        )
        self.dirty = False

    @classmethod
    def from_snapshot(
        cls,
        snapshot: LedgerSnapshot,
        gateway: PriceHistoryService,
        today: Callable[[], date] = date.today,
    ) -> "Ledger":
        portfolio = PortfolioRecord(
            history=TimeSeries(PORTFOLIO_ENTITY, snapshot.portfolio_history),
            allocations=AllocationTable(snapshot.allocations),
            last_update=snapshot.last_update,
        )
        assets = {
            ticker: TimeSeries(ticker, records)
            for ticker, records in snapshot.asset_histories.items()
        }
        return cls(gateway, portfolio, assets, snapshot.transactions, today=today)

    def copy(self) -> "Ledger":
        """A detached ledger over the same state."""
        return Ledger.from_snapshot(self.snapshot(), self._gateway, today=self._today)

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            last_update=self.portfolio.last_update,
            allocations=self.portfolio.allocations.as_dict(),
            portfolio_history=self.portfolio.history.records,
            asset_histories={ticker: series.records for ticker, series in self.assets.items()},
            transactions=tuple(self.transactions),
        )

    @property
    def allocations(self) -> AllocationTable:
        return self.portfolio.allocations

    @property
    def history(self) -> TimeSeries:
        return self.portfolio.history

    def held_series(self) -> Dict[str, TimeSeries]:
        """Asset histories of tickers that still have an open position."""
        return {
            ticker: series
            for ticker, series in self.assets.items()
            if ticker in self.portfolio.allocations
        }

    def needs_history(self, ticker: str) -> bool:
        """True when the ticker has no open position, so its history is missing or may lag."""
        return ticker not in self.portfolio.allocations

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    def apply_transaction(self, txn: Transaction) -> PatchSummary:
        fetched = False
        if txn.ticker not in self.assets:
            self.assets[txn.ticker] = self._fetch_new_asset(txn)
            fetched = True
        else:
            self._catch_up(txn.ticker)

        series = self.assets[txn.ticker]
        if series.index_of(txn.date) is not None:
            self._extend_idle_portfolio(series)

        try:
            summary = self._patch(txn)
        except (InvalidTransactionDate, HistoryMisaligned):
            if fetched:
                del self.assets[txn.ticker]
            raise

        self.transactions.append(txn)
        self.transactions.sort(key=lambda item: item.date, reverse=True)
        logger.info(
            "Committed %s of %s %s on %s (%d records patched)",
            txn.label,
            txn.share_count,
            txn.ticker,
            txn.date,
            summary.records_patched,
        )
        return summary

    def undo_transaction(self, txn: Transaction) -> PatchSummary:
        try:
            position = self.transactions.index(txn)
        except ValueError:
            raise UnknownTransaction(
                f"{txn.label} of {txn.ticker} on {txn.date} is not in the transaction log."
            ) from None
        if txn.ticker not in self.assets:
            raise UnknownTransaction(f"No stored history for {txn.ticker}; cannot undo.")

        removed = self.transactions.pop(position)
        try:
            summary = self._patch(inverse(txn))
        except (InvalidTransactionDate, HistoryMisaligned):
            self.transactions.insert(position, removed)
            raise

        if self.transactions:
            self.portfolio.history.truncate_before(self.transactions[-1].date)
        else:
            self.portfolio.history.clear()
            self.portfolio.allocations.clear()
        logger.info("Undid %s of %s %s on %s", txn.label, txn.share_count, txn.ticker, txn.date)
        return summary

    def _fetch_new_asset(self, txn: Transaction) -> TimeSeries:
        today = self._today()
        start = today - relativedelta(years=HISTORY_YEARS)
        try:
            fetched = self._gateway.fetch([txn.ticker], start, today)
        except NoDataForRange:
            raise InvalidTransactionDate(txn.ticker, txn.date) from None
        series = TimeSeries(txn.ticker, fetched[txn.ticker])
        series.trim_to(MAX_HISTORY_RECORDS)
        return series

    def _catch_up(self, ticker: str) -> int:
        """Extend a retained history to the portfolio's last date.

        With no open positions the target is today. Closed positions stop
        being merged into the portfolio, so their histories can fall behind.
        """
        series = self.assets[ticker]
        if len(self.portfolio.allocations) and len(self.portfolio.history):
            end = self.portfolio.history.last_date
        else:
            end = self._today()
        if series.last_date is None or series.last_date >= end:
            return 0
        return self._extend_retained({ticker: series}, end)

    def _extend_idle_portfolio(self, series: TimeSeries) -> int:
        """Carry a portfolio with no open positions forward onto newer asset dates.

        Nothing is held, so the new records are worth zero and keep the last
        invested capital. Lagging closed histories are extended to match.
        """
        history = self.portfolio.history
        if len(self.portfolio.allocations) or not len(history):
            return 0
        if series.last_date is None or series.last_date <= history.last_date:
            return 0

        invested = history.latest.invested_capital
        added = history.append_history(
            [
                DailyRecord.portfolio(record.date, 0.0, 0.0, invested)
                for record in series
                if record.date > history.last_date
            ]
        )
        end = history.last_date
        lagging = {
            ticker: other
            for ticker, other in self.assets.items()
            if other is not series and other.last_date is not None and other.last_date < end
        }
        if lagging:
            self._extend_retained(lagging, end)
        self.dirty = True
        return added

    def _extend_retained(self, stale: Mapping[str, TimeSeries], end: date) -> int:
        tickers = sorted(stale)
        start = min(series.last_date for series in stale.values())
        try:
            updates = self._gateway.fetch(tickers, start, end)
        except (NoDataForRange, TickerNotFound) as exc:
            logger.warning("Could not extend %s to %s: %s", ", ".join(tickers), end, exc)
            return 0

        added = 0
        for ticker, records in updates.items():
            series = stale[ticker]
            held = ticker in self.portfolio.allocations
            records = [record for record in records if record.date <= end]
            added += series.append_history(self._carry_position(series, records, held))
            series.trim_to(MAX_HISTORY_RECORDS)
        self.dirty = True
        logger.info("Extended %s to %s (%d records added)", ", ".join(tickers), end, added)
        return added

    def _patch(self, txn: Transaction) -> PatchSummary:
        series = self.assets[txn.ticker]
        start = series.index_of(txn.date)
        if start is None:
            raise InvalidTransactionDate(txn.ticker, txn.date)

        sign = 1.0 if txn.is_buy else -1.0
        shares = txn.share_count
        money_delta = sign * txn.money_amount
        suffix = series.records[start:]
        k = len(suffix)

        portfolio = self.portfolio.history
        portfolio_start = len(portfolio) - k
        for offset in range(max(0, -portfolio_start), k):
            current = portfolio[portfolio_start + offset]
            if current.date != suffix[offset].date:
                logger.warning(
                    "Portfolio record %s aligned with %s record %s",
                    current.date,
                    txn.ticker,
                    suffix[offset].date,
                )
                raise HistoryMisaligned(txn.ticker, suffix[offset].date, current.date)

        asset_records: List[DailyRecord] = []
        portfolio_records: List[DailyRecord] = []
        for offset, record in enumerate(suffix):
            open_delta = sign * record.open_value * shares
            close_delta = sign * record.close_value * shares
            asset_records.append(
                replace(
                    record,
                    invested_capital=record.invested_capital + money_delta,
                    share_count=(record.share_count or 0.0) + sign * shares,
                )
            )

            position = portfolio_start + offset
            if position >= 0:
                current = portfolio[position]
                portfolio_records.append(
                    DailyRecord.portfolio(
                        record.date,
                        current.open_value + open_delta,
                        current.close_value + close_delta,
                        current.invested_capital + money_delta,
                    )
                )
            else:
                portfolio_records.append(
                    DailyRecord.portfolio(record.date, open_delta, close_delta, money_delta)
                )

        # Both histories are validated before either is replaced.
        patched_portfolio = portfolio.copy()
        patched_portfolio.patch_suffix(portfolio_records, portfolio_start)
        series.patch_suffix(asset_records, start)
        portfolio.patch_suffix(portfolio_records, portfolio_start)

        closed = self.portfolio.allocations.apply(txn)
        self.dirty = True

        return PatchSummary(
            ticker=txn.ticker,
            first_date=suffix[0].date,
            last_date=suffix[-1].date,
            records_patched=k,
            portfolio_records_added=max(0, -portfolio_start),
            allocation_closed=closed,
        )

    # ------------------------------------------------------------------ #
    # Refresh
    # ------------------------------------------------------------------ #

    def refresh(self, now: Optional[datetime] = None) -> RefreshSummary:
        """Merge history published since the last update for every held ticker."""
        now = now or datetime.now()
        held = self.held_series()
        if not held:
            return RefreshSummary(tickers=(), records_added=0, already_current=True)

        tickers = tuple(sorted(held))
        start = self.portfolio.last_update.date()
        today = self._today()
        try:
            updates = self._gateway.fetch(tickers, start, today)
        except NoDataForRange:
            logger.info("No new price data since %s; history already current", start)
            self.portfolio.last_update = now
            self.dirty = True
            return RefreshSummary(tickers=tickers, records_added=0, already_current=True)

        for ticker, records in updates.items():
            series = held[ticker]
            series.append_history(self._carry_position(series, records))
            series.trim_to(MAX_HISTORY_RECORDS)

        added = self.portfolio.history.append_history(self._merged_portfolio_records(updates))

        # Closed positions follow the portfolio's dates with no shares held.
        end = self.portfolio.history.last_date
        closed = {
            ticker: series
            for ticker, series in self.assets.items()
            if ticker not in held and series.last_date is not None and series.last_date < end
        }
        if closed:
            self._extend_retained(closed, end)

        self.portfolio.last_update = now
        self.dirty = True
        logger.info("Refreshed %s: %d portfolio records added", ", ".join(tickers), added)
        return RefreshSummary(tickers=tickers, records_added=added)

    @staticmethod
    def _carry_position(
        series: TimeSeries, records: Sequence[DailyRecord], held: bool = True
    ) -> List[DailyRecord]:
        latest = series.latest
        invested = latest.invested_capital if latest else 0.0
        shares = (latest.share_count or 0.0) if latest and held else 0.0
        return [
            replace(record, invested_capital=invested, share_count=shares) for record in records
        ]

    def _merged_portfolio_records(
        self, updates: Mapping[str, Sequence[DailyRecord]]
    ) -> List[DailyRecord]:
        opens = pd.DataFrame(
            {ticker: pd.Series({r.date: r.open_value for r in records}) for ticker, records in updates.items()}
        )
        closes = pd.DataFrame(
            {ticker: pd.Series({r.date: r.close_value for r in records}) for ticker, records in updates.items()}
        )
        opens = opens.sort_index().ffill().bfill()
        closes = closes.sort_index().ffill().bfill()

        weights = pd.Series(
            {
                ticker: self.portfolio.allocations.get(ticker).share_count
                for ticker in updates
            }
        )
        open_values = (opens * weights).sum(axis=1)
        close_values = (closes * weights).sum(axis=1)
        invested = self.portfolio.current_invested

        return [
            DailyRecord.portfolio(day, float(open_values[day]), float(close_values[day]), invested)
            for day in closes.index
        ]
