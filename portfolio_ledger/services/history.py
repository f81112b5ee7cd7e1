"""Market data history services."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterable, List

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFPricesMissingError, YFTickerMissingError

from ..errors import (
    LedgerError,
    NoDataForRange,
    RequestCancelled,
    TickerNotFound,
    TransportFailure,
)
from ..models import DailyRecord

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ("Open", "High", "Low")
DAILY_INTERVAL = "1d"


@dataclass(frozen=True)
class HistoryRequest:
    """One ticker's daily bars between two instants, both inclusive by day."""

    ticker: str
    from_epoch: int
    to_epoch: int
    interval: str = DAILY_INTERVAL

    @classmethod
    def for_dates(cls, ticker: str, start: date, end: date) -> "HistoryRequest":
        return cls(ticker, _epoch(start), _epoch(end))

    @property
    def start(self) -> date:
        return datetime.fromtimestamp(self.from_epoch, tz=timezone.utc).date()

    @property
    def end(self) -> date:
        return datetime.fromtimestamp(self.to_epoch, tz=timezone.utc).date()


def _epoch(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


def load_yahoo_history(request: HistoryRequest) -> pd.DataFrame:
    # yfinance treats ``end`` as exclusive.
    return yf.Ticker(request.ticker).history(
        start=request.start.isoformat(),
        end=(request.end + timedelta(days=1)).isoformat(),
        interval=request.interval,
        auto_adjust=False,
        actions=False,
        raise_errors=True,
    )


def frame_to_records(ticker: str, frame: pd.DataFrame) -> List[DailyRecord]:
    """Convert a daily OHLC frame into raw asset records.

    Closes come from ``Adj Close`` when present. A row that is only partly
    populated means the price arrays are ragged and the whole response is
    rejected; fully empty rows are non-trading placeholders and are skipped.
    """
    close_column = "Adj Close" if "Adj Close" in frame.columns else "Close"
    columns = [*PRICE_COLUMNS, close_column]
    missing_columns = [column for column in columns if column not in frame.columns]
    if missing_columns:
        raise TransportFailure(f"Response for {ticker} lacks columns {missing_columns}.")

    values = frame[columns].astype(float)
    empty = values.isna()
    ragged = empty.any(axis=1) & ~empty.all(axis=1)
    if ragged.any():
        raise TransportFailure(
            f"Response for {ticker} has ragged price arrays ({int(ragged.sum())} partial rows)."
        )
    values = values.loc[~empty.all(axis=1)]

    index = pd.DatetimeIndex(values.index)
    if index.tz is not None:
        index = index.tz_localize(None)

    records: List[DailyRecord] = []
    for day, row in zip(index, values.itertuples(index=False)):
        open_value, high_value, low_value, close_value = row
        record = DailyRecord.asset(
            day.date(), float(open_value), float(close_value), float(high_value), float(low_value)
        )
        if records and records[-1].date == record.date:
            records[-1] = record
            continue
        records.append(record)
    return records


class PriceHistoryService:
    """Fetches daily price history for a set of tickers.

    Each ticker is requested on its own worker; :meth:`fetch` returns only
    once every request has finished, or raises the first failure after
    cancelling whatever has not started yet.
    """

    def __init__(
        self,
        loader: Callable[[HistoryRequest], pd.DataFrame] = load_yahoo_history,
        max_workers: int = 8,
    ) -> None:
        self._loader = loader
        self._max_workers = max_workers
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Abort the batch currently in flight."""
        self._cancelled.set()

    def fetch(
        self,
        tickers: Iterable[str],
        start: date,
        end: date,
    ) -> Dict[str, List[DailyRecord]]:
        requests = [HistoryRequest.for_dates(ticker, start, end) for ticker in sorted(set(tickers))]
        if not requests:
            return {}
        self._cancelled.clear()

        workers = min(self._max_workers, len(requests))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="history") as executor:
            futures: Dict[Future, str] = {
                executor.submit(self._load_single_history, request): request.ticker
                for request in requests
            }
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            failed = next(
                (future for future in done if future.exception() is not None),
                None,
            )
            if failed is not None:
                for future in pending:
                    future.cancel()
                raise failed.exception()

        if self._cancelled.is_set():
            raise RequestCancelled("Request to fetch price history was cancelled.")
        return {futures[future]: future.result() for future in futures}

    def _load_single_history(self, request: HistoryRequest) -> List[DailyRecord]:
        if self._cancelled.is_set():
            raise RequestCancelled("Request to fetch price history was cancelled.")
        ticker = request.ticker
        try:
            frame = self._loader(request)
        except YFPricesMissingError as exc:
            logger.warning("No prices for %s between %s and %s", ticker, request.start, request.end)
            raise NoDataForRange(ticker, str(exc)) from exc
        except YFTickerMissingError as exc:
            logger.warning("Ticker %s not found", ticker)
            raise TickerNotFound(ticker, str(exc)) from exc
        except LedgerError:
            raise
        except Exception as exc:  # noqa: BLE001 - any other loader failure is a transport failure
            logger.warning("Failed to fetch history for %s: %s", ticker, exc)
            raise TransportFailure(f"Failed to fetch history for {ticker}: {exc}") from exc

        if frame is None or frame.empty:
            raise NoDataForRange(ticker)
        records = frame_to_records(ticker, frame)
        if not records:
            raise NoDataForRange(ticker)
        if self._cancelled.is_set():
            raise RequestCancelled("Request to fetch price history was cancelled.")
        return records

