"""Typed failures raised by the ledger and its collaborators.

Recoverable errors reject a single operation and leave ledger state untouched.
Fatal errors (``fatal = True``) mean there is no defined recovery: the caller
must report them and stop the process.
"""
from __future__ import annotations

from datetime import date
from typing import Optional


class LedgerError(Exception):
    """Base class for every ledger failure."""

    fatal = False
    warning_only = False


class InvalidTransactionDate(LedgerError):
    def __init__(self, ticker: str, when: date) -> None:
        super().__init__(
            f"{when.isoformat()} is not a trading day for {ticker} "
            "(weekend, holiday, future date or outside stored history)."
        )
        self.ticker = ticker
        self.date = when


class TickerNotFound(LedgerError):
    def __init__(self, ticker: str, detail: Optional[str] = None) -> None:
        message = f"Ticker {ticker} was not found."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.ticker = ticker


class UnknownTransaction(LedgerError):
    """Undo was requested for a transaction missing from the log."""


class LedgerBusy(LedgerError):
    """A transaction is already running and another one is waiting."""

    warning_only = True


class NoDataForRange(LedgerError):
    """The market data source has no bars for the requested range."""

    warning_only = True

    def __init__(self, ticker: str, detail: Optional[str] = None) -> None:
        message = f"No price data for {ticker} in the requested range."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.ticker = ticker


class RequestCancelled(LedgerError):
    warning_only = True


class StorageFailure(LedgerError):
    fatal = True


class TransportFailure(LedgerError):
    fatal = True


class HistoryMisaligned(LedgerError):
    """An asset history and the portfolio history disagree on the dates being patched."""

    def __init__(self, ticker: str, asset_date: date, portfolio_date: date) -> None:
        super().__init__(
            f"{ticker} record {asset_date.isoformat()} lines up with portfolio record "
            f"{portfolio_date.isoformat()}; refresh prices and try again."
        )
        self.ticker = ticker
        self.asset_date = asset_date
        self.portfolio_date = portfolio_date
