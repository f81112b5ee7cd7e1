"""Domain models for the portfolio ledger."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from .messages import ServiceMessage


class SeriesKind(str, Enum):
    PORTFOLIO = "portfolio"
    ASSET = "asset"


class TransactionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
    DIVIDEND_REINVESTMENT = "dividend"


@dataclass(frozen=True)
class DailyRecord:
    """One day of history for the portfolio or for a single asset.

    Asset records additionally carry the daily high/low and the share count
    held on that date. Prices of an asset record are per-share; values of a
    portfolio record are totals.
    """

    kind: SeriesKind
    date: date
    open_value: float
    close_value: float
    invested_capital: float = 0.0
    high_value: Optional[float] = None
    low_value: Optional[float] = None
    share_count: Optional[float] = None

    @classmethod
    def portfolio(
        cls,
        when: date,
        open_value: float,
        close_value: float,
        invested_capital: float,
    ) -> "DailyRecord":
        return cls(SeriesKind.PORTFOLIO, when, open_value, close_value, invested_capital)

    @classmethod
    def asset(
        cls,
        when: date,
        open_value: float,
        close_value: float,
        high_value: float,
        low_value: float,
        invested_capital: float = 0.0,
        share_count: float = 0.0,
    ) -> "DailyRecord":
        return cls(
            SeriesKind.ASSET,
            when,
            open_value,
            close_value,
            invested_capital,
            high_value,
            low_value,
            share_count,
        )

    @property
    def is_asset(self) -> bool:
        return self.kind is SeriesKind.ASSET


@dataclass(frozen=True)
class Transaction:
    """An immutable buy, sell or dividend reinvestment.

    ``amount`` overrides the money amount derived from price and share count.
    It is only set on inverses of dividend reinvestments, see :func:`inverse`.
    """

    kind: TransactionKind
    date: date
    ticker: str
    share_count: float
    price: float
    amount: Optional[float] = None

    def __post_init__(self) -> None:
        if self.share_count <= 0:
            raise ValueError("share_count must be positive")
        if self.price <= 0:
            raise ValueError("price must be positive")
        if not self.ticker:
            raise ValueError("ticker must not be empty")

    @property
    def is_buy(self) -> bool:
        return self.kind is not TransactionKind.SELL

    @property
    def is_dividend(self) -> bool:
        return self.kind is TransactionKind.DIVIDEND_REINVESTMENT

    @property
    def money_amount(self) -> float:
        if self.amount is not None:
            return self.amount
        if self.is_dividend:
            return self.price
        return self.price * self.share_count

    @property
    def label(self) -> str:
        if self.is_dividend:
            return "Div. Reinv."
        return "Buy" if self.is_buy else "Sell"


def inverse(txn: Transaction) -> Transaction:
    """Return the transaction that reverses ``txn``'s effect on the ledger."""
    if txn.is_dividend:
        return Transaction(
            TransactionKind.SELL,
            txn.date,
            txn.ticker,
            txn.share_count,
            txn.price,
            amount=txn.money_amount,
        )
    kind = TransactionKind.SELL if txn.is_buy else TransactionKind.BUY
    return Transaction(kind, txn.date, txn.ticker, txn.share_count, txn.price, amount=txn.amount)


@dataclass(frozen=True)
class Allocation:
    """Current invested capital and share count for one ticker."""

    invested_capital: float
    share_count: float


@dataclass(frozen=True)
class PatchSummary:
    """What a single apply or undo changed."""

    ticker: str
    first_date: date
    last_date: date
    records_patched: int
    portfolio_records_added: int
    allocation_closed: bool


@dataclass(frozen=True)
class RefreshSummary:
    tickers: tuple[str, ...]
    records_added: int
    already_current: bool = False


@dataclass
class TransactionResult:
    """Outcome of a session operation, with messages for the user."""

    summary: Optional[PatchSummary | RefreshSummary] = None
    messages: list[ServiceMessage] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.summary is not None


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of the ledger used by the record store."""

    last_update: datetime
    allocations: dict[str, Allocation]
    portfolio_history: tuple[DailyRecord, ...]
    asset_histories: dict[str, tuple[DailyRecord, ...]]
    transactions: tuple[Transaction, ...]
