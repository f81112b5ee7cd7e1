"""Allocation table: invested capital and share count per held ticker."""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Dict, Iterator, Mapping, Optional

import pandas as pd

from ..config import SHARE_PRECISION
from ..models import Allocation, Transaction


def is_collapsed(share_count: float) -> bool:
    """True when ``share_count`` truncates to zero at four decimal places."""
    rounded = Decimal(repr(share_count)).quantize(SHARE_PRECISION, rounding=ROUND_DOWN)
    return rounded == 0


class AllocationTable:
    """Running positions, keyed by ticker. Short positions carry negative values."""

    def __init__(self, allocations: Optional[Mapping[str, Allocation]] = None) -> None:
        self._allocations: Dict[str, Allocation] = dict(allocations or {})

    def __contains__(self, ticker: object) -> bool:
        return ticker in self._allocations

    def __iter__(self) -> Iterator[str]:
        return iter(self._allocations)

    def __len__(self) -> int:
        return len(self._allocations)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AllocationTable):
            return NotImplemented
        return self._allocations == other._allocations

    def get(self, ticker: str) -> Optional[Allocation]:
        return self._allocations.get(ticker)

    def as_dict(self) -> Dict[str, Allocation]:
        return dict(self._allocations)

    def tickers(self) -> list[str]:
        return sorted(self._allocations)

    def apply(self, txn: Transaction) -> bool:
        """Add (buy, dividend) or subtract (sell) the transaction.

        Returns True when the ticker's position collapsed and was removed.
        """
        sign = 1.0 if txn.is_buy else -1.0
        money = sign * txn.money_amount
        shares = sign * txn.share_count

        current = self._allocations.get(txn.ticker)
        if current is None:
            self._allocations[txn.ticker] = Allocation(money, shares)
            return False

        new_shares = current.share_count + shares
        if is_collapsed(new_shares):
            del self._allocations[txn.ticker]
            return True

        self._allocations[txn.ticker] = Allocation(current.invested_capital + money, new_shares)
        return False

    def clear(self) -> None:
        self._allocations.clear()

    def copy(self) -> "AllocationTable":
        return AllocationTable(self._allocations)

    def to_frame(self, total_invested: float) -> pd.DataFrame:
        """Long positions with their share of the total invested capital."""
        rows = []
        for ticker, allocation in self._allocations.items():
            if allocation.share_count <= 0:
                continue
            percentage = (
                allocation.invested_capital / total_invested * 100 if total_invested else 0.0
            )
            rows.append(
                {
                    "Ticker": ticker,
                    "Invested": allocation.invested_capital,
                    "Shares": allocation.share_count,
                    "Allocation (%)": percentage,
                }
            )
        frame = pd.DataFrame(rows, columns=["Ticker", "Invested", "Shares", "Allocation (%)"])
        return frame.sort_values("Invested", ascending=False, ignore_index=True)
