"""Repositories responsible for loading and persisting ledger records."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple

from .config import RecordPaths
from .errors import StorageFailure
from .models import Allocation, DailyRecord, LedgerSnapshot, Transaction, TransactionKind

logger = logging.getLogger(__name__)

EOF_LINE = {"kind": "eof"}


def _portfolio_row(record: DailyRecord) -> list:
    return [record.date.isoformat(), record.open_value, record.close_value, record.invested_capital]


def _asset_row(record: DailyRecord) -> list:
    return [
        record.date.isoformat(),
        record.open_value,
        record.close_value,
        record.high_value,
        record.low_value,
        record.invested_capital,
        record.share_count,
    ]


def encode_portfolio(
    last_update: datetime,
    allocations: Mapping[str, Allocation],
    history: Iterable[DailyRecord],
) -> Dict[str, Any]:
    return {
        "kind": "portfolio",
        "last_update": last_update.isoformat(),
        "allocations": {
            ticker: {
                "invested_capital": allocation.invested_capital,
                "share_count": allocation.share_count,
            }
            for ticker, allocation in allocations.items()
        },
        "history": [_portfolio_row(record) for record in history],
    }


def encode_asset(ticker: str, history: Iterable[DailyRecord]) -> Dict[str, Any]:
    return {"kind": "asset", "ticker": ticker, "history": [_asset_row(record) for record in history]}


def encode_transaction(txn: Transaction) -> Dict[str, Any]:
    line = {
        "kind": "dividend" if txn.is_dividend else "transaction",
        "date": txn.date.isoformat(),
        "ticker": txn.ticker,
        "share_count": txn.share_count,
        "price": txn.price,
    }
    if not txn.is_dividend:
        line["buy"] = txn.is_buy
    if txn.amount is not None:
        line["amount"] = txn.amount
    return line


def decode_portfolio(line: Mapping[str, Any]) -> Tuple[datetime, Dict[str, Allocation], List[DailyRecord]]:
    allocations = {
        ticker: Allocation(float(value["invested_capital"]), float(value["share_count"]))
        for ticker, value in line["allocations"].items()
    }
    history = [
        DailyRecord.portfolio(date.fromisoformat(day), float(open_value), float(close_value), float(invested))
        for day, open_value, close_value, invested in line["history"]
    ]
    return datetime.fromisoformat(line["last_update"]), allocations, history


def decode_asset(line: Mapping[str, Any]) -> Tuple[str, List[DailyRecord]]:
    history = [
        DailyRecord.asset(
            date.fromisoformat(day),
            float(open_value),
            float(close_value),
            float(high),
            float(low),
            float(invested),
            float(shares),
        )
        for day, open_value, close_value, high, low, invested, shares in line["history"]
    ]
    return line["ticker"], history


def decode_transaction(line: Mapping[str, Any]) -> Transaction:
    if line["kind"] == "dividend":
        kind = TransactionKind.DIVIDEND_REINVESTMENT
    else:
        kind = TransactionKind.BUY if line["buy"] else TransactionKind.SELL
    amount = line.get("amount")
    return Transaction(
        kind,
        date.fromisoformat(line["date"]),
        line["ticker"],
        float(line["share_count"]),
        float(line["price"]),
        amount=None if amount is None else float(amount),
    )


class RecordStore:
    """JSON-lines persistence for the portfolio, asset and transaction streams.

    Each stream holds one JSON object per line and ends with an ``eof`` line;
    a stream without it was cut short and is rejected. Reads and writes run
    on a small worker pool and hand back futures.
    """

    def __init__(self, paths: RecordPaths, max_workers: int = 3) -> None:
        self._paths = paths
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="records")

    @property
    def paths(self) -> RecordPaths:
        return self._paths

    def initialize(self) -> None:
        """Create the records directory and empty streams on first use."""
        try:
            self._paths.directory.mkdir(parents=True, exist_ok=True)
            if not self._paths.portfolio.exists():
                self._write_lines(
                    self._paths.portfolio, [encode_portfolio(datetime.now(), {}, [])]
                )
            for path in (self._paths.assets, self._paths.transactions):
                if not path.exists():
                    self._write_lines(path, [])
        except OSError as exc:
            raise StorageFailure(f"Could not initialise records in {self._paths.directory}: {exc}") from exc

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # Reads

    def read_portfolio(self) -> "Future[Tuple[datetime, Dict[str, Allocation], List[DailyRecord]]]":
        return self._executor.submit(self._read_portfolio)

    def read_assets(self) -> "Future[Dict[str, List[DailyRecord]]]":
        return self._executor.submit(self._read_assets)

    def read_transactions(self) -> "Future[List[Transaction]]":
        return self._executor.submit(self._read_transactions)

    def load(self) -> LedgerSnapshot:
        """Read all three streams concurrently and combine them."""
        portfolio = self.read_portfolio()
        assets = self.read_assets()
        transactions = self.read_transactions()
        last_update, allocations, history = portfolio.result()
        asset_histories = assets.result()
        return LedgerSnapshot(
            last_update=last_update,
            allocations=allocations,
            portfolio_history=tuple(history),
            asset_histories={ticker: tuple(records) for ticker, records in asset_histories.items()},
            transactions=tuple(transactions.result()),
        )

    def _read_portfolio(self) -> Tuple[datetime, Dict[str, Allocation], List[DailyRecord]]:
        lines = list(self._read_lines(self._paths.portfolio))
        if len(lines) != 1 or lines[0].get("kind") != "portfolio":
            raise StorageFailure(f"{self._paths.portfolio} must hold exactly one portfolio record.")
        return self._decode(self._paths.portfolio, decode_portfolio, lines[0])

    def _read_assets(self) -> Dict[str, List[DailyRecord]]:
        assets = {}
        for line in self._read_lines(self._paths.assets):
            ticker, history = self._decode(self._paths.assets, decode_asset, line)
            assets[ticker] = history
        logger.info("Loaded %d asset histories", len(assets))
        return assets

    def _read_transactions(self) -> List[Transaction]:
        return [
            self._decode(self._paths.transactions, decode_transaction, line)
            for line in self._read_lines(self._paths.transactions)
        ]

    @staticmethod
    def _decode(path: Path, decoder, line):
        try:
            return decoder(line)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageFailure(f"Malformed record in {path}: {exc}") from exc

    @staticmethod
    def _read_lines(path: Path) -> Iterator[Dict[str, Any]]:
        logger.info("Reading %s", path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                lines = []
                for raw in handle:
                    if not raw.strip():
                        continue
                    line = json.loads(raw)
                    if line.get("kind") == "eof":
                        return iter(lines)
                    lines.append(line)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageFailure(f"Could not read {path}: {exc}") from exc
        raise StorageFailure(f"{path} ended without an EOF record.")

    # Writes

    def write_portfolio(
        self,
        last_update: datetime,
        allocations: Mapping[str, Allocation],
        history: Iterable[DailyRecord],
    ) -> "Future[None]":
        line = encode_portfolio(last_update, allocations, history)
        return self._executor.submit(self._write_lines, self._paths.portfolio, [line])

    def write_assets(self, histories: Mapping[str, Iterable[DailyRecord]]) -> "Future[None]":
        lines = [encode_asset(ticker, history) for ticker, history in sorted(histories.items())]
        return self._executor.submit(self._write_lines, self._paths.assets, lines)

    def write_transactions(self, transactions: Iterable[Transaction]) -> "Future[None]":
        lines = [encode_transaction(txn) for txn in transactions]
        return self._executor.submit(self._write_lines, self._paths.transactions, lines)

    def save(self, snapshot: LedgerSnapshot) -> List["Future[None]"]:
        return [
            self.write_portfolio(snapshot.last_update, snapshot.allocations, snapshot.portfolio_history),
            self.write_assets(snapshot.asset_histories),
            self.write_transactions(snapshot.transactions),
        ]

    @staticmethod
    def _write_lines(path: Path, lines: List[Dict[str, Any]]) -> None:
        logger.info("Writing %d records to %s", len(lines), path)
        try:
            fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    for line in [*lines, EOF_LINE]:
                        handle.write(json.dumps(line))
                        handle.write("\n")
                os.replace(temp_name, path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise StorageFailure(f"Could not write {path}: {exc}") from exc
