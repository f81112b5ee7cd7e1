"""Static configuration for the ledger and its collaborators."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

from dateutil.relativedelta import relativedelta

# Ten years of trading days.
MAX_HISTORY_RECORDS = 2520
HISTORY_YEARS = 10

STALENESS = timedelta(minutes=10)

MAX_DISPLAY_POINTS = 51

STATS_MIN_RECORDS = 260
STATS_WINDOW = relativedelta(weeks=52)

# Share counts are compared at this precision, truncating toward zero.
SHARE_PRECISION = Decimal("0.0001")

PORTFOLIO_ENTITY = "portfolio"
PORTFOLIO_LABEL = "My Portfolio"

RECORDS_DIR_ENV = "PORTFOLIO_RECORDS_DIR"
DEFAULT_RECORDS_DIR = "records"


@dataclass(frozen=True)
class RecordPaths:
    """Locations of the three persisted record streams."""

    directory: Path

    @property
    def portfolio(self) -> Path:
        return self.directory / "portfolio_data.jsonl"

    @property
    def assets(self) -> Path:
        return self.directory / "asset_data.jsonl"

    @property
    def transactions(self) -> Path:
        return self.directory / "transaction_data.jsonl"

    @classmethod
    def from_env(cls) -> "RecordPaths":
        return cls(Path(os.environ.get(RECORDS_DIR_ENV, DEFAULT_RECORDS_DIR)))
