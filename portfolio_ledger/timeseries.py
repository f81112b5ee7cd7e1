"""Date-ordered daily history for the portfolio or a single asset."""
from __future__ import annotations

from datetime import date
from typing import Iterable, Iterator, List, Optional, Sequence

import pandas as pd

from .models import DailyRecord


class TimeSeries:
    """An ordered run of :class:`DailyRecord` for one entity.

    Dates are strictly increasing. Records are immutable; patching replaces
    them positionally so untouched dates keep their original objects.
    """

    def __init__(self, entity: str, records: Iterable[DailyRecord] = ()) -> None:
        self.entity = entity
        self._records: List[DailyRecord] = list(records)
        self._check_order(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[DailyRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> DailyRecord:
        return self._records[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeSeries):
            return NotImplemented
        return self.entity == other.entity and self._records == other._records

    def __repr__(self) -> str:
        return f"TimeSeries({self.entity!r}, {len(self)} records)"

    @property
    def records(self) -> tuple[DailyRecord, ...]:
        return tuple(self._records)

    @property
    def latest(self) -> Optional[DailyRecord]:
        return self._records[-1] if self._records else None

    @property
    def first_date(self) -> Optional[date]:
        return self._records[0].date if self._records else None

    @property
    def last_date(self) -> Optional[date]:
        return self._records[-1].date if self._records else None

    def index_of(self, when: date) -> Optional[int]:
        """Position of the record dated ``when``, searching from the newest end."""
        for index in range(len(self._records) - 1, -1, -1):
            current = self._records[index].date
            if current == when:
                return index
            if current < when:
                break
        return None

    def suffix_from(self, when: date) -> Optional[List[DailyRecord]]:
        index = self.index_of(when)
        if index is None:
            return None
        return self._records[index:]

    def patch_suffix(self, records: Sequence[DailyRecord], start: int) -> None:
        """Overwrite records from ``start`` onward; a negative start replaces everything."""
        if start < 0:
            self._check_order(records)
            self._records = list(records)
            return
        if start + len(records) > len(self._records):
            raise IndexError(
                f"patch of {len(records)} records at {start} overruns {self.entity} history"
            )
        patched = self._records[:start] + list(records) + self._records[start + len(records):]
        self._check_order(patched)
        self._records = patched

    def append_history(self, records: Sequence[DailyRecord]) -> int:
        """Append newer records, replacing the stored last record when dates overlap.

        Incoming records older than the stored last record are ignored.
        Returns the number of records added net of any replacement.
        """
        if self._records:
            last = self._records[-1].date
            records = [record for record in records if record.date >= last]
        if not records:
            return 0
        before = len(self._records)
        merged = list(self._records)
        if merged and merged[-1].date == records[0].date:
            merged.pop()
        merged.extend(records)
        self._check_order(merged)
        self._records = merged
        return len(self._records) - before

    def trim_to(self, max_records: int) -> int:
        """Drop the oldest records beyond ``max_records``; returns how many were dropped."""
        excess = len(self._records) - max_records
        if excess <= 0:
            return 0
        self._records = self._records[excess:]
        return excess

    def truncate_before(self, lower_bound: date) -> None:
        self._records = [record for record in self._records if record.date >= lower_bound]

    def clear(self) -> None:
        self._records = []

    def copy(self) -> "TimeSeries":
        return TimeSeries(self.entity, self._records)

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "open_value",
            "close_value",
            "invested_capital",
            "high_value",
            "low_value",
            "share_count",
        ]
        if not self._records:
            return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name="date"))
        frame = pd.DataFrame(
            [
                {
                    "date": record.date,
                    "open_value": record.open_value,
                    "close_value": record.close_value,
                    "invested_capital": record.invested_capital,
                    "high_value": record.high_value,
                    "low_value": record.low_value,
                    "share_count": record.share_count,
                }
                for record in self._records
            ]
        )
        frame["date"] = pd.to_datetime(frame["date"])
        return frame.set_index("date").astype(float)

    @staticmethod
    def _check_order(records: Sequence[DailyRecord]) -> None:
        for previous, current in zip(records, records[1:]):
            if current.date <= previous.date:
                raise ValueError(
                    f"history dates must be strictly increasing ({previous.date} then {current.date})"
                )
