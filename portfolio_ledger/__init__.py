"""Portfolio ledger domain package."""

from .config import RecordPaths
from .errors import (
    HistoryMisaligned,
    InvalidTransactionDate,
    LedgerBusy,
    LedgerError,
    NoDataForRange,
    RequestCancelled,
    StorageFailure,
    TickerNotFound,
    TransportFailure,
    UnknownTransaction,
)
from .messages import MessageLevel, ServiceMessage
from .models import (
    Allocation,
    DailyRecord,
    PatchSummary,
    RefreshSummary,
    SeriesKind,
    Transaction,
    TransactionKind,
    TransactionResult,
    inverse,
)
from .repositories import RecordStore
from .services import (
    AllocationTable,
    Ledger,
    LedgerSession,
    PerformanceMode,
    PortfolioRecord,
    PriceHistoryService,
)
from .timeseries import TimeSeries

__all__ = [
    "Allocation",
    "AllocationTable",
    "DailyRecord",
    "HistoryMisaligned",
    "InvalidTransactionDate",
    "Ledger",
    "LedgerBusy",
    "LedgerError",
    "LedgerSession",
    "MessageLevel",
    "NoDataForRange",
    "PatchSummary",
    "PerformanceMode",
    "PortfolioRecord",
    "PriceHistoryService",
    "RecordPaths",
    "RecordStore",
    "RefreshSummary",
    "RequestCancelled",
    "SeriesKind",
    "ServiceMessage",
    "StorageFailure",
    "TickerNotFound",
    "TimeSeries",
    "Transaction",
    "TransactionKind",
    "TransactionResult",
    "TransportFailure",
    "UnknownTransaction",
    "inverse",
]
