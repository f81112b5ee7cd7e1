"""Service layer abstractions for the portfolio ledger."""
from .allocation import AllocationTable, is_collapsed
from .history import HistoryRequest, PriceHistoryService
from .ledger import Ledger, PortfolioRecord
from .performance import PerformanceMode, PerformancePoint, downsample, extract_range
from .session import LedgerSession
from .stats import (
    FiftyTwoWeekStats,
    GainLoss,
    StatsRow,
    allocation_breakdown,
    fifty_two_week_stats,
    gain_loss,
    summarize,
)

__all__ = [
    "AllocationTable",
    "FiftyTwoWeekStats",
    "GainLoss",
    "HistoryRequest",
    "Ledger",
    "LedgerSession",
    "PerformanceMode",
    "PerformancePoint",
    "PortfolioRecord",
    "PriceHistoryService",
    "StatsRow",
    "allocation_breakdown",
    "downsample",
    "extract_range",
    "fifty_two_week_stats",
    "gain_loss",
    "is_collapsed",
    "summarize",
]
