"""Common messaging primitives for service feedback."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import LedgerError


class MessageLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ServiceMessage:
    level: MessageLevel
    text: str

    @classmethod
    def from_error(cls, error: LedgerError) -> "ServiceMessage":
        level = MessageLevel.WARNING if error.warning_only else MessageLevel.ERROR
        return cls(level, str(error))
