"""Single-writer front door to the ledger."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import date, datetime
from typing import Callable, Optional

from ..config import RecordPaths
from ..errors import LedgerBusy, LedgerError, StorageFailure
from ..messages import MessageLevel, ServiceMessage
from ..models import RefreshSummary, Transaction, TransactionResult
from ..repositories import RecordStore
from .history import PriceHistoryService
from .ledger import Ledger

logger = logging.getLogger(__name__)

# One job running plus one waiting.
QUEUE_DEPTH = 2


class LedgerSession:
    """Runs every ledger mutation on one worker thread.

    Recoverable failures come back as messages on the
    :class:`TransactionResult`; fatal ones are raised from the future.
    """

    def __init__(
        self,
        ledger: Ledger,
        store: RecordStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger")
        self._slots = threading.BoundedSemaphore(QUEUE_DEPTH)
        self._closed = False

    @classmethod
    def open(
        cls,
        paths: Optional[RecordPaths] = None,
        gateway: Optional[PriceHistoryService] = None,
        clock: Callable[[], datetime] = datetime.now,
        today: Callable[[], date] = date.today,
    ) -> "LedgerSession":
        store = RecordStore(paths or RecordPaths.from_env())
        store.initialize()
        snapshot = store.load()
        ledger = Ledger.from_snapshot(snapshot, gateway or PriceHistoryService(), today=today)
        logger.info(
            "Opened ledger with %d transactions and %d asset histories",
            len(ledger.transactions),
            len(ledger.assets),
        )
        return cls(ledger, store, clock=clock)

    @property
    def ledger(self) -> Ledger:
        """The live ledger. Read it only once pending futures have resolved."""
        return self._ledger

    @property
    def dirty(self) -> bool:
        return self._ledger.dirty

    def view(self) -> "Future[Ledger]":
        """A detached copy of the ledger, taken between writer jobs."""
        return self._executor.submit(self._ledger.copy)

    def submit(self, txn: Transaction) -> "Future[TransactionResult]":
        return self._enqueue(lambda: self._apply(txn))

    def undo(self, txn: Transaction) -> "Future[TransactionResult]":
        return self._enqueue(lambda: self._undo(txn))

    def refresh(self, force: bool = False) -> "Future[TransactionResult]":
        return self._enqueue(lambda: self._refresh(force))

    def _enqueue(self, job: Callable[[], TransactionResult]) -> "Future[TransactionResult]":
        if self._closed:
            raise RuntimeError("LedgerSession is closed")
        if not self._slots.acquire(blocking=False):
            busy = LedgerBusy("A transaction is already being processed; try again shortly.")
            future: Future = Future()
            future.set_result(TransactionResult(messages=[ServiceMessage.from_error(busy)]))
            return future
        try:
            return self._executor.submit(self._run, job)
        except BaseException:
            self._slots.release()
            raise

    def _run(self, job: Callable[[], TransactionResult]) -> TransactionResult:
        try:
            return job()
        except LedgerError as exc:
            if exc.fatal:
                logger.error("Fatal ledger failure: %s", exc)
                raise
            logger.warning("Operation rejected: %s", exc)
            return TransactionResult(messages=[ServiceMessage.from_error(exc)])
        finally:
            self._slots.release()

    def _apply(self, txn: Transaction) -> TransactionResult:
        messages = []
        if self._ledger.needs_history(txn.ticker) and len(self._ledger.history):
            # Unheld tickers pick up history through today, so held series must be current first.
            refresh = self._ledger.refresh(self._clock())
            if refresh.records_added:
                messages.append(
                    ServiceMessage(
                        MessageLevel.INFO,
                        f"Portfolio refreshed with {refresh.records_added} new records.",
                    )
                )

        summary = self._ledger.apply_transaction(txn)
        messages.append(
            ServiceMessage(
                MessageLevel.INFO,
                f"{txn.label} of {txn.share_count:g} {txn.ticker} on {txn.date.isoformat()} recorded.",
            )
        )
        if summary.allocation_closed:
            messages.append(ServiceMessage(MessageLevel.INFO, f"Position in {txn.ticker} closed."))
        return TransactionResult(summary=summary, messages=messages)

    def _undo(self, txn: Transaction) -> TransactionResult:
        summary = self._ledger.undo_transaction(txn)
        message = ServiceMessage(
            MessageLevel.INFO,
            f"{txn.label} of {txn.share_count:g} {txn.ticker} on {txn.date.isoformat()} undone.",
        )
        return TransactionResult(summary=summary, messages=[message])

    def _refresh(self, force: bool) -> TransactionResult:
        now = self._clock()
        if not force and not self._ledger.portfolio.update_needed(now):
            return TransactionResult(summary=RefreshSummary(tickers=(), records_added=0, already_current=True))
        summary = self._ledger.refresh(now)
        messages = []
        if summary.records_added:
            messages.append(
                ServiceMessage(MessageLevel.INFO, f"Added {summary.records_added} days of history.")
            )
        return TransactionResult(summary=summary, messages=messages)

    def flush(self) -> None:
        """Write all three streams and wait for every write to finish."""
        futures = self._store.save(self._ledger.snapshot())
        wait(futures)
        failures = [future.exception() for future in futures if future.exception() is not None]
        if failures:
            error = failures[0]
            if isinstance(error, StorageFailure):
                raise error
            raise StorageFailure(f"Could not write records: {error}") from error
        self._ledger.dirty = False
        logger.info("Flushed ledger records to %s", self._store.paths.directory)

    def close(self) -> None:
        """Drain pending jobs, flush when dirty and release the workers."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        try:
            if self._ledger.dirty:
                self.flush()
        finally:
            self._store.close()
