"""
Background consistency checks.

    editor thread                         worker thread
    ─────────────                         ─────────────
    submit(snapshot) ── deep copy ──▶     detect_conflicts(copy)  ┐ polls
         │                                RollingStockLedger(copy)┘ CancelToken
         ▼
    Future[CheckReport]  ◀──────────────  report (or CheckCancelled)

A new submit cancels the check in flight; its partial results are thrown
away. Checks are pure, so a cancelled one is simply run again next time.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from checker.crossings import detect_conflicts
from checker.schemas import ConflictRecord, CouplingIssue
from config import CHECKER_WORKERS
from errors import CheckCancelled, ConsistencyWarning
from snapshot import TimetableSnapshot

logger = logging.getLogger(__name__)


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CheckCancelled("Consistency check cancelled.")


@dataclass
class CheckReport:
    conflicts: list[ConflictRecord] = field(default_factory=list)
    coupling_issues: list[CouplingIssue] = field(default_factory=list)
    warnings: list[ConsistencyWarning] = field(default_factory=list)
    checked_jobs: set[int] | None = None  # None: every job


def run_checks(
    snapshot: TimetableSnapshot,
    cancel: CancelToken | None = None,
    only_jobs: set[int] | None = None,
) -> CheckReport:
    """Conflict detection followed by a rollingstock ledger replay."""
    conflicts = detect_conflicts(snapshot.graph, snapshot.jobs.values(), cancel, only_jobs)
    if cancel is not None:
        cancel.raise_if_cancelled()
    ledger = snapshot.ledger()
    return CheckReport(
        conflicts=conflicts,
        coupling_issues=list(ledger.issues),
        warnings=list(ledger.warnings),
        checked_jobs=only_jobs,
    )


class BackgroundChecker:
    def __init__(self, workers: int = CHECKER_WORKERS) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(workers, 1), thread_name_prefix="timetable-check"
        )
        self._lock = threading.Lock()
        self._token: CancelToken | None = None

    def submit(
        self, snapshot: TimetableSnapshot, only_jobs: set[int] | None = None
    ) -> Future:
        """
        Start a check on a private copy of snapshot. The returned future
        raises CheckCancelled if a later submit() or cancel() overtakes it.
        """
        frozen = snapshot.copy()
        token = CancelToken()
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._token = token
        logger.debug("Check submitted (%d jobs).", len(frozen.jobs))
        return self._executor.submit(self._run, frozen, token, only_jobs)

    def _run(
        self, snapshot: TimetableSnapshot, token: CancelToken, only_jobs: set[int] | None
    ) -> CheckReport:
        token.raise_if_cancelled()
        try:
            report = run_checks(snapshot, token, only_jobs)
        except CheckCancelled:
            logger.info("Check cancelled; partial report discarded.")
            raise
        logger.info(
            "Check done: %d conflicts, %d coupling issues.",
            len(report.conflicts), len(report.coupling_issues),
        )
        return report

    def cancel(self) -> None:
        with self._lock:
            if self._token is not None:
                self._token.cancel()
                self._token = None

    def shutdown(self, wait: bool = True) -> None:
        self.cancel()
        self._executor.shutdown(wait=wait)
