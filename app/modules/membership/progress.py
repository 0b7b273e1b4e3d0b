"""Progress model for batch runs.

A ProgressTracker owns the mutable counters of one batch and pushes an
immutable ProgressSnapshot to a ProgressReporter after every change. Reporters
are called synchronously on the batch's own execution path, so a reporter
that blocks stalls the batch.
"""

import threading
from dataclasses import replace
from typing import Iterable, List, Optional, Protocol

from core.logging import get_module_logger
from modules.membership.domain.models import (
    BatchItemFailure,
    BatchOperation,
    BatchResult,
    BatchStatus,
    ProgressSnapshot,
)

logger = get_module_logger()


class ProgressReporter(Protocol):
    """Sink for progress snapshots."""

    def publish(self, snapshot: ProgressSnapshot) -> None:
        """Receive the latest snapshot of the running batch."""


class NullProgressReporter:
    """Reporter that discards every snapshot."""

    def publish(self, snapshot: ProgressSnapshot) -> None:
        return None


class LoggingProgressReporter:
    """Reporter that emits one structured log event per snapshot."""

    def __init__(self, event: str = "batch_progress") -> None:
        self._event = event

    def publish(self, snapshot: ProgressSnapshot) -> None:
        logger.info(
            self._event,
            batch_id=snapshot.batch_id,
            operation=snapshot.operation.value if snapshot.operation else None,
            status=snapshot.status.value,
            total=snapshot.total,
            processed=snapshot.processed,
            success_count=snapshot.success_count,
            failed_count=len(snapshot.failed),
            current_user=snapshot.current_user_label,
        )


class CollectingProgressReporter:
    """Reporter that keeps snapshots in memory.

    Used by the HTTP layer to expose the latest snapshot while a batch runs
    and by tests to assert on the full sequence.

    Args:
        history_limit: Maximum number of snapshots kept; None keeps all.
    """

    def __init__(self, history_limit: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._history_limit = history_limit
        self._snapshots: List[ProgressSnapshot] = []

    def publish(self, snapshot: ProgressSnapshot) -> None:
        with self._lock:
            self._snapshots.append(snapshot)
            if self._history_limit is not None:
                overflow = len(self._snapshots) - self._history_limit
                if overflow > 0:
                    del self._snapshots[:overflow]

    @property
    def snapshots(self) -> List[ProgressSnapshot]:
        with self._lock:
            return list(self._snapshots)

    @property
    def latest(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else ProgressSnapshot()

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()


class CompositeProgressReporter:
    """Fan a snapshot out to several reporters, in order."""

    def __init__(self, reporters: Iterable[ProgressReporter]) -> None:
        self._reporters = list(reporters)

    def publish(self, snapshot: ProgressSnapshot) -> None:
        for reporter in self._reporters:
            reporter.publish(snapshot)


class ProgressTracker:
    """Mutable progress state of one batch run.

    Lifecycle: IDLE -> start() -> RUNNING -> finish()/complete_all() -> DONE.
    reset() returns to IDLE, discarding the previous run.

    Invariants:
        - total is fixed by start()
        - processed == success_count + len(failed) after every publish
        - processed never exceeds total
        - the DONE transition happens exactly once per run
    """

    def __init__(self, reporter: Optional[ProgressReporter] = None) -> None:
        self._reporter = reporter or NullProgressReporter()
        self._state = ProgressSnapshot()
        self._failed: List[BatchItemFailure] = []

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._state

    @property
    def status(self) -> BatchStatus:
        return self._state.status

    def _publish(self, **changes) -> ProgressSnapshot:
        self._state = replace(self._state, failed=tuple(self._failed), **changes)
        self._reporter.publish(self._state)
        return self._state

    def _require_running(self) -> None:
        if self._state.status != BatchStatus.RUNNING:
            raise RuntimeError(
                f"progress is {self._state.status.value}, expected running"
            )

    def _require_room(self) -> None:
        if self._state.processed >= self._state.total:
            raise RuntimeError(
                f"all {self._state.total} items already processed"
            )

    def start(
        self, total: int, operation: BatchOperation, batch_id: Optional[str] = None
    ) -> ProgressSnapshot:
        if self._state.status == BatchStatus.RUNNING:
            raise RuntimeError("progress is already running")
        if total < 1:
            raise ValueError("total must be at least 1")
        self._failed = []
        self._state = ProgressSnapshot(
            status=BatchStatus.RUNNING,
            operation=operation,
            total=total,
            batch_id=batch_id,
        )
        return self._publish()

    def begin_item(self, label: str) -> ProgressSnapshot:
        self._require_running()
        return self._publish(current_user_label=label)

    def record_success(self) -> ProgressSnapshot:
        self._require_running()
        self._require_room()
        return self._publish(
            processed=self._state.processed + 1,
            success_count=self._state.success_count + 1,
            current_user_label=None,
        )

    def record_failure(self, user_id: int, reason: str) -> ProgressSnapshot:
        self._require_running()
        self._require_room()
        self._failed.append(BatchItemFailure(user_id=user_id, reason=reason))
        return self._publish(
            processed=self._state.processed + 1,
            current_user_label=None,
        )

    def finish(self) -> ProgressSnapshot:
        self._require_running()
        return self._publish(status=BatchStatus.DONE, current_user_label=None)

    def complete_all(self, result: BatchResult) -> ProgressSnapshot:
        """Account for every item at once and finish.

        Used when the whole batch is a single remote round trip, so no
        per-item progress can be observed.

        processed is taken from the result, not from total, so that
        processed == success_count + len(failed) still holds. A directory
        that accounts for every requested id once lands exactly on total.
        One that reports a different number of ids finishes with
        processed != total; the result is kept as reported and
        batch_result_size_mismatch is logged.
        """
        self._require_running()
        if result.total != self._state.total:
            logger.warning(
                "batch_result_size_mismatch",
                batch_id=self._state.batch_id,
                expected=self._state.total,
                actual=result.total,
            )
        self._failed = list(result.failed)
        return self._publish(
            status=BatchStatus.DONE,
            processed=len(result.success_user_ids) + len(result.failed),
            success_count=len(result.success_user_ids),
            current_user_label=None,
        )

    def reset(self) -> ProgressSnapshot:
        self._failed = []
        self._state = ProgressSnapshot()
        return self._state
