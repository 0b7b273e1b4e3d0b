from unittest.mock import MagicMock, patch

import pytest

from modules.membership.domain.models import (
    BatchItemFailure,
    BatchOperation,
    BatchResult,
    BatchStatus,
    ProgressSnapshot,
)
from modules.membership.progress import (
    CollectingProgressReporter,
    CompositeProgressReporter,
    LoggingProgressReporter,
    NullProgressReporter,
    ProgressTracker,
)


@pytest.fixture
def reporter():
    return CollectingProgressReporter()


@pytest.fixture
def tracker(reporter):
    return ProgressTracker(reporter)


class TestProgressTracker:
    def test_initial_state_is_idle(self, tracker):
        assert tracker.status == BatchStatus.IDLE
        assert tracker.snapshot == ProgressSnapshot()

    def test_start_fixes_total_and_publishes(self, tracker, reporter):
        snapshot = tracker.start(3, BatchOperation.ADD, batch_id="b-1")

        assert snapshot.status == BatchStatus.RUNNING
        assert snapshot.total == 3
        assert snapshot.processed == 0
        assert snapshot.batch_id == "b-1"
        assert reporter.snapshots == [snapshot]

    def test_start_rejects_empty_batch(self, tracker):
        with pytest.raises(ValueError):
            tracker.start(0, BatchOperation.ADD)

    def test_start_rejects_running_batch(self, tracker):
        tracker.start(1, BatchOperation.ADD)

        with pytest.raises(RuntimeError):
            tracker.start(1, BatchOperation.REMOVE)

    def test_recording_requires_running_batch(self, tracker):
        with pytest.raises(RuntimeError):
            tracker.record_success()
        with pytest.raises(RuntimeError):
            tracker.record_failure(1, "boom")
        with pytest.raises(RuntimeError):
            tracker.finish()

    def test_processed_never_exceeds_total(self, tracker):
        tracker.start(1, BatchOperation.ADD)
        tracker.record_success()

        with pytest.raises(RuntimeError):
            tracker.record_failure(2, "late")

        assert tracker.snapshot.processed == 1

    def test_counts_stay_consistent(self, tracker, reporter):
        tracker.start(3, BatchOperation.ADD)
        tracker.begin_item("alice")
        tracker.record_success()
        tracker.begin_item("bob")
        tracker.record_failure(2, "denied")
        tracker.begin_item("carol")
        tracker.record_success()
        final = tracker.finish()

        assert final.status == BatchStatus.DONE
        assert final.success_count == 2
        assert final.failed == (BatchItemFailure(user_id=2, reason="denied"),)
        for snapshot in reporter.snapshots:
            assert snapshot.processed == snapshot.success_count + len(snapshot.failed)

    def test_begin_item_sets_current_label(self, tracker):
        tracker.start(1, BatchOperation.ADD)

        snapshot = tracker.begin_item("alice")

        assert snapshot.current_user_label == "alice"
        assert snapshot.processed == 0

    def test_complete_all_accounts_for_every_item(self, tracker):
        tracker.start(3, BatchOperation.REMOVE)

        final = tracker.complete_all(
            BatchResult(
                success_user_ids={1, 2},
                failed=[BatchItemFailure(user_id=3, reason="forbidden")],
            )
        )

        assert final.status == BatchStatus.DONE
        assert (final.processed, final.success_count, len(final.failed)) == (3, 2, 1)

    def test_complete_all_logs_size_mismatch(self, tracker):
        tracker.start(3, BatchOperation.REMOVE)

        with patch("modules.membership.progress.logger") as mock_logger:
            final = tracker.complete_all(BatchResult(success_user_ids={1}))

        assert final.status == BatchStatus.DONE
        assert (final.total, final.processed, final.success_count) == (3, 1, 1)
        assert final.processed == final.success_count + len(final.failed)
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "batch_result_size_mismatch"

    def test_reset_does_not_publish(self, tracker, reporter):
        tracker.start(1, BatchOperation.ADD)
        published = len(reporter.snapshots)

        snapshot = tracker.reset()

        assert snapshot.status == BatchStatus.IDLE
        assert len(reporter.snapshots) == published

    def test_defaults_to_null_reporter(self):
        tracker = ProgressTracker()
        tracker.start(1, BatchOperation.ADD)
        tracker.record_success()

        assert tracker.finish().is_done


class TestReporters:
    def test_collecting_reporter_latest_defaults_to_idle(self):
        reporter = CollectingProgressReporter()

        assert reporter.latest.status == BatchStatus.IDLE
        assert reporter.snapshots == []

    def test_collecting_reporter_history_limit(self):
        reporter = CollectingProgressReporter(history_limit=2)
        for processed in range(4):
            reporter.publish(ProgressSnapshot(total=4, processed=processed))

        assert [s.processed for s in reporter.snapshots] == [2, 3]
        assert reporter.latest.processed == 3

    def test_collecting_reporter_clear(self):
        reporter = CollectingProgressReporter()
        reporter.publish(ProgressSnapshot(total=1))

        reporter.clear()

        assert reporter.snapshots == []

    def test_composite_reporter_fans_out_in_order(self):
        first, second = MagicMock(), MagicMock()
        snapshot = ProgressSnapshot(total=1)

        CompositeProgressReporter([first, second]).publish(snapshot)

        first.publish.assert_called_once_with(snapshot)
        second.publish.assert_called_once_with(snapshot)

    def test_logging_reporter_emits_event(self):
        snapshot = ProgressSnapshot(
            status=BatchStatus.RUNNING,
            operation=BatchOperation.ADD,
            total=2,
            processed=1,
            success_count=1,
            batch_id="b-1",
        )

        with patch("modules.membership.progress.logger") as mock_logger:
            LoggingProgressReporter().publish(snapshot)

        mock_logger.info.assert_called_once()
        args, kwargs = mock_logger.info.call_args
        assert args[0] == "batch_progress"
        assert kwargs["operation"] == "add"
        assert kwargs["processed"] == 1
        assert kwargs["failed_count"] == 0

    def test_null_reporter_accepts_snapshots(self):
        assert NullProgressReporter().publish(ProgressSnapshot()) is None
