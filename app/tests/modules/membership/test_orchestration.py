from datetime import date

import pytest
import requests

from modules.membership.domain.errors import (
    BatchInProgressError,
    GroupNotFoundError,
    PreconditionError,
    RemoteTransportError,
)
from modules.membership.domain.models import (
    BatchItemFailure,
    BatchOperation,
    BatchResult,
    BatchStatus,
    GroupSelection,
    UserSelection,
)
from modules.membership.orchestration import BatchOrchestrator
from modules.membership.providers.base import OperationResult

PROJECT = "group/app"


def _assert_partition(result: BatchResult, input_ids):
    failed_ids = [f.user_id for f in result.failed]
    assert len(failed_ids) == len(set(failed_ids))
    assert result.success_user_ids.isdisjoint(failed_ids)
    assert result.success_user_ids | set(failed_ids) == set(input_ids)


class TestRunAddBatch:
    def test_mixed_outcomes_scenario(self, make_orchestrator):
        orchestrator, directory = make_orchestrator(
            add_outcomes={
                1: OperationResult.permanent_error(
                    "already a member", error_code="ALREADY_MEMBER", status_code=409
                ),
                3: OperationResult.permanent_error("insufficient access"),
            }
        )

        result = orchestrator.run_add_batch(PROJECT, [1, 2, 3], 30)

        assert result.success_user_ids == {1, 2}
        assert result.failed == [BatchItemFailure(user_id=3, reason="insufficient access")]
        assert orchestrator.progress.processed == 3
        assert orchestrator.progress.status == BatchStatus.DONE
        _assert_partition(result, [1, 2, 3])

    def test_calls_directory_once_per_user_in_order(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        orchestrator.run_add_batch(PROJECT, [5, 3, 9], 40, expires_at="2030-01-31")

        assert directory.remote_calls == [
            ("add_member", PROJECT, 5, 40, "2030-01-31"),
            ("add_member", PROJECT, 3, 40, "2030-01-31"),
            ("add_member", PROJECT, 9, 40, "2030-01-31"),
        ]

    def test_structured_failure_reason_is_extracted(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(
            add_outcomes={
                2: OperationResult.permanent_error(
                    'GitLab API error 400: {"message":["access level too low"]}',
                    status_code=400,
                )
            }
        )

        result = orchestrator.run_add_batch(PROJECT, [1, 2], 30)

        assert result.failed == [BatchItemFailure(user_id=2, reason="access level too low")]

    def test_raised_exception_is_recorded_and_batch_continues(self, make_orchestrator):
        orchestrator, directory = make_orchestrator(
            add_outcomes={1: RuntimeError("network timeout")}
        )

        result = orchestrator.run_add_batch(PROJECT, [1, 2, 3], 30)

        assert result.success_user_ids == {2, 3}
        assert result.failed == [BatchItemFailure(user_id=1, reason="network timeout")]
        assert len(directory.remote_calls) == 3

    def test_every_user_failing_still_completes(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(
            add_outcomes={
                uid: OperationResult.transient_error("GitLab API error 503: down")
                for uid in (1, 2, 3, 4)
            }
        )

        result = orchestrator.run_add_batch(PROJECT, [1, 2, 3, 4], 20)

        assert result.success_user_ids == set()
        assert [f.user_id for f in result.failed] == [1, 2, 3, 4]
        assert all(f.reason == "GitLab API error 503: down" for f in result.failed)
        _assert_partition(result, [1, 2, 3, 4])

    def test_progress_advances_by_one_per_item(self, make_orchestrator, progress_reporter):
        orchestrator, _ = make_orchestrator(
            add_outcomes={2: OperationResult.permanent_error("nope")}
        )

        orchestrator.run_add_batch(PROJECT, [1, 2, 3], 30)

        snapshots = progress_reporter.snapshots
        processed = [s.processed for s in snapshots]
        assert processed == [0, 0, 1, 1, 2, 2, 3, 3]
        for previous, current in zip(processed, processed[1:]):
            assert current - previous in (0, 1)
        for snapshot in snapshots:
            assert snapshot.total == 3
            assert snapshot.processed <= snapshot.total
            assert snapshot.processed == snapshot.success_count + len(snapshot.failed)
        assert snapshots[0].status == BatchStatus.RUNNING
        assert snapshots[-1].status == BatchStatus.DONE
        assert sum(1 for s in snapshots if s.status == BatchStatus.DONE) == 1
        assert len({s.batch_id for s in snapshots}) == 1

    def test_current_user_label_uses_given_labels(self, make_orchestrator, progress_reporter):
        orchestrator, _ = make_orchestrator()

        orchestrator.run_add_batch(PROJECT, [1, 2], 30, labels={1: "alice"})

        labels = [s.current_user_label for s in progress_reporter.snapshots]
        assert "alice" in labels
        assert "2" in labels
        assert progress_reporter.latest.current_user_label is None

    def test_duplicate_user_ids_are_processed_once(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        result = orchestrator.run_add_batch(PROJECT, [1, 1, 2], 30)

        assert [c[2] for c in directory.remote_calls] == [1, 2]
        assert result.success_user_ids == {1, 2}
        assert orchestrator.progress.total == 2

    def test_date_expiry_is_sent_as_iso_string(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        orchestrator.run_add_batch(PROJECT, [1], 30, expires_at=date(2031, 2, 3))

        assert directory.remote_calls[0][4] == "2031-02-03"

    def test_blank_expiry_is_absent(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        orchestrator.run_add_batch(PROJECT, [1], 30, expires_at="   ")

        assert directory.remote_calls[0][4] is None

    def test_numeric_project_is_passed_through(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        orchestrator.run_add_batch(42, [1], 30)

        assert directory.remote_calls[0][1] == 42

    def test_non_operation_result_return_is_a_failure(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()
        directory.add_outcomes[1] = {"ok": True}

        result = orchestrator.run_add_batch(PROJECT, [1], 30)

        assert result.success_user_ids == set()
        assert "expected OperationResult" in result.failed[0].reason


class TestAddPreconditions:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"project": PROJECT, "user_ids": [], "access_level": 30},
            {"project": "   ", "user_ids": [1], "access_level": 30},
            {"project": None, "user_ids": [1], "access_level": 30},
            {"project": 0, "user_ids": [1], "access_level": 30},
            {"project": PROJECT, "user_ids": [0], "access_level": 30},
            {"project": PROJECT, "user_ids": [1], "access_level": 35},
            {"project": PROJECT, "user_ids": [1], "access_level": 30, "expires_at": "2024-13-01"},
        ],
    )
    def test_invalid_input_fails_before_any_remote_call(
        self, make_orchestrator, progress_reporter, kwargs
    ):
        orchestrator, directory = make_orchestrator()

        with pytest.raises(PreconditionError):
            orchestrator.run_add_batch(**kwargs)

        assert directory.remote_calls == []
        assert progress_reporter.snapshots == []
        assert orchestrator.progress.status == BatchStatus.IDLE

    def test_precondition_error_is_a_value_error(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()

        with pytest.raises(ValueError):
            orchestrator.run_add_batch(PROJECT, [], 30)


class TestSelections:
    def test_empty_local_group_fails_before_any_remote_call(
        self, make_orchestrator, member_store
    ):
        orchestrator, directory = make_orchestrator()
        group = member_store.create_group("empty")

        with pytest.raises(PreconditionError):
            orchestrator.add_from_selection(PROJECT, GroupSelection(group.id), 30)

        assert directory.remote_calls == []
        assert orchestrator.progress.status == BatchStatus.IDLE

    def test_empty_group_remove_fails_before_any_remote_call(
        self, make_orchestrator, member_store
    ):
        orchestrator, directory = make_orchestrator()
        group = member_store.create_group("empty")

        with pytest.raises(PreconditionError):
            orchestrator.remove_from_selection(PROJECT, GroupSelection(group.id))

        assert directory.remote_calls == []

    def test_unknown_group_propagates_store_error(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        with pytest.raises(GroupNotFoundError):
            orchestrator.add_from_selection(PROJECT, GroupSelection(999), 30)

        assert directory.remote_calls == []

    def test_group_selection_adds_every_group_member(
        self, make_orchestrator, member_store, local_member_factory, progress_reporter
    ):
        orchestrator, directory = make_orchestrator()
        member_store.upsert(local_member_factory(n=4))
        group = member_store.create_group("team")
        member_store.add_to_group(group.id, [3, 1, 2])

        result = orchestrator.add_from_selection(PROJECT, GroupSelection(group.id), 30)

        assert result.success_user_ids == {1, 2, 3}
        assert [c[2] for c in directory.remote_calls] == [1, 2, 3]
        labels = {s.current_user_label for s in progress_reporter.snapshots}
        assert {"user1", "user2", "user3"} <= labels

    def test_user_selection_keeps_labels(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()

        targets = orchestrator.resolve_targets(
            UserSelection(user_ids=[2, 1, 2], labels={1: "bob"})
        )

        assert targets.user_ids == [2, 1]
        assert targets.labels == {1: "bob"}

    def test_group_selection_without_store_is_rejected(self, fake_directory):
        orchestrator = BatchOrchestrator(fake_directory)

        with pytest.raises(PreconditionError):
            orchestrator.resolve_user_ids(GroupSelection(1))


class TestRunRemoveBatch:
    def test_transport_failure_fails_whole_operation(self, make_orchestrator):
        orchestrator, directory = make_orchestrator(
            remove_error=RemoteTransportError("GitLab request failed: connection reset")
        )

        with pytest.raises(RemoteTransportError):
            orchestrator.run_remove_batch(PROJECT, [1, 2, 3, 4, 5])

        assert directory.remote_calls == [("remove_members", PROJECT, [1, 2, 3, 4, 5])]
        assert orchestrator.progress.status == BatchStatus.IDLE
        assert not orchestrator.is_running

    def test_partial_failure_response_produces_result(self, make_orchestrator):
        reported = BatchResult(
            success_user_ids={1, 2, 3},
            failed=[
                BatchItemFailure(user_id=4, reason="GitLab API error 403: forbidden"),
                BatchItemFailure(user_id=5, reason="GitLab API error 403: forbidden"),
            ],
        )
        orchestrator, directory = make_orchestrator(remove_result=reported)

        result = orchestrator.run_remove_batch(PROJECT, [1, 2, 3, 4, 5])

        assert result is reported
        assert [f.user_id for f in result.failed] == [4, 5]
        assert len(directory.remote_calls) == 1
        progress = orchestrator.progress
        assert progress.status == BatchStatus.DONE
        assert progress.operation == BatchOperation.REMOVE
        assert (progress.total, progress.processed, progress.success_count) == (5, 5, 3)
        _assert_partition(result, [1, 2, 3, 4, 5])

    def test_remove_publishes_start_and_terminal_snapshot(
        self, make_orchestrator, progress_reporter
    ):
        orchestrator, _ = make_orchestrator()

        orchestrator.run_remove_batch(PROJECT, [1, 2])

        statuses = [s.status for s in progress_reporter.snapshots]
        assert statuses == [BatchStatus.RUNNING, BatchStatus.DONE]
        assert [s.processed for s in progress_reporter.snapshots] == [0, 2]

    def test_unexpected_exception_becomes_transport_error(self, make_orchestrator):
        cause = requests.ConnectionError("connection refused")
        orchestrator, _ = make_orchestrator(remove_error=cause)

        with pytest.raises(RemoteTransportError) as exc_info:
            orchestrator.run_remove_batch(PROJECT, [1])

        assert exc_info.value.__cause__ is cause

    def test_remove_from_user_selection(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        result = orchestrator.remove_from_selection(PROJECT, UserSelection([7, 8]))

        assert result.success_user_ids == {7, 8}
        assert directory.remote_calls == [("remove_members", PROJECT, [7, 8])]

    def test_empty_ids_fail_before_remote_call(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()

        with pytest.raises(PreconditionError):
            orchestrator.run_remove_batch(PROJECT, [])

        assert directory.remote_calls == []


class TestReentrancy:
    def test_second_batch_is_rejected_while_one_runs(self, make_orchestrator):
        orchestrator, directory = make_orchestrator()
        orchestrator._run_lock.acquire()
        try:
            with pytest.raises(BatchInProgressError):
                orchestrator.run_add_batch(PROJECT, [1], 30)
            with pytest.raises(BatchInProgressError):
                orchestrator.run_remove_batch(PROJECT, [1])
            with pytest.raises(BatchInProgressError):
                orchestrator.reset_progress()
        finally:
            orchestrator._run_lock.release()

        assert directory.remote_calls == []

    def test_batches_run_back_to_back(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()

        first = orchestrator.run_add_batch(PROJECT, [1], 30)
        first_batch_id = orchestrator.progress.batch_id
        second = orchestrator.run_remove_batch(PROJECT, [1])

        assert first.success_user_ids == {1}
        assert second.success_user_ids == {1}
        assert orchestrator.progress.batch_id != first_batch_id

    def test_reporter_failure_releases_the_batch(self, fake_directory):
        class ExplodingReporter:
            def publish(self, snapshot):
                raise RuntimeError("reporter down")

        orchestrator = BatchOrchestrator(fake_directory, reporter=ExplodingReporter())

        with pytest.raises(RuntimeError):
            orchestrator.run_add_batch(PROJECT, [1], 30)

        assert not orchestrator.is_running
        assert orchestrator.progress.status == BatchStatus.IDLE

    def test_reset_progress_returns_to_idle(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()
        orchestrator.run_add_batch(PROJECT, [1], 30)

        snapshot = orchestrator.reset_progress()

        assert snapshot.status == BatchStatus.IDLE
        assert orchestrator.progress.total == 0


class TestReplaceDirectory:
    def test_later_batches_use_the_new_directory(
        self, make_orchestrator, replacement_directory
    ):
        orchestrator, directory = make_orchestrator()

        previous = orchestrator.replace_directory(replacement_directory)
        orchestrator.run_add_batch(PROJECT, [1], 30)

        assert previous is directory
        assert orchestrator.directory is replacement_directory
        assert directory.remote_calls == []
        assert replacement_directory.remote_calls == [("add_member", PROJECT, 1, 30, None)]

    def test_rejected_while_a_batch_runs(self, make_orchestrator, replacement_directory):
        orchestrator, directory = make_orchestrator()
        errors = []
        add_member = directory.add_member

        def swap_then_add(*args, **kwargs):
            try:
                orchestrator.replace_directory(replacement_directory)
            except BatchInProgressError as e:
                errors.append(e)
            return add_member(*args, **kwargs)

        directory.add_member = swap_then_add

        result = orchestrator.run_add_batch(PROJECT, [1, 2], 30)

        assert result.success_user_ids == {1, 2}
        assert len(errors) == 2
        assert orchestrator.directory is directory
        assert not orchestrator.is_running
