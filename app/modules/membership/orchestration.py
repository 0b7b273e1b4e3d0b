"""Batch membership reconciliation.

The BatchOrchestrator applies one membership operation (add or remove) to a
set of users on a remote project and reports per-item outcomes:

- Adds are issued one user at a time, in input order. A failed call never
  stops the batch; its message is classified (see classification.py) and
  either absorbed as an idempotent success or recorded as a failure.
- Removes are delegated to the directory's bulk call in one round trip. The
  partition the directory returns is authoritative. If the call cannot be
  completed at all, the whole operation fails and no result is produced.

Progress is pushed synchronously to the injected ProgressReporter. Only one
batch may run at a time per orchestrator; there is no cancellation. Stopping
the process mid-batch leaves the remote project partially updated.
"""

import threading
from datetime import date
from typing import Dict, Iterable, List, Optional, Protocol, Union
from uuid import uuid4

from core.logging import get_module_logger
from infrastructure.operations import OperationResult
from modules.membership.classification import classify_add_failure
from modules.membership.domain.errors import (
    BatchInProgressError,
    IntegrationError,
    PreconditionError,
    RemoteTransportError,
)
from modules.membership.domain.models import (
    AccessLevel,
    BatchOperation,
    BatchResult,
    GroupSelection,
    LocalMember,
    ProgressSnapshot,
    ProjectRef,
    Selection,
    UserSelection,
)
from modules.membership.progress import ProgressReporter, ProgressTracker
from modules.membership.providers.base import DirectoryProvider

logger = get_module_logger()

EMPTY_TARGETS_MESSAGE = "operation requires at least one target user"


class GroupMemberSource(Protocol):
    """The part of the local store needed to resolve group selections."""

    def list_group_members(self, group_id: int) -> List[LocalMember]:
        """Return the cached members of a local group."""


def _validate_project(project: Optional[ProjectRef]) -> ProjectRef:
    if project is None or isinstance(project, bool):
        raise PreconditionError("project is not resolved")
    if isinstance(project, int):
        if project <= 0:
            raise PreconditionError(f"invalid project id: {project}")
        return project
    if isinstance(project, str) and project.strip():
        return project.strip()
    raise PreconditionError("project is not resolved")


def _validate_user_ids(user_ids: Iterable[int]) -> List[int]:
    """Return the ids de-duplicated in first-seen order."""
    ordered: List[int] = []
    seen = set()
    for user_id in user_ids or []:
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
            raise PreconditionError(f"invalid user id: {user_id!r}")
        if user_id not in seen:
            seen.add(user_id)
            ordered.append(user_id)
    if not ordered:
        raise PreconditionError(EMPTY_TARGETS_MESSAGE)
    return ordered


def _validate_access_level(access_level: Union[int, AccessLevel]) -> AccessLevel:
    try:
        return AccessLevel(int(access_level))
    except (TypeError, ValueError) as e:
        raise PreconditionError(f"invalid access level: {access_level!r}") from e


def _normalize_expires_at(expires_at: Union[None, str, date]) -> Optional[str]:
    """Return an ISO date string, or None when absent or blank."""
    if expires_at is None:
        return None
    if isinstance(expires_at, date):
        return expires_at.isoformat()
    text = str(expires_at).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError as e:
        raise PreconditionError(f"invalid expiry date: {text!r}") from e


class BatchOrchestrator:
    """Drive add/remove membership batches against a remote directory.

    Args:
        directory: Remote directory provider the batch calls into.
        store: Source of local group members, needed for group selections.
        reporter: Sink for progress snapshots.
    """

    def __init__(
        self,
        directory: DirectoryProvider,
        store: Optional[GroupMemberSource] = None,
        reporter: Optional[ProgressReporter] = None,
    ) -> None:
        self._directory = directory
        self._store = store
        self._tracker = ProgressTracker(reporter)
        self._run_lock = threading.Lock()

    @property
    def progress(self) -> ProgressSnapshot:
        """Latest progress snapshot; IDLE before the first batch."""
        return self._tracker.snapshot

    @property
    def directory(self) -> DirectoryProvider:
        return self._directory

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def replace_directory(self, directory: DirectoryProvider) -> DirectoryProvider:
        """Swap the remote directory used by later batches.

        Holds the batch guard for the swap, so a batch never sees two
        directories and a running batch blocks the change.

        Returns:
            The directory that was replaced.

        Raises:
            BatchInProgressError: A batch is running.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("directory_replace_rejected_batch_running")
            raise BatchInProgressError("cannot change the directory while a batch is running")
        try:
            previous, self._directory = self._directory, directory
        finally:
            self._run_lock.release()
        logger.info("directory_replaced", previous=previous.name, current=directory.name)
        return previous

    def reset_progress(self) -> ProgressSnapshot:
        """Discard the result of the last finished batch."""
        if self.is_running:
            raise BatchInProgressError("cannot reset progress while a batch is running")
        return self._tracker.reset()

    def resolve_targets(self, selection: Selection) -> UserSelection:
        """Resolve a selection into an ordered list of user ids with labels.

        Group selections read the group's members from the local store;
        store errors propagate unchanged.

        Raises:
            PreconditionError: The selection resolves to no users.
        """
        if isinstance(selection, UserSelection):
            user_ids = _validate_user_ids(selection.user_ids)
            return UserSelection(user_ids=user_ids, labels=dict(selection.labels))

        if isinstance(selection, GroupSelection):
            if self._store is None:
                raise PreconditionError("no local store available to resolve groups")
            members = self._store.list_group_members(selection.group_id)
            if not members:
                logger.info("group_selection_empty", group_id=selection.group_id)
                raise PreconditionError(EMPTY_TARGETS_MESSAGE)
            user_ids = _validate_user_ids(m.user_id for m in members)
            labels = {m.user_id: m.label for m in members}
            return UserSelection(user_ids=user_ids, labels=labels)

        raise PreconditionError(f"unsupported selection: {type(selection).__name__}")

    def resolve_user_ids(self, selection: Selection) -> List[int]:
        return self.resolve_targets(selection).user_ids

    def add_from_selection(
        self,
        project: ProjectRef,
        selection: Selection,
        access_level: Union[int, AccessLevel],
        expires_at: Union[None, str, date] = None,
    ) -> BatchResult:
        targets = self.resolve_targets(selection)
        return self.run_add_batch(
            project,
            targets.user_ids,
            access_level,
            expires_at=expires_at,
            labels=targets.labels,
        )

    def remove_from_selection(
        self, project: ProjectRef, selection: Selection
    ) -> BatchResult:
        targets = self.resolve_targets(selection)
        return self.run_remove_batch(project, targets.user_ids)

    def _acquire(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            logger.warning("batch_rejected_already_running")
            raise BatchInProgressError("a batch is already running")

    def _add_one(
        self,
        project: ProjectRef,
        user_id: int,
        access_level: AccessLevel,
        expires_at: Optional[str],
        log,
    ) -> Optional[str]:
        """Issue one add call; return None on success, else the failure message."""
        try:
            result = self._directory.add_member(
                project, user_id, int(access_level), expires_at=expires_at
            )
        except Exception as e:  # pylint: disable=broad-except
            log.warning(
                "batch_item_exception",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return str(e) or type(e).__name__

        if not isinstance(result, OperationResult):
            log.error(
                "directory_invalid_return_type",
                user_id=user_id,
                expected_type="OperationResult",
                actual_type=type(result).__name__,
            )
            return (
                f"{self._directory.__class__.__name__}.add_member() returned "
                f"{type(result).__name__}, expected OperationResult"
            )

        if result.is_success:
            return None
        return result.message

    def run_add_batch(
        self,
        project: ProjectRef,
        user_ids: Iterable[int],
        access_level: Union[int, AccessLevel],
        expires_at: Union[None, str, date] = None,
        labels: Optional[Dict[int, str]] = None,
    ) -> BatchResult:
        """Add users to a project one at a time.

        Args:
            project: Target project id or path.
            user_ids: Users to add, in processing order; duplicates are ignored.
            access_level: Access level granted to every user.
            expires_at: Optional membership expiry date.
            labels: Optional display labels (usernames) by user id.

        Returns:
            BatchResult accounting for every input user exactly once.

        Raises:
            PreconditionError: Invalid inputs; raised before any remote call.
            BatchInProgressError: Another batch is running.
        """
        project = _validate_project(project)
        ids = _validate_user_ids(user_ids)
        level = _validate_access_level(access_level)
        expiry = _normalize_expires_at(expires_at)
        labels = labels or {}

        self._acquire()
        batch_id = str(uuid4())
        log = logger.bind(batch_id=batch_id, operation="add", project=str(project))
        try:
            log.info(
                "batch_add_started",
                total=len(ids),
                access_level=int(level),
                expires_at=expiry,
            )
            self._tracker.start(len(ids), BatchOperation.ADD, batch_id=batch_id)
            successes = set()

            for user_id in ids:
                self._tracker.begin_item(labels.get(user_id) or str(user_id))
                message = self._add_one(project, user_id, level, expiry, log)

                if message is None:
                    successes.add(user_id)
                    self._tracker.record_success()
                    continue

                classification = classify_add_failure(message)
                if classification.treated_as_success:
                    log.info("batch_item_already_member", user_id=user_id)
                    successes.add(user_id)
                    self._tracker.record_success()
                else:
                    log.warning(
                        "batch_item_failed",
                        user_id=user_id,
                        reason=classification.reason,
                        rule=classification.rule,
                    )
                    self._tracker.record_failure(user_id, classification.reason)

            final = self._tracker.finish()
            result = BatchResult(success_user_ids=successes, failed=list(final.failed))
            log.info(
                "batch_add_completed",
                total=final.total,
                succeeded=len(result.success_user_ids),
                failed=len(result.failed),
            )
            return result
        except Exception:
            log.exception("batch_add_aborted")
            self._tracker.reset()
            raise
        finally:
            self._run_lock.release()

    def run_remove_batch(
        self, project: ProjectRef, user_ids: Iterable[int]
    ) -> BatchResult:
        """Remove users from a project with a single bulk call.

        Returns:
            The directory's BatchResult, unchanged.

        Raises:
            PreconditionError: Invalid inputs; raised before any remote call.
            BatchInProgressError: Another batch is running.
            RemoteTransportError: The remote call could not be completed.
        """
        project = _validate_project(project)
        ids = _validate_user_ids(user_ids)

        self._acquire()
        batch_id = str(uuid4())
        log = logger.bind(batch_id=batch_id, operation="remove", project=str(project))
        try:
            log.info("batch_remove_started", total=len(ids))
            self._tracker.start(len(ids), BatchOperation.REMOVE, batch_id=batch_id)

            try:
                result = self._directory.remove_members(project, ids)
            except IntegrationError as e:
                log.error("batch_remove_failed", error=str(e))
                self._tracker.reset()
                raise
            except Exception as e:  # pylint: disable=broad-except
                log.error(
                    "batch_remove_failed", error=str(e), error_type=type(e).__name__
                )
                self._tracker.reset()
                raise RemoteTransportError(str(e)) from e

            self._tracker.complete_all(result)
            log.info(
                "batch_remove_completed",
                total=len(ids),
                succeeded=len(result.success_user_ids),
                failed=len(result.failed),
            )
            return result
        finally:
            self._run_lock.release()
