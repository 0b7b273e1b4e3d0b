"""Shared fixtures for membership module tests."""

from typing import Dict, Iterable, List, Optional, Union

import pytest

from modules.membership.domain.models import BatchResult, Page
from modules.membership.orchestration import BatchOrchestrator
from modules.membership.progress import CollectingProgressReporter
from modules.membership.providers.base import (
    DirectoryProvider,
    OperationResult,
    directory_operation,
)


class FakeDirectory(DirectoryProvider):
    """DirectoryProvider double that records every call.

    add_outcomes maps a user id to an OperationResult to return, or to an
    exception to raise; unlisted users are added successfully.
    """

    name = "fake"

    def __init__(
        self,
        add_outcomes: Optional[Dict[int, Union[OperationResult, Exception]]] = None,
        remove_result: Optional[BatchResult] = None,
        remove_error: Optional[Exception] = None,
    ):
        self.add_outcomes = add_outcomes or {}
        self.remove_result = remove_result
        self.remove_error = remove_error
        self.calls: List[tuple] = []

    @directory_operation
    def search_projects(self, keyword: str, page: int = 1, page_size: int = 20):
        self.calls.append(("search_projects", keyword, page, page_size))
        return Page(items=[], total=0, page=page, page_size=page_size)

    @directory_operation
    def list_members(self, project, page: int = 1, page_size: int = 20):
        self.calls.append(("list_members", project, page, page_size))
        return Page(items=[], total=0, page=page, page_size=page_size)

    def add_member(self, project, user_id, access_level, expires_at=None):
        self.calls.append(("add_member", project, user_id, access_level, expires_at))
        outcome = self.add_outcomes.get(user_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return OperationResult.success(message="added")
        return outcome

    def remove_members(self, project, user_ids: Iterable[int]) -> BatchResult:
        user_ids = list(user_ids)
        self.calls.append(("remove_members", project, user_ids))
        if self.remove_error is not None:
            raise self.remove_error
        if self.remove_result is not None:
            return self.remove_result
        return BatchResult(success_user_ids=set(user_ids))

    @property
    def remote_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("add_member", "remove_members")]


@pytest.fixture
def fake_directory():
    return FakeDirectory()


@pytest.fixture
def replacement_directory():
    """A second directory, for tests that swap connections."""
    return FakeDirectory()


@pytest.fixture
def progress_reporter():
    return CollectingProgressReporter()


@pytest.fixture
def make_orchestrator(member_store, progress_reporter):
    """Factory building an orchestrator over a FakeDirectory.

    Usage:
        orchestrator, directory = make_orchestrator(add_outcomes={2: err})
    """

    def _factory(**directory_kwargs):
        directory = FakeDirectory(**directory_kwargs)
        orchestrator = BatchOrchestrator(
            directory, store=member_store, reporter=progress_reporter
        )
        return orchestrator, directory

    return _factory
