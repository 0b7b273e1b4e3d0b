"""Remote directory provider abstract class and operation decorator.

This module defines the DirectoryProvider abstract base class that the batch
orchestrator depends on, plus the directory_operation decorator that turns
provider return values and exceptions into OperationResult envelopes.

Key separation of concerns:
  - infrastructure/operations: OperationResult, OperationStatus, HTTP classifiers
  - base.py: Abstract provider contract and operation decorator
  - gitlab.py: GitLab adapter implementing the contract
"""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from core.logging import get_module_logger
from infrastructure.operations import OperationResult, OperationStatus
from modules.membership.domain.errors import IntegrationError
from modules.membership.domain.models import (
    BatchResult,
    ProjectMember,
    ProjectRef,
)

logger = get_module_logger()

__all__ = [
    "DirectoryProvider",
    "directory_operation",
    "OperationResult",
    "OperationStatus",
]


def directory_operation(func):
    """Decorator for provider operations with error classification.

    Handles:
    - OperationResult pass-through (avoid double-wrapping)
    - Success data wrapping
    - Exception classification via the provider's classify_error() method
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            result = func(self, *args, **kwargs)
            if isinstance(result, OperationResult):
                return result
            return OperationResult(
                status=OperationStatus.SUCCESS, message="ok", data=result
            )
        except Exception as e:  # pylint: disable=broad-except
            return self.classify_error(e)

    return wrapper


class DirectoryProvider(ABC):
    """Abstract base class for remote directory providers.

    Read and single-member operations return OperationResult. The bulk
    remove operation returns a BatchResult partitioned by the remote side and
    raises RemoteTransportError when the call cannot be completed.
    """

    name: str = "directory"

    def classify_error(self, exc: Exception) -> OperationResult:
        """Classify an exception raised inside a provider operation.

        IntegrationError carries the OperationResult reported by the
        integration and is returned as is. Anything else is treated as a
        transient error with the exception text as the message.
        """
        if isinstance(exc, IntegrationError) and isinstance(
            exc.response, OperationResult
        ):
            return exc.response
        logger.warning(
            "directory_operation_exception",
            provider=self.name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return OperationResult.transient_error(str(exc))

    @abstractmethod
    def search_projects(
        self, keyword: str, page: int = 1, page_size: int = 20
    ) -> OperationResult:
        """Search projects; data is a Page[ProjectSummary]."""

    @abstractmethod
    def list_members(
        self, project: ProjectRef, page: int = 1, page_size: int = 20
    ) -> OperationResult:
        """List one page of project members; data is a Page[ProjectMember]."""

    @abstractmethod
    def add_member(
        self,
        project: ProjectRef,
        user_id: int,
        access_level: int,
        expires_at: Optional[str] = None,
    ) -> OperationResult:
        """Add a single member. Failures carry the remote message."""

    @abstractmethod
    def remove_members(
        self, project: ProjectRef, user_ids: Iterable[int]
    ) -> BatchResult:
        """Remove several members in one logical call.

        Raises:
            RemoteTransportError: The call could not be completed.
        """

    def list_all_members(
        self, project: ProjectRef, page_size: int = 100
    ) -> List[ProjectMember]:
        """Walk every page of a project's member listing.

        Raises:
            IntegrationError: Any page could not be fetched.
        """
        members: List[ProjectMember] = []
        page = 1
        while True:
            result = self.list_members(project, page=page, page_size=page_size)
            if not result.is_success:
                raise IntegrationError(result.message, response=result)
            rows = result.data.items
            members.extend(rows)
            if len(rows) < page_size:
                break
            page += 1
        return members
