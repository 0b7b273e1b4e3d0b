"""GitLab directory provider.

Adapts integrations.gitlab.GitLabClient to the DirectoryProvider contract:
normalizes raw payloads into domain models and implements the bulk removal
semantics the GitLab API lacks.
"""

from typing import Iterable, List, Optional

from core.logging import get_module_logger
from infrastructure.operations.classifiers import is_transport_failure
from integrations.gitlab.client import GitLabClient
from modules.membership.domain.errors import IntegrationError, RemoteTransportError
from modules.membership.domain.models import (
    BatchItemFailure,
    BatchResult,
    Page,
    ProjectRef,
    member_from_dict,
    project_from_dict,
)
from modules.membership.providers.base import (
    DirectoryProvider,
    OperationResult,
    directory_operation,
)

logger = get_module_logger()


class GitLabDirectory(DirectoryProvider):
    """DirectoryProvider backed by the GitLab REST API."""

    name = "gitlab"

    def __init__(self, client: GitLabClient) -> None:
        self._client = client

    @property
    def client(self) -> GitLabClient:
        return self._client

    def _unwrap(self, result: OperationResult) -> OperationResult:
        if not result.is_success:
            raise IntegrationError(result.message, response=result)
        return result

    @directory_operation
    def search_projects(self, keyword: str, page: int = 1, page_size: int = 20):
        result = self._unwrap(
            self._client.search_projects(keyword, page=page, per_page=page_size)
        )
        items = [project_from_dict(p) for p in result.data["items"]]
        return Page(
            items=items,
            total=result.data["total"],
            page=page,
            page_size=page_size,
        )

    @directory_operation
    def list_members(self, project: ProjectRef, page: int = 1, page_size: int = 20):
        result = self._unwrap(
            self._client.list_project_members(project, page=page, per_page=page_size)
        )
        items = [member_from_dict(m) for m in result.data["items"]]
        return Page(
            items=items,
            total=result.data["total"],
            page=page,
            page_size=page_size,
        )

    @directory_operation
    def add_member(
        self,
        project: ProjectRef,
        user_id: int,
        access_level: int,
        expires_at: Optional[str] = None,
    ):
        return self._client.add_project_member(
            project, user_id, access_level, expires_at=expires_at
        )

    def remove_members(
        self, project: ProjectRef, user_ids: Iterable[int]
    ) -> BatchResult:
        """Remove each user with one DELETE call and partition the outcomes.

        Non-members count as removed. API-level failures are recorded per user.
        If a request gets no response at all the whole call is aborted with
        RemoteTransportError; users removed before that point stay removed.
        """
        ordered: List[int] = list(dict.fromkeys(user_ids))
        result = BatchResult()

        for user_id in ordered:
            op = self._client.remove_project_member(project, user_id)
            if op.is_success:
                result.success_user_ids.add(user_id)
                continue

            if is_transport_failure(op):
                logger.error(
                    "gitlab_remove_members_aborted",
                    project=str(project),
                    user_id=user_id,
                    removed_before_abort=len(result.success_user_ids),
                    error=op.message,
                )
                raise RemoteTransportError(op.message, response=op)

            result.failed.append(BatchItemFailure(user_id=user_id, reason=op.message))

        return result
