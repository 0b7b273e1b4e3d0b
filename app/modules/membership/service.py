"""Service layer for the membership module.

Synchronous service functions that act as the application boundary for the
HTTP controllers. They accept Pydantic request models (from
`modules.membership.schemas`), call the store, the directory provider or the
batch orchestrator, and return domain objects for the controllers to render.

Process-wide state (the local store and the orchestrator, which owns the
active GitLab directory) is created by `initialize()` at startup. The
orchestrator lives as long as the process; replacing the GitLab settings at
runtime swaps its directory under the batch guard.
"""

import threading
from typing import List, Optional

from core.config import GitLabSettings, settings
from core.logging import get_module_logger
from integrations.gitlab.client import GitLabClient
from modules.membership import schemas
from modules.membership.domain.errors import (
    BatchInProgressError,
    IntegrationError,
    PreconditionError,
)
from modules.membership.domain.models import (
    BatchResult,
    GroupSelection,
    LocalGroup,
    LocalMember,
    Page,
    ProgressSnapshot,
    ProjectMember,
    ProjectRef,
    ProjectSummary,
    Selection,
    UserSelection,
)
from modules.membership.orchestration import BatchOrchestrator
from modules.membership.progress import (
    CollectingProgressReporter,
    CompositeProgressReporter,
    LoggingProgressReporter,
)
from modules.membership.providers import DirectoryProvider, GitLabDirectory
from modules.membership.store import LocalMembershipStore

logger = get_module_logger()

__all__ = [
    "initialize",
    "shutdown",
    "configure_gitlab",
    "get_gitlab_config",
    "search_projects",
    "list_project_members",
    "list_all_project_members",
    "save_local_members",
    "list_local_members",
    "delete_local_members",
    "list_groups",
    "create_group",
    "rename_group",
    "delete_group",
    "list_group_members",
    "add_group_members",
    "remove_group_members",
    "run_add_batch",
    "run_remove_batch",
    "get_progress",
]

# Only the latest snapshot is served over HTTP
PROGRESS_HISTORY_LIMIT = 100

_state_lock = threading.Lock()
_store: Optional[LocalMembershipStore] = None
_orchestrator: Optional[BatchOrchestrator] = None
_progress_log = CollectingProgressReporter(history_limit=PROGRESS_HISTORY_LIMIT)


def _directory_from_settings(gitlab_settings: GitLabSettings) -> DirectoryProvider:
    return GitLabDirectory(GitLabClient.from_settings(gitlab_settings))


def _close_directory(directory: Optional[DirectoryProvider]) -> None:
    if isinstance(directory, GitLabDirectory):
        directory.client.close()


def _build_orchestrator(
    directory: DirectoryProvider, store: LocalMembershipStore
) -> BatchOrchestrator:
    reporter = CompositeProgressReporter([_progress_log, LoggingProgressReporter()])
    return BatchOrchestrator(directory, store=store, reporter=reporter)


def initialize(
    store: Optional[LocalMembershipStore] = None,
    directory: Optional[DirectoryProvider] = None,
) -> None:
    """Create the process-wide store and orchestrator.

    Defaults are built from settings. The orchestrator is left unset when no
    GitLab token is configured; it is created on the first
    configure_gitlab().
    """
    global _store, _orchestrator  # pylint: disable=global-statement
    with _state_lock:
        if _store is not None and store is not None and _store is not store:
            _store.close()
        _store = store or _store or LocalMembershipStore.from_settings(settings.store)

        if directory is None and settings.gitlab.is_configured:
            directory = _directory_from_settings(settings.gitlab)
        _orchestrator = _build_orchestrator(directory, _store) if directory else None
        _progress_log.clear()

    logger.info(
        "membership_service_initialized",
        directory=directory.name if directory else None,
    )


def shutdown() -> None:
    global _store, _orchestrator  # pylint: disable=global-statement
    with _state_lock:
        if _orchestrator is not None:
            _close_directory(_orchestrator.directory)
        if _store is not None:
            _store.close()
        _store = None
        _orchestrator = None
    logger.info("membership_service_shutdown")


def _get_store() -> LocalMembershipStore:
    global _store  # pylint: disable=global-statement
    with _state_lock:
        if _store is None:
            _store = LocalMembershipStore.from_settings(settings.store)
        return _store


def _get_orchestrator() -> BatchOrchestrator:
    if _orchestrator is None:
        raise PreconditionError("GitLab is not configured")
    return _orchestrator


def _get_directory() -> DirectoryProvider:
    return _get_orchestrator().directory


def _project_ref(project: str) -> ProjectRef:
    project = (project or "").strip()
    if not project:
        raise PreconditionError("project is not resolved")
    return int(project) if project.isdigit() else project


# Settings


def configure_gitlab(request: schemas.GitLabConfigRequest) -> schemas.GitLabConfigResponse:
    """Replace the GitLab base URL and token for subsequent calls.

    Raises:
        BatchInProgressError: A batch is running on the current connection.
    """
    global _orchestrator  # pylint: disable=global-statement
    store = _get_store()
    new_settings = settings.gitlab.model_copy(
        update={"BASE_URL": request.base_url, "TOKEN": request.token}
    )
    directory = _directory_from_settings(new_settings)
    previous = None
    with _state_lock:
        if _orchestrator is None:
            _orchestrator = _build_orchestrator(directory, store)
        else:
            try:
                previous = _orchestrator.replace_directory(directory)
            except BatchInProgressError:
                _close_directory(directory)
                raise
        settings.gitlab = new_settings

    _close_directory(previous)
    logger.info("gitlab_settings_updated", base_url=request.base_url)
    return get_gitlab_config()


def get_gitlab_config() -> schemas.GitLabConfigResponse:
    return schemas.GitLabConfigResponse(
        base_url=settings.gitlab.BASE_URL,
        configured=_orchestrator is not None,
    )


# Remote directory


def _unwrap(result):
    if not result.is_success:
        raise IntegrationError(result.message, response=result)
    return result.data


def search_projects(keyword: str, page: int = 1, page_size: int = 20) -> Page[ProjectSummary]:
    return _unwrap(_get_directory().search_projects(keyword, page=page, page_size=page_size))


def list_project_members(
    project: str, page: int = 1, page_size: int = 20
) -> Page[ProjectMember]:
    return _unwrap(
        _get_directory().list_members(_project_ref(project), page=page, page_size=page_size)
    )


def list_all_project_members(project: str) -> List[ProjectMember]:
    """Every member of a project, fetched GITLAB_PER_PAGE rows at a time."""
    return _get_directory().list_all_members(
        _project_ref(project), page_size=settings.gitlab.PER_PAGE
    )


# Local cache


def save_local_members(request: schemas.UpsertLocalMembersRequest) -> int:
    members = [
        LocalMember(
            user_id=m.user_id,
            username=m.username,
            name=m.name,
            avatar_url=m.avatar_url,
            project_id=m.project_id,
            project_name=m.project_name,
        )
        for m in request.members
    ]
    return _get_store().upsert(members)


def list_local_members(
    query: Optional[str] = None, page: int = 1, page_size: int = 50
) -> Page[LocalMember]:
    return _get_store().list_members(query=query, page=page, page_size=page_size)


def delete_local_members(request: schemas.UserIdsRequest) -> int:
    return _get_store().delete_members(request.user_ids)


def list_groups() -> List[LocalGroup]:
    return _get_store().list_groups()


def create_group(request: schemas.CreateGroupRequest) -> LocalGroup:
    return _get_store().create_group(request.name)


def rename_group(group_id: int, request: schemas.CreateGroupRequest) -> LocalGroup:
    return _get_store().rename_group(group_id, request.name)


def delete_group(group_id: int) -> None:
    _get_store().delete_group(group_id)


def list_group_members(group_id: int) -> List[LocalMember]:
    return _get_store().list_group_members(group_id)


def add_group_members(group_id: int, request: schemas.UserIdsRequest) -> int:
    return _get_store().add_to_group(group_id, request.user_ids)


def remove_group_members(group_id: int, request: schemas.UserIdsRequest) -> int:
    return _get_store().remove_from_group(group_id, request.user_ids)


# Batches


def _selection(request: schemas.BatchRequest) -> Selection:
    if request.group_id is not None:
        return GroupSelection(group_id=request.group_id)
    user_ids = list(request.user_ids or [])
    labels = {m.user_id: m.label for m in _get_store().get_members(user_ids)}
    return UserSelection(user_ids=user_ids, labels=labels)


def run_add_batch(request: schemas.AddBatchRequest) -> BatchResult:
    orchestrator = _get_orchestrator()
    return orchestrator.add_from_selection(
        _project_ref(request.project),
        _selection(request),
        request.access_level,
        expires_at=request.expires_at,
    )


def run_remove_batch(request: schemas.RemoveBatchRequest) -> BatchResult:
    orchestrator = _get_orchestrator()
    return orchestrator.remove_from_selection(
        _project_ref(request.project), _selection(request)
    )


def get_progress() -> ProgressSnapshot:
    if _orchestrator is None:
        return _progress_log.latest
    return _orchestrator.progress
