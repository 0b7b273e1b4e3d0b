from contextlib import contextmanager
from dataclasses import asdict
from typing import Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Query

from core.logging import get_module_logger
from modules.membership import schemas, service
from modules.membership.domain.errors import (
    BatchInProgressError,
    GroupNotFoundError,
    IntegrationError,
    StoreError,
)
from modules.membership.domain.models import BatchResult

logger = get_module_logger()

# Controllers are thin adapters: they accept Pydantic request models, call the
# service boundary, and render domain objects as Pydantic response models.
router = APIRouter(tags=["membership"])

ERROR_RESPONSES = {
    400: {"model": schemas.ErrorResponse},
    404: {"model": schemas.ErrorResponse},
    409: {"model": schemas.ErrorResponse},
    502: {"model": schemas.ErrorResponse},
}


@contextmanager
def _http_errors() -> Iterator[None]:
    """Translate membership errors into HTTP errors."""
    try:
        yield
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except StoreError as e:
        logger.error("membership_store_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e)) from e
    except BatchInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except IntegrationError as e:
        logger.warning("membership_integration_error", error=str(e))
        raise HTTPException(status_code=502, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _batch_response(result: BatchResult) -> schemas.BatchResultResponse:
    return schemas.BatchResultResponse.model_validate(result.as_dict())


# Settings


@router.get("/settings/gitlab", response_model=schemas.GitLabConfigResponse)
def get_gitlab_settings_endpoint():
    return service.get_gitlab_config()


@router.put(
    "/settings/gitlab",
    response_model=schemas.GitLabConfigResponse,
    responses=ERROR_RESPONSES,
)
def put_gitlab_settings_endpoint(request: schemas.GitLabConfigRequest):
    """Replace the GitLab base URL and token used by subsequent calls.

    Rejected with 409 while a batch is running.
    """
    with _http_errors():
        return service.configure_gitlab(request)


# Remote directory


@router.get(
    "/projects", response_model=schemas.ProjectPageResponse, responses=ERROR_RESPONSES
)
def search_projects_endpoint(
    keyword: str = Query(default=""),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    """Search remote projects by keyword; a blank keyword yields no results."""
    with _http_errors():
        result = service.search_projects(keyword, page=page, page_size=page_size)
    return schemas.ProjectPageResponse.model_validate(asdict(result))


@router.get(
    "/projects/{project:path}/members/all",
    response_model=List[schemas.ProjectMemberResponse],
    responses=ERROR_RESPONSES,
)
def list_all_project_members_endpoint(project: str):
    """List every member of a project, walking all pages."""
    with _http_errors():
        members = service.list_all_project_members(project)
    return [schemas.ProjectMemberResponse.model_validate(asdict(m)) for m in members]


@router.get(
    "/projects/{project:path}/members",
    response_model=schemas.ProjectMemberPageResponse,
    responses=ERROR_RESPONSES,
)
def list_project_members_endpoint(
    project: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    """List one page of a project's members.

    `project` is a numeric id or a namespace/path.
    """
    with _http_errors():
        result = service.list_project_members(project, page=page, page_size=page_size)
    return schemas.ProjectMemberPageResponse.model_validate(asdict(result))


# Local cache


@router.post(
    "/local-members", response_model=schemas.CountResponse, responses=ERROR_RESPONSES
)
def upsert_local_members_endpoint(request: schemas.UpsertLocalMembersRequest):
    with _http_errors():
        return schemas.CountResponse(count=service.save_local_members(request))


@router.get("/local-members", response_model=schemas.LocalMemberPageResponse)
def list_local_members_endpoint(
    query: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
):
    with _http_errors():
        result = service.list_local_members(query=query, page=page, page_size=page_size)
    return schemas.LocalMemberPageResponse.model_validate(asdict(result))


@router.delete(
    "/local-members", response_model=schemas.CountResponse, responses=ERROR_RESPONSES
)
def delete_local_members_endpoint(request: schemas.UserIdsRequest):
    """Delete cached members; they are removed from every local group."""
    with _http_errors():
        return schemas.CountResponse(count=service.delete_local_members(request))


@router.get("/local-groups", response_model=List[schemas.LocalGroupResponse])
def list_groups_endpoint():
    with _http_errors():
        groups = service.list_groups()
    return [schemas.LocalGroupResponse.model_validate(asdict(g)) for g in groups]


@router.post(
    "/local-groups",
    response_model=schemas.LocalGroupResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
)
def create_group_endpoint(request: schemas.CreateGroupRequest):
    with _http_errors():
        group = service.create_group(request)
    return schemas.LocalGroupResponse.model_validate(asdict(group))


@router.patch(
    "/local-groups/{group_id}",
    response_model=schemas.LocalGroupResponse,
    responses=ERROR_RESPONSES,
)
def rename_group_endpoint(group_id: int, request: schemas.CreateGroupRequest):
    with _http_errors():
        group = service.rename_group(group_id, request)
    return schemas.LocalGroupResponse.model_validate(asdict(group))


@router.delete("/local-groups/{group_id}", status_code=204, responses=ERROR_RESPONSES)
def delete_group_endpoint(group_id: int):
    """Delete a group; its members stay in the local cache."""
    with _http_errors():
        service.delete_group(group_id)


@router.get(
    "/local-groups/{group_id}/members",
    response_model=List[schemas.LocalMemberResponse],
    responses=ERROR_RESPONSES,
)
def list_group_members_endpoint(group_id: int):
    with _http_errors():
        members = service.list_group_members(group_id)
    return [schemas.LocalMemberResponse.model_validate(asdict(m)) for m in members]


@router.post(
    "/local-groups/{group_id}/members",
    response_model=schemas.CountResponse,
    responses=ERROR_RESPONSES,
)
def add_group_members_endpoint(group_id: int, request: schemas.UserIdsRequest):
    """Add cached members to a group; ids already in the group are skipped."""
    with _http_errors():
        return schemas.CountResponse(count=service.add_group_members(group_id, request))


@router.post(
    "/local-groups/{group_id}/members/remove",
    response_model=schemas.CountResponse,
    responses=ERROR_RESPONSES,
)
def remove_group_members_endpoint(group_id: int, request: schemas.UserIdsRequest):
    with _http_errors():
        return schemas.CountResponse(
            count=service.remove_group_members(group_id, request)
        )


# Batches


@router.post(
    "/batches/add",
    response_model=schemas.BatchResultResponse,
    responses=ERROR_RESPONSES,
)
def run_add_batch_endpoint(request: schemas.AddBatchRequest):
    """Add every target user to the project, one call per user.

    Per-user failures are reported in the response body, not as an HTTP
    error. Poll GET /batches/progress while the request runs.
    """
    with _http_errors():
        result = service.run_add_batch(request)
    return _batch_response(result)


@router.post(
    "/batches/remove",
    response_model=schemas.BatchResultResponse,
    responses=ERROR_RESPONSES,
)
def run_remove_batch_endpoint(request: schemas.RemoveBatchRequest):
    """Remove every target user from the project in a single remote operation.

    Returns 502 and no partition when the remote call cannot be completed.
    """
    with _http_errors():
        result = service.run_remove_batch(request)
    return _batch_response(result)


@router.get("/batches/progress", response_model=schemas.ProgressResponse)
def get_progress_endpoint():
    return schemas.ProgressResponse.model_validate(asdict(service.get_progress()))
