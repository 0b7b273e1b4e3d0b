from datetime import date, datetime
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from modules.membership.domain.models import AccessLevel, BatchOperation, BatchStatus

UserId = Annotated[int, Field(gt=0)]


class GitLabConfigRequest(BaseModel):
    """Schema for replacing the GitLab connection settings at runtime."""

    base_url: Annotated[
        str,
        Field(
            ...,
            min_length=1,
            description="GitLab instance URL",
            json_schema_extra={"example": "https://gitlab.example.com"},
        ),
    ]
    token: Annotated[
        str,
        Field(
            ...,
            min_length=1,
            description="Personal access token sent as PRIVATE-TOKEN",
        ),
    ]

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value.rstrip("/")


class GitLabConfigResponse(BaseModel):
    base_url: str
    configured: bool


class ProjectResponse(BaseModel):
    id: int
    name: str
    namespace: str
    path_with_namespace: str
    description: Optional[str] = None
    last_activity_at: Optional[str] = None


class ProjectPageResponse(BaseModel):
    items: List[ProjectResponse]
    total: int
    page: int
    page_size: int


class ProjectMemberResponse(BaseModel):
    id: int
    username: str
    name: str
    access_level: int
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    expires_at: Optional[str] = None


class ProjectMemberPageResponse(BaseModel):
    items: List[ProjectMemberResponse]
    total: int
    page: int
    page_size: int


class LocalMemberItem(BaseModel):
    """Schema for one member saved into the local cache."""

    user_id: Annotated[
        UserId,
        Field(..., description="Remote user id", json_schema_extra={"example": 42}),
    ]
    username: Annotated[
        str,
        Field(..., min_length=1, json_schema_extra={"example": "jdoe"}),
    ]
    name: Annotated[
        str,
        Field(default="", json_schema_extra={"example": "Jane Doe"}),
    ] = ""
    avatar_url: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None


class UpsertLocalMembersRequest(BaseModel):
    """Schema for saving selected remote members into the local cache."""

    members: Annotated[
        List[LocalMemberItem],
        Field(..., min_length=1, description="Members to insert or update"),
    ]


class UserIdsRequest(BaseModel):
    """Schema for requests carrying a non-empty list of user ids."""

    user_ids: Annotated[
        List[UserId],
        Field(
            ...,
            min_length=1,
            description="Remote user ids",
            json_schema_extra={"example": [42, 43]},
        ),
    ]


class LocalMemberResponse(BaseModel):
    user_id: int
    username: str
    name: str
    avatar_url: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    updated_at: Optional[datetime] = None


class LocalMemberPageResponse(BaseModel):
    items: List[LocalMemberResponse]
    total: int
    page: int
    page_size: int


class CreateGroupRequest(BaseModel):
    name: Annotated[
        str,
        Field(
            ...,
            min_length=1,
            max_length=255,
            description="Group name",
            json_schema_extra={"example": "backend-team"},
        ),
    ]

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class LocalGroupResponse(BaseModel):
    id: int
    name: str
    created_at: datetime
    members_count: int = 0


class CountResponse(BaseModel):
    """Number of rows affected by a store operation."""

    count: int


class BatchRequest(BaseModel):
    """Common fields of batch requests.

    Targets are given either as explicit user ids or as a local group id,
    never both.
    """

    project: Annotated[
        str,
        Field(
            ...,
            min_length=1,
            description="Project id or namespace/path",
            json_schema_extra={"example": "group/app"},
        ),
    ]
    user_ids: Annotated[
        Optional[List[UserId]],
        Field(default=None, description="Explicit target user ids"),
    ] = None
    group_id: Annotated[
        Optional[int],
        Field(default=None, gt=0, description="Local group whose members are targeted"),
    ] = None

    @model_validator(mode="after")
    def check_targets(self):
        if (self.user_ids is None) == (self.group_id is None):
            raise ValueError("exactly one of user_ids or group_id is required")
        return self


class AddBatchRequest(BatchRequest):
    """Schema for an ADD batch."""

    access_level: Annotated[
        AccessLevel,
        Field(
            ...,
            description="Access level granted to every user",
            json_schema_extra={"example": 30},
        ),
    ]
    expires_at: Annotated[
        Optional[date],
        Field(
            default=None,
            description="Membership expiry date",
            json_schema_extra={"example": "2030-01-31"},
        ),
    ] = None

    @field_validator("expires_at", mode="before")
    @classmethod
    def blank_expiry_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class RemoveBatchRequest(BatchRequest):
    """Schema for a REMOVE batch."""


class BatchFailureResponse(BaseModel):
    user_id: int
    reason: str


class BatchResultResponse(BaseModel):
    """Schema for the outcome of a batch."""

    success_user_ids: Annotated[
        List[int],
        Field(..., description="Users for whom the operation succeeded"),
    ]
    failed: Annotated[
        List[BatchFailureResponse],
        Field(..., description="Users for whom it failed, with reasons"),
    ]


class ProgressResponse(BaseModel):
    """Schema for the latest progress snapshot."""

    status: BatchStatus
    operation: Optional[BatchOperation] = None
    total: int
    processed: int
    success_count: int
    failed: List[BatchFailureResponse]
    current_user_label: Optional[str] = None
    batch_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: Annotated[str, Field(..., description="Error message")]
