"""Domain models for the membership module.

Lightweight dataclasses used internally to represent remote projects and
members, locally cached members and groups, and the outcome and progress of a
batch run. These are NOT Pydantic models and do NOT provide runtime
validation; request validation lives in schemas.py.

Key distinctions:
  - models.py: Internal structures (dataclasses, no validation)
  - schemas.py: API contracts with Pydantic (full validation)
  - orm.py: SQLAlchemy tables backing the local cache
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Generic, List, Optional, Set, TypeVar, Union

# Numeric project id or a "namespace/path" string
ProjectRef = Union[int, str]

T = TypeVar("T")


class AccessLevel(IntEnum):
    """GitLab project access levels, in increasing order of privilege."""

    GUEST = 10
    REPORTER = 20
    DEVELOPER = 30
    MAINTAINER = 40
    OWNER = 50


class BatchOperation(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class BatchStatus(str, Enum):
    """Lifecycle of one batch run: IDLE -> RUNNING -> DONE."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"


@dataclass
class ProjectSummary:
    """A project returned by a remote search."""

    id: int
    name: str
    namespace: str
    path_with_namespace: str
    description: Optional[str] = None
    last_activity_at: Optional[str] = None


@dataclass
class ProjectMember:
    """A member row returned by a remote project listing."""

    id: int
    username: str
    name: str
    access_level: int
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    expires_at: Optional[str] = None


@dataclass
class Page(Generic[T]):
    """One page of a paginated listing."""

    items: List[T]
    total: int
    page: int
    page_size: int


@dataclass
class LocalMember:
    """A member cached locally after an explicit "save selection" action.

    Attributes:
        user_id: Remote user id, stable across cache and remote calls.
        username: Remote username.
        name: Display name.
        avatar_url: Avatar reference, if any.
        project_id: Id of the project the member was last seen in.
        project_name: Display path of that project.
        updated_at: Time of the last upsert.
    """

    user_id: int
    username: str
    name: str
    avatar_url: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        return self.username or self.name or str(self.user_id)


@dataclass
class LocalGroup:
    """A named, locally persisted set of cached members."""

    id: int
    name: str
    created_at: datetime
    members_count: int = 0


@dataclass(frozen=True)
class BatchItemFailure:
    user_id: int
    reason: str


@dataclass
class BatchResult:
    """Outcome of one batch run.

    Every input user id appears exactly once: either in success_user_ids or
    as the user_id of one entry in failed. failed keeps processing order.
    """

    success_user_ids: Set[int] = field(default_factory=set)
    failed: List[BatchItemFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.success_user_ids) + len(self.failed)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success_user_ids": sorted(self.success_user_ids),
            "failed": [asdict(f) for f in self.failed],
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """Immutable view of an in-flight or finished batch.

    processed == success_count + len(failed) holds for every snapshot
    handed to a progress reporter.
    """

    status: BatchStatus = BatchStatus.IDLE
    operation: Optional[BatchOperation] = None
    total: int = 0
    processed: int = 0
    success_count: int = 0
    failed: tuple = ()
    current_user_label: Optional[str] = None
    batch_id: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == BatchStatus.RUNNING

    @property
    def is_done(self) -> bool:
        return self.status == BatchStatus.DONE


@dataclass
class UserSelection:
    """Explicitly selected user ids, e.g. from a displayed listing."""

    user_ids: List[int]
    labels: Dict[int, str] = field(default_factory=dict)


@dataclass
class GroupSelection:
    """Reference to a local group whose members are the batch targets."""

    group_id: int


Selection = Union[UserSelection, GroupSelection]


def project_from_dict(d: dict) -> ProjectSummary:
    """Convert a GitLab project payload into a ProjectSummary.

    The namespace is taken from namespace.full_path, then namespace.name, then
    the part of path_with_namespace before the last slash.
    """
    path_with_namespace = d.get("path_with_namespace") or d.get("name") or ""
    ns = d.get("namespace") or {}
    namespace = None
    if isinstance(ns, dict):
        namespace = ns.get("full_path") or ns.get("name")
    if not namespace:
        namespace = (
            path_with_namespace.rsplit("/", 1)[0]
            if "/" in path_with_namespace
            else path_with_namespace
        )
    return ProjectSummary(
        id=int(d["id"]),
        name=d.get("name") or path_with_namespace,
        namespace=namespace,
        path_with_namespace=path_with_namespace,
        description=d.get("description"),
        last_activity_at=d.get("last_activity_at"),
    )


def member_from_dict(d: dict) -> ProjectMember:
    """Convert a GitLab member payload into a ProjectMember."""
    return ProjectMember(
        id=int(d["id"]),
        username=d.get("username") or "",
        name=d.get("name") or "",
        access_level=int(d.get("access_level") or 0),
        avatar_url=d.get("avatar_url"),
        created_at=d.get("created_at"),
        expires_at=d.get("expires_at"),
    )
