import pytest

from modules.membership.store import LocalMembershipStore
from tests.factories.gitlab import (
    make_gitlab_members,
    make_gitlab_projects,
    make_local_members,
)


@pytest.fixture
def member_store():
    """In-memory local membership store, discarded after the test."""
    store = LocalMembershipStore.from_url("sqlite://")
    yield store
    store.close()


@pytest.fixture
def gitlab_members():
    return make_gitlab_members()


@pytest.fixture
def gitlab_projects():
    return make_gitlab_projects()


@pytest.fixture
def local_member_factory():
    """Factory for LocalMember test instances.

    Usage:
        members = local_member_factory(n=5, start_id=10)
    """

    def _factory(n=3, prefix="", start_id=1, project_id=101):
        return make_local_members(
            n=n, prefix=prefix, start_id=start_id, project_id=project_id
        )

    return _factory
