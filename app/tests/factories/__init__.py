"""Test data factories for deterministic test data generation."""

from tests.factories.gitlab import (
    make_gitlab_members,
    make_gitlab_projects,
    make_local_members,
)

__all__ = [
    "make_gitlab_members",
    "make_gitlab_projects",
    "make_local_members",
]
