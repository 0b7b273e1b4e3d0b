"""GitLab integration: REST API v4 client."""

from integrations.gitlab.client import GitLabClient, encode_project

__all__ = ["GitLabClient", "encode_project"]
