"""GitLab REST API v4 client.

Thin request/response wrapper around the endpoints the member manager needs:
project search, project member listing, and single-member add/remove. Every
call returns an OperationResult; no call is retried.

Usage:
    from integrations.gitlab.client import GitLabClient

    client = GitLabClient(base_url="https://gitlab.example.com", token="...")
    result = client.list_project_members("group/project", page=1, per_page=20)
    if result.is_success:
        rows = result.data["items"]
        total = result.data["total"]
"""

import json
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import requests
import structlog

from infrastructure.operations import (
    OperationResult,
    classify_http_response,
    classify_request_exception,
)

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v4"


def normalize_base_url(base_url: str) -> str:
    return base_url.strip().rstrip("/")


def encode_project(project: Union[int, str]) -> str:
    """Encode a project reference for use in a URL path.

    All-digit references are project ids and are used as is; anything else is
    a "namespace/path" and is percent-encoded, slashes included.
    """
    ref = str(project).strip()
    if ref.isdigit():
        return ref
    return quote(ref, safe="")


class GitLabClient:
    """HTTP client for the GitLab REST API.

    Attributes:
        base_url: Instance URL without trailing slash or /api/v4 suffix
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = 30,
        user_agent: str = "gitlab-member-manager/0.1",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "User-Agent": user_agent,
                "Accept": "application/json",
                "PRIVATE-TOKEN": token,
            }
        )
        self._logger = logger.bind(
            component="gitlab_client", base_url=self.base_url
        )

    @classmethod
    def from_settings(cls, gitlab_settings) -> "GitLabClient":
        return cls(
            base_url=gitlab_settings.BASE_URL,
            token=gitlab_settings.TOKEN,
            timeout=gitlab_settings.TIMEOUT_SECONDS,
            user_agent=gitlab_settings.USER_AGENT,
        )

    def api_url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    def search_projects(
        self, keyword: str, page: int = 1, per_page: int = 20
    ) -> OperationResult:
        """Search projects by keyword, most recently active first.

        Returns:
            OperationResult with data {"items": [project dicts], "total": int}
        """
        keyword = (keyword or "").strip()
        if not keyword:
            return OperationResult.success(data={"items": [], "total": 0})

        return self._list(
            "/projects",
            params={
                "search": keyword,
                "simple": "true",
                "order_by": "last_activity_at",
                "sort": "desc",
                "page": page,
                "per_page": per_page,
            },
        )

    def list_project_members(
        self, project: Union[int, str], page: int = 1, per_page: int = 20
    ) -> OperationResult:
        """List direct and inherited members of a project, one page at a time.

        Returns:
            OperationResult with data {"items": [member dicts], "total": int}
        """
        return self._list(
            f"/projects/{encode_project(project)}/members/all",
            params={"page": page, "per_page": per_page},
        )

    def add_project_member(
        self,
        project: Union[int, str],
        user_id: int,
        access_level: int,
        expires_at: Optional[str] = None,
    ) -> OperationResult:
        """Add one user to a project.

        A 409 response is reported with the message "already a member".
        """
        form: Dict[str, Any] = {
            "user_id": str(user_id),
            "access_level": str(int(access_level)),
        }
        if expires_at and str(expires_at).strip():
            form["expires_at"] = str(expires_at).strip()

        return self._request(
            "POST",
            f"/projects/{encode_project(project)}/members",
            form_data=form,
        )

    def remove_project_member(
        self, project: Union[int, str], user_id: int
    ) -> OperationResult:
        """Remove one user from a project.

        A 404 response means the user is not a member and counts as success.
        """
        result = self._request(
            "DELETE", f"/projects/{encode_project(project)}/members/{user_id}"
        )
        if result.status_code == 404:
            self._logger.info(
                "gitlab_remove_member_not_a_member",
                project=str(project),
                user_id=user_id,
            )
            return OperationResult.success(message="not a member")
        return result

    def close(self) -> None:
        """Close HTTP session and release connections."""
        self._session.close()

    def _list(self, path: str, params: Dict[str, Any]) -> OperationResult:
        result = self._request("GET", path, params=params)
        if not result.is_success:
            return result

        body = result.data["body"] if result.data else None
        if not isinstance(body, list):
            return OperationResult.transient_error(
                f"Unexpected GitLab response for {path}: expected a list",
                error_code="INVALID_RESPONSE",
            )

        headers = result.data.get("headers", {})
        total = len(body)
        raw_total = headers.get("X-Total") or headers.get("x-total")
        if raw_total:
            try:
                total = int(raw_total)
            except (TypeError, ValueError):
                self._logger.warning("gitlab_invalid_total_header", value=raw_total)

        return OperationResult.success(data={"items": body, "total": total})

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        form_data: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Send one request and classify the outcome.

        Returns:
            OperationResult; on success data is {"body": parsed JSON or None,
            "headers": response headers}
        """
        url = self.api_url(path)
        log = self._logger.bind(method=method, path=path)
        log.debug("gitlab_request")

        try:
            response = self._session.request(
                method=method,
                url=url,
                params=params,
                data=form_data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.warning("gitlab_request_failed", error=str(e))
            return classify_request_exception(e)

        log = log.bind(status_code=response.status_code)

        if 200 <= response.status_code < 300:
            body: Any = None
            if response.content:
                try:
                    body = response.json()
                except (json.JSONDecodeError, ValueError):
                    log.warning("gitlab_non_json_response", content=response.text[:200])
            log.debug("gitlab_request_succeeded")
            return OperationResult.success(
                data={"body": body, "headers": dict(response.headers)},
                message=f"{method} {path} succeeded",
            )

        result = classify_http_response(
            response.status_code, response.text, response.headers
        )
        log.warning(
            "gitlab_api_error",
            status=result.status.value,
            error_code=result.error_code,
        )
        return result


__all__ = ["GitLabClient", "encode_project", "normalize_base_url"]
