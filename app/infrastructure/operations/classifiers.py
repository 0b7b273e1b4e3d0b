"""Error classifiers for remote directory responses.

Converts HTTP responses and transport exceptions raised by the requests
library into standardized OperationResult objects. Centralizes error
classification so the GitLab client does not repeat status-code handling in
every call.

Key Functions:
- classify_http_response(): non-2xx HTTP response -> OperationResult
- classify_request_exception(): requests transport exception -> OperationResult

Usage:
    from infrastructure.operations.classifiers import (
        classify_http_response,
        classify_request_exception,
    )

    try:
        response = session.request("GET", url, timeout=30)
    except requests.RequestException as exc:
        return classify_request_exception(exc)
    if not response.ok:
        return classify_http_response(
            response.status_code, response.text, response.headers
        )
"""

from typing import Mapping, Optional

import requests

from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

ALREADY_MEMBER_MESSAGE = "already a member"
DEFAULT_RETRY_AFTER_SECONDS = 60


def _parse_retry_after(headers: Optional[Mapping[str, str]]) -> int:
    if not headers:
        return DEFAULT_RETRY_AFTER_SECONDS
    value = headers.get("Retry-After") or headers.get("retry-after")
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return int(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


def classify_http_response(
    status_code: int,
    body: str = "",
    headers: Optional[Mapping[str, str]] = None,
    service: str = "GitLab",
) -> OperationResult:
    """Classify a non-successful HTTP response into an OperationResult.

    The message keeps the raw response body so that downstream policies can
    inspect any structured payload the remote service embedded in it.

    Status Code Mapping:
    - 401/403: UNAUTHORIZED
    - 404: NOT_FOUND
    - 409: PERMANENT_ERROR, code ALREADY_MEMBER, message "already a member"
    - 429: TRANSIENT_ERROR with retry_after
    - 5xx: TRANSIENT_ERROR
    - Other: PERMANENT_ERROR

    Args:
        status_code: HTTP status code of the response
        body: Response body text (may be empty)
        headers: Response headers, used for Retry-After
        service: Service name used as the message prefix

    Returns:
        OperationResult describing the failure
    """
    message = f"{service} API error {status_code}: {body}"

    if status_code == 409:
        return OperationResult.permanent_error(
            ALREADY_MEMBER_MESSAGE,
            error_code="ALREADY_MEMBER",
            status_code=status_code,
        )

    if status_code in (401, 403):
        return OperationResult.error(
            OperationStatus.UNAUTHORIZED,
            message,
            error_code=f"HTTP_{status_code}",
            status_code=status_code,
        )

    if status_code == 404:
        return OperationResult.error(
            OperationStatus.NOT_FOUND,
            message,
            error_code="NOT_FOUND",
            status_code=status_code,
        )

    if status_code == 429:
        return OperationResult.transient_error(
            message,
            error_code="RATE_LIMITED",
            retry_after=_parse_retry_after(headers),
            status_code=status_code,
        )

    if 500 <= status_code < 600:
        return OperationResult.transient_error(
            message,
            error_code="SERVER_ERROR",
            status_code=status_code,
        )

    return OperationResult.permanent_error(
        message,
        error_code=f"HTTP_{status_code}",
        status_code=status_code,
    )


def classify_request_exception(exc: Exception) -> OperationResult:
    """Classify a transport-level exception into an OperationResult.

    Handles requests.Timeout and requests.ConnectionError explicitly; any
    other exception is reported as a transient request failure.

    Args:
        exc: Exception raised while sending the request

    Returns:
        OperationResult with TRANSIENT_ERROR status
    """
    if isinstance(exc, requests.Timeout):
        return OperationResult.transient_error(
            f"GitLab request timed out: {exc}",
            error_code="TIMEOUT",
        )

    if isinstance(exc, requests.ConnectionError):
        return OperationResult.transient_error(
            f"GitLab request failed: {exc}",
            error_code="CONNECTION_ERROR",
        )

    return OperationResult.transient_error(
        f"GitLab request failed: {type(exc).__name__}: {exc}",
        error_code="REQUEST_ERROR",
    )


def is_transport_failure(result: OperationResult) -> bool:
    """Return True when a result describes a request that never got a response."""
    return result.status_code is None and result.error_code in (
        "TIMEOUT",
        "CONNECTION_ERROR",
        "REQUEST_ERROR",
    )
