"""Operation status enumeration.

Status codes for operation results, used to classify outcomes of calls made
against the remote directory service and the local cache.
"""

from enum import Enum


class OperationStatus(Enum):
    """Status codes for operation results.

    Attributes:
        SUCCESS: Operation completed successfully
        TRANSIENT_ERROR: Network, timeout, rate limit or server-side error
        PERMANENT_ERROR: Rejected request (validation, conflict, bad input)
        UNAUTHORIZED: Token missing, expired or lacking permission
        NOT_FOUND: Project, user or membership not found
    """

    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
