"""Operation result dataclass.

Uniform envelope returned by remote directory calls: a status, a
human-friendly message and an optional payload.
"""

from typing import Optional, Any
from dataclasses import dataclass

from infrastructure.operations.status import OperationStatus


@dataclass
class OperationResult:
    """Uniform result returned from operations.

    Attributes:
        status: OperationStatus -- high-level outcome
        message: str -- human-friendly message; for failures this is the text
            surfaced to the operator after classification
        data: Optional[Any] -- optional payload
        error_code: Optional[str] -- optional machine error code
        retry_after: Optional[int] -- seconds until retry when rate-limited
        status_code: Optional[int] -- HTTP status of the underlying response
    """

    status: OperationStatus
    message: str
    data: Optional[Any] = None
    error_code: Optional[str] = None
    retry_after: Optional[int] = None
    status_code: Optional[int] = None

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCESS

    @classmethod
    def success(
        cls, data: Optional[Any] = None, message: str = "ok"
    ) -> "OperationResult":
        """Create a SUCCESS OperationResult with optional data."""
        return cls(status=OperationStatus.SUCCESS, message=message, data=data)

    @classmethod
    def error(
        cls,
        status: OperationStatus,
        message: str,
        error_code: Optional[str] = None,
        retry_after: Optional[int] = None,
        data: Optional[Any] = None,
        status_code: Optional[int] = None,
    ) -> "OperationResult":
        """Create an error OperationResult with the given status."""
        return cls(
            status=status,
            message=message,
            error_code=error_code,
            retry_after=retry_after,
            data=data,
            status_code=status_code,
        )

    @classmethod
    def transient_error(
        cls,
        message: str,
        error_code: Optional[str] = None,
        retry_after: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> "OperationResult":
        """Create a transient error result.

        Use for network timeouts, rate limiting and server-side failures.
        Nothing in this application retries automatically; the status only
        informs the operator.
        """
        return cls.error(
            OperationStatus.TRANSIENT_ERROR,
            message,
            error_code,
            retry_after,
            status_code=status_code,
        )

    @classmethod
    def permanent_error(
        cls,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> "OperationResult":
        """Create a permanent error result.

        Use for rejected requests such as validation failures, conflicts and
        invalid input.
        """
        return cls.error(
            OperationStatus.PERMANENT_ERROR,
            message,
            error_code,
            status_code=status_code,
        )
