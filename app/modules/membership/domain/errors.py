"""Errors for the membership module."""

from typing import Any


class MembershipError(Exception):
    """Base class for membership module errors."""


class PreconditionError(MembershipError, ValueError):
    """Raised before a batch starts when its inputs cannot be used.

    Examples: an empty target set, an unresolved project reference or a
    malformed expiry date. No batch state is created and no remote call is
    made when this is raised.
    """


class BatchInProgressError(MembershipError):
    """Raised when a batch is started while another one is still running."""


class StoreError(MembershipError):
    """Raised when the local membership cache cannot be read or written."""


class GroupNotFoundError(StoreError):
    """Raised when a local group id does not exist."""

    def __init__(self, group_id: int):
        super().__init__(f"local group {group_id} not found")
        self.group_id = group_id


class IntegrationError(MembershipError):
    """Raised by directory adapters when their underlying integration reports an error.

    Attributes:
        message: human-friendly message
        response: the OperationResult returned by the integration
    """

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


class RemoteTransportError(IntegrationError):
    """Raised when a remote call could not be completed at all.

    Distinct from a remote response reporting failures: no response was
    received, so nothing can be partitioned into success and failure.
    """
