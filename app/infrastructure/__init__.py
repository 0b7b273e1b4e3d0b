"""Infrastructure modules for the GitLab Member Manager application.

Centralized infrastructure components:
- operations: Operation results and HTTP error classification
"""

from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

__all__ = [
    "OperationResult",
    "OperationStatus",
]
