"""Exception hierarchy shared by every MobiShop layer."""

from __future__ import annotations

from typing import Optional, Sequence


class MerkatoError(Exception):
    """Base class for all domain errors raised by the package."""


class ValidationError(MerkatoError, ValueError):
    """Raised when user input is malformed or a required field is missing."""


class InsufficientStock(MerkatoError):
    """Raised when a requested quantity exceeds the available stock."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product '{product_id}': "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class AccessDenied(MerkatoError):
    """Raised when the acting account lacks the role an action requires."""

    def __init__(self, action: str, role: Optional[str] = None) -> None:
        super().__init__(f"Access denied for '{action}' (role: {role or 'none'})")
        self.action = action
        self.role = role


class BackendError(MerkatoError):
    """Raised for any failure of the storage collaborator."""


class NotFoundError(BackendError):
    """Raised when a referenced product, user, or sale cannot be located."""


class SaleCommitError(BackendError):
    """Raised when a multi-line sale stops part-way through.

    ``committed`` lists the sale records already written for ``batch_id``;
    ``failed_line`` is the zero-based cart line that could not be recorded.
    Re-running the pipeline with the same ``batch_id`` resumes after the
    committed lines.
    """

    def __init__(
        self,
        batch_id: str,
        failed_line: int,
        committed: Sequence[object],
        cause: Exception,
    ) -> None:
        super().__init__(
            f"Sale failed: batch '{batch_id}' stopped at line {failed_line + 1} "
            f"after {len(committed)} committed line(s): {cause}"
        )
        self.batch_id = batch_id
        self.failed_line = failed_line
        self.committed = list(committed)
        self.cause = cause


__all__ = [
    "MerkatoError",
    "ValidationError",
    "InsufficientStock",
    "AccessDenied",
    "BackendError",
    "NotFoundError",
    "SaleCommitError",
]
