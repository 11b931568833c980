"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for validation errors that are safe to forward to clients
  (missing identifiers, unknown states or policies).  The global ``ValueError``
  handler returns ``str(exc)`` as the 422 detail.
- ``BackendError``: a call to the source or target storage back-end failed
  after retries.  Surfaced as 502.
- ``OperationCancelledError``: cooperative cancellation.  Never reported as a
  failure: drivers turn it into a ``cancelled`` progress event.
"""

from __future__ import annotations

from typing import Any


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``spacc/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class BackendError(Exception):
    """Raised when a storage back-end call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InventoryError(BackendError):
    """Raised when a folder listing fails; the whole snapshot is discarded."""


class ReportNotFoundError(LookupError):
    """Raised by operations that require an existing audit report."""

    def __init__(self, report_id: str) -> None:
        super().__init__(f"Report {report_id} not found")
        self.report_id = report_id


class OperationCancelledError(Exception):
    """Raised at a checkpoint after the user cancelled the operation."""

    def __init__(self, partial_result: dict[str, Any] | None = None) -> None:
        super().__init__("Operation cancelled by user")
        self.partial_result = partial_result
