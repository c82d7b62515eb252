"""
Error taxonomy for backend loads.

Transport, timeout and server errors are retried inside the API client and
converted to failed results once retries run out, so callers never catch them
at the call site. PartialBatchFailure is recorded on the branch's sync status.
"""

from typing import Iterable, Optional


class SyncEngineError(Exception):
    """Base class for engine errors."""


class NetworkUnavailable(SyncEngineError):
    """The backend could not be reached (DNS, connection refused, reset)."""


class FetchTimeout(SyncEngineError):
    """The backend did not answer within the request timeout."""


class ServerError(SyncEngineError):
    """The backend answered with a non-2xx status."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"Backend returned HTTP {status_code}")


class PartialBatchFailure(SyncEngineError):
    """Some data types of a request failed while the others loaded."""

    def __init__(self, branch_ids: Iterable[int], failed_types: Iterable[str]):
        self.branch_ids = list(branch_ids)
        self.failed_types = list(failed_types)
        super().__init__(f"Failed to load {', '.join(self.failed_types)}")


RETRYABLE_ERRORS = (NetworkUnavailable, FetchTimeout, ServerError)
