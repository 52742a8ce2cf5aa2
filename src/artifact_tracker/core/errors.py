"""Exception taxonomy shared by the upstream client, the services and the web layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class ArtifactTrackerError(Exception):
    """Base exception for all artifact tracker operations."""


class UpstreamError(ArtifactTrackerError):
    """Raised when a request to the source-control API fails."""

    def __init__(self, message: str, *, status: Optional[int] = None, path: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.path = path


class UpstreamAuthError(UpstreamError):
    """The API rejected our credentials (401/403). Not retried."""


class UpstreamNotFound(UpstreamError):
    """The requested resource does not exist (404). Not retried."""


class UpstreamRateLimited(UpstreamError):
    """The API rate limit is exhausted (429). Not retried."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[datetime] = None,
        status: Optional[int] = 429,
        path: str = "",
    ) -> None:
        super().__init__(message, status=status, path=path)
        self.retry_after = retry_after


class UpstreamTransientError(UpstreamError):
    """Any other failure: 5xx, unexpected status, connection error, request timeout."""


class AggregationTimeout(ArtifactTrackerError):
    """The refresh did not settle within the configured wall-clock budget."""


class NoDataAvailable(ArtifactTrackerError):
    """Neither fresh cache, stale cache nor the fallback dataset could answer."""


class InvalidQueryError(ArtifactTrackerError):
    """A request carried a parameter that cannot be interpreted."""
