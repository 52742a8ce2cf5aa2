"""Source-control API access: HTTP client, pagination and retry policy."""

from artifact_tracker.upstream.client import GitHubClient, PageResult, UpstreamResponse, classify_failure
from artifact_tracker.upstream.retry import RetryPolicy

__all__ = ["GitHubClient", "PageResult", "RetryPolicy", "UpstreamResponse", "classify_failure"]
