from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import aiohttp

from artifact_tracker.config.models import GitHubSettings
from artifact_tracker.core.errors import (
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFound,
    UpstreamRateLimited,
    UpstreamTransientError,
)
from artifact_tracker.upstream.retry import RetryPolicy

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/vnd.github+json"


@dataclass(frozen=True, slots=True)
class UpstreamResponse:
    status: int
    data: Any
    etag: Optional[str] = None
    next_url: Optional[str] = None

    @property
    def not_modified(self) -> bool:
        return self.status == 304


@dataclass(frozen=True, slots=True)
class PageResult:
    items: list[Any] = field(default_factory=list)
    etag: Optional[str] = None
    not_modified: bool = False
    pages: int = 0


def _parse_rate_limit_reset(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def _error_message(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()[:200]
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return body.strip()[:200]


def classify_failure(status: int, headers: Mapping[str, str], body: str, *, path: str) -> UpstreamError:
    """Map a non-2xx response onto the upstream error taxonomy."""
    message = _error_message(body) or f"HTTP {status}"
    if status in (401, 403):
        return UpstreamAuthError(
            f"GitHub API authentication error: {message}. Please check your GitHub token configuration.",
            status=status,
            path=path,
        )
    if status == 404:
        return UpstreamNotFound(f"GitHub API resource not found: {message}", status=status, path=path)
    if status == 429:
        retry_after = _parse_rate_limit_reset(headers.get("X-RateLimit-Reset"))
        when = retry_after.isoformat() if retry_after else "unknown"
        return UpstreamRateLimited(
            f"GitHub API rate limit exceeded. Please try again after {when}",
            retry_after=retry_after,
            status=status,
            path=path,
        )
    return UpstreamTransientError(f"GitHub API error ({status}): {message}", status=status, path=path)


class GitHubClient:
    """
    Minimal async GitHub REST client.

    Every request goes through the retry policy. A 304 response is returned as a
    not-modified UpstreamResponse so callers can keep their cached copy.
    """

    def __init__(
        self,
        config: GitHubSettings,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config = config
        self._retry = retry_policy or RetryPolicy.from_settings(config)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> GitHubClient:
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def repository(self) -> str:
        return self._config.repository

    @property
    def has_token(self) -> bool:
        return bool(self._config.token.strip())

    def repo_path(self, suffix: str) -> str:
        return f"/repos/{self._config.repository}/{suffix.lstrip('/')}"

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, etag: Optional[str]) -> dict[str, str]:
        headers = {
            "Accept": ACCEPT_HEADER,
            "User-Agent": self._config.user_agent,
        }
        token = self._config.token.strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if etag:
            headers["If-None-Match"] = etag
        return headers

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def get(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        etag: Optional[str] = None,
    ) -> UpstreamResponse:
        url = self._url(path)
        return await self._retry.run(
            lambda: self._request(url, params=params, etag=etag),
            description=path,
        )

    async def _request(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]],
        etag: Optional[str],
    ) -> UpstreamResponse:
        session = self._ensure_session()
        query = {key: str(value) for key, value in (params or {}).items()}
        try:
            async with session.get(url, params=query, headers=self._headers(etag)) as response:
                response_etag = response.headers.get("ETag")
                if response.status == 304:
                    logger.debug("Upstream resource not modified. url=%s", url)
                    return UpstreamResponse(status=304, data=None, etag=response_etag or etag)

                if not 200 <= response.status < 300:
                    body = await response.text()
                    raise classify_failure(response.status, response.headers, body, path=url)

                data = await response.json(content_type=None)
                next_link = response.links.get("next")
                next_url = str(next_link["url"]) if next_link else None
                return UpstreamResponse(
                    status=response.status,
                    data=data,
                    etag=response_etag,
                    next_url=next_url,
                )
        except asyncio.TimeoutError as e:
            raise UpstreamTransientError(f"GitHub API request timed out: {url}", path=url) from e
        except aiohttp.ClientError as e:
            raise UpstreamTransientError(f"GitHub API request failed: {e}", path=url) from e
        except ValueError as e:
            raise UpstreamTransientError(f"GitHub API returned invalid JSON: {url}", path=url) from e

    async def paginate(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        max_pages: int,
        etag: Optional[str] = None,
    ) -> PageResult:
        """
        Collect a list resource across pages by following `Link: rel="next"`.

        Traversal stops at the first empty page, the first page without a next link,
        or after max_pages. The ETag is only sent for, and only recorded from, the
        first page.
        """
        first_params = {"per_page": self._config.per_page, **(params or {})}
        items: list[Any] = []
        first_etag: Optional[str] = None
        url: Optional[str] = path
        pages = 0

        while url is not None and pages < max_pages:
            is_first = pages == 0
            response = await self.get(
                url,
                params=first_params if is_first else None,
                etag=etag if is_first else None,
            )
            pages += 1

            if is_first:
                if response.not_modified:
                    return PageResult(items=[], etag=response.etag, not_modified=True, pages=pages)
                first_etag = response.etag

            page = response.data
            if not isinstance(page, list):
                raise UpstreamTransientError(f"Expected a JSON array from {path}", path=path)
            if not page:
                break
            items.extend(page)
            url = response.next_url

        if url is not None and pages >= max_pages:
            logger.info("Pagination stopped at the page cap. path=%s max_pages=%s items=%d", path, max_pages, len(items))
        return PageResult(items=items, etag=first_etag, not_modified=False, pages=pages)
