from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from artifact_tracker.artifacts.models import PLATFORMS, AggregationResult, ArtifactDataset, ItemFailure
from artifact_tracker.artifacts.versions import build_record, extract_version
from artifact_tracker.config.models import ArtifactSettings
from artifact_tracker.core.errors import UpstreamError
from artifact_tracker.core.timeutils import parse_rfc3339
from artifact_tracker.upstream.client import GitHubClient, PageResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TagRef:
    name: str
    version: str
    sha: str


@dataclass(frozen=True, slots=True)
class _CommitOutcome:
    tag: TagRef
    published_at: Optional[datetime] = None
    error: Optional[str] = None


def select_build_tags(tags: list[Any]) -> tuple[list[TagRef], int]:
    """Keep tags that carry a build number, first occurrence per version wins."""
    selected: dict[str, TagRef] = {}
    skipped = 0
    for tag in tags:
        name = tag.get("name") if isinstance(tag, dict) else None
        sha = (tag.get("commit") or {}).get("sha") if isinstance(tag, dict) else None
        if not isinstance(name, str) or not isinstance(sha, str):
            skipped += 1
            continue
        version = extract_version(name)
        if version is None:
            logger.debug("Skipping tag with a non-build name. tag=%s", name)
            skipped += 1
            continue
        if version in selected:
            logger.debug("Skipping duplicate tag for version. tag=%s version=%s", name, version)
            skipped += 1
            continue
        selected[version] = TagRef(name=name, version=version, sha=sha)
    return list(selected.values()), skipped


class ArtifactAggregator:
    """Turns repository tags into per-platform artifact records."""

    def __init__(self, config: ArtifactSettings, client: GitHubClient) -> None:
        self._config = config
        self._client = client

    async def fetch_tags(self, *, etag: Optional[str] = None) -> PageResult:
        return await self._client.paginate(
            self._client.repo_path("tags"),
            max_pages=self._config.tag_max_pages,
            etag=etag,
        )

    async def aggregate(self, *, etag: Optional[str] = None) -> AggregationResult:
        """
        Pull tags and their commit dates.

        Failures of the tag listing propagate. A failed commit lookup only drops that
        version and is reported in AggregationResult.failures. When the tag listing is
        unchanged (304) the result is empty and carries the ETag.
        """
        page = await self.fetch_tags(etag=etag)
        if page.not_modified:
            return AggregationResult(dataset=ArtifactDataset(), etag=page.etag, not_modified=True)

        tags, skipped = select_build_tags(page.items)
        logger.info(
            "Fetched repository tags. repository=%s tags=%d build_tags=%d skipped=%d",
            self._client.repository,
            len(page.items),
            len(tags),
            skipped,
        )

        outcomes = await self._fetch_commit_dates(tags)

        result = AggregationResult(
            dataset=ArtifactDataset(),
            tags_seen=len(page.items),
            tags_skipped=skipped,
            etag=page.etag,
        )
        for outcome in outcomes:
            if outcome.published_at is None:
                result.failures.append(
                    ItemFailure(tag=outcome.tag.name, version=outcome.tag.version, reason=outcome.error or "unknown")
                )
                continue
            for platform in PLATFORMS:
                result.dataset.platform(platform)[outcome.tag.version] = build_record(
                    base_url=self._config.download_base_url,
                    platform=platform,
                    version=outcome.tag.version,
                    sha=outcome.tag.sha,
                    published_at=outcome.published_at,
                )

        if result.failures:
            logger.warning(
                "Some build tags were skipped because their commit could not be loaded. failed=%d versions=%s",
                len(result.failures),
                ",".join(failure.version for failure in result.failures),
            )
        logger.info("Artifact aggregation completed. versions=%d", len(result.dataset.windows))
        return result

    async def _fetch_commit_dates(self, tags: list[TagRef]) -> list[_CommitOutcome]:
        batch_size = max(1, self._config.commit_batch_size)
        outcomes: list[_CommitOutcome] = []
        for start in range(0, len(tags), batch_size):
            if start > 0 and self._config.batch_pause_seconds > 0:
                await asyncio.sleep(self._config.batch_pause_seconds)
            batch = tags[start : start + batch_size]
            results = await asyncio.gather(*(self._fetch_commit_date(tag) for tag in batch), return_exceptions=True)
            # Let the whole batch settle before an unexpected error escapes.
            for item in results:
                if isinstance(item, BaseException):
                    raise item
            outcomes.extend(results)
        return outcomes

    async def _fetch_commit_date(self, tag: TagRef) -> _CommitOutcome:
        try:
            response = await self._client.get(self._client.repo_path(f"commits/{tag.sha}"))
        except UpstreamError as e:
            return _CommitOutcome(tag=tag, error=str(e))

        try:
            raw_date = response.data["commit"]["committer"]["date"]
            return _CommitOutcome(tag=tag, published_at=parse_rfc3339(raw_date))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            return _CommitOutcome(tag=tag, error=f"Malformed commit payload: {e!r}")
