from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from artifact_tracker.artifacts.aggregator import ArtifactAggregator
from artifact_tracker.artifacts.cache import TimedCache
from artifact_tracker.artifacts.fallback import build_fallback_dataset
from artifact_tracker.artifacts.lifecycle import SupportPolicy, classify_dataset
from artifact_tracker.artifacts.models import ArtifactDataset, DatasetSnapshot
from artifact_tracker.config.models import ArtifactSettings
from artifact_tracker.core.errors import AggregationTimeout, NoDataAvailable, UpstreamError
from artifact_tracker.core.timeutils import Clock, utc_now
from artifact_tracker.upstream.client import GitHubClient

logger = logging.getLogger(__name__)


class ArtifactService:
    """
    Owns the artifact cache and decides what a request gets to see.

    Order of preference: fresh cache, a refresh from upstream, the stale cache, the
    fallback dataset. Only one refresh runs at a time; concurrent callers join it.
    """

    def __init__(
        self,
        config: ArtifactSettings,
        client: GitHubClient,
        *,
        clock: Clock = utc_now,
        aggregator: Optional[ArtifactAggregator] = None,
    ) -> None:
        self._config = config
        self._aggregator = aggregator or ArtifactAggregator(config, client)
        self._policy = SupportPolicy.from_settings(config)
        self._cache: TimedCache[ArtifactDataset] = TimedCache(
            timedelta(seconds=config.cache_ttl_seconds),
            clock=clock,
        )
        self._refresh_task: Optional[asyncio.Task[DatasetSnapshot]] = None

    @property
    def cache(self) -> TimedCache[ArtifactDataset]:
        return self._cache

    @property
    def policy(self) -> SupportPolicy:
        return self._policy

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def get_snapshot(self) -> DatasetSnapshot:
        """
        Return the dataset to answer a query with.

        The refresh is raced against aggregation_timeout_seconds. A caller that loses
        the race gets the stale cache if there is one, otherwise AggregationTimeout;
        the refresh itself keeps running and fills the cache for the next request.
        """
        cached = self._cache.get()
        if cached is not None and cached.is_fresh:
            return DatasetSnapshot(dataset=cached.data, source="cache", fetched_at=cached.timestamp, is_fresh=True)

        task = self._ensure_refresh()
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._config.aggregation_timeout_seconds)
        except asyncio.TimeoutError:
            cached = self._cache.get()
            if cached is not None:
                logger.warning(
                    "Artifact refresh is still running, serving the cached dataset. timeout_seconds=%s",
                    self._config.aggregation_timeout_seconds,
                )
                return DatasetSnapshot(dataset=cached.data, source="stale", fetched_at=cached.timestamp, is_fresh=False)
            raise AggregationTimeout(
                f"Artifact aggregation did not finish within {self._config.aggregation_timeout_seconds} seconds."
            ) from None

    async def refresh(self) -> DatasetSnapshot:
        """Run (or join) a refresh and wait for it without a timeout."""
        return await asyncio.shield(self._ensure_refresh())

    def _ensure_refresh(self) -> asyncio.Task[DatasetSnapshot]:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh())
            self._refresh_task.add_done_callback(_log_refresh_task_result)
        return self._refresh_task

    async def _refresh(self) -> DatasetSnapshot:
        cached = self._cache.get()
        try:
            result = await self._aggregator.aggregate(etag=cached.etag if cached else None)
        except UpstreamError as e:
            logger.warning("Artifact tag listing failed. error=%s", e)
            return self._degrade(e)
        except Exception as e:
            logger.exception("Unexpected failure while aggregating artifacts.")
            return self._degrade(e)

        now = self._cache.now()
        if result.not_modified and cached is not None:
            # Tags are unchanged, but support windows still move with the clock.
            dataset = classify_dataset(cached.data, now=now, policy=self._policy)
            entry = self._cache.set(dataset, etag=result.etag or cached.etag)
            logger.info("Artifact tags not modified, cached dataset revalidated.")
            return DatasetSnapshot(dataset=dataset, source="cache", fetched_at=entry.timestamp, is_fresh=True)

        if result.dataset.is_empty():
            return self._degrade(NoDataAvailable("Upstream returned no usable build tags."))

        dataset = classify_dataset(result.dataset, now=now, policy=self._policy)
        entry = self._cache.set(dataset, etag=result.etag)
        logger.info(
            "Artifact cache refreshed. windows=%d linux=%d failed=%d",
            len(dataset.windows),
            len(dataset.linux),
            len(result.failures),
        )
        return DatasetSnapshot(dataset=dataset, source="upstream", fetched_at=entry.timestamp, is_fresh=True)

    def _degrade(self, error: Exception) -> DatasetSnapshot:
        cached = self._cache.get()
        if cached is not None:
            logger.warning(
                "Serving the last known artifact dataset after a failed refresh. cached_at=%s error=%s",
                cached.timestamp.isoformat(),
                error,
            )
            return DatasetSnapshot(dataset=cached.data, source="stale", fetched_at=cached.timestamp, is_fresh=False)

        if self._config.use_fallback:
            logger.warning("No cached artifacts, serving the fallback dataset. error=%s", error)
            now = self._cache.now()
            fallback = build_fallback_dataset(base_url=self._config.download_base_url, now=now)
            dataset = classify_dataset(fallback, now=now, policy=self._policy)
            return DatasetSnapshot(dataset=dataset, source="fallback", fetched_at=None, is_fresh=False)

        if isinstance(error, (UpstreamError, NoDataAvailable)):
            raise error
        raise NoDataAvailable("No artifact data is available.") from error


def _log_refresh_task_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Artifact refresh finished without data. error=%s", error)
