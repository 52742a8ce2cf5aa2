from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from artifact_tracker.core.timeutils import format_rfc3339

Platform = Literal["windows", "linux"]
PLATFORMS: tuple[Platform, ...] = ("windows", "linux")

SupportStatus = Literal["recommended", "latest", "active", "deprecated", "eol", "unknown"]
QueryStatus = Literal["recommended", "latest", "active", "deprecated", "eol"]
QUERY_STATUSES: tuple[QueryStatus, ...] = ("recommended", "latest", "active", "deprecated", "eol")

DatasetSource = Literal["upstream", "cache", "stale", "fallback"]


@dataclass(frozen=True, slots=True)
class ArtifactRecord:
    """
    One server build for one platform.

    Records are immutable; classification returns copies with only
    support_status and support_ends changed.
    """

    version: str
    platform: Platform
    source_commit: str
    download_urls: Dict[str, str]
    artifact_url: str
    published_at: datetime
    support_status: SupportStatus = "unknown"
    support_ends: Optional[datetime] = None

    @property
    def eol(self) -> bool:
        return self.support_status == "eol"

    @property
    def version_number(self) -> int:
        return int(self.version)

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "platform": self.platform,
            "recommended": self.support_status == "recommended",
            "commit": self.source_commit,
            "download_urls": dict(self.download_urls),
            "artifact_url": self.artifact_url,
            "published_at": format_rfc3339(self.published_at),
            "eol": self.eol,
            "supportStatus": self.support_status,
            "supportEnds": format_rfc3339(self.support_ends) if self.support_ends else None,
        }


@dataclass(slots=True)
class ArtifactDataset:
    """Per-platform version -> record mappings."""

    windows: Dict[str, ArtifactRecord] = field(default_factory=dict)
    linux: Dict[str, ArtifactRecord] = field(default_factory=dict)

    def platform(self, name: Platform) -> Dict[str, ArtifactRecord]:
        if name == "windows":
            return self.windows
        if name == "linux":
            return self.linux
        raise ValueError(f"Unknown platform: {name}")

    def versions(self) -> set[str]:
        return set(self.windows) | set(self.linux)

    def is_empty(self) -> bool:
        return not self.windows and not self.linux

    def count(self) -> int:
        return len(self.windows) + len(self.linux)


@dataclass(frozen=True, slots=True)
class ItemFailure:
    """A single tag that could not be turned into artifact records."""

    tag: str
    version: str
    reason: str


@dataclass(slots=True)
class AggregationResult:
    dataset: ArtifactDataset
    failures: list[ItemFailure] = field(default_factory=list)
    tags_seen: int = 0
    tags_skipped: int = 0
    etag: Optional[str] = None
    not_modified: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True, slots=True)
class DatasetSnapshot:
    """A classified dataset plus where it came from, as handed to the query layer."""

    dataset: ArtifactDataset
    source: DatasetSource
    fetched_at: Optional[datetime]
    is_fresh: bool
