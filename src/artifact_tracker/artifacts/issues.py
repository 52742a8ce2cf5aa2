"""Issue reports that mention a known artifact build."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Iterable, Literal, Mapping, Optional

from artifact_tracker.artifacts.cache import TimedCache
from artifact_tracker.artifacts.service import ArtifactService
from artifact_tracker.config.models import IssueSettings
from artifact_tracker.core.errors import ArtifactTrackerError
from artifact_tracker.core.timeutils import Clock, format_rfc3339, utc_now
from artifact_tracker.upstream.client import GitHubClient, PageResult

logger = logging.getLogger(__name__)

IssueState = Literal["open", "closed"]
Severity = Literal["high", "medium", "low"]

ISSUE_STATES: tuple[IssueState, ...] = ("open", "closed")
SEVERITY_ORDER: dict[str, int] = {"high": 0, "medium": 1, "low": 2}

_VERSION_PATTERNS = (
    re.compile(r"(?:artifact\s+(?:version\s+)?|fxserver\s+(?:b|build)?|fxs\s+(?:b|build)?)\s*(\d{4,})", re.IGNORECASE),
    re.compile(r"(?:version|build|artifact|fxserver|fxs)\s*(?:#|number|no\.?|num\.?)?\s*(\d{4,})", re.IGNORECASE),
    re.compile(r"(?:v|version|build|artifact|fxserver|fxs|server)\s*(?:#|number|no\.?|num\.?)?\s*(\d{4,})", re.IGNORECASE),
)
_SPECIFIC_VERSIONS_SECTION = re.compile(r"Specific version\(s\):\s*([\s\S]*?)(?:\n\n|$)", re.IGNORECASE)
_BARE_NUMBER = re.compile(r"\b(\d{4,})\b")


@dataclass(frozen=True, slots=True)
class ArtifactIssue:
    number: int
    title: str
    state: IssueState
    artifact_version: str
    created_at: str
    updated_at: str
    url: str
    labels: tuple[str, ...] = ()
    milestone: Optional[str] = None
    assignees: tuple[str, ...] = ()
    severity: Severity = "low"
    report_count: int = 1

    @property
    def last_comment_at(self) -> str:
        # The issue listing has no comment timestamps; updated_at is the closest proxy.
        return self.updated_at

    def to_payload(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "artifact_version": self.artifact_version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "url": self.url,
            "report_count": self.report_count,
            "labels": list(self.labels),
            "milestone": self.milestone,
            "assignees": list(self.assignees),
            "severity": self.severity,
            "last_comment_at": self.last_comment_at,
        }


def find_version_references(text: str, valid_versions: set[str]) -> list[str]:
    """Build numbers mentioned in text that belong to known builds, in first-seen order."""
    found: dict[str, None] = {}
    for pattern in _VERSION_PATTERNS:
        for match in pattern.finditer(text):
            if match.group(1) in valid_versions:
                found.setdefault(match.group(1), None)

    section = _SPECIFIC_VERSIONS_SECTION.search(text)
    if section:
        for match in _BARE_NUMBER.finditer(section.group(1)):
            if match.group(1) in valid_versions:
                found.setdefault(match.group(1), None)
    return list(found)


def _label_names(issue: Mapping[str, Any]) -> list[str]:
    names = []
    for label in issue.get("labels") or []:
        name = label if isinstance(label, str) else (label or {}).get("name")
        if isinstance(name, str):
            names.append(name)
    return names


def determine_severity(labels: Iterable[str]) -> Severity:
    lowered = {label.lower() for label in labels}
    if "critical" in lowered or "high-priority" in lowered:
        return "high"
    if "medium-priority" in lowered:
        return "medium"
    return "low"


def extract_artifact_issues(raw_issues: Iterable[Mapping[str, Any]], valid_versions: set[str]) -> list[ArtifactIssue]:
    """
    One ArtifactIssue per (issue, referenced build), with report counts per build.

    Pull requests returned by the issues listing and repeated issue numbers are skipped.
    Sorted by severity, then build (newest first), then last update (newest first).
    """
    seen_numbers: set[int] = set()
    extracted: list[ArtifactIssue] = []
    for raw in raw_issues:
        number = raw.get("number")
        if not isinstance(number, int) or number in seen_numbers or raw.get("pull_request"):
            continue
        seen_numbers.add(number)

        title = raw.get("title") or ""
        body = raw.get("body") or ""
        versions = find_version_references(title, valid_versions)
        for version in find_version_references(body, valid_versions):
            if version not in versions:
                versions.append(version)
        if not versions:
            continue

        labels = _label_names(raw)
        milestone = (raw.get("milestone") or {}).get("title")
        assignees = tuple(
            assignee["login"] for assignee in raw.get("assignees") or [] if isinstance(assignee, dict) and "login" in assignee
        )
        for version in versions:
            extracted.append(
                ArtifactIssue(
                    number=number,
                    title=title,
                    state="closed" if raw.get("state") == "closed" else "open",
                    artifact_version=version,
                    created_at=raw.get("created_at") or "",
                    updated_at=raw.get("updated_at") or "",
                    url=raw.get("html_url") or "",
                    labels=tuple(labels),
                    milestone=milestone,
                    assignees=assignees,
                    severity=determine_severity(labels),
                )
            )

    counts: dict[str, int] = defaultdict(int)
    for issue in extracted:
        counts[issue.artifact_version] += 1
    counted = [replace(issue, report_count=counts[issue.artifact_version]) for issue in extracted]

    # updated_at is RFC 3339 in UTC, so string order is time order.
    counted.sort(key=lambda issue: issue.updated_at, reverse=True)
    counted.sort(key=lambda issue: int(issue.artifact_version), reverse=True)
    counted.sort(key=lambda issue: SEVERITY_ORDER[issue.severity])
    return counted


def issue_stats(issues: list[ArtifactIssue]) -> dict[str, Any]:
    by_version: dict[str, int] = defaultdict(int)
    for issue in issues:
        by_version[issue.artifact_version] += 1
    return {
        "total": len(issues),
        "open": sum(1 for issue in issues if issue.state == "open"),
        "closed": sum(1 for issue in issues if issue.state == "closed"),
        "bySeverity": {level: sum(1 for issue in issues if issue.severity == level) for level in SEVERITY_ORDER},
        "byVersion": dict(by_version),
    }


@dataclass(slots=True)
class IssueSnapshot:
    issues: list[ArtifactIssue] = field(default_factory=list)
    fetched_at: Optional[str] = None
    age_seconds: float = 0.0
    stale: bool = False


class IssueService:
    """
    Caches artifact-related issues for issue_settings.cache_ttl_seconds.

    Each issue state is listed with its own ETag; a 304 reuses the raw issues of the
    previous listing. On failure the last cached list is served when there is one.
    """

    def __init__(
        self,
        config: IssueSettings,
        client: GitHubClient,
        artifacts: ArtifactService,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._client = client
        self._artifacts = artifacts
        self._cache: TimedCache[list[ArtifactIssue]] = TimedCache(
            timedelta(seconds=config.cache_ttl_seconds),
            clock=clock,
        )
        self._raw_pages: dict[str, PageResult] = {}
        self._lock = asyncio.Lock()

    @property
    def cache(self) -> TimedCache[list[ArtifactIssue]]:
        return self._cache

    async def get_issues(self) -> IssueSnapshot:
        cached = self._cache.get()
        if cached is not None and cached.is_fresh:
            return self._snapshot(stale=False)

        async with self._lock:
            cached = self._cache.get()
            if cached is not None and cached.is_fresh:
                return self._snapshot(stale=False)
            try:
                await self._refresh()
            except ArtifactTrackerError as e:
                if cached is None:
                    raise
                logger.warning("Issue refresh failed, serving cached issues. error=%s", e)
                return self._snapshot(stale=True)
        return self._snapshot(stale=False)

    def _snapshot(self, *, stale: bool) -> IssueSnapshot:
        cached = self._cache.get()
        if cached is None:
            return IssueSnapshot(stale=stale)
        return IssueSnapshot(
            issues=cached.data,
            fetched_at=format_rfc3339(cached.timestamp),
            age_seconds=cached.age(self._cache.now()).total_seconds(),
            stale=stale,
        )

    async def _refresh(self) -> None:
        snapshot = await self._artifacts.get_snapshot()
        valid_versions = snapshot.dataset.versions()

        pages = await asyncio.gather(*(self._list_issues(state) for state in ISSUE_STATES))
        raw_issues = [issue for page in pages for issue in page.items]
        issues = extract_artifact_issues(raw_issues, valid_versions)
        self._cache.set(issues)
        logger.info(
            "Issue cache refreshed. raw_issues=%d artifact_issues=%d known_versions=%d",
            len(raw_issues),
            len(issues),
            len(valid_versions),
        )

    async def _list_issues(self, state: IssueState) -> PageResult:
        previous = self._raw_pages.get(state)
        page = await self._client.paginate(
            self._client.repo_path("issues"),
            params={"state": state, "sort": "updated", "direction": "desc"},
            max_pages=self._config.max_pages,
            etag=previous.etag if previous else None,
        )
        if page.not_modified and previous is not None:
            logger.debug("Issue listing not modified. state=%s", state)
            return previous
        self._raw_pages[state] = page
        logger.info("Fetched issues. state=%s count=%d pages=%d", state, len(page.items), page.pages)
        return page


def filter_issues(
    issues: list[ArtifactIssue],
    *,
    version: Optional[str] = None,
    state: Optional[str] = None,
    severity: Optional[str] = None,
) -> list[ArtifactIssue]:
    selected = issues
    if version:
        selected = [issue for issue in selected if issue.artifact_version == version]
    if state:
        selected = [issue for issue in selected if issue.state == state]
    if severity:
        selected = [issue for issue in selected if issue.severity == severity]
    return selected
