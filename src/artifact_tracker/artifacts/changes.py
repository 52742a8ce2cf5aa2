"""Changelog between a build and the build before it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Literal, Mapping, Optional

from bs4 import BeautifulSoup, Tag

from artifact_tracker.artifacts.aggregator import TagRef, select_build_tags
from artifact_tracker.artifacts.cache import TimedCache
from artifact_tracker.config.models import ArtifactSettings, ChangelogSettings
from artifact_tracker.core.errors import UpstreamNotFound
from artifact_tracker.core.timeutils import Clock, utc_now
from artifact_tracker.upstream.client import GitHubClient

logger = logging.getLogger(__name__)

ChangelogFormat = Literal["json", "markdown", "html"]
CHANGELOG_FORMATS: tuple[ChangelogFormat, ...] = ("json", "markdown", "html")

CommitCategory = Literal["features", "fixes", "other"]

_FEATURE_MARKERS = ("feat:", "feature:")
_FIX_MARKERS = ("fix:", "bug:", "fixes:")

_SECTION_TITLES: dict[CommitCategory, str] = {
    "features": "Features",
    "fixes": "Fixes",
    "other": "Other Changes",
}
_FILE_SECTIONS = (("added", "Added Files"), ("modified", "Modified Files"), ("removed", "Removed Files"))


@dataclass(frozen=True, slots=True)
class CommitChange:
    sha: str
    message: str
    author_name: str
    author_email: str
    date: str
    url: str
    additions: int = 0
    deletions: int = 0
    total: int = 0

    @property
    def headline(self) -> str:
        return self.message.split("\n", 1)[0]

    @property
    def category(self) -> CommitCategory:
        return categorize_commit(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {
            "sha": self.sha,
            "message": self.message,
            "author": {"name": self.author_name, "email": self.author_email, "date": self.date},
            "url": self.url,
            "stats": {"additions": self.additions, "deletions": self.deletions, "total": self.total},
        }


@dataclass(frozen=True, slots=True)
class FileChange:
    filename: str
    status: str
    additions: int
    deletions: int
    changes: int
    blob_url: str
    raw_url: str
    patch: Optional[str] = None

    def to_payload(self, *, include_diff: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "filename": self.filename,
            "status": self.status,
            "additions": self.additions,
            "deletions": self.deletions,
            "changes": self.changes,
            "blob_url": self.blob_url,
            "raw_url": self.raw_url,
        }
        if include_diff:
            payload["patch"] = self.patch
        return payload


@dataclass(slots=True)
class Changelog:
    from_version: str
    to_version: str
    tag: str
    commits: list[CommitChange] = field(default_factory=list)
    files: list[FileChange] = field(default_factory=list)

    def commits_in(self, category: CommitCategory) -> list[CommitChange]:
        return [commit for commit in self.commits if commit.category == category]

    def files_with_status(self, status: str) -> list[FileChange]:
        return [change for change in self.files if change.status == status]

    @property
    def totals(self) -> dict[str, int]:
        return {
            "additions": sum(change.additions for change in self.files),
            "deletions": sum(change.deletions for change in self.files),
            "changes": sum(change.changes for change in self.files),
        }

    @property
    def summary(self) -> dict[str, Any]:
        return {
            "total": len(self.commits),
            "features": len(self.commits_in("features")),
            "fixes": len(self.commits_in("fixes")),
            "other": len(self.commits_in("other")),
            "stats": self.totals,
        }


def categorize_commit(message: str) -> CommitCategory:
    lowered = message.lower()
    if any(marker in lowered for marker in _FEATURE_MARKERS):
        return "features"
    if any(marker in lowered for marker in _FIX_MARKERS):
        return "fixes"
    return "other"


def parse_compare(payload: Mapping[str, Any], *, from_version: str, to_tag: TagRef) -> Changelog:
    commits = []
    for raw in payload.get("commits") or []:
        details = raw.get("commit") or {}
        author = details.get("author") or {}
        stats = raw.get("stats") or {}
        commits.append(
            CommitChange(
                sha=(raw.get("sha") or "")[:7],
                message=details.get("message") or "",
                author_name=author.get("name") or "",
                author_email=author.get("email") or "",
                date=author.get("date") or "",
                url=raw.get("html_url") or "",
                additions=int(stats.get("additions") or 0),
                deletions=int(stats.get("deletions") or 0),
                total=int(stats.get("total") or 0),
            )
        )

    files = [
        FileChange(
            filename=raw.get("filename") or "",
            status=raw.get("status") or "",
            additions=int(raw.get("additions") or 0),
            deletions=int(raw.get("deletions") or 0),
            changes=int(raw.get("changes") or 0),
            blob_url=raw.get("blob_url") or "",
            raw_url=raw.get("raw_url") or "",
            patch=raw.get("patch"),
        )
        for raw in payload.get("files") or []
    ]
    return Changelog(from_version=from_version, to_version=to_tag.version, tag=to_tag.name, commits=commits, files=files)


def find_adjacent_tags(tags: list[TagRef], version: str) -> tuple[TagRef, TagRef]:
    """Return (previous, current) for a build number; raise UpstreamNotFound when either is missing."""
    by_version = {tag.version: tag for tag in tags}
    current = by_version.get(version)
    if current is None:
        raise UpstreamNotFound(f"No tag found for version {version}")
    older = [tag for tag in tags if int(tag.version) < int(version)]
    if not older:
        raise UpstreamNotFound(f"No previous version found for {version}")
    previous = max(older, key=lambda tag: int(tag.version))
    return previous, current


class ChangelogService:
    def __init__(
        self,
        config: ChangelogSettings,
        artifact_settings: ArtifactSettings,
        client: GitHubClient,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._artifact_settings = artifact_settings
        self._client = client
        self._clock = clock
        self._caches: dict[str, TimedCache[Changelog]] = {}

    async def get_changelog(self, version: str) -> Changelog:
        page = await self._client.paginate(
            self._client.repo_path("tags"),
            max_pages=self._artifact_settings.tag_max_pages,
        )
        tags, _ = select_build_tags(page.items)
        previous, current = find_adjacent_tags(tags, version)

        cache = self._cache_for(f"{previous.version}-{current.version}")
        cached = cache.get()
        if cached is not None and cached.is_fresh:
            return cached.data

        response = await self._client.get(self._client.repo_path(f"compare/{previous.name}...{current.name}"))
        changelog = parse_compare(response.data or {}, from_version=previous.version, to_tag=current)
        cache.set(changelog)
        logger.info(
            "Changelog loaded. from_version=%s to_version=%s commits=%d files=%d",
            previous.version,
            current.version,
            len(changelog.commits),
            len(changelog.files),
        )
        return changelog

    def _cache_for(self, key: str) -> TimedCache[Changelog]:
        cache = self._caches.get(key)
        if cache is None:
            cache = TimedCache(timedelta(seconds=self._config.cache_ttl_seconds), clock=self._clock)
            self._caches[key] = cache
        return cache


def render_json(changelog: Changelog, *, include_diffs: bool) -> dict[str, Any]:
    return {
        "data": {
            "commits": [commit.to_payload() for commit in changelog.commits],
            "files": [change.to_payload(include_diff=include_diffs) for change in changelog.files],
            "metadata": {
                "from": changelog.from_version,
                "to": changelog.to_version,
                "tag": changelog.tag,
                "totalCommits": len(changelog.commits),
                "totalFiles": len(changelog.files),
                "summary": changelog.summary,
                "stats": changelog.totals,
            },
        }
    }


def _summary_lines(changelog: Changelog) -> list[str]:
    summary = changelog.summary
    return [
        f"Total changes: {summary['total']}",
        f"Features: {summary['features']}",
        f"Fixes: {summary['fixes']}",
        f"Other: {summary['other']}",
        f"Total additions: {summary['stats']['additions']}",
        f"Total deletions: {summary['stats']['deletions']}",
    ]


def _file_line(change: FileChange) -> str:
    if change.status == "added":
        return f"(+{change.additions})"
    if change.status == "removed":
        return f"(-{change.deletions})"
    return f"(+{change.additions} -{change.deletions})"


def render_markdown(changelog: Changelog, *, include_diffs: bool) -> str:
    lines = [
        f"# Changelog for artifact {changelog.to_version}",
        "",
        f"Comparing {changelog.from_version} to {changelog.to_version}",
        "",
        "## Summary",
        "",
    ]
    lines.extend(f"- {line}" for line in _summary_lines(changelog))
    lines.extend(["", "## Files Changed", ""])
    for status, title in _FILE_SECTIONS:
        changes = changelog.files_with_status(status)
        if not changes:
            continue
        lines.extend([f"### {title}", ""])
        for change in changes:
            lines.append(f"- `{change.filename}` {_file_line(change)}")
            if include_diffs and change.patch and status == "modified":
                lines.extend(["```diff", change.patch, "```", ""])
        lines.append("")

    lines.extend(["## Commits", ""])
    for category, title in _SECTION_TITLES.items():
        commits = changelog.commits_in(category)
        if not commits:
            continue
        lines.extend([f"### {title}", ""])
        for commit in commits:
            lines.append(f"- [{commit.sha}]({commit.url}) {commit.headline}")
            lines.append(f"  Stats: +{commit.additions} -{commit.deletions}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def render_html(changelog: Changelog, *, include_diffs: bool) -> str:
    soup = BeautifulSoup("", "html.parser")

    def element(name: str, text: Optional[str] = None, **attrs: str) -> Tag:
        tag = soup.new_tag(name, attrs=attrs)
        if text is not None:
            tag.string = text
        return tag

    soup.append(element("h1", f"Changelog for artifact {changelog.to_version}"))
    soup.append(element("p", f"Comparing {changelog.from_version} to {changelog.to_version}"))
    soup.append(element("h2", "Summary"))
    summary_list = element("ul")
    for line in _summary_lines(changelog):
        summary_list.append(element("li", line))
    soup.append(summary_list)

    soup.append(element("h2", "Files Changed"))
    for status, title in _FILE_SECTIONS:
        changes = changelog.files_with_status(status)
        if not changes:
            continue
        soup.append(element("h3", title))
        file_list = element("ul")
        for change in changes:
            item = element("li")
            item.append(element("code", change.filename))
            item.append(f" {_file_line(change)}")
            if include_diffs and change.patch and status == "modified":
                pre = element("pre")
                pre.append(element("code", change.patch, **{"class": "diff"}))
                item.append(pre)
            file_list.append(item)
        soup.append(file_list)

    soup.append(element("h2", "Commits"))
    for category, title in _SECTION_TITLES.items():
        commits = changelog.commits_in(category)
        if not commits:
            continue
        soup.append(element("h3", title))
        commit_list = element("ul")
        for commit in commits:
            item = element("li")
            item.append(element("a", commit.sha, href=commit.url))
            item.append(f" {commit.headline}")
            item.append(element("br"))
            item.append(f"Stats: +{commit.additions} -{commit.deletions}")
            commit_list.append(item)
        soup.append(commit_list)
    return str(soup)
