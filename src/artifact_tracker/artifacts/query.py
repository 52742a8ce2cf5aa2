from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from artifact_tracker.artifacts.lifecycle import SupportPolicy
from artifact_tracker.artifacts.models import (
    PLATFORMS,
    QUERY_STATUSES,
    ArtifactDataset,
    ArtifactRecord,
    DatasetSnapshot,
    Platform,
    QueryStatus,
)
from artifact_tracker.config.models import ArtifactSettings
from artifact_tracker.core.errors import InvalidQueryError
from artifact_tracker.core.timeutils import ensure_utc, format_rfc3339, parse_rfc3339

EOL_INFO_URL = "https://aka.cfx.re/eol"

SUPPORT_STATUS_EXPLANATION = {
    "recommended": "Fully supported, recommended for production use",
    "latest": "Most recent build, supported for testing",
    "active": "Currently supported",
    "deprecated": "Support ended, but still usable",
    "eol": "End of life, not supported and may be inaccessible from server browser",
    "info": EOL_INFO_URL,
}

_LOWERCASE_PARAMS = ("platform", "status", "sortBy", "sortOrder")


class ArtifactQuery(BaseModel):
    """Recognized query options of the artifacts endpoint, after defaults and caps."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    platform: Optional[Platform] = None
    version: Optional[str] = None
    search: Optional[str] = None
    status: Optional[QueryStatus] = None
    include_eol: bool = Field(default=False, alias="includeEol")
    before: Optional[datetime] = None
    after: Optional[datetime] = None
    sort_by: Literal["version", "date"] = Field(default="version", alias="sortBy")
    sort_order: Literal["asc", "desc"] = Field(default="desc", alias="sortOrder")
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("before", "after", mode="before")
    @classmethod
    def _parse_date_bound(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return parse_rfc3339(value)
            except ValueError as e:
                raise ValueError(f"not an ISO 8601 date: {value}") from e
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value

    @property
    def platforms(self) -> tuple[Platform, ...]:
        if self.platform is None:
            return PLATFORMS
        return (self.platform,)


def parse_query(params: Mapping[str, str], settings: ArtifactSettings) -> ArtifactQuery:
    """Build an ArtifactQuery from raw request parameters; blank values count as absent."""
    raw: dict[str, Any] = {}
    for key, value in params.items():
        text = value.strip()
        if text:
            raw[key] = text.lower() if key in _LOWERCASE_PARAMS else text

    if raw.get("platform") == "both":
        raw.pop("platform")
    raw.setdefault("limit", settings.default_limit)

    try:
        query = ArtifactQuery.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise InvalidQueryError(f"Invalid query parameters: {problems}") from e

    if query.limit > settings.max_limit:
        query = query.model_copy(update={"limit": settings.max_limit})
    return query


def matches(record: ArtifactRecord, query: ArtifactQuery) -> bool:
    if record.eol and not query.include_eol:
        return False
    if query.version is not None and record.version != query.version:
        return False
    if query.search and query.search.lower() not in record.version.lower():
        return False
    if query.status is not None and record.support_status != query.status:
        return False
    if query.before is not None and record.published_at > query.before:
        return False
    if query.after is not None and record.published_at < query.after:
        return False
    return True


def sort_records(records: Iterable[ArtifactRecord], query: ArtifactQuery) -> list[ArtifactRecord]:
    descending = query.sort_order == "desc"
    if query.sort_by == "date":
        return sorted(records, key=lambda record: record.published_at, reverse=descending)
    return sorted(records, key=lambda record: record.version_number, reverse=descending)


@dataclass(slots=True)
class QueryResult:
    records: Dict[Platform, list[ArtifactRecord]] = field(default_factory=dict)
    filtered: Dict[Platform, int] = field(default_factory=dict)


def run_query(dataset: ArtifactDataset, query: ArtifactQuery) -> QueryResult:
    """Filter, sort and page each requested platform. Unrequested platforms come back empty."""
    result = QueryResult(
        records={platform: [] for platform in PLATFORMS},
        filtered={platform: 0 for platform in PLATFORMS},
    )
    for platform in query.platforms:
        selected = [record for record in dataset.platform(platform).values() if matches(record, query)]
        result.filtered[platform] = len(selected)
        ordered = sort_records(selected, query)
        result.records[platform] = ordered[query.offset : query.offset + query.limit]
    return result


def _newest_first(records: Mapping[str, ArtifactRecord]) -> list[ArtifactRecord]:
    return sorted(records.values(), key=lambda record: record.version_number, reverse=True)


def find_latest(records: Mapping[str, ArtifactRecord]) -> Optional[ArtifactRecord]:
    ordered = _newest_first(records)
    for record in ordered:
        if record.support_status == "latest":
            return record
    return ordered[0] if ordered else None


def find_recommended(records: Mapping[str, ArtifactRecord]) -> Optional[ArtifactRecord]:
    """
    The build labelled recommended, or when its window has run out, the newest
    supported build behind the latest one.
    """
    ordered = _newest_first(records)
    for record in ordered:
        if record.support_status == "recommended":
            return record
    for record in ordered[1:]:
        if not record.eol:
            return record
    return None


def compute_stats(records: Mapping[str, ArtifactRecord], *, filtered: int) -> dict[str, int]:
    values = list(records.values())
    stats = {"total": len(values), "filtered": filtered}
    for status in QUERY_STATUSES:
        stats[status] = sum(1 for record in values if record.support_status == status)
    return stats


def _describe_window(window: timedelta) -> str:
    days = window.total_seconds() / 86400
    if days.is_integer() and days % 7 == 0:
        weeks = int(days // 7)
        return f"{weeks} week{'s' if weeks != 1 else ''}"
    if days.is_integer():
        return f"{int(days)} day{'s' if days != 1 else ''}"
    return f"{days:g} days"


def support_schedule(policy: SupportPolicy) -> dict[str, str]:
    return {
        "recommended": f"{_describe_window(policy.recommended_window)} after next release",
        "latest": f"{_describe_window(policy.support_window)} after next release",
        "active": f"{_describe_window(policy.support_window)} after next release",
        "eol": "once the support window has elapsed",
    }


def _payload(record: Optional[ArtifactRecord]) -> Optional[dict[str, Any]]:
    return record.to_payload() if record is not None else None


def build_response(snapshot: DatasetSnapshot, query: ArtifactQuery, *, policy: SupportPolicy) -> dict[str, Any]:
    """Assemble the response envelope of the artifacts endpoint."""
    dataset = snapshot.dataset
    result = run_query(dataset, query)

    recommended: dict[str, Any] = {}
    latest: dict[str, Any] = {}
    stats: dict[str, Any] = {}
    for platform in PLATFORMS:
        records = dataset.platform(platform)
        recommended[platform] = _payload(find_recommended(records))
        latest[platform] = _payload(find_latest(records))
        stats[platform] = compute_stats(records, filtered=result.filtered[platform])

    primary: Platform = query.platform or "windows"
    filtered = result.filtered[primary]

    return {
        "data": {
            platform: {record.version: record.to_payload() for record in result.records[platform]}
            for platform in PLATFORMS
        },
        "metadata": {
            "platforms": list(PLATFORMS),
            "recommended": recommended,
            "latest": latest,
            "stats": stats,
            "pagination": {
                "limit": query.limit,
                "offset": query.offset,
                "filtered": filtered,
                "total": stats[primary]["total"],
                "currentPage": query.offset // query.limit + 1,
                "totalPages": math.ceil(filtered / query.limit),
            },
            "filters": {
                "search": query.search,
                "platform": query.platform,
                "version": query.version,
                "supportStatus": query.status,
                "includeEol": query.include_eol,
                "beforeDate": format_rfc3339(query.before) if query.before else None,
                "afterDate": format_rfc3339(query.after) if query.after else None,
                "sortBy": query.sort_by,
                "sortOrder": query.sort_order,
            },
            "supportSchedule": support_schedule(policy),
            "supportStatusExplanation": dict(SUPPORT_STATUS_EXPLANATION),
            "cache": {
                "source": snapshot.source,
                "fresh": snapshot.is_fresh,
                "timestamp": format_rfc3339(snapshot.fetched_at) if snapshot.fetched_at else None,
            },
        },
    }
