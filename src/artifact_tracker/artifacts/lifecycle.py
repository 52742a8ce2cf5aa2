"""
Support lifecycle classification.

Each platform is classified as a whole because a build's support window depends on
when the next newer build was published. The release-label rule and the window rule
are kept separate so each can be exercised on its own.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Sequence

from artifact_tracker.artifacts.models import ArtifactDataset, ArtifactRecord, SupportStatus
from artifact_tracker.config.models import ArtifactSettings


@dataclass(frozen=True, slots=True)
class SupportPolicy:
    recommended_window: timedelta = timedelta(days=42)
    support_window: timedelta = timedelta(days=14)

    @classmethod
    def from_settings(cls, settings: ArtifactSettings) -> SupportPolicy:
        return cls(
            recommended_window=timedelta(days=settings.recommended_window_days),
            support_window=timedelta(days=settings.support_window_days),
        )

    def window_for(self, status: SupportStatus) -> timedelta:
        if status == "recommended":
            return self.recommended_window
        return self.support_window


def sort_versions_desc(versions: Sequence[str]) -> list[str]:
    return sorted(versions, key=int, reverse=True)


def assign_release_labels(versions_desc: Sequence[str]) -> dict[str, SupportStatus]:
    """
    Label builds by position, newest first.

    The newest build is "latest" and the one before it is "recommended", so the
    recommended build always trails by one release. A lone build is "recommended".
    Everything older starts out "active".
    """
    labels: dict[str, SupportStatus] = {version: "active" for version in versions_desc}
    if len(versions_desc) == 1:
        labels[versions_desc[0]] = "recommended"
    elif len(versions_desc) >= 2:
        labels[versions_desc[0]] = "latest"
        labels[versions_desc[1]] = "recommended"
    return labels


def classify_platform(
    records: Mapping[str, ArtifactRecord],
    *,
    now: datetime,
    policy: SupportPolicy = SupportPolicy(),
) -> dict[str, ArtifactRecord]:
    """
    Return new records with support_status and support_ends filled in.

    The reference date of a build is the publish date of the next newer build, or
    now for the newest one. Once reference + window has passed the build is "eol",
    whatever label it had.
    """
    versions = sort_versions_desc(list(records))
    labels = assign_release_labels(versions)

    classified: dict[str, ArtifactRecord] = {}
    for index, version in enumerate(versions):
        record = records[version]
        reference = records[versions[index - 1]].published_at if index > 0 else now
        status = labels[version]
        support_ends = reference + policy.window_for(status)
        if support_ends < now:
            status = "eol"
        classified[version] = dataclasses.replace(record, support_status=status, support_ends=support_ends)

    # Keep the caller's key order so the query layer sees insertion order on ties.
    return {version: classified[version] for version in records}


def classify_dataset(dataset: ArtifactDataset, *, now: datetime, policy: SupportPolicy) -> ArtifactDataset:
    return ArtifactDataset(
        windows=classify_platform(dataset.windows, now=now, policy=policy),
        linux=classify_platform(dataset.linux, now=now, policy=policy),
    )
