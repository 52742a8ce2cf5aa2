"""Artifact aggregation, lifecycle classification, caching and queries."""

from artifact_tracker.artifacts.models import (
    PLATFORMS,
    AggregationResult,
    ArtifactDataset,
    ArtifactRecord,
    DatasetSnapshot,
    ItemFailure,
    Platform,
    SupportStatus,
)
from artifact_tracker.artifacts.service import ArtifactService

__all__ = [
    "PLATFORMS",
    "AggregationResult",
    "ArtifactDataset",
    "ArtifactRecord",
    "ArtifactService",
    "DatasetSnapshot",
    "ItemFailure",
    "Platform",
    "SupportStatus",
]
