from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from artifact_tracker.artifacts.models import ArtifactRecord, Platform

# v1.0.0.14164, v1.0.0-14164, v1.0.0_14164
TAG_VERSION_PATTERN = re.compile(r"^v\d+\.\d+\.\d+[._-](\d+)$")

_PLATFORM_DIRECTORIES: dict[Platform, str] = {
    "windows": "build_server_windows",
    "linux": "build_proot_linux",
}

_PLATFORM_FILES: dict[Platform, dict[str, str]] = {
    "windows": {"zip": "server.zip", "7z": "server.7z"},
    "linux": {"zip": "fx.tar.xz", "7z": "fx.tar.xz"},
}


def extract_version(tag_name: str) -> Optional[str]:
    """Return the build number of a release tag, or None when the tag is not a build tag."""
    match = TAG_VERSION_PATTERN.match(tag_name.strip())
    if not match:
        return None
    return match.group(1)


def artifact_id(version: str, sha: str) -> str:
    return f"{version}-{sha}"


def artifact_url(base_url: str, platform: Platform, version: str, sha: str) -> str:
    directory = _PLATFORM_DIRECTORIES[platform]
    return f"{base_url.rstrip('/')}/{directory}/master/{artifact_id(version, sha)}"


def download_urls(base_url: str, platform: Platform, version: str, sha: str) -> dict[str, str]:
    root = artifact_url(base_url, platform, version, sha)
    return {name: f"{root}/{filename}" for name, filename in _PLATFORM_FILES[platform].items()}


def build_record(
    *,
    base_url: str,
    platform: Platform,
    version: str,
    sha: str,
    published_at: datetime,
) -> ArtifactRecord:
    return ArtifactRecord(
        version=version,
        platform=platform,
        source_commit=sha,
        download_urls=download_urls(base_url, platform, version, sha),
        artifact_url=artifact_url(base_url, platform, version, sha),
        published_at=published_at,
    )
