from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "artifact-tracker"


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 7


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = FileLoggingSettings()


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8080


class GitHubSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    api_base_url: str = "https://api.github.com"
    repository: str = "citizenfx/fivem"
    token: str = ""
    user_agent: str = "artifact-tracker"

    request_timeout_seconds: float = 15.0
    per_page: int = Field(default=100, ge=1, le=100)

    # Retry policy for transient upstream failures
    max_attempts: int = Field(default=3, ge=1)
    initial_retry_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0


class ArtifactSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_ttl_seconds: float = 3600.0
    aggregation_timeout_seconds: float = 10.0

    tag_max_pages: int = Field(default=10, ge=1)
    commit_batch_size: int = Field(default=10, ge=1)
    batch_pause_seconds: float = 0.1

    # Support windows
    recommended_window_days: float = 42.0
    support_window_days: float = 14.0

    download_base_url: str = "https://runtime.fivem.net/artifacts/fivem"
    use_fallback: bool = True

    default_limit: int = Field(default=100, ge=1)
    max_limit: int = Field(default=500, ge=1)


class IssueSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_ttl_seconds: float = 1800.0
    max_pages: int = Field(default=10, ge=1)


class ChangelogSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_ttl_seconds: float = 3600.0


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    app: AppSettings = AppSettings()
    logging: LoggingSettings = LoggingSettings()
    server: ServerSettings = ServerSettings()
    github: GitHubSettings = GitHubSettings()
    artifacts: ArtifactSettings = ArtifactSettings()
    issues: IssueSettings = IssueSettings()
    changelog: ChangelogSettings = ChangelogSettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "APP__"
    dotenv_path: Optional[str] = "data/.env"
