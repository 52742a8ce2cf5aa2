"""Configuration models and loaders."""

from artifact_tracker.config.loader import YamlConfigLoader
from artifact_tracker.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
