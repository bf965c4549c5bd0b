"""Configuration management - loads pipeline.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from subscription_pipeline.models import PipelineConfig
from subscription_pipeline.models.settings import DlqSettings, RetentionSettings, SchedulerSettings


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads pipeline.yaml and provides validated access to:
    - Dead letter queue retry settings
    - Retention settings
    - Background scheduler settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to pipeline.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/pipeline.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._pipeline_config: Optional[PipelineConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/pipeline.yaml")

    def _load_config(self) -> None:
        """Load and validate pipeline.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/pipeline.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")

        try:
            self._pipeline_config = PipelineConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e
        except TypeError as e:
            raise ConfigurationError(f"Configuration must be a mapping: {e}") from e

    @property
    def pipeline(self) -> PipelineConfig:
        """Get validated pipeline configuration."""
        if self._pipeline_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._pipeline_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def dlq_settings(self) -> DlqSettings:
        """Get dead letter queue settings (max_retries, batch_size, base delay)."""
        return self.pipeline.dlq

    @property
    def retention_settings(self) -> RetentionSettings:
        """Get retention settings."""
        return self.pipeline.retention

    @property
    def scheduler_settings(self) -> SchedulerSettings:
        """Get background scheduler settings."""
        return self.pipeline.scheduler

    def is_platform_enabled(self, platform) -> bool:
        """Check whether notifications from a platform are accepted."""
        return platform in self.pipeline.platforms

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = None
