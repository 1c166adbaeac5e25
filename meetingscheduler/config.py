"""
Configuration management using Pydantic models and YAML files.
"""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .domain.time_utils import DEFAULT_TIMEZONE

StorageBackend = Literal["durable", "memory", "cloud-document"]

BACKENDS: tuple[str, ...] = ("durable", "memory", "cloud-document")

ENV_PREFIX = "MEETING_SCHEDULER_"
ENV_BACKEND = f"{ENV_PREFIX}STORAGE_BACKEND"
ENV_DATA_DIR = f"{ENV_PREFIX}DATA_DIR"
ENV_FIRESTORE_PROJECT = f"{ENV_PREFIX}FIRESTORE_PROJECT"
ENV_FIRESTORE_API_KEY = f"{ENV_PREFIX}FIRESTORE_API_KEY"
ENV_FIRESTORE_TOKEN = f"{ENV_PREFIX}FIRESTORE_TOKEN"

DEFAULT_DATA_DIR = "~/.meetingscheduler/data"
DEFAULT_FALLBACK_DIR = "~/.meetingscheduler/fallback"


class DurableOptions(BaseModel):
    """Options for the durable JSON-file backend."""
    directory: str = DEFAULT_DATA_DIR

    def get_directory(self) -> Path:
        return Path(self.directory).expanduser()


class MemoryOptions(BaseModel):
    """Options for the in-memory backend."""
    persistent: bool = False


class CloudDocumentOptions(BaseModel):
    """Options for the Firestore REST backend."""
    project_id: Optional[str] = None
    database: str = "(default)"
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    base_url: str = "https://firestore.googleapis.com/v1"
    timeout: float = 30.0

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        """Ensure HTTP timeout is positive."""
        if value <= 0:
            raise ValueError("timeout must be greater than zero")
        return value

    def missing_settings(self) -> list[str]:
        """Names of settings required before the backend can be used."""
        missing = []
        if not self.project_id:
            missing.append("project_id")
        if not (self.api_key or self.access_token):
            missing.append("api_key or access_token")
        return missing


class StorageOptions(BaseModel):
    durable: DurableOptions = Field(default_factory=DurableOptions)
    memory: MemoryOptions = Field(default_factory=MemoryOptions)
    cloud_document: CloudDocumentOptions = Field(default_factory=CloudDocumentOptions)


class StorageConfig(BaseModel):
    """Selects a storage backend and carries the options of every backend."""
    backend: StorageBackend = "durable"
    options: StorageOptions = Field(default_factory=StorageOptions)
    fallback_directory: str = DEFAULT_FALLBACK_DIR

    def get_fallback_directory(self) -> Path:
        """Where operations that fail on the configured backend are retried."""
        return Path(self.fallback_directory).expanduser()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageConfig":
        """Build a storage config from environment variables alone."""
        return apply_env_overrides(cls(), environ)

    @classmethod
    def preset(cls, name: str, environ: Optional[Mapping[str, str]] = None) -> "StorageConfig":
        """
        Named configurations.

        ``development`` keeps data in a persistent in-memory store,
        ``production`` writes JSON files, ``cloud`` reads Firestore
        settings from the environment.
        """
        if name == "development":
            return cls(backend="memory", options=StorageOptions(memory=MemoryOptions(persistent=True)))
        if name == "production":
            return cls(backend="durable")
        if name == "cloud":
            return apply_env_overrides(cls(backend="cloud-document"), environ)
        raise ValueError(
            f"Unknown storage preset '{name}'. Use one of: development, production, cloud."
        )

    def with_backend(self, backend: str) -> "StorageConfig":
        if backend not in BACKENDS:
            raise ValueError(f"Unknown storage backend '{backend}'. Use one of: {', '.join(BACKENDS)}.")
        return self.model_copy(update={"backend": backend}, deep=True)


class AppConfig(BaseModel):
    """Application configuration."""
    storage: StorageConfig = Field(default_factory=StorageConfig)
    timezone: str = DEFAULT_TIMEZONE
    days_ahead: int = 14
    log_level: str = "WARNING"

    @field_validator("days_ahead")
    @classmethod
    def validate_days_ahead(cls, value: int) -> int:
        if not 1 <= value <= 365:
            raise ValueError("days_ahead must be between 1 and 365")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    @classmethod
    def load(
        cls,
        config_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        """
        Load the YAML file when it exists, then apply environment overrides.

        An explicitly given path must exist; the default path is optional.
        """
        if config_path is not None:
            config = cls.load_from_yaml(config_path)
        else:
            default_path = get_default_config_path()
            config = cls.load_from_yaml(default_path) if default_path.exists() else cls()

        config.storage = apply_env_overrides(config.storage, environ)
        return config


def apply_env_overrides(
    storage: StorageConfig, environ: Optional[Mapping[str, str]] = None
) -> StorageConfig:
    """Return a copy of ``storage`` with MEETING_SCHEDULER_* variables applied."""
    env = os.environ if environ is None else environ
    data: Dict[str, Any] = storage.model_dump()

    if env.get(ENV_BACKEND):
        data["backend"] = env[ENV_BACKEND]
    if env.get(ENV_DATA_DIR):
        data["options"]["durable"]["directory"] = env[ENV_DATA_DIR]

    cloud = data["options"]["cloud_document"]
    if env.get(ENV_FIRESTORE_PROJECT):
        cloud["project_id"] = env[ENV_FIRESTORE_PROJECT]
    if env.get(ENV_FIRESTORE_API_KEY):
        cloud["api_key"] = env[ENV_FIRESTORE_API_KEY]
    if env.get(ENV_FIRESTORE_TOKEN):
        cloud["access_token"] = env[ENV_FIRESTORE_TOKEN]

    return StorageConfig.model_validate(data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    config_path = Path.cwd() / "config.yaml"

    if not config_path.exists():
        config_path = Path.home() / ".meetingscheduler" / "config.yaml"

    return config_path
