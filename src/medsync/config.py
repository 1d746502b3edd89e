"""Configuration management for medsync.

Settings come from three places, weakest first: field defaults, the YAML
file ``config.yaml`` in the data directory, and ``MEDSYNC_*`` environment
variables.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .adapters.http_client import MedicationAPI
from .store import get_db_path as _db_path_in


logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"
DEFAULT_DATA_DIR = "~/.medsync"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class MedSyncSettings(BaseSettings):
    """Settings for the medsync client."""

    model_config = SettingsConfigDict(env_prefix="MEDSYNC_", extra="ignore")

    # Remote service
    api_base_url: str = MedicationAPI.DEFAULT_BASE_URL
    api_key: str = ""
    timeout_seconds: float = 30.0

    # Local state
    username: str = ""
    data_dir: Path = Path(DEFAULT_DATA_DIR)

    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings,
                                   dotenv_settings, file_secret_settings):
        # Environment beats values passed in from config.yaml
        return env_settings, init_settings, file_secret_settings

    @field_validator('api_base_url')
    @classmethod
    def validate_base_url(cls, v):
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError('API base URL must start with http:// or https://')
        return v

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v):
        if v < 1 or v > 300:
            raise ValueError('Timeout must be between 1 and 300 seconds')
        return v

    @field_validator('data_dir')
    @classmethod
    def expand_data_dir(cls, v):
        return Path(os.path.expanduser(str(v)))

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in _LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(_LOG_LEVELS)}")
        return v

    def get_config_path(self) -> Path:
        """Get the config file path."""
        return self.data_dir / CONFIG_FILE

    def to_yaml(self) -> str:
        """Serialize settings to YAML."""
        return yaml.dump(self.model_dump(mode="json"), default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "MedSyncSettings":
        """Build settings from YAML, letting the environment override it."""
        data = yaml.safe_load(yaml_str) or {}
        if not isinstance(data, dict):
            raise ValueError("Configuration file must contain a mapping")
        return cls(**data)


def default_config_path() -> Path:
    """Config file location before any settings have been read."""
    data_dir = os.environ.get("MEDSYNC_DATA_DIR", DEFAULT_DATA_DIR)
    return Path(os.path.expanduser(data_dir)) / CONFIG_FILE


class Config:
    """Configuration manager for medsync."""

    _instance: Optional[MedSyncSettings] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> MedSyncSettings:
        """Load configuration from file or fall back to defaults.

        Args:
            config_path: YAML file to read; defaults to ``config.yaml`` in the data dir

        Returns:
            The loaded settings, cached for later :meth:`get` calls
        """
        if cls._instance is not None:
            return cls._instance

        if config_path is None:
            config_path = default_config_path()

        config = None
        if config_path.exists():
            try:
                config = MedSyncSettings.from_yaml(config_path.read_text())
                logger.debug(f"Loaded configuration from {config_path}")
            except (OSError, yaml.YAMLError, ValueError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")

        if config is None:
            config = MedSyncSettings()

        cls._instance = config
        return config

    @classmethod
    def save(cls, config: MedSyncSettings, config_path: Optional[Path] = None) -> Path:
        """Save configuration to file."""
        if config_path is None:
            config_path = config.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(config.to_yaml())
        logger.info(f"Configuration saved to {config_path}")
        return config_path

    @classmethod
    def get(cls) -> MedSyncSettings:
        """Get the current configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reload(cls, config_path: Optional[Path] = None) -> MedSyncSettings:
        """Reload configuration from file."""
        cls._instance = None
        return cls.load(config_path)

    @classmethod
    def reset(cls):
        cls._instance = None


def get_config() -> MedSyncSettings:
    """Get the current configuration."""
    return Config.get()


def get_data_dir() -> Path:
    """Get the data directory, creating it if needed."""
    data_dir = get_config().data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_path() -> Path:
    """Get the medications database path for the current configuration."""
    return _db_path_in(get_data_dir())


def describe(config: MedSyncSettings) -> Dict[str, Any]:
    """Settings as displayable values, with the API key masked."""
    values = config.model_dump(mode="json")
    if values.get("api_key"):
        values["api_key"] = values["api_key"][:4] + "****"
    return values
