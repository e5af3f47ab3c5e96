"""
Centralized Configuration for the Assessment Engine

Configuration is assembled from defaults, an optional YAML or JSON file
(path in ENGINE_CONFIG_PATH) and environment variables, which take priority.
Every section validates its values on load.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml

logger = logging.getLogger(__name__)


class EngineConfig(BaseSettings):
    """Adaptive engine tuning"""
    model_config = SettingsConfigDict(env_prefix="ENGINE_", env_file=".env", extra="ignore")

    adaptive_window: int = Field(default=3, description="Responses in the rolling accuracy window")
    raise_threshold: float = 0.8
    lower_threshold: float = 0.3
    essay_min_words: int = 50
    max_hints: int = 2
    default_time_limit_ms: int = 3_600_000
    default_question_count: int = 10
    lock_shards: int = 64
    rapid_answer_threshold: int = 5
    rapid_answer_window_ms: int = 30_000
    random_seed: Optional[int] = None

    @field_validator('raise_threshold', 'lower_threshold')
    @classmethod
    def validate_threshold(cls, v):
        """Thresholds are accuracy fractions"""
        if not 0 <= v <= 1:
            raise ValueError(f"Threshold must be between 0 and 1, got {v}")
        return v

    @field_validator('adaptive_window', 'lock_shards', 'rapid_answer_threshold')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v

    @model_validator(mode='after')
    def validate_threshold_order(self):
        if self.lower_threshold >= self.raise_threshold:
            raise ValueError("lower_threshold must be below raise_threshold")
        return self


class LoggingConfig(BaseSettings):
    """Logging configuration"""
    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore", populate_by_name=True)

    level: str = "INFO"
    json_output: bool = Field(default=False, alias="LOG_JSON")
    file: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class DatabaseConfig(BaseSettings):
    """Persistence configuration; an empty URL selects the in-memory store"""
    model_config = SettingsConfigDict(env_prefix="ENGINE_DATABASE_", env_file=".env", extra="ignore")

    url: Optional[str] = None
    echo: bool = False


class APIConfig(BaseSettings):
    """HTTP surface configuration"""
    model_config = SettingsConfigDict(env_prefix="API_", env_file=".env", extra="ignore")

    host: str = "0.0.0.0"
    port: int = 8000
    prefix: str = "/api"
    allow_origins: List[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseModel):
    """Main application configuration"""
    app_name: str = "Adaptive Assessment Engine"
    version: str = "0.1.0"
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)


class ConfigLoader:
    """
    Configuration loader for the engine.

    Loads configuration from:
    1. Default values
    2. Config file
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
        """
        self.config_path = config_path or os.environ.get("ENGINE_CONFIG_PATH")
        self._config: Optional[AppConfig] = None

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Returns:
            Loaded configuration
        """
        if self._config is not None:
            return self._config

        file_config: Dict[str, Any] = {}
        if self.config_path:
            file_config = self._load_from_file(self.config_path)

        # Environment values win over file values for each section
        sections = {
            "engine": EngineConfig,
            "logging": LoggingConfig,
            "database": DatabaseConfig,
            "api": APIConfig,
        }
        kwargs: Dict[str, Any] = {
            key: value for key, value in file_config.items() if key not in sections
        }
        for name, section_cls in sections.items():
            section_values = file_config.get(name) or {}
            env_values = section_cls().model_dump(exclude_unset=True, by_alias=True)
            kwargs[name] = section_cls(**{**section_values, **env_values})

        self._config = AppConfig(**kwargs)
        return self._config

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            path: Path to config file

        Returns:
            Loaded configuration dictionary
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        if path.suffix.lower() in ['.yaml', '.yml']:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        if path.suffix.lower() == '.json':
            with open(path, 'r') as f:
                return json.load(f)

        logger.warning(f"Unsupported config file format: {path.suffix}")
        return {}


_config_loader = ConfigLoader()


def get_config() -> AppConfig:
    """
    Get the loaded configuration.

    Returns:
        Loaded configuration
    """
    return _config_loader.load()


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Reload the configuration.

    Args:
        config_path: Path to config file

    Returns:
        Reloaded configuration
    """
    global _config_loader
    _config_loader = ConfigLoader(config_path)
    return _config_loader.load()
