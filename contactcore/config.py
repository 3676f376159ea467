"""Configuration management for contact identity resolution."""

import os
import json
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class DeduplicationConfig(BaseModel):
    """Duplicate detection settings."""

    name_similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    min_name_length: int = 3


class ImportConfig(BaseModel):
    """Bulk import settings."""

    batch_size: int = Field(default=100, ge=1)
    min_phone_length: int = 8
    max_phone_length: int = 15
    fingerprint_length: int = Field(default=64, ge=8, le=64)


class PaginationConfig(BaseModel):
    default_page_size: int = 50
    max_page_size: int = 100


class ContactSourceConfig(BaseModel):
    """WUZAPI contact source settings."""

    base_url: str = "https://wzapi.wasend.com.br"
    timeout: float = 30.0


class StorageConfig(BaseModel):
    sqlite_path: str = "contacts.db"


class LoggingConfig(BaseModel):
    format: str = "text"
    level: str = "INFO"
    log_file: Optional[str] = None


class Config(BaseModel):
    """Root configuration."""

    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    importing: ImportConfig = Field(default_factory=ImportConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    contact_source: ContactSourceConfig = Field(default_factory=ContactSourceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages configuration loading and validation."""

    DEFAULT_CONFIG = {
        "deduplication": {
            "name_similarity_threshold": 0.8,
            "min_name_length": 3,
        },
        "importing": {
            "batch_size": 100,
            "min_phone_length": 8,
            "max_phone_length": 15,
            "fingerprint_length": 64,
        },
        "pagination": {
            "default_page_size": 50,
            "max_page_size": 100,
        },
        "contact_source": {
            "base_url": "https://wzapi.wasend.com.br",
            "timeout": 30.0,
        },
        "storage": {
            "sqlite_path": "contacts.db",
        },
        "logging": {
            "format": "text",
            "level": "INFO",
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config manager.

        Args:
            config_path: Path to config file. If None, uses defaults + env vars
        """
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from file and environment."""
        if self._config:
            return self._config

        load_dotenv()

        config_dict = json.loads(json.dumps(self.DEFAULT_CONFIG))

        if self.config_path and self.config_path.exists():
            with open(self.config_path, "r") as f:
                file_config = json.load(f)
                config_dict = self._deep_merge(config_dict, file_config)

        config_dict = self._apply_env_overrides(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        db_path = os.getenv("CONTACTCORE_DB_PATH")
        if db_path:
            config.setdefault("storage", {})["sqlite_path"] = db_path

        log_level = os.getenv("CONTACTCORE_LOG_LEVEL")
        if log_level:
            config.setdefault("logging", {})["level"] = log_level

        log_format = os.getenv("CONTACTCORE_LOG_FORMAT")
        if log_format:
            config.setdefault("logging", {})["format"] = log_format

        threshold = os.getenv("CONTACTCORE_NAME_THRESHOLD")
        if threshold:
            config.setdefault("deduplication", {})["name_similarity_threshold"] = float(threshold)

        batch_size = os.getenv("CONTACTCORE_IMPORT_BATCH_SIZE")
        if batch_size:
            config.setdefault("importing", {})["batch_size"] = int(batch_size)

        base_url = os.getenv("WUZAPI_BASE_URL")
        if base_url:
            config.setdefault("contact_source", {})["base_url"] = base_url

        # milliseconds, as the inbox gateway has always read it
        timeout = os.getenv("REQUEST_TIMEOUT")
        if timeout:
            config.setdefault("contact_source", {})["timeout"] = float(timeout) / 1000.0

        return config

    def save_template(self, path: str):
        """Save a configuration template file."""
        with open(path, "w") as f:
            json.dump(self.DEFAULT_CONFIG, f, indent=2)

        print(f"Configuration template saved to: {path}")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        return self.load()
