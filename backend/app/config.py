"""Courier relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml: server, storage, history and retention settings

The file location can be overridden with the RELAY_SETTINGS_FILE environment
variable. Missing files and missing keys fall back to the defaults below.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "RELAY_SETTINGS_FILE"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str = "0.0.0.0"
    port:            int = 8080
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class DatabaseSettings(BaseModel):
    path: str = "relay.duckdb"


class HistorySettings(BaseModel):
    """Page sizes for conversation and global history."""
    first_page_size:      int = Field(default=10, ge=1)
    page_size:            int = Field(default=50, ge=1)
    global_history_limit: int = Field(default=50, ge=1)


class RetentionSettings(BaseModel):
    enabled:                bool = True
    direct_message_days:    int  = Field(default=14, ge=1)
    global_message_days:    int  = Field(default=30, ge=1)
    purge_interval_seconds: int  = Field(default=3600, ge=1)


class ReportingSettings(BaseModel):
    max_failures: int = Field(default=200, ge=1)


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    database:  DatabaseSettings  = Field(default_factory=DatabaseSettings)
    history:   HistorySettings   = Field(default_factory=HistorySettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppSettings] = None


def settings_path() -> Path:
    """Return the settings file path, honouring RELAY_SETTINGS_FILE."""
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else SETTINGS_FILE


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML into a single *AppSettings* object."""
    settings_data = _load_yaml(path or settings_path())

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, retention.enabled=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.retention.enabled,
    )
    return app_settings


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: AppSettings) -> None:
    """Install an explicit settings object (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads them."""
    global _config
    _config = None
