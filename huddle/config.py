"""Huddle application configuration.

Loads settings from a single YAML file:
  * huddle.settings.yaml  - server, storage, chat, upload and logging settings

The path can be overridden with the HUDDLE_SETTINGS environment variable or by
passing ``settings_path`` to :func:`load_config`. Relative storage and upload
paths are resolved against the directory holding the settings file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("huddle.settings.yaml")
SETTINGS_ENV_VAR = "HUDDLE_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve(base_dir: Path, value: str) -> str:
    path = Path(value)
    if path.is_absolute() or value == ":memory:":
        return value
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5001
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class StorageSettings(BaseModel):
    """Durable store selection. ``memory`` skips DuckDB entirely."""
    backend: Literal["duckdb", "memory"] = "duckdb"
    path:    str                         = "huddle.duckdb"


class ChatSettings(BaseModel):
    default_room:  str = "general"
    history_limit: int = 50
    memory_cap:    int = 1000
    page_size:     int = 50
    max_page_size: int = 100

    @field_validator("history_limit", "memory_cap", "page_size", "max_page_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class UploadSettings(BaseModel):
    dir:            str = "uploads"
    max_size_bytes: int = 10 * 1024 * 1024


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    uploads: UploadSettings  = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    config = AppConfig(**_load_yaml(settings_path))

    base_dir = settings_path.resolve().parent
    config.storage.path = _resolve(base_dir, config.storage.path)
    config.uploads.dir = _resolve(base_dir, config.uploads.dir)

    logger.info(
        "Settings loaded (server=%s:%s, storage=%s, history_limit=%d)",
        config.server.host,
        config.server.port,
        config.storage.backend,
        config.chat.history_limit,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Set (or replace) the process-wide config."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached config so the next get_config() reloads it."""
    global _config
    _config = None
