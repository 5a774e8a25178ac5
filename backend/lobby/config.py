"""Lobby application configuration.

Loads settings from a single YAML file:
  * lobby.settings.yaml  — non-secret configuration

The file path may be overridden with the ``LOBBY_SETTINGS`` environment
variable, and the listening port with ``PORT``.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("lobby.settings.yaml")

SETTINGS_ENV_VAR = "LOBBY_SETTINGS"
PORT_ENV_VAR     = "PORT"

_LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


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
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.lower() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value!r}")
        return value.lower()


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _apply_env_overrides(settings_data: Dict[str, Any]) -> None:
    port = os.environ.get(PORT_ENV_VAR)
    if port:
        server = settings_data.setdefault("server", {}) or {}
        server["port"] = port
        settings_data["server"] = server
        logger.info("Port overridden from %s environment variable: %s", PORT_ENV_VAR, port)


def load_config(settings_path: Optional[Path] = None) -> AppSettings:
    """Load settings into a single *AppSettings* object.

    Args:
        settings_path: Explicit settings file. Falls back to ``$LOBBY_SETTINGS``
            and then to ``lobby.settings.yaml`` in the working directory.

    Returns:
        Validated AppSettings (defaults for anything the file leaves out).
    """
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))

    settings_data = _load_yaml(Path(settings_path))
    _apply_env_overrides(settings_data)

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, logging.level=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.logging.level,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_config()


def reset_config() -> None:
    """Forget the cached settings so the next get_config() reloads them."""
    get_config.cache_clear()
