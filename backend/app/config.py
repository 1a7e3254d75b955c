"""Hotel operations backend configuration.

Loads settings from two YAML files:
  * hotelops.settings.yaml  — non-secret configuration
  * hotelops.secrets.yaml   — secrets (never committed)

The file locations can be overridden with the ``HOTELOPS_SETTINGS`` and
``HOTELOPS_SECRETS`` environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("hotelops.settings.yaml")
SECRETS_FILE  = Path("hotelops.secrets.yaml")

IN_MEMORY_DATABASE = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_data_path(raw: str, settings_path: Path) -> str:
    """Resolve a relative data file path against the settings location.

    Settings kept in a ``config/`` directory resolve from the project root
    (the parent of ``config/``); any other layout resolves from the
    directory holding the settings file.
    """
    if raw == IN_MEMORY_DATABASE:
        return raw
    path = Path(raw)
    if path.is_absolute():
        return str(path)
    base = settings_path.resolve().parent
    if base.name == "config":
        base = base.parent
    return str(base / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class StorageSecrets(BaseModel):
    access_key_id:     Optional[str] = None
    secret_access_key: Optional[str] = None


class BootstrapAdminSecrets(BaseModel):
    """Initial admin account created at startup when the username is free."""
    username: Optional[str] = None
    password: Optional[str] = None


class Secrets(BaseModel):
    jwt:             JWTSecrets            = Field(default_factory=JWTSecrets)
    storage:         StorageSecrets        = Field(default_factory=StorageSecrets)
    bootstrap_admin: BootstrapAdminSecrets = Field(default_factory=BootstrapAdminSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "hotelops.duckdb"


class AuthSettings(BaseModel):
    token_expire_hours:  int = 8   # one shift
    min_password_length: int = 8


class ChatSettings(BaseModel):
    """Live delivery tuning for the chat registry."""
    channel_capacity: int                                   = Field(default=100, ge=1)
    overflow_policy:  Literal["drop_oldest", "drop_newest"] = "drop_oldest"
    max_image_bytes:  int                                   = 10 * 1024 * 1024


class StorageSettings(BaseModel):
    """S3-compatible object storage (MinIO in development)."""
    endpoint_url: Optional[str] = "http://localhost:9000"
    public_url:   str           = "http://localhost:9000"
    region:       str           = "us-east-1"
    image_bucket: str           = "chat-images"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path or os.environ.get("HOTELOPS_SETTINGS", SETTINGS_FILE))
    secrets_path = Path(secrets_path or os.environ.get("HOTELOPS_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    config.database.path = _resolve_data_path(config.database.path, settings_path)

    logger.info(
        "Settings loaded (server=%s:%s, database=%s, chat.capacity=%d)",
        config.server.host,
        config.server.port,
        config.database.path,
        config.chat.channel_capacity,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace (or clear, with ``None``) the process-wide configuration."""
    global _config
    _config = config
