"""chatsync application configuration.

Loads settings from two YAML files:
  * chatsync.settings.yaml : non-secret configuration
  * chatsync.secrets.yaml  : secrets (never committed)

Both paths can be overridden with the CHATSYNC_SETTINGS / CHATSYNC_SECRETS
environment variables. Missing files fall back to defaults.
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

SETTINGS_FILE = Path("chatsync.settings.yaml")
SECRETS_FILE  = Path("chatsync.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class AuthSecrets(BaseModel):
    secret_key:     str = "change-me-in-production"
    algorithm:      str = "HS256"
    user_id_claim:  str = "id"
    username_claim: str = "username"


class Secrets(BaseModel):
    auth: AuthSecrets = Field(default_factory=AuthSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5001
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    # Exit on an unhandled event-loop fault and leave the restart to the supervisor.
    terminate_on_fault: bool = True


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class DatabaseSettings(BaseModel):
    path: str = "chatsync.duckdb"


class RealtimeSettings(BaseModel):
    """Live channel behaviour."""
    # Delay before announcing a leave, so an immediate rejoin (room switch)
    # does not cause two room-list refreshes.
    leave_debounce_seconds: float = Field(default=0.1, ge=0)
    # Send room-list invalidations only to the room's participants instead
    # of every connected user.
    targeted_room_updates:  bool  = False
    send_timeout_seconds:   float = Field(default=5.0, gt=0)


class RoomSettings(BaseModel):
    require_membership: bool = True


class PaginationSettings(BaseModel):
    default_limit: int = Field(default=50, ge=1)
    max_limit:     int = Field(default=100, ge=1)


class ChatSyncConfig(BaseModel):
    server:     ServerSettings     = Field(default_factory=ServerSettings)
    logging:    LoggingSettings    = Field(default_factory=LoggingSettings)
    database:   DatabaseSettings   = Field(default_factory=DatabaseSettings)
    realtime:   RealtimeSettings   = Field(default_factory=RealtimeSettings)
    rooms:      RoomSettings       = Field(default_factory=RoomSettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    secrets:    Secrets            = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[ChatSyncConfig] = None


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> ChatSyncConfig:
    """Load and merge settings + secrets into a single *ChatSyncConfig*."""
    settings_path = settings_path or Path(os.environ.get("CHATSYNC_SETTINGS", SETTINGS_FILE))
    secrets_path  = secrets_path or Path(os.environ.get("CHATSYNC_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in ChatSyncConfig
    settings_data["secrets"] = secrets_data

    config = ChatSyncConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, targeted_room_updates=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
        config.realtime.targeted_room_updates,
    )
    return config


def get_config() -> ChatSyncConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
