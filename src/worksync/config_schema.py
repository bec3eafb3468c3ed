"""Unified configuration schema for worksync.

Pydantic models for the YAML config structure, one model per section,
plus the adapter that folds a ``UnifiedConfig`` and overrides into the
runtime ``Config`` dataclass.

Usage:
    from worksync.config_schema import build_config, to_runtime_config

    unified = build_config(load_hierarchical_config())
    config = to_runtime_config(unified, overrides={"state_dir": "/tmp/ws"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class StorageConfig(BaseModel):
    """Local storage locations."""

    state_dir: str | None = Field(
        default=None,
        description="Directory for the edit queue, caches, and sync state",
    )
    temp_dir: str | None = Field(
        default=None, description="Directory for temporary media files"
    )

    model_config = {"frozen": True}


class QueueConfig(BaseModel):
    """Edit queue and reconciliation settings."""

    max_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Failed attempts after which a queued edit is dropped",
    )
    network_debounce_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay after a network transition before reconciling",
    )

    model_config = {"frozen": True}


class FolderNamesConfig(BaseModel):
    """Display names of the per-project mirror folders."""

    photos: str = "Photos"
    videos: str = "Videos"
    measurements: str = "Measurements"
    notes: str = "Notes"

    model_config = {"frozen": True}


class MirrorConfig(BaseModel):
    """Mirror engine settings."""

    enabled: bool = Field(default=True, description="Enable the mirror")
    root_folder_name: str = Field(
        default="Worksync", description="Top-level folder in the mirror"
    )
    folder_names: FolderNamesConfig = Field(default_factory=FolderNamesConfig)
    debounce_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Quiet period after remote changes before mirroring",
    )

    model_config = {"frozen": True}


class DriveConfig(BaseModel):
    """Google Drive OAuth client and endpoints.

    ``client_id`` is optional so the mirror can stay disabled in
    zero-config setups.
    """

    client_id: str | None = Field(default=None, description="OAuth client id")
    client_secret: str | None = Field(
        default=None, description="OAuth client secret"
    )
    token_url: str = "https://oauth2.googleapis.com/token"
    api_url: str = "https://www.googleapis.com/drive/v3"
    upload_url: str = "https://www.googleapis.com/upload/drive/v3"
    refresh_margin_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh tokens this many seconds before expiry",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration.  ``UnifiedConfig()`` is always valid."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    drive: DriveConfig = Field(default_factory=DriveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from ``load_hierarchical_config()``
    output.  Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_runtime_config(
    unified: UnifiedConfig,
    overrides: dict | None = None,
) -> Config:
    """Fold *unified* and *overrides* into a ``Config`` dataclass.

    Override keys: state_dir, temp_dir, debug.  Environment variables are
    not consulted here; use ``config.load_config()`` for the full
    precedence chain.

    Returns:
        ``Config`` instance (not validated).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import DEFAULT_STATE_DIR, Config

    ov = overrides or {}
    return Config(
        state_dir=ov.get("state_dir")
        or unified.storage.state_dir
        or DEFAULT_STATE_DIR,
        temp_dir=ov.get("temp_dir") or unified.storage.temp_dir,
        max_retries=unified.queue.max_retries,
        network_debounce=unified.queue.network_debounce_seconds,
        mirror_enabled=unified.mirror.enabled,
        mirror_debounce=unified.mirror.debounce_seconds,
        root_folder_name=unified.mirror.root_folder_name,
        folder_names=unified.mirror.folder_names.model_dump(),
        drive_client_id=unified.drive.client_id,
        drive_client_secret=unified.drive.client_secret,
        drive_token_url=unified.drive.token_url,
        drive_api_url=unified.drive.api_url,
        drive_upload_url=unified.drive.upload_url,
        refresh_margin=unified.drive.refresh_margin_seconds,
        debug=bool(ov.get("debug", False)),
    )
