"""Runtime configuration for the sync engine.

Reads settings from explicit overrides, environment variables, .env
files, and the YAML config.

Precedence (highest to lowest):
    Overrides > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    WORKSYNC_STATE_DIR: Directory for queues, caches and sync state
        (default: ~/.local/share/worksync)
    WORKSYNC_TEMP_DIR: Directory for temporary media files (optional)
    WORKSYNC_MAX_RETRIES: Failed attempts before an edit is dropped
        (optional, default: 3, range 1-20)
    WORKSYNC_MIRROR_DEBOUNCE: Seconds of quiet before an automatic mirror
        pass (optional, default: 5)
    WORKSYNC_DRIVE_CLIENT_ID: Google OAuth client id (optional)
    WORKSYNC_DRIVE_CLIENT_SECRET: Google OAuth client secret (optional)
    WORKSYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .config_schema import UnifiedConfig

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = str(Path.home() / ".local" / "share" / "worksync")


@dataclass
class Config:
    state_dir: str = DEFAULT_STATE_DIR
    temp_dir: str | None = None
    max_retries: int = 3
    network_debounce: float = 1.0
    mirror_enabled: bool = True
    mirror_debounce: float = 5.0
    root_folder_name: str = "Worksync"
    folder_names: dict[str, str] = field(default_factory=dict)
    drive_client_id: str | None = None
    drive_client_secret: str | None = None
    drive_token_url: str = "https://oauth2.googleapis.com/token"
    drive_api_url: str = "https://www.googleapis.com/drive/v3"
    drive_upload_url: str = "https://www.googleapis.com/upload/drive/v3"
    refresh_margin: int = 300
    debug: bool = False

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def temp_path(self) -> Path | None:
        return Path(self.temp_dir).expanduser() if self.temp_dir else None

    @property
    def mirror_configured(self) -> bool:
        return self.mirror_enabled and bool(self.drive_client_id)


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If a path is empty or a numeric value is out of range.
    """
    config.state_dir = config.state_dir.strip()
    if not config.state_dir:
        raise ValueError(
            "State directory cannot be empty. Set WORKSYNC_STATE_DIR or "
            "storage.state_dir in config.yml."
        )

    if not (1 <= config.max_retries <= 20):
        raise ValueError(
            f"Invalid max_retries {config.max_retries}: must be between 1 and 20"
        )

    if config.network_debounce < 0 or config.mirror_debounce < 0:
        raise ValueError("Debounce intervals must not be negative")

    if config.refresh_margin < 0:
        raise ValueError("Token refresh margin must not be negative")

    if config.mirror_enabled and not config.drive_client_id:
        logger.info(
            "Mirror enabled but no Drive client id configured; "
            "mirroring stays off"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def _get_float_env(key: str) -> float | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a non-negative number"
        ) from None
    if value < 0:
        raise ValueError(f"Invalid {key} '{raw}': must be a non-negative number")
    return value


def load_config(
    state_dir: str | None = None,
    temp_dir: str | None = None,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        override arg > env var / .env > YAML (``unified``) > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        state_dir: Override state directory.
        temp_dir: Override temp directory.
        debug: Enable debug logging.
        unified: Parsed YAML config; defaults when ``None``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If an environment value or the result is invalid.
    """
    yc = unified or UnifiedConfig()

    final_state_dir = (
        state_dir
        or os.getenv("WORKSYNC_STATE_DIR")
        or yc.storage.state_dir
        or DEFAULT_STATE_DIR
    )
    final_temp_dir = temp_dir or os.getenv("WORKSYNC_TEMP_DIR") or yc.storage.temp_dir

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("WORKSYNC_DEBUG")
        final_debug = env_debug if env_debug is not None else False

    max_retries = _get_int_env("WORKSYNC_MAX_RETRIES", 1, 20)
    mirror_debounce = _get_float_env("WORKSYNC_MIRROR_DEBOUNCE")

    config = Config(
        state_dir=final_state_dir,
        temp_dir=final_temp_dir,
        max_retries=(
            max_retries if max_retries is not None else yc.queue.max_retries
        ),
        network_debounce=yc.queue.network_debounce_seconds,
        mirror_enabled=yc.mirror.enabled,
        mirror_debounce=(
            mirror_debounce
            if mirror_debounce is not None
            else yc.mirror.debounce_seconds
        ),
        root_folder_name=yc.mirror.root_folder_name,
        folder_names=yc.mirror.folder_names.model_dump(),
        drive_client_id=os.getenv("WORKSYNC_DRIVE_CLIENT_ID")
        or yc.drive.client_id,
        drive_client_secret=os.getenv("WORKSYNC_DRIVE_CLIENT_SECRET")
        or yc.drive.client_secret,
        drive_token_url=yc.drive.token_url,
        drive_api_url=yc.drive.api_url,
        drive_upload_url=yc.drive.upload_url,
        refresh_margin=yc.drive.refresh_margin_seconds,
        debug=final_debug,
    )

    validate_config(config)

    return config
