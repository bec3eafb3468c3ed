"""Startup and shutdown of the sync engines inside a host application."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import build_config
from .core.drive_auth import DriveCredentialProvider
from .core.drive_client import DriveClient, DriveMirrorStore
from .core.kv_store import JsonKeyValueStore
from .core.protocols import BlobStore, DocumentStore
from .documents import SpreadsheetDocumentGenerator
from .logger import setup_logging
from .sync.cache import ProjectCache
from .sync.context import SyncFlags
from .sync.mirror import MirrorEngine
from .sync.queue import LocalEditQueue
from .sync.reconciler import ReconciliationEngine
from .sync.state import SyncStateStore
from .sync.triggers import AlertCallback, SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    """Wired engines handed to the host for the lifetime of the runtime."""

    config: Config
    queue: LocalEditQueue
    cache: ProjectCache
    state_store: SyncStateStore
    reconciler: ReconciliationEngine
    mirror: MirrorEngine | None
    coordinator: SyncCoordinator


def build_runtime(
    config: Config,
    documents: DocumentStore,
    blobs: BlobStore,
    on_alert: AlertCallback | None = None,
) -> SyncRuntime:
    """Construct the engines for *config*.  No I/O beyond mkdir."""
    state_path = config.state_path
    state_path.mkdir(parents=True, exist_ok=True)

    kv = JsonKeyValueStore(state_path)
    queue = LocalEditQueue(kv)
    cache = ProjectCache(kv)
    state_store = SyncStateStore(state_path)
    flags = SyncFlags()

    reconciler = ReconciliationEngine(
        documents,
        blobs,
        queue,
        flags,
        cache=cache,
        max_retries=config.max_retries,
    )

    mirror: MirrorEngine | None = None
    if config.mirror_configured:
        temp_path: Path | None = config.temp_path
        mirror = MirrorEngine(
            documents,
            blobs,
            DriveMirrorStore(
                DriveClient(config.drive_api_url, config.drive_upload_url)
            ),
            DriveCredentialProvider(
                documents,
                config.drive_client_id or "",
                client_secret=config.drive_client_secret,
                token_url=config.drive_token_url,
                refresh_margin=config.refresh_margin,
            ),
            SpreadsheetDocumentGenerator(temp_path),
            state_store,
            flags,
            root_folder_name=config.root_folder_name,
            folder_names=config.folder_names,
            temp_dir=temp_path,
        )

    coordinator = SyncCoordinator(
        reconciler,
        mirror,
        queue,
        flags,
        network_debounce=config.network_debounce,
        mirror_debounce=config.mirror_debounce,
        on_alert=on_alert,
    )
    return SyncRuntime(
        config=config,
        queue=queue,
        cache=cache,
        state_store=state_store,
        reconciler=reconciler,
        mirror=mirror,
        coordinator=coordinator,
    )


@asynccontextmanager
async def sync_runtime(
    documents: DocumentStore,
    blobs: BlobStore,
    config_overrides: dict[str, Any] | None = None,
    on_alert: AlertCallback | None = None,
    configure_logging: bool = True,
) -> AsyncIterator[SyncRuntime]:
    """
    Manage sync engine startup and shutdown.

    On startup:
    - Load .env file (values feed env lookups and YAML interpolation)
    - Load YAML config files if present
    - Merge sources via load_config(): overrides > env > .env > YAML > defaults
    - Configure service-mode logging from the resolved debug flag and the
      ``logging`` config section (WORKSYNC_LOG_* env vars still win)
    - Wire queue, cache, state store, engines and coordinator

    On shutdown:
    - Cancel pending debounce timers

    Args:
        documents: Host-provided document store.
        blobs: Host-provided blob store.
        config_overrides: Optional dict with state_dir, temp_dir, debug.
        on_alert: Callback receiving (title, message) user alerts.
        configure_logging: Set to False when the host configures logging.

    Yields:
        The wired ``SyncRuntime``.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = load_config(
            state_dir=overrides.get("state_dir"),
            temp_dir=overrides.get("temp_dir"),
            debug=overrides.get("debug", False),
            unified=unified,
        )

        if overrides:
            sources.append("overrides")
        sources.append("environment variables")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(f"Configuration error: {e}") from e

    if configure_logging:
        setup_logging(
            mode="service",
            debug=config.debug,
            log_file=os.getenv("WORKSYNC_LOG_FILE") or unified.logging.file,
            level=unified.logging.level,
        )
    logger.info("worksync starting...")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    logger.info("State directory: %s", config.state_path)

    runtime = build_runtime(config, documents, blobs, on_alert=on_alert)
    if runtime.mirror is None:
        logger.info("Mirror disabled (no Drive client configured)")

    try:
        yield runtime
    finally:
        await runtime.coordinator.close()
        logger.info("worksync shut down")
