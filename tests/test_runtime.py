"""Tests for worksync.runtime: engine wiring and the sync_runtime lifecycle.

sync_runtime() is an async context manager which:
- Loads config from YAML, env vars and overrides
- Wires queue, cache, state store and engines
- Builds the mirror engine only when a Drive client is configured
- Configures service-mode logging from the resolved config
- Fails fast with RuntimeError on config errors
"""

from unittest.mock import AsyncMock, patch

import pytest

from worksync.config import Config
from worksync.runtime import build_runtime, sync_runtime
from worksync.sync.mirror import MirrorEngine

# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


@pytest.fixture
def isolated_env(clean_env, tmp_path):
    """No config files, no .env, a throwaway HOME and cwd."""
    home = tmp_path / "home"
    home.mkdir()
    clean_env.setenv("HOME", str(home))
    clean_env.delenv("WORKSYNC_CONFIG", raising=False)
    clean_env.chdir(tmp_path)
    with (
        patch("worksync.runtime.load_dotenv"),
        patch("worksync.runtime.setup_logging"),
    ):
        yield clean_env


# -------------------------------------------------------------------------
# build_runtime()
# -------------------------------------------------------------------------


class TestBuildRuntime:
    def test_without_drive_client_mirror_is_none(
        self, tmp_path, documents, blobs
    ):
        config = Config(state_dir=str(tmp_path / "state"))
        runtime = build_runtime(config, documents, blobs)

        assert runtime.mirror is None
        assert runtime.coordinator.mirror is None
        assert (tmp_path / "state").is_dir()

    def test_with_drive_client_builds_mirror(self, tmp_path, documents, blobs):
        config = Config(
            state_dir=str(tmp_path / "state"),
            drive_client_id="client-1",
            folder_names={"photos": "Fotos"},
        )
        runtime = build_runtime(config, documents, blobs)

        assert isinstance(runtime.mirror, MirrorEngine)

    def test_mirror_disabled_flag(self, tmp_path, documents, blobs):
        config = Config(
            state_dir=str(tmp_path / "state"),
            drive_client_id="client-1",
            mirror_enabled=False,
        )
        assert build_runtime(config, documents, blobs).mirror is None

    def test_reconciler_uses_configured_retries(
        self, tmp_path, documents, blobs
    ):
        config = Config(state_dir=str(tmp_path / "state"), max_retries=5)
        runtime = build_runtime(config, documents, blobs)
        assert runtime.reconciler.max_retries == 5


# -------------------------------------------------------------------------
# sync_runtime()
# -------------------------------------------------------------------------


class TestSyncRuntime:
    async def test_startup_with_override(
        self, isolated_env, tmp_path, documents, blobs
    ):
        state = tmp_path / "override"
        async with sync_runtime(
            documents, blobs, config_overrides={"state_dir": str(state)}
        ) as runtime:
            assert runtime.config.state_dir == str(state)
            assert runtime.mirror is None
            assert state.is_dir()

    async def test_env_client_enables_mirror(
        self, isolated_env, tmp_path, documents, blobs
    ):
        isolated_env.setenv("WORKSYNC_STATE_DIR", str(tmp_path / "env"))
        isolated_env.setenv("WORKSYNC_DRIVE_CLIENT_ID", "client-1")

        async with sync_runtime(documents, blobs) as runtime:
            assert isinstance(runtime.mirror, MirrorEngine)
            assert runtime.config.state_dir == str(tmp_path / "env")

    async def test_yaml_config_is_read(
        self, isolated_env, tmp_path, documents, blobs
    ):
        project = tmp_path / ".worksync" / "config.yml"
        project.parent.mkdir()
        project.write_text(
            f"storage: {{state_dir: '{tmp_path / 'yaml'}'}}\n"
            "queue: {max_retries: 6}\n"
        )

        async with sync_runtime(documents, blobs) as runtime:
            assert runtime.config.max_retries == 6
            assert runtime.config.state_path == tmp_path / "yaml"

    async def test_invalid_config_raises_runtime_error(
        self, isolated_env, documents, blobs
    ):
        isolated_env.setenv("WORKSYNC_MAX_RETRIES", "abc")
        with pytest.raises(RuntimeError, match="Configuration error"):
            async with sync_runtime(documents, blobs):
                pass

    async def test_shutdown_closes_coordinator(
        self, isolated_env, tmp_path, documents, blobs
    ):
        async with sync_runtime(
            documents, blobs, config_overrides={"state_dir": str(tmp_path)}
        ) as runtime:
            runtime.coordinator.close = AsyncMock()
        runtime.coordinator.close.assert_awaited_once()

    async def test_shutdown_runs_on_error(
        self, isolated_env, tmp_path, documents, blobs
    ):
        with pytest.raises(KeyError):
            async with sync_runtime(
                documents, blobs, config_overrides={"state_dir": str(tmp_path)}
            ) as runtime:
                runtime.coordinator.close = AsyncMock()
                raise KeyError("boom")
        runtime.coordinator.close.assert_awaited_once()


class TestSyncRuntimeLogging:
    async def test_logging_configured_from_config(
        self, isolated_env, tmp_path, documents, blobs
    ):
        log_file = tmp_path / "ws.log"
        project = tmp_path / ".worksync" / "config.yml"
        project.parent.mkdir()
        project.write_text(
            f"logging: {{level: error, file: '{log_file}'}}\n"
        )
        isolated_env.setenv("WORKSYNC_DEBUG", "true")

        with patch("worksync.runtime.setup_logging") as mock_setup:
            async with sync_runtime(
                documents, blobs, config_overrides={"state_dir": str(tmp_path)}
            ):
                pass

        mock_setup.assert_called_once_with(
            mode="service", debug=True, log_file=str(log_file), level="error"
        )

    async def test_env_log_file_wins_over_yaml(
        self, isolated_env, tmp_path, documents, blobs
    ):
        project = tmp_path / ".worksync" / "config.yml"
        project.parent.mkdir()
        project.write_text("logging: {file: /yaml/ws.log}\n")
        isolated_env.setenv("WORKSYNC_LOG_FILE", str(tmp_path / "env.log"))

        with patch("worksync.runtime.setup_logging") as mock_setup:
            async with sync_runtime(
                documents, blobs, config_overrides={"state_dir": str(tmp_path)}
            ):
                pass

        assert mock_setup.call_args.kwargs["log_file"] == str(
            tmp_path / "env.log"
        )
        assert mock_setup.call_args.kwargs["debug"] is False

    async def test_host_managed_logging(
        self, isolated_env, tmp_path, documents, blobs
    ):
        with patch("worksync.runtime.setup_logging") as mock_setup:
            async with sync_runtime(
                documents,
                blobs,
                config_overrides={"state_dir": str(tmp_path)},
                configure_logging=False,
            ):
                pass

        mock_setup.assert_not_called()
