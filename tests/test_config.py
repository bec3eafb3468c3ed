"""Tests for worksync.config and worksync.config_schema.

This tests the runtime bootstrap path: validate_config(), load_config()
with its env var / YAML precedence, and the schema models.
"""

import pytest
from pydantic import ValidationError

from worksync.config import (
    DEFAULT_STATE_DIR,
    Config,
    load_config,
    validate_config,
)
from worksync.config_schema import (
    QueueConfig,
    UnifiedConfig,
    build_config,
    to_runtime_config,
)

# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    def test_defaults_are_valid(self):
        validate_config(Config())

    def test_empty_state_dir(self):
        with pytest.raises(ValueError, match="State directory cannot be empty"):
            validate_config(Config(state_dir="   "))

    @pytest.mark.parametrize("retries", [0, 21])
    def test_retries_out_of_range(self, retries):
        with pytest.raises(ValueError, match="max_retries"):
            validate_config(Config(max_retries=retries))

    def test_negative_debounce(self):
        with pytest.raises(ValueError, match="Debounce"):
            validate_config(Config(mirror_debounce=-1))

    def test_mirror_configured_needs_client_id(self):
        assert not Config().mirror_configured
        assert Config(drive_client_id="abc").mirror_configured
        assert not Config(
            drive_client_id="abc", mirror_enabled=False
        ).mirror_configured


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults(self, clean_env):
        config = load_config()
        assert config.state_dir == DEFAULT_STATE_DIR
        assert config.max_retries == 3
        assert config.mirror_debounce == 5.0
        assert config.folder_names["photos"] == "Photos"
        assert config.debug is False

    def test_env_overrides_yaml(self, clean_env):
        clean_env.setenv("WORKSYNC_STATE_DIR", "/env/state")
        clean_env.setenv("WORKSYNC_MAX_RETRIES", "5")
        clean_env.setenv("WORKSYNC_DRIVE_CLIENT_ID", "env-client")
        unified = build_config(
            {
                "storage": {"state_dir": "/yaml/state"},
                "queue": {"max_retries": 7},
                "drive": {"client_id": "yaml-client"},
            }
        )

        config = load_config(unified=unified)

        assert config.state_dir == "/env/state"
        assert config.max_retries == 5
        assert config.drive_client_id == "env-client"

    def test_yaml_used_when_env_unset(self, clean_env):
        unified = build_config(
            {
                "storage": {"state_dir": "/yaml/state"},
                "mirror": {"debounce_seconds": 2, "root_folder_name": "Field"},
            }
        )
        config = load_config(unified=unified)
        assert config.state_dir == "/yaml/state"
        assert config.mirror_debounce == 2
        assert config.root_folder_name == "Field"

    def test_argument_overrides_env(self, clean_env):
        clean_env.setenv("WORKSYNC_STATE_DIR", "/env/state")
        assert load_config(state_dir="/arg").state_dir == "/arg"

    @pytest.mark.parametrize("raw", ["abc", "0", "99"])
    def test_invalid_max_retries_env(self, clean_env, raw):
        clean_env.setenv("WORKSYNC_MAX_RETRIES", raw)
        with pytest.raises(ValueError, match="WORKSYNC_MAX_RETRIES"):
            load_config()

    def test_invalid_debounce_env(self, clean_env):
        clean_env.setenv("WORKSYNC_MIRROR_DEBOUNCE", "-2")
        with pytest.raises(ValueError, match="WORKSYNC_MIRROR_DEBOUNCE"):
            load_config()

    @pytest.mark.parametrize("raw, expected", [("true", True), ("0", False)])
    def test_debug_env(self, clean_env, raw, expected):
        clean_env.setenv("WORKSYNC_DEBUG", raw)
        assert load_config().debug is expected

    def test_debug_argument_wins(self, clean_env):
        clean_env.setenv("WORKSYNC_DEBUG", "false")
        assert load_config(debug=True).debug is True


# -------------------------------------------------------------------------
# Schema
# -------------------------------------------------------------------------


class TestSchema:
    def test_empty_config_valid(self):
        assert build_config({}) == UnifiedConfig()

    def test_retry_bounds(self):
        with pytest.raises(ValidationError):
            QueueConfig(max_retries=0)

    def test_models_frozen(self):
        with pytest.raises(ValidationError):
            UnifiedConfig().queue.max_retries = 5

    def test_to_runtime_config(self):
        unified = build_config(
            {
                "queue": {"max_retries": 4},
                "drive": {"client_id": "abc"},
                "mirror": {"folder_names": {"notes": "Notizen"}},
            }
        )
        config = to_runtime_config(unified, {"state_dir": "/x", "debug": True})
        assert config.state_dir == "/x"
        assert config.max_retries == 4
        assert config.drive_client_id == "abc"
        assert config.folder_names["notes"] == "Notizen"
        assert config.folder_names["photos"] == "Photos"
        assert config.debug is True
