"""
Hierarchical YAML configuration loader for worksync.

Finds config files by convention, supports ``!include`` and
``${VAR:-default}`` interpolation, and merges files with "project wins"
semantics.

Usage:
    from worksync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WORKSYNC_CONFIG"
PROJECT_CONFIG_DIR = ".worksync"
GLOBAL_CONFIG_DIR = Path(".config") / "worksync"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty VAR yields *default*, or ``""`` without one.  An
    unterminated ``${`` is left as is.
    """

    def _expand(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_expand, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _interpolate_tree(val) for key, val in node.items()}
    if isinstance(node, list):
        return [_interpolate_tree(item) for item in node]
    return node


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` subclass that understands ``!include``.

    The global ``SafeLoader`` is left untouched.  Each load carries the
    chain of files being included, to reject circular includes.
    """


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_chain", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml_file(target, _chain=[*chain, target])


IncludeLoader.add_constructor("!include", _construct_include)


def load_yaml_file(path: Path, *, _chain: list[Path] | None = None) -> Any:
    """Parse one YAML file, resolving ``!include`` relative to it."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = IncludeLoader(fh)
        loader._include_chain = _chain or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``$WORKSYNC_CONFIG`` (explicit path)
        2. ``./.worksync/config.yml``
        3. ``./.worksync/config.yaml``
        4. ``~/.config/worksync/config.yml``
    """
    candidates: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    candidates.append(project_dir / "config.yml")
    candidates.append(project_dir / "config.yaml")
    candidates.append(Path.home() / GLOBAL_CONFIG_DIR / "config.yml")

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# worksync configuration
#
# Values may reference environment variables: ${VAR} or ${VAR:-default}.
# Environment variables WORKSYNC_STATE_DIR, WORKSYNC_MAX_RETRIES,
# WORKSYNC_DRIVE_CLIENT_ID, ... override the values below.
#
# storage:
#   state_dir: ~/.local/share/worksync
#   temp_dir: null
#
# queue:
#   max_retries: 3
#   network_debounce_seconds: 1.0
#
# mirror:
#   root_folder_name: Worksync
#   debounce_seconds: 5.0
#   folder_names:
#     photos: Photos
#     videos: Videos
#     measurements: Measurements
#     notes: Notes
#
# drive:
#   client_id: ${WORKSYNC_DRIVE_CLIENT_ID}
#   refresh_margin_seconds: 300
#
# logging:
#   level: WARNING
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the active config file, or the default project-level path."""
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter file
    first if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge every discovered config file.

    Files are applied from lowest to highest precedence; a top-level key
    from a higher-precedence file replaces the whole section from a lower
    one.  Env var interpolation runs after the merge.

    Returns:
        The merged dict, empty when no config file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found; using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.exception("Failed to load config file %s", path)
            raise
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s); skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
