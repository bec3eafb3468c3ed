"""Mirror sync state persistence layer.

Manages the JSON state files that track what has already been mirrored
for each team.  Each team gets its own state file (``sync_{team_id}.json``)
containing:

* ``lastSyncTimestamp`` -- epoch milliseconds of the last completed pass.
* ``projects`` -- per-project checkpoint (``lastSyncedTasksHash``) plus
  ``syncedMedia`` and ``syncedPdfs`` records keyed by stable item keys.
* ``folderIds`` -- external folder ids keyed by logical folder path.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Canonical hashing** -- ``tasks_hash()`` and ``content_hash()`` hash an
  order-preserving JSON serialisation with SHA-256 so fingerprints are
  stable across runs and platforms.
* **Dict-based state** -- state is a plain ``dict`` rather than a Pydantic
  model so the mirror engine can mutate it freely during a pass and
  persist once at the end.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from ..models import Task, TaskKind

logger = logging.getLogger(__name__)


def empty_state() -> dict:
    return {"lastSyncTimestamp": 0, "projects": {}, "folderIds": {}}


class SyncStateStore:
    """Load, save, and query mirror sync state for a team.

    Args:
        state_dir: Directory where state files are stored.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, team_id: str) -> dict:
        """Load sync state from disk.

        Never raises: a missing, unreadable, or malformed file yields a
        fresh empty state.

        Args:
            team_id: The team whose state to load.

        Returns:
            The state dict with all top-level keys present.
        """
        path = self._state_path(team_id)
        if not path.exists():
            return empty_state()
        try:
            with open(path, encoding="utf-8") as fh:
                state = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable sync state for team %s: %s", team_id, exc
            )
            return empty_state()
        if not isinstance(state, dict):
            return empty_state()
        fresh = empty_state()
        for key, default in fresh.items():
            if not isinstance(state.get(key), type(default)):
                state[key] = default
        return state

    def save(self, team_id: str, state: dict) -> None:
        """Persist sync state to disk atomically (unconditional overwrite).

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates ``state_dir`` if it does not exist.

        Args:
            team_id: The team whose state to save.
            state: The state dict to persist.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)

        target = self._state_path(team_id)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    @staticmethod
    def project_state(state: dict, project_id: str) -> dict:
        """Return the project's entry, creating an empty one if absent.

        Mutates *state* in place.
        """
        entry = state.setdefault("projects", {}).setdefault(project_id, {})
        entry.setdefault("lastSyncedTasksHash", "")
        entry.setdefault("syncedMedia", {})
        entry.setdefault("syncedPdfs", {})
        return entry

    @staticmethod
    def get_folder(state: dict, path: str) -> str | None:
        return state.get("folderIds", {}).get(path)

    @staticmethod
    def set_folder(state: dict, path: str, folder_id: str) -> None:
        state.setdefault("folderIds", {})[path] = folder_id

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    @staticmethod
    def content_hash(data: Any) -> str:
        """SHA-256 hex digest of the canonical JSON form of *data*.

        Key order is preserved (not sorted) so the caller controls the
        canonical layout.
        """
        text = json.dumps(
            data, ensure_ascii=False, separators=(",", ":"), default=str
        )
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @classmethod
    def tasks_hash(cls, tasks: list[Task]) -> str:
        """Fingerprint of a task list for mirror change detection.

        Covers id, kind, title, description, derived status and the
        kind-specific payload, in task order.
        """
        return cls.content_hash([normalize_task(t) for t in tasks])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _state_path(self, team_id: str) -> Path:
        return self._state_dir / f"sync_{team_id}.json"


def normalize_task(task: Task) -> dict[str, Any]:
    normalized: dict[str, Any] = {
        "id": task.id,
        "type": task.kind.value,
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
    }
    if task.kind == TaskKind.PHOTO:
        normalized["images"] = list(task.images)
        normalized["imageLocations"] = _dump_locations(task.image_locations)
        normalized["value"] = task.value
    elif task.kind == TaskKind.VIDEO:
        normalized["videos"] = list(task.videos)
        normalized["videoLocations"] = _dump_locations(task.video_locations)
    else:
        normalized["value"] = task.value
    return normalized


def _dump_locations(locations: list) -> list:
    return [loc.model_dump() if loc is not None else None for loc in locations]
