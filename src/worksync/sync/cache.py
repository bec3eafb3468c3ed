"""Cached snapshot of the last-seen remote project, for offline reads."""

from __future__ import annotations

import logging
from typing import Any

from ..core.kv_store import JsonKeyValueStore
from ..models import Task, parse_tasks
from .queue import LocalEditQueue

logger = logging.getLogger(__name__)

CACHE_PREFIX = "project_cache_"


class ProjectCache:
    """Stores ``{"name", "tasks", "status"}`` per project."""

    def __init__(self, store: JsonKeyValueStore) -> None:
        self._store = store

    def load(self, project_id: str) -> dict[str, Any] | None:
        try:
            snapshot = self._store.get(f"{CACHE_PREFIX}{project_id}")
        except (OSError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable cache for %s: %s", project_id, exc
            )
            return None
        return snapshot if isinstance(snapshot, dict) else None

    def save(
        self,
        project_id: str,
        name: str | None,
        tasks: list[dict[str, Any]],
        status: str | None = None,
    ) -> None:
        """Overwrite the snapshot.  Failures are logged, not raised."""
        try:
            self._store.set(
                f"{CACHE_PREFIX}{project_id}",
                {"name": name, "tasks": tasks, "status": status},
            )
        except (OSError, TypeError) as exc:
            logger.warning("Failed to cache project %s: %s", project_id, exc)


def merged_view(
    cache: ProjectCache, queue: LocalEditQueue, project_id: str
) -> list[Task]:
    """Overlay queued edits on the cached task list by id.

    Cached order is kept; queued tasks replace their cached counterpart in
    place, and queued tasks unknown to the cache are appended.
    """
    snapshot = cache.load(project_id) or {}
    by_id: dict[str, Task] = {
        t.id: t for t in parse_tasks(snapshot.get("tasks"))
    }
    for edit in queue.get(project_id):
        by_id[edit.task.id] = edit.task
    return list(by_id.values())
