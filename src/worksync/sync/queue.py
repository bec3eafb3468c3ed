"""Local edit queue: durable per-project buffer of unconfirmed task edits.

Each project's queue is stored under its own key
(``offline_tasks_queue_{project_id}``) as a JSON list of
``{"task": {...}, "retryCount": n}`` entries.  Entries written by older
clients as bare task dicts are read as ``retryCount=0``.

A project with nothing pending has no key at all, so checking for pending
work is a key listing, not a read of every queue.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from ..core.kv_store import JsonKeyValueStore
from ..errors import QueuePersistenceError
from ..models import QueuedEdit, Task

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "offline_tasks_queue_"


class LocalEditQueue:
    """Insert/replace, list, and drain queued task edits.

    Args:
        store: Key-value store the queues are persisted in.
    """

    def __init__(self, store: JsonKeyValueStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, project_id: str) -> list[QueuedEdit]:
        """Return the queued edits for *project_id* in queue order."""
        try:
            return self._read(project_id)
        except QueuePersistenceError as exc:
            logger.error("Unreadable edit queue: %s", exc)
            return []

    def list_all(self) -> list[tuple[str, list[QueuedEdit]]]:
        """Return ``(project_id, edits)`` for every non-empty queue."""
        queues = []
        for key in self._store.keys(QUEUE_PREFIX):
            project_id = key[len(QUEUE_PREFIX) :]
            edits = self.get(project_id)
            if edits:
                queues.append((project_id, edits))
        return queues

    def pending_count(self) -> int:
        """Total number of queued edits across all projects."""
        return sum(len(edits) for _, edits in self.list_all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(self, project_id: str, task: Task) -> QueuedEdit:
        """Insert or replace (by ``task.id``) an edit with ``retryCount=0``.

        The task is marked ``is_local``.  A replaced edit keeps its queue
        position.  The whole queue is persisted before returning.

        Raises:
            QueuePersistenceError: If the existing queue cannot be read
                or the updated queue could not be written.
        """
        edit = QueuedEdit(task=task.model_copy(update={"is_local": True}))
        edits = self._read(project_id)
        for index, existing in enumerate(edits):
            if existing.task.id == task.id:
                edits[index] = edit
                break
        else:
            edits.append(edit)
        self._write(project_id, edits)
        logger.debug(
            "Queued edit for task %s in project %s (%d pending)",
            task.id,
            project_id,
            len(edits),
        )
        return edit

    def drain(self, project_id: str, surviving: list[QueuedEdit]) -> None:
        """Replace the project's queue with *surviving*.

        An empty list removes the queue entry entirely.

        Raises:
            QueuePersistenceError: If the queue could not be written.
        """
        if not surviving:
            try:
                self._store.delete(self._key(project_id))
            except OSError as exc:
                raise QueuePersistenceError(
                    f"Failed to clear edit queue for {project_id}: {exc}"
                ) from exc
            return
        self._write(project_id, surviving)

    def discard(self, project_id: str, task_id: str) -> bool:
        """Remove the queued edit for *task_id*, if any.

        Returns:
            ``True`` if an edit was removed.
        """
        edits = self.get(project_id)
        remaining = [e for e in edits if e.task.id != task_id]
        if len(remaining) == len(edits):
            return False
        self.drain(project_id, remaining)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read(self, project_id: str) -> list[QueuedEdit]:
        # An unreadable queue must not be replaced by a one-edit queue
        try:
            raw = self._store.get(self._key(project_id))
        except (OSError, ValueError) as exc:
            raise QueuePersistenceError(
                f"Failed to read edit queue for {project_id}: {exc}"
            ) from exc
        return self._parse(project_id, raw)

    def _write(self, project_id: str, edits: list[QueuedEdit]) -> None:
        try:
            self._store.set(
                self._key(project_id), [e.to_record() for e in edits]
            )
        except (OSError, TypeError) as exc:
            raise QueuePersistenceError(
                f"Failed to persist edit queue for {project_id}: {exc}"
            ) from exc

    @staticmethod
    def _parse(project_id: str, raw: object) -> list[QueuedEdit]:
        if not isinstance(raw, list):
            return []
        edits = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                if "task" in item:
                    edits.append(QueuedEdit.model_validate(item))
                else:
                    edits.append(QueuedEdit(task=Task.model_validate(item)))
            except ValidationError as exc:
                logger.error(
                    "Dropping malformed queued edit in project %s: %s",
                    project_id,
                    exc,
                )
        return edits

    @staticmethod
    def _key(project_id: str) -> str:
        return f"{QUEUE_PREFIX}{project_id}"
