"""Reconciliation engine: merges queued local edits into remote projects.

For each project with a non-empty edit queue, one attempt:

1. Reads the remote project record.  A missing record is terminal: the
   whole local queue for that project is discarded.
2. Processes each queued edit in queue order.  Inline (``data:``) and
   local-file (``file://``) media references are uploaded to the blob
   store and replaced by their remote reference.  Remote and unknown
   references are kept.  A missing local file drops that reference (and
   its location) and flags the task as failed; an upload error keeps the
   reference and flags the task as failed.  Processing never stops at the
   first failure.
3. Merges every processed task into the in-memory remote list by id and
   writes the whole list once.
4. Settles the queue: clean tasks leave it, failed tasks are kept with
   ``retryCount + 1`` until the retry ceiling drops them.  When the write
   itself fails, every edit of the attempt is charged one retry.

Only one attempt runs at a time per ``SyncFlags``; an overlapping request
returns a report with ``skipped=True``.

The auto-push path (``push_tasks``) merges tasks directly, without the
queue, through the same merge-and-write step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..core.async_utils import run_sync
from ..core.protocols import BlobStore, DocumentStore
from ..errors import RecordNotFoundError
from ..models import MissingMedia, Project, QueuedEdit, Task, TaskKind
from .cache import ProjectCache
from .context import SyncFlags
from .media import (
    RefScheme,
    blob_path,
    classify_reference,
    content_type_for,
    decode_data_uri,
    extension_for,
    generate_media_id,
    local_path,
)
from .models import ReconcileReport, ReconcileResult, ReconcileStatus
from .queue import LocalEditQueue

logger = logging.getLogger(__name__)

PROJECTS = "projects"
DEFAULT_MAX_RETRIES = 3
_UNASSIGNED_TEAM = "unassigned"


def merge_by_id(remote_tasks: list[Any], task_record: dict[str, Any]) -> None:
    """Replace the task with the same id in *remote_tasks*, or append.

    Mutates *remote_tasks* in place.
    """
    for index, existing in enumerate(remote_tasks):
        if isinstance(existing, dict) and existing.get("id") == task_record["id"]:
            remote_tasks[index] = task_record
            return
    remote_tasks.append(task_record)


@dataclass
class _ProcessedEdit:
    edit: QueuedEdit
    task: Task
    missing: list[MissingMedia]
    failed: bool


def _restore_missing(task: Task, missing: list[MissingMedia]) -> Task:
    """Put previously missing references back into *task*'s payload."""
    if not missing:
        return task
    refs = task.media()
    locations = task.locations()
    value = task.value
    for item in missing:
        if item.slot == "value":
            value = value or item.ref
            continue
        locations.extend([None] * (len(refs) - len(locations)))
        refs.append(item.ref)
        locations.append(item.location)
    if task.kind in (TaskKind.PHOTO, TaskKind.VIDEO):
        task = task.with_media(refs, locations)
    return task.model_copy(update={"value": value})


class ReconciliationEngine:
    """Drain local edit queues into the authoritative project records.

    Args:
        documents: Remote document store holding project records.
        blobs: Blob store that receives uploaded media.
        queue: The local edit queue.
        flags: Run flags shared with the mirror engine and coordinator.
        cache: Optional project cache refreshed after each successful write.
        max_retries: Failed attempts after which an edit is dropped.
    """

    def __init__(
        self,
        documents: DocumentStore,
        blobs: BlobStore,
        queue: LocalEditQueue,
        flags: SyncFlags,
        cache: ProjectCache | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.documents = documents
        self.blobs = blobs
        self.queue = queue
        self.flags = flags
        self.cache = cache
        self.max_retries = max_retries

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def reconcile_all(self, trigger: str = "user") -> ReconcileReport:
        """Reconcile every project with pending edits, one at a time."""
        return await self._run(trigger, project_ids=None)

    async def reconcile_project(
        self, project_id: str, trigger: str = "user"
    ) -> ReconcileReport:
        """Reconcile a single project's queue."""
        return await self._run(trigger, project_ids=[project_id])

    async def push_tasks(
        self, project_id: str, tasks: list[Task]
    ) -> ReconcileReport:
        """Merge *tasks* straight into the remote project (auto-push).

        Tasks are expected to carry remote media references already; no
        uploads are made and the queue is not touched.
        """
        started_at = _now()
        if self.flags.reconciling:
            logger.debug("Auto-push for %s skipped: attempt in flight", project_id)
            return ReconcileReport(
                trigger="auto_push",
                skipped=True,
                started_at=started_at,
                completed_at=_now(),
            )
        self.flags.reconciling = True
        try:
            result = await self._push(project_id, tasks)
        finally:
            self.flags.reconciling = False
        return ReconcileReport(
            trigger="auto_push",
            results=[result],
            started_at=started_at,
            completed_at=_now(),
        )

    async def _push(self, project_id: str, tasks: list[Task]) -> ReconcileResult:
        task_ids = [t.id for t in tasks]
        try:
            record = await self._read_project(project_id)
        except RecordNotFoundError:
            logger.warning(
                "Auto-push target project %s no longer exists", project_id
            )
            return ReconcileResult(
                project_id=project_id,
                status=ReconcileStatus.PROJECT_DELETED,
                dropped=task_ids,
            )
        except Exception as exc:
            logger.error("Auto-push read of project %s failed: %s", project_id, exc)
            return ReconcileResult(
                project_id=project_id,
                status=ReconcileStatus.READ_FAILED,
                failed=task_ids,
                error=str(exc),
            )
        try:
            await self._merge_and_write(
                project_id, record, [t.to_record() for t in tasks]
            )
        except Exception as exc:
            logger.error("Auto-push write of project %s failed: %s", project_id, exc)
            return ReconcileResult(
                project_id=project_id,
                status=ReconcileStatus.WRITE_FAILED,
                failed=task_ids,
                error=str(exc),
            )
        return ReconcileResult(
            project_id=project_id,
            status=ReconcileStatus.SYNCED,
            synced=task_ids,
        )

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def _run(
        self, trigger: str, project_ids: list[str] | None
    ) -> ReconcileReport:
        started_at = _now()
        if self.flags.reconciling:
            logger.debug("Reconciliation (%s) skipped: attempt in flight", trigger)
            return ReconcileReport(
                trigger=trigger,
                skipped=True,
                started_at=started_at,
                completed_at=_now(),
            )

        self.flags.reconciling = True
        results: list[ReconcileResult] = []
        try:
            if project_ids is None:
                pending = self.queue.list_all()
            else:
                pending = [(pid, self.queue.get(pid)) for pid in project_ids]

            for project_id, edits in pending:
                if not edits:
                    results.append(
                        ReconcileResult(
                            project_id=project_id,
                            status=ReconcileStatus.NO_CHANGES,
                        )
                    )
                    continue
                try:
                    result = await self._reconcile_project(project_id, edits)
                except Exception as exc:
                    logger.error(
                        "Reconciliation of project %s failed: %s",
                        project_id,
                        exc,
                    )
                    result = ReconcileResult(
                        project_id=project_id,
                        status=ReconcileStatus.READ_FAILED,
                        failed=[e.task.id for e in edits],
                        remaining=len(edits),
                        error=str(exc),
                    )
                results.append(result)
        finally:
            self.flags.reconciling = False

        report = ReconcileReport(
            trigger=trigger,
            results=results,
            started_at=started_at,
            completed_at=_now(),
        )
        if results:
            logger.info(
                "Reconciliation (%s): %d projects, %d tasks synced, %d dropped",
                trigger,
                len(results),
                report.synced_task_count,
                report.dropped_task_count,
            )
        return report

    # ------------------------------------------------------------------
    # Per-project attempt
    # ------------------------------------------------------------------

    async def _reconcile_project(
        self, project_id: str, edits: list[QueuedEdit]
    ) -> ReconcileResult:
        """Run one attempt for *project_id*.

        Raises:
            Exception: Whatever the document store raises on read.  The
                queue is left untouched in that case.
        """
        try:
            record = await self._read_project(project_id)
        except RecordNotFoundError:
            dropped = [e.task.id for e in edits]
            logger.warning(
                "Project %s no longer exists; discarding %d queued edits: %s",
                project_id,
                len(dropped),
                ", ".join(dropped),
            )
            self.queue.drain(project_id, [])
            return ReconcileResult(
                project_id=project_id,
                status=ReconcileStatus.PROJECT_DELETED,
                dropped=dropped,
            )

        team_id = record.get("teamId") or _UNASSIGNED_TEAM
        processed = [
            await self._process_edit(team_id, project_id, edit)
            for edit in edits
        ]

        survivors: dict[str, QueuedEdit] = {}
        synced: list[str] = []
        failed_ids: list[str] = []
        dropped: list[str] = []

        try:
            await self._merge_and_write(
                project_id,
                record,
                [p.task.to_record() for p in processed],
            )
        except Exception as exc:
            logger.warning(
                "Write of project %s failed; %d edits kept for retry: %s",
                project_id,
                len(processed),
                exc,
            )
            for item in processed:
                kept = self._charge_retry(project_id, item)
                if kept is None:
                    dropped.append(item.task.id)
                else:
                    survivors[item.task.id] = kept
                    failed_ids.append(item.task.id)
            remaining = self._settle(project_id, edits, survivors)
            return ReconcileResult(
                project_id=project_id,
                status=ReconcileStatus.WRITE_FAILED,
                failed=failed_ids,
                dropped=dropped,
                remaining=remaining,
                error=str(exc),
            )

        for item in processed:
            if not item.failed:
                synced.append(item.task.id)
                continue
            kept = self._charge_retry(project_id, item)
            if kept is None:
                dropped.append(item.task.id)
            else:
                survivors[item.task.id] = kept
                failed_ids.append(item.task.id)

        remaining = self._settle(project_id, edits, survivors)
        return ReconcileResult(
            project_id=project_id,
            status=ReconcileStatus.SYNCED,
            synced=synced,
            failed=failed_ids,
            dropped=dropped,
            remaining=remaining,
        )

    async def _read_project(self, project_id: str) -> dict[str, Any]:
        """Read the remote project record.

        Raises:
            RecordNotFoundError: If the project no longer exists.
        """
        record = await self.documents.read_record(PROJECTS, project_id)
        if record is None:
            raise RecordNotFoundError(PROJECTS, project_id)
        return record

    async def _merge_and_write(
        self,
        project_id: str,
        record: dict[str, Any],
        task_records: list[dict[str, Any]],
    ) -> list[Any]:
        """Merge *task_records* into the record's list and write it once.

        Raises:
            Exception: Whatever the document store raises on write.
        """
        remote_tasks = list(record.get("tasks") or [])
        for task_record in task_records:
            merge_by_id(remote_tasks, task_record)

        await self.documents.write_field(PROJECTS, project_id, "tasks", remote_tasks)

        merged = Project.from_record(project_id, {**record, "tasks": remote_tasks})
        status = merged.rollup_status()
        if status != record.get("status"):
            try:
                await self.documents.write_field(
                    PROJECTS, project_id, "status", status
                )
            except Exception as exc:
                logger.warning(
                    "Status update of project %s deferred: %s", project_id, exc
                )
        if self.cache is not None:
            self.cache.save(project_id, merged.name, remote_tasks, status=status)
        return remote_tasks

    def _charge_retry(
        self, project_id: str, item: _ProcessedEdit
    ) -> QueuedEdit | None:
        """Return the edit with one more retry, or ``None`` at the ceiling.

        The surviving edit carries the processed payload, so media already
        uploaded are not uploaded again.
        """
        retry_count = item.edit.retry_count + 1
        if retry_count >= self.max_retries:
            logger.error(
                "Dropping edit for task %s in project %s after %d failed "
                "attempts",
                item.task.id,
                project_id,
                retry_count,
            )
            return None
        return QueuedEdit(
            task=item.task,
            retry_count=retry_count,
            missing_media=item.missing,
        )

    def _settle(
        self,
        project_id: str,
        attempted: list[QueuedEdit],
        survivors: dict[str, QueuedEdit],
    ) -> int:
        """Write the post-attempt queue and return its length.

        Edits enqueued while the attempt was running (new ids, or a task
        changed since it was read) are kept as they are.  Edits discarded
        locally meanwhile stay discarded.
        """
        attempted_by_id = {e.task.id: e for e in attempted}
        settled: list[QueuedEdit] = []
        for current in self.queue.get(project_id):
            original = attempted_by_id.get(current.task.id)
            if original is None or current.task != original.task:
                settled.append(current)
            elif current.task.id in survivors:
                settled.append(survivors[current.task.id])
        self.queue.drain(project_id, settled)
        return len(settled)

    # ------------------------------------------------------------------
    # Media processing
    # ------------------------------------------------------------------

    async def _process_edit(
        self, team_id: str, project_id: str, edit: QueuedEdit
    ) -> _ProcessedEdit:
        """Upload the local media of one queued edit.

        References recorded as missing on an earlier attempt are put back
        first, so a file that reappeared is uploaded and one still missing
        keeps the edit failing.
        """
        task = _restore_missing(edit.task, edit.missing_media)
        failed = False
        missing: list[MissingMedia] = []

        if task.kind in (TaskKind.PHOTO, TaskKind.VIDEO):
            original_locations = task.locations()
            refs: list[str] = []
            locations = []
            for index, ref in enumerate(task.media()):
                location = (
                    original_locations[index]
                    if index < len(original_locations)
                    else None
                )
                resolved, ok = await self._resolve_reference(
                    team_id, project_id, task, ref
                )
                failed = failed or not ok
                if resolved is None:
                    missing.append(MissingMedia(ref=ref, location=location))
                    continue
                refs.append(resolved)
                if index < len(original_locations):
                    locations.append(location)
            task = task.with_media(refs, locations)

        if task.kind in (TaskKind.PHOTO, TaskKind.MEASUREMENT) and task.value:
            resolved, ok = await self._resolve_reference(
                team_id, project_id, task, task.value
            )
            failed = failed or not ok
            if resolved is None:
                missing.append(MissingMedia(ref=task.value, slot="value"))
            task = task.model_copy(update={"value": resolved})

        return _ProcessedEdit(edit, task, missing, failed)

    async def _resolve_reference(
        self, team_id: str, project_id: str, task: Task, ref: str
    ) -> tuple[str | None, bool]:
        """Return ``(reference_to_store, ok)`` for one media reference.

        ``None`` as the reference means it must be removed.
        """
        scheme = classify_reference(ref)
        if scheme in (RefScheme.REMOTE, RefScheme.UNKNOWN):
            return ref, True

        if scheme == RefScheme.INLINE:
            try:
                data, content_type = decode_data_uri(ref)
            except ValueError as exc:
                logger.warning(
                    "Undecodable inline media in task %s: %s", task.id, exc
                )
                return ref, False
        else:
            path = local_path(ref)
            if not await run_sync(path.is_file):
                logger.warning(
                    "Local media %s for task %s is missing; removing it",
                    path,
                    task.id,
                )
                return None, False
            try:
                data = await run_sync(path.read_bytes)
            except OSError as exc:
                logger.warning(
                    "Cannot read local media %s for task %s: %s",
                    path,
                    task.id,
                    exc,
                )
                return ref, False
            content_type = content_type_for(path, task.kind)

        target = blob_path(
            team_id,
            project_id,
            task.id,
            generate_media_id(),
            extension_for(content_type),
        )
        try:
            remote_ref = await self.blobs.upload_blob(target, data, content_type)
        except Exception as exc:
            logger.warning(
                "Upload of media for task %s failed: %s", task.id, exc
            )
            return ref, False
        logger.debug("Uploaded media for task %s to %s", task.id, target)
        return remote_ref, True


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
