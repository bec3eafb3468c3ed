"""Mirror engine: one-way incremental copy of team projects to a folder store.

A pass over one project:

1. Acquires a bearer token; none means the team is not connected.
2. Loads the project, its team, and the owning group name.
3. Fingerprints the task list and stops early when it matches the stored
   checkpoint.
4. Ensures the folder hierarchy ``root / team / group / project /
   {photos, videos, measurements, notes}``, caching folder ids by logical
   path in the sync state.
5. Copies each remote photo/video into a per-task subfolder, keyed by
   ``{task_id}/{kind}_{n}``.  Items whose source reference is unchanged are
   skipped; changed items replace the tracked external file.  Each task's
   media metadata document follows, gated by a content hash.
6. Uploads the measurement and notes summary documents, same hash gate.
7. Advances the checkpoint only when every item succeeded and the pass was
   not aborted.  Per-item records are saved in every case.

The abort flag in ``SyncFlags`` is checked before each unit of work.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..core.async_utils import run_sync
from ..core.protocols import (
    BlobStore,
    CredentialProvider,
    DocumentGenerator,
    DocumentStore,
    MirrorStore,
)
from ..errors import MirrorNotConnectedError, RecordNotFoundError
from ..models import (
    MediaMetadataItem,
    Project,
    Task,
    TaskKind,
    TaskStatus,
    Team,
)
from .context import SyncFlags
from .media import RefScheme, classify_reference
from .models import MirrorReport, MirrorResult, MirrorStatus, SyncProgress
from .state import SyncStateStore

logger = logging.getLogger(__name__)

PROJECTS = "projects"
TEAMS = "teams"
ROOT_FOLDER_KEY = "root"
DRIVE_ROOT = "root"
DEFAULT_ROOT_FOLDER_NAME = "Worksync"
DEFAULT_FOLDER_NAMES = {
    "photos": "Photos",
    "videos": "Videos",
    "measurements": "Measurements",
    "notes": "Notes",
}

_MEDIA_FORMATS = {
    TaskKind.PHOTO: ("photos", "photo", "jpg", "image/jpeg"),
    TaskKind.VIDEO: ("videos", "video", "mp4", "video/mp4"),
}

ProgressCallback = Callable[[SyncProgress], None]


class _Aborted(Exception):
    """Raised internally when the abort flag is observed."""


class _ProgressTracker:
    """Emits non-decreasing ``SyncProgress`` events."""

    def __init__(self, callback: ProgressCallback | None, total: int) -> None:
        self._callback = callback
        self.total = total
        self.current = 0

    def advance(self, message: str) -> None:
        self.current = min(self.current + 1, self.total)
        self.emit(message)

    def emit(self, message: str) -> None:
        if self._callback is not None:
            self._callback(
                SyncProgress(
                    current=self.current, total=self.total, message=message
                )
            )


class _PassCounters:
    def __init__(self) -> None:
        self.uploaded_media = 0
        self.skipped_media = 0
        self.failed_media: list[str] = []
        self.uploaded_documents = 0
        self.skipped_documents = 0
        self.failed_documents: list[str] = []

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_media or self.failed_documents)

    def as_fields(self) -> dict[str, Any]:
        return {
            "uploaded_media": self.uploaded_media,
            "skipped_media": self.skipped_media,
            "failed_media": self.failed_media,
            "uploaded_documents": self.uploaded_documents,
            "skipped_documents": self.skipped_documents,
            "failed_documents": self.failed_documents,
        }


class MirrorEngine:
    """Mirror a team's projects into an external folder store.

    Args:
        documents: Remote document store (projects, teams).
        blobs: Blob store the media are downloaded from.
        store: The mirror target.
        credentials: Bearer token source for the mirror target.
        generator: Renders summary and metadata documents.
        state_store: Per-team sync state persistence.
        flags: Run flags shared with the reconciler and coordinator.
        root_folder_name: Name of the top-level mirror folder.
        folder_names: Display names for the per-project kind folders.
        temp_dir: Directory for temporary media files.
    """

    def __init__(
        self,
        documents: DocumentStore,
        blobs: BlobStore,
        store: MirrorStore,
        credentials: CredentialProvider,
        generator: DocumentGenerator,
        state_store: SyncStateStore,
        flags: SyncFlags,
        root_folder_name: str = DEFAULT_ROOT_FOLDER_NAME,
        folder_names: dict[str, str] | None = None,
        temp_dir: Path | None = None,
    ) -> None:
        self.documents = documents
        self.blobs = blobs
        self.store = store
        self.credentials = credentials
        self.generator = generator
        self.state_store = state_store
        self.flags = flags
        self.root_folder_name = root_folder_name
        self.folder_names = {**DEFAULT_FOLDER_NAMES, **(folder_names or {})}
        self.temp_dir = temp_dir

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def sync_project(
        self,
        team_id: str,
        project_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> MirrorResult:
        """Mirror one project.  Returns ``SKIPPED`` if a pass is running."""
        if self.flags.mirroring:
            logger.debug("Mirror of %s skipped: pass in flight", project_id)
            return MirrorResult(
                project_id=project_id, status=MirrorStatus.SKIPPED
            )
        self.flags.mirroring = True
        self.flags.abort.clear()
        try:
            return await self._mirror_project(team_id, project_id, on_progress)
        finally:
            self.flags.mirroring = False

    async def sync_team(
        self, team_id: str, on_progress: ProgressCallback | None = None
    ) -> MirrorReport:
        """Mirror every project of the team, sequentially.

        Individual project failures do not stop the sweep; a lost
        credential or the abort flag does.  Progress is reported per
        project: ``current`` counts finished projects out of the sweep.
        """
        started_at = _now()
        if self.flags.mirroring:
            logger.debug("Mirror of team %s skipped: pass in flight", team_id)
            return MirrorReport(
                team_id=team_id,
                error="mirror pass already in flight",
                started_at=started_at,
                completed_at=_now(),
            )

        self.flags.mirroring = True
        self.flags.abort.clear()
        results: list[MirrorResult] = []
        aborted = False
        error: str | None = None
        try:
            record = await self.documents.read_record(TEAMS, team_id)
            if record is None:
                error = f"team {team_id} not found"
            else:
                team = Team.from_record(team_id, record)
                project_ids = team.project_ids()
                progress = _ProgressTracker(on_progress, len(project_ids))
                progress.emit(f"Mirroring {len(project_ids)} projects...")
                for project_id in project_ids:
                    if self.flags.abort.requested:
                        aborted = True
                        break
                    result = await self._mirror_project(
                        team_id, project_id, None
                    )
                    results.append(result)
                    progress.advance(
                        f"Project {result.project_name or project_id}: "
                        f"{result.status.value}"
                    )
                    if result.status == MirrorStatus.ABORTED:
                        aborted = True
                        break
                    if result.status == MirrorStatus.NOT_CONNECTED:
                        error = "mirror target not connected"
                        break
        except Exception as exc:
            logger.error("Mirror of team %s failed: %s", team_id, exc)
            error = str(exc)
        finally:
            self.flags.mirroring = False

        report = MirrorReport(
            team_id=team_id,
            results=results,
            aborted=aborted,
            error=error,
            started_at=started_at,
            completed_at=_now(),
        )
        logger.info(
            "Mirror of team %s: %d synced, %d unchanged, %d failed%s",
            team_id,
            len(report.synced),
            len(report.unchanged),
            len(report.errors),
            " (aborted)" if aborted else "",
        )
        return report

    # ------------------------------------------------------------------
    # Per-project pass
    # ------------------------------------------------------------------

    async def _mirror_project(
        self,
        team_id: str,
        project_id: str,
        on_progress: ProgressCallback | None,
    ) -> MirrorResult:
        try:
            token, project, team = await self._load_pass_inputs(
                team_id, project_id
            )
        except MirrorNotConnectedError:
            logger.info("Mirror target not connected for team %s", team_id)
            return MirrorResult(
                project_id=project_id, status=MirrorStatus.NOT_CONNECTED
            )
        except RecordNotFoundError as exc:
            return MirrorResult(
                project_id=project_id,
                status=MirrorStatus.NOT_FOUND,
                error=str(exc),
            )
        except Exception as exc:
            logger.error("Cannot load project %s: %s", project_id, exc)
            return MirrorResult(
                project_id=project_id,
                status=MirrorStatus.FAILED,
                error=str(exc),
            )

        group_name = team.group_name_for(project_id)

        state = await run_sync(self.state_store.load, team_id)
        current_hash = SyncStateStore.tasks_hash(project.tasks)
        previous = state.get("projects", {}).get(project_id, {})
        if previous.get("lastSyncedTasksHash") == current_hash:
            logger.debug("No changes for project %s", project.name)
            return MirrorResult(
                project_id=project_id,
                project_name=project.name,
                status=MirrorStatus.UNCHANGED,
                tasks_hash=current_hash,
            )

        plan = _MirrorPlan(project)
        progress = _ProgressTracker(on_progress, plan.total_units)
        counters = _PassCounters()
        progress.emit("Preparing folders...")

        status = MirrorStatus.SYNCED
        error: str | None = None
        try:
            folders = await self._ensure_folders(
                state, token, team.name, group_name, project.name
            )
            progress.advance("Folders ready")
            project_state = SyncStateStore.project_state(state, project_id)

            for task in plan.media_tasks:
                await self._mirror_task_media(
                    task, folders, project_state, state, token,
                    progress, counters,
                )

            for doc_key, kind, tasks in plan.summaries:
                self._check_abort()
                progress.advance(f"Summary: {self.folder_names[doc_key]}")
                await self._upload_summary(
                    project, doc_key, kind, tasks, folders[doc_key],
                    project_state, token, counters,
                )
        except _Aborted:
            status = MirrorStatus.ABORTED
            logger.info("Mirror of project %s aborted", project.name)
        except Exception as exc:
            status = MirrorStatus.FAILED
            error = str(exc)
            logger.error("Mirror of project %s failed: %s", project.name, exc)

        if status == MirrorStatus.SYNCED:
            if counters.has_failures:
                status = MirrorStatus.PARTIAL
            else:
                SyncStateStore.project_state(state, project_id)[
                    "lastSyncedTasksHash"
                ] = current_hash
                state["lastSyncTimestamp"] = int(time.time() * 1000)

        try:
            await run_sync(self.state_store.save, team_id, state)
        except OSError as exc:
            logger.error("Cannot save sync state for team %s: %s", team_id, exc)
            status = MirrorStatus.FAILED
            error = error or str(exc)

        if status == MirrorStatus.SYNCED:
            logger.info(
                "Mirrored project %s: %d media, %d documents uploaded",
                project.name,
                counters.uploaded_media,
                counters.uploaded_documents,
            )
        elif status == MirrorStatus.PARTIAL:
            logger.warning(
                "Mirror of project %s incomplete: %d media, %d documents "
                "failed",
                project.name,
                len(counters.failed_media),
                len(counters.failed_documents),
            )

        return MirrorResult(
            project_id=project_id,
            project_name=project.name,
            status=status,
            tasks_hash=current_hash,
            error=error,
            **counters.as_fields(),
        )

    async def _load_pass_inputs(
        self, team_id: str, project_id: str
    ) -> tuple[str, Project, Team]:
        """Acquire the bearer token and load the project and team.

        Raises:
            MirrorNotConnectedError: If no valid token is available.
            RecordNotFoundError: If the project or team record is gone.
        """
        token = await self.credentials.get_valid_token(team_id)
        if not token:
            raise MirrorNotConnectedError(f"team {team_id} has no credential")

        project_record = await self.documents.read_record(PROJECTS, project_id)
        if project_record is None:
            raise RecordNotFoundError(PROJECTS, project_id)
        team_record = await self.documents.read_record(TEAMS, team_id)
        if team_record is None:
            raise RecordNotFoundError(TEAMS, team_id)
        return (
            token,
            Project.from_record(project_id, project_record),
            Team.from_record(team_id, team_record),
        )

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def _ensure_folders(
        self,
        state: dict,
        token: str,
        team_name: str,
        group_name: str,
        project_name: str,
    ) -> dict[str, str]:
        """Ensure the project's folder tree; return kind -> folder id.

        The returned dict also carries the project folder under
        ``"project"`` and each folder's path key under ``"<kind>_path"``.
        """
        self._check_abort()
        root_id = await self._folder(
            state, token, ROOT_FOLDER_KEY, self.root_folder_name, DRIVE_ROOT
        )
        team_folder = await self._folder(
            state, token, team_name, team_name, root_id
        )
        group_key = f"{team_name}/{group_name}"
        group_id = await self._folder(
            state, token, group_key, group_name, team_folder
        )
        project_key = f"{group_key}/{project_name}"
        project_folder = await self._folder(
            state, token, project_key, project_name, group_id
        )

        folders = {"project": project_folder}
        for kind, name in self.folder_names.items():
            self._check_abort()
            path = f"{project_key}/{name}"
            folders[kind] = await self._folder(
                state, token, path, name, project_folder
            )
            folders[f"{kind}_path"] = path
        return folders

    async def _folder(
        self, state: dict, token: str, path: str, name: str, parent_id: str
    ) -> str:
        cached = SyncStateStore.get_folder(state, path)
        if cached:
            return cached
        folder_id = await self.store.find_or_create_folder(
            name, parent_id, token
        )
        SyncStateStore.set_folder(state, path, folder_id)
        logger.debug("Folder %s -> %s", path, folder_id)
        return folder_id

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def _mirror_task_media(
        self,
        task: Task,
        folders: dict[str, str],
        project_state: dict,
        state: dict,
        token: str,
        progress: _ProgressTracker,
        counters: _PassCounters,
    ) -> None:
        self._check_abort()
        folder_kind, prefix, extension, content_type = _MEDIA_FORMATS[task.kind]
        folder_name = task.title or task.id
        task_folder = await self._folder(
            state,
            token,
            f"{folders[folder_kind + '_path']}/{task.id}",
            folder_name,
            folders[folder_kind],
        )

        synced_media = project_state["syncedMedia"]
        items: list[MediaMetadataItem] = []
        for index, ref in enumerate(task.media()):
            if classify_reference(ref) != RefScheme.REMOTE:
                continue
            self._check_abort()
            filename = f"{prefix}_{index + 1}.{extension}"
            media_key = f"{task.id}/{prefix}_{index + 1}"
            progress.advance(f"{self.folder_names[folder_kind]}: {folder_name}")
            items.append(
                MediaMetadataItem(
                    filename=filename,
                    description=task.description,
                    location=task.location_at(index),
                    date=task.completed_at,
                )
            )

            existing = synced_media.get(media_key)
            if existing and existing.get("sourceRef") == ref:
                counters.skipped_media += 1
                continue
            try:
                file_id = await self._transfer_media(
                    ref,
                    filename,
                    content_type,
                    task_folder,
                    token,
                    existing.get("externalId") if existing else None,
                )
            except Exception as exc:
                logger.warning("Failed to mirror media %s: %s", media_key, exc)
                counters.failed_media.append(media_key)
                continue
            synced_media[media_key] = {
                "externalId": file_id,
                "sourceRef": ref,
                "syncedAt": int(time.time() * 1000),
            }
            counters.uploaded_media += 1

        if not items:
            return
        self._check_abort()
        progress.advance(f"Metadata: {folder_name}")
        doc_key = f"{task.id}/{prefix}_metadata"
        content_hash = SyncStateStore.content_hash(
            {
                "title": folder_name,
                "kind": task.kind.value,
                "items": [i.model_dump(mode="json") for i in items],
            }
        )
        await self._upload_document(
            doc_key,
            content_hash,
            f"{folder_name} - metadata.{self.generator.extension}",
            task_folder,
            project_state,
            token,
            counters,
            lambda: self.generator.generate_media_metadata_document(
                folder_name, task.kind.value, items
            ),
        )

    async def _transfer_media(
        self,
        ref: str,
        filename: str,
        content_type: str,
        folder_id: str,
        token: str,
        existing_file_id: str | None,
    ) -> str:
        """Download *ref* to a temp file, upload it, remove the temp file."""
        data = await self.blobs.download_blob(ref)
        tmp_path = await run_sync(self._write_temp, data, Path(filename).suffix)
        try:
            payload = await run_sync(tmp_path.read_bytes)
            return await self.store.upload_or_replace_file(
                filename,
                payload,
                content_type,
                folder_id,
                token,
                existing_file_id=existing_file_id,
            )
        finally:
            await run_sync(tmp_path.unlink, missing_ok=True)

    def _write_temp(self, data: bytes, suffix: str) -> Path:
        temp_dir = str(self.temp_dir) if self.temp_dir else None
        if self.temp_dir:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=temp_dir, suffix=suffix)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        return Path(tmp_path)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def _upload_summary(
        self,
        project: Project,
        doc_key: str,
        kind: str,
        tasks: list[Task],
        folder_id: str,
        project_state: dict,
        token: str,
        counters: _PassCounters,
    ) -> None:
        rows = [
            {
                "title": t.title,
                "description": t.description,
                "value": t.value,
                "completedAt": t.completed_at,
            }
            for t in tasks
        ]
        content_hash = SyncStateStore.content_hash(
            {"title": project.name, "kind": kind, "rows": rows}
        )
        await self._upload_document(
            doc_key,
            content_hash,
            f"{project.name} - {self.folder_names[doc_key]}"
            f".{self.generator.extension}",
            folder_id,
            project_state,
            token,
            counters,
            lambda: self.generator.generate_summary_document(
                kind, project.name, rows
            ),
        )

    async def _upload_document(
        self,
        doc_key: str,
        content_hash: str,
        filename: str,
        folder_id: str,
        project_state: dict,
        token: str,
        counters: _PassCounters,
        render: Callable[[], Path],
    ) -> None:
        """Render and upload a document unless its content hash is known."""
        synced_docs = project_state["syncedPdfs"]
        existing = synced_docs.get(doc_key)
        if existing and existing.get("contentHash") == content_hash:
            counters.skipped_documents += 1
            return

        try:
            path = await run_sync(render)
            try:
                data = await run_sync(path.read_bytes)
                file_id = await self.store.upload_or_replace_file(
                    filename,
                    data,
                    self.generator.content_type,
                    folder_id,
                    token,
                    existing_file_id=(
                        existing.get("externalId") if existing else None
                    ),
                )
            finally:
                await run_sync(path.unlink, missing_ok=True)
        except Exception as exc:
            logger.warning("Failed to mirror document %s: %s", doc_key, exc)
            counters.failed_documents.append(doc_key)
            return

        synced_docs[doc_key] = {
            "externalId": file_id,
            "contentHash": content_hash,
            "syncedAt": int(time.time() * 1000),
        }
        counters.uploaded_documents += 1

    def _check_abort(self) -> None:
        if self.flags.abort.requested:
            raise _Aborted()


class _MirrorPlan:
    """Work units of one project pass, used for progress totals."""

    def __init__(self, project: Project) -> None:
        self.media_tasks = [
            t
            for t in project.tasks
            if t.kind in _MEDIA_FORMATS
            and any(
                classify_reference(ref) == RefScheme.REMOTE
                for ref in t.media()
            )
        ]
        completed = [
            t for t in project.tasks if t.status == TaskStatus.COMPLETED
        ]
        self.summaries: list[tuple[str, str, list[Task]]] = []
        measurements = [t for t in completed if t.kind == TaskKind.MEASUREMENT]
        notes = [t for t in completed if t.kind == TaskKind.TEXT]
        if measurements:
            self.summaries.append(
                ("measurements", TaskKind.MEASUREMENT.value, measurements)
            )
        if notes:
            self.summaries.append(("notes", TaskKind.TEXT.value, notes))

        media_units = sum(
            1
            for t in self.media_tasks
            for ref in t.media()
            if classify_reference(ref) == RefScheme.REMOTE
        )
        # folders + media + one metadata document per media task + summaries
        self.total_units = (
            1 + media_units + len(self.media_tasks) + len(self.summaries)
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
