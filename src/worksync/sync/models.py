"""Pydantic models for reconciliation and mirror outcomes.

Defines the data contracts returned by the engines:

- ``ReconcileStatus`` / ``ReconcileResult``: outcome of one project's
  reconciliation attempt.
- ``ReconcileReport``: aggregate for one reconciliation sweep.
- ``MirrorStatus`` / ``MirrorResult``: outcome of one project's mirror pass.
- ``MirrorReport``: aggregate for one team sweep.
- ``SyncProgress``: progress event delivered to callers during a pass.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ReconcileStatus(str, Enum):
    """Outcome of one project's reconciliation attempt."""

    SYNCED = "synced"
    NO_CHANGES = "no_changes"
    PROJECT_DELETED = "project_deleted"
    READ_FAILED = "read_failed"
    WRITE_FAILED = "write_failed"


class ReconcileResult(BaseModel):
    """Result of reconciling one project's queued edits.

    Attributes:
        project_id: The reconciled project.
        status: Overall outcome.
        synced: Task ids merged cleanly and removed from the queue.
        failed: Task ids kept in the queue for another attempt.
        dropped: Task ids removed without a clean merge (retry ceiling
            reached, or the project was deleted).
        remaining: Queue length after the attempt.
        error: Error message for record-level failures.
    """

    project_id: str
    status: ReconcileStatus
    synced: list[str] = []
    failed: list[str] = []
    dropped: list[str] = []
    remaining: int = 0
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.status in (
            ReconcileStatus.SYNCED,
            ReconcileStatus.NO_CHANGES,
        )


class ReconcileReport(BaseModel):
    """Aggregate report for one reconciliation sweep.

    Attributes:
        trigger: What started the sweep (``network``, ``user``,
            ``auto_push``).
        skipped: ``True`` when another attempt was already in flight and
            nothing was done.
        results: Per-project results in processing order.
        started_at: ISO 8601 timestamp when the sweep started.
        completed_at: ISO 8601 timestamp when the sweep finished.
    """

    trigger: str
    skipped: bool = False
    results: list[ReconcileResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return not self.skipped and all(r.success for r in self.results)

    @property
    def errors(self) -> list[ReconcileResult]:
        return [r for r in self.results if not r.success]

    @property
    def synced_task_count(self) -> int:
        return sum(len(r.synced) for r in self.results)

    @property
    def dropped_task_count(self) -> int:
        return sum(len(r.dropped) for r in self.results)


class MirrorStatus(str, Enum):
    """Outcome of one project's mirror pass."""

    SYNCED = "synced"
    UNCHANGED = "unchanged"
    PARTIAL = "partial"
    ABORTED = "aborted"
    NOT_CONNECTED = "not_connected"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    SKIPPED = "skipped"


class MirrorResult(BaseModel):
    """Result of mirroring one project.

    Attributes:
        project_id: The mirrored project.
        project_name: Project display name, once loaded.
        status: Overall outcome.
        uploaded_media: Media files transferred in this pass.
        skipped_media: Media items skipped as already synced.
        failed_media: Stable keys of media items that failed.
        failed_documents: Keys of generated documents that failed.
        uploaded_documents: Generated documents uploaded.
        skipped_documents: Generated documents skipped (content unchanged).
        tasks_hash: Task-list hash computed for this pass.
        error: Error message for pass-level failures.
    """

    project_id: str
    project_name: str | None = None
    status: MirrorStatus
    uploaded_media: int = 0
    skipped_media: int = 0
    failed_media: list[str] = []
    failed_documents: list[str] = []
    uploaded_documents: int = 0
    skipped_documents: int = 0
    tasks_hash: str | None = None
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.status in (MirrorStatus.SYNCED, MirrorStatus.UNCHANGED)


class MirrorReport(BaseModel):
    """Aggregate report for a team mirror sweep.

    Attributes:
        team_id: The mirrored team.
        results: Per-project results in discovery order.
        aborted: ``True`` if the abort flag stopped the sweep.
        error: Sweep-level error (team missing, not connected).
        started_at: ISO 8601 timestamp when the sweep started.
        completed_at: ISO 8601 timestamp when the sweep finished.
    """

    team_id: str
    results: list[MirrorResult] = []
    aborted: bool = False
    error: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        """At least one project succeeded (or there was nothing to do)."""
        if self.error or self.aborted:
            return False
        if not self.results:
            return True
        return any(r.success for r in self.results)

    @property
    def synced(self) -> list[MirrorResult]:
        return [r for r in self.results if r.status == MirrorStatus.SYNCED]

    @property
    def unchanged(self) -> list[MirrorResult]:
        return [
            r for r in self.results if r.status == MirrorStatus.UNCHANGED
        ]

    @property
    def errors(self) -> list[MirrorResult]:
        return [r for r in self.results if not r.success]


class SyncProgress(BaseModel):
    """Progress event: ``current`` of ``total`` units, with a message."""

    current: int = Field(ge=0)
    total: int = Field(ge=0)
    message: str = ""

    model_config = {"frozen": True}
