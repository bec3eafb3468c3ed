"""Pydantic models for the task-tracking domain.

Defines the records the sync engine moves between the local edit queue,
the remote document store, and the mirror target:

- ``TaskKind`` / ``TaskStatus``: enums for task type and derived status.
- ``GeoPoint``: optional location attached to a captured media item.
- ``Task``: one unit of work inside a project.
- ``QueuedEdit``: a locally made task edit awaiting reconciliation.
- ``Project`` / ``Team`` / ``TeamGroup``: parsed views of remote records.

Tasks are serialised with the document store's camelCase field names
(``type``, ``imageLocations``, ``isLocal`` ...) so a ``Task`` round-trips
through a remote record without renaming.  Unknown fields written by other
clients are preserved (``extra="allow"``).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Untitled"
DEFAULT_TEAM_NAME = "Unnamed team"
DEFAULT_GROUP_NAME = "No group"


class TaskKind(str, Enum):
    """Task type.  Immutable after creation."""

    PHOTO = "photo"
    VIDEO = "video"
    MEASUREMENT = "measurement"
    TEXT = "text"


class TaskStatus(str, Enum):
    """Task completion status (derived from the payload)."""

    PENDING = "pending"
    COMPLETED = "completed"


class GeoPoint(BaseModel):
    """Latitude/longitude pair recorded when a media item was captured."""

    lat: float
    lng: float

    model_config = {"frozen": True}


class Task(BaseModel):
    """A unit of work inside a project.

    Attributes:
        id: Stable identifier, unique within the project.
        title: Short task title.
        description: Optional free text.
        kind: Task type (serialised as ``type``).
        images: Ordered image references (photo tasks).
        image_locations: Locations parallel to ``images``.
        videos: Ordered video references (video tasks).
        video_locations: Locations parallel to ``videos``.
        value: Single string payload (measurement/text, legacy photo).
        completed_at: Epoch milliseconds of completion, if known.
        is_local: Transient marker for unconfirmed local edits.  Never
            written to the remote record.
    """

    id: str
    title: str = ""
    description: str | None = None
    kind: TaskKind = Field(alias="type")
    images: list[str] = Field(default_factory=list)
    image_locations: list[GeoPoint | None] = Field(
        default_factory=list, alias="imageLocations"
    )
    videos: list[str] = Field(default_factory=list)
    video_locations: list[GeoPoint | None] = Field(
        default_factory=list, alias="videoLocations"
    )
    value: str | None = None
    completed_at: int | None = Field(default=None, alias="completedAt")
    is_local: bool = Field(default=False, alias="isLocal")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "allow",
    }

    @model_validator(mode="before")
    @classmethod
    def _drop_stored_status(cls, data: Any) -> Any:
        # Status is always derived from the payload; a stored value is
        # ignored rather than trusted.
        if isinstance(data, dict) and "status" in data:
            data = {k: v for k, v in data.items() if k != "status"}
        return data

    @field_validator("kind", mode="before")
    @classmethod
    def _legacy_kind(cls, value: Any) -> Any:
        if value == "general":
            return TaskKind.TEXT
        return value

    @field_validator("images", "videos", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("image_locations", "video_locations", mode="before")
    @classmethod
    def _clean_locations(cls, value: Any) -> Any:
        if value is None:
            return []
        return [
            loc if isinstance(loc, (dict, GeoPoint)) else None
            for loc in value
        ]

    @property
    def has_payload(self) -> bool:
        """``True`` when the kind-appropriate payload is non-empty."""
        if self.kind == TaskKind.PHOTO:
            return bool(self.images) or bool(self.value)
        if self.kind == TaskKind.VIDEO:
            return bool(self.videos)
        return bool(self.value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> TaskStatus:
        return (
            TaskStatus.COMPLETED if self.has_payload else TaskStatus.PENDING
        )

    def media(self) -> list[str]:
        """Return the ordered media references for photo/video tasks."""
        if self.kind == TaskKind.PHOTO:
            return list(self.images)
        if self.kind == TaskKind.VIDEO:
            return list(self.videos)
        return []

    def locations(self) -> list[GeoPoint | None]:
        """Return the location list parallel to :meth:`media`."""
        if self.kind == TaskKind.PHOTO:
            return list(self.image_locations)
        if self.kind == TaskKind.VIDEO:
            return list(self.video_locations)
        return []

    def location_at(self, index: int) -> GeoPoint | None:
        locs = self.locations()
        return locs[index] if index < len(locs) else None

    def with_media(
        self, refs: list[str], locations: list[GeoPoint | None]
    ) -> Task:
        """Return a copy with the media list (and locations) replaced."""
        if self.kind == TaskKind.PHOTO:
            return self.model_copy(
                update={"images": refs, "image_locations": locations}
            )
        if self.kind == TaskKind.VIDEO:
            return self.model_copy(
                update={"videos": refs, "video_locations": locations}
            )
        return self

    def to_record(self) -> dict[str, Any]:
        """Serialise for the remote record (``isLocal`` stripped)."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"is_local"},
            exclude_none=True,
        )

    def to_local_record(self) -> dict[str, Any]:
        """Serialise for local persistence (``isLocal`` kept)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MissingMedia(BaseModel):
    """A local media reference removed from a task because its file was
    missing.  Re-checked on every reconciliation attempt.

    Attributes:
        ref: The original ``file://`` reference.
        slot: ``"media"`` (image/video list) or ``"value"``.
        location: Location that was attached to the reference.
    """

    ref: str
    slot: str = "media"
    location: GeoPoint | None = None

    model_config = {"frozen": True}


class QueuedEdit(BaseModel):
    """A task edit waiting in the local edit queue.

    Attributes:
        task: The edited task (normally with ``is_local=True``).
        retry_count: Number of failed reconciliation attempts so far.
        missing_media: References removed from ``task`` because their
            local file was missing on the last attempt.
    """

    task: Task
    retry_count: int = Field(default=0, ge=0, alias="retryCount")
    missing_media: list[MissingMedia] = Field(
        default_factory=list, alias="missingMedia"
    )

    model_config = {"frozen": True, "populate_by_name": True}

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "task": self.task.to_local_record(),
            "retryCount": self.retry_count,
        }
        if self.missing_media:
            record["missingMedia"] = [
                m.model_dump(mode="json", exclude_none=True)
                for m in self.missing_media
            ]
        return record


def parse_tasks(raw_tasks: list[Any] | None) -> list[Task]:
    """Parse a remote task list, skipping entries that fail validation."""
    tasks: list[Task] = []
    for raw in raw_tasks or []:
        try:
            tasks.append(Task.model_validate(raw))
        except ValidationError as exc:
            task_id = raw.get("id") if isinstance(raw, dict) else None
            logger.warning("Skipping malformed task %s: %s", task_id, exc)
    return tasks


class Project(BaseModel):
    """Parsed view of a remote project record.

    Attributes:
        id: Project id (document id).
        team_id: Owning team id.
        name: Display name (``name`` or legacy ``title`` field).
        tasks: Parsed task list.
    """

    id: str
    team_id: str | None = None
    name: str = DEFAULT_PROJECT_NAME
    tasks: list[Task] = []

    model_config = {"frozen": True}

    @classmethod
    def from_record(cls, project_id: str, record: dict) -> Project:
        return cls(
            id=project_id,
            team_id=record.get("teamId"),
            name=record.get("name")
            or record.get("title")
            or DEFAULT_PROJECT_NAME,
            tasks=parse_tasks(record.get("tasks")),
        )

    def rollup_status(self) -> str:
        """Return ``"completed"`` when every task is completed."""
        if self.tasks and all(
            t.status == TaskStatus.COMPLETED for t in self.tasks
        ):
            return "completed"
        return "active"


class TeamGroup(BaseModel):
    """A named group of projects inside a team."""

    title: str = DEFAULT_GROUP_NAME
    project_ids: list[str] = []

    model_config = {"frozen": True}


class Team(BaseModel):
    """Parsed view of a remote team record."""

    id: str
    name: str = DEFAULT_TEAM_NAME
    groups: list[TeamGroup] = []

    model_config = {"frozen": True}

    @classmethod
    def from_record(cls, team_id: str, record: dict) -> Team:
        groups = []
        for group in record.get("groups") or []:
            project_ids = [
                p["id"]
                for p in group.get("projects") or []
                if isinstance(p, dict) and p.get("id")
            ]
            groups.append(
                TeamGroup(
                    title=group.get("title") or DEFAULT_GROUP_NAME,
                    project_ids=project_ids,
                )
            )
        return cls(
            id=team_id,
            name=record.get("name") or DEFAULT_TEAM_NAME,
            groups=groups,
        )

    def project_ids(self) -> list[str]:
        """All project ids in group order, first occurrence wins."""
        seen: dict[str, None] = {}
        for group in self.groups:
            for pid in group.project_ids:
                seen.setdefault(pid, None)
        return list(seen)

    def group_name_for(self, project_id: str) -> str:
        for group in self.groups:
            if project_id in group.project_ids:
                return group.title
        return DEFAULT_GROUP_NAME


class MediaMetadataItem(BaseModel):
    """One row of a task's media metadata document."""

    filename: str
    description: str | None = None
    location: GeoPoint | None = None
    date: int | None = None

    model_config = {"frozen": True}
