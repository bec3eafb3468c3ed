"""Capability contracts consumed by the sync engines.

The host application supplies concrete implementations for the document
store and blob store.  ``worksync.core.drive_client`` and
``worksync.core.drive_auth`` provide the mirror store and credential
provider for Google Drive; ``worksync.documents`` provides the document
generator.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from ..models import MediaMetadataItem


class DocumentStore(Protocol):
    """Authoritative document database (projects, teams)."""

    async def read_record(
        self, collection: str, record_id: str
    ) -> dict[str, Any] | None:
        """Read one record.

        Returns:
            The record as a dict, or ``None`` if it does not exist.
        """
        ...

    async def write_field(
        self, collection: str, record_id: str, field: str, value: Any
    ) -> None:
        """Replace one top-level field of a record as a whole.

        Raises:
            Exception: Any exception means the write was rejected.
        """
        ...


class BlobStore(Protocol):
    """Binary object storage for task media."""

    async def upload_blob(
        self, path: str, data: bytes, content_type: str
    ) -> str:
        """Upload bytes and return a durable remote reference (URL)."""
        ...

    async def download_blob(self, ref: str) -> bytes:
        """Download the bytes behind a remote reference."""
        ...


class MirrorStore(Protocol):
    """Folder-tree capable external store (the mirror target)."""

    async def find_or_create_folder(
        self, name: str, parent_id: str, token: str
    ) -> str:
        """Return the id of folder *name* under *parent_id*, creating it
        if needed.  Idempotent by name and parent."""
        ...

    async def upload_or_replace_file(
        self,
        name: str,
        data: bytes,
        content_type: str,
        folder_id: str,
        token: str,
        existing_file_id: str | None = None,
    ) -> str:
        """Upload a new file, or replace the content of *existing_file_id*.

        Returns:
            The external file id.
        """
        ...


class CredentialProvider(Protocol):
    """Source of bearer tokens for the mirror target."""

    async def get_valid_token(self, team_id: str) -> str | None:
        """Return a valid token, refreshing if needed; ``None`` when the
        team is not connected or the refresh failed."""
        ...


class DocumentGenerator(Protocol):
    """Renders summary documents to temporary local files."""

    extension: str
    content_type: str

    def generate_summary_document(
        self, kind: str, title: str, rows: list[dict[str, Any]]
    ) -> Path:
        """Render the measurement/notes summary for a project."""
        ...

    def generate_media_metadata_document(
        self, title: str, kind: str, items: list[MediaMetadataItem]
    ) -> Path:
        """Render per-item metadata (description, location, date) for
        one photo/video task."""
        ...
