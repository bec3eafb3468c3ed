"""Shared pytest fixtures and in-memory fakes for worksync tests."""

from __future__ import annotations

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import pytest

from worksync.core.kv_store import JsonKeyValueStore
from worksync.models import MediaMetadataItem
from worksync.sync.context import SyncFlags
from worksync.sync.queue import LocalEditQueue


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live Drive credentials",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDocumentStore:
    """In-memory ``DocumentStore`` with injectable failures.

    Attributes:
        records: ``{(collection, record_id): record}``.
        writes: Log of ``(collection, record_id, field, value)``.
        fail_reads: Record ids whose reads raise.
        fail_writes: Record ids whose writes raise.
        fail_fields: Field names whose writes raise.
    """

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, str, str, Any]] = []
        self.reads: list[tuple[str, str]] = []
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()
        self.fail_fields: set[str] = set()

    def put(self, collection: str, record_id: str, record: dict) -> None:
        self.records[(collection, record_id)] = copy.deepcopy(record)

    def get(self, collection: str, record_id: str) -> dict | None:
        return self.records.get((collection, record_id))

    async def read_record(self, collection: str, record_id: str):
        self.reads.append((collection, record_id))
        if record_id in self.fail_reads:
            raise ConnectionError(f"read of {record_id} failed")
        record = self.records.get((collection, record_id))
        return copy.deepcopy(record) if record is not None else None

    async def write_field(
        self, collection: str, record_id: str, field: str, value: Any
    ) -> None:
        if record_id in self.fail_writes or field in self.fail_fields:
            raise PermissionError(f"write of {record_id}.{field} rejected")
        self.writes.append((collection, record_id, field, copy.deepcopy(value)))
        record = self.records.setdefault((collection, record_id), {})
        record[field] = copy.deepcopy(value)


class FakeBlobStore:
    """In-memory ``BlobStore``.

    Uploaded paths map to ``https://blobs.example.com/<path>``.
    """

    BASE_URL = "https://blobs.example.com/"

    def __init__(self) -> None:
        self.uploads: dict[str, tuple[bytes, str]] = {}
        self.content: dict[str, bytes] = {}
        self.downloads: list[str] = []
        self.fail_uploads = False
        self.fail_downloads: set[str] = set()

    async def upload_blob(
        self, path: str, data: bytes, content_type: str
    ) -> str:
        if self.fail_uploads:
            raise ConnectionError("blob store unavailable")
        self.uploads[path] = (data, content_type)
        url = f"{self.BASE_URL}{path}"
        self.content[url] = data
        return url

    async def download_blob(self, ref: str) -> bytes:
        self.downloads.append(ref)
        if ref in self.fail_downloads:
            raise ConnectionError(f"download of {ref} failed")
        return self.content.get(ref, f"bytes of {ref}".encode())


class FakeMirrorStore:
    """In-memory folder-tree ``MirrorStore``.

    Attributes:
        folders: ``{(parent_id, name): folder_id}``.
        files: ``{file_id: {"name", "data", "content_type", "folder_id"}}``.
        folder_calls: Number of ``find_or_create_folder`` calls.
        uploads: Log of ``(name, folder_id, existing_file_id)``.
        fail_names: File names whose uploads raise.
    """

    def __init__(self) -> None:
        self.folders: dict[tuple[str, str], str] = {}
        self.files: dict[str, dict[str, Any]] = {}
        self.folder_calls = 0
        self.uploads: list[tuple[str, str, str | None]] = []
        self.fail_names: set[str] = set()
        self.on_upload = None
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    async def find_or_create_folder(
        self, name: str, parent_id: str, token: str
    ) -> str:
        self.folder_calls += 1
        key = (parent_id, name)
        if key not in self.folders:
            self.folders[key] = self._new_id("folder")
        return self.folders[key]

    async def upload_or_replace_file(
        self,
        name: str,
        data: bytes,
        content_type: str,
        folder_id: str,
        token: str,
        existing_file_id: str | None = None,
    ) -> str:
        if self.on_upload is not None:
            self.on_upload(name)
        if name in self.fail_names:
            raise ConnectionError(f"upload of {name} failed")
        self.uploads.append((name, folder_id, existing_file_id))
        file_id = existing_file_id or self._new_id("file")
        self.files[file_id] = {
            "name": name,
            "data": data,
            "content_type": content_type,
            "folder_id": folder_id,
        }
        return file_id

    def files_named(self, name: str) -> list[dict[str, Any]]:
        return [f for f in self.files.values() if f["name"] == name]

    def folder_id(self, *names: str, parent: str = "root") -> str | None:
        """Resolve a folder path like ``("Worksync", "Team", ...)``."""
        current = parent
        for name in names:
            found = self.folders.get((current, name))
            if found is None:
                return None
            current = found
        return current


class FakeCredentialProvider:
    def __init__(self, token: str | None = "token-1") -> None:
        self.token = token
        self.calls: list[str] = []

    async def get_valid_token(self, team_id: str) -> str | None:
        self.calls.append(team_id)
        return self.token


class FakeDocumentGenerator:
    """Writes the render inputs as JSON to a temp file."""

    extension = "json"
    content_type = "application/json"

    def __init__(self, temp_dir: Path) -> None:
        self.temp_dir = temp_dir
        self.summaries: list[tuple[str, str, list[dict]]] = []
        self.metadata: list[tuple[str, str, list[MediaMetadataItem]]] = []

    def _write(self, payload: Any) -> Path:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        fd, path = tempfile.mkstemp(dir=str(self.temp_dir), suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, default=str)
        return Path(path)

    def generate_summary_document(
        self, kind: str, title: str, rows: list[dict]
    ) -> Path:
        self.summaries.append((kind, title, rows))
        return self._write({"kind": kind, "title": title, "rows": rows})

    def generate_media_metadata_document(
        self, title: str, kind: str, items: list[MediaMetadataItem]
    ) -> Path:
        self.metadata.append((title, kind, items))
        return self._write(
            {
                "title": title,
                "kind": kind,
                "items": [i.model_dump(mode="json") for i in items],
            }
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def kv_store(tmp_path: Path) -> JsonKeyValueStore:
    return JsonKeyValueStore(tmp_path / "kv")


@pytest.fixture
def queue(kv_store: JsonKeyValueStore) -> LocalEditQueue:
    return LocalEditQueue(kv_store)


@pytest.fixture
def flags() -> SyncFlags:
    return SyncFlags()


@pytest.fixture
def documents() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def mirror_store() -> FakeMirrorStore:
    return FakeMirrorStore()


@pytest.fixture
def credentials() -> FakeCredentialProvider:
    return FakeCredentialProvider()


@pytest.fixture
def generator(tmp_path: Path) -> FakeDocumentGenerator:
    return FakeDocumentGenerator(tmp_path / "docs")


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every WORKSYNC_* variable from the environment."""
    for key in list(os.environ):
        if key.startswith("WORKSYNC_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
