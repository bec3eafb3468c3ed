"""Tests for the local edit queue and the cached merged view."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from worksync.core.kv_store import JsonKeyValueStore
from worksync.errors import QueuePersistenceError
from worksync.models import QueuedEdit, Task
from worksync.sync.cache import ProjectCache, merged_view
from worksync.sync.queue import QUEUE_PREFIX, LocalEditQueue


def _task(task_id: str, value: str | None = None) -> Task:
    return Task(id=task_id, type="text", title=task_id, value=value)


class TestEnqueue:
    """Insert-or-replace semantics."""

    def test_enqueue_appends_with_zero_retries(self, queue: LocalEditQueue):
        edit = queue.enqueue("p1", _task("a"))
        assert edit.retry_count == 0
        assert edit.task.is_local is True
        assert [e.task.id for e in queue.get("p1")] == ["a"]

    def test_enqueue_replaces_in_place(self, queue: LocalEditQueue):
        queue.enqueue("p1", _task("a"))
        queue.enqueue("p1", _task("b"))
        queue.enqueue("p1", _task("a", value="new"))
        edits = queue.get("p1")
        assert [e.task.id for e in edits] == ["a", "b"]
        assert edits[0].task.value == "new"

    def test_enqueue_resets_retry_count(self, queue: LocalEditQueue):
        queue.drain("p1", [QueuedEdit(task=_task("a"), retry_count=2)])
        queue.enqueue("p1", _task("a", value="again"))
        assert queue.get("p1")[0].retry_count == 0

    def test_queues_are_per_project(self, queue: LocalEditQueue):
        queue.enqueue("p1", _task("a"))
        queue.enqueue("p2", _task("a"))
        assert len(queue.get("p1")) == 1
        assert len(queue.get("p2")) == 1

    def test_persistence_error_raised(self, queue: LocalEditQueue):
        with patch.object(
            JsonKeyValueStore, "set", side_effect=OSError("disk full")
        ):
            with pytest.raises(QueuePersistenceError):
                queue.enqueue("p1", _task("a"))

    def test_unreadable_queue_not_overwritten(
        self, queue: LocalEditQueue, kv_store: JsonKeyValueStore
    ):
        kv_store.root.mkdir(parents=True, exist_ok=True)
        path = kv_store.root / f"{QUEUE_PREFIX}p1.json"
        path.write_text("[", "utf-8")

        with pytest.raises(QueuePersistenceError, match="read edit queue"):
            queue.enqueue("p1", _task("a"))

        assert path.read_text("utf-8") == "["

    def test_queue_survives_reopen(self, kv_store: JsonKeyValueStore):
        LocalEditQueue(kv_store).enqueue("p1", _task("a"))
        assert LocalEditQueue(kv_store).get("p1")[0].task.id == "a"


class TestReads:
    """Listing and parsing persisted queues."""

    def test_list_all_skips_empty(self, queue: LocalEditQueue, kv_store):
        queue.enqueue("p1", _task("a"))
        kv_store.set(f"{QUEUE_PREFIX}p2", [])
        assert [pid for pid, _ in queue.list_all()] == ["p1"]

    def test_pending_count(self, queue: LocalEditQueue):
        queue.enqueue("p1", _task("a"))
        queue.enqueue("p1", _task("b"))
        queue.enqueue("p2", _task("c"))
        assert queue.pending_count() == 3

    def test_legacy_bare_task_entries(self, queue: LocalEditQueue, kv_store):
        kv_store.set(
            f"{QUEUE_PREFIX}p1", [{"id": "a", "type": "text", "value": "x"}]
        )
        edits = queue.get("p1")
        assert edits[0].task.id == "a"
        assert edits[0].retry_count == 0

    def test_malformed_entries_dropped(self, queue: LocalEditQueue, kv_store):
        kv_store.set(
            f"{QUEUE_PREFIX}p1",
            [
                {"task": {"id": "a", "type": "text"}, "retryCount": 1},
                {"task": {"type": "nope"}},
                42,
            ],
        )
        edits = queue.get("p1")
        assert [e.task.id for e in edits] == ["a"]
        assert edits[0].retry_count == 1

    def test_unreadable_queue_reads_empty(self, queue: LocalEditQueue, kv_store):
        kv_store.root.mkdir(parents=True, exist_ok=True)
        (kv_store.root / f"{QUEUE_PREFIX}p1.json").write_text("[", "utf-8")
        assert queue.get("p1") == []


class TestDrain:
    def test_drain_empty_removes_key(self, queue: LocalEditQueue, kv_store):
        queue.enqueue("p1", _task("a"))
        queue.drain("p1", [])
        assert kv_store.keys(QUEUE_PREFIX) == []

    def test_drain_replaces_queue(self, queue: LocalEditQueue):
        queue.enqueue("p1", _task("a"))
        queue.drain("p1", [QueuedEdit(task=_task("b"), retry_count=1)])
        edits = queue.get("p1")
        assert [(e.task.id, e.retry_count) for e in edits] == [("b", 1)]

    def test_discard(self, queue: LocalEditQueue):
        queue.enqueue("p1", _task("a"))
        queue.enqueue("p1", _task("b"))
        assert queue.discard("p1", "a") is True
        assert queue.discard("p1", "zzz") is False
        assert [e.task.id for e in queue.get("p1")] == ["b"]


class TestMergedView:
    """Offline overlay of queued edits on the cached project."""

    def test_overlay_replaces_and_appends(self, kv_store, queue):
        cache = ProjectCache(kv_store)
        cache.save(
            "p1",
            "Site",
            [
                {"id": "a", "type": "text", "value": "old"},
                {"id": "b", "type": "text"},
            ],
        )
        queue.enqueue("p1", _task("a", value="new"))
        queue.enqueue("p1", _task("c"))
        view = merged_view(cache, queue, "p1")
        assert [t.id for t in view] == ["a", "b", "c"]
        assert view[0].value == "new"
        assert view[0].is_local is True

    def test_no_cache(self, kv_store, queue):
        queue.enqueue("p1", _task("a"))
        view = merged_view(ProjectCache(kv_store), queue, "p1")
        assert [t.id for t in view] == ["a"]

    def test_cache_round_trip(self, kv_store):
        cache = ProjectCache(kv_store)
        cache.save("p1", "Site", [], status="active")
        assert cache.load("p1") == {
            "name": "Site",
            "tasks": [],
            "status": "active",
        }
        assert cache.load("p2") is None
