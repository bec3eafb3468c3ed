"""Tests for the JSON-file key-value store."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from worksync.core.kv_store import JsonKeyValueStore


class TestGetSet:
    def test_get_missing_key_returns_none(self, tmp_path: Path):
        assert JsonKeyValueStore(tmp_path).get("nope") is None

    def test_set_then_get(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path / "kv")
        store.set("k", {"a": [1, 2], "b": "ü"})
        assert store.get("k") == {"a": [1, 2], "b": "ü"}

    def test_set_creates_root(self, tmp_path: Path):
        root = tmp_path / "deep" / "kv"
        JsonKeyValueStore(root).set("k", 1)
        assert root.is_dir()

    def test_set_overwrites(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path)
        store.set("k", 1)
        store.set("k", 2)
        assert store.get("k") == 2

    def test_keys_with_slashes_are_encoded(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path)
        store.set("a/b", "x")
        assert store.get("a/b") == "x"
        assert store.keys() == ["a/b"]

    def test_corrupt_file_raises_value_error(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path)
        (tmp_path / "k.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            store.get("k")

    def test_unserialisable_value_leaves_no_temp_file(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path)
        store.set("k", 1)
        with pytest.raises(TypeError):
            store.set("k", {"bad": object()})
        assert store.get("k") == 1
        assert [p for p in os.listdir(tmp_path) if p.endswith(".tmp")] == []


class TestDeleteAndKeys:
    def test_delete_missing_is_noop(self, tmp_path: Path):
        JsonKeyValueStore(tmp_path).delete("nope")

    def test_delete_removes_key(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path)
        store.set("k", 1)
        store.delete("k")
        assert store.get("k") is None

    def test_keys_filters_by_prefix_and_sorts(self, tmp_path: Path):
        store = JsonKeyValueStore(tmp_path)
        for key in ("q_b", "q_a", "other"):
            store.set(key, 0)
        assert store.keys("q_") == ["q_a", "q_b"]

    def test_keys_on_missing_root(self, tmp_path: Path):
        assert JsonKeyValueStore(tmp_path / "absent").keys() == []
