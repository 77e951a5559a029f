"""
Unit tests for the key-value stores.
"""

import os

import pytest

from ...storage import InMemoryStore, JsonFileStore


@pytest.fixture(params=["memory", "file"])
def store(request, temp_dir):
    if request.param == "memory":
        return InMemoryStore()
    return JsonFileStore(temp_dir)


class TestKeyValueStore:
    """Behaviour shared by every store."""

    def test_set_and_get(self, store):
        store.set("catalog", {"options": [1, 2.5, "x"], "nested": {"a": None}})
        assert store.get("catalog") == {"options": [1, 2.5, "x"], "nested": {"a": None}}

    def test_missing_key_returns_default(self, store):
        assert store.get("missing") is None
        assert store.get("missing", {}) == {}

    def test_delete(self, store):
        store.set("key", 1)

        assert store.delete("key")
        assert not store.delete("key")
        assert "key" not in store

    def test_keys_sorted(self, store):
        for key in ("b", "a", "c.d"):
            store.set(key, key)
        assert store.keys() == ["a", "b", "c.d"]

    @pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden", "with space"])
    def test_invalid_keys(self, store, key):
        with pytest.raises(ValueError):
            store.set(key, 1)

    def test_values_are_copied(self, store):
        value = {"list": [1, 2]}
        store.set("key", value)
        value["list"].append(3)

        loaded = store.get("key")
        loaded["list"].append(4)

        assert store.get("key") == {"list": [1, 2]}


class TestInMemoryStore:

    def test_rejects_non_json_values(self):
        with pytest.raises(TypeError):
            InMemoryStore().set("key", object())

    def test_delete_key_holding_none(self):
        store = InMemoryStore()
        store.set("key", None)
        assert store.delete("key")


class TestJsonFileStore:

    def test_writes_one_file_per_key(self, temp_dir):
        store = JsonFileStore(temp_dir)
        store.set("model", {"a": 1})

        assert sorted(os.listdir(temp_dir)) == ["model.json"]

    def test_corrupt_file_returns_default(self, temp_dir):
        with open(os.path.join(temp_dir, "broken.json"), "w") as f:
            f.write("{not json")

        assert JsonFileStore(temp_dir).get("broken", "fallback") == "fallback"

    def test_failed_write_leaves_no_temp_file(self, temp_dir):
        store = JsonFileStore(temp_dir)

        with pytest.raises(TypeError):
            store.set("bad", {"value": object()})

        assert os.listdir(temp_dir) == []

    def test_creates_directory(self, temp_dir):
        path = os.path.join(temp_dir, "nested", "store")
        JsonFileStore(path).set("key", 1)
        assert os.path.exists(os.path.join(path, "key.json"))
