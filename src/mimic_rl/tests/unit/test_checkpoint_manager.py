"""
Unit tests for CheckpointManager component.

Tests checkpoint saving, loading, and retention.
"""

import pytest

from ...storage import InMemoryStore, JsonFileStore
from ...training import CheckpointManager


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def bundle(policy_agent):
    return policy_agent.export_bundle()


class TestCheckpointManager:
    """Test suite for CheckpointManager class."""

    def test_initialization(self, store):
        manager = CheckpointManager(store, prefix="test", keep_recent=3)

        assert manager.current_key == "test_current_model"
        assert manager.history_key == "test_checkpoint_history"
        assert manager.list_checkpoints() == []
        assert manager.load_latest() is None

    def test_save_and_load(self, store, bundle):
        manager = CheckpointManager(store)

        checkpoint_id = manager.save(bundle, games_completed=10,
                                     metrics={"win_rate": 0.4}, tag="auto")
        record = manager.load(checkpoint_id)

        assert checkpoint_id.startswith("mimic_rl_checkpoint_10_")
        assert record["games_completed"] == 10
        assert record["tag"] == "auto"
        assert record["bundle"]["rlConfig"] == bundle["rlConfig"]
        assert manager.load_latest()["games_completed"] == 10

    def test_load_missing_checkpoint(self, store):
        assert CheckpointManager(store).load("mimic_rl_checkpoint_0_missing") is None

    def test_latest_follows_most_recent_save(self, store, bundle):
        manager = CheckpointManager(store)
        manager.save(bundle, games_completed=1)
        manager.save(bundle, games_completed=2)

        assert manager.load_latest()["games_completed"] == 2

    def test_retention_keeps_best(self, store, bundle):
        manager = CheckpointManager(store, keep_recent=2)
        ids = [
            manager.save(bundle, games_completed=i, metrics={"win_rate": rate})
            for i, rate in enumerate([0.5, 0.1, 0.2, 0.3])
        ]

        remaining = [c.checkpoint_id for c in manager.list_checkpoints()]

        assert remaining == [ids[0], ids[2], ids[3]]
        assert ids[1] not in store
        assert manager.load_best()["games_completed"] == 0

    def test_new_best_replaces_previous(self, store, bundle):
        manager = CheckpointManager(store, keep_recent=5)
        manager.save(bundle, games_completed=1, metrics={"win_rate": 0.2})
        best_id = manager.save(bundle, games_completed=2, metrics={"win_rate": 0.6})

        best = [c for c in manager.list_checkpoints() if c.is_best]

        assert [c.checkpoint_id for c in best] == [best_id]
        assert manager.get_statistics()["best_win_rate"] == 0.6

    def test_delete(self, store, bundle):
        manager = CheckpointManager(store)
        checkpoint_id = manager.save(bundle, games_completed=1)

        assert manager.delete(checkpoint_id)
        assert manager.list_checkpoints() == []
        assert not manager.delete(checkpoint_id)

    def test_history_survives_restart(self, temp_dir, bundle):
        store = JsonFileStore(temp_dir)
        first = CheckpointManager(store)
        saved = first.save(bundle, games_completed=5, metrics={"win_rate": 0.5})

        second = CheckpointManager(JsonFileStore(temp_dir))

        assert [c.checkpoint_id for c in second.list_checkpoints()] == [saved]
        assert second.best_metric_value == 0.5
        assert second.load(saved)["games_completed"] == 5

    def test_statistics(self, store, bundle):
        manager = CheckpointManager(store)
        checkpoint_id = manager.save(bundle, games_completed=3, metrics={"win_rate": 0.1})

        stats = manager.get_statistics()

        assert stats["total_checkpoints"] == 1
        assert stats["latest_checkpoint"] == checkpoint_id
        assert stats["best_checkpoint"] == checkpoint_id
