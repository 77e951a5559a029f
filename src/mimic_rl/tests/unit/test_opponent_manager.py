"""
Unit tests for OpponentPolicyManager.

Tests weighted sampling, catalog edits, result tracking and persistence.
"""

import random

import pytest

from ...errors import BundleValidationError
from ...storage import InMemoryStore
from ...training import OpponentPolicyManager, OpponentOption
from ...training.opponent_manager import RANDOM_OPTION_ID


@pytest.fixture
def snapshot(policy_agent):
    return policy_agent.export_bundle()


@pytest.fixture
def manager(policy_agent):
    return OpponentPolicyManager(
        InMemoryStore(), action_spaces=policy_agent.action_spaces, rng=random.Random(1234)
    )


class TestOpponentCatalog:
    """Test suite for catalog edits."""

    def test_default_catalog(self, manager):
        options = manager.get_options()

        assert len(options) == 1
        assert options[0].id == RANDOM_OPTION_ID
        assert options[0].type == "random"
        assert options[0].weight == 1.0

    def test_add_policy(self, manager, snapshot):
        option_id = manager.add_policy("Snapshot A", snapshot)

        option = manager.get_option(option_id)
        assert option_id.startswith("policy_")
        assert option.label == "Snapshot A"
        assert option.type == "policy"
        assert option.weight == 1.0

    def test_add_policy_rejects_invalid_snapshot(self, manager):
        with pytest.raises(BundleValidationError):
            manager.add_policy("broken", {"policy": {}})

    def test_random_baseline_cannot_be_removed(self, manager):
        with pytest.raises(ValueError):
            manager.remove_option(RANDOM_OPTION_ID)

    def test_remove_unknown_option(self, manager):
        with pytest.raises(KeyError):
            manager.remove_option("policy_missing")

    def test_remove_option(self, manager, snapshot):
        option_id = manager.add_policy("A", snapshot)
        manager.remove_option(option_id)

        assert [o.id for o in manager.get_options()] == [RANDOM_OPTION_ID]

    @pytest.mark.parametrize("weight,expected", [
        (2.5, 2.5),
        (-1.0, 0.0),
        (float("nan"), 0.0),
        ("3", 3.0),
        (None, 0.0),
    ])
    def test_update_weight_clamps(self, manager, weight, expected):
        manager.update_weight(RANDOM_OPTION_ID, weight)
        assert manager.get_option(RANDOM_OPTION_ID).weight == expected

    def test_set_options_restores_baseline(self, manager, snapshot):
        manager.set_options([{"id": "policy_x", "label": "X", "type": "policy", "snapshot": snapshot}])

        ids = [o.id for o in manager.get_options()]
        assert ids == [RANDOM_OPTION_ID, "policy_x"]

    def test_option_round_trip(self):
        option = OpponentOption(id="policy_1", label="P", type="policy", weight=0.5,
                                snapshot={"policy": {}, "value": {}}, games_played=3, wins=2)
        data = option.to_dict()

        assert data["gamesPlayed"] == 3
        assert OpponentOption.from_dict(data) == option


class TestOpponentSampling:
    """Test suite for weighted sampling."""

    def test_sampling_follows_weights(self, manager, snapshot):
        """Weights {random: 1, policy: 3} pick the policy about 75% of the time."""
        policy_id = manager.add_policy("A", snapshot)
        manager.update_weight(policy_id, 3.0)

        picks = sum(manager.sample().id == policy_id for _ in range(10000))

        assert picks / 10000 == pytest.approx(0.75, abs=0.02)

    def test_zero_weights_fall_back_to_random(self, manager, snapshot):
        policy_id = manager.add_policy("A", snapshot)
        manager.update_weight(policy_id, 0.0)
        manager.update_weight(RANDOM_OPTION_ID, 0.0)

        for _ in range(50):
            selection = manager.sample()
            assert selection.type == "random"
            assert selection.agent is None

    def test_policy_agents_are_cached(self, manager, snapshot):
        policy_id = manager.add_policy("A", snapshot)
        manager.update_weight(RANDOM_OPTION_ID, 0.0)

        first = manager.sample()
        second = manager.sample()

        assert first.type == "policy"
        assert first.agent is second.agent
        assert first.agent.is_active
        assert manager.cached_agent_ids == [policy_id]

    def test_unbuildable_snapshot_falls_back_to_random(self, manager):
        manager.set_options([
            {"id": RANDOM_OPTION_ID, "label": "Random", "type": "random", "weight": 0.0},
            {"id": "policy_bad", "label": "Bad", "type": "policy",
             "snapshot": {"policy": {}, "value": {}}},
        ])

        selection = manager.sample()

        assert selection.type == "random"
        assert manager.cached_agent_ids == []


class TestOpponentResults:

    def test_record_result(self, manager):
        manager.record_result(RANDOM_OPTION_ID, "win")
        manager.record_result(RANDOM_OPTION_ID, "loss")
        manager.record_result(RANDOM_OPTION_ID, "tie")
        manager.record_result("policy_unknown", "win")

        option = manager.get_option(RANDOM_OPTION_ID)
        assert (option.games_played, option.wins, option.losses, option.ties) == (3, 1, 1, 1)
        assert option.win_rate == pytest.approx(1 / 3)

    def test_statistics(self, manager, snapshot):
        manager.add_policy("A", snapshot)
        stats = manager.get_statistics()

        assert stats["catalog_size"] == 2
        assert stats["total_weight"] == 2.0
        assert [o["probability"] for o in stats["options"]] == [0.5, 0.5]


class TestOpponentPersistence:

    def test_catalog_survives_reload(self, policy_agent, snapshot):
        store = InMemoryStore()
        first = OpponentPolicyManager(store, action_spaces=policy_agent.action_spaces)
        policy_id = first.add_policy("A", snapshot)
        first.update_weight(policy_id, 4.0)

        second = OpponentPolicyManager(store, action_spaces=policy_agent.action_spaces)

        assert [o.id for o in second.get_options()] == [RANDOM_OPTION_ID, policy_id]
        assert second.get_option(policy_id).weight == 4.0
        assert second.cached_agent_ids == []

    def test_stored_payload_format(self, snapshot):
        store = InMemoryStore()
        manager = OpponentPolicyManager(store, storage_key="catalog")
        manager.add_policy("A", snapshot)

        payload = store.get("catalog")
        assert set(payload) == {"options", "savedAt"}
        assert payload["options"][1]["snapshot"]["algorithm"] == "PPO"

    def test_corrupt_catalog_resets_to_default(self):
        store = InMemoryStore()
        store.set("opponent_catalog", {"options": [{"label": "no id"}]})

        manager = OpponentPolicyManager(store)

        assert [o.id for o in manager.get_options()] == [RANDOM_OPTION_ID]

    def test_dispose_clears_agents(self, manager, snapshot):
        manager.add_policy("A", snapshot)
        manager.update_weight(RANDOM_OPTION_ID, 0.0)
        manager.sample()

        manager.dispose()

        assert manager.cached_agent_ids == []
