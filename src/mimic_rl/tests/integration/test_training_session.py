"""
Integration tests for the full training pipeline.

Runs short self-play sessions against scripted environments and checks
the state machine, progress reporting, checkpoints and weight transfer.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from ...errors import BundleValidationError
from ...models import PolicyAgent
from ...storage import InMemoryStore
from ...training import TrainingSession, SessionState
from ..conftest import ScriptedEnvironment, MIXED_SPACES

pytestmark = pytest.mark.integration


def make_session(session_config, **overrides) -> TrainingSession:
    config = dict(session_config)
    config.update(overrides)
    return TrainingSession(lambda: ScriptedEnvironment(episode_length=4), config)


class TestTrainingSessionLifecycle:
    """Test suite for the session state machine."""

    def test_initial_state(self, session_config):
        session = make_session(session_config)

        assert session.state == SessionState.IDLE
        assert not session.is_training
        assert not session.is_paused
        assert session.observation_size == 4
        assert len(session.action_spaces) == 2

    def test_start_requires_running_loop(self, session_config):
        session = make_session(session_config)
        with pytest.raises(RuntimeError):
            session.start()

    @pytest.mark.asyncio
    async def test_runs_to_completion(self, session_config):
        """Two collectors x two games per rollout reach max_games in two iterations."""
        session = make_session(session_config)
        progress, games, completed = [], [], []
        session.on_training_progress = progress.append
        session.on_game_end = games.append
        session.on_training_complete = completed.append

        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

        assert session.state == SessionState.COMPLETE
        assert not session.is_training
        assert session.games_completed == 8
        assert session.iteration == 2
        assert len(progress) == 2
        assert len(games) == 8
        assert completed == [progress[-1]]
        assert session.collectors == []
        assert session.checkpoint_manager.list_checkpoints()[-1].tag == "complete"

    @pytest.mark.asyncio
    async def test_progress_payload(self, session_config):
        session = make_session(session_config)
        progress = []
        session.on_training_progress = progress.append

        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

        payload = progress[0].to_dict()
        assert set(payload) == {
            "iteration", "gamesCompleted", "totalGamesCompleted", "wins", "losses", "ties",
            "winRate", "averageGameLength", "rewardStats", "policyLoss", "valueLoss",
            "entropy", "klDivergence", "clipFraction",
        }
        assert payload["gamesCompleted"] == 4
        assert payload["wins"] == 4
        assert payload["winRate"] == 1.0
        assert payload["averageGameLength"] == 4.0
        assert payload["rewardStats"] == {"avg": 1.0, "min": 1.0, "max": 1.0}
        assert 0.0 <= payload["clipFraction"] <= 1.0
        assert progress[1].total_games_completed == 8

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_task(self, session_config):
        session = make_session(session_config, max_games=1000)

        first = session.start()
        second = session.start()

        assert first is second
        await session.stop()

    @pytest.mark.asyncio
    async def test_pause_resume_stop(self, session_config):
        session = make_session(session_config, max_games=1000)
        iterations = asyncio.Event()
        session.on_training_progress = lambda progress: iterations.set()

        session.start()
        session.pause()
        assert session.is_paused
        assert session.is_training

        await asyncio.sleep(0.05)
        assert session.iteration == 0

        session.resume()
        assert not session.is_paused
        await asyncio.wait_for(iterations.wait(), timeout=30)

        await session.stop()

        assert session.state == SessionState.STOPPED
        assert session.collectors == []
        assert session.checkpoint_manager.list_checkpoints()[-1].tag == "stop"

    @pytest.mark.asyncio
    async def test_stop_while_paused(self, session_config):
        session = make_session(session_config, max_games=1000)
        session.start()
        session.pause()

        await asyncio.wait_for(session.stop(), timeout=30)

        assert session.state == SessionState.STOPPED
        assert session.iteration == 0

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_ignored(self, session_config):
        session = make_session(session_config)
        await session.stop()
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_restart_after_completion(self, session_config):
        session = make_session(session_config)
        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

        assert session.state == SessionState.COMPLETE
        assert session.games_completed == 8

    @pytest.mark.asyncio
    async def test_loop_failure_stops_session(self, session_config):
        session = make_session(session_config)
        session.trainer.train = AsyncMock(side_effect=RuntimeError("update failed"))

        session.start()
        with pytest.raises(RuntimeError):
            await asyncio.wait_for(session.wait(), timeout=30)

        assert session.state == SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_stop_training(self, session_config):
        session = make_session(session_config)
        session.on_game_end = lambda summary: 1 / 0

        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

        assert session.state == SessionState.COMPLETE

    @pytest.mark.asyncio
    async def test_stop_during_final_collection_is_not_completion(self, session_config):
        """A stop requested while the last games are collected wins over completion."""
        session = make_session(session_config, max_games=4)
        completed, stops = [], []
        session.on_training_complete = completed.append

        def request_stop(summary):
            if not stops:
                stops.append(asyncio.ensure_future(session.stop()))

        session.on_game_end = request_stop

        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)
        await asyncio.wait_for(stops[0], timeout=30)

        assert session.games_completed == 4
        assert session.iteration == 1
        assert session.state == SessionState.STOPPED
        assert completed == []
        assert [c.tag for c in session.checkpoint_manager.list_checkpoints()] == ["stop"]


class TestTrainingSessionWeights:
    """Test suite for weight export/import and checkpoints."""

    @pytest.mark.asyncio
    async def test_import_exported_weights(self, session_config):
        session = make_session(session_config)
        other = make_session(session_config, seed=1)

        await other.import_agent_weights(session.export_agent_weights())

        assert other.export_agent_weights()["policy"]["weights"] == \
            session.export_agent_weights()["policy"]["weights"]

    @pytest.mark.asyncio
    async def test_import_rejects_incompatible_bundle(self, session_config):
        session = make_session(session_config)
        foreign = PolicyAgent(7, MIXED_SPACES, {"policy_hidden_layers": [8], "value_hidden_layers": [8]})

        with pytest.raises(BundleValidationError):
            await session.import_agent_weights(foreign.export_bundle())

    @pytest.mark.asyncio
    async def test_checkpoint_round_trip(self, session_config):
        store = InMemoryStore()
        session = TrainingSession(lambda: ScriptedEnvironment(episode_length=4),
                                  session_config, store=store)
        saved = session.export_agent_weights()
        session.save_checkpoint(tag="manual")

        restored = TrainingSession(lambda: ScriptedEnvironment(episode_length=4),
                                   dict(session_config, seed=1), store=store)
        assert await restored.load_checkpoint()
        assert restored.export_agent_weights()["value"]["weights"] == saved["value"]["weights"]

    @pytest.mark.asyncio
    async def test_load_checkpoint_without_saves(self, session_config):
        session = make_session(session_config)
        assert not await session.load_checkpoint()

    def test_add_current_policy_as_opponent(self, session_config):
        session = make_session(session_config)

        option_id = session.add_current_policy_as_opponent("v1")

        assert session.opponent_manager.get_option(option_id).label == "v1"
        assert len(session.opponent_manager.get_options()) == 2

    @pytest.mark.asyncio
    async def test_self_play_against_snapshot(self, session_config):
        """Policy snapshots are sampled as opponents and their games recorded."""
        session = make_session(session_config)
        option_id = session.add_current_policy_as_opponent("v1")
        session.opponent_manager.update_weight("random", 0.0)

        session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

        option = session.opponent_manager.get_option(option_id)
        assert option.games_played == 8
        assert option.wins == 8
        assert option_id in session.opponent_manager.cached_agent_ids


class TestTrainingSessionPhases:
    """Test suite for collection/training separation on the shared networks."""

    @pytest.mark.asyncio
    async def test_training_runs_only_between_collections(self, session_config):
        session = make_session(session_config)
        active = {"collecting": 0}
        reads, writes = [], []

        session.start()
        for collector in session.collectors:
            async def tracked_collect(original=collector.collect_rollout):
                active["collecting"] += 1
                reads.append((session.barrier.readers, session.barrier.writer_active))
                try:
                    return await original()
                finally:
                    active["collecting"] -= 1
            collector.collect_rollout = tracked_collect

        original_train = session.trainer.train

        async def tracked_train(experiences):
            writes.append((session.barrier.readers, active["collecting"],
                           session.barrier.writer_active))
            return await original_train(experiences)

        session.trainer.train = tracked_train

        await asyncio.wait_for(session.wait(), timeout=30)

        assert len(reads) == 4
        assert all(readers >= 1 and not writer for readers, writer in reads)
        assert writes == [(0, 0, True), (0, 0, True)]

    @pytest.mark.asyncio
    async def test_weight_import_waits_for_collection(self, session_config):
        session = make_session(session_config, max_games=1000)
        bundle = make_session(session_config, seed=1).export_agent_weights()
        events = []
        collecting = asyncio.Event()

        session.start()
        collector = session.collectors[0]
        original_collect = collector.collect_rollout

        async def slow_collect():
            collecting.set()
            result = await original_collect()
            await asyncio.sleep(0.05)
            events.append("collected")
            return result

        collector.collect_rollout = slow_collect

        await asyncio.wait_for(collecting.wait(), timeout=30)
        assert session.barrier.readers >= 1
        await asyncio.wait_for(session.import_agent_weights(bundle), timeout=30)
        events.append("imported")
        await session.stop()

        assert events[:2] == ["collected", "imported"]
