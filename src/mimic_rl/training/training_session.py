"""
Training session orchestration.

A TrainingSession owns the shared PolicyAgent and runs the loop
sample opponents -> collect rollouts -> train -> report on the host's
asyncio event loop. Collection and training are separated by a
PhaseBarrier so the trainer never updates weights while a collector is
reading them.

State machine:

    IDLE -> TRAINING <-> PAUSED -> STOPPED
    TRAINING -> COMPLETE (games_completed >= max_games)
"""

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
import torch

from ..config import SessionConfig
from ..environment.action_space import parse_action_spaces
from ..environment.base import GameEnvironment
from ..models.policy_agent import PolicyAgent
from ..storage import InMemoryStore, KeyValueStore
from .checkpoint_manager import CheckpointManager
from .metrics_logger import MetricsLogger
from .opponent_manager import OpponentPolicyManager
from .ppo_trainer import PPOTrainer, TrainingStats
from .rollout_buffer import EpisodeSummary, Experience, summarize_episodes
from .rollout_collector import OpponentChoice, RolloutCollector, make_opponent_choice
from .scheduling import HostYielder, PhaseBarrier

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    IDLE = "idle"
    TRAINING = "training"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETE = "complete"


@dataclass
class TrainingProgress:
    """Per-iteration progress report"""
    iteration: int
    games_completed: int  # Games finished during this iteration
    total_games_completed: int
    wins: int
    losses: int
    ties: int
    win_rate: float
    average_game_length: float
    reward_stats: Dict[str, float] = field(default_factory=lambda: {"avg": 0.0, "min": 0.0, "max": 0.0})
    policy_loss: float = 0.0
    value_loss: float = 0.0
    entropy: float = 0.0
    kl_divergence: float = 0.0
    clip_fraction: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "gamesCompleted": self.games_completed,
            "totalGamesCompleted": self.total_games_completed,
            "wins": self.wins,
            "losses": self.losses,
            "ties": self.ties,
            "winRate": self.win_rate,
            "averageGameLength": self.average_game_length,
            "rewardStats": dict(self.reward_stats),
            "policyLoss": self.policy_loss,
            "valueLoss": self.value_loss,
            "entropy": self.entropy,
            "klDivergence": self.kl_divergence,
            "clipFraction": self.clip_fraction,
        }


def set_random_seeds(seed: int):
    """Set random seeds for reproducibility"""
    logger.info(f"Setting random seeds to: {seed}")
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def build_progress(iteration: int,
                   episodes: List[EpisodeSummary],
                   total_games: int,
                   stats: TrainingStats) -> TrainingProgress:
    """Aggregate finished episodes and trainer diagnostics"""
    wins = sum(1 for e in episodes if e.outcome == "win")
    losses = sum(1 for e in episodes if e.outcome == "loss")
    ties = len(episodes) - wins - losses

    if episodes:
        rewards = np.array([e.reward for e in episodes], dtype=np.float64)
        reward_stats = {
            "avg": float(rewards.mean()),
            "min": float(rewards.min()),
            "max": float(rewards.max()),
        }
        average_length = float(np.mean([e.length for e in episodes]))
        win_rate = wins / len(episodes)
    else:
        reward_stats = {"avg": 0.0, "min": 0.0, "max": 0.0}
        average_length = 0.0
        win_rate = 0.0

    return TrainingProgress(
        iteration=iteration,
        games_completed=len(episodes),
        total_games_completed=total_games,
        wins=wins,
        losses=losses,
        ties=ties,
        win_rate=win_rate,
        average_game_length=average_length,
        reward_stats=reward_stats,
        policy_loss=stats.policy_loss,
        value_loss=stats.value_loss,
        entropy=stats.entropy,
        kl_divergence=stats.kl_divergence,
        clip_fraction=stats.clip_fraction,
    )


class TrainingSession:
    """
    Orchestrates self-play PPO training.

    Callbacks (all optional, called synchronously):
    - on_training_progress(TrainingProgress) after each iteration
    - on_game_end(EpisodeSummary) when an episode finishes
    - on_training_complete(TrainingProgress or None) when max_games is reached
    """

    def __init__(self,
                 environment_factory: Callable[[], GameEnvironment],
                 config: Union[SessionConfig, Dict[str, Any], None] = None,
                 store: Optional[KeyValueStore] = None,
                 opponent_manager: Optional[OpponentPolicyManager] = None,
                 is_host_visible: Optional[Callable[[], bool]] = None):
        """
        Initialize a training session.

        Args:
            environment_factory: Creates one environment per collector
            config: Session configuration
            store: Storage for checkpoints and the opponent catalog
            opponent_manager: Opponent catalog; created on the store if omitted
            is_host_visible: Reports whether the host is foregrounded
        """
        if config is None:
            self.config = SessionConfig()
        elif isinstance(config, dict):
            self.config = SessionConfig.from_dict(config)
        else:
            self.config = config
        self.config.validate()

        if self.config.seed is not None:
            set_random_seeds(self.config.seed)

        self._environment_factory = environment_factory
        self._spare_environment: Optional[GameEnvironment] = environment_factory()
        self.observation_size = self._spare_environment.observation_size
        self.action_spaces = parse_action_spaces(self._spare_environment.action_spaces)

        self.agent = PolicyAgent(
            self.observation_size, self.action_spaces, self.config.network,
            device=self.config.ppo.device,
        )
        self.yielder = HostYielder(is_host_visible, self.config.frame_interval)
        self.barrier = PhaseBarrier()
        self.trainer = PPOTrainer(self.agent, self.config.ppo, self.yielder)

        self.store = store or InMemoryStore()
        self.checkpoint_manager = CheckpointManager(
            self.store, prefix=self.config.checkpoint_prefix,
            keep_recent=self.config.keep_checkpoints,
        )
        self.opponent_manager = opponent_manager or OpponentPolicyManager(
            self.store, storage_key=f"{self.config.checkpoint_prefix}_opponent_catalog",
            action_spaces=self.action_spaces, device=self.config.ppo.device,
        )
        self.metrics = MetricsLogger(
            log_dir=self.config.log_dir,
            experiment_name=self.config.experiment_name,
            console_log_interval=self.config.console_log_interval,
            use_tensorboard=self.config.use_tensorboard,
        )

        # Callbacks
        self.on_training_progress: Optional[Callable[[TrainingProgress], None]] = None
        self.on_game_end: Optional[Callable[[EpisodeSummary], None]] = None
        self.on_training_complete: Optional[Callable[[Optional[TrainingProgress]], None]] = None

        # State
        self.state = SessionState.IDLE
        self.collectors: List[RolloutCollector] = []
        self.iteration = 0
        self.games_completed = 0
        self.last_progress: Optional[TrainingProgress] = None
        self._last_save_games = 0
        self._stop_requested = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._task: Optional[asyncio.Task] = None

        logger.info(f"TrainingSession created: obs={self.observation_size}, "
                    f"actions={len(self.action_spaces)}, "
                    f"parallel games={self.config.parallel_games}, "
                    f"max games={self.config.max_games}")

    # --- State ---

    @property
    def max_games(self) -> int:
        return self.config.max_games

    @property
    def is_training(self) -> bool:
        return self.state in (SessionState.TRAINING, SessionState.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self.state == SessionState.PAUSED

    def start(self) -> asyncio.Task:
        """
        Start training on the running event loop.

        Returns:
            The task running the training loop
        """
        if self.is_training:
            logger.warning("Training already in progress")
            return self._task

        loop = asyncio.get_running_loop()

        self.iteration = 0
        self.games_completed = 0
        self.last_progress = None
        self._last_save_games = 0
        self._stop_requested = False
        self._resume_event.set()
        self.metrics.reset()

        if not self.collectors:
            self._build_collectors()

        self.state = SessionState.TRAINING
        self._task = loop.create_task(self._run_training_loop())
        logger.info("Training started")
        return self._task

    def pause(self):
        if self.state != SessionState.TRAINING:
            logger.warning(f"Cannot pause while {self.state.value}")
            return
        self.state = SessionState.PAUSED
        self._resume_event.clear()
        logger.info("Training paused")

    def resume(self):
        if self.state != SessionState.PAUSED:
            logger.warning(f"Cannot resume while {self.state.value}")
            return
        self.state = SessionState.TRAINING
        self._resume_event.set()
        logger.info("Training resumed")

    async def stop(self):
        """
        Stop training.

        Waits for the in-flight collection or training step, disposes all
        collectors and saves a checkpoint.
        """
        if not self.is_training:
            logger.warning(f"Cannot stop while {self.state.value}")
            return

        self._stop_requested = True
        self._resume_event.set()
        if self._task is not None and self._task is not asyncio.current_task():
            await asyncio.gather(self._task, return_exceptions=True)

        self._dispose_collectors()
        self.save_checkpoint(tag="stop")
        self.state = SessionState.STOPPED
        self.metrics.close()
        logger.info(f"Training stopped after {self.games_completed} games")

    async def wait(self):
        """Wait for the training loop to finish"""
        if self._task is not None:
            await self._task

    # --- Training loop ---

    async def _run_training_loop(self):
        try:
            while not self._stop_requested:
                await self._wait_if_paused()
                if self._stop_requested:
                    break
                await self._run_iteration()
                if self._stop_requested:
                    break
                if self.games_completed >= self.config.max_games:
                    self._complete()
                    break
        except Exception as e:
            logger.error(f"Training loop failed: {e}", exc_info=True)
            self.state = SessionState.STOPPED
            self._dispose_collectors()
            raise

    async def _run_iteration(self):
        self.iteration += 1

        results = await asyncio.gather(*(self._collect(c) for c in self.collectors))
        experiences: List[Experience] = [e for result in results for e in result.buffer]
        episodes = summarize_episodes(experiences)
        self.games_completed += len(episodes)
        await self.yielder.yield_now()

        await self._wait_if_paused()
        if self._stop_requested:
            return

        async with self.barrier.write_phase():
            await self.trainer.train(experiences)
        await self.yielder.yield_now()

        progress = build_progress(self.iteration, episodes, self.games_completed, self.trainer.stats)
        self.last_progress = progress
        self.metrics.log_training_update(self.iteration, self.trainer.stats)
        self._invoke_callback(self.on_training_progress, progress)

        interval = self.config.auto_save_interval
        if interval and self.games_completed - self._last_save_games >= interval:
            self.save_checkpoint(tag="auto")

    async def _collect(self, collector: RolloutCollector):
        async with self.barrier.read_phase():
            return await collector.collect_rollout()

    async def _wait_if_paused(self):
        if not self._resume_event.is_set():
            await self._resume_event.wait()

    def _complete(self):
        self.state = SessionState.COMPLETE
        self._dispose_collectors()
        self.save_checkpoint(tag="complete")
        self.metrics.close()
        logger.info(f"Training complete: {self.games_completed} games "
                    f"(win rate {self.metrics.get_win_rate():.2%})")
        self._invoke_callback(self.on_training_complete, self.last_progress)

    # --- Collectors ---

    def _build_collectors(self):
        for index in range(self.config.parallel_games):
            if self._spare_environment is not None:
                environment, self._spare_environment = self._spare_environment, None
            else:
                environment = self._environment_factory()
            if environment.observation_size != self.observation_size:
                raise ValueError(
                    f"Environment {index} observes {environment.observation_size} values, "
                    f"expected {self.observation_size}"
                )
            self.collectors.append(RolloutCollector(
                environment,
                self.agent,
                self.config.rollout,
                opponent_sampler=self._sample_opponent,
                yielder=self.yielder,
                on_episode_end=self._handle_episode_end,
                collector_id=index,
            ))

    def _dispose_collectors(self):
        for collector in self.collectors:
            collector.dispose()
        self.collectors = []
        if self._spare_environment is not None:
            self._spare_environment.close()
            self._spare_environment = None

    def _sample_opponent(self) -> OpponentChoice:
        selection = self.opponent_manager.sample()
        return make_opponent_choice(selection, self.action_spaces)

    def _handle_episode_end(self, summary: EpisodeSummary):
        self.metrics.log_episode(summary)
        self.opponent_manager.record_result(summary.opponent_id, summary.outcome)
        self._invoke_callback(self.on_game_end, summary)

    @staticmethod
    def _invoke_callback(callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Training callback failed: {e}", exc_info=True)

    # --- Weights and checkpoints ---

    def export_agent_weights(self) -> Dict[str, Any]:
        """Current networks as a weight bundle"""
        return self.agent.export_bundle()

    async def import_agent_weights(self, bundle: Dict[str, Any]):
        """
        Replace the shared networks with a weight bundle.

        Waits for in-flight collection to finish first.

        Raises:
            BundleValidationError: If the bundle is rejected
        """
        async with self.barrier.write_phase():
            self.agent.load_bundle(bundle)
            self.trainer.reset_optimizers()

    def save_checkpoint(self, tag: Optional[str] = None) -> str:
        checkpoint_id = self.checkpoint_manager.save(
            self.export_agent_weights(),
            self.games_completed,
            metrics={
                "win_rate": self.metrics.get_win_rate(),
                "mean_reward": self.last_progress.reward_stats["avg"] if self.last_progress else 0.0,
                "iteration": self.iteration,
            },
            tag=tag,
        )
        self.opponent_manager.persist()
        self._last_save_games = self.games_completed
        return checkpoint_id

    async def load_checkpoint(self, checkpoint_id: Optional[str] = None) -> bool:
        """
        Load a checkpoint into the shared agent.

        Args:
            checkpoint_id: Checkpoint to load; the latest when omitted

        Returns:
            True if a checkpoint was loaded
        """
        if checkpoint_id is None:
            record = self.checkpoint_manager.load_latest()
        else:
            record = self.checkpoint_manager.load(checkpoint_id)
        if record is None:
            return False
        await self.import_agent_weights(record["bundle"])
        return True

    def add_current_policy_as_opponent(self, label: Optional[str] = None) -> str:
        """Snapshot the current policy into the opponent catalog"""
        label = label or f"Snapshot @ {self.games_completed} games"
        return self.opponent_manager.add_policy(label, self.export_agent_weights())

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "iteration": self.iteration,
            "games_completed": self.games_completed,
            "max_games": self.config.max_games,
            "trainer": self.trainer.get_statistics(),
            "metrics": self.metrics.get_stats(),
            "collectors": [c.get_statistics() for c in self.collectors],
            "opponents": self.opponent_manager.get_statistics(),
            "checkpoints": self.checkpoint_manager.get_statistics(),
        }
