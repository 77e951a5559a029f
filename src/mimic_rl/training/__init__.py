"""
Training module for mimic_rl.

This module provides self-play PPO training with support for:
- Fixed-length rollout collection with action repeat
- Weighted opponent sampling from policy snapshots
- Cooperative scheduling on a shared event loop
- Model checkpointing
- Training metrics and monitoring
"""

from .ppo_trainer import PPOTrainer, PPOConfig, TrainingStats, compute_gae
from .rollout_buffer import RolloutBuffer, Experience, EpisodeSummary
from .rollout_collector import RolloutCollector, RolloutConfig, RolloutResult, OpponentChoice
from .scheduling import HostYielder, PhaseBarrier
from .checkpoint_manager import CheckpointManager
from .metrics_logger import MetricsLogger
from .opponent_manager import OpponentPolicyManager, OpponentOption, OpponentSelection
from .training_session import TrainingSession, TrainingProgress, SessionState

__all__ = [
    "PPOTrainer",
    "PPOConfig",
    "TrainingStats",
    "compute_gae",
    "RolloutBuffer",
    "Experience",
    "EpisodeSummary",
    "RolloutCollector",
    "RolloutConfig",
    "RolloutResult",
    "OpponentChoice",
    "HostYielder",
    "PhaseBarrier",
    "CheckpointManager",
    "MetricsLogger",
    "OpponentPolicyManager",
    "OpponentOption",
    "OpponentSelection",
    "TrainingSession",
    "TrainingProgress",
    "SessionState",
]
