"""
PPO (Proximal Policy Optimization) trainer.

Consumes a flat batch of experiences from one or more rollouts, computes
GAE advantages and returns, and runs clipped-surrogate minibatch updates
on the shared PolicyAgent. The policy and value networks have separate
Adam optimizers.
"""

import os
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from ..models.policy_agent import LOG_EPS, PolicyAgent
from .rollout_buffer import Experience
from .scheduling import HostYielder

logger = logging.getLogger(__name__)


@dataclass
class PPOConfig:
    """Configuration for PPO training"""
    learning_rate: float = 1e-3
    mini_batch_size: int = 64
    epochs: int = 4
    gamma: float = 0.99  # Discount factor
    gae_lambda: float = 0.95
    clip_ratio: float = 0.2
    value_loss_coeff: float = 0.5
    entropy_coeff: float = 0.01
    max_grad_norm: float = 0.5
    eps: float = LOG_EPS  # Advantage normalization guard

    # Device
    device: str = field(default_factory=lambda: os.getenv('MIMIC_RL_DEVICE', 'cpu'))

    def validate(self):
        """Validate configuration"""
        if self.learning_rate < 0 or self.learning_rate > 1:
            raise ValueError(f"learning_rate must be in [0, 1], got {self.learning_rate}")
        if self.mini_batch_size <= 0:
            raise ValueError(f"mini_batch_size must be > 0, got {self.mini_batch_size}")
        if self.epochs <= 0:
            raise ValueError(f"epochs must be > 0, got {self.epochs}")
        if not 0 <= self.gamma <= 1:
            raise ValueError(f"gamma must be in [0, 1], got {self.gamma}")
        if not 0 <= self.gae_lambda <= 1:
            raise ValueError(f"gae_lambda must be in [0, 1], got {self.gae_lambda}")
        if self.clip_ratio <= 0:
            raise ValueError(f"clip_ratio must be > 0, got {self.clip_ratio}")
        if self.max_grad_norm <= 0:
            raise ValueError(f"max_grad_norm must be > 0, got {self.max_grad_norm}")


@dataclass
class TrainingStats:
    """Diagnostics from the most recent update"""
    policy_loss: float = 0.0
    value_loss: float = 0.0
    entropy: float = 0.0
    kl_divergence: float = 0.0
    clip_fraction: float = 0.0
    batch_size: int = 0
    updates: int = 0


def compute_gae(rewards: Sequence[float],
                values: Sequence[float],
                next_values: Sequence[float],
                dones: Sequence[bool],
                gamma: float,
                gae_lambda: float,
                segment_ends: Optional[Sequence[bool]] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generalized Advantage Estimation in one reverse pass.

    Args:
        rewards: Reward per decision
        values: Critic estimate at collection time
        next_values: Critic estimate of the following state (0 when done)
        dones: Episode termination flags
        gamma: Discount factor
        gae_lambda: GAE mixing factor
        segment_ends: Marks the last entry of each concatenated rollout;
            the advantage carry is cut there without zeroing the bootstrap

    Returns:
        Tuple of (advantages, returns)
    """
    rewards = np.asarray(rewards, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    next_values = np.asarray(next_values, dtype=np.float64)
    not_done = 1.0 - np.asarray(dones, dtype=np.float64)
    if segment_ends is None:
        carry_mask = not_done
    else:
        carry_mask = not_done * (1.0 - np.asarray(segment_ends, dtype=np.float64))

    advantages = np.zeros_like(rewards)
    advantage = 0.0
    for t in reversed(range(len(rewards))):
        delta = rewards[t] + gamma * next_values[t] * not_done[t] - values[t]
        advantage = delta + gamma * gae_lambda * carry_mask[t] * advantage
        advantages[t] = advantage

    return advantages, advantages + values


def normalize_advantages(advantages: np.ndarray, eps: float = LOG_EPS) -> np.ndarray:
    """Normalize to zero mean and unit (population) std; single samples pass through"""
    if advantages.size < 2:
        return advantages
    return (advantages - advantages.mean()) / (advantages.std() + eps)


class PPOTrainer:
    """
    PPO trainer for the shared PolicyAgent.

    Implements:
    - Generalized Advantage Estimation (GAE)
    - Clipped surrogate objective with entropy bonus
    - Separate policy and value optimizers
    - Global-norm gradient clipping
    - Cooperative yields between minibatches and epochs
    """

    def __init__(self,
                 agent: PolicyAgent,
                 config: Union[PPOConfig, Dict[str, Any], None] = None,
                 yielder: Optional[HostYielder] = None):
        """
        Initialize PPO trainer.

        Args:
            agent: Shared agent whose networks are updated
            config: Training configuration
            yielder: Cooperative yield strategy
        """
        if config is None:
            self.config = PPOConfig()
        elif isinstance(config, dict):
            self.config = PPOConfig(**config)
        else:
            self.config = config
        self.config.validate()

        self.agent = agent
        self.yielder = yielder or HostYielder()
        self.device = agent.device
        self.stats = TrainingStats()
        self.train_calls = 0

        self.reset_optimizers()
        logger.info(f"PPO Trainer initialized with device: {self.device}")

    def reset_optimizers(self):
        """Create fresh optimizers for the agent's current parameters"""
        self.policy_optimizer = torch.optim.Adam(
            self.agent.policy_parameters(), lr=self.config.learning_rate
        )
        self.value_optimizer = torch.optim.Adam(
            self.agent.value_parameters(), lr=self.config.learning_rate
        )

    async def train(self, experiences: List[Experience]):
        """
        Run PPO updates on a batch of experiences.

        An empty batch is a no-op.

        Args:
            experiences: Backfilled experiences from one or more rollouts
        """
        if not experiences:
            logger.debug("Empty training batch, skipping update")
            return

        batch = self._prepare_batch(experiences)
        n_samples = batch["observations"].shape[0]
        batch_size = self.config.mini_batch_size
        last_indices = None
        updates = 0

        for epoch in range(self.config.epochs):
            indices = torch.randperm(n_samples, device=self.device)

            for start_idx in range(0, n_samples, batch_size):
                batch_indices = indices[start_idx:start_idx + batch_size]
                self._update_minibatch(batch, batch_indices)
                last_indices = batch_indices
                updates += 1
                await self.yielder.yield_now()

            await self.yielder.yield_now()

        self.stats = self._compute_diagnostics(batch, last_indices)
        self.stats.batch_size = n_samples
        self.stats.updates = updates
        self.train_calls += 1

        logger.debug(f"PPO update {self.train_calls}: {asdict(self.stats)}")

    def get_statistics(self) -> Dict[str, Any]:
        """Get the latest training diagnostics"""
        stats = asdict(self.stats)
        stats["train_calls"] = self.train_calls
        return stats

    def _prepare_batch(self, experiences: List[Experience]) -> Dict[str, torch.Tensor]:
        next_values = []
        for experience in experiences:
            if experience.next_value is None and not experience.done:
                raise ValueError("Experience is missing next_value; backfill the rollout first")
            next_values.append(0.0 if experience.done else experience.next_value)

        advantages, returns = compute_gae(
            rewards=[e.reward for e in experiences],
            values=[e.value for e in experiences],
            next_values=next_values,
            dones=[e.done for e in experiences],
            gamma=self.config.gamma,
            gae_lambda=self.config.gae_lambda,
            segment_ends=[e.rollout_end for e in experiences],
        )
        advantages = normalize_advantages(advantages, self.config.eps)

        def as_tensor(values) -> torch.Tensor:
            return torch.as_tensor(np.asarray(values, dtype=np.float32), device=self.device)

        return {
            "observations": as_tensor(np.stack([e.observation for e in experiences])),
            "actions": as_tensor(np.stack([e.action for e in experiences])),
            "old_log_probs": as_tensor([e.log_prob for e in experiences]),
            "advantages": as_tensor(advantages),
            "returns": as_tensor(returns),
        }

    def _update_minibatch(self, batch: Dict[str, torch.Tensor], batch_indices: torch.Tensor):
        batch_obs = batch["observations"][batch_indices]
        batch_actions = batch["actions"][batch_indices]
        batch_old_log_probs = batch["old_log_probs"][batch_indices]
        batch_advantages = batch["advantages"][batch_indices]
        batch_returns = batch["returns"][batch_indices]

        log_probs, entropy, values = self.agent.evaluate(batch_obs, batch_actions)

        # Clipped surrogate
        ratio = torch.exp(log_probs - batch_old_log_probs)
        surr1 = ratio * batch_advantages
        surr2 = torch.clamp(ratio, 1.0 - self.config.clip_ratio, 1.0 + self.config.clip_ratio) * batch_advantages
        policy_loss = -torch.min(surr1, surr2).mean() - self.config.entropy_coeff * entropy.mean()

        value_loss = self.config.value_loss_coeff * F.mse_loss(values, batch_returns)

        self.policy_optimizer.zero_grad()
        policy_loss.backward()
        nn.utils.clip_grad_norm_(self.agent.policy_parameters(), self.config.max_grad_norm)
        self.policy_optimizer.step()

        self.value_optimizer.zero_grad()
        value_loss.backward()
        nn.utils.clip_grad_norm_(self.agent.value_parameters(), self.config.max_grad_norm)
        self.value_optimizer.step()

    def _compute_diagnostics(self, batch: Dict[str, torch.Tensor],
                             batch_indices: torch.Tensor) -> TrainingStats:
        """Re-evaluate the last minibatch after its update"""
        with torch.no_grad():
            batch_old_log_probs = batch["old_log_probs"][batch_indices]
            batch_advantages = batch["advantages"][batch_indices]
            log_probs, entropy, values = self.agent.evaluate(
                batch["observations"][batch_indices], batch["actions"][batch_indices]
            )

            ratio = torch.exp(log_probs - batch_old_log_probs)
            clipped = torch.clamp(ratio, 1.0 - self.config.clip_ratio, 1.0 + self.config.clip_ratio)
            policy_loss = -torch.min(ratio * batch_advantages, clipped * batch_advantages).mean()
            value_loss = F.mse_loss(values, batch["returns"][batch_indices])
            clip_fraction = torch.mean((torch.abs(ratio - 1) > self.config.clip_ratio).float())
            kl_divergence = torch.mean(batch_old_log_probs - log_probs)

        return TrainingStats(
            policy_loss=policy_loss.item(),
            value_loss=value_loss.item(),
            entropy=entropy.mean().item(),
            kl_divergence=kl_divergence.item(),
            clip_fraction=clip_fraction.item(),
        )
