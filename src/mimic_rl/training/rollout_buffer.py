"""
Rollout buffer for storing on-policy experience.

A rollout is a fixed-capacity, append-only list of Experience records
produced by one collector run. Once full, next_value is backfilled in a
single backward pass so GAE can run without re-querying the critic.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import logging

logger = logging.getLogger(__name__)

# Terminal reward thresholds used when the environment reports no outcome
WIN_REWARD_THRESHOLD = 0.3
LOSS_REWARD_THRESHOLD = -0.3


@dataclass
class Experience:
    """One policy decision and its repeated-action result"""
    observation: np.ndarray
    action: np.ndarray
    reward: float
    value: float  # Critic estimate at collection time
    log_prob: float  # Policy log-prob at collection time
    done: bool
    next_value: Optional[float] = None  # Filled by backfill_next_values
    outcome: Optional[str] = None
    rollout_end: bool = False  # Last entry of its rollout
    opponent_id: Optional[str] = None
    aborted: bool = False  # Episode cut short by an environment fault


@dataclass
class EpisodeSummary:
    """Statistics for one finished episode"""
    reward: float
    length: int  # Number of decisions
    outcome: str  # "win", "loss" or "tie"
    opponent_id: Optional[str] = None


def classify_outcome(outcome: Optional[str], terminal_reward: float) -> str:
    """Resolve an episode outcome, falling back to the terminal reward"""
    if outcome in ("win", "loss", "tie"):
        return outcome
    if terminal_reward > WIN_REWARD_THRESHOLD:
        return "win"
    if terminal_reward < LOSS_REWARD_THRESHOLD:
        return "loss"
    return "tie"


def summarize_episodes(experiences: List[Experience]) -> List[EpisodeSummary]:
    """
    Extract finished episodes from one or more concatenated rollouts.

    Episodes still running when their rollout ended and episodes aborted
    by environment faults are not counted.
    """
    summaries = []
    reward = 0.0
    length = 0
    for experience in experiences:
        reward += experience.reward
        length += 1
        if experience.done and not experience.aborted:
            summaries.append(EpisodeSummary(
                reward=reward,
                length=length,
                outcome=classify_outcome(experience.outcome, experience.reward),
                opponent_id=experience.opponent_id,
            ))
        if experience.done or experience.rollout_end:
            reward = 0.0
            length = 0
    return summaries


class RolloutBuffer:
    """
    Fixed-capacity buffer for one rollout.

    Entries are appended in decision order and never reordered.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"Rollout capacity must be > 0, got {capacity}")
        self.capacity = capacity
        self.reset()

    def reset(self):
        """Reset the buffer"""
        self.experiences: List[Experience] = []
        self.last_value: Optional[float] = None

    def __len__(self) -> int:
        return len(self.experiences)

    def __getitem__(self, index: int) -> Experience:
        return self.experiences[index]

    @property
    def full(self) -> bool:
        return len(self.experiences) >= self.capacity

    def add(self, experience: Experience):
        """
        Append one experience.

        Raises:
            ValueError: If the buffer is already full
        """
        if self.full:
            raise ValueError("Buffer is full. Call backfill_next_values() and reset().")
        self.experiences.append(experience)

    def backfill_next_values(self, last_value: float):
        """
        Fill next_value for every entry in one backward pass.

        Terminal entries get 0, the final entry gets last_value when its
        episode is still running, every other entry gets the value of the
        entry after it.

        Args:
            last_value: Critic estimate of the observation after the last entry
        """
        if not self.experiences:
            return
        self.last_value = float(last_value)
        following_value = self.last_value
        for experience in reversed(self.experiences):
            experience.next_value = 0.0 if experience.done else following_value
            following_value = experience.value
        self.experiences[-1].rollout_end = True

    def get_experiences(self) -> List[Experience]:
        return list(self.experiences)

    def get_statistics(self) -> Dict[str, Any]:
        """Get buffer statistics"""
        if not self.experiences:
            return {"size": 0, "capacity": self.capacity}
        rewards = np.array([e.reward for e in self.experiences], dtype=np.float64)
        values = np.array([e.value for e in self.experiences], dtype=np.float64)
        return {
            "size": len(self.experiences),
            "capacity": self.capacity,
            "mean_reward": float(rewards.mean()),
            "std_reward": float(rewards.std()),
            "mean_value": float(values.mean()),
            "episodes_done": int(sum(e.done for e in self.experiences)),
            "last_value": self.last_value,
        }
