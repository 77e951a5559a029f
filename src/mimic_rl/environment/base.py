"""
Environment contract consumed by the rollout collector.

The game simulation itself lives outside this package; anything that can
reset to an observation and advance by a time step can be trained on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .action_space import ActionSpace


@dataclass
class StepResult:
    """Result of advancing the simulation by one physics tick"""
    observation: Sequence[float]
    reward: float
    done: bool
    outcome: Optional[str] = None  # "win", "loss", "tie" or None


class GameEnvironment(ABC):
    """
    Base class for simulations driven by a RolloutCollector.

    Subclasses report their observation size and action spaces once;
    both are assumed immutable for the lifetime of the environment.
    """

    @property
    @abstractmethod
    def observation_size(self) -> int:
        """Length of the observation vector"""

    @property
    @abstractmethod
    def action_spaces(self) -> List[ActionSpace]:
        """One descriptor per action dimension"""

    @abstractmethod
    def reset(self) -> Sequence[float]:
        """Start a new episode and return its first observation"""

    @abstractmethod
    def step(self, action: np.ndarray, delta_time: float) -> StepResult:
        """Advance the simulation by delta_time seconds with the given action"""

    def set_opponent(self, controller) -> None:
        """Install the controller that drives the opposing player"""

    def close(self) -> None:
        """Release simulation resources"""
