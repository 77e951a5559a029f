"""
Opponent controllers.

A controller turns an observation into an action for a player the
trainee does not control. Environments receive them through
GameEnvironment.set_opponent.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .action_space import ActionSpace, sample_random_action

logger = logging.getLogger(__name__)


class Controller:
    """Interface for anything that can pick an action"""

    def decide(self, observation: Sequence[float]) -> np.ndarray:
        raise NotImplementedError


class RandomController(Controller):
    """Picks uniformly random actions"""

    def __init__(self, action_spaces: Sequence[ActionSpace],
                 rng: Optional[np.random.Generator] = None):
        self.action_spaces = list(action_spaces)
        self.rng = rng or np.random.default_rng()

    def decide(self, observation: Sequence[float]) -> np.ndarray:
        return sample_random_action(self.action_spaces, self.rng)


class PolicyController(Controller):
    """
    Drives a player with a PolicyAgent.

    The agent must be active; an inactive agent idles with a zero action.
    """

    def __init__(self, agent):
        self.agent = agent
        self.agent.activate()

    def decide(self, observation: Sequence[float]) -> np.ndarray:
        if not self.agent.is_active:
            return np.zeros(self.agent.action_size, dtype=np.float32)
        return self.agent.act(observation).action
