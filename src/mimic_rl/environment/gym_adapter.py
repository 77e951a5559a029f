"""
Adapter that exposes a gymnasium environment as a GameEnvironment.

Gymnasium environments advance by a fixed tick, so the requested
delta_time is ignored; each step call is one tick of the wrapped env.
"""

import logging
from typing import Any, Dict, List, Optional, Union

import gymnasium as gym
import numpy as np
from gymnasium import spaces

from ..errors import ActionSpaceError
from .action_space import ActionSpace, ActionType
from .base import GameEnvironment, StepResult

logger = logging.getLogger(__name__)


def action_spaces_from_gym(space: gym.Space) -> List[ActionSpace]:
    """
    Map a gymnasium action space onto factorized action dimensions.

    Supported: Discrete(2), MultiBinary(n) and one-dimensional Box.
    """
    if isinstance(space, spaces.Discrete):
        if space.n != 2:
            raise ActionSpaceError(
                f"Only Discrete(2) maps to a Bernoulli gate, got Discrete({space.n})"
            )
        return [ActionSpace(ActionType.DISCRETE)]
    if isinstance(space, spaces.MultiBinary):
        return [ActionSpace(ActionType.DISCRETE)] * int(np.prod(space.shape))
    if isinstance(space, spaces.Box):
        return [ActionSpace(ActionType.CONTINUOUS)] * int(np.prod(space.shape))
    raise ActionSpaceError(f"Unsupported gymnasium action space: {space}")


class GymEnvironment(GameEnvironment):
    """
    Wraps a gymnasium.Env for rollout collection.

    Observations are flattened to float32 vectors, terminated and
    truncated both end the episode, and info["outcome"] is passed through.
    """

    def __init__(self, env: Union[gym.Env, str], seed: Optional[int] = None,
                 **make_kwargs: Any):
        """
        Args:
            env: A gymnasium environment or a registered environment id
            seed: Seed used for the first reset
            make_kwargs: Extra arguments for gymnasium.make when env is an id
        """
        self.env = gym.make(env, **make_kwargs) if isinstance(env, str) else env
        self._seed = seed
        self._action_spaces = action_spaces_from_gym(self.env.action_space)
        self._observation_size = int(np.prod(self.env.observation_space.shape))
        logger.info(f"GymEnvironment wrapping {self.env.spec.id if self.env.spec else self.env}: "
                    f"obs={self._observation_size}, actions={len(self._action_spaces)}")

    @property
    def observation_size(self) -> int:
        return self._observation_size

    @property
    def action_spaces(self) -> List[ActionSpace]:
        return list(self._action_spaces)

    def reset(self) -> np.ndarray:
        observation, _ = self.env.reset(seed=self._seed)
        self._seed = None
        return self._flatten(observation)

    def step(self, action: np.ndarray, delta_time: float) -> StepResult:
        observation, reward, terminated, truncated, info = self.env.step(self._to_gym_action(action))
        return StepResult(
            observation=self._flatten(observation),
            reward=float(reward),
            done=bool(terminated or truncated),
            outcome=self._outcome(info),
        )

    def close(self):
        self.env.close()

    def _to_gym_action(self, action: np.ndarray):
        action = np.asarray(action, dtype=np.float32).reshape(-1)
        space = self.env.action_space
        if isinstance(space, spaces.Discrete):
            return int(action[0] > 0.5)
        if isinstance(space, spaces.MultiBinary):
            return (action > 0.5).astype(np.int8).reshape(space.shape)
        return np.clip(action.reshape(space.shape), space.low, space.high).astype(space.dtype)

    @staticmethod
    def _flatten(observation) -> np.ndarray:
        return np.asarray(observation, dtype=np.float32).reshape(-1)

    @staticmethod
    def _outcome(info: Dict[str, Any]) -> Optional[str]:
        outcome = info.get("outcome") if info else None
        return outcome if outcome in ("win", "loss", "tie") else None
