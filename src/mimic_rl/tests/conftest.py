"""
Pytest configuration and shared fixtures for mimic_rl tests.

This module provides a scripted game environment, small network and
training configurations, and utilities used across the test suite.
"""

import pytest
import numpy as np
import tempfile
import shutil
from typing import Any, Dict, List, Optional, Sequence

from ..environment import ActionSpace, GameEnvironment, StepResult, parse_action_spaces
from ..models import PolicyAgent, NetworkConfig
from ..training import Experience, PPOConfig, RolloutBuffer, RolloutConfig


OBSERVATION_SIZE = 4
MIXED_SPACES = ["discrete", "continuous"]


# --- Scripted Environment ---

class ScriptedEnvironment(GameEnvironment):
    """
    Deterministic environment for pipeline tests.

    Every episode lasts episode_length ticks. Non-terminal ticks pay
    step_reward, the terminal tick pays terminal_reward. Faults can be
    injected on a given (1-based) global tick.
    """

    def __init__(self,
                 observation_size: int = OBSERVATION_SIZE,
                 action_spaces: Optional[Sequence[Any]] = None,
                 episode_length: int = 5,
                 step_reward: float = 0.0,
                 terminal_reward: float = 1.0,
                 outcome: Optional[str] = None,
                 raise_on_tick: Optional[int] = None,
                 nan_on_tick: Optional[int] = None):
        self._observation_size = observation_size
        self._action_spaces = parse_action_spaces(action_spaces or MIXED_SPACES)
        self.episode_length = episode_length
        self.step_reward = step_reward
        self.terminal_reward = terminal_reward
        self.outcome = outcome
        self.raise_on_tick = raise_on_tick
        self.nan_on_tick = nan_on_tick

        self.resets = 0
        self.ticks = 0
        self.episode_tick = 0
        self.actions: List[np.ndarray] = []
        self.delta_times: List[float] = []
        self.opponents: List[Any] = []
        self.closed = False

    @property
    def observation_size(self) -> int:
        return self._observation_size

    @property
    def action_spaces(self) -> List[ActionSpace]:
        return list(self._action_spaces)

    def reset(self) -> np.ndarray:
        self.resets += 1
        self.episode_tick = 0
        return self._observation()

    def step(self, action: np.ndarray, delta_time: float) -> StepResult:
        self.ticks += 1
        self.episode_tick += 1
        self.actions.append(np.array(action, copy=True))
        self.delta_times.append(delta_time)

        if self.raise_on_tick is not None and self.ticks == self.raise_on_tick:
            raise RuntimeError("simulation crashed")
        if self.nan_on_tick is not None and self.ticks == self.nan_on_tick:
            return StepResult(self._observation(), float("nan"), False)

        done = self.episode_tick >= self.episode_length
        reward = self.terminal_reward if done else self.step_reward
        return StepResult(
            observation=self._observation(),
            reward=reward,
            done=done,
            outcome=self.outcome if done else None,
        )

    def set_opponent(self, controller):
        self.opponents.append(controller)

    def close(self):
        self.closed = True

    def _observation(self) -> np.ndarray:
        return np.full(self._observation_size, 0.1 * self.episode_tick, dtype=np.float32)


# --- Test Configuration ---

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def network_config():
    """Small networks so tests stay fast."""
    return NetworkConfig(policy_hidden_layers=[8], value_hidden_layers=[8])


@pytest.fixture
def rollout_config():
    """One tick per decision, short rollouts."""
    return RolloutConfig(
        rollout_max_length=16,
        delta_time=0.1,
        action_interval_seconds=0.1,
        yield_interval=4,
    )


@pytest.fixture
def ppo_config():
    return PPOConfig(mini_batch_size=8, epochs=2, device="cpu")


@pytest.fixture
def session_config() -> Dict[str, Any]:
    """Nested config dict for a small training session."""
    return {
        "max_games": 6,
        "parallel_games": 2,
        "seed": 0,
        "auto_save_interval": 0,
        "log_dir": None,
        "frame_interval": 0.0,
        "network": {"policy_hidden_layers": [8], "value_hidden_layers": [8]},
        "ppo": {"mini_batch_size": 8, "epochs": 1, "device": "cpu"},
        "rollout": {
            "rollout_max_length": 8,
            "delta_time": 0.1,
            "action_interval_seconds": 0.1,
            "yield_interval": 4,
        },
    }


# --- Component Fixtures ---

@pytest.fixture
def scripted_env():
    return ScriptedEnvironment()


@pytest.fixture
def policy_agent(network_config):
    """Agent with one discrete and one continuous action dimension."""
    return PolicyAgent(OBSERVATION_SIZE, MIXED_SPACES, network_config)


# --- Utility Functions ---

def make_experiences(agent: PolicyAgent,
                     n_steps: int = 16,
                     episode_length: int = 5,
                     seed: int = 0) -> List[Experience]:
    """Collect a backfilled rollout by calling the agent directly."""
    rng = np.random.default_rng(seed)
    buffer = RolloutBuffer(n_steps)
    for t in range(n_steps):
        observation = rng.standard_normal(agent.observation_size).astype(np.float32)
        decision = agent.act(observation)
        done = (t + 1) % episode_length == 0
        buffer.add(Experience(
            observation=observation,
            action=decision.action,
            reward=float(rng.standard_normal()),
            value=decision.value,
            log_prob=decision.log_prob,
            done=done,
        ))
    buffer.backfill_next_values(0.0 if buffer[-1].done else 0.25)
    return buffer.get_experiences()
