"""
Rollout collection with action repeat.

A RolloutCollector drives one environment with the shared PolicyAgent
until its buffer holds rollout_max_length decisions. Each decision is
held for several physics ticks and its rewards are summed. Episodes
that end mid-rollout are reset in place, so a rollout can span many
episodes.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..environment.base import GameEnvironment
from ..environment.controllers import Controller, PolicyController, RandomController
from ..models.policy_agent import ActResult, PolicyAgent
from .rollout_buffer import EpisodeSummary, Experience, RolloutBuffer, classify_outcome
from .scheduling import HostYielder

logger = logging.getLogger(__name__)

# Consecutive failed resets tolerated before a rollout gives up
MAX_RESET_ATTEMPTS = 3


@dataclass
class RolloutConfig:
    """Configuration for rollout collection"""
    rollout_max_length: int = 4096  # Decisions per rollout
    delta_time: float = 0.05  # Physics tick in seconds
    action_interval_seconds: float = 0.2  # How long each decision is held
    yield_interval: int = 10  # Decisions between cooperative yields

    @property
    def ticks_per_decision(self) -> int:
        """Physics ticks per decision (at least one)"""
        return max(1, math.ceil(self.action_interval_seconds / self.delta_time - 1e-9))

    def validate(self):
        """Validate configuration"""
        if self.rollout_max_length <= 0:
            raise ValueError(f"rollout_max_length must be > 0, got {self.rollout_max_length}")
        if self.delta_time <= 0:
            raise ValueError(f"delta_time must be > 0, got {self.delta_time}")
        if self.action_interval_seconds <= 0:
            raise ValueError(
                f"action_interval_seconds must be > 0, got {self.action_interval_seconds}"
            )
        if self.yield_interval <= 0:
            raise ValueError(f"yield_interval must be > 0, got {self.yield_interval}")


@dataclass
class RolloutResult:
    """A completed rollout"""
    buffer: List[Experience]
    last_value: float


@dataclass
class OpponentChoice:
    """Opponent picked by an opponent sampler"""
    controller: Controller
    opponent_id: Optional[str] = None


class RolloutCollector:
    """
    Collects fixed-length rollouts from one environment.

    Faults never shorten a rollout: failed opponent selection falls back
    to a random opponent, failed inference repeats the last action, a
    failing or non-finite environment step aborts the episode, and failed
    resets are retried.
    """

    def __init__(self,
                 environment: GameEnvironment,
                 agent: PolicyAgent,
                 config: Optional[RolloutConfig] = None,
                 opponent_sampler: Optional[Callable[[], OpponentChoice]] = None,
                 yielder: Optional[HostYielder] = None,
                 on_episode_end: Optional[Callable[[EpisodeSummary], None]] = None,
                 collector_id: int = 0):
        """
        Args:
            environment: Simulation to collect from
            agent: Shared policy used for decisions
            config: Rollout configuration
            opponent_sampler: Picks the opponent for each new episode
            yielder: Cooperative yield strategy
            on_episode_end: Called with a summary of each finished episode
            collector_id: Identifier used in log messages
        """
        self.environment = environment
        self.agent = agent
        self.config = config or RolloutConfig()
        self.config.validate()
        self.opponent_sampler = opponent_sampler
        self.yielder = yielder or HostYielder()
        self.on_episode_end = on_episode_end
        self.collector_id = collector_id

        self.rollouts_collected = 0
        self.episodes_completed = 0
        self.inference_failures = 0
        self.environment_faults = 0
        self.episodes_aborted = 0
        self._disposed = False

        # Current episode
        self._opponent_id: Optional[str] = None
        self._episode_reward = 0.0
        self._episode_length = 0
        self._episode_aborted = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def collect_rollout(self) -> RolloutResult:
        """
        Collect one full rollout.

        Returns:
            RolloutResult with exactly rollout_max_length experiences and the
            bootstrap value of the final observation (0 if it was terminal)
        """
        if self._disposed:
            raise RuntimeError(f"Collector {self.collector_id} has been disposed")

        buffer = RolloutBuffer(self.config.rollout_max_length)
        observation = self._start_episode()
        last_decision: Optional[ActResult] = None

        while not buffer.full:
            decision = self._decide(observation, last_decision)
            last_decision = decision

            reward, next_observation, done, outcome = self._repeat_action(decision.action)
            buffer.add(Experience(
                observation=np.asarray(observation, dtype=np.float32).copy(),
                action=np.asarray(decision.action, dtype=np.float32).copy(),
                reward=reward,
                value=decision.value,
                log_prob=decision.log_prob,
                done=done,
                outcome=outcome,
                opponent_id=self._opponent_id,
                aborted=done and self._episode_aborted,
            ))
            self._episode_reward += reward
            self._episode_length += 1

            if done:
                self._finish_episode(outcome, reward)
                if not buffer.full:
                    observation = self._start_episode()
                    last_decision = None
            else:
                observation = next_observation

            if len(buffer) % self.config.yield_interval == 0:
                await self.yielder.yield_now()

        last_value = 0.0 if buffer[-1].done else self._bootstrap_value(observation)
        buffer.backfill_next_values(last_value)
        self.rollouts_collected += 1

        logger.debug(f"Collector {self.collector_id}: rollout {self.rollouts_collected} "
                     f"complete, {buffer.get_statistics()}")
        return RolloutResult(buffer=buffer.get_experiences(), last_value=last_value)

    def dispose(self):
        """Close the environment; the collector cannot be used afterwards"""
        if self._disposed:
            return
        self._disposed = True
        try:
            self.environment.close()
        except Exception as e:
            logger.warning(f"Collector {self.collector_id}: failed to close environment: {e}")

    def get_statistics(self):
        return {
            "collector_id": self.collector_id,
            "rollouts_collected": self.rollouts_collected,
            "episodes_completed": self.episodes_completed,
            "inference_failures": self.inference_failures,
            "environment_faults": self.environment_faults,
            "episodes_aborted": self.episodes_aborted,
        }

    def _start_episode(self) -> Sequence[float]:
        """
        Pick an opponent and reset the environment.

        Failed resets count as environment faults and are retried with a
        fresh opponent.

        Raises:
            RuntimeError: If MAX_RESET_ATTEMPTS resets in a row fail
        """
        self._episode_reward = 0.0
        self._episode_length = 0
        self._episode_aborted = False
        last_error: Optional[Exception] = None
        for attempt in range(1, MAX_RESET_ATTEMPTS + 1):
            choice = self._sample_opponent()
            self._opponent_id = choice.opponent_id
            try:
                self.environment.set_opponent(choice.controller)
                observation = self.environment.reset()
                return observation
            except Exception as e:
                last_error = e
                self.environment_faults += 1
                logger.warning(f"Collector {self.collector_id}: environment reset failed "
                               f"(attempt {attempt}/{MAX_RESET_ATTEMPTS}): {e!r}")
        raise RuntimeError(
            f"Collector {self.collector_id}: environment failed to reset "
            f"{MAX_RESET_ATTEMPTS} times in a row"
        ) from last_error

    def _sample_opponent(self) -> OpponentChoice:
        if self.opponent_sampler is not None:
            try:
                return self.opponent_sampler()
            except Exception as e:
                logger.warning(f"Collector {self.collector_id}: opponent selection failed, "
                               f"using a random opponent: {e}")
        return OpponentChoice(controller=RandomController(self.agent.action_spaces))

    def _decide(self, observation: Sequence[float],
                last_decision: Optional[ActResult]) -> ActResult:
        try:
            return self.agent.act(observation)
        except Exception as e:
            self.inference_failures += 1
            logger.warning(f"Collector {self.collector_id}: inference failed, "
                           f"repeating last action: {e}")
            if last_decision is not None:
                return ActResult(action=last_decision.action, log_prob=0.0,
                                 value=last_decision.value)
            return ActResult(action=self.agent.random_action(), log_prob=0.0, value=0.0)

    def _repeat_action(self, action: np.ndarray) -> Tuple[float, Optional[Sequence[float]], bool, Optional[str]]:
        """Hold one action for a decision interval; returns (reward, observation, done, outcome)"""
        total_reward = 0.0
        observation = None
        for _ in range(self.config.ticks_per_decision):
            try:
                result = self.environment.step(action, self.config.delta_time)
            except Exception as e:
                return self._environment_fault(total_reward, f"step raised {e!r}")

            reward = float(result.reward)
            if not math.isfinite(reward):
                return self._environment_fault(total_reward, f"non-finite reward {reward}")

            if not np.all(np.isfinite(np.asarray(result.observation, dtype=np.float64))):
                return self._environment_fault(total_reward, "non-finite observation")

            total_reward += reward
            observation = result.observation
            if result.done:
                return total_reward, observation, True, result.outcome
        return total_reward, observation, False, None

    def _environment_fault(self, total_reward: float, reason: str):
        self.environment_faults += 1
        self._episode_aborted = True
        logger.warning(f"Collector {self.collector_id}: environment fault ({reason}), "
                       f"aborting episode")
        return total_reward, None, True, None

    def _finish_episode(self, outcome: Optional[str], terminal_reward: float):
        if self._episode_aborted:
            # Aborted episodes have no result
            self.episodes_aborted += 1
            return
        self.episodes_completed += 1
        summary = EpisodeSummary(
            reward=self._episode_reward,
            length=self._episode_length,
            outcome=classify_outcome(outcome, terminal_reward),
            opponent_id=self._opponent_id,
        )
        if self.on_episode_end is not None:
            self.on_episode_end(summary)

    def _bootstrap_value(self, observation: Sequence[float]) -> float:
        try:
            return self.agent.predict_value(observation)
        except Exception as e:
            logger.warning(f"Collector {self.collector_id}: bootstrap value failed, using 0: {e}")
            return 0.0


def make_opponent_choice(selection, action_spaces) -> OpponentChoice:
    """Turn an OpponentPolicyManager selection into a controller"""
    if selection.agent is not None:
        controller = PolicyController(selection.agent)
    else:
        controller = RandomController(action_spaces)
    return OpponentChoice(controller=controller, opponent_id=selection.id)
