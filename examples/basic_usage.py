"""
Basic usage example for mimic_rl.

This script demonstrates how to:
1. Implement a GameEnvironment with an opponent slot
2. Run a short self-play training session
3. Snapshot the policy into the opponent catalog
4. Export the trained weights
"""

import asyncio
import json
import logging

import numpy as np

from mimic_rl import GameEnvironment, SessionConfig, StepResult, TrainingSession
from mimic_rl.environment import RandomController, parse_action_spaces

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class TagEnvironment(GameEnvironment):
    """
    One-dimensional game of tag.

    The trainee chases the opponent along a line. Action dimension 0 is a
    dash gate (discrete), dimension 1 the movement direction (continuous).
    Catching the opponent within the time limit wins.
    """

    ARENA = 10.0
    TIME_LIMIT = 20.0

    def __init__(self):
        self.rng = np.random.default_rng()
        self.spaces = parse_action_spaces(["discrete", "continuous"])
        self.opponent = None
        self.positions = np.zeros(2)
        self.elapsed = 0.0

    @property
    def observation_size(self) -> int:
        return 3

    @property
    def action_spaces(self):
        return list(self.spaces)

    def set_opponent(self, controller):
        self.opponent = controller

    def reset(self):
        self.positions = self.rng.uniform(0, self.ARENA, size=2)
        self.elapsed = 0.0
        return self._observation(0)

    def step(self, action, delta_time):
        self.elapsed += delta_time
        controller = self.opponent or RandomController(self.spaces)
        opponent_action = controller.decide(self._observation(1))

        for player, player_action in enumerate((action, opponent_action)):
            speed = 3.0 if player_action[0] > 0.5 else 1.0
            direction = float(np.clip(player_action[1], -1.0, 1.0))
            self.positions[player] = np.clip(
                self.positions[player] + speed * direction * delta_time, 0.0, self.ARENA
            )

        distance = abs(self.positions[0] - self.positions[1])
        if distance < 0.5:
            return StepResult(self._observation(0), 1.0, True, "win")
        if self.elapsed >= self.TIME_LIMIT:
            return StepResult(self._observation(0), -1.0, True, "loss")
        return StepResult(self._observation(0), -0.01 * distance * delta_time, False)

    def _observation(self, player: int):
        me, other = self.positions[player], self.positions[1 - player]
        return np.array([me / self.ARENA, other / self.ARENA, (other - me) / self.ARENA],
                        dtype=np.float32)


async def main():
    """Train briefly, add a snapshot opponent, and train again."""
    config = SessionConfig.from_dict({
        "max_games": 40,
        "parallel_games": 2,
        "log_dir": None,
        "rollout": {"rollout_max_length": 256},
    })
    session = TrainingSession(TagEnvironment, config)
    session.on_training_progress = lambda progress: print(json.dumps(progress.to_dict()))

    session.start()
    await session.wait()

    # Self-play: the trained policy becomes an opponent
    option_id = session.add_current_policy_as_opponent("first snapshot")
    session.opponent_manager.update_weight(option_id, 3.0)

    session.start()
    await session.wait()

    print(session.opponent_manager.get_statistics())
    bundle = session.export_agent_weights()
    print(f"Exported bundle: version {bundle['version']}, "
          f"hidden layers {bundle['rlConfig']['hiddenLayers']}")


if __name__ == "__main__":
    asyncio.run(main())
