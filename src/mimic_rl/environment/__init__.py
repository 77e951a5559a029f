"""
Environment interfaces for mimic_rl.

This module defines the contract between the training pipeline and the
game simulation:
- Factorized action space descriptors
- The GameEnvironment base class and StepResult
- Opponent controllers (random and policy-driven)
- A gymnasium adapter
"""

from .action_space import (
    ActionSpace,
    ActionType,
    parse_action_spaces,
    discrete_mask,
    sample_random_action,
)
from .base import GameEnvironment, StepResult
from .controllers import Controller, RandomController, PolicyController
from .gym_adapter import GymEnvironment, action_spaces_from_gym

__all__ = [
    "ActionSpace",
    "ActionType",
    "parse_action_spaces",
    "discrete_mask",
    "sample_random_action",
    "GameEnvironment",
    "StepResult",
    "Controller",
    "RandomController",
    "PolicyController",
    "GymEnvironment",
    "action_spaces_from_gym",
]
