"""
Action space descriptors for the factorized policy.

An action is a fixed-length float vector. Each dimension is described by
an ActionSpace entry and is either an independent Bernoulli gate
(discrete) or an unbounded scalar (continuous).
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..errors import ActionSpaceError


class ActionType(str, enum.Enum):
    """Kind of a single action dimension"""
    DISCRETE = "discrete"
    CONTINUOUS = "continuous"


@dataclass(frozen=True)
class ActionSpace:
    """Descriptor for one action dimension"""
    type: ActionType

    @property
    def is_discrete(self) -> bool:
        return self.type == ActionType.DISCRETE

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type.value}

    @classmethod
    def from_value(cls, value: Union["ActionSpace", Dict[str, Any], str]) -> "ActionSpace":
        """Build a descriptor from an ActionSpace, a {"type": ...} dict or a type name"""
        if isinstance(value, ActionSpace):
            return value
        if isinstance(value, dict):
            value = value.get("type")
        try:
            return cls(ActionType(value))
        except ValueError:
            raise ActionSpaceError(
                f"Unknown action type {value!r}, expected 'discrete' or 'continuous'"
            ) from None


def parse_action_spaces(spaces: Optional[Sequence[Any]]) -> List[ActionSpace]:
    """
    Validate and normalize a list of action space descriptors.

    Args:
        spaces: Sequence of ActionSpace objects, dicts or type names

    Returns:
        List of ActionSpace entries

    Raises:
        ActionSpaceError: If the list is empty or contains an unknown type
    """
    if not spaces:
        raise ActionSpaceError("At least one action dimension is required")
    return [ActionSpace.from_value(space) for space in spaces]


def discrete_mask(spaces: Sequence[ActionSpace]) -> np.ndarray:
    """Boolean mask that is True for discrete dimensions"""
    return np.array([space.is_discrete for space in spaces], dtype=bool)


def sample_random_action(spaces: Sequence[ActionSpace],
                         rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Sample a uniformly random action.

    Discrete dimensions are fair coin flips, continuous dimensions are
    drawn from a standard normal.
    """
    rng = rng or np.random.default_rng()
    mask = discrete_mask(spaces)
    coins = (rng.random(len(spaces)) < 0.5).astype(np.float32)
    normals = rng.standard_normal(len(spaces)).astype(np.float32)
    return np.where(mask, coins, normals).astype(np.float32)
