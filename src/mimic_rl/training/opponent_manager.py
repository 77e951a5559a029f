"""
Weighted catalog of opponent strategies for self-play.

The catalog always holds a random baseline and may hold frozen policy
snapshots (weight bundles). Each sample() call draws one option in
proportion to its weight; policy options are turned into runnable agents
on first use and cached for the rest of the process.
"""

import logging
import random
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..models.policy_agent import PolicyAgent, validate_bundle
from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

RANDOM_OPTION_ID = "random"
OPTION_TYPES = ("random", "policy")


@dataclass
class OpponentOption:
    """One entry of the opponent catalog"""
    id: str
    label: str
    type: str  # "random" or "policy"
    weight: float = 1.0
    snapshot: Optional[Dict[str, Any]] = None

    # Results of the trainee against this opponent
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    ties: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.games_played if self.games_played else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "weight": self.weight,
            "gamesPlayed": self.games_played,
            "wins": self.wins,
            "losses": self.losses,
            "ties": self.ties,
        }
        if self.snapshot is not None:
            data["snapshot"] = self.snapshot
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpponentOption":
        option_type = data.get("type", "policy")
        if option_type not in OPTION_TYPES:
            raise ValueError(f"Unknown opponent type: {option_type}")
        return cls(
            id=str(data["id"]),
            label=str(data.get("label", data["id"])),
            type=option_type,
            weight=_clamp_weight(data.get("weight", 1.0)),
            snapshot=data.get("snapshot"),
            games_played=int(data.get("gamesPlayed", 0)),
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            ties=int(data.get("ties", 0)),
        )


@dataclass
class OpponentSelection:
    """Result of OpponentPolicyManager.sample()"""
    type: str
    id: str
    label: str
    agent: Optional[PolicyAgent] = None


def _clamp_weight(weight: Any) -> float:
    try:
        value = float(weight)
    except (TypeError, ValueError):
        return 0.0
    if not np.isfinite(value):
        return 0.0
    return max(0.0, value)


def _random_option(weight: float = 1.0) -> OpponentOption:
    return OpponentOption(id=RANDOM_OPTION_ID, label="Random", type="random", weight=weight)


class OpponentPolicyManager:
    """
    Weighted opponent catalog with persistence.

    Every catalog change is written to the key-value store. Reloading
    restores the option list; agents are rebuilt lazily on selection.
    """

    def __init__(self,
                 store: Optional[KeyValueStore] = None,
                 storage_key: str = "opponent_catalog",
                 action_spaces: Optional[Sequence[Any]] = None,
                 rng: Optional[random.Random] = None,
                 device: str = "cpu"):
        """
        Initialize opponent manager.

        Args:
            store: Where the catalog is persisted; None keeps it in memory only
            storage_key: Key of the catalog in the store
            action_spaces: Used for snapshots that do not carry their own
            rng: Random source for sampling
            device: Torch device for opponent agents
        """
        self.store = store
        self.storage_key = storage_key
        self.action_spaces = action_spaces
        self.rng = rng or random.Random()
        self.device = device

        self.options: List[OpponentOption] = []
        self._agents: Dict[str, PolicyAgent] = {}

        if not self.load():
            self.reset_to_default()

    # --- Catalog ---

    def reset_to_default(self):
        """Reset the catalog to the random baseline only"""
        self.options = [_random_option()]
        self.persist()

    def get_options(self) -> List[OpponentOption]:
        return list(self.options)

    def get_option(self, option_id: str) -> OpponentOption:
        for option in self.options:
            if option.id == option_id:
                return option
        raise KeyError(f"Unknown opponent option: {option_id}")

    def set_options(self, options: Sequence[Any]):
        """Replace the catalog; the random baseline is added if missing"""
        parsed = [o if isinstance(o, OpponentOption) else OpponentOption.from_dict(o) for o in options]
        self.options = self._with_baseline(parsed)
        self.persist()

    def add_policy(self, label: str, snapshot: Dict[str, Any]) -> str:
        """
        Add a frozen policy snapshot to the catalog.

        Args:
            label: Display name
            snapshot: Weight bundle of the policy

        Returns:
            Id of the new option
        """
        validate_bundle(snapshot)
        option_id = f"policy_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
        self.options.append(OpponentOption(
            id=option_id, label=label, type="policy", weight=1.0, snapshot=snapshot
        ))
        self.persist()
        logger.info(f"Added opponent policy {label!r} ({option_id}), "
                    f"catalog size: {len(self.options)}")
        return option_id

    def remove_option(self, option_id: str):
        """
        Remove an option from the catalog.

        Raises:
            ValueError: For the random baseline
            KeyError: If the option does not exist
        """
        if option_id == RANDOM_OPTION_ID:
            raise ValueError("The random baseline cannot be removed")
        option = self.get_option(option_id)
        self.options.remove(option)
        self._agents.pop(option_id, None)
        self.persist()
        logger.info(f"Removed opponent option {option_id}")

    def update_weight(self, option_id: str, weight: Any):
        """Set an option's sampling weight, clamped to >= 0"""
        option = self.get_option(option_id)
        option.weight = _clamp_weight(weight)
        self.persist()

    # --- Sampling ---

    def sample(self) -> OpponentSelection:
        """
        Draw one opponent in proportion to the option weights.

        Falls back to the random baseline when every weight is zero or a
        policy agent cannot be built.
        """
        weights = [max(0.0, option.weight) for option in self.options]
        if not self.options or sum(weights) <= 0:
            return self._random_selection()

        option = self.rng.choices(self.options, weights=weights)[0]
        if option.type == "random":
            return self._random_selection(option)

        agent = self._get_agent(option)
        if agent is None:
            return self._random_selection()
        return OpponentSelection(type="policy", id=option.id, label=option.label, agent=agent)

    def _random_selection(self, option: Optional[OpponentOption] = None) -> OpponentSelection:
        label = option.label if option else "Random"
        return OpponentSelection(type="random", id=RANDOM_OPTION_ID, label=label)

    def _get_agent(self, option: OpponentOption) -> Optional[PolicyAgent]:
        if option.id in self._agents:
            return self._agents[option.id]
        try:
            agent = PolicyAgent.from_bundle(option.snapshot, self.action_spaces, device=self.device)
        except Exception as e:
            logger.warning(f"Failed to build opponent {option.id}, using random: {e}")
            return None
        agent.eval()
        agent.activate()
        self._agents[option.id] = agent
        logger.info(f"Built opponent agent for {option.label!r} ({option.id})")
        return agent

    @property
    def cached_agent_ids(self) -> List[str]:
        return list(self._agents)

    # --- Results ---

    def record_result(self, option_id: Optional[str], outcome: str):
        """
        Record a finished game against an opponent.

        Args:
            option_id: Opponent that was played
            outcome: Trainee result ('win', 'loss', 'tie')
        """
        if option_id is None:
            return
        try:
            option = self.get_option(option_id)
        except KeyError:
            return

        option.games_played += 1
        if outcome == "win":
            option.wins += 1
        elif outcome == "loss":
            option.losses += 1
        else:
            option.ties += 1

    def get_statistics(self) -> Dict[str, Any]:
        """Get catalog statistics"""
        total_weight = sum(option.weight for option in self.options)
        return {
            "catalog_size": len(self.options),
            "total_weight": total_weight,
            "total_games": sum(option.games_played for option in self.options),
            "options": [
                {
                    "id": option.id,
                    "label": option.label,
                    "type": option.type,
                    "weight": option.weight,
                    "probability": option.weight / total_weight if total_weight > 0 else 0.0,
                    "games_played": option.games_played,
                    "win_rate": option.win_rate,
                }
                for option in self.options
            ],
        }

    # --- Persistence ---

    def persist(self):
        """Save the catalog to the store"""
        if self.store is None:
            return
        self.store.set(self.storage_key, {
            "options": [option.to_dict() for option in self.options],
            "savedAt": time.time(),
        })

    def load(self) -> bool:
        """
        Restore the catalog from the store.

        Returns:
            True if a catalog was loaded
        """
        if self.store is None:
            return False
        data = self.store.get(self.storage_key)
        if not data:
            return False
        try:
            options = [OpponentOption.from_dict(item) for item in data.get("options", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to load opponent catalog: {e}")
            return False

        self.options = self._with_baseline(options)
        logger.info(f"Loaded {len(self.options)} opponent options")
        return True

    def dispose(self):
        """Drop cached opponent agents"""
        self._agents.clear()

    @staticmethod
    def _with_baseline(options: List[OpponentOption]) -> List[OpponentOption]:
        if not any(option.id == RANDOM_OPTION_ID for option in options):
            options.insert(0, _random_option())
        return options
