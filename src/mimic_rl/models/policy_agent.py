"""
Actor-critic agent with a factorized mixed action distribution.

The agent owns a policy network, a value network and a learnable
per-dimension standard deviation. Discrete action dimensions are
independent Bernoulli gates over sigmoid(logit); continuous dimensions
are Gaussians centred on the policy output. The joint log-probability
and entropy are sums over dimensions.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch
import torch.nn as nn

from ..environment.action_space import (
    ActionSpace,
    parse_action_spaces,
    discrete_mask,
    sample_random_action,
)
from ..errors import BundleValidationError, ObservationSizeError
from .network_utils import (
    ACTIVATIONS,
    build_mlp,
    deserialize_network,
    serialize_network,
)

logger = logging.getLogger(__name__)

LOG_EPS = 1e-8
BUNDLE_VERSION = "1.0"
ALGORITHM = "PPO"


@dataclass
class NetworkConfig:
    """Configuration for the policy and value networks"""
    policy_hidden_layers: List[int] = field(default_factory=lambda: [64, 64])
    value_hidden_layers: List[int] = field(default_factory=lambda: [64, 64])
    activation: str = "relu"  # "relu", "tanh", "gelu"
    initial_std: float = 0.1  # Starting std for continuous dimensions

    def validate(self):
        """Validate configuration"""
        for name in ("policy_hidden_layers", "value_hidden_layers"):
            layers = getattr(self, name)
            if any(int(units) <= 0 for units in layers):
                raise ValueError(f"{name} must contain positive sizes, got {layers}")
        if self.activation not in ACTIVATIONS:
            raise ValueError(f"activation must be one of {ACTIVATIONS}, got {self.activation}")
        if self.initial_std <= 0:
            raise ValueError(f"initial_std must be > 0, got {self.initial_std}")


@dataclass
class ActResult:
    """Output of a single policy decision"""
    action: np.ndarray
    log_prob: float
    value: float


def mixed_log_prob(policy_output: torch.Tensor,
                   actions: torch.Tensor,
                   std: torch.Tensor,
                   discrete: torch.Tensor,
                   eps: float = LOG_EPS) -> torch.Tensor:
    """
    Joint log-probability of actions under the factorized policy.

    Args:
        policy_output: Raw policy outputs [batch, action_size]; logits for
            discrete dimensions, means for continuous ones
        actions: Taken actions [batch, action_size]
        std: Per-dimension standard deviation [action_size]
        discrete: Boolean mask of discrete dimensions [action_size]
        eps: Numerical guard added inside logs and divisions

    Returns:
        Log-probabilities [batch]
    """
    probs = torch.sigmoid(policy_output)
    discrete_lp = actions * torch.log(probs + eps) + (1 - actions) * torch.log(1 - probs + eps)

    variance = std.pow(2)
    continuous_lp = (-0.5 * torch.log(2 * math.pi * variance + eps)
                     - 0.5 * (actions - policy_output).pow(2) / (variance + eps))

    return torch.where(discrete, discrete_lp, continuous_lp).sum(dim=-1)


def mixed_entropy(policy_output: torch.Tensor,
                  std: torch.Tensor,
                  discrete: torch.Tensor,
                  eps: float = LOG_EPS) -> torch.Tensor:
    """
    Joint entropy of the factorized policy.

    Returns:
        Entropy per sample [batch]
    """
    probs = torch.sigmoid(policy_output)
    discrete_ent = -probs * torch.log(probs + eps) - (1 - probs) * torch.log(1 - probs + eps)
    continuous_ent = 0.5 * torch.log(2 * math.pi * math.e * std.pow(2) + eps)
    continuous_ent = continuous_ent.expand_as(policy_output)
    return torch.where(discrete, discrete_ent, continuous_ent).sum(dim=-1)


def validate_bundle(bundle: Any):
    """
    Check that a weight bundle has the required sections.

    Raises:
        BundleValidationError: If policy or value is missing
    """
    if not isinstance(bundle, dict):
        raise BundleValidationError(f"Weight bundle must be a dict, got {type(bundle).__name__}")
    for section in ("policy", "value"):
        if not isinstance(bundle.get(section), dict):
            raise BundleValidationError(f"Weight bundle is missing the {section} network")


class PolicyAgent(nn.Module):
    """
    Shared actor-critic used by rollout collectors and the PPO trainer.

    Only PPOTrainer.train and weight import mutate the parameters;
    act() is read-only.
    """

    def __init__(self,
                 observation_size: int,
                 action_spaces: Sequence[Any],
                 config: Union[NetworkConfig, Dict[str, Any], None] = None,
                 device: str = "cpu"):
        """
        Args:
            observation_size: Length of observation vectors
            action_spaces: One descriptor per action dimension
            config: Network configuration
            device: Torch device for the networks
        """
        super().__init__()
        if config is None:
            config = NetworkConfig()
        elif isinstance(config, dict):
            config = NetworkConfig(**config)
        config.validate()
        if int(observation_size) <= 0:
            raise ValueError(f"observation_size must be > 0, got {observation_size}")

        self.config = config
        self.observation_size = int(observation_size)
        self.action_spaces: List[ActionSpace] = parse_action_spaces(action_spaces)
        self.action_size = len(self.action_spaces)
        self.device = torch.device(device)
        self._active = False

        self.policy_network = build_mlp(
            self.observation_size, config.policy_hidden_layers, self.action_size, config.activation
        )
        self.value_network = build_mlp(
            self.observation_size, config.value_hidden_layers, 1, config.activation
        )
        self.learnable_std = nn.Parameter(
            torch.full((self.action_size,), float(config.initial_std))
        )
        self.register_buffer(
            "discrete_dims", torch.as_tensor(discrete_mask(self.action_spaces))
        )
        self.to(self.device)

        logger.info(f"PolicyAgent created: obs={self.observation_size}, "
                    f"actions={self.action_size} "
                    f"({int(self.discrete_dims.sum())} discrete), "
                    f"parameters={self._count_parameters():,}")

    # --- Live-game flags ---

    @property
    def is_active(self) -> bool:
        return self._active

    def activate(self):
        self._active = True

    def deactivate(self):
        self._active = False

    # --- Inference ---

    def forward(self, observations: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Args:
            observations: [batch, observation_size]

        Returns:
            Tuple of (policy outputs [batch, action_size], values [batch])
        """
        return self.policy_network(observations), self.value_network(observations).squeeze(-1)

    def act(self, observation: Sequence[float]) -> ActResult:
        """
        Sample an action for one observation.

        Raises:
            ObservationSizeError: If the observation has the wrong length
        """
        obs = self._check_observation(observation)
        if not np.all(np.isfinite(obs)):
            logger.warning("Non-finite observation, falling back to a random action")
            return self._random_result()

        try:
            with torch.no_grad():
                obs_tensor = torch.as_tensor(obs, device=self.device).unsqueeze(0)
                policy_output, value = self.forward(obs_tensor)
                if not (torch.isfinite(policy_output).all() and torch.isfinite(value).all()):
                    raise FloatingPointError("network produced non-finite outputs")

                probs = torch.sigmoid(policy_output)
                noise = torch.randn_like(policy_output)
                action = torch.where(
                    self.discrete_dims,
                    torch.bernoulli(probs),
                    policy_output + self.learnable_std * noise,
                )
                log_prob = mixed_log_prob(policy_output, action, self.learnable_std, self.discrete_dims)
        except (RuntimeError, FloatingPointError) as e:
            logger.warning(f"Policy inference failed, falling back to a random action: {e}")
            return self._random_result()

        return ActResult(
            action=action[0].cpu().numpy().astype(np.float32),
            log_prob=float(log_prob.item()),
            value=float(value.item()),
        )

    def predict_value(self, observation: Sequence[float]) -> float:
        """Value estimate for one observation"""
        obs = self._check_observation(observation)
        with torch.no_grad():
            obs_tensor = torch.as_tensor(obs, device=self.device).unsqueeze(0)
            return float(self.value_network(obs_tensor).item())

    def evaluate(self, observations: torch.Tensor,
                 actions: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Evaluate stored actions under the current parameters.

        Returns:
            Tuple of (log_probs [batch], entropy [batch], values [batch])
        """
        policy_output, values = self.forward(observations)
        log_probs = mixed_log_prob(policy_output, actions, self.learnable_std, self.discrete_dims)
        entropy = mixed_entropy(policy_output, self.learnable_std, self.discrete_dims)
        return log_probs, entropy, values

    def random_action(self) -> np.ndarray:
        return sample_random_action(self.action_spaces)

    def policy_parameters(self) -> List[nn.Parameter]:
        """Parameters updated by the policy optimizer"""
        return list(self.policy_network.parameters()) + [self.learnable_std]

    def value_parameters(self) -> List[nn.Parameter]:
        return list(self.value_network.parameters())

    def _random_result(self) -> ActResult:
        return ActResult(action=self.random_action(), log_prob=0.0, value=0.0)

    def _check_observation(self, observation: Sequence[float]) -> np.ndarray:
        try:
            obs = np.asarray(observation, dtype=np.float32)
        except (TypeError, ValueError):
            raise ObservationSizeError(self.observation_size, -1) from None
        if obs.ndim != 1 or obs.shape[0] != self.observation_size:
            raise ObservationSizeError(self.observation_size, int(obs.size))
        return obs

    def _count_parameters(self) -> int:
        """Count total trainable parameters"""
        return sum(p.numel() for p in self.parameters() if p.requires_grad)

    # --- Weight bundles ---

    def export_bundle(self) -> Dict[str, Any]:
        """Serialize networks and std into a JSON-compatible weight bundle"""
        return {
            "version": BUNDLE_VERSION,
            "algorithm": ALGORITHM,
            "rlConfig": {
                "inputSize": self.observation_size,
                "policyOutputSize": self.action_size,
                "valueOutputSize": 1,
                "hiddenLayers": list(self.config.policy_hidden_layers),
            },
            "policy": serialize_network(self.policy_network, self.config.activation),
            "value": serialize_network(self.value_network, self.config.activation),
            "learnableStd": self.learnable_std.detach().cpu().tolist(),
            "actionSpaces": [space.to_dict() for space in self.action_spaces],
            "savedAt": time.time(),
        }

    def load_bundle(self, bundle: Dict[str, Any]):
        """
        Replace networks and std with the contents of a weight bundle.

        Everything is validated before any parameter changes. Declared
        rlConfig sizes that disagree with this agent only log a warning;
        networks that cannot run on this agent's observations and actions
        are rejected.

        Raises:
            BundleValidationError: If the bundle cannot be loaded
        """
        validate_bundle(bundle)
        self._warn_on_declared_sizes(bundle.get("rlConfig") or {})
        self._warn_on_action_spaces(bundle.get("actionSpaces"))

        policy_network, policy_arch = deserialize_network(
            bundle["policy"], self.observation_size, self.action_size, label="policy"
        )
        value_network, value_arch = deserialize_network(
            bundle["value"], self.observation_size, 1, label="value"
        )
        std = self._parse_std(bundle.get("learnableStd"))

        self.policy_network = policy_network.to(self.device)
        self.value_network = value_network.to(self.device)
        if std is not None:
            with torch.no_grad():
                self.learnable_std.copy_(std)
        self.config = NetworkConfig(
            policy_hidden_layers=policy_arch["hiddenLayers"],
            value_hidden_layers=value_arch["hiddenLayers"],
            activation=policy_arch["activation"],
            initial_std=self.config.initial_std,
        )
        logger.info(f"Loaded weight bundle (version {bundle.get('version', 'unknown')})")

    @classmethod
    def from_bundle(cls, bundle: Dict[str, Any],
                    action_spaces: Optional[Sequence[Any]] = None,
                    device: str = "cpu") -> "PolicyAgent":
        """
        Build a new agent from a weight bundle.

        Args:
            bundle: Weight bundle
            action_spaces: Used when the bundle does not carry its own
            device: Torch device

        Raises:
            BundleValidationError: If the bundle cannot be loaded
        """
        validate_bundle(bundle)
        spaces = bundle.get("actionSpaces") or action_spaces
        if not spaces:
            raise BundleValidationError("Weight bundle does not describe its action spaces")
        architecture = bundle["policy"].get("architecture")
        if not isinstance(architecture, dict) or "inputSize" not in architecture:
            raise BundleValidationError("policy network is missing its architecture")

        try:
            agent = cls(int(architecture["inputSize"]), spaces, device=device)
        except (TypeError, ValueError) as e:
            raise BundleValidationError(f"Cannot build agent from bundle: {e}") from e
        agent.load_bundle(bundle)
        return agent

    def _parse_std(self, values: Any) -> Optional[torch.Tensor]:
        if values is None:
            return None
        try:
            std = torch.as_tensor(np.asarray(values, dtype=np.float32).reshape(-1))
        except (TypeError, ValueError) as e:
            raise BundleValidationError(f"learnableStd is not numeric: {e}") from e
        if std.shape[0] != self.action_size:
            raise BundleValidationError(
                f"learnableStd has {std.shape[0]} entries, expected {self.action_size}"
            )
        return std

    def _warn_on_declared_sizes(self, rl_config: Dict[str, Any]):
        expected = {
            "inputSize": self.observation_size,
            "policyOutputSize": self.action_size,
            "valueOutputSize": 1,
        }
        for key, value in expected.items():
            declared = rl_config.get(key)
            if declared is not None and declared != value:
                logger.warning(f"Weight bundle declares {key}={declared}, "
                               f"this session expects {value}")

    def _warn_on_action_spaces(self, declared: Any):
        if declared is None:
            return
        try:
            spaces = parse_action_spaces(declared)
        except (TypeError, ValueError) as e:
            logger.warning(f"Weight bundle has unreadable actionSpaces: {e}")
            return
        expected = [space.type.value for space in self.action_spaces]
        actual = [space.type.value for space in spaces]
        if actual != expected:
            logger.warning(f"Weight bundle was trained with action spaces {actual}, "
                           f"this session uses {expected}")

    # --- Torch checkpoints ---

    def save(self, path: str):
        """Save agent to a torch file"""
        torch.save({
            'observation_size': self.observation_size,
            'action_spaces': [space.to_dict() for space in self.action_spaces],
            'config': self.config,
            'state_dict': self.state_dict(),
        }, path)
        logger.info(f"Agent saved to: {path}")

    @classmethod
    def load(cls, path: str, device: Optional[str] = None) -> 'PolicyAgent':
        """Load agent from a torch file"""
        checkpoint = torch.load(path, map_location='cpu', weights_only=False)
        agent = cls(
            checkpoint['observation_size'],
            checkpoint['action_spaces'],
            checkpoint['config'],
            device=device or "cpu",
        )
        agent.load_state_dict(checkpoint['state_dict'])
        logger.info(f"Agent loaded from: {path}")
        return agent
