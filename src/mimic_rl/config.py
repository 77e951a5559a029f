"""
Configuration for training sessions.

SessionConfig bundles the network, PPO and rollout settings with the
session-level options. Configs can be built from nested dicts or loaded
from YAML files; a few defaults can be overridden through environment
variables.
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

import yaml

from .models.policy_agent import NetworkConfig
from .training.ppo_trainer import PPOConfig
from .training.rollout_collector import RolloutConfig


@dataclass
class SessionConfig:
    """Configuration for a TrainingSession"""
    # Session
    max_games: int = 10000
    parallel_games: int = 1  # Interleaved rollout collectors
    seed: Optional[int] = None

    # Checkpointing
    auto_save_interval: int = 50  # Games between automatic checkpoints; 0 disables
    keep_checkpoints: int = 5
    checkpoint_prefix: str = "mimic_rl"

    # Logging
    log_dir: Optional[str] = field(default_factory=lambda: os.getenv('MIMIC_RL_LOG_DIR', 'logs'))
    experiment_name: Optional[str] = None
    use_tensorboard: bool = False
    console_log_interval: int = 1

    # Host cooperation
    frame_interval: float = 1.0 / 60.0  # Yield sleep while the host is visible

    # Components
    network: Optional[NetworkConfig] = None
    ppo: Optional[PPOConfig] = None
    rollout: Optional[RolloutConfig] = None

    def __post_init__(self):
        if self.network is None:
            self.network = NetworkConfig()
        elif isinstance(self.network, dict):
            self.network = NetworkConfig(**self.network)

        if self.ppo is None:
            self.ppo = PPOConfig()
        elif isinstance(self.ppo, dict):
            self.ppo = PPOConfig(**self.ppo)

        if self.rollout is None:
            self.rollout = RolloutConfig()
        elif isinstance(self.rollout, dict):
            self.rollout = RolloutConfig(**self.rollout)

    def validate(self):
        """Validate configuration"""
        if self.max_games <= 0:
            raise ValueError(f"max_games must be > 0, got {self.max_games}")
        if self.parallel_games <= 0:
            raise ValueError(f"parallel_games must be > 0, got {self.parallel_games}")
        if self.auto_save_interval < 0:
            raise ValueError(f"auto_save_interval must be >= 0, got {self.auto_save_interval}")
        if self.frame_interval < 0:
            raise ValueError(f"frame_interval must be >= 0, got {self.frame_interval}")
        self.network.validate()
        self.ppo.validate()
        self.rollout.validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionConfig":
        """Build a config from a nested dict, rejecting unknown keys"""
        return cls(**(data or {}))


def load_config(config_path: str) -> SessionConfig:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return SessionConfig.from_dict(data)


def save_config(config: SessionConfig, config_path: str):
    """Write configuration to a YAML file"""
    with open(config_path, 'w') as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
