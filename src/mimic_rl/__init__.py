"""mimic_rl - Self-play PPO training for game agents"""

__version__ = "0.1.0"

from .environment import ActionSpace, GameEnvironment, GymEnvironment, StepResult
from .models import PolicyAgent, NetworkConfig
from .storage import InMemoryStore, JsonFileStore
from .training import TrainingSession, OpponentPolicyManager
from .config import SessionConfig, load_config

__all__ = [
    "ActionSpace",
    "GameEnvironment",
    "GymEnvironment",
    "StepResult",
    "PolicyAgent",
    "NetworkConfig",
    "InMemoryStore",
    "JsonFileStore",
    "TrainingSession",
    "OpponentPolicyManager",
    "SessionConfig",
    "load_config",
]
