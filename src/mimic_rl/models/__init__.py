"""
Neural network models for mimic_rl.

This module contains the actor-critic agent with its factorized
discrete/continuous action distribution, plus helpers to build and
serialize its dense networks.
"""

from .policy_agent import (
    PolicyAgent,
    NetworkConfig,
    ActResult,
    mixed_log_prob,
    mixed_entropy,
    validate_bundle,
    LOG_EPS,
)
from .network_utils import build_mlp, serialize_network, deserialize_network

__all__ = [
    'PolicyAgent',
    'NetworkConfig',
    'ActResult',
    'mixed_log_prob',
    'mixed_entropy',
    'validate_bundle',
    'LOG_EPS',
    'build_mlp',
    'serialize_network',
    'deserialize_network',
]
