"""
Dense network construction and (de)serialization.

Serialized networks are plain JSON-compatible dicts:

    {"architecture": {"inputSize", "hiddenLayers", "outputSize", "activation"},
     "weights": [{"data": [...], "shape": [...], "dtype": "float32"}, ...]}

Weights are listed layer by layer, kernel first (input-major, [in, out])
then bias.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn

from ..errors import BundleValidationError

logger = logging.getLogger(__name__)

ACTIVATIONS = ("relu", "tanh", "gelu")


def get_activation(name: str) -> nn.Module:
    """Get activation module by name"""
    if name == "relu":
        return nn.ReLU()
    elif name == "tanh":
        return nn.Tanh()
    elif name == "gelu":
        return nn.GELU()
    raise ValueError(f"Unknown activation: {name}")


def build_mlp(input_size: int, hidden_layers: Sequence[int], output_size: int,
              activation: str = "relu") -> nn.Sequential:
    """
    Build a dense network with a linear output head.

    Hidden layers use orthogonal initialization with gain sqrt(2) and
    zero bias.
    """
    layers: List[nn.Module] = []
    in_features = input_size
    for units in hidden_layers:
        layers.append(nn.Linear(in_features, units))
        layers.append(get_activation(activation))
        in_features = units
    layers.append(nn.Linear(in_features, output_size))

    network = nn.Sequential(*layers)
    for module in network.modules():
        if isinstance(module, nn.Linear):
            nn.init.orthogonal_(module.weight, gain=np.sqrt(2))
            nn.init.constant_(module.bias, 0)
    return network


def linear_layers(network: nn.Module) -> List[nn.Linear]:
    return [module for module in network.modules() if isinstance(module, nn.Linear)]


def describe_network(network: nn.Module, activation: str) -> Dict[str, Any]:
    """Architecture dict of a network built by build_mlp"""
    layers = linear_layers(network)
    return {
        "inputSize": layers[0].in_features,
        "hiddenLayers": [layer.out_features for layer in layers[:-1]],
        "outputSize": layers[-1].out_features,
        "activation": activation,
    }


def _tensor_entry(tensor: torch.Tensor) -> Dict[str, Any]:
    tensor = tensor.detach().cpu().float()
    return {
        "data": tensor.reshape(-1).tolist(),
        "shape": list(tensor.shape),
        "dtype": "float32",
    }


def serialize_network(network: nn.Module, activation: str) -> Dict[str, Any]:
    """
    Serialize a dense network.

    Args:
        network: Network built by build_mlp
        activation: Activation name used for its hidden layers

    Returns:
        SerializedNetwork dict
    """
    weights = []
    for layer in linear_layers(network):
        weights.append(_tensor_entry(layer.weight.t()))
        weights.append(_tensor_entry(layer.bias))
    return {
        "architecture": describe_network(network, activation),
        "weights": weights,
    }


def _parse_architecture(data: Any, label: str) -> Dict[str, Any]:
    if not isinstance(data, dict) or not isinstance(data.get("architecture"), dict):
        raise BundleValidationError(f"{label} network is missing its architecture")
    architecture = data["architecture"]

    try:
        input_size = int(architecture["inputSize"])
        output_size = int(architecture["outputSize"])
        hidden_layers = [int(units) for units in architecture.get("hiddenLayers", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise BundleValidationError(f"{label} network has a malformed architecture: {e}") from e

    activation = architecture.get("activation", "relu")
    if activation not in ACTIVATIONS:
        raise BundleValidationError(f"{label} network uses unknown activation {activation!r}")
    if input_size <= 0 or output_size <= 0 or any(units <= 0 for units in hidden_layers):
        raise BundleValidationError(f"{label} network has non-positive layer sizes")

    return {
        "inputSize": input_size,
        "hiddenLayers": hidden_layers,
        "outputSize": output_size,
        "activation": activation,
    }


def deserialize_network(data: Any,
                        expected_input: Optional[int] = None,
                        expected_output: Optional[int] = None,
                        label: str = "network") -> Tuple[nn.Sequential, Dict[str, Any]]:
    """
    Rebuild a dense network from its serialized form.

    Args:
        data: SerializedNetwork dict
        expected_input: Required input size, if any
        expected_output: Required output size, if any
        label: Name used in error messages

    Returns:
        Tuple of (network, architecture)

    Raises:
        BundleValidationError: If the architecture or weights are inconsistent
    """
    architecture = _parse_architecture(data, label)
    if expected_input is not None and architecture["inputSize"] != expected_input:
        raise BundleValidationError(
            f"{label} network expects {architecture['inputSize']} inputs, "
            f"this session provides {expected_input}"
        )
    if expected_output is not None and architecture["outputSize"] != expected_output:
        raise BundleValidationError(
            f"{label} network produces {architecture['outputSize']} outputs, "
            f"this session needs {expected_output}"
        )

    network = build_mlp(
        architecture["inputSize"],
        architecture["hiddenLayers"],
        architecture["outputSize"],
        architecture["activation"],
    )
    layers = linear_layers(network)
    weights = data.get("weights")
    if not isinstance(weights, list) or len(weights) != 2 * len(layers):
        raise BundleValidationError(
            f"{label} network needs {2 * len(layers)} weight tensors, "
            f"got {len(weights) if isinstance(weights, list) else 'none'}"
        )

    with torch.no_grad():
        for index, layer in enumerate(layers):
            kernel = _entry_to_tensor(weights[2 * index], (layer.in_features, layer.out_features), label)
            bias = _entry_to_tensor(weights[2 * index + 1], (layer.out_features,), label)
            layer.weight.copy_(kernel.t())
            layer.bias.copy_(bias)

    return network, architecture


def _entry_to_tensor(entry: Any, shape: Tuple[int, ...], label: str) -> torch.Tensor:
    if not isinstance(entry, dict) or "data" not in entry:
        raise BundleValidationError(f"{label} network has a malformed weight entry")
    try:
        declared = tuple(int(dim) for dim in entry.get("shape", shape))
    except (TypeError, ValueError) as e:
        raise BundleValidationError(f"{label} network weight has a malformed shape: {e}") from e
    if declared != shape:
        raise BundleValidationError(
            f"{label} network weight shape {list(declared)} does not match {list(shape)}"
        )
    try:
        values = np.asarray(entry["data"], dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise BundleValidationError(f"{label} network weight data is not numeric: {e}") from e
    if values.size != int(np.prod(shape)):
        raise BundleValidationError(
            f"{label} network weight has {values.size} values, expected {int(np.prod(shape))}"
        )
    if not np.all(np.isfinite(values)):
        raise BundleValidationError(f"{label} network weight contains non-finite values")
    return torch.from_numpy(values.reshape(shape))
