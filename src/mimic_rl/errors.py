"""
Exception types raised by the training pipeline.
"""


class MimicRLError(Exception):
    """Base class for all mimic_rl errors"""


class ActionSpaceError(MimicRLError, ValueError):
    """Raised when an action space descriptor is empty or malformed"""


class ObservationSizeError(MimicRLError, ValueError):
    """Raised when an observation does not match the agent's input size"""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Observation size mismatch: expected {expected}, got {actual}"
        )


class BundleValidationError(MimicRLError, ValueError):
    """Raised when a weight bundle cannot be imported"""
