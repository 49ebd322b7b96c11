# ai_inference/errors.py
"""
Load-time error hierarchy.

Every failure raised while turning a file into a runnable model derives from
ModelLoadError, so the engine can discard partial state with a single handler.
"""

from __future__ import annotations


class ModelLoadError(Exception):
    """Base class for all fatal model loading errors."""


class FormatError(ModelLoadError):
    """Bad magic, unsupported version, truncated read or malformed record."""


class MetadataTypeError(ModelLoadError):
    """Unsupported or unexpected metadata value / array element type."""


class BoundsError(ModelLoadError):
    """Tensor extent lies outside the model buffer."""


class EncodingUnsupportedError(ModelLoadError):
    """Tensor is stored in an encoding with no decoder."""


class MissingKeyError(ModelLoadError):
    """Required metadata key or weight tensor is absent."""


class ArchitectureUnresolvedError(ModelLoadError):
    """No supported model family matches the file."""


class HyperparameterError(ModelLoadError):
    """Resolved hyperparameters violate attention shape invariants."""
