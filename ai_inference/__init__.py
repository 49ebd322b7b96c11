# ai_inference/__init__.py
"""
ai_inference
============

Pure-Python GGUF model loading and CPU text generation: zero-copy mmap parsing,
numpy dequantization, architecture-adaptive transformer forward pass, and a
configurable sampler/decode loop.
"""
from __future__ import annotations

from importlib.metadata import version as _pkg_version

__all__ = ["__version__"]

try:
    # Read version dynamically from installed package metadata
    __version__: str = _pkg_version("aiinference")
except Exception:  # pragma: no cover - fallback for development environments
    __version__ = "0.0.0-dev"
