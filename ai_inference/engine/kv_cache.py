# ai_inference/engine/kv_cache.py
"""
Per-layer key/value cache addressed by absolute sequence position.

Keys are stored after rotary embedding, so a cached row never needs to be
recomputed. A cache belongs to a single generation call.
"""

from __future__ import annotations

from typing import List

import numpy as np


class LayerCache:
    """Growable [positions, kv_width] key and value buffers for one layer."""

    __slots__ = ("keys", "values", "length")

    def __init__(self, kv_width: int, capacity: int = 64):
        self.keys = np.empty((capacity, kv_width), dtype=np.float32)
        self.values = np.empty((capacity, kv_width), dtype=np.float32)
        self.length = 0

    def _reserve(self, needed: int) -> None:
        capacity = self.keys.shape[0]
        if needed <= capacity:
            return
        while capacity < needed:
            capacity *= 2
        for attr in ("keys", "values"):
            old = getattr(self, attr)
            grown = np.empty((capacity, old.shape[1]), dtype=np.float32)
            grown[: self.length] = old[: self.length]
            setattr(self, attr, grown)

    def append(self, keys: np.ndarray, values: np.ndarray) -> None:
        n = keys.shape[0]
        self._reserve(self.length + n)
        self.keys[self.length : self.length + n] = keys
        self.values[self.length : self.length + n] = values
        self.length += n

    def view(self) -> tuple[np.ndarray, np.ndarray]:
        """Keys and values for positions [0, length)."""
        return self.keys[: self.length], self.values[: self.length]


class KVCache:
    """Key/value history for every layer of a model."""

    def __init__(self, n_layers: int, kv_width: int):
        self.layers: List[LayerCache] = [LayerCache(kv_width) for _ in range(n_layers)]

    @property
    def length(self) -> int:
        """Number of positions already processed."""
        return self.layers[0].length if self.layers else 0

    def reset(self) -> None:
        for layer in self.layers:
            layer.length = 0
