# ai_inference/engine/layers.py
"""
Numerical building blocks of the transformer forward pass (float32, numpy).

All activations are row-major [seq_len, width] arrays.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

LAYER_NORM_EPS = 1e-5
ROPE_BASE = 10000.0


def linear(x: np.ndarray, weight: np.ndarray, bias: Optional[np.ndarray] = None) -> np.ndarray:
    """y = x · Wᵗ + b, with W stored as [out_features, in_features]."""
    y = x @ weight.T
    if bias is not None:
        y = y + bias
    return y.astype(np.float32, copy=False)


def layer_norm(
    x: np.ndarray,
    weight: np.ndarray,
    bias: Optional[np.ndarray] = None,
    eps: float = LAYER_NORM_EPS,
) -> np.ndarray:
    """Per-row mean/variance normalization with learned affine scale and bias."""
    mean = x.mean(axis=-1, keepdims=True)
    centered = x - mean
    var = (centered * centered).mean(axis=-1, keepdims=True)
    y = centered / np.sqrt(var + np.float32(eps))
    y = y * weight
    if bias is not None:
        y = y + bias
    return y.astype(np.float32, copy=False)


def rope_angles(positions: np.ndarray, head_dim: int) -> np.ndarray:
    """Rotation angles [len(positions), head_dim // 2]: θ = p · base^(−2j/head_dim)."""
    j = np.arange(head_dim // 2, dtype=np.float64)
    inv_freq = ROPE_BASE ** (-2.0 * j / head_dim)
    return np.outer(positions.astype(np.float64), inv_freq)


def apply_rope(x: np.ndarray, start_pos: int) -> np.ndarray:
    """Rotate interleaved pairs (2j, 2j+1) of each row by its absolute position.

    Args:
        x: [seq_len, head_dim] vectors of one head.
        start_pos: Absolute position of row 0.
    """
    seq_len, head_dim = x.shape
    theta = rope_angles(np.arange(start_pos, start_pos + seq_len), head_dim)
    cos = np.cos(theta).astype(np.float32)
    sin = np.sin(theta).astype(np.float32)
    x0 = x[:, 0::2]
    x1 = x[:, 1::2]
    out = np.empty_like(x, dtype=np.float32)
    out[:, 0::2] = x0 * cos - x1 * sin
    out[:, 1::2] = x0 * sin + x1 * cos
    return out


def kv_head_index(head: int, n_head: int, n_kv_head: int) -> int:
    """Grouped-query mapping: contiguous groups of query heads share one KV head."""
    return head // (n_head // n_kv_head)


def causal_mask(n_query: int, n_key: int, start_pos: int) -> np.ndarray:
    """Boolean [n_query, n_key]; True where query row i (absolute start_pos + i) must not see key j."""
    rows = np.arange(start_pos, start_pos + n_query)[:, None]
    cols = np.arange(n_key)[None, :]
    return cols > rows


def softmax(scores: np.ndarray) -> np.ndarray:
    """Row-wise softmax, subtracting the row max first."""
    shifted = scores - scores.max(axis=-1, keepdims=True)
    e = np.exp(shifted)
    return e / e.sum(axis=-1, keepdims=True)


def attention_weights(q: np.ndarray, k: np.ndarray, start_pos: int = 0) -> np.ndarray:
    """Causal scaled dot-product weights for one head.

    Args:
        q: [n_query, head_dim] rotated queries at positions start_pos.. .
        k: [n_key, head_dim] rotated keys at positions 0.. .
        start_pos: Absolute position of the first query row.

    Future positions get exactly zero weight.
    """
    head_dim = q.shape[-1]
    scores = (q @ k.T) / np.float32(np.sqrt(head_dim))
    scores = np.where(causal_mask(q.shape[0], k.shape[0], start_pos), -np.inf, scores)
    return softmax(scores).astype(np.float32, copy=False)


def silu(x: np.ndarray) -> np.ndarray:
    """x · sigmoid(x); sigmoid(x) = (1 + tanh(x/2)) / 2."""
    half = np.float32(0.5)
    return x * (half * (np.float32(1.0) + np.tanh(half * x)))


def gated_mlp(
    x: np.ndarray,
    gate_w: np.ndarray,
    up_w: np.ndarray,
    down_w: np.ndarray,
    gate_b: Optional[np.ndarray] = None,
    up_b: Optional[np.ndarray] = None,
    down_b: Optional[np.ndarray] = None,
) -> np.ndarray:
    """down(gate · sigmoid(gate) · up)."""
    gate = linear(x, gate_w, gate_b)
    up = linear(x, up_w, up_b)
    return linear(silu(gate) * up, down_w, down_b)
