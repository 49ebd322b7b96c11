# ai_inference/engine/sampler.py
"""
Next-token selection from a logits vector.

Order of operations: repetition penalty → greedy shortcut → temperature
softmax → top-k → top-p → categorical draw. Out-of-range settings are taken
as given: temperature <= 0 means greedy, top_k outside (0, vocab) and
top_p >= 1 disable their filters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np


@dataclass
class GenerationConfig:
    """Decoding policy for one generate call."""

    max_tokens: int = 100
    temperature: float = 1.0
    top_p: float = 1.0
    top_k: int = 0
    repetition_penalty: float = 1.0
    do_sample: bool = True
    stop_tokens: List[int] = field(default_factory=list)
    seed: Optional[int] = None  # None: fresh OS entropy


def apply_repetition_penalty(logits: np.ndarray, history: Sequence[int], penalty: float) -> np.ndarray:
    """Divide the logit of each in-range history token by ``penalty``.

    The division happens once per history entry, so a token seen n times is
    divided n times.
    """
    adjusted = np.array(logits, dtype=np.float32)
    if penalty == 1.0 or not history:
        return adjusted
    vocab = adjusted.shape[0]
    for token in history:
        if 0 <= token < vocab:
            adjusted[token] /= penalty
    return adjusted


def _descending_order(probs: np.ndarray) -> np.ndarray:
    """Indices by probability descending; ties keep the lower id first."""
    return np.lexsort((np.arange(probs.shape[0]), -probs))


def _renormalize(probs: np.ndarray) -> np.ndarray:
    return probs / probs.sum()


def top_k_filter(probs: np.ndarray, k: int) -> np.ndarray:
    if k <= 0 or k >= probs.shape[0]:
        return probs
    out = probs.copy()
    out[_descending_order(probs)[k:]] = 0.0
    return _renormalize(out)


def top_p_filter(probs: np.ndarray, p: float) -> np.ndarray:
    """Keep the smallest descending prefix whose cumulative mass reaches ``p``."""
    if p >= 1.0:
        return probs
    order = _descending_order(probs)
    cumulative = np.cumsum(probs[order])
    reached = np.nonzero(cumulative >= p)[0]
    cutoff = int(reached[0]) + 1 if reached.size else probs.shape[0]
    out = probs.copy()
    out[order[cutoff:]] = 0.0
    return _renormalize(out)


def softmax_with_temperature(logits: np.ndarray, temperature: float) -> np.ndarray:
    """Temperature softmax in float64.

    ``+inf`` logits split all of the mass evenly between them; ``-inf`` logits
    get none, and a vector of only ``-inf`` is treated as uniform.
    """
    logits = logits.astype(np.float64)
    certain = np.isposinf(logits)
    if certain.any():
        return _renormalize(certain.astype(np.float64))
    if np.isneginf(logits).all():
        return np.full(logits.shape, 1.0 / logits.shape[0])
    scaled = (logits - np.max(logits)) / temperature
    e = np.exp(scaled)
    return e / e.sum()


def sample_token(
    logits: np.ndarray,
    config: GenerationConfig,
    history: Sequence[int] = (),
    rng: Optional[np.random.Generator] = None,
) -> int:
    """Pick the next token id from ``logits`` [vocab_size].

    Infinite logits are valid input (see ``softmax_with_temperature``).

    Args:
        logits: Raw scores for the last position.
        config: Decoding policy.
        history: Tokens seen so far (prompt + generated), for the repetition penalty.
        rng: Generator to draw from; defaults to one seeded from ``config.seed``.

    Raises:
        ValueError: ``logits`` contains NaN.
    """
    adjusted = apply_repetition_penalty(logits, history, config.repetition_penalty)
    if np.isnan(adjusted).any():
        raise ValueError("logits contain NaN")

    if not config.do_sample or config.temperature <= 0:
        return int(np.argmax(adjusted))

    probs = softmax_with_temperature(adjusted, config.temperature)
    probs = top_k_filter(probs, config.top_k)
    probs = top_p_filter(probs, config.top_p)

    if rng is None:
        rng = np.random.default_rng(config.seed)
    return int(rng.choice(probs.shape[0], p=probs))
