# ai_inference/engine/forward.py
"""
Transformer forward pass over dequantized weights.

Each layer: LayerNorm → Q/K/V → RoPE → causal grouped-query attention →
output projection + residual → LayerNorm → SiLU-gated MLP + residual.
A final LayerNorm and the output head produce vocabulary logits.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ai_inference.engine import layers as L
from ai_inference.engine.architecture import ArchitectureProfile
from ai_inference.engine.kv_cache import KVCache, LayerCache
from ai_inference.engine.weights import LayerWeights, ModelWeights


class TransformerModel:
    """Stateless forward computation; all per-sequence state lives in a KVCache."""

    def __init__(self, profile: ArchitectureProfile, weights: ModelWeights):
        self.profile = profile
        self.weights = weights

    def new_cache(self) -> KVCache:
        p = self.profile
        return KVCache(p.n_layers, p.n_kv_head * p.head_dim)

    def embed(self, tokens: Sequence[int]) -> np.ndarray:
        ids = np.asarray(tokens, dtype=np.int64)
        vocab = self.profile.vocab_size
        if ids.ndim != 1 or ids.size == 0:
            raise ValueError("forward needs a non-empty 1-D token sequence")
        bad = ids[(ids < 0) | (ids >= vocab)]
        if bad.size:
            raise ValueError(f"Token id {int(bad[0])} outside vocabulary [0, {vocab})")
        return self.weights.token_embedding[ids].astype(np.float32)

    def _attention(self, lw: LayerWeights, h: np.ndarray, cache: LayerCache, start_pos: int) -> np.ndarray:
        p = self.profile
        hd = p.head_dim

        q = L.linear(h, lw.q_proj.weight, lw.q_proj.bias)
        k = L.linear(h, lw.k_proj.weight, lw.k_proj.bias)
        v = L.linear(h, lw.v_proj.weight, lw.v_proj.bias)

        k_rot = np.empty_like(k)
        for kvh in range(p.n_kv_head):
            cols = slice(kvh * hd, (kvh + 1) * hd)
            k_rot[:, cols] = L.apply_rope(k[:, cols], start_pos)
        cache.append(k_rot, v)
        keys, values = cache.view()

        out = np.empty_like(q)
        for head in range(p.n_head):
            cols = slice(head * hd, (head + 1) * hd)
            kv = L.kv_head_index(head, p.n_head, p.n_kv_head)
            kv_cols = slice(kv * hd, (kv + 1) * hd)
            q_rot = L.apply_rope(q[:, cols], start_pos)
            weights = L.attention_weights(q_rot, keys[:, kv_cols], start_pos)
            out[:, cols] = weights @ values[:, kv_cols]

        return L.linear(out, lw.o_proj.weight, lw.o_proj.bias)

    def _layer(self, lw: LayerWeights, x: np.ndarray, cache: LayerCache, start_pos: int) -> np.ndarray:
        h = L.layer_norm(x, lw.input_norm.weight, lw.input_norm.bias)
        residual = x + self._attention(lw, h, cache, start_pos)

        h = L.layer_norm(residual, lw.post_attention_norm.weight, lw.post_attention_norm.bias)
        mlp = L.gated_mlp(
            h,
            lw.gate_proj.weight,
            lw.up_proj.weight,
            lw.down_proj.weight,
            lw.gate_proj.bias,
            lw.up_proj.bias,
            lw.down_proj.bias,
        )
        return residual + mlp

    def forward_step(self, tokens: Sequence[int], cache: KVCache) -> np.ndarray:
        """Process ``tokens`` as the continuation of what ``cache`` already holds.

        Returns:
            Logits [len(tokens), vocab_size] for the new positions.
        """
        start_pos = cache.length
        x = self.embed(tokens)
        for lw, layer_cache in zip(self.weights.layers, cache.layers):
            x = self._layer(lw, x, layer_cache, start_pos)

        w = self.weights
        x = L.layer_norm(x, w.final_norm.weight, w.final_norm.bias)
        return L.linear(x, w.lm_head.weight, w.lm_head.bias)

    def forward(self, tokens: Sequence[int]) -> np.ndarray:
        """Logits [seq_len, vocab_size] for the whole sequence, recomputed from scratch."""
        return self.forward_step(tokens, self.new_cache())
