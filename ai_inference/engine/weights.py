# ai_inference/engine/weights.py
"""
Weight table construction: dequantize exactly the tensors the resolved
architecture references and check their shapes against the profile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from ai_inference.engine.architecture import ArchitectureProfile
from ai_inference.errors import HyperparameterError, MissingKeyError
from ai_inference.model_formats.gguf.gguf import GGUFModel
from ai_inference.model_formats.gguf.gguf_dequant import dequantize
from ai_inference.observability import Timer


@dataclass(frozen=True)
class Linear:
    weight: np.ndarray  # [out_features, in_features]
    bias: Optional[np.ndarray] = None


@dataclass(frozen=True)
class Norm:
    weight: np.ndarray
    bias: Optional[np.ndarray] = None


@dataclass(frozen=True)
class LayerWeights:
    input_norm: Norm
    q_proj: Linear
    k_proj: Linear
    v_proj: Linear
    o_proj: Linear
    post_attention_norm: Norm
    gate_proj: Linear
    up_proj: Linear
    down_proj: Linear


@dataclass(frozen=True)
class ModelWeights:
    token_embedding: np.ndarray  # [vocab_size, hidden_size]
    layers: Tuple[LayerWeights, ...]
    final_norm: Norm
    lm_head: Linear


class _TensorTable:
    """Dequantizes tensors on first reference and keeps them by name."""

    def __init__(self, model: GGUFModel, buf):
        self._infos = model.tensor_map
        self._buf = buf
        self._dense: Dict[str, np.ndarray] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._infos

    def get(self, name: str) -> np.ndarray:
        arr = self._dense.get(name)
        if arr is None:
            info = self._infos.get(name)
            if info is None:
                raise MissingKeyError(f"Required weight tensor {name!r} is missing")
            arr = dequantize(info, self._buf)
            arr.setflags(write=False)
            self._dense[name] = arr
        return arr

    def optional(self, name: str) -> Optional[np.ndarray]:
        return self.get(name) if name in self._infos else None

    def __len__(self) -> int:
        return len(self._dense)


def _expect(name: str, arr: np.ndarray, shape: Tuple[int, ...]) -> None:
    if arr.shape != shape:
        raise HyperparameterError(f"Weight {name!r} has shape {arr.shape}, expected {shape}")


def _linear(table: _TensorTable, prefix: str, out_features: int, in_features: int) -> Linear:
    weight = table.get(f"{prefix}.weight")
    _expect(f"{prefix}.weight", weight, (out_features, in_features))
    bias = table.optional(f"{prefix}.bias")
    if bias is not None:
        _expect(f"{prefix}.bias", bias, (out_features,))
    return Linear(weight, bias)


def _linear_any_out(table: _TensorTable, prefix: str, in_features: int) -> Linear:
    """MLP projections: the intermediate width is whatever the file stores."""
    weight = table.get(f"{prefix}.weight")
    if weight.ndim != 2 or weight.shape[1] != in_features:
        raise HyperparameterError(
            f"Weight {prefix}.weight has shape {weight.shape}, expected (*, {in_features})"
        )
    bias = table.optional(f"{prefix}.bias")
    if bias is not None:
        _expect(f"{prefix}.bias", bias, (weight.shape[0],))
    return Linear(weight, bias)


def _norm(table: _TensorTable, prefix: str, width: int) -> Norm:
    weight = table.get(f"{prefix}.weight")
    _expect(f"{prefix}.weight", weight, (width,))
    bias = table.optional(f"{prefix}.bias")
    if bias is not None:
        _expect(f"{prefix}.bias", bias, (width,))
    return Norm(weight, bias)


def _embedding_name(table: _TensorTable, base: str) -> str:
    for name in (base, f"{base}.weight"):
        if name in table:
            return name
    raise MissingKeyError(f"Token embedding {base!r} is missing")


def load_weights(model: GGUFModel, buf, profile: ArchitectureProfile) -> ModelWeights:
    """Dequantize every weight the forward pass reads.

    Raises:
        MissingKeyError: a required weight tensor is absent.
        HyperparameterError: a weight's shape disagrees with the profile.
        EncodingUnsupportedError / BoundsError: from the dequantizer.
    """
    table = _TensorTable(model, buf)
    hidden = profile.hidden_size
    kv_width = profile.n_kv_head * profile.head_dim

    with Timer("dequantize") as t:
        emb_name = _embedding_name(table, profile.family.token_embedding)
        embedding = table.get(emb_name)
        _expect(emb_name, embedding, (profile.vocab_size, hidden))

        layers: List[LayerWeights] = []
        for i in range(profile.n_layers):
            names = profile.layer_weights(i)
            gate = _linear_any_out(table, names.gate_proj, hidden)
            ff = gate.weight.shape[0]
            layers.append(
                LayerWeights(
                    input_norm=_norm(table, names.input_norm, hidden),
                    q_proj=_linear(table, names.q_proj, hidden, hidden),
                    k_proj=_linear(table, names.k_proj, kv_width, hidden),
                    v_proj=_linear(table, names.v_proj, kv_width, hidden),
                    o_proj=_linear(table, names.o_proj, hidden, hidden),
                    post_attention_norm=_norm(table, names.post_attention_norm, hidden),
                    gate_proj=gate,
                    up_proj=_linear(table, names.up_proj, ff, hidden),
                    down_proj=_linear(table, names.down_proj, hidden, ff),
                )
            )

        final_norm_prefix, output_prefix = profile.global_prefixes()
        final_norm = _norm(table, final_norm_prefix, hidden)
        lm_head = _linear(table, output_prefix, profile.vocab_size, hidden)

    logger.debug(
        "Dequantized {n} of {total} tensors in {ms:.2f}ms",
        n=len(table),
        total=model.n_tensors,
        ms=t.duration_ms,
    )
    return ModelWeights(
        token_embedding=embedding,
        layers=tuple(layers),
        final_norm=final_norm,
        lm_head=lm_head,
    )
