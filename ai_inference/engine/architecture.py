# ai_inference/engine/architecture.py
"""
Architecture resolution: metadata → hyperparameter profile + weight naming.

Each supported family is a frozen record carrying its metadata key names and
its tensor naming templates, so nothing downstream branches on family strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from ai_inference.errors import (
    ArchitectureUnresolvedError,
    HyperparameterError,
    MetadataTypeError,
    MissingKeyError,
)

DEFAULT_CONTEXT_LENGTH = 2048


@dataclass(frozen=True)
class LayerWeightNames:
    """Weight keys (without the .weight/.bias suffix) for one transformer layer."""

    input_norm: str
    q_proj: str
    k_proj: str
    v_proj: str
    o_proj: str
    post_attention_norm: str
    gate_proj: str
    up_proj: str
    down_proj: str

    def prefixes(self) -> Tuple[str, ...]:
        return (
            self.input_norm,
            self.q_proj,
            self.k_proj,
            self.v_proj,
            self.o_proj,
            self.post_attention_norm,
            self.gate_proj,
            self.up_proj,
            self.down_proj,
        )


@dataclass(frozen=True)
class ArchitectureFamily:
    """Naming conventions and metadata keys of one model family."""

    name: str
    layer_prefix: str  # format string taking the layer index
    attention_name: str
    token_embedding: str  # embedding matrix key, as stored (no suffix)
    final_norm: str
    marker: Optional[str]
    block_count_key: str
    head_count_key: str
    head_count_kv_key: Optional[str]  # None: same as head count
    embedding_length_key: str
    vocab_size_key: str
    context_length_key: Optional[str] = None
    output: str = "lm_head"

    def layer_weights(self, layer: int) -> LayerWeightNames:
        prefix = self.layer_prefix.format(layer)
        attn = f"{prefix}.{self.attention_name}"
        return LayerWeightNames(
            input_norm=f"{prefix}.input_layernorm",
            q_proj=f"{attn}.q_proj",
            k_proj=f"{attn}.k_proj",
            v_proj=f"{attn}.v_proj",
            o_proj=f"{attn}.o_proj",
            post_attention_norm=f"{prefix}.post_attention_layernorm",
            gate_proj=f"{prefix}.mlp.gate_proj",
            up_proj=f"{prefix}.mlp.up_proj",
            down_proj=f"{prefix}.mlp.down_proj",
        )


def _llama_like(name: str, marker: Optional[str] = None) -> ArchitectureFamily:
    return ArchitectureFamily(
        name=name,
        layer_prefix="model.layers.{}",
        attention_name="self_attn",
        token_embedding="model.embed_tokens",
        final_norm="model.norm",
        marker=marker,
        block_count_key=f"{name}.block_count",
        head_count_key=f"{name}.attention.head_count",
        head_count_kv_key=f"{name}.attention.head_count_kv",
        embedding_length_key=f"{name}.embedding_length",
        vocab_size_key=f"{name}.vocab_size",
        context_length_key=f"{name}.context_length",
    )


PHI3 = ArchitectureFamily(
    name="phi3",
    layer_prefix="phi3.layers.{}",
    attention_name="self_attn",
    token_embedding="phi3.embed_tokens",
    final_norm="phi3.norm",
    marker="phi3.embed_tokens",
    block_count_key="phi3.block_count",
    head_count_key="phi3.attention.head_count",
    head_count_kv_key="phi3.attention.head_count_kv",
    embedding_length_key="phi3.embedding_length",
    vocab_size_key="phi3.vocab_size",
    context_length_key="phi3.context_length",
)

LLAMA = _llama_like("llama", marker="model.embed_tokens")
MISTRAL = _llama_like("mistral")
QWEN2 = _llama_like("qwen2")

GPT2 = ArchitectureFamily(
    name="gpt2",
    layer_prefix="transformer.h.{}",
    attention_name="attn",
    token_embedding="transformer.wte",
    final_norm="transformer.ln_f",
    marker="transformer.wte",
    block_count_key="gpt2.n_layer",
    head_count_key="gpt2.n_head",
    head_count_kv_key=None,
    embedding_length_key="gpt2.n_embd",
    vocab_size_key="gpt2.vocab_size",
    context_length_key="gpt2.context_length",
)

FAMILIES: Dict[str, ArchitectureFamily] = {f.name: f for f in (PHI3, LLAMA, GPT2, MISTRAL, QWEN2)}

# Probe order when general.architecture is absent.
MARKER_ORDER: Tuple[ArchitectureFamily, ...] = (PHI3, LLAMA, GPT2)


@dataclass(frozen=True)
class ArchitectureProfile:
    """Concrete hyperparameters of a loaded model."""

    family: ArchitectureFamily
    n_layers: int
    n_head: int
    n_kv_head: int
    hidden_size: int
    vocab_size: int
    context_length: int = DEFAULT_CONTEXT_LENGTH

    @property
    def name(self) -> str:
        return self.family.name

    @property
    def head_dim(self) -> int:
        return self.hidden_size // self.n_head

    @property
    def group_size(self) -> int:
        """Query heads sharing one key/value head."""
        return self.n_head // self.n_kv_head

    def kv_head_for(self, head: int) -> int:
        return head // self.group_size

    def layer_weights(self, layer: int) -> LayerWeightNames:
        return self.family.layer_weights(layer)

    def global_prefixes(self) -> Tuple[str, str]:
        return self.family.final_norm, self.family.output


def _detect_family(metadata: Mapping[str, Any], weight_names: Iterable[str]) -> ArchitectureFamily:
    arch = metadata.get("general.architecture")
    if arch is not None:
        family = FAMILIES.get(str(arch))
        if family is None:
            raise ArchitectureUnresolvedError(
                f"Unsupported architecture {arch!r}; supported: {', '.join(sorted(FAMILIES))}"
            )
        return family

    names = set(weight_names)
    for family in MARKER_ORDER:
        if family.marker in names or f"{family.marker}.weight" in names:
            logger.debug(
                "No general.architecture; inferred {arch} from tensor {marker}",
                arch=family.name,
                marker=family.marker,
            )
            return family
    raise ArchitectureUnresolvedError("No general.architecture key and no known marker tensor")


def _require_int(metadata: Mapping[str, Any], key: str) -> int:
    if key not in metadata:
        raise MissingKeyError(f"Required metadata key {key!r} is missing")
    value = metadata[key]
    # bool is an int subclass but never a valid count.
    if isinstance(value, bool) or not isinstance(value, int):
        raise MetadataTypeError(f"Metadata key {key!r} must be an integer, got {type(value).__name__}")
    return value


def resolve_architecture(metadata: Mapping[str, Any], weight_names: Iterable[str]) -> ArchitectureProfile:
    """Resolve the model family and its hyperparameters.

    Args:
        metadata: Decoded GGUF metadata (key → value).
        weight_names: Names of the tensors available in the file.

    Raises:
        ArchitectureUnresolvedError: no supported family detected.
        MissingKeyError: a required hyperparameter key is absent.
        MetadataTypeError: a hyperparameter is not an integer.
        HyperparameterError: head/hidden sizes are not evenly divisible.
    """
    family = _detect_family(metadata, weight_names)

    n_layers = _require_int(metadata, family.block_count_key)
    n_head = _require_int(metadata, family.head_count_key)
    n_kv_head = (
        _require_int(metadata, family.head_count_kv_key) if family.head_count_kv_key else n_head
    )
    hidden_size = _require_int(metadata, family.embedding_length_key)
    vocab_size = _require_int(metadata, family.vocab_size_key)

    context_length = DEFAULT_CONTEXT_LENGTH
    if family.context_length_key and family.context_length_key in metadata:
        context_length = _require_int(metadata, family.context_length_key)

    for label, value in (
        ("block_count", n_layers),
        ("head_count", n_head),
        ("head_count_kv", n_kv_head),
        ("embedding_length", hidden_size),
        ("vocab_size", vocab_size),
    ):
        if value <= 0:
            raise HyperparameterError(f"{family.name} {label} must be positive, got {value}")
    if n_head % n_kv_head != 0:
        raise HyperparameterError(
            f"head_count {n_head} is not divisible by head_count_kv {n_kv_head}"
        )
    if hidden_size % n_head != 0:
        raise HyperparameterError(f"embedding_length {hidden_size} is not divisible by head_count {n_head}")
    if (hidden_size // n_head) % 2 != 0:
        raise HyperparameterError(f"head dimension {hidden_size // n_head} must be even for rotary embeddings")

    profile = ArchitectureProfile(
        family=family,
        n_layers=n_layers,
        n_head=n_head,
        n_kv_head=n_kv_head,
        hidden_size=hidden_size,
        vocab_size=vocab_size,
        context_length=context_length,
    )
    logger.info(
        "Resolved {arch}: layers={layers} heads={heads}/{kv} hidden={hidden} vocab={vocab}",
        arch=family.name,
        layers=n_layers,
        heads=n_head,
        kv=n_kv_head,
        hidden=hidden_size,
        vocab=vocab_size,
    )
    return profile


def referenced_weights(profile: ArchitectureProfile) -> List[str]:
    """All weight prefixes the forward pass reads, in load order."""
    names: List[str] = []
    for layer in range(profile.n_layers):
        names.extend(profile.layer_weights(layer).prefixes())
    names.extend(profile.global_prefixes())
    return names
