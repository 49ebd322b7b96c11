"""
Shared pytest fixtures: an in-memory GGUF container builder and a tiny
hand-specified llama model whose greedy output is known exactly.
"""

import struct

import numpy as np
import pytest

from ai_inference.model_formats.gguf.gguf_quantization import GGMLType
from ai_inference.model_formats.gguf.gguf_versions import (
    T_ARRAY,
    T_BOOL,
    T_FLOAT32,
    T_STRING,
    T_UINT32,
)


# ---------------------------------------------------------------------------
# Container builder
# ---------------------------------------------------------------------------

def _gguf_str(s):
    b = s.encode("utf-8")
    return struct.pack("<Q", len(b)) + b


class GGUFBuilder:
    """Assemble a GGUF container byte by byte.

    Tensor payloads are packed back to back after the aligned data section, so
    a well-formed build has its data segment covered exactly.
    """

    def __init__(self, version=3):
        self.version = version
        self.kv = []
        self.tensors = []

    # -- metadata ---------------------------------------------------------

    def add_raw_kv(self, key, type_code, payload):
        self.kv.append(_gguf_str(key) + struct.pack("<I", type_code) + payload)
        return self

    def add_uint32(self, key, value):
        return self.add_raw_kv(key, T_UINT32, struct.pack("<I", value))

    def add_float32(self, key, value):
        return self.add_raw_kv(key, T_FLOAT32, struct.pack("<f", value))

    def add_bool(self, key, value):
        return self.add_raw_kv(key, T_BOOL, struct.pack("<?", value))

    def add_string(self, key, value):
        return self.add_raw_kv(key, T_STRING, _gguf_str(value))

    def add_array(self, key, elem_type, values):
        payload = struct.pack("<IQ", elem_type, len(values))
        if elem_type == T_STRING:
            payload += b"".join(_gguf_str(v) for v in values)
        else:
            fmt = {T_UINT32: "I", T_FLOAT32: "f", T_BOOL: "?"}[elem_type]
            payload += struct.pack(f"<{len(values)}{fmt}", *values)
        return self.add_raw_kv(key, T_ARRAY, payload)

    # -- tensors ----------------------------------------------------------

    def add_tensor(self, name, dims, ggml_type, payload):
        self.tensors.append((name, tuple(dims), int(ggml_type), bytes(payload)))
        return self

    def add_f32(self, name, array):
        arr = np.asarray(array, dtype="<f4")
        return self.add_tensor(name, tuple(reversed(arr.shape)), GGMLType.F32, arr.tobytes())

    def add_f16(self, name, array):
        arr = np.asarray(array, dtype="<f2")
        return self.add_tensor(name, tuple(reversed(arr.shape)), GGMLType.F16, arr.tobytes())

    def add_q4_0(self, name, dims, codes, scale=1.0):
        return self.add_tensor(name, dims, GGMLType.Q4_0, q4_0_blocks(codes, scale))

    # -- output -----------------------------------------------------------

    def build(self, alignment=32, pad_tensors=False):
        """Assemble the container; ``pad_tensors`` starts every payload on an alignment boundary."""
        payloads = [payload for _, _, _, payload in self.tensors]
        if pad_tensors:
            payloads = [p + b"\x00" * (-len(p) % alignment) for p in payloads[:-1]] + payloads[-1:]
        out = bytearray(b"GGUF")
        out += struct.pack("<IQQ", self.version, len(self.tensors), len(self.kv))
        for record in self.kv:
            out += record
        offset = 0
        for (name, dims, ggml_type, _), payload in zip(self.tensors, payloads):
            out += _gguf_str(name)
            out += struct.pack("<I", len(dims))
            out += struct.pack(f"<{len(dims)}Q", *dims)
            out += struct.pack("<IQ", ggml_type, offset)
            offset += len(payload)
        out += b"\x00" * (-len(out) % alignment)
        for payload in payloads:
            out += payload
        return bytes(out)


def q4_0_blocks(codes, scale=1.0):
    """Pack 4-bit codes into Q4_0 blocks; a short final block is padded with code 8 (zero)."""
    codes = list(codes)
    codes += [8] * (-len(codes) % 32)
    out = bytearray()
    for start in range(0, len(codes), 32):
        block = codes[start : start + 32]
        out += struct.pack("<f", scale)
        out += bytes(block[2 * i] | (block[2 * i + 1] << 4) for i in range(16))
    return bytes(out)


@pytest.fixture
def gguf_builder():
    """Factory for fresh GGUFBuilder instances."""
    return GGUFBuilder


@pytest.fixture
def write_model(tmp_path):
    """Write container bytes to a temporary .gguf file and return its path."""

    def _write(data, name="model.gguf"):
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)

    return _write


# ---------------------------------------------------------------------------
# Tiny llama model
# ---------------------------------------------------------------------------

# One layer, hidden 4, 2 query heads sharing 1 KV head, vocab 5.
# Query/key projections are zero, so attention averages the values of every
# visible position. The value projection copies the first two normalized
# features and the output projection doubles them. The MLP gate is zero, so
# the MLP contributes nothing. The output head rows are permuted embeddings.
TINY_EMBEDDINGS = np.array(
    [
        [1, 1, -1, -1],
        [1, -1, 1, -1],
        [1, -1, -1, 1],
        [-1, 1, 1, -1],
        [-1, 1, -1, 1],
    ],
    dtype=np.float32,
)
TINY_LM_HEAD = TINY_EMBEDDINGS[[0, 2, 4, 1, 3]]


def build_tiny_llama(builder, *, tokenizer=False):
    b = builder()
    b.add_string("general.architecture", "llama")
    b.add_uint32("llama.block_count", 1)
    b.add_uint32("llama.attention.head_count", 2)
    b.add_uint32("llama.attention.head_count_kv", 1)
    b.add_uint32("llama.embedding_length", 4)
    b.add_uint32("llama.vocab_size", 5)
    b.add_uint32("llama.context_length", 16)
    if tokenizer:
        b.add_string("tokenizer.ggml.model", "gpt2")
        b.add_array("tokenizer.ggml.tokens", T_STRING, ["a", "b", "c", "d", "e"])

    # +1 -> code 9, -1 -> code 7 at scale 1.0
    codes = [9 if v > 0 else 7 for v in TINY_EMBEDDINGS.reshape(-1)]
    b.add_q4_0("model.embed_tokens.weight", (4, 5), codes)

    ones = np.ones(4, dtype=np.float32)
    prefix = "model.layers.0"
    b.add_f32(f"{prefix}.input_layernorm.weight", ones)
    b.add_f32(f"{prefix}.self_attn.q_proj.weight", np.zeros((4, 4)))
    b.add_f32(f"{prefix}.self_attn.k_proj.weight", np.zeros((2, 4)))
    b.add_f32(f"{prefix}.self_attn.v_proj.weight", np.eye(2, 4))
    b.add_f32(f"{prefix}.self_attn.o_proj.weight", 2.0 * np.eye(4))
    b.add_f32(f"{prefix}.post_attention_layernorm.weight", ones)
    b.add_f32(f"{prefix}.mlp.gate_proj.weight", np.zeros((2, 4)))
    b.add_f32(f"{prefix}.mlp.up_proj.weight", np.ones((2, 4)))
    b.add_f32(f"{prefix}.mlp.down_proj.weight", np.ones((4, 2)))
    b.add_f32("model.norm.weight", ones)
    b.add_f16("lm_head.weight", TINY_LM_HEAD)
    return b


@pytest.fixture
def tiny_llama_bytes(gguf_builder):
    return build_tiny_llama(gguf_builder).build()


@pytest.fixture
def tiny_llama_path(tiny_llama_bytes, write_model):
    return write_model(tiny_llama_bytes)


@pytest.fixture
def tiny_llama_vocab_path(gguf_builder, write_model):
    return write_model(build_tiny_llama(gguf_builder, tokenizer=True).build(), "vocab.gguf")


@pytest.fixture
def tiny_llama_builder(gguf_builder):
    """Unbuilt tiny model, for tests that add metadata before building."""
    return build_tiny_llama(gguf_builder)
