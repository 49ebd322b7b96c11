# ai_inference/model_formats/gguf/gguf_quantization.py
"""
GGML tensor encodings and their on-disk size rules.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class GGMLType(IntEnum):
    """GGML tensor types, including quantization."""

    F32 = 0
    F16 = 1
    Q4_0 = 2
    Q4_1 = 3
    # Deprecated
    # Q4_2 = 4
    # Q4_3 = 5
    Q5_0 = 6
    Q5_1 = 7
    Q8_0 = 8
    Q8_1 = 9
    Q2_K = 10
    Q3_K = 11
    Q4_K = 12
    Q5_K = 13
    Q6_K = 14
    Q8_K = 15


# Elements per Q4_0 block: one float32 scale + 16 bytes of packed nibbles.
QK4_0 = 32
# Elements per K-quant super-block.
QK_K = 256


@dataclass(frozen=True)
class QuantizationInfo:
    """Block layout of a GGML encoding."""

    block_size: int  # elements per block
    type_size: int  # bytes per block

    def get_expected_size(self, n_elements: int) -> int:
        """Byte size of a tensor with this encoding; a trailing partial block is stored whole."""
        n_blocks = (n_elements + self.block_size - 1) // self.block_size
        return n_blocks * self.type_size


# Size rules for the encodings this engine understands on disk. Only F32, F16
# and Q4_0 have decoders (see gguf_dequant); the others are sized so layouts
# can still be inspected. Q4_0 stores a float32 scale per block, the format
# this engine reads and writes; every other entry follows ggml's block
# layouts with f16 scales.
QUANTIZATION_MAP = {
    GGMLType.F32: QuantizationInfo(1, 4),
    GGMLType.F16: QuantizationInfo(1, 2),
    GGMLType.Q4_0: QuantizationInfo(QK4_0, 4 + QK4_0 // 2),
    GGMLType.Q4_1: QuantizationInfo(32, 2 + 2 + 16),
    GGMLType.Q5_0: QuantizationInfo(32, 2 + 4 + 16),
    GGMLType.Q5_1: QuantizationInfo(32, 2 + 2 + 4 + 16),
    GGMLType.Q8_0: QuantizationInfo(32, 2 + 32),
    GGMLType.Q8_1: QuantizationInfo(32, 4 + 4 + 32),
    GGMLType.Q2_K: QuantizationInfo(QK_K, 2 + 2 + QK_K // 16 + QK_K // 4),
    GGMLType.Q3_K: QuantizationInfo(QK_K, 2 + QK_K // 4 + QK_K // 8 + 12),
    GGMLType.Q4_K: QuantizationInfo(QK_K, 2 + 2 + QK_K // 2 + 12),
    GGMLType.Q5_K: QuantizationInfo(QK_K, 2 + 2 + QK_K // 2 + QK_K // 8 + 12),
    GGMLType.Q6_K: QuantizationInfo(QK_K, 2 + QK_K // 2 + QK_K // 4 + QK_K // 16),
    GGMLType.Q8_K: QuantizationInfo(QK_K, 4 + QK_K + QK_K // 8),
}


def type_name(ggml_type: int) -> str:
    """Human-readable name of an encoding tag, tolerant of unknown values."""
    try:
        return GGMLType(ggml_type).name
    except ValueError:
        return f"UNKNOWN({ggml_type})"


def expected_size(ggml_type: int, n_elements: int) -> Optional[int]:
    """Byte size for ``n_elements`` in ``ggml_type``, or None when no size rule exists."""
    try:
        info = QUANTIZATION_MAP.get(GGMLType(ggml_type))
    except ValueError:
        return None
    if info is None:
        return None
    return info.get_expected_size(n_elements)
