# ai_inference/model_formats/gguf/gguf_dequant.py
"""
GGUF tensor dequantization to dense float32 numpy arrays.

Supported encodings:
- F32: byte copy.
- F16: bit-level IEEE-754 half → single conversion.
- Q4_0: 32-element blocks of one float32 scale + 16 bytes of 4-bit codes,
  value = scale * (code - 8). Element i of a block sits in byte i // 2, low
  nibble for even i, high nibble for odd i.

Everything else raises EncodingUnsupportedError. All returned arrays own their
memory, so no view into the source buffer outlives the call.
"""

from __future__ import annotations

import numpy as np

from ai_inference.errors import BoundsError, EncodingUnsupportedError
from ai_inference.model_formats.gguf.gguf import GGUFTensorInfo
from ai_inference.model_formats.gguf.gguf_quantization import QK4_0, GGMLType

_Q4_0_BLOCK = np.dtype([("d", "<f4"), ("qs", "u1", (QK4_0 // 2,))])


def half_to_float(bits: np.ndarray) -> np.ndarray:
    """Convert raw IEEE-754 binary16 bit patterns (uint16) to float32.

    The three exponent classes are handled separately: all-zero exponent
    (zero and subnormals), all-ones exponent (infinity and NaN, payload kept)
    and normal numbers (exponent rebias by +112).
    """
    h = bits.astype(np.uint32)
    sign = (h >> 15) & 0x1
    exp = (h >> 10) & 0x1F
    mant = h & 0x3FF

    out = np.empty(h.shape, dtype=np.uint32)

    normal = (exp != 0) & (exp != 31)
    out[normal] = (sign[normal] << 31) | ((exp[normal] + 112) << 23) | (mant[normal] << 13)

    special = exp == 31
    out[special] = (sign[special] << 31) | (0xFF << 23) | (mant[special] << 13)

    small = exp == 0
    result = out.view(np.float32)
    # Subnormal halves are mant * 2^-24; exact in float32.
    magnitude = mant[small].astype(np.float32) * np.float32(2.0**-24)
    result[small] = np.where(sign[small] == 1, -magnitude, magnitude)
    return result


def _dequant_f32(raw: np.ndarray, n: int) -> np.ndarray:
    return raw.view("<f4")[:n].astype(np.float32)


def _dequant_f16(raw: np.ndarray, n: int) -> np.ndarray:
    return half_to_float(raw.view("<u2")[:n])


def _dequant_q4_0(raw: np.ndarray, n: int) -> np.ndarray:
    blocks = raw.view(_Q4_0_BLOCK)
    scales = blocks["d"].astype(np.float32)[:, None]
    qs = blocks["qs"]
    codes = np.empty((qs.shape[0], QK4_0), dtype=np.uint8)
    codes[:, 0::2] = qs & 0x0F
    codes[:, 1::2] = qs >> 4
    values = scales * (codes.astype(np.float32) - np.float32(8.0))
    return values.reshape(-1)[:n]


_DECODERS = {
    GGMLType.F32: _dequant_f32,
    GGMLType.F16: _dequant_f16,
    GGMLType.Q4_0: _dequant_q4_0,
}


def dense_shape(dims) -> tuple[int, ...]:
    """Row-major shape for GGML dims (innermost first).

    Rank 1 stays rank 1; rank 2 becomes (dims[1], dims[0]); higher ranks fold
    every outer dimension into the row axis.
    """
    if len(dims) == 1:
        return (dims[0],)
    rows = 1
    for d in dims[1:]:
        rows *= d
    return (rows, dims[0])


def dequantize(info: GGUFTensorInfo, buf) -> np.ndarray:
    """Materialize ``info`` from ``buf`` as a dense float32 array.

    Raises:
        EncodingUnsupportedError: encoding has no decoder.
        BoundsError: tensor extent lies outside ``buf``.
    """
    try:
        decoder = _DECODERS.get(GGMLType(info.ggml_type))
    except ValueError:
        decoder = None
    if decoder is None:
        raise EncodingUnsupportedError(
            f"Tensor {info.name!r} uses unsupported encoding {info.type_name}"
        )

    nbytes = info.nbytes
    end = info.data_start + nbytes
    if info.data_start < 0 or end > len(buf):
        raise BoundsError(
            f"Tensor {info.name!r} spans [{info.data_start}, {end}) beyond buffer of {len(buf)} bytes"
        )

    n = info.n_elements
    raw = np.frombuffer(buf, dtype=np.uint8, count=nbytes, offset=info.data_start)
    dense = decoder(raw, n)
    del raw
    return np.ascontiguousarray(dense, dtype=np.float32).reshape(dense_shape(info.dims))


def is_supported(ggml_type: int) -> bool:
    """True when ``dequantize`` has a decoder for ``ggml_type``."""
    return ggml_type in _DECODERS
