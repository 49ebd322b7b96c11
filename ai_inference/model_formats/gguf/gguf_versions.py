# ai_inference/model_formats/gguf/gguf_versions.py
"""
GGUF v2/v3 container parsing (little-endian).

Decodes the header, the typed key/value metadata section and the tensor
descriptor table. Tensor bytes are never touched here; descriptors carry the
absolute offset the dequantizer reads from.
"""

from __future__ import annotations

import struct
from typing import Any, Dict, List, Set, Tuple

from loguru import logger

from ai_inference.errors import FormatError, MetadataTypeError
from ai_inference.model_formats.gguf.gguf import (
    DEFAULT_ALIGNMENT,
    GGUF_MAGIC,
    MAX_DIMS,
    SUPPORTED_VERSIONS,
    GGUFKV,
    GGUFModel,
    GGUFTensorInfo,
)

# GGUF type codes
T_UINT8 = 0
T_INT8 = 1
T_UINT16 = 2
T_INT16 = 3
T_UINT32 = 4
T_INT32 = 5
T_FLOAT32 = 6
T_BOOL = 7
T_STRING = 8
T_ARRAY = 9
T_UINT64 = 10
T_INT64 = 11
T_FLOAT64 = 12

SCALAR_FORMATS = {
    T_UINT8: "B",
    T_INT8: "b",
    T_UINT16: "H",
    T_INT16: "h",
    T_UINT32: "I",
    T_INT32: "i",
    T_FLOAT32: "f",
    T_BOOL: "?",
    T_UINT64: "Q",
    T_INT64: "q",
    T_FLOAT64: "d",
}

INTEGER_TYPES = frozenset({T_UINT8, T_INT8, T_UINT16, T_INT16, T_UINT32, T_INT32, T_UINT64, T_INT64})

TYPE_NAMES = {
    T_UINT8: "UInt8",
    T_INT8: "Int8",
    T_UINT16: "UInt16",
    T_INT16: "Int16",
    T_UINT32: "UInt32",
    T_INT32: "Int32",
    T_FLOAT32: "Float32",
    T_BOOL: "Bool",
    T_STRING: "String",
    T_ARRAY: "Array",
    T_UINT64: "UInt64",
    T_INT64: "Int64",
    T_FLOAT64: "Float64",
}


def _unpack(buf, off: int, fmt: str) -> tuple[tuple[Any, ...], int]:
    size = struct.calcsize(fmt)
    if off + size > len(buf):
        raise FormatError(f"Read beyond EOF at offset {off} ({size} bytes wanted)")
    return struct.unpack_from(fmt, buf, off), off + size


def _u32(buf, off: int) -> tuple[int, int]:
    (v,), off = _unpack(buf, off, "<I")
    return v, off


def _u64(buf, off: int) -> tuple[int, int]:
    (v,), off = _unpack(buf, off, "<Q")
    return v, off


def _bytes(buf, off: int, n: int) -> tuple[bytes, int]:
    if off + n > len(buf):
        raise FormatError(f"Read beyond EOF at offset {off} ({n} bytes wanted)")
    return bytes(buf[off : off + n]), off + n


def _str(buf, off: int) -> tuple[str, int]:
    ln, off = _u64(buf, off)
    s, off = _bytes(buf, off, ln)
    try:
        return s.decode("utf-8", "strict"), off
    except UnicodeDecodeError as e:
        raise FormatError(f"Invalid UTF-8 string at offset {off - ln}: {e}") from e


def _align_up(x: int, a: int) -> int:
    return (x + (a - 1)) & ~(a - 1)


def _read_scalar(buf, off: int, type_code: int) -> tuple[Any, int]:
    if type_code == T_STRING:
        return _str(buf, off)
    fmt = SCALAR_FORMATS.get(type_code)
    if fmt is None:
        raise MetadataTypeError(f"Unknown GGUF value type {type_code}")
    (v,), off = _unpack(buf, off, "<" + fmt)
    return v, off


def _read_array(buf, off: int, elem_type: int, count: int) -> tuple[list[Any], int]:
    if elem_type == T_ARRAY:
        raise MetadataTypeError("Nested GGUF arrays are not supported")
    if elem_type == T_STRING:
        vals: list[Any] = []
        for _ in range(count):
            s, off = _str(buf, off)
            vals.append(s)
        return vals, off
    fmt = SCALAR_FORMATS.get(elem_type)
    if fmt is None:
        raise MetadataTypeError(f"Unknown GGUF array element type {elem_type}")
    # Fixed-width elements: check the whole run before unpacking it in one go.
    size = struct.calcsize(fmt) * count
    if off + size > len(buf):
        raise FormatError(f"Array of {count} x {TYPE_NAMES[elem_type]} runs beyond EOF")
    vals = list(struct.unpack_from(f"<{count}{fmt}", buf, off))
    return vals, off + size


def _parse_kv(buf, off: int) -> tuple[GGUFKV, int]:
    start = off
    key, off = _str(buf, off)
    type_code, off = _u32(buf, off)
    if type_code == T_ARRAY:
        elem_type, off = _u32(buf, off)
        count, off = _u64(buf, off)
        value, off = _read_array(buf, off, elem_type, count)
        return GGUFKV(key, elem_type, True, value, start, off), off
    value, off = _read_scalar(buf, off, type_code)
    return GGUFKV(key, type_code, False, value, start, off), off


def _parse_tensor_info(buf, off: int) -> tuple[Tuple[str, Tuple[int, ...], int, int], int]:
    name, off = _str(buf, off)
    n_dims, off = _u32(buf, off)
    if not 1 <= n_dims <= MAX_DIMS:
        raise FormatError(f"Tensor {name!r} has {n_dims} dimensions; expected 1..{MAX_DIMS}")
    dims: list[int] = []
    for _ in range(n_dims):
        d, off = _u64(buf, off)
        dims.append(int(d))
    ggml_type, off = _u32(buf, off)
    rel_off, off = _u64(buf, off)  # offset relative to data section
    return (name, tuple(dims), int(ggml_type), int(rel_off)), off


def _alignment(kv: Dict[str, GGUFKV]) -> int:
    item = kv.get("general.alignment")
    if item is None:
        return DEFAULT_ALIGNMENT
    v = item.value
    if item.is_array or item.type not in INTEGER_TYPES or v <= 0 or (v & (v - 1)) != 0:
        raise MetadataTypeError(f"general.alignment must be a positive power of two, got {v!r}")
    return int(v)


def parse_gguf(buf) -> GGUFModel:
    """Parse a GGUF container held in ``buf`` (bytes, bytearray or memoryview).

    Raises:
        FormatError: bad magic/version, truncation, malformed records.
        MetadataTypeError: unsupported value or array element type.
    """
    file_size = len(buf)
    if file_size < 8:
        raise FormatError("File too small for GGUF header")
    if bytes(buf[:4]) != GGUF_MAGIC:
        raise FormatError("Invalid magic; not GGUF")

    version, off = _u32(buf, 4)
    if version not in SUPPORTED_VERSIONS:
        raise FormatError(f"Unsupported GGUF version {version}; expected one of {SUPPORTED_VERSIONS}")

    n_tensors, off = _u64(buf, off)
    n_kv, off = _u64(buf, off)

    kv: Dict[str, GGUFKV] = {}
    for _ in range(n_kv):
        item, off = _parse_kv(buf, off)
        kv[item.key] = item
    kv_end = off

    alignment = _alignment(kv)

    records: List[Tuple[str, Tuple[int, ...], int, int]] = []
    seen: Set[str] = set()
    for _ in range(n_tensors):
        rec, off = _parse_tensor_info(buf, off)
        if rec[0] in seen:
            raise FormatError(f"Duplicate tensor name {rec[0]!r}")
        seen.add(rec[0])
        records.append(rec)
    tensor_info_end = off

    data_start = _align_up(off, alignment)
    if data_start > file_size:
        raise FormatError("Data section offset beyond EOF")

    tensors = [
        GGUFTensorInfo(
            name=name,
            dims=dims,
            ggml_type=ggml_type,
            offset=rel_off,
            data_start=data_start + rel_off,
        )
        for name, dims, ggml_type, rel_off in records
    ]

    logger.debug(
        "Parsed GGUF v{version}: {n_kv} kv, {n_tensors} tensors, data @ {data}",
        version=version,
        n_kv=len(kv),
        n_tensors=len(tensors),
        data=data_start,
    )
    return GGUFModel(
        version=version,
        alignment=alignment,
        kv=kv,
        tensors=tensors,
        kv_end_offset=kv_end,
        tensor_info_end_offset=tensor_info_end,
        data_offset=data_start,
        file_size=file_size,
    )
