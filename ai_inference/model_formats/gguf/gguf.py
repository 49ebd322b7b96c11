# ai_inference/model_formats/gguf/gguf.py
"""
GGUF shared structures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ai_inference.model_formats.gguf.gguf_quantization import expected_size, type_name

GGUF_MAGIC = b"GGUF"
SUPPORTED_VERSIONS = (2, 3)
DEFAULT_ALIGNMENT = 32
MAX_DIMS = 4


@dataclass
class GGUFKV:
    key: str
    type: int  # element type for arrays
    is_array: bool
    value: Any
    offset_start: int
    offset_end: int


@dataclass
class GGUFTensorInfo:
    name: str
    dims: Tuple[int, ...]  # innermost first (GGML order)
    ggml_type: int
    offset: int  # relative to data section
    data_start: int  # absolute offset into the buffer

    @property
    def n_dims(self) -> int:
        return len(self.dims)

    @property
    def n_elements(self) -> int:
        """Total number of elements in the tensor."""
        p = 1
        for d in self.dims:
            p *= d
        return p

    @property
    def nbytes(self) -> Optional[int]:
        """Stored size in bytes, or None for encodings without a size rule."""
        return expected_size(self.ggml_type, self.n_elements)

    @property
    def type_name(self) -> str:
        return type_name(self.ggml_type)


@dataclass
class GGUFModel:
    version: int
    alignment: int
    kv: Dict[str, GGUFKV]
    tensors: List[GGUFTensorInfo]
    kv_end_offset: int
    tensor_info_end_offset: int
    data_offset: int  # absolute offset of data section
    file_size: int

    @property
    def n_kv(self) -> int:
        return len(self.kv)

    @property
    def n_tensors(self) -> int:
        return len(self.tensors)

    @property
    def metadata(self) -> Dict[str, Any]:
        """Plain key → decoded value mapping."""
        return {k: v.value for k, v in self.kv.items()}

    @property
    def tensor_map(self) -> Dict[str, GGUFTensorInfo]:
        """Tensor descriptors keyed by name (names are unique)."""
        return {t.name: t for t in self.tensors}
