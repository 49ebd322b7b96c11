# ai_inference/analysis/base.py
"""
Inspection report models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Finding:
    """Single check result."""

    name: str
    ok: bool
    details: str = ""
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TensorSummary:
    name: str
    type: str
    dims: List[int]
    start: int
    end: Optional[int]  # None when the encoding has no size rule
    nbytes: Optional[int]


@dataclass
class InspectionReport:
    """Everything `aiinf inspect` shows about a model file."""

    file_path: str
    file_size: int
    version: int = 0
    alignment: int = 0
    data_offset: int = 0
    architecture: Optional[Dict[str, Any]] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    tensors: List[TensorSummary] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)

    def add(self, name: str, ok: bool, details: str = "", **context: Any) -> None:
        self.findings.append(Finding(name=name, ok=ok, details=details, context=context))

    @property
    def ok(self) -> bool:
        return all(f.ok for f in self.findings) if self.findings else True
