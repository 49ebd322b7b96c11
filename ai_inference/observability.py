# ai_inference/observability.py
"""
Observability helpers: step timers and report → dict conversion.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict

import numpy as np


@dataclass
class Timer:
    """Context manager measuring a duration in milliseconds.

    Used around model loading, prefill and each decode step.
    """

    name: str
    start: float = 0.0
    duration_ms: float = 0.0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start) * 1000.0

    def rate(self, count: int) -> float:
        """Items per second over the measured span (0.0 when nothing was timed)."""
        if self.duration_ms <= 0.0:
            return 0.0
        return count / (self.duration_ms / 1000.0)


def to_dict(obj: Any) -> Dict[str, Any] | list[Any] | Any:
    """Recursively convert dataclasses (and numpy values) to JSON-friendly objects."""
    if hasattr(obj, "__dataclass_fields__"):
        d = asdict(obj)
        return {k: to_dict(v) for k, v in d.items()}
    if isinstance(obj, (list, tuple)):
        return [to_dict(x) for x in obj]
    if isinstance(obj, dict):
        return {k: to_dict(v) for k, v in obj.items()}
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    return obj
