# ai_inference/reporting/json_reporter.py
"""
JSON export of inspection reports.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from ai_inference.analysis.base import InspectionReport
from ai_inference.observability import to_dict


def to_json_dict(report: InspectionReport) -> Dict[str, Any]:
    """Convert an InspectionReport to a JSON-serializable dict, with the overall verdict."""
    data = to_dict(report)
    data["ok"] = report.ok
    return data


def write_json(report: InspectionReport, path: str) -> None:
    """Write report to a file as pretty JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_json_dict(report), f, indent=2)
