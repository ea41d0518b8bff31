# checkpoint_inspector/reporting/json_reporter.py
"""
JSON reporting utilities (optional).
"""

from __future__ import annotations

import json
from typing import Any, Dict

from checkpoint_inspector.observability import to_dict


def to_json_dict(report: Any) -> Dict[str, Any]:
    """Convert a report (dataclasses, enums, errors, dicts) to plain JSON data."""
    return to_dict(report)


def write_json(report: Any, path: str) -> None:
    """Write report to a file as pretty JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_json_dict(report), f, indent=2, ensure_ascii=False)
