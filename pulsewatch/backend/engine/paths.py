"""
engine/paths.py

Dot-path lookup over the plain nested mapping produced by
SystemMetricsSnapshot.as_metrics().

    resolve_metric_path({"memory": {"used_percent": 42.0}}, "memory.used_percent")
    → 42.0

Anything that does not lead to a finite number resolves to None, which the
engine treats as "no value — the rule does not fire this cycle".
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any


def resolve_metric_path(metrics: Mapping[str, Any], path: str) -> float | None:
    """Return the numeric value at ``path`` or None if it cannot be resolved."""
    if not path:
        return None

    value: Any = metrics
    for key in path.split("."):
        if not isinstance(value, Mapping) or key not in value:
            return None
        value = value[key]

    # bool is an int subclass, but a flag is not a metric
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value
