"""Conversion of tag values into meta strings, error flags and metrics."""

from __future__ import annotations

import json
import numbers
from collections.abc import Mapping
from typing import Any, Optional

NULL_STRING = "nullptr"

_FALSY_STRINGS = frozenset({"0", "false", ""})


def _to_json_value(value: Any) -> Any:
    """Recursively turn a tag value into something json.dumps accepts."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(k): _to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json_value(item) for item in value]
    return _best_effort_str(value)


def _best_effort_str(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return ""


def to_string(value: Any) -> str:
    """
    Render a tag value as the string stored in span meta.

    Scalars use their natural form (``True`` -> ``"true"``, ``None`` ->
    ``"nullptr"``); lists and mappings are rendered as compact JSON.
    Never raises.
    """
    if value is None:
        return NULL_STRING
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        return repr(float(value))
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (Mapping, list, tuple)):
        try:
            return json.dumps(_to_json_value(value), separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError):
            return _best_effort_str(value)
    return _best_effort_str(value)


def to_bool(value: Any) -> bool:
    """Truthiness used for the ``error`` tag."""
    if isinstance(value, bool):
        return value
    if isinstance(value, numbers.Real):
        return value != 0
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value not in _FALSY_STRINGS
    return True


def to_analytics_metric(value: Any) -> Optional[float]:
    """
    Convert an ``analytics.event`` tag value into its sample-rate metric.

    Returns None when the value is rejected: numbers outside [0, 1],
    strings that are not float literals, and any non-scalar value.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, numbers.Real):
        metric = float(value)
    elif isinstance(value, str):
        if value == "":
            return 0.0
        try:
            metric = float(value)
        except ValueError:
            return None
    else:
        return None
    if 0.0 <= metric <= 1.0:
        return metric
    return None
