"""Utility functions for tracekeeper."""

from tracekeeper.utils.helpers import (
    audit_url,
    format_id,
    parse_id,
    parse_sampling_priority,
)
from tracekeeper.utils.values import to_analytics_metric, to_bool, to_string

__all__ = [
    "audit_url",
    "format_id",
    "parse_id",
    "parse_sampling_priority",
    "to_analytics_metric",
    "to_bool",
    "to_string",
]
