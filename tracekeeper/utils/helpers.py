"""Helper functions for span ids and tag auditing."""

from __future__ import annotations

from typing import Any

MAX_ID = 2 ** 64 - 1


def format_id(id_value: int) -> str:
    """
    Format a trace or span id for propagation.

    Args:
        id_value: 64-bit unsigned id

    Returns:
        Decimal string
    """
    return str(id_value)


def parse_id(raw: Any) -> int:
    """
    Parse a propagated trace or span id.

    Accepts integers and decimal strings (surrounding whitespace allowed).

    Raises:
        ValueError: if the value is missing, not decimal, or outside 64 bits
    """
    if isinstance(raw, bool):
        raise ValueError(f"invalid id: {raw!r}")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"invalid id: {raw!r}")
        value = int(text)
    else:
        raise ValueError(f"invalid id: {raw!r}")
    if not 0 <= value <= MAX_ID:
        raise ValueError(f"id out of range: {raw!r}")
    return value


def parse_sampling_priority(raw: Any) -> int:
    """
    Parse a propagated sampling priority (signed integer).

    Raises:
        ValueError: if the value is not an integer
    """
    if isinstance(raw, bool):
        raise ValueError(f"invalid sampling priority: {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if not text.isascii():
            raise ValueError(f"invalid sampling priority: {raw!r}")
        return int(text)
    raise ValueError(f"invalid sampling priority: {raw!r}")


def audit_url(url: str) -> str:
    """Strip the query string from a URL tag value."""
    return url.split("?", 1)[0]
