"""Emptiness checks shared by completion percentages and auto-save."""

from __future__ import annotations

from typing import Any


def is_empty_value(value: object) -> bool:
    """Empty strings/collections and None are empty; 0 and False are answers."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (int, float, bool)):
        return False
    if isinstance(value, dict):
        if not value:
            return True
        return all(is_empty_value(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        if not value:
            return True
        return all(is_empty_value(v) for v in value)
    return False


def has_meaningful_data(values: dict[str, Any] | None) -> bool:
    return any(not is_empty_value(v) for v in (values or {}).values())
