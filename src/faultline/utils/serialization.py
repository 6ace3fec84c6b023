"""JSON serialization utilities."""

from __future__ import annotations

import enum


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, enum.Enum):
        return obj.value
    return str(obj)
