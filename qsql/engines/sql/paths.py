"""
Path resolution over the parsed parameter document.

Paths are dot-joined keys/indices (``params.user.id``, ``params.ids.0``).
A leading ``$`` segment refers to the document root and is ignored, so
``$.params.name`` and ``params.name`` are the same path.

``resolve`` distinguishes a missing path ``(None, False)`` from a present
JSON null ``(None, True)``; callers rely on that difference (``expr`` vs
``requiredCheck``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

_ROOT = "$"
_LENGTH = "#"


class JsonType(str, Enum):
    """Kind of a decoded JSON value."""

    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def json_type(value: Any) -> JsonType:
    """Classify a decoded JSON value. Raises TypeError for non-JSON values."""
    if value is None:
        return JsonType.NULL
    # bool before number: bool is an int subclass
    if isinstance(value, bool):
        return JsonType.BOOL
    if isinstance(value, (int, float)):
        return JsonType.NUMBER
    if isinstance(value, str):
        return JsonType.STRING
    if isinstance(value, (list, tuple)):
        return JsonType.ARRAY
    if isinstance(value, dict):
        return JsonType.OBJECT
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def join_path(*segments: Any) -> str:
    """Join path segments with '.' (segments may themselves contain dots)."""
    return ".".join(str(s) for s in segments)


def split_path(*segments: Any) -> list[str]:
    path = join_path(*segments)
    if path == "":
        return []
    parts = path.split(".")
    if parts and parts[0] == _ROOT:
        parts = parts[1:]
    return parts


def _step(node: Any, key: str) -> tuple[Any, bool]:
    kind = json_type(node)
    if kind is JsonType.OBJECT:
        if key in node:
            return node[key], True
        return None, False
    if kind is JsonType.ARRAY:
        if key == _LENGTH:
            return float(len(node)), True
        if not (key.isascii() and key.isdigit()):
            return None, False
        idx = int(key)
        if idx >= len(node):
            return None, False
        return node[idx], True
    # scalars have no children
    return None, False


def resolve(doc: Any, *segments: Any) -> tuple[Any, bool]:
    """
    Resolve a dot-joined path against *doc*.

    Returns ``(value, True)`` when the path exists (value may be None for a
    JSON null) and ``(None, False)`` otherwise. An empty path never exists.
    """
    parts = split_path(*segments)
    if not parts:
        return None, False
    node = doc
    for key in parts:
        node, ok = _step(node, key)
        if not ok:
            return None, False
    return node, True
