"""
Parameter document builders.

Templates read their values from one JSON document, conventionally shaped as
``{"params": {...}, "sys": {...}, "users": {...}}``:

- ``params``: request/query parameters
- ``sys``: system values (current company, platform, ...)
- ``users``: the calling user

Anything with a ``json() -> str`` method can be passed to
``Template.execute_with_provider``. ``ValueVars`` builds the document from
Python values; ``JSONVars`` assembles it from raw JSON fragments.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ParamsProvider(Protocol):
    def json(self) -> str:
        """Return the parameter document as a JSON object string."""
        ...


def _set_path(root: dict[str, Any], path: str, value: Any) -> None:
    """
    Set *value* at dotted *path*, creating intermediate objects.

    A numeric segment indexes an existing array (padding with nulls);
    ``-1`` appends to it.
    """
    keys = path.split(".")
    if not path or any(k == "" for k in keys):
        raise ValueError(f"Invalid path: {path!r}")

    node: Any = root
    for i, key in enumerate(keys):
        last = i == len(keys) - 1
        if isinstance(node, list):
            if key == "-1":
                idx = len(node)
            elif key.isdigit():
                idx = int(key)
            else:
                raise ValueError(f"Invalid array index {key!r} in path {path!r}")
            while len(node) <= idx:
                node.append(None)
            if last:
                node[idx] = value
            else:
                if not isinstance(node[idx], (dict, list)):
                    node[idx] = {}
                node = node[idx]
            continue

        if last:
            node[key] = value
        else:
            child = node.get(key)
            if not isinstance(child, (dict, list)):
                child = {}
                node[key] = child
            node = child


class _VarsBuilder:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def json(self) -> str:
        """Return the document; ``{}`` when nothing was set."""
        if not self._data:
            return "{}"
        return json.dumps(self._data, ensure_ascii=False, separators=(",", ":"))


class ValueVars(_VarsBuilder):
    """
    Incremental key/value builder.

    Example::

        v = ValueVars()
        v.params({"name": "张三"})
        v.set("sys.company_id", 218908)
        tpl.execute_with_provider(v)
    """

    def set(self, path: str, value: Any) -> None:
        """Set a JSON-serialisable *value* at dotted *path*."""
        # normalise to plain JSON values; dates and other objects become strings
        _set_path(self._data, path, json.loads(json.dumps(value, default=str, allow_nan=False)))

    def params(self, value: Any) -> None:
        self.set("params", value)

    def sys(self, value: Any) -> None:
        self.set("sys", value)

    def users(self, value: Any) -> None:
        self.set("users", value)


class JSONVars(_VarsBuilder):
    """
    Builder from raw JSON fragments.

    Example::

        v = JSONVars()
        v.params('{"status": "active"}')
        v.set_raw("users.id", "42")
    """

    def set_raw(self, path: str, raw_json: str) -> None:
        """Set the parsed *raw_json* at dotted *path*. Raises ValueError on invalid JSON."""
        try:
            value = json.loads(raw_json)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid JSON for {path!r}: {e}") from e
        _set_path(self._data, path, value)

    def params(self, raw_json: str) -> None:
        self.set_raw("params", raw_json)

    def sys(self, raw_json: str) -> None:
        self.set_raw("sys", raw_json)

    def users(self, raw_json: str) -> None:
        self.set_raw("users", raw_json)
