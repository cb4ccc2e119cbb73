"""
Template function vocabulary: expr / optExpr / and / or / val and helpers.

Every vocabulary function receives the per-call ExecutionState as its first
argument (injected by the engine, never written in templates) and returns a
``SqlFragment``: text that is safe to emit because every value it refers to
was bound to a ``?`` placeholder on the state.

Fragments and arguments are produced in evaluation order, which for nested
calls such as ``and(expr(...), or(expr(...), expr(...)))`` is left-to-right,
depth-first; that is the order placeholders appear in the SQL text.
"""

from __future__ import annotations

from typing import Any

from qsql.engines.sql.paths import JsonType, join_path, json_type
from qsql.engines.sql.state import PLACEHOLDER, ExecutionState


class SqlFragment(str):
    """String subclass marking text produced by a vocabulary function.

    The engine's output callback passes a SqlFragment through unchanged and
    binds anything else as a placeholder.
    """


class ParamValue(str):
    """String read from the parameter document by ``getValue``.

    Never becomes SQL text: combinators and ``raw`` drop it with a
    diagnostic, the output callback binds it as a placeholder.
    """


def _fragment(text: str) -> SqlFragment:
    return SqlFragment(text)


def mark_params(value: Any) -> Any:
    """Wrap every string in *value* (keys included) as a ParamValue."""
    if isinstance(value, str):
        return ParamValue(value)
    if isinstance(value, (list, tuple)):
        return [mark_params(v) for v in value]
    if isinstance(value, dict):
        return {mark_params(k): mark_params(v) for k, v in value.items()}
    return value


def carries_param(value: Any) -> bool:
    if isinstance(value, ParamValue):
        return True
    if isinstance(value, (list, tuple)):
        return any(carries_param(v) for v in value)
    if isinstance(value, dict):
        return any(carries_param(k) or carries_param(v) for k, v in value.items())
    return False


def unmark_params(value: Any) -> Any:
    """Inverse of ``mark_params``: plain ``str`` values for binding."""
    if isinstance(value, ParamValue):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [unmark_params(v) for v in value]
    if isinstance(value, dict):
        return {unmark_params(k): unmark_params(v) for k, v in value.items()}
    return value


EMPTY = SqlFragment("")

_IN_OPS = ("IN", "NOT IN")
_BETWEEN_OPS = ("BETWEEN", "NOT BETWEEN")


# ---------------------------------------------------------------------------
# Expression builder
# ---------------------------------------------------------------------------


def _normalize(value: Any) -> list[Any]:
    """Array values expand element-wise; anything else is a one-element list."""
    kind = json_type(value)
    if kind is JsonType.ARRAY:
        return list(value)
    return [value]


def _placeholders(state: ExecutionState, field: str, op: str, values: list[Any]) -> SqlFragment:
    upper_op = op.strip().upper()
    if upper_op in _IN_OPS:
        marks = [state.bind(v) for v in values]
        return _fragment(f"{field} {op} ({', '.join(marks)})")
    if upper_op in _BETWEEN_OPS:
        if len(values) < 2:
            state.add_error(f"between: not enough values for {field!r}")
            return EMPTY
        low = state.bind(values[0])
        high = state.bind(values[1])
        return _fragment(f"{field} {op} {low} AND {high}")
    return _fragment(f"{field} {op} {state.bind(values[0])}")


def build_expr(state: ExecutionState, required: bool, *args: Any) -> SqlFragment:
    """
    Build ``field op ?`` (or its IN / BETWEEN form) from ``field, op, *path``.

    Generation never aborts: a missing value is bound as None (and reported
    when *required*), malformed calls still emit one nil-bound placeholder.
    """
    if not args:
        return EMPTY
    field = str(args[0])
    op = str(args[1]) if len(args) > 1 else ""
    if len(args) < 3:
        if required:
            state.add_error(f"expr: no values for {field!r}")
        return _placeholders(state, field, op, [None])

    paths = args[2:]
    value, exists = state.lookup(*paths)
    if not exists:
        if required:
            state.add_error(f"expr: no values for {field!r} at {join_path(*paths)!r}")
        return _placeholders(state, field, op, [None])

    values = _normalize(value)
    if not values:
        # explicit empty array: optional expressions drop out
        if not required:
            return EMPTY
        values = [None]
    return _placeholders(state, field, op, values)


def expr(state: ExecutionState, *args: Any) -> SqlFragment:
    """Required expression: a missing value is reported in ``errors``."""
    return build_expr(state, True, *args)


def opt_expr(state: ExecutionState, *args: Any) -> SqlFragment:
    """Optional expression: a missing value is bound as None without a diagnostic."""
    return build_expr(state, False, *args)


# ---------------------------------------------------------------------------
# Logical combinator
# ---------------------------------------------------------------------------


def combine(state: ExecutionState, logic: str, *conditions: Any) -> SqlFragment:
    """
    Join non-blank conditions with *logic* inside one pair of parentheses.

    Only fragments and template string literals are joined. Parameter values
    and non-string arguments are dropped with a diagnostic.
    """
    valid = []
    for cond in conditions:
        if cond is None:
            continue
        if carries_param(cond) or not isinstance(cond, str):
            kind = "parameter value" if carries_param(cond) else type(cond).__name__
            state.add_error(f"{logic}: dropped {kind} argument, only SQL conditions are joined")
            continue
        text = cond.strip()
        if text:
            valid.append(text)
    if not valid:
        state.add_error(f"{logic}: no valid conditions")
        return EMPTY
    return _fragment("(" + f" {logic} ".join(valid) + ")")


def and_(state: ExecutionState, *conditions: Any) -> SqlFragment:
    return combine(state, "and", *conditions)


def or_(state: ExecutionState, *conditions: Any) -> SqlFragment:
    return combine(state, "or", *conditions)


# ---------------------------------------------------------------------------
# Value injection and helpers
# ---------------------------------------------------------------------------


def val(state: ExecutionState, *paths: Any) -> SqlFragment:
    """
    Bind the value at *paths* (None when absent) and return ``?``.

    For literal values only (INSERT values, LIMIT/OFFSET). Drivers reject
    bound identifiers: pick table/column names and sort directions from an
    allow-list in the template instead.
    """
    value, _ = state.lookup(*paths)
    state.bind(value)
    return _fragment(PLACEHOLDER)


def get_value(state: ExecutionState, *paths: Any) -> Any:
    """Value at *paths* (None when absent); strings come back as ParamValue."""
    value, _ = state.lookup(*paths)
    return mark_params(value)


def is_empty(value: Any) -> bool:
    """None, "", [], {} and False are empty; numbers (including 0) are not."""
    try:
        kind = json_type(value)
    except TypeError:
        return False
    if kind is JsonType.NULL:
        return True
    if kind is JsonType.BOOL:
        return not value
    if kind in (JsonType.STRING, JsonType.ARRAY, JsonType.OBJECT):
        return len(value) == 0
    return False


def printf(fmt: str, *args: Any) -> str:
    text = fmt % args
    if carries_param(fmt) or carries_param(args):
        return ParamValue(text)
    return text
