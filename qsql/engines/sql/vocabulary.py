"""
Function table bound into compiled templates.

The table is plain configuration handed to ``SQLTemplateEngine``: an
immutable name -> SqlFunction mapping. ``DEFAULT_FUNCTIONS`` is the standard
vocabulary; build another with ``function_table(...)`` to run an engine with
a restricted or extended set of functions.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from qsql.engines.sql import functions, validators


@dataclass(frozen=True)
class SqlFunction:
    """
    One template function.

    - ``func``: implementation
    - ``min_args`` / ``max_args``: positional arity as written in templates
      (``max_args=None`` is variadic)
    - ``stateful``: ``func`` takes the ExecutionState as first argument
    - ``path_start``: index of the first path segment argument, if any
    - ``fragment``: the return value is SQL text safe to emit
    """

    name: str
    func: Callable[..., Any]
    min_args: int = 0
    max_args: int | None = None
    stateful: bool = True
    path_start: int | None = None
    fragment: bool = True

    def check_arity(self, count: int) -> str | None:
        """Return an error message when *count* positional args do not fit."""
        if count < self.min_args:
            return f"{self.name}() takes at least {self.min_args} argument(s), got {count}"
        if self.max_args is not None and count > self.max_args:
            return f"{self.name}() takes at most {self.max_args} argument(s), got {count}"
        return None


def function_table(*entries: SqlFunction) -> Mapping[str, SqlFunction]:
    """Build an immutable name -> SqlFunction mapping."""
    return MappingProxyType({f.name: f for f in entries})


DEFAULT_FUNCTIONS: Mapping[str, SqlFunction] = function_table(
    # conditions
    SqlFunction("expr", functions.expr, path_start=2),
    SqlFunction("optExpr", functions.opt_expr, path_start=2),
    SqlFunction("and", functions.and_),
    SqlFunction("or", functions.or_),
    # values
    SqlFunction("val", functions.val, min_args=1, path_start=0),
    SqlFunction("getValue", functions.get_value, min_args=1, path_start=0, fragment=False),
    SqlFunction("isEmpty", functions.is_empty, min_args=1, max_args=1, stateful=False, fragment=False),
    SqlFunction("printf", functions.printf, min_args=1, stateful=False, fragment=False),
    # validators: fieldName, code, message, *path (len/regex take bounds/pattern first)
    SqlFunction("requiredCheck", validators.required_check, min_args=4, path_start=3),
    SqlFunction("strCheck", validators.str_check, min_args=4, path_start=3),
    SqlFunction("intCheck", validators.int_check, min_args=4, path_start=3),
    SqlFunction("floatCheck", validators.float_check, min_args=4, path_start=3),
    SqlFunction("regexCheck", validators.regex_check, min_args=5, path_start=4),
    SqlFunction("strLenCheck", validators.str_len_check, min_args=6, path_start=5),
    SqlFunction("arrLenCheck", validators.arr_len_check, min_args=6, path_start=5),
)
