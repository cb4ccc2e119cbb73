"""
Exceptions raised by the SQL template engine.

Only two failures are raised: a template that cannot be compiled and a
parameter document that cannot be used. Everything else (missing values,
short BETWEEN operands, empty logical groups, failed field checks) is
accumulated on the returned SQLStmt.
"""

from __future__ import annotations


class CompileError(ValueError):
    """Raised when a SQL template cannot be compiled (syntax, unknown name, arity)."""

    def __init__(self, message: str, *, name: str | None = None, lineno: int | None = None) -> None:
        self.name = name
        self.lineno = lineno
        where = ""
        if name:
            where = f" in template {name!r}"
            if lineno:
                where += f" line {lineno}"
        super().__init__(f"SQL template compile error{where}: {message}")


class ExecutionError(ValueError):
    """Raised when a compiled template cannot be executed with the given parameters."""

    pass
