"""
Per-call execution state threaded through template rendering.

A fresh ExecutionState is created for every ``Template.execute`` call and
handed to the vocabulary functions through the Jinja2 render context. It is
never shared between calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from qsql.engines.sql.paths import resolve
from qsql.engines.sql.stmt import ValidatorError

# Render-context key holding the ExecutionState. It is not an environment global,
# so a template that names it fails to compile.
STATE_KEY = "__qsql_state__"

PLACEHOLDER = "?"


@dataclass
class ExecutionState:
    data: Any
    args: list[Any] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    validator_errors: list[ValidatorError] = field(default_factory=list)

    def lookup(self, *paths: Any) -> tuple[Any, bool]:
        return resolve(self.data, *paths)

    def bind(self, value: Any) -> str:
        """Append *value* to args and return its placeholder."""
        self.args.append(value)
        return PLACEHOLDER

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_validator_error(self, error: ValidatorError) -> None:
        self.validator_errors.append(error)
