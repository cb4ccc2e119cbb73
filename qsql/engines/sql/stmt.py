"""
Result types of a template execution: SQLStmt and ValidatorError.

``SQLStmt.sql`` always uses ``?`` (qmark) placeholders; ``with_paramstyle``
rewrites them for drivers that expect ``%s``, ``:1`` or ``$1``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

VALIDATOR_REQUIRED = "required"
VALIDATOR_STR = "str"
VALIDATOR_INT = "int"
VALIDATOR_FLOAT = "float"
VALIDATOR_STR_LEN = "strLen"
VALIDATOR_ARR_LEN = "arrLen"
VALIDATOR_REG = "reg"

PARAMSTYLES = ("qmark", "format", "numeric", "dollar")


class ValidatorError(BaseModel):
    """One failed field check. Serializes as {type, field, code, message, path}."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    field_name: str = Field(alias="field")
    code: str
    message: str
    path: str = ""

    def __str__(self) -> str:
        return (
            f"validator error: {self.type}, code: {self.code}, "
            f"msg: {self.message}, paths: {self.path}"
        )


def _scan_placeholders(sql: str) -> list[int]:
    """Offsets of ``?`` placeholders outside quoted literals and comments."""
    found: list[int] = []
    i = 0
    length = len(sql)

    while i < length:
        ch = sql[i]

        if ch in ("'", '"', "`"):
            quote = ch
            i += 1
            while i < length:
                c = sql[i]
                if c == quote:
                    if i + 1 < length and sql[i + 1] == quote:
                        i += 2
                        continue
                    i += 1
                    break
                if c == "\\" and i + 1 < length:
                    i += 2
                    continue
                i += 1
            continue

        if ch == "-" and i + 1 < length and sql[i + 1] == "-":
            end = sql.find("\n", i)
            i = length if end == -1 else end + 1
            continue

        if ch == "/" and i + 1 < length and sql[i + 1] == "*":
            end = sql.find("*/", i + 2)
            i = length if end == -1 else end + 2
            continue

        if ch == "?":
            found.append(i)
        i += 1

    return found


class SQLStmt(BaseModel):
    """Rendered statement: SQL text, positional args and accumulated diagnostics."""

    raw_template: str = ""
    sql: str = ""
    args: list[Any] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    validator_errors: list[ValidatorError] = Field(default_factory=list)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_validator_errors(self) -> bool:
        return len(self.validator_errors) > 0

    def placeholder_count(self) -> int:
        return len(_scan_placeholders(self.sql))

    def with_paramstyle(self, style: str = "qmark") -> tuple[str, list[Any]]:
        """
        Return ``(sql, args)`` with placeholders in the given DB-API paramstyle.

        - ``qmark``: ``?`` (sqlite3), unchanged
        - ``format``: ``%s`` (psycopg, pymysql); literal ``%`` is doubled
        - ``numeric``: ``:1, :2, ...``
        - ``dollar``: ``$1, $2, ...`` (asyncpg)
        """
        if style not in PARAMSTYLES:
            raise ValueError(f"Unsupported paramstyle: {style!r}. Expected one of {PARAMSTYLES}")
        args = list(self.args)
        if style == "qmark":
            return self.sql, args

        positions = set(_scan_placeholders(self.sql))
        out: list[str] = []
        n = 0
        for i, ch in enumerate(self.sql):
            if i in positions:
                n += 1
                if style == "format":
                    out.append("%s")
                elif style == "numeric":
                    out.append(f":{n}")
                else:
                    out.append(f"${n}")
            elif ch == "%" and style == "format":
                out.append("%%")
            else:
                out.append(ch)
        return "".join(out), args
