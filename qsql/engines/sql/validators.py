"""
Field validator functions (requiredCheck, strCheck, intCheck, ...).

Validators are a side channel: they always render as an empty fragment and
never change the SQL text or its arguments. A failed check appends one
ValidatorError to the execution state; checks on the same field accumulate
independently.

Except for ``requiredCheck``, an absent path passes: combine a type/length
check with ``requiredCheck`` when the field is mandatory.

Note: JSON numbers are decoded as floats, so ``intCheck`` fails for every
number taken from the parameter document.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

from qsql.engines.sql.functions import EMPTY, SqlFragment
from qsql.engines.sql.paths import JsonType, join_path, json_type
from qsql.engines.sql.state import ExecutionState
from qsql.engines.sql.stmt import (
    VALIDATOR_ARR_LEN,
    VALIDATOR_FLOAT,
    VALIDATOR_INT,
    VALIDATOR_REG,
    VALIDATOR_REQUIRED,
    VALIDATOR_STR,
    VALIDATOR_STR_LEN,
    ValidatorError,
)


def _fail(
    state: ExecutionState,
    typ: str,
    field_name: str,
    code: str,
    message: str,
    paths: tuple[Any, ...],
) -> SqlFragment:
    state.add_validator_error(
        ValidatorError(
            type=typ,
            field_name=field_name,
            code=code,
            message=message,
            path=join_path(*paths),
        )
    )
    return EMPTY


def _out_of_bounds(length: int, min_len: int | None, max_len: int | None) -> bool:
    if min_len is not None and length < min_len:
        return True
    if max_len is not None and length > max_len:
        return True
    return False


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def required_check(
    state: ExecutionState, field_name: str, code: str, message: str, *paths: Any
) -> SqlFragment:
    """Fail when the path is absent. A present JSON null passes."""
    _, exists = state.lookup(*paths)
    if not exists:
        return _fail(state, VALIDATOR_REQUIRED, field_name, code, message, paths)
    return EMPTY


def str_check(
    state: ExecutionState, field_name: str, code: str, message: str, *paths: Any
) -> SqlFragment:
    value, exists = state.lookup(*paths)
    if exists and json_type(value) is not JsonType.STRING:
        return _fail(state, VALIDATOR_STR, field_name, code, message, paths)
    return EMPTY


def int_check(
    state: ExecutionState, field_name: str, code: str, message: str, *paths: Any
) -> SqlFragment:
    value, exists = state.lookup(*paths)
    if not exists:
        return EMPTY
    if json_type(value) is not JsonType.NUMBER or not isinstance(value, int):
        return _fail(state, VALIDATOR_INT, field_name, code, message, paths)
    return EMPTY


def float_check(
    state: ExecutionState, field_name: str, code: str, message: str, *paths: Any
) -> SqlFragment:
    value, exists = state.lookup(*paths)
    if exists and json_type(value) is not JsonType.NUMBER:
        return _fail(state, VALIDATOR_FLOAT, field_name, code, message, paths)
    return EMPTY


def str_len_check(
    state: ExecutionState,
    min_len: int | None,
    max_len: int | None,
    field_name: str,
    code: str,
    message: str,
    *paths: Any,
) -> SqlFragment:
    """UTF-8 byte length of a string within ``[min_len, max_len]``; None is unbounded."""
    value, exists = state.lookup(*paths)
    if not exists:
        return EMPTY
    if json_type(value) is not JsonType.STRING or _out_of_bounds(
        len(value.encode("utf-8")), min_len, max_len
    ):
        return _fail(state, VALIDATOR_STR_LEN, field_name, code, message, paths)
    return EMPTY


def arr_len_check(
    state: ExecutionState,
    min_len: int | None,
    max_len: int | None,
    field_name: str,
    code: str,
    message: str,
    *paths: Any,
) -> SqlFragment:
    """Element count of an array within ``[min_len, max_len]``; None is unbounded."""
    value, exists = state.lookup(*paths)
    if not exists:
        return EMPTY
    if json_type(value) is not JsonType.ARRAY or _out_of_bounds(len(value), min_len, max_len):
        return _fail(state, VALIDATOR_ARR_LEN, field_name, code, message, paths)
    return EMPTY


def regex_check(
    state: ExecutionState,
    pattern: str,
    field_name: str,
    code: str,
    message: str,
    *paths: Any,
) -> SqlFragment:
    """String must contain a match for *pattern* (``re.search``)."""
    value, exists = state.lookup(*paths)
    if not exists:
        return EMPTY
    try:
        regex = _compile_pattern(pattern)
    except re.error as e:
        state.add_error(f"regexCheck: invalid pattern {pattern!r} for {field_name!r}: {e}")
        return EMPTY
    if json_type(value) is not JsonType.STRING or regex.search(value) is None:
        return _fail(state, VALIDATOR_REG, field_name, code, message, paths)
    return EMPTY
