"""
SQL template engine (Jinja2): templates in, prepared-statement SQL + args out.

Exports: SQLTemplateEngine, Template, compile_template, execute,
execute_with_provider, SQLStmt, ValidatorError, CompileError, ExecutionError,
clean_sql, check_template_safety, ParamValue, SqlFragment.
"""

from qsql.engines.sql.errors import CompileError, ExecutionError
from qsql.engines.sql.formatter import clean_sql
from qsql.engines.sql.functions import ParamValue, SqlFragment
from qsql.engines.sql.safety import check_template_safety
from qsql.engines.sql.stmt import SQLStmt, ValidatorError
from qsql.engines.sql.template_engine import (
    SQLTemplateEngine,
    Template,
    compile_template,
    execute,
    execute_with_provider,
)
from qsql.engines.sql.vocabulary import DEFAULT_FUNCTIONS, SqlFunction, function_table

__all__ = [
    "SQLTemplateEngine",
    "Template",
    "compile_template",
    "execute",
    "execute_with_provider",
    "SQLStmt",
    "ValidatorError",
    "CompileError",
    "ExecutionError",
    "clean_sql",
    "ParamValue",
    "SqlFragment",
    "check_template_safety",
    "DEFAULT_FUNCTIONS",
    "SqlFunction",
    "function_table",
]
