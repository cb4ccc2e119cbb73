"""
qsql: compile SQL templates with typed placeholders, execute them against a
JSON parameter document, get parameterized SQL plus positional args.

    from qsql import compile_template

    tpl = compile_template("user", 'SELECT * FROM users WHERE {expr("name", "=", "params.name")}')
    stmt = tpl.execute('{"params": {"name": "张三"}}')
    stmt.sql   # SELECT * FROM users WHERE name = ?
    stmt.args  # ['张三']
"""

from qsql.core.vars import JSONVars, ParamsProvider, ValueVars
from qsql.engines.sql import (
    CompileError,
    ExecutionError,
    SQLStmt,
    SQLTemplateEngine,
    Template,
    ValidatorError,
    clean_sql,
    compile_template,
    execute,
    execute_with_provider,
)

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
    "ParamsProvider",
    "ValueVars",
    "JSONVars",
]
