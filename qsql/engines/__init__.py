"""
Engines: SQL template engine (Jinja2).
"""

from qsql.engines.sql import SQLTemplateEngine, compile_template, execute

__all__ = [
    "SQLTemplateEngine",
    "compile_template",
    "execute",
]
