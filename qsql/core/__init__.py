"""
Cross-cutting pieces: settings and parameter document builders.
"""

from qsql.core.config import Settings, settings
from qsql.core.vars import JSONVars, ParamsProvider, ValueVars

__all__ = [
    "Settings",
    "settings",
    "ParamsProvider",
    "ValueVars",
    "JSONVars",
]
