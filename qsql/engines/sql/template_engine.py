"""
SQL template engine (Jinja2) producing prepared-statement SQL + args.

Templates use single braces for output and Jinja2 blocks for control flow::

    SELECT * FROM orders WHERE company_id = {val("sys.company_id")}
    {% if not isEmpty(getValue("params.status")) %}
      AND {expr("status", "=", "params.status")}
    {% endif %}
    AND {or(expr("name", "LIKE", "params.q"), expr("code", "LIKE", "params.q"))}

Compile once with ``SQLTemplateEngine.compile`` (or ``compile_template``),
then call ``Template.execute(params_json)`` per request. Every value ends up
in ``SQLStmt.args`` behind a ``?`` placeholder; no string from the parameter
document is spliced into the SQL text.

Security: the output callback binds every ``{ }`` value that is not a
fragment returned by a vocabulary function, so ``{getValue("params.x")}``
renders as ``?``. ``getValue`` returns document strings as ``ParamValue``,
which ``and``/``or`` and ``| raw`` refuse. Fragment calls may only be
output, assigned, passed to fragment calls or macros, or filtered through
``raw``; anything else (``{expr(...) | lower}``) is a compile error. Use
``| raw`` only for allow-listed identifiers chosen in the template itself.

Performance: compiled templates are cached per engine in an LRU keyed by
template name and source hash.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from jinja2 import (
    Environment,
    StrictUndefined,
    TemplateError,
    TemplateSyntaxError,
    Undefined,
    meta,
    nodes,
)
from jinja2 import Template as JinjaTemplate
from jinja2 import pass_context
from jinja2.runtime import Context

from qsql.core.config import settings
from qsql.core.vars import ParamsProvider
from qsql.engines.sql.errors import CompileError, ExecutionError
from qsql.engines.sql.formatter import clean_sql
from qsql.engines.sql.functions import EMPTY, SqlFragment, carries_param, unmark_params
from qsql.engines.sql.paths import join_path
from qsql.engines.sql.state import STATE_KEY, ExecutionState
from qsql.engines.sql.stmt import SQLStmt
from qsql.engines.sql.vocabulary import DEFAULT_FUNCTIONS, SqlFunction

_log = logging.getLogger(__name__)

_PREVIEW_LEN = 500

_COMPILE_HINT = (
    "Tip: nest calls inside one pair of braces, e.g. {and(expr(...), expr(...))}, "
    "not {and({expr(...)})}; control flow uses {% if ... %}...{% endif %}."
)


def _preview(text: str) -> str:
    return text[:_PREVIEW_LEN] + "..." if len(text) > _PREVIEW_LEN else text


# ---------------------------------------------------------------------------
# Jinja2 environment
# ---------------------------------------------------------------------------


@pass_context
def _bind_output(context: Context, value: Any) -> str:
    """Jinja2 ``finalize`` callback: emit fragments, bind everything else as ``?``."""
    if isinstance(value, SqlFragment):
        return value
    if isinstance(value, Undefined):
        # StrictUndefined raises UndefinedError
        str(value)
    state: ExecutionState = context[STATE_KEY]
    return state.bind(unmark_params(value))


@pass_context
def sql_raw(context: Context, value: Any) -> SqlFragment:
    """Emit a value verbatim (``{ col | raw }``).

    For identifiers picked from an allow-list inside the template. Strings
    from the parameter document are refused: a diagnostic is recorded and
    nothing is emitted.
    """
    if carries_param(value):
        state: ExecutionState = context[STATE_KEY]
        state.add_error("raw: parameter values cannot be emitted verbatim")
        return EMPTY
    if value is None:
        return SqlFragment("NULL")
    return SqlFragment(str(value))


def _bind_function(fn: SqlFunction) -> Any:
    if not fn.stateful:
        return fn.func
    func = fn.func

    @pass_context
    def call(context: Context, *args: Any) -> Any:
        return func(context[STATE_KEY], *args)

    call.__name__ = fn.name
    call.__doc__ = func.__doc__
    return call


def _build_env(functions: Mapping[str, SqlFunction]) -> Environment:
    env = Environment(
        block_start_string="{%",
        block_end_string="%}",
        variable_start_string="{",
        variable_end_string="}",
        comment_start_string="{#",
        comment_end_string="#}",
        autoescape=False,
        undefined=StrictUndefined,
        finalize=_bind_output,
        keep_trailing_newline=True,
    )
    env.filters["raw"] = sql_raw
    env.globals.update({name: _bind_function(fn) for name, fn in functions.items()})
    return env


# ---------------------------------------------------------------------------
# Compiled template
# ---------------------------------------------------------------------------


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def load_params(params_json: str | bytes) -> Any:
    """Parse the parameter document. Numbers decode as floats."""
    if not isinstance(params_json, (str, bytes, bytearray)):
        raise ExecutionError(
            f"Parameter document must be a JSON string, got {type(params_json).__name__}"
        )
    limit = settings.MAX_PARAMS_BYTES
    if limit is not None:
        size = len(params_json.encode()) if isinstance(params_json, str) else len(params_json)
        if size > limit:
            raise ExecutionError(f"Parameter document too large: {size} bytes (limit {limit})")
    try:
        return json.loads(params_json, parse_int=float, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as e:
        preview = params_json if isinstance(params_json, str) else repr(params_json)
        _log.warning("Invalid parameter JSON: %s", e)
        raise ExecutionError(f"invalid JSON: {e}. Document preview:\n{_preview(preview)}") from e


@dataclass(frozen=True)
class Template:
    """Compiled, immutable SQL template. Safe to share between threads."""

    name: str
    raw: str
    compiled: JinjaTemplate = field(repr=False, compare=False)

    def execute(self, params_json: str | bytes) -> SQLStmt:
        """
        Render with *params_json* and return the statement.

        Raises ExecutionError for an unusable parameter document or a render
        failure. Missing values and failed checks are reported on the result
        (``errors`` / ``validator_errors``) instead.
        """
        state = ExecutionState(data=load_params(params_json))
        try:
            rendered = self.compiled.render({STATE_KEY: state})
        except TemplateError as e:
            _log.warning("SQL template %r render error: %s", self.name, e)
            raise ExecutionError(f"SQL template {self.name!r} render error: {e}") from e
        except Exception as e:
            _log.error("SQL template %r render failed: %s", self.name, e, exc_info=True)
            raise ExecutionError(
                f"SQL template {self.name!r} execute error ({type(e).__name__}): {e}"
            ) from e

        stmt = SQLStmt(
            raw_template=self.raw,
            sql=clean_sql(rendered),
            args=state.args,
            errors=state.errors,
            validator_errors=state.validator_errors,
        )
        if settings.LOG_RENDERED_SQL:
            _log.debug("Rendered SQL (%s): %s args=%r", self.name, stmt.sql, stmt.args)
        if stmt.has_errors():
            _log.warning(
                "SQL template %r rendered with %d diagnostic(s): %s",
                self.name,
                len(stmt.errors),
                "; ".join(stmt.errors),
            )
        return stmt

    def execute_with_provider(self, provider: ParamsProvider) -> SQLStmt:
        """Execute with the document returned by ``provider.json()``."""
        return self.execute(provider.json())


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SQLTemplateEngine:
    """Compiles SQL templates against an immutable function table."""

    def __init__(
        self,
        functions: Mapping[str, SqlFunction] = DEFAULT_FUNCTIONS,
        *,
        cache_size: int | None = None,
    ) -> None:
        self._functions: Mapping[str, SqlFunction] = MappingProxyType(dict(functions))
        self._env = _build_env(self._functions)
        self._cache_size = settings.TEMPLATE_CACHE_SIZE if cache_size is None else cache_size
        self._cache: OrderedDict[tuple[str, str], Template] = OrderedDict()
        self._cache_lock = threading.Lock()

    @property
    def functions(self) -> Mapping[str, SqlFunction]:
        return self._functions

    def compile(self, name: str, template: str) -> Template:
        """Compile *template* (cached). Raises CompileError."""
        if self._cache_size <= 0:
            return self._compile(name, template)
        digest = hashlib.md5(template.encode(), usedforsecurity=False).hexdigest()
        key = (name, digest)
        with self._cache_lock:
            tpl = self._cache.get(key)
            if tpl is not None:
                self._cache.move_to_end(key)
                return tpl
        tpl = self._compile(name, template)
        with self._cache_lock:
            self._cache[key] = tpl
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return tpl

    def parse(self, name: str, template: str) -> nodes.Template:
        """Parse and check *template*; returns the Jinja2 AST. Raises CompileError."""
        if not isinstance(template, str):
            raise CompileError(f"template must be a string, got {type(template).__name__}", name=name)
        try:
            ast = self._env.parse(template, name=name)
            undeclared = meta.find_undeclared_variables(ast)
        except TemplateSyntaxError as e:
            raise CompileError(
                f"{e.message}. {_COMPILE_HINT} Template preview:\n{_preview(template)}",
                name=name,
                lineno=e.lineno,
            ) from e

        unknown = sorted(n for n in undeclared if n not in self._env.globals)
        if unknown:
            raise CompileError(
                f"unknown function or variable {unknown[0]!r}",
                name=name,
                lineno=_first_lineno(ast, unknown[0]),
            )
        self._check_calls(name, ast)
        self._check_fragment_use(name, ast, [])
        return ast

    def parse_functions(self, template: str) -> list[str]:
        """Names of vocabulary functions called in *template*."""
        ast = self.parse("<parse>", template)
        return sorted({call.node.name for call in self._vocabulary_calls(ast)})

    def parse_paths(self, template: str) -> list[str]:
        """Constant parameter paths read by *template* (e.g. ``params.name``)."""
        ast = self.parse("<parse>", template)
        paths: set[str] = set()
        for call in self._vocabulary_calls(ast):
            start = self._functions[call.node.name].path_start
            if start is None or call.dyn_args is not None:
                continue
            segments = call.args[start:]
            if segments and all(isinstance(a, nodes.Const) for a in segments):
                paths.add(join_path(*(a.value for a in segments)))
        return sorted(paths)

    def _vocabulary_calls(self, ast: nodes.Template) -> list[nodes.Call]:
        return [
            call
            for call in ast.find_all(nodes.Call)
            if isinstance(call.node, nodes.Name) and call.node.name in self._functions
        ]

    def _compile(self, name: str, template: str) -> Template:
        ast = self.parse(name, template)
        try:
            compiled = self._env.from_string(ast)
        except TemplateSyntaxError as e:
            raise CompileError(e.message or str(e), name=name, lineno=e.lineno) from e
        _log.debug("Compiled SQL template %r", name)
        return Template(name=name, raw=template, compiled=compiled)

    def _check_calls(self, name: str, ast: nodes.Template) -> None:
        for call in self._vocabulary_calls(ast):
            fn = self._functions[call.node.name]
            if call.kwargs or call.dyn_kwargs is not None:
                raise CompileError(
                    f"{fn.name}() does not accept keyword arguments",
                    name=name,
                    lineno=call.lineno,
                )
            if call.dyn_args is None:
                problem = fn.check_arity(len(call.args))
                if problem:
                    raise CompileError(problem, name=name, lineno=call.lineno)
            if fn.name == "regexCheck" and call.args and isinstance(call.args[0], nodes.Const):
                try:
                    re.compile(call.args[0].value)
                except (re.error, TypeError) as e:
                    raise CompileError(
                        f"regexCheck() invalid pattern {call.args[0].value!r}: {e}",
                        name=name,
                        lineno=call.lineno,
                    ) from e

    def _is_fragment_call(self, node: nodes.Node) -> bool:
        if not (isinstance(node, nodes.Call) and isinstance(node.node, nodes.Name)):
            return False
        fn = self._functions.get(node.node.name)
        return fn is not None and fn.fragment

    def _check_fragment_use(self, name: str, node: nodes.Node, path: list[nodes.Node]) -> None:
        """Reject fragment calls whose text would be transformed before output.

        A transformed fragment (``{expr(...) | lower}``, ``{expr(...) ~ ""}``)
        is a plain string, so its placeholders would no longer match the args.
        """
        path = path + [node]
        for child in node.iter_child_nodes():
            if self._is_fragment_call(child):
                consumer, holder = _fragment_consumer(path, child)
                if not self._consumes_fragment(consumer, holder):
                    raise CompileError(
                        f"{child.node.name}() result cannot be used inside "
                        f"{type(consumer).__name__}; output it, assign it with "
                        "{% set %} or pass it to and()/or()",
                        name=name,
                        lineno=child.lineno,
                    )
            self._check_fragment_use(name, child, path)

    def _consumes_fragment(self, consumer: nodes.Node, holder: nodes.Node) -> bool:
        if isinstance(consumer, nodes.Output):
            return True
        if isinstance(consumer, nodes.Assign):
            return consumer.node is holder
        if isinstance(consumer, nodes.Filter):
            return consumer.name == "raw" and consumer.node is holder
        if isinstance(consumer, nodes.Call):
            if not any(arg is holder for arg in consumer.args):
                return False
            callee = consumer.node
            if not isinstance(callee, nodes.Name):
                return False
            if callee.name in self._functions:
                return self._functions[callee.name].fragment
            # macros and caller()
            return True
        return False


def _fragment_consumer(path: list[nodes.Node], child: nodes.Node) -> tuple[nodes.Node, nodes.Node]:
    """Nearest ancestor that uses *child*'s value, looking through ``a if c else b``."""
    holder = child
    i = len(path) - 1
    while i > 0 and isinstance(path[i], nodes.CondExpr) and path[i].test is not holder:
        holder = path[i]
        i -= 1
    return path[i], holder


def _first_lineno(ast: nodes.Template, name: str) -> int | None:
    for node in ast.find_all(nodes.Name):
        if node.name == name:
            return node.lineno
    return None


# ---------------------------------------------------------------------------
# Module-level helpers on a shared default engine
# ---------------------------------------------------------------------------

_DEFAULT_ENGINE: SQLTemplateEngine | None = None
_default_lock = threading.Lock()


def _get_default_engine() -> SQLTemplateEngine:
    global _DEFAULT_ENGINE
    if _DEFAULT_ENGINE is None:
        with _default_lock:
            if _DEFAULT_ENGINE is None:
                _DEFAULT_ENGINE = SQLTemplateEngine()
    return _DEFAULT_ENGINE


def compile_template(name: str, template: str) -> Template:
    """Compile *template* with the default vocabulary. Raises CompileError."""
    return _get_default_engine().compile(name, template)


def execute(template: Template, params_json: str | bytes) -> SQLStmt:
    return template.execute(params_json)


def execute_with_provider(template: Template, provider: ParamsProvider) -> SQLStmt:
    return template.execute_with_provider(provider)
