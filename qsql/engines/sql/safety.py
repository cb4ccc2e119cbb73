"""
Static analysis for SQL templates: flag constructs that are probably mistakes.

The engine never splices parameter values into SQL text, but some template
shapes still do something other than what the author meant:

- ``{getValue("params.x")}`` or ``{name}``: not a fragment, so the value is
  bound as a ``?`` placeholder rather than written out;
- ``{x | raw}`` on anything but a constant: text is emitted verbatim;
- ``and(...)`` / ``or(...)`` with an argument that is neither a fragment
  call nor a string literal: parameter values are dropped at render time,
  other strings are joined into SQL verbatim.

Usage::

    warnings = check_template_safety(template_content)
    # [{"expression": "getValue(...)", "line": 3, "message": "..."}]
"""

from __future__ import annotations

from typing import Any

from jinja2 import nodes

from qsql.engines.sql.template_engine import SQLTemplateEngine

_COMBINATORS = ("and", "or")


def _describe(node: nodes.Node) -> str:
    if isinstance(node, nodes.Call) and isinstance(node.node, nodes.Name):
        return f"{node.node.name}(...)"
    if isinstance(node, nodes.Name):
        return node.name
    if isinstance(node, nodes.Filter):
        return f"{_describe(node.node)} | {node.name}"
    if isinstance(node, nodes.Getattr):
        return f"{_describe(node.node)}.{node.attr}"
    if isinstance(node, nodes.Const):
        return repr(node.value)
    return type(node).__name__


def _is_constant(node: nodes.Node) -> bool:
    if isinstance(node, nodes.Const):
        return True
    if isinstance(node, nodes.CondExpr):
        return _is_constant(node.expr1) and (node.expr2 is None or _is_constant(node.expr2))
    return False


def _warning(node: nodes.Node, message: str) -> dict[str, Any]:
    return {"expression": _describe(node), "line": node.lineno, "message": message}


def check_template_safety(
    template: str, engine: SQLTemplateEngine | None = None
) -> list[dict[str, Any]]:
    """Analyse a SQL template and return warnings (empty list: no issues).

    Each warning is a dict with ``expression``, ``line`` and ``message`` keys.
    Raises CompileError when the template does not compile.
    """
    engine = engine or SQLTemplateEngine(cache_size=0)
    functions = engine.functions
    ast = engine.parse("<safety>", template)

    def is_fragment_call(node: nodes.Node) -> bool:
        if not (isinstance(node, nodes.Call) and isinstance(node.node, nodes.Name)):
            return False
        fn = functions.get(node.node.name)
        return fn is not None and fn.fragment

    warnings: list[dict[str, Any]] = []

    for output in ast.find_all(nodes.Output):
        for child in output.nodes:
            if isinstance(child, nodes.TemplateData) or is_fragment_call(child):
                continue
            if isinstance(child, nodes.Filter) and child.name == "raw":
                if child.node is not None and not _is_constant(child.node):
                    warnings.append(
                        _warning(
                            child,
                            "'| raw' emits its input verbatim. Choose identifiers from "
                            "constants in the template (allow-list), never from parameters.",
                        )
                    )
                continue
            warnings.append(
                _warning(
                    child,
                    "Output is not a SQL fragment; its value will be bound as a '?' "
                    "placeholder. Use val(...) for values or '| raw' for allow-listed "
                    "identifiers.",
                )
            )

    for call in ast.find_all(nodes.Call):
        if not (isinstance(call.node, nodes.Name) and call.node.name in _COMBINATORS):
            continue
        if call.node.name not in functions:
            continue
        for arg in call.args:
            if is_fragment_call(arg):
                continue
            if isinstance(arg, nodes.Const) and isinstance(arg.value, str):
                continue
            warnings.append(
                _warning(
                    arg,
                    f"Argument of {call.node.name}(...) is not a fragment call or string "
                    "literal; parameter values are dropped and other strings are joined "
                    "into the SQL verbatim.",
                )
            )

    warnings.sort(key=lambda w: (w["line"] or 0))
    return warnings
