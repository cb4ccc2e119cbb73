"""Unit tests for engines.sql.template_engine (compile + execute)."""

import threading
from unittest.mock import patch

import pytest

from qsql.core.vars import JSONVars, ValueVars
from qsql.engines.sql import (
    CompileError,
    ExecutionError,
    SQLTemplateEngine,
    SqlFunction,
    Template,
    compile_template,
    execute,
    execute_with_provider,
    function_table,
)
from qsql.engines.sql.functions import and_, expr


def _run(template: str, params: str = "{}"):
    return SQLTemplateEngine().compile("t", template).execute(params)


class TestScenarios:
    def test_equal(self):
        stmt = _run(
            'SELECT * FROM users WHERE {expr("name", "=", "params.name")}',
            '{"params": {"name": "张三"}}',
        )
        assert stmt.sql == "SELECT * FROM users WHERE name = ?"
        assert stmt.args == ["张三"]
        assert not stmt.has_errors()

    def test_in(self):
        stmt = _run(
            'SELECT * FROM users WHERE {expr("id", "IN", "params.ids")}',
            '{"params": {"ids": [1, 2, 3]}}',
        )
        assert stmt.sql == "SELECT * FROM users WHERE id IN (?, ?, ?)"
        assert stmt.args == [1, 2, 3]

    def test_nested_and_or(self):
        tpl = """
        SELECT * FROM users WHERE
        {and(
            expr("name", "=", "params.name"),
            or(
                expr("age", ">", "params.age"),
                expr("status", "=", "params.status")
            )
        )}
        """
        stmt = _run(tpl, '{"params": {"name": "n", "age": 18, "status": "active"}}')
        assert stmt.sql == "SELECT * FROM users WHERE (name = ? and (age > ? or status = ?))"
        assert stmt.args == ["n", 18, "active"]

    def test_between(self):
        stmt = _run(
            'SELECT * FROM users WHERE {expr("age", "BETWEEN", "params.ageRange")}',
            '{"params": {"ageRange": [18, 30]}}',
        )
        assert stmt.sql == "SELECT * FROM users WHERE age BETWEEN ? AND ?"
        assert stmt.args == [18, 30]

    def test_between_short(self):
        stmt = _run(
            'SELECT * FROM users WHERE 1=1 AND {expr("age", "BETWEEN", "params.r")}',
            '{"params": {"r": [18]}}',
        )
        assert stmt.sql == "SELECT * FROM users WHERE 1=1 AND"
        assert stmt.args == []
        assert len(stmt.errors) == 1

    def test_missing_required(self):
        stmt = _run(
            'SELECT * FROM users WHERE 1=1 AND {expr("name", "=", "params.notExist")}',
            '{"params": {"name": "张三"}}',
        )
        assert stmt.sql == "SELECT * FROM users WHERE 1=1 AND name = ?"
        assert stmt.args == [None]
        assert len(stmt.errors) == 1

    def test_val_insert(self):
        stmt = _run(
            'INSERT INTO users (name, age) VALUES ({val("params.name")}, {val("params.age")})',
            '{"params": {"name": "李四", "age": 30}}',
        )
        assert stmt.sql == "INSERT INTO users (name, age) VALUES (?, ?)"
        assert stmt.args == ["李四", 30]

    def test_val_missing(self):
        stmt = _run('UPDATE users SET nick = {val("params.nick")}', '{"params": {}}')
        assert stmt.sql == "UPDATE users SET nick = ?"
        assert stmt.args == [None]
        assert stmt.errors == []

    def test_limit_offset(self):
        stmt = _run(
            'SELECT * FROM t LIMIT {val("params.limit")} OFFSET {val("params.offset")}',
            '{"params": {"limit": 10, "offset": 20}}',
        )
        assert stmt.sql == "SELECT * FROM t LIMIT ? OFFSET ?"
        assert stmt.args == [10, 20]

    def test_and_all_empty(self):
        stmt = _run('SELECT 1 WHERE 1=1 {and("", "  ")}')
        assert stmt.sql == "SELECT 1 WHERE 1=1"
        assert stmt.errors == ["and: no valid conditions"]

    def test_root_prefix_path(self):
        stmt = _run('SELECT * FROM t WHERE {expr("id", "=", "$.params.id")}', '{"params": {"id": 1}}')
        assert stmt.args == [1]

    def test_raw_template_kept(self):
        text = 'SELECT {val("params.a")}'
        stmt = _run(text, '{"params": {"a": 1}}')
        assert stmt.raw_template == text


class TestControlFlow:
    TPL = """
    SELECT * FROM orders WHERE 1=1
    {% if not isEmpty(getValue("params.status")) %}
      AND {expr("status", "=", "params.status")}
    {% endif %}
    {% if not isEmpty(getValue("params.ids")) %}
      AND {expr("id", "IN", "params.ids")}
    {% endif %}
    """

    def test_branch_taken(self):
        stmt = _run(self.TPL, '{"params": {"status": "paid", "ids": [7, 8]}}')
        assert stmt.sql == "SELECT * FROM orders WHERE 1=1 AND status = ? AND id IN (?, ?)"
        assert stmt.args == ["paid", 7, 8]

    def test_branch_pruned(self):
        stmt = _run(self.TPL, '{"params": {"status": "", "ids": []}}')
        assert stmt.sql == "SELECT * FROM orders WHERE 1=1"
        assert stmt.args == []
        assert stmt.errors == []

    def test_loop_with_printf(self):
        tpl = """
        SELECT * FROM business_orders_list WHERE company_id = {val("sys.company_id")} AND (
        {% for g in getValue("params.goods") %}
          {% if not loop.first %} or {% endif %}
          (goods_id = {val(printf("params.goods.%d.goods_id", loop.index0))}
           and options_id = {val("params.goods", loop.index0, "options_id")})
        {% endfor %}
        )
        """
        doc = (
            '{"sys": {"company_id": 218908}, "params": {"goods": ['
            '{"goods_id": 51735, "options_id": "0"}, {"goods_id": 51736, "options_id": "1"}]}}'
        )
        stmt = _run(tpl, doc)
        assert stmt.sql == (
            "SELECT * FROM business_orders_list WHERE company_id = ? AND ( "
            "(goods_id = ? and options_id = ?) or (goods_id = ? and options_id = ?) )"
        )
        assert stmt.args == [218908, 51735, "0", 51736, "1"]
        assert stmt.placeholder_count() == len(stmt.args)

    def test_set_variable(self):
        tpl = (
            '{% set cond = expr("a", "=", "params.a") %}'
            'SELECT * FROM t WHERE {and(cond, expr("b", "=", "params.b"))}'
        )
        stmt = _run(tpl, '{"params": {"a": 1, "b": 2}}')
        assert stmt.sql == "SELECT * FROM t WHERE (a = ? and b = ?)"
        assert stmt.args == [1, 2]

    def test_comment(self):
        stmt = _run('SELECT 1 {# note #}')
        assert stmt.sql == "SELECT 1"


class TestValidatorsInTemplate:
    def test_validators_do_not_change_sql(self):
        tpl = """
        {requiredCheck("name", "E_NAME", "name is required", "params.name")}
        {strLenCheck(1, 3, "name", "E_LEN", "name too long", "params.name")}
        {regexCheck("^[0-9]+$", "phone", "E_PHONE", "bad phone", "params.phone")}
        {arrLenCheck(1, none, "ids", "E_IDS", "ids required", "params.ids")}
        SELECT * FROM users WHERE {expr("phone", "=", "params.phone")}
        """
        stmt = _run(tpl, '{"params": {"phone": "abc", "ids": []}}')
        assert stmt.sql == "SELECT * FROM users WHERE phone = ?"
        assert stmt.args == ["abc"]
        assert [e.code for e in stmt.validator_errors] == ["E_NAME", "E_PHONE", "E_IDS"]
        assert stmt.has_validator_errors()
        assert not stmt.has_errors()

    def test_int_check_quirk(self):
        stmt = _run('{intCheck("age", "E", "m", "params.age")}SELECT 1', '{"params": {"age": 18}}')
        assert [e.type for e in stmt.validator_errors] == ["int"]

    def test_float_check(self):
        stmt = _run('{floatCheck("age", "E", "m", "params.age")}SELECT 1', '{"params": {"age": 18}}')
        assert stmt.validator_errors == []


class TestOutputBinding:
    def test_get_value_is_bound(self):
        stmt = _run('SELECT * FROM t WHERE a = {getValue("params.a")}', '{"params": {"a": "x\' OR 1=1"}}')
        assert stmt.sql == "SELECT * FROM t WHERE a = ?"
        assert stmt.args == ["x' OR 1=1"]

    def test_literal_is_bound(self):
        stmt = _run("SELECT {42}")
        assert stmt.sql == "SELECT ?"
        assert stmt.args == [42]

    def test_raw_filter(self):
        tpl = (
            'SELECT * FROM t ORDER BY '
            '{("created_at" if getValue("params.sort") == "created" else "id") | raw}'
        )
        stmt = _run(tpl, '{"params": {"sort": "created"}}')
        assert stmt.sql == "SELECT * FROM t ORDER BY created_at"
        assert stmt.args == []

    def test_placeholders_match_args(self):
        tpl = """
        SELECT * FROM t WHERE {and(
            expr("a", "IN", "params.a"),
            optExpr("b", "NOT IN", "params.b"),
            expr("c", "BETWEEN", "params.c"),
            or(expr("d", "=", "params.d"), expr("e", "BETWEEN", "params.e"))
        )} LIMIT {val("params.limit")}
        """
        stmt = _run(tpl, '{"params": {"a": [1, 2], "b": [], "c": [1, 9], "e": [3], "limit": 5}}')
        assert stmt.sql == "SELECT * FROM t WHERE (a IN (?, ?) and c BETWEEN ? AND ? and (d = ?)) LIMIT ?"
        assert stmt.placeholder_count() == len(stmt.args) == 6
        assert stmt.args == [1, 2, 1, 9, None, 5]
        # d missing, e short
        assert len(stmt.errors) == 2


class TestParameterText:
    DOC = '{"params": {"q": "1=1) OR (1=1", "cols": ["a = 1", "b = 2"], "col": "name; DROP TABLE t"}}'

    def test_combinator_drops_parameter(self):
        stmt = _run('SELECT * FROM t WHERE {and(getValue("params.q"))}', self.DOC)
        assert stmt.sql == "SELECT * FROM t WHERE"
        assert stmt.args == []
        assert stmt.errors == [
            "and: dropped parameter value argument, only SQL conditions are joined",
            "and: no valid conditions",
        ]

    def test_combinator_drops_loop_items(self):
        tpl = '{% for c in getValue("params.cols") %}{or(c, expr("x", "=", "params.q"))}{% endfor %}'
        stmt = _run(tpl, self.DOC)
        assert stmt.sql == "(x = ?)(x = ?)"
        assert stmt.placeholder_count() == len(stmt.args) == 2

    def test_combinator_drops_formatted_parameter(self):
        stmt = _run('SELECT 1 WHERE {and(printf("(%s)", getValue("params.q")), "1=1")}', self.DOC)
        assert stmt.sql == "SELECT 1 WHERE (1=1)"
        assert len(stmt.errors) == 1

    def test_raw_refuses_parameter(self):
        stmt = _run('SELECT * FROM t ORDER BY {getValue("params.col") | raw}', self.DOC)
        assert stmt.sql == "SELECT * FROM t ORDER BY"
        assert stmt.args == []
        assert stmt.errors == ["raw: parameter values cannot be emitted verbatim"]

    def test_bound_parameter_is_plain_str(self):
        stmt = _run('SELECT {getValue("params.q")}', self.DOC)
        assert stmt.args == ["1=1) OR (1=1"]
        assert type(stmt.args[0]) is str

    def test_comparison_still_works(self):
        tpl = '{% if getValue("params.col") == "name; DROP TABLE t" %}SELECT 1{% endif %}'
        assert _run(tpl, self.DOC).sql == "SELECT 1"


class TestFragmentUse:
    @pytest.mark.parametrize(
        "template",
        [
            'SELECT * FROM t WHERE {expr("a", "=", "params.a") | lower}',
            'SELECT * FROM t WHERE {expr("a", "=", "params.a") ~ ""}',
            'SELECT * FROM t WHERE {expr("a", "=", "params.a").upper()}',
            'SELECT * FROM t WHERE {[val("params.a")]}',
            'SELECT * FROM t WHERE {isEmpty(expr("a", "=", "params.a"))}',
            '{% if expr("a", "=", "params.a") %}SELECT 1{% endif %}',
            'SELECT * FROM t WHERE {(expr("a", "=", "params.a") if getValue("params.a") else "") | trim}',
        ],
    )
    def test_transformed_fragment_rejected(self, template):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("t", template)

    @pytest.mark.parametrize(
        "template",
        [
            'SELECT * FROM t WHERE {expr("a", "=", "params.a") | raw}',
            'SELECT * FROM t WHERE {expr("a", "=", "params.a") if getValue("params.a") else "1=1"}',
            'SELECT * FROM t WHERE {and(expr("a", "=", "params.a") if getValue("params.a") else "")}',
            '{% set c = expr("a", "=", "params.a") %}SELECT * FROM t WHERE {c}',
        ],
    )
    def test_placeholders_match_args(self, template):
        stmt = _run(template, '{"params": {"a": 1}}')
        assert stmt.placeholder_count() == len(stmt.args) == 1
        assert "a = ?" in stmt.sql


class TestCompileErrors:
    @pytest.mark.parametrize(
        "template",
        [
            'SELECT {expr("a", "=", "params.a"}',
            "SELECT {% if x %}",
            "SELECT {}",
        ],
    )
    def test_syntax(self, template):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("bad", template)

    def test_unknown_function(self):
        with pytest.raises(CompileError) as exc:
            SQLTemplateEngine().compile("q", 'SELECT 1\nWHERE {exprs("a", "=", "params.a")}')
        assert "exprs" in str(exc.value)
        assert exc.value.name == "q"
        assert exc.value.lineno == 2

    def test_unknown_variable(self):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("q", "SELECT {name}")

    def test_state_not_reachable(self):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("q", "SELECT {__qsql_state__}")

    def test_unknown_filter(self):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("q", 'SELECT {val("params.a") | nope}')

    @pytest.mark.parametrize(
        "template",
        [
            "SELECT {val()}",
            "SELECT {getValue()}",
            'SELECT {isEmpty("a", "b")}',
            '{requiredCheck("a", "b", "c")}',
            '{regexCheck(".*", "a", "b", "c")}',
            '{strLenCheck(1, 2, "a", "b", "c")}',
        ],
    )
    def test_arity(self, template):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("q", template)

    def test_keyword_arguments(self):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("q", 'SELECT {val(path="params.a")}')

    def test_invalid_constant_regex(self):
        with pytest.raises(CompileError):
            SQLTemplateEngine().compile("q", '{regexCheck("(", "a", "b", "c", "params.a")}')

    def test_short_expr_is_not_a_compile_error(self):
        stmt = SQLTemplateEngine().compile("q", 'SELECT * FROM t WHERE {expr("id", "=")}').execute("{}")
        assert stmt.sql == "SELECT * FROM t WHERE id = ?"
        assert stmt.args == [None]
        assert len(stmt.errors) == 1

    def test_loop_variables_declared(self):
        SQLTemplateEngine().compile(
            "q", '{% for x in getValue("params.xs") %}{loop.index}{x}{% endfor %}'
        )


class TestExecutionErrors:
    TPL = SQLTemplateEngine().compile("t", 'SELECT {val("params.a")}')

    @pytest.mark.parametrize("doc", ["", "{", "not json", '{"a": NaN}', '{"a": Infinity}'])
    def test_invalid_json(self, doc):
        with pytest.raises(ExecutionError):
            self.TPL.execute(doc)

    def test_not_a_string(self):
        with pytest.raises(ExecutionError):
            self.TPL.execute({"params": {}})  # type: ignore[arg-type]

    def test_bytes_accepted(self):
        assert self.TPL.execute(b'{"params": {"a": 1}}').args == [1]

    def test_size_limit(self):
        with patch("qsql.engines.sql.template_engine.settings.MAX_PARAMS_BYTES", 10):
            with pytest.raises(ExecutionError):
                self.TPL.execute('{"params": {"a": "0123456789"}}')
            assert self.TPL.execute("{}").args == [None]

    def test_too_deep(self):
        with pytest.raises(ExecutionError):
            self.TPL.execute("[" * 100000 + "]" * 100000)

    def test_render_failure(self):
        tpl = SQLTemplateEngine().compile("t", '{% set f = getValue("params.a") %}SELECT {f()}')
        with pytest.raises(ExecutionError, match="execute error \\(TypeError\\)"):
            tpl.execute('{"params": {"a": 1}}')

    def test_undefined_attribute(self):
        tpl = SQLTemplateEngine().compile("t", '{% set u = getValue("params.u") %}SELECT {u.missing}')
        with pytest.raises(ExecutionError, match="render error"):
            tpl.execute('{"params": {"u": {"a": 1}}}')

    def test_non_object_document(self):
        assert self.TPL.execute("[1, 2]").args == [None]


class TestEngine:
    def test_compile_returns_template(self):
        tpl = SQLTemplateEngine().compile("t", "SELECT 1")
        assert isinstance(tpl, Template)
        assert tpl.name == "t"
        assert tpl.raw == "SELECT 1"

    def test_template_is_immutable(self):
        tpl = SQLTemplateEngine().compile("t", "SELECT 1")
        with pytest.raises(AttributeError):
            tpl.raw = "x"  # type: ignore[misc]

    def test_cache_hit(self):
        engine = SQLTemplateEngine()
        assert engine.compile("t", "SELECT 1") is engine.compile("t", "SELECT 1")
        assert engine.compile("t", "SELECT 1") is not engine.compile("u", "SELECT 1")

    def test_cache_disabled(self):
        engine = SQLTemplateEngine(cache_size=0)
        assert engine.compile("t", "SELECT 1") is not engine.compile("t", "SELECT 1")

    def test_cache_eviction(self):
        engine = SQLTemplateEngine(cache_size=1)
        first = engine.compile("a", "SELECT 1")
        engine.compile("b", "SELECT 2")
        assert engine.compile("a", "SELECT 1") is not first

    def test_reuse_is_isolated(self):
        tpl = SQLTemplateEngine().compile("t", 'SELECT * FROM t WHERE {expr("a", "=", "params.a")}')
        one = tpl.execute('{"params": {"a": 1}}')
        two = tpl.execute('{"params": {}}')
        assert one.args == [1] and one.errors == []
        assert two.args == [None] and len(two.errors) == 1

    def test_concurrent_execution(self):
        tpl = SQLTemplateEngine().compile(
            "t", 'SELECT * FROM t WHERE {and(expr("a", "=", "params.a"), expr("b", "IN", "params.b"))}'
        )
        results: dict[int, object] = {}

        def worker(i: int) -> None:
            results[i] = tpl.execute(f'{{"params": {{"a": {i}, "b": [{i}, {i + 1}]}}}}')

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for i, stmt in results.items():
            assert stmt.args == [i, i, i + 1]

    def test_parse_functions(self):
        engine = SQLTemplateEngine()
        names = engine.parse_functions('{and(expr("a", "=", "params.a"), or(val("params.b")))}')
        assert names == ["and", "expr", "or", "val"]

    def test_parse_paths(self):
        engine = SQLTemplateEngine()
        paths = engine.parse_paths(
            '{expr("a", "=", "params", "a")} {val("params.b")} '
            '{requiredCheck("c", "E", "m", "params.c")} {val(printf("params.%d", 1))}'
        )
        assert paths == ["params.a", "params.b", "params.c"]

    def test_custom_function_table(self):
        table = function_table(
            SqlFunction("where", and_),
            SqlFunction("eq", expr, min_args=3),
        )
        engine = SQLTemplateEngine(table)
        stmt = engine.compile("t", 'SELECT 1 WHERE {where(eq("a", "=", "params.a"))}').execute(
            '{"params": {"a": 1}}'
        )
        assert stmt.sql == "SELECT 1 WHERE (a = ?)"
        assert stmt.args == [1]
        with pytest.raises(CompileError):
            engine.compile("t", 'SELECT {val("params.a")}')
        with pytest.raises(CompileError):
            engine.compile("t", 'SELECT {eq("a", "=")}')

    def test_functions_read_only(self):
        engine = SQLTemplateEngine()
        with pytest.raises(TypeError):
            engine.functions["x"] = None  # type: ignore[index]


class TestModuleHelpers:
    def test_compile_and_execute(self):
        tpl = compile_template("m", 'SELECT {val("params.a")}')
        stmt = execute(tpl, '{"params": {"a": "x"}}')
        assert stmt.sql == "SELECT ?"
        assert stmt.args == ["x"]

    def test_execute_with_value_vars(self):
        tpl = compile_template("m", 'SELECT * FROM t WHERE {and(expr("name", "=", "params.name"), expr("cid", "=", "sys.cid"))}')
        v = ValueVars()
        v.params({"name": "张三"})
        v.set("sys.cid", 7)
        stmt = execute_with_provider(tpl, v)
        assert stmt.sql == "SELECT * FROM t WHERE (name = ? and cid = ?)"
        assert stmt.args == ["张三", 7]

    def test_execute_with_json_vars(self):
        tpl = compile_template("m", 'SELECT * FROM t WHERE {expr("status", "=", "params.status")}')
        v = JSONVars()
        v.params('{"status": "active"}')
        stmt = tpl.execute_with_provider(v)
        assert stmt.args == ["active"]

    def test_empty_provider(self):
        tpl = compile_template("m", 'SELECT {val("params.a")}')
        assert tpl.execute_with_provider(ValueVars()).args == [None]
