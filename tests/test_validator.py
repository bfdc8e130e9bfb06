"""Tests for the script compile gate."""

import logging
import time

import pytest

from lua_flattener.references import assign_references
from lua_flattener.validator import (
    ScriptSyntaxError,
    check_syntax,
    compile_closures,
    compile_node,
    error_closure,
    iter_supported,
    normalize_source,
    wrap_closure,
)
from trees import folder, module, script, string_value, unsupported


@pytest.mark.parametrize(
    "source",
    [
        "",
        "print('hello')",
        "local x = 1\nlocal y = x + 2 * 3\nreturn y",
        "local t = {1, 2, three = 3, [4] = 'four'}\nfor k, v in pairs(t) do print(k, v) end",
        "for i = 1, 10, 2 do\n\tif i > 5 then break end\nend",
        "while true do break end",
        "repeat local n = 1 until n == 1",
        "local function f(...)\n\treturn select('#', ...)\nend",
        "return ...",
        "local s = [[long\nstring]] .. \"x\" -- trailing comment\n--[[ block\ncomment ]]",
        "local obj = {}\nfunction obj:method(a, b) return self, a, b end\nobj:method(1, 2)",
        "local M = {}\nM.value = #'abc'\nreturn M",
        "if a then b() elseif c then d() else e() end",
    ],
)
def test_valid_lua(source: str) -> None:
    check_syntax(source, chunk_name="Chunk")


@pytest.mark.parametrize(
    "source",
    [
        "local count = 0\ncount += 1",
        "for i = 1, 3 do\n\tif i == 2 then continue end\n\tprint(i)\nend",
        "local continue = 1\nprint(continue)",
        "local kind = type(5)",
        "type Point = {x: number, y: number}\nexport type Id = string",
        "local function add(a: number, b: number): number\n\treturn a + b\nend",
        "local name = `hello {who}`",
        "local v = if flag then 1 else 2",
        "local n = (value :: any) :: number",
        "local f = type\nprint(f(1))",
        "local t = {}\nt.x = type\nfoo()",
        "local e = export\ntype Alias = number",
        "type Map<K, V> = {[K]: V}\nlocal m: Map<string, number> = {}",
        "type Callback = (number, string) -> ()\ntype Pack<T...> = (T...) -> T...",
        "local s = 'a\\z\n   b'",
        "local s = \"line\\\nbreak\"",
        "local function first<T>(list: {T}): T?\n\treturn list[1]\nend",
    ],
)
def test_valid_luau(source: str) -> None:
    check_syntax(source, chunk_name="Chunk")


@pytest.mark.parametrize(
    ("source", "message"),
    [
        ("local x = 1\nx", "Main:2: incomplete statement: expected assignment or a function call"),
        ("foo bar = baz", "Main:1: incomplete statement: expected assignment or a function call"),
        ("if x then skip end", "Main:1: incomplete statement: expected assignment or a function call"),
        ("f() = 1", "Main:1: assigned expression must be a variable or a field"),
        ("(x) += 1", "Main:1: assigned expression must be a variable or a field"),
    ],
)
def test_statement_forms(source: str, message: str) -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax(source, chunk_name="Main")

    assert excinfo.value.diagnostic == message


def test_assignments_accept_names_fields_and_indexes() -> None:
    check_syntax("a, b.c, d[1], e:f().g = 1, 2, 3, 4\ncount += f()", chunk_name="Chunk")


def test_large_script_checks_quickly() -> None:
    chunk = (
        "local function step{i}(state: {{number}}, ...)\n"
        "\tlocal total = 0\n"
        "\tfor _, v in ipairs(state) do\n"
        "\t\tif v > {i} then total += v elseif v < 0 then continue end\n"
        "\tend\n"
        "\treturn total, select('#', ...), state[1] and tostring(state[1]) .. \"x\"\n"
        "end\n"
    )
    source = "".join(chunk.format(i=i) for i in range(600))

    started = time.perf_counter()
    check_syntax(source, chunk_name="Big")

    assert source.count("\n") == 4200
    assert time.perf_counter() - started < 20.0


def test_parse_error_has_chunk_and_line() -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax("local ok = 1\nlocal = 5", chunk_name="Pkg.Main")

    assert excinfo.value.diagnostic.startswith("Pkg.Main:2:")
    assert excinfo.value.line == 2


def test_unfinished_input_reports_eof() -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax("print('x'", chunk_name="Main")

    assert excinfo.value.diagnostic.startswith("Main:")


def test_unexpected_character() -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax("local x = 1 $ 2", chunk_name="Main")

    assert excinfo.value.diagnostic == "Main:1: unexpected symbol near '$'"


def test_break_outside_loop() -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax("print(1)\nbreak", chunk_name="Main")
    assert "'break' outside a loop" in excinfo.value.diagnostic

    # A function body inside a loop is not itself a loop.
    with pytest.raises(ScriptSyntaxError):
        check_syntax("while true do\n\tlocal f = function() break end\nend", chunk_name="Main")


def test_continue_outside_loop() -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax("if x then continue end", chunk_name="Main")
    assert "'continue' outside a loop" in excinfo.value.diagnostic


def test_vararg_outside_vararg_function() -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        check_syntax("local function f()\n\treturn ...\nend", chunk_name="Main")
    assert excinfo.value.diagnostic == "Main:2: cannot use '...' outside a vararg function"


def test_normalize_source() -> None:
    assert normalize_source("a\r\nb\rc") == "a\nb\nc"
    assert normalize_source("#!/usr/bin/lua\nprint(1)") == "--!/usr/bin/lua\nprint(1)"


def test_wrap_closure_adds_one_line() -> None:
    body = "local a = 1\nreturn a"
    wrapped = wrap_closure(body)

    assert wrapped.count("\n") == body.count("\n") + 1
    assert wrapped.startswith("function(context)")
    assert "local bundle,script,require=context.bundle,context.script,context.require" in wrapped
    assert wrapped.endswith("\nend)()end")


def test_error_closure_is_one_line() -> None:
    closure = error_closure('Main:3: unexpected symbol near "x"\nmore')

    assert "\n" not in closure
    assert closure.startswith("function()error(")
    assert closure.endswith(",0)end")


def test_compile_node_success(logger: logging.Logger) -> None:
    node = module("Utils", 'local Sub = require("@self/Sub")\nreturn Sub')
    artifact = compile_node(node, ref=7, chunk_name="Pkg.Utils", logger=logger)

    assert artifact is not None
    assert artifact.ref == 7
    assert artifact.failed is False
    assert artifact.line_count == 3
    assert 'require(script:FindFirstChild("Sub"))' in artifact.source


def test_compile_node_failure_is_deferred(logger: logging.Logger, caplog: pytest.LogCaptureFixture) -> None:
    node = script("Broken", "local = 1")
    with caplog.at_level(logging.WARNING, logger="lua_flattener"):
        artifact = compile_node(node, ref=3, chunk_name="Pkg.Broken", logger=logger)

    assert artifact is not None
    assert artifact.failed is True
    assert artifact.line_count == 1
    assert artifact.source.startswith('function()error("Pkg.Broken:1:')
    assert "failed to compile Pkg.Broken" in caplog.text


def test_compile_node_skips_disabled_and_passive(logger: logging.Logger) -> None:
    assert compile_node(script("Off", "print(1)", disabled=True), ref=1, chunk_name="Off", logger=logger) is None
    assert compile_node(folder("Dir"), ref=1, chunk_name="Dir", logger=logger) is None
    assert compile_node(string_value("V", "x"), ref=1, chunk_name="V", logger=logger) is None

    disabled_local = script("Off", "print(1)", disabled=True, class_name="LocalScript")
    assert compile_node(disabled_local, ref=1, chunk_name="Off", logger=logger) is None


def test_iter_supported_skips_unsupported_subtrees() -> None:
    roots = [folder("A", unsupported("Model", module("B", "return 1")), module("C", "return 2"))]
    paths = [path for _, path in iter_supported(roots)]

    assert paths == ["A", "A.C"]


def test_one_failure_among_ten(logger: logging.Logger) -> None:
    scripts = [module(f"M{i}", f"return {i}") for i in range(9)]
    scripts.insert(4, module("Bad", "return return"))
    roots = [folder("Pkg", *scripts)]
    refs = assign_references(roots)

    closure_set = compile_closures(roots, refs, logger=logger)

    assert closure_set.failed_compilations == 1
    assert closure_set.refs() == list(range(2, 12))
    for artifact in closure_set.artifacts:
        if artifact.chunk_name == "Pkg.Bad":
            assert artifact.failed is True
        else:
            body = refs.node_of(artifact.ref).source
            assert artifact.source == wrap_closure(body)
