import io

import pytest

from salvage import (
    ErrorAction, ErrorManager, ExecError, MissingAction, ParseError, Template, new,
)


def assert_ok(res, expected=None):
    assert res.status == 'success', res.error_message
    if expected is not None:
        assert res.value == expected


def assert_error(res, contains: str | None = None):
    assert res.status == 'error', f"expected error, got success: {res.value!r}"
    if contains is not None:
        assert contains in (res.error_message or ""), f"error did not contain {contains!r}: {res.error_message!r}"


def run(source, data=None):
    return new("t").parse(source).run(data)


def test_execute_and_writer():
    out = io.StringIO()
    text = Template("t").parse("Hello {{.}}").execute("world", out)
    assert text == "Hello world"
    assert out.getvalue() == "Hello world"


def test_nothing_written_on_failure():
    out = io.StringIO()
    with pytest.raises(ExecError):
        Template("t").parse("partial {{.a.b}}").execute({"a": None}, out)
    assert out.getvalue() == ""


def test_nil_data_prints_no_value():
    assert Template("t").parse("{{.}}").execute() == "<no value>"


def test_nil_value_prints_no_value():
    assert Template("t").parse("{{.x}}").execute({"x": None}) == "<no value>"


@pytest.mark.parametrize("source, data, expected", [
    ("{{if .a}}A{{else if .b}}B{{else}}C{{end}}", {"a": 0, "b": 1}, "B"),
    ("{{if .a}}A{{else if .b}}B{{else}}C{{end}}", {"a": 0, "b": 0}, "C"),
    ("{{range .}}[{{.}}]{{end}}", [1, 2], "[1][2]"),
    ("{{range $k, $v := .}}{{$k}}={{$v}};{{end}}", {"b": 2, "a": 1}, "a=1;b=2;"),
    ("{{range .}}x{{else}}empty{{end}}", [], "empty"),
    ("{{range 3}}{{.}}{{end}}", None, "012"),
    ("{{with .a}}{{.}}{{else}}none{{end}}", {"a": ""}, "none"),
    ("{{with .a}}{{.b}}{{end}}", {"a": {"b": "deep"}}, "deep"),
    ("{{$x := 1}}{{$x = 2}}{{$x}}", None, "2"),
    ("{{$x := .}}{{range .}}{{$x}}{{end}}", "ab", None),
    ("a {{- /* comment */ -}} b", None, "ab"),
    ("{{.a | printf `%v!`}}", {"a": 3}, "3!"),
    ("{{(index . 0).name}}", [{"name": "first"}], "first"),
    ("{{`raw`}} {{'a'}} {{0x10}} {{1e3}} {{true}}", None, "raw 97 16 1000 true"),
])
def test_control_structures(source, data, expected):
    res = run(source, data)
    if expected is None:
        assert_error(res, "range can't iterate over ab")
    else:
        assert_ok(res, expected)


def test_define_and_template():
    tmpl = Template("t").parse('{{define "T"}}<{{.}}>{{end}}{{template "T" "x"}}')
    assert tmpl.execute() == "<x>"
    assert tmpl.execute_template("T", "y") == "<y>"
    assert tmpl.lookup("T") is not None
    assert sorted(t.name for t in tmpl.templates()) == ["T", "t"]
    assert tmpl.defined_templates() == '; defined templates are: "T", "t"'


def test_block_provides_a_default():
    tmpl = Template("t").parse('{{block "B" .}}default {{.}}{{end}}')
    assert tmpl.execute("d") == "default d"
    tmpl.parse('{{define "B"}}custom {{.}}{{end}}')
    assert tmpl.execute("d") == "custom d"


def test_template_variables_are_scoped():
    res = run('{{define "T"}}{{$}}{{end}}{{$x := 1}}{{template "T" 2}}', None)
    assert_ok(res, "2")


def test_execute_unknown_template():
    with pytest.raises(ExecError) as exc:
        Template("t").parse("x").execute_template("nope")
    assert str(exc.value) == 'template: no template "nope" associated with template "t"'


def test_execute_unparsed_template():
    with pytest.raises(ExecError) as exc:
        Template("t").execute()
    assert str(exc.value) == 'template: t: "t" is an incomplete or empty template'


def test_undefined_template_call():
    assert_error(run('{{template "missing"}}'), 'template "missing" not defined')


def test_recursion_depth_is_limited(monkeypatch):
    monkeypatch.setenv("SALVAGE_MAX_DEPTH", "5")
    res = run('{{define "r"}}{{template "r" .}}{{end}}{{template "r" .}}')
    assert_error(res, "exceeded maximum template depth (5)")


def test_run_reports_error_node_and_caret():
    res = run("line one\n  {{.a.b}}", {"a": None})
    assert_error(res, "nil pointer evaluating NoneType.b")
    assert res.error_node is not None
    formatted = res.format_error()
    lines = formatted.splitlines()
    assert lines[-2] == "  {{.a.b}}"
    assert lines[-1] == "      ^"


def test_format_error_on_success_is_empty():
    assert run("ok").format_error() == ""


def test_run_named_template():
    tmpl = Template("t").parse('{{define "T"}}[{{.}}]{{end}}')
    assert_ok(tmpl.run(1, "T"), "[1]")


def test_must_execute():
    assert Template("t").must_execute("{{.}}!", "hi") == "hi!"


def test_custom_delimiters():
    tmpl = Template("t").delims("<<", ">>").parse("<<.>> {{.}}")
    assert tmpl.execute("v") == "v {{.}}"
    assert tmpl.new("other").left_delim == "<<"


def test_parse_error_names_template():
    with pytest.raises(ParseError) as exc:
        Template("page").parse("{{.x")
    assert str(exc.value).startswith("template: page:1:")


def test_funcs_validation():
    with pytest.raises(ValueError):
        Template("t").funcs({"bad-name": len})
    with pytest.raises(TypeError):
        Template("t").funcs({"notfn": 42})


def test_funcs_and_builtins_views():
    tmpl = Template("t").funcs({"twice": lambda s: s * 2})
    assert "twice" in tmpl.get_funcs()
    assert "twice" not in tmpl.get_builtins()
    assert tmpl.parse("{{twice `ab`}}").execute() == "abab"


def test_new_shares_configuration():
    base = Template("base").funcs({"twice": lambda s: s * 2}).option(MissingAction.ERROR)
    other = base.new("other").parse("{{twice `x`}}")
    assert other.execute() == "xx"
    assert other.missing_mode == MissingAction.ERROR
    assert base.lookup("other") is other


def test_clone_isolates_configuration():
    def replace(context):
        context.clear_error()
        return "managed", ErrorAction.RESULT_REPLACED

    original = Template("t").error_managers("g", ErrorManager(replace)).parse("{{.missing}}")
    clone = original.clone()
    clone.error_managers("g")
    clone.option(MissingAction.ERROR)
    assert original.execute({}) == "managed"
    with pytest.raises(ExecError):
        clone.execute({})
    assert original.missing_mode == MissingAction.DEFAULT


def test_clone_keeps_associated_templates():
    original = Template("t").parse('{{define "T"}}inner{{end}}{{template "T"}}')
    clone = original.clone()
    clone.parse('{{define "T"}}changed{{end}}')
    assert original.execute() == "inner"
    assert clone.execute() == "changed"
