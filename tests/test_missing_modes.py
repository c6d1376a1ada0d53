import pytest

from salvage import (
    ContextSource, ErrorAction, ErrorManager, ExecError, Kind, MissingAction, Template,
)

DEFAULT = MissingAction.DEFAULT
ZERO = MissingAction.ZERO_VALUE
ERROR = MissingAction.ERROR


class Obj:
    def __init__(self):
        self._private = "secret"
        self.public = "visible"


def render(source, data, mode, *managers):
    tmpl = Template("t").option(mode)
    if managers:
        tmpl.error_managers("handlers", *managers)
    return tmpl.parse(source).execute(data)


def zero_handler(context):
    context.clear_error()
    return "Zero", ErrorAction.RESULT_REPLACED


# (id, source, data, {mode: expected output or ExecError text})
CASES = [
    ("missing_nil_data", "{{.missing}}", None, {
        DEFAULT: "<no value>",
        ZERO: "<no value>",
        ERROR: 'template: t:1:2: executing "t" at <.missing>: nil data; no entry for key "missing"',
    }),
    ("nil_map", "{{.map.missing}}", {"map": None}, {
        DEFAULT: 'template: t:1:6: executing "t" at <.map.missing>: nil pointer evaluating NoneType.missing',
        ZERO: 'template: t:1:6: executing "t" at <.map.missing>: nil pointer evaluating NoneType.missing',
        ERROR: 'template: t:1:6: executing "t" at <.map.missing>: nil pointer evaluating NoneType.missing',
    }),
    ("empty_map", "{{.map.missing}}", {"map": {}}, {
        DEFAULT: "<no value>",
        ZERO: "<no value>",
        ERROR: 'template: t:1:6: executing "t" at <.map.missing>: map has no entry for key "missing"',
    }),
    ("int_map", "{{.map.zero}}", {"map": {"a": 1}}, {
        DEFAULT: "<no value>",
        ZERO: "0",
        ERROR: 'template: t:1:6: executing "t" at <.map.zero>: map has no entry for key "zero"',
    }),
    ("str_map", "[{{.map.empty}}]", {"map": {"a": "x"}}, {
        DEFAULT: "[<no value>]",
        ZERO: "[]",
        ERROR: 'template: t:1:7: executing "t" at <.map.empty>: map has no entry for key "empty"',
    }),
    ("mixed_map", "{{.map.none}}", {"map": {"a": "x", "b": 1}}, {
        DEFAULT: "<no value>",
        ZERO: "<no value>",
        ERROR: 'template: t:1:6: executing "t" at <.map.none>: map has no entry for key "none"',
    }),
    ("present", "{{.map.a}}", {"map": {"a": "x"}}, {
        DEFAULT: "x",
        ZERO: "x",
        ERROR: "x",
    }),
    ("unexported", "{{.obj._private}}", {"obj": Obj()}, {
        DEFAULT: 'template: t:1:6: executing "t" at <.obj._private>: _private is an unexported field of type Obj',
        ZERO: 'template: t:1:6: executing "t" at <.obj._private>: _private is an unexported field of type Obj',
        ERROR: 'template: t:1:6: executing "t" at <.obj._private>: _private is an unexported field of type Obj',
    }),
    ("unknown_attribute", "{{.obj.nothing}}", {"obj": Obj()}, {
        DEFAULT: 'template: t:1:6: executing "t" at <.obj.nothing>: can\'t evaluate field nothing in type Obj',
        ZERO: 'template: t:1:6: executing "t" at <.obj.nothing>: can\'t evaluate field nothing in type Obj',
        ERROR: 'template: t:1:6: executing "t" at <.obj.nothing>: can\'t evaluate field nothing in type Obj',
    }),
]


def expand(cases):
    for case_id, source, data, outcomes in cases:
        for mode, expected in outcomes.items():
            yield pytest.param(source, data, mode, expected, id=f"{case_id}-{mode.name}")


@pytest.mark.parametrize("source, data, mode, expected", list(expand(CASES)))
def test_missing_modes(source, data, mode, expected):
    if expected.startswith("template: "):
        with pytest.raises(ExecError) as exc:
            render(source, data, mode)
        assert str(exc.value) == expected
    else:
        assert render(source, data, mode) == expected


def test_attribute_access():
    assert render("{{.obj.public}}", {"obj": Obj()}, DEFAULT) == "visible"


def test_handler_limited_to_zero_mode():
    manager = ErrorManager(zero_handler).on_modes(ZERO).on_members("default")
    assert render("{{.default}}", {}, ZERO, manager) == "Zero"
    assert render("{{.default}}", {}, DEFAULT, manager) == "<no value>"
    with pytest.raises(ExecError) as exc:
        render("{{.default}}", {}, ERROR, manager)
    assert 'map has no entry for key "default"' in str(exc.value)


def test_handler_for_unexported_struct_field():
    manager = (ErrorManager(zero_handler)
               .on_sources(ContextSource.FIELD)
               .on_members("_private")
               .on_kinds(Kind.STRUCT)
               .on_modes(ZERO))
    assert render("{{.obj._private}}", {"obj": Obj()}, ZERO, manager) == "Zero"
    with pytest.raises(ExecError):
        render("{{.obj._private}}", {"obj": Obj()}, DEFAULT, manager)


def test_handler_must_clear_error():
    def replace_only(context):
        return "ignored", ErrorAction.RESULT_REPLACED

    with pytest.raises(ExecError) as exc:
        render("{{.obj.nothing}}", {"obj": Obj()}, DEFAULT, ErrorManager(replace_only))
    assert "can't evaluate field nothing in type Obj" in str(exc.value)


def test_missing_mode_string_options():
    tmpl = Template("t").option("missingkey=zero")
    assert tmpl.missing_mode == ZERO
    tmpl.option("missingkey=error")
    assert tmpl.missing_mode == ERROR
    tmpl.option("missingkey=invalid")
    assert tmpl.missing_mode == DEFAULT
    with pytest.raises(ValueError):
        tmpl.option("missingkey=bogus")


def test_missing_value_in_condition_is_false():
    assert render("{{if .nope}}yes{{else}}no{{end}}", {}, DEFAULT) == "no"
