import pytest

from salvage import ConfigError, ExecError, MissingAction, Option, Template, configure, load_config
from salvage.salvage_config import build_manager

CONFIG = r"""
missingkey: zero
options: [trap]
managers:
  defaults:
    - filters: ['map has no entry for key "(?P<key>\w+)"']
      sources: [field]
      replace: "<{{key}} missing>"
"""


def test_configure_from_yaml_text():
    tmpl = configure(Template("t"), CONFIG)
    assert tmpl.missing_mode == MissingAction.ZERO_VALUE
    assert tmpl.options & Option.TRAP
    assert tmpl.managers.keys()[-1] == "defaults"
    assert tmpl.parse("{{.name}} {{.age}}").execute({"name": "Bob"}) == "Bob <age missing>"


def test_configure_from_file(tmp_path):
    path = tmp_path / "managers.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    tmpl = configure(Template("t"), str(path))
    assert tmpl.parse("{{.x}}").execute({}) == "<x missing>"
    assert load_config(path) == load_config(str(path))


def test_configure_from_mapping():
    config = {"managers": {"m": [{"members": ["who"], "replace": "{{member}}?"}]}}
    tmpl = configure(Template("t"), config)
    assert tmpl.parse("{{.who}}").execute({}) == "who?"


def test_replace_scope_includes_error_and_receiver():
    config = {"managers": {"m": [{"sources": ["field"], "replace": "{{error}} on {{receiver}}"}]}}
    tmpl = configure(Template("t"), config).parse("{{.s.nope}}")
    assert tmpl.execute({"s": "abc"}) == "can't evaluate field nope in type str on abc"


def test_as_array_entry():
    config = r"""
managers:
  arrays:
    - filters: ["can't evaluate field \\w+ in type list"]
      as_array: true
"""
    tmpl = configure(Template("t"), config).parse("{{.items.name}}")
    assert tmpl.execute({"items": [{"name": "a"}, {"name": "b"}]}) == "[a b]"


def test_keep_error_entry():
    config = {"managers": {"m": [{"sources": ["field"], "replace": "x", "keep_error": True}]}}
    tmpl = configure(Template("t"), config).parse("{{.a.b}}")
    with pytest.raises(ExecError):
        tmpl.execute({"a": None})


def test_modes_and_kinds_entry():
    manager = build_manager({"modes": ["zero_value"], "kinds": ["map"], "sources": ["field", "call"]})
    assert manager.modes == MissingAction.ZERO_VALUE
    assert [k.value for k in manager.kinds] == ["map"]


def test_empty_configuration():
    assert load_config("") == {}
    tmpl = configure(Template("t"), {})
    assert len(tmpl.managers) == 0


@pytest.mark.parametrize("config, message", [
    ({"managers": {"m": [{"colour": "red"}]}}, "unknown manager keys: colour"),
    ({"managers": {"m": [{"sources": ["nowhere"]}]}}, "unknown ContextSource value: nowhere"),
    ({"managers": {"m": [{"kinds": ["widget"]}]}}, "unknown kind"),
    ({"managers": {"m": [{"filters": ["("]}]}}, "invalid filter"),
    ({"managers": {"m": ["just a string"]}}, "manager entry must be a mapping"),
    ({"managers": ["not", "a", "mapping"]}, "managers must be a mapping"),
    ({"options": ["teleport"]}, "unknown Option value: teleport"),
    ({"missingkey": "bogus"}, "unrecognized option: missingkey=bogus"),
    ("- a\n- b\n", "configuration must be a mapping"),
    ("key: [unclosed\n", "invalid configuration"),
])
def test_invalid_configurations(config, message):
    with pytest.raises(ConfigError) as exc:
        configure(Template("t"), config)
    assert message in str(exc.value)


def test_unsupported_source_type():
    with pytest.raises(ConfigError):
        load_config(42)
