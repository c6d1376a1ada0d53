from types import SimpleNamespace

import pytest

from salvage.salvage_context import Context
from salvage.salvage_datatypes import (
    ContextSource, ErrorAction, Kind, MissingAction, ResultCell, MISSING,
)
from salvage.salvage_errors import FieldError, MissingKeyError
from salvage.salvage_managers import (
    CALL_FAIL_HANDLER_ID, CONTEXT_HANDLERS_ID, FUNCTIONS_AS_METHODS_ID, PUBLIC_FUNCTIONS_ID,
    ErrorManager, ManagerRegistry, error_manager,
)


def replace_with(value):
    def handler(context):
        context.clear_error()
        return value, ErrorAction.RESULT_REPLACED
    return handler


def make_context(source=ContextSource.FIELD, error=None, name="x", receiver=None,
                 mode=MissingAction.DEFAULT):
    state = SimpleNamespace(template=SimpleNamespace(missing_mode=mode))
    return Context(state, source, error, name, None, [], None, None, MISSING, receiver, ResultCell())


def test_builders_return_refined_copies():
    base = ErrorManager(replace_with(1))
    field_only = base.on_sources(ContextSource.FIELD)
    assert base.sources == ContextSource.NONE
    assert field_only.sources == ContextSource.FIELD
    assert field_only.on_sources(ContextSource.CALL).sources == ContextSource.FIELD | ContextSource.CALL


def test_unfiltered_manager_accepts_everything():
    manager = ErrorManager(replace_with(1))
    assert manager.can_manage(make_context())
    assert manager.can_manage(make_context(ContextSource.PRINT))
    assert manager.can_manage(make_context(error=FieldError("boom")))


def test_source_filter():
    manager = ErrorManager(replace_with(1)).on_sources(ContextSource.CALL)
    assert not manager.can_manage(make_context(ContextSource.FIELD))
    assert manager.can_manage(make_context(ContextSource.CALL | ContextSource.PIPE))


def test_mode_filter():
    manager = ErrorManager(replace_with(1)).on_modes(MissingAction.ZERO_VALUE)
    assert manager.can_manage(make_context(mode=MissingAction.ZERO_VALUE))
    assert not manager.can_manage(make_context(mode=MissingAction.DEFAULT))
    assert ErrorManager.on_actions is ErrorManager.on_modes


def test_member_filter():
    manager = ErrorManager(replace_with(1)).on_members("default", "other")
    assert manager.can_manage(make_context(name="default"))
    assert not manager.can_manage(make_context(name="x"))


def test_kind_filter_accepts_strings():
    manager = ErrorManager(replace_with(1)).on_kinds("list", Kind.MAP)
    assert manager.kinds == (Kind.LIST, Kind.MAP)
    assert manager.can_manage(make_context(receiver=[1]))
    assert manager.can_manage(make_context(receiver={}))
    assert not manager.can_manage(make_context(receiver="s"))


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        ErrorManager(replace_with(1)).on_kinds("widget")


def test_text_filter_requires_an_error():
    manager = error_manager(replace_with(1), r"no entry for key")
    assert not manager.can_manage(make_context())
    assert manager.can_manage(make_context(error=MissingKeyError('map has no entry for key "a"')))


def test_text_filter_captures():
    manager = error_manager(replace_with(1), r'no entry for key "(?P<key>\w+)"')
    context = make_context(error=MissingKeyError('map has no entry for key "abc"'))
    assert manager.can_manage(context)
    assert context.match("key") == "abc"
    assert context.match(1) == "abc"
    assert context.match("0") == 'no entry for key "abc"'
    assert context.match("missing") == ""


def test_any_text_filter_may_match():
    manager = error_manager(replace_with(1), "first", "second")
    assert manager.can_manage(make_context(error=FieldError("the second one")))


def test_error_manager_requires_callable():
    with pytest.raises(TypeError):
        error_manager("not callable")


def test_registry_orders_groups_by_name():
    registry = ManagerRegistry()
    registry.register("b", ErrorManager(replace_with(1)))
    registry.register("a", ErrorManager(replace_with(2)), ErrorManager(replace_with(3)))
    assert registry.keys() == ["a", "b"]
    assert [key for key, _ in registry.snapshot()] == ["a", "b"]
    assert len(registry["a"]) == 2
    assert "b" in registry
    assert len(registry) == 2


def test_registry_register_without_managers_removes_group():
    registry = ManagerRegistry({"a": [ErrorManager(replace_with(1))]})
    registry.register("a")
    assert "a" not in registry
    assert registry.keys() == []
    registry.register("never-added")
    assert len(registry) == 0


def test_registry_rejects_non_managers():
    with pytest.raises(TypeError):
        ManagerRegistry().register("a", replace_with(1))


def test_registry_copy_is_independent():
    registry = ManagerRegistry({"a": [ErrorManager(replace_with(1))]})
    snapshot = registry.snapshot()
    copy = registry.copy()
    copy.register("b", ErrorManager(replace_with(2)))
    registry.register("a")
    assert registry.keys() == []
    assert copy.keys() == ["a", "b"]
    assert [key for key, _ in snapshot] == ["a"]


def test_removing_a_group_keeps_the_order_of_the_others():
    managers = {name: ErrorManager(replace_with(name)) for name in ("a", "b", "c")}
    registry = ManagerRegistry()
    for name in ("c", "a", "b"):
        registry.register(name, managers[name])
    registry.register("b")
    assert registry.keys() == ["a", "c"]
    assert list(registry.snapshot()) == [
        ("a", (managers["a"],)), ("c", (managers["c"],)),
    ]


def test_re_registering_a_group_replaces_it_in_place():
    registry = ManagerRegistry()
    for name in ("a", "b", "c"):
        registry.register(name, ErrorManager(replace_with(name)))
    replacement = ErrorManager(replace_with("new"))
    registry.register("b", replacement)
    registry.register("b", replacement)
    assert registry.keys() == ["a", "b", "c"]
    assert registry["b"] == (replacement,)


def test_option_group_identifiers_sort_by_name():
    ids = [CALL_FAIL_HANDLER_ID, PUBLIC_FUNCTIONS_ID, CONTEXT_HANDLERS_ID, FUNCTIONS_AS_METHODS_ID]
    names = ids + ["aaa", "All", "0group"]
    registry = ManagerRegistry({name: [ErrorManager(replace_with(1))] for name in names})
    # digits and uppercase come before "^", lowercase after
    assert registry.keys() == [
        "0group", "All",
        FUNCTIONS_AS_METHODS_ID, PUBLIC_FUNCTIONS_ID, CONTEXT_HANDLERS_ID, CALL_FAIL_HANDLER_ID,
        "aaa",
    ]
