"""
Error managers: declarative filters plus a handler that may substitute a result.

An `ErrorManager` is immutable; every builder returns a refined copy, so the
same base manager can be specialised several ways without aliasing. Managers
are registered on a template in named groups kept by a `ManagerRegistry`;
groups are consulted in name order, managers within a group in registration
order.
"""
import dataclasses
import re
import threading
from dataclasses import dataclass
from functools import reduce
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from salvage.salvage_datatypes import (
    ContextSource, ErrorAction, Kind, MissingAction, kind_of,
)
from salvage.salvage_errors import ExecError

Handler = Callable[[Any], Optional[Tuple[Any, ErrorAction]]]


def _compile(pattern: Union[str, re.Pattern]) -> re.Pattern:
    return pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)


def _kind(value: Union[Kind, str]) -> Kind:
    return Kind(value.lower()) if isinstance(value, str) else Kind(value)


@dataclass(frozen=True)
class ErrorManager:
    """A handler guarded by source, mode, member, kind and error-text filters.

    Empty filter sets accept everything. Text filters only ever match a
    context that carries an error; a manager with no text filters accepts
    contexts with or without one.
    """
    handler: Handler
    sources: ContextSource = ContextSource.NONE
    modes: MissingAction = MissingAction.NONE
    members: Tuple[str, ...] = ()
    kinds: Tuple[Kind, ...] = ()
    patterns: Tuple[re.Pattern, ...] = ()

    def on_sources(self, *sources: ContextSource) -> "ErrorManager":
        return dataclasses.replace(self, sources=reduce(lambda a, b: a | b, sources, self.sources))

    def on_modes(self, *modes: MissingAction) -> "ErrorManager":
        return dataclasses.replace(self, modes=reduce(lambda a, b: a | b, modes, self.modes))

    on_actions = on_modes

    def on_members(self, *members: str) -> "ErrorManager":
        return dataclasses.replace(self, members=self.members + tuple(members))

    def on_kinds(self, *kinds: Union[Kind, str]) -> "ErrorManager":
        return dataclasses.replace(self, kinds=self.kinds + tuple(_kind(k) for k in kinds))

    def filters(self, *patterns: Union[str, re.Pattern]) -> "ErrorManager":
        """Adds error-text filters (regular expressions searched in the error text)."""
        return dataclasses.replace(self, patterns=self.patterns + tuple(_compile(p) for p in patterns))

    def can_manage(self, context) -> bool:
        if self.sources and not (self.sources & context.source):
            return False
        if self.modes and not (self.modes & context.mode):
            return False
        if self.members and context.member_name not in self.members:
            return False
        if self.kinds and kind_of(context.receiver) not in self.kinds:
            return False
        if not self.patterns:
            return True
        if context.error is None:
            return False
        return any(context._match(p) for p in self.patterns)


def error_manager(handler: Handler, *filters: Union[str, re.Pattern]) -> ErrorManager:
    """Creates a manager for `handler`, optionally restricted by text filters."""
    if not callable(handler):
        raise TypeError("error manager handler must be callable")
    return ErrorManager(handler).filters(*filters)


class ManagerRegistry:
    """Named groups of managers with a stable, sorted key order."""

    def __init__(self, groups: Optional[Dict[str, Iterable[ErrorManager]]] = None):
        self._lock = threading.Lock()
        self._groups: Dict[str, Tuple[ErrorManager, ...]] = {}
        self._keys: List[str] = []
        for name, managers in (groups or {}).items():
            self.register(name, *managers)

    def register(self, name: str, *managers: ErrorManager) -> "ManagerRegistry":
        """Sets (or with no managers, removes) the group `name`."""
        for manager in managers:
            if not isinstance(manager, ErrorManager):
                raise TypeError(f"{name}: expected ErrorManager, got {type(manager).__name__}")
        with self._lock:
            if managers:
                self._groups[name] = tuple(managers)
            else:
                self._groups.pop(name, None)
            self._keys = sorted(self._groups)
        return self

    def keys(self) -> List[str]:
        return list(self._keys)

    def snapshot(self) -> Tuple[Tuple[str, Tuple[ErrorManager, ...]], ...]:
        """The groups in consultation order, frozen for one execution."""
        with self._lock:
            return tuple((key, self._groups[key]) for key in self._keys)

    def copy(self) -> "ManagerRegistry":
        with self._lock:
            return ManagerRegistry(dict(self._groups))

    def __getitem__(self, name: str) -> Tuple[ErrorManager, ...]:
        return self._groups[name]

    def __contains__(self, name: str) -> bool:
        return name in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    def __repr__(self):
        return f"ManagerRegistry({self._keys!r})"


# ===================================================================
# Managers backing the extended options
# ===================================================================

FUNCTIONS_AS_METHODS_ID = "^0_FuncsAsMethods"
PUBLIC_FUNCTIONS_ID = "^1_PublicFuncs"
CONTEXT_HANDLERS_ID = "^2_ContextHandlers"
CALL_FAIL_HANDLER_ID = "^3_CallFailHandler"


def _call_function_as_method(context):
    value, invoked = context.try_call(context.match("function"))
    if invoked:
        return value, ErrorAction.RESULT_REPLACED
    return None, ErrorAction.NO_REPLACE


def _call_public_function(context):
    name = context.match("function")
    value, invoked = context.try_call(name[:1].lower() + name[1:])
    if invoked:
        return value, ErrorAction.RESULT_REPLACED
    return None, ErrorAction.NO_REPLACE


def _call_with_context(context):
    fn = context.function
    if fn is not None and fn.wants_context:
        return context.call(None, inject_self=True), ErrorAction.RESULT_REPLACED
    return None, ErrorAction.NO_REPLACE


def _trap_call_failure(context):
    if not context.trapped():
        return None, ErrorAction.NO_REPLACE
    err = context.error
    context.clear_error()
    if isinstance(err, ExecError) and err.cause is not None:
        err = err.cause
    return err, ErrorAction.RESULT_REPLACED


functions_as_methods = error_manager(
    _call_function_as_method,
    r"can't evaluate field (?P<function>.*) in type (?P<receiver>.*)",
)

public_functions = error_manager(
    _call_public_function,
    r"can't evaluate field (?P<function>[A-Z]\w*) in type .*",
)

context_handlers = error_manager(
    _call_with_context,
    r"wrong number of args for (?P<function>\S+): want (?:at (?:least|most) )?(?P<want>\d+) got (?P<got>\d+)",
    r"can't handle .* for arg of type Context",
    r"wrong type for value; expected Context; got .*",
).on_sources(ContextSource.CALL)

call_fail_handler = error_manager(
    _trap_call_failure,
    r'executing "(?P<template>.*)" at <(?P<function>.*)>: (?P<error>.*)',
    r"(?P<error>.+)",
).on_sources(ContextSource.CALL)
