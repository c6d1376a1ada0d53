"""
The evaluation context handed to error managers.

A `Context` is created by the executor at every fallible site (field lookup,
call, print) once error managers are registered. It exposes the failing
member, the syntax node, the raw argument expressions, the receiver, the piped
value, the current failure and a result slot, and lets handlers evaluate or
re-dispatch the operation.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from salvage.salvage_datatypes import (
    ContextSource, ErrorAction, MissingAction, ResultCell, StackCall, MISSING,
)
from salvage.salvage_errors import FlowControl
from salvage.salvage_invoke import CallableDescriptor, describe, invoke


class Context:
    """Failure site information plus helpers to retry the operation."""

    def __init__(self, state, source: ContextSource, error: Optional[BaseException], name: str,
                 node, args, function: Optional[CallableDescriptor], dot: Any, final: Any,
                 receiver: Any, result: ResultCell):
        self._state = state
        self._source = source
        self._error = error
        self._name = name
        self._node = node
        self._args = list(args or [])
        self._function = function
        self._dot = dot
        self._final = final
        self._receiver = receiver
        self._result = result
        self.matches: Dict[str, str] = {}

    def __repr__(self):
        return (f"Context(source={self._source!r}, member={self._name!r}, "
                f"error={self.error_text!r})")

    # --- read-only views ---

    @property
    def state(self):
        return self._state

    @property
    def source(self) -> ContextSource:
        return self._source

    @property
    def member_name(self) -> str:
        return self._name

    @property
    def node(self):
        return self._node

    @property
    def args(self) -> List[Any]:
        return self._args

    @property
    def function(self) -> Optional[CallableDescriptor]:
        return self._function

    @property
    def dot(self) -> Any:
        return self._dot

    @property
    def final(self) -> Any:
        return self._final

    @property
    def receiver(self) -> Any:
        return self._receiver

    @property
    def result(self) -> Any:
        return self._result.value

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def error_text(self) -> str:
        return "" if self._error is None else str(self._error)

    @property
    def mode(self) -> MissingAction:
        return self._state.template.missing_mode

    @property
    def template(self):
        return self._state.template

    @property
    def global_value(self) -> Any:
        return self._state.vars[0][1]

    @property
    def stack_len(self) -> int:
        return len(self._state.call_stack)

    @property
    def arg_count(self) -> int:
        return len(self._args) + (self._final is not MISSING)

    # --- mutation ---

    def set_error(self, error: Optional[BaseException]):
        self._error = error

    def clear_error(self):
        self._error = None

    def set_result(self, value: Any):
        self._result.value = value

    # --- helpers ---

    def match(self, name) -> str:
        """Returns a capture of the filter that selected this manager ("0" is the whole match)."""
        return self.matches.get(str(name), "")

    def stack_peek(self, n: int) -> Optional[StackCall]:
        return self._state.peek_stack(n)

    def variables(self) -> Dict[str, Any]:
        return self._state.variables()

    def eval_args(self) -> List[Any]:
        """Evaluates the argument expressions, piped value last."""
        values = [self._state.eval_arg(self._dot, None, arg) for arg in self._args]
        if self._final is not MISSING:
            values.append(self._final)
        return values

    def call(self, fun=None, inject_self: bool = False) -> Any:
        """Calls `fun` (default: the failing callable) with this site's arguments.

        The outcome error, if any, replaces the context's error.
        """
        desc = self._function if fun is None else describe(fun, self._name)
        if desc is None:
            raise TypeError(f"no function to call for {self._name}")
        value, err = invoke(self._state, desc, self._name, self._args, self._final, self._dot,
                            context=self if inject_self else None)
        self._error = err
        return value

    def try_call(self, name: str) -> Tuple[Any, bool]:
        """Calls the template function `name` with the receiver as first argument."""
        desc = self._state.find_function(name)
        if desc is None:
            return None, False
        self._state.push_stack(name, desc.signature)
        try:
            value, err = invoke(self._state, desc, name, self._args, self._final, self._dot,
                                receiver=self._receiver, context=self)
        finally:
            self._state.pop_stack()
        self._error = err
        return value, True

    def trapped(self) -> bool:
        """True when the failing call is a direct argument of `trap`."""
        if self.stack_len < 2:
            return False
        caller = self.stack_peek(1)
        return caller is not None and caller.name == "trap"

    def _match(self, pattern: re.Pattern) -> bool:
        m = pattern.search(self.error_text)
        if m is None:
            return False
        self.matches = {"0": m.group(0)}
        for i, group in enumerate(m.groups(), 1):
            self.matches[str(i)] = group or ""
        for name, group in m.groupdict().items():
            self.matches[name] = group or ""
        return True

    def try_recover(self) -> Optional[BaseException]:
        """Offers this failure to the registered managers.

        Groups are scanned in name order and managers in registration order;
        the scan stops at the first manager that substitutes a result. A
        handler that raises records its exception as the new failure and
        counts as a decline. Returns the remaining failure, if any.
        """
        state = self._state
        action = ErrorAction.NO_REPLACE
        for key, managers in state.managers:
            for manager in managers:
                if not manager.can_manage(self):
                    continue
                try:
                    outcome = manager.handler(self)
                except FlowControl:
                    raise
                except Exception as exc:
                    state._dbg("MANAGER", key, "raised", repr(exc))
                    self._error = exc
                    continue
                if outcome is None:
                    continue
                value, action = outcome
                if action != ErrorAction.NO_REPLACE:
                    state._dbg("MANAGER", key, "replaced", self._name, action.name)
                    self.set_result(value)
                    break
            else:
                continue
            break

        if action == ErrorAction.RESULT_AS_ARRAY:
            self.set_result([
                state.eval_field(self._dot, self._name, self._node, self._field_args(), self._final, item)
                for item in self.result
            ])
        return self._error

    def _field_args(self):
        # eval_field expects the command's head node first
        return [self._node] + self._args
