"""
Builtin template functions.

`StdLib` methods named `_name` are registered as the builtin `name`, the way
the interpreter binds its core library. Option functions (`trap`, `eval`)
take the evaluation `Context` and are registered only when their option is
enabled.
"""
import collections.abc
import inspect
import urllib.parse
from typing import Any, Dict

from salvage.salvage_context import Context
from salvage.salvage_datatypes import MISSING, NO_VALUE, type_name
from salvage.salvage_interpreter import is_true, zero_value
from salvage.salvage_invoke import CallableDescriptor, collapse, describe
from salvage.salvage_printer import Printer

_HTML_ESCAPES = {
    "\0": "\ufffd",
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
}

_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "<": "\\u003C",
    ">": "\\u003E",
    "&": "\\u0026",
    "=": "\\u003D",
}


def _basic_kind(value: Any) -> str:
    if value is None or value is NO_VALUE or value is MISSING:
        return "nil"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return ""


def _equal(a: Any, b: Any) -> bool:
    ka, kb = _basic_kind(a), _basic_kind(b)
    if ka == "nil" or kb == "nil":
        return ka == kb
    if ka and kb and ka != kb:
        raise TypeError("incompatible types for comparison")
    return a == b


def _less(a: Any, b: Any) -> bool:
    ka, kb = _basic_kind(a), _basic_kind(b)
    if ka not in ("number", "string") or kb not in ("number", "string"):
        raise TypeError("invalid type for comparison")
    if ka != kb:
        raise TypeError("incompatible types for comparison")
    return a < b


def _text_of(printer: Printer, args) -> str:
    if len(args) == 1 and isinstance(args[0], str):
        return args[0]
    return printer.sprint(*args)


class StdLib:
    """Python implementations of the builtin template functions."""

    def __init__(self, printer: Printer = None):
        self.printer = printer or Printer()

    def functions(self) -> Dict[str, CallableDescriptor]:
        builtins = {}
        for name, member in inspect.getmembers(self):
            if name.startswith("_") and not name.startswith("__") and callable(member):
                builtins[name[1:]] = describe(member, name[1:])
        return builtins

    # --- logic ---

    def _and(self, arg0, *args):
        """Returns the first false argument, or the last one."""
        for value in (arg0,) + args:
            if not is_true(value):
                return value
        return args[-1] if args else arg0

    def _or(self, arg0, *args):
        for value in (arg0,) + args:
            if is_true(value):
                return value
        return args[-1] if args else arg0

    def _not(self, arg) -> bool:
        return not is_true(arg)

    # --- comparison ---

    def _eq(self, arg1, *args) -> bool:
        if not args:
            raise TypeError("missing argument for comparison")
        return any(_equal(arg1, arg) for arg in args)

    def _ne(self, arg1, arg2) -> bool:
        return not _equal(arg1, arg2)

    def _lt(self, arg1, arg2) -> bool:
        return _less(arg1, arg2)

    def _le(self, arg1, arg2) -> bool:
        return _less(arg1, arg2) or _equal(arg1, arg2)

    def _gt(self, arg1, arg2) -> bool:
        return not (_less(arg1, arg2) or _equal(arg1, arg2))

    def _ge(self, arg1, arg2) -> bool:
        return not _less(arg1, arg2)

    # --- containers ---

    def _len(self, item) -> int:
        if item is None or item is NO_VALUE:
            raise TypeError("len of nil pointer")
        try:
            return len(item)
        except TypeError:
            raise TypeError(f"len of type {type_name(item)}") from None

    def _index(self, item, *indices):
        """`index x 1 2` is x[1][2]; a missing mapping key gives the zero value."""
        for idx in indices:
            if item is None or item is NO_VALUE:
                raise TypeError("index of untyped nil")
            if isinstance(item, collections.abc.Mapping):
                item = item[idx] if idx in item else zero_value(item)
            elif isinstance(item, collections.abc.Sequence):
                if isinstance(idx, bool) or not isinstance(idx, int):
                    raise TypeError(f"cannot index slice/array with type {type_name(idx)}")
                if idx < 0 or idx >= len(item):
                    raise IndexError(f"index out of range: {idx}")
                item = item[idx]
            else:
                raise TypeError(f"can't index item of type {type_name(item)}")
        return item

    def _slice(self, item, *indices):
        """`slice x 1 2` is x[1:2]; a third index caps the capacity of lists."""
        if not isinstance(item, collections.abc.Sequence):
            raise TypeError(f"can't slice item of type {type_name(item)}")
        if len(indices) > 3:
            raise TypeError(f"too many slice indexes: {len(indices)}")
        if len(indices) == 3 and isinstance(item, str):
            raise TypeError("cannot 3-index slice a string")
        bounds = []
        for idx in indices:
            if isinstance(idx, bool) or not isinstance(idx, int):
                raise TypeError(f"cannot index slice/array with type {type_name(idx)}")
            if idx < 0 or idx > len(item):
                raise IndexError(f"index out of range: {idx}")
            bounds.append(idx)
        for low, high in zip(bounds, bounds[1:]):
            if low > high:
                raise IndexError(f"invalid slice index: {low} > {high}")
        start = bounds[0] if bounds else 0
        stop = bounds[1] if len(bounds) > 1 else len(item)
        return item[start:stop]

    def _call(self, fn, *args):
        """Calls a function value; its error, if any, becomes the call's failure."""
        if not callable(fn):
            raise TypeError(f"non-function of type {type_name(fn)}")
        desc = describe(fn, "call")
        err = desc.arity_error(desc.name, len(args), 0)
        if err is not None:
            raise err
        value, err = desc.normalize(fn(*args))
        if err is not None:
            raise err
        return value

    # --- printing ---

    def _print(self, *args) -> str:
        return self.printer.sprint(*args)

    def _printf(self, fmt: str, *args) -> str:
        return self.printer.sprintf(fmt, *args)

    def _println(self, *args) -> str:
        return self.printer.sprintln(*args)

    # --- escaping ---

    def _html(self, *args) -> str:
        text = _text_of(self.printer, args)
        return "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)

    def _js(self, *args) -> str:
        out = []
        for ch in _text_of(self.printer, args):
            if ch in _JS_ESCAPES:
                out.append(_JS_ESCAPES[ch])
            elif ord(ch) < 0x20:
                out.append(f"\\u{ord(ch):04X}")
            else:
                out.append(ch)
        return "".join(out)

    def _urlquery(self, *args) -> str:
        return urllib.parse.quote_plus(_text_of(self.printer, args))


# ===================================================================
# Option functions
# ===================================================================

def trap(context: Context) -> Any:
    """Evaluates its arguments; failures of a trapped call come back as values."""
    return collapse(context.eval_args())


def eval_templates(context: Context, *expressions: str) -> str:
    """Renders each expression as a template with the current dot and variables."""
    # parsed into a private copy of the set so renders never add templates to it
    tmpl = context.template.clone().new("eval")
    left, right = tmpl.left_delim, tmpl.right_delim
    data: Dict[str, Any] = {}
    if isinstance(context.dot, collections.abc.Mapping):
        data.update((str(k), v) for k, v in context.dot.items())

    init = ""
    for key, value in context.variables().items():
        data[key] = value
        init += f'{left}- {key} := index $ "{key}" -{right}'

    out = []
    for expr in expressions:
        tmpl.parse(init + expr)
        out.append(tmpl.execute(data))
    return "".join(out)
