"""
Dynamic invocation adapter.

Any Python callable registered with a template (or found as a method on the
data) is analysed once into a `CallableDescriptor`: positional slots and their
declared types, defaults, a variadic tail, whether it wants the evaluation
`Context` as first argument and the shape of its return annotation. `invoke`
then binds unevaluated argument expressions, an optional receiver and an
optional piped value to those slots and normalises whatever the callable
returns into a `(value, error)` pair.
"""
import inspect
import typing
from typing import Any, Dict, List, Optional, Tuple

from salvage.salvage_datatypes import MISSING, NO_VALUE, type_name
from salvage.salvage_errors import ArityError, ArgumentTypeError, FlowControl

_EMPTY = inspect.Parameter.empty
_NONE_TYPE = type(None)


def runtime_class(hint: Any) -> Optional[type]:
    """Reduces a type hint to a class usable with isinstance, None for 'anything'."""
    if hint is _EMPTY or hint is Any or hint is None or hint is object:
        return None
    if isinstance(hint, str):
        return None
    origin = typing.get_origin(hint)
    if origin is typing.Union:
        members = [a for a in typing.get_args(hint) if a is not _NONE_TYPE]
        if len(members) == 1:
            return runtime_class(members[0])
        return None
    if origin is not None:
        return origin if isinstance(origin, type) else None
    return hint if isinstance(hint, type) else None


def is_error_type(hint: Any) -> bool:
    if isinstance(hint, type) and issubclass(hint, BaseException):
        return True
    if typing.get_origin(hint) is typing.Union:
        members = [a for a in typing.get_args(hint) if a is not _NONE_TYPE]
        return bool(members) and all(is_error_type(m) for m in members)
    return False


def _is_context_hint(hint: Any) -> bool:
    from salvage.salvage_context import Context
    if isinstance(hint, str):
        return hint.split(".")[-1] == "Context"
    return hint is Context


def collapse(values: List[Any]) -> Any:
    """Zero values give "", one value stays itself, several become a list."""
    if not values:
        return ""
    if len(values) == 1:
        return values[0]
    return list(values)


class CallableShape:
    """The analysed parameter and return shape of a callable."""

    def __init__(self, fn):
        try:
            self.signature = inspect.signature(fn)
        except (TypeError, ValueError):
            self.signature = None
        try:
            hints = typing.get_type_hints(fn)
        except (NameError, TypeError, AttributeError):
            hints = dict(getattr(fn, "__annotations__", {}) or {})

        self.param_types: List[Any] = []
        self.required = 0
        self.variadic = self.signature is None
        self.variadic_type: Any = None
        self.return_type: Any = _EMPTY
        if self.signature is None:
            self.wants_context = False
            return

        kinds = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        for param in self.signature.parameters.values():
            if param.kind in kinds:
                self.param_types.append(hints.get(param.name, param.annotation))
                if param.default is _EMPTY:
                    self.required += 1
            elif param.kind is inspect.Parameter.VAR_POSITIONAL:
                self.variadic = True
                self.variadic_type = hints.get(param.name, param.annotation)
        self.return_type = hints.get("return", self.signature.return_annotation)
        self.wants_context = bool(self.param_types) and _is_context_hint(self.param_types[0])

    @property
    def fixed(self) -> int:
        return len(self.param_types)

    def slot_type(self, index: int) -> Any:
        if index < len(self.param_types):
            return self.param_types[index]
        return self.variadic_type


_SHAPES: Dict[Any, CallableShape] = {}


def shape_of(fn) -> CallableShape:
    # bound methods share the analysis of their underlying function
    key = getattr(fn, "__func__", None)
    if key is None:
        return CallableShape(fn)
    shape = _SHAPES.get(key)
    if shape is None:
        shape = _SHAPES[key] = CallableShape(fn)
    return shape


class CallableDescriptor:
    """A callable plus its analysed shape, built once at registration."""

    def __init__(self, fn, name: str = "", shape: Optional[CallableShape] = None):
        if not callable(fn):
            raise TypeError(f"value for {name or fn!r} not a function")
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "function")
        self.shape = shape or shape_of(fn)

    @property
    def signature(self):
        return self.shape.signature

    @property
    def wants_context(self) -> bool:
        return self.shape.wants_context

    def __repr__(self):
        return f"CallableDescriptor({self.name!r}, {self.signature})"

    def arity_error(self, name: str, supplied: int, offset: int) -> Optional[ArityError]:
        shape = self.shape
        fixed = shape.fixed - offset
        required = shape.required - offset
        if shape.variadic:
            if supplied < required:
                return ArityError(f"wrong number of args for {name}: want at least {required} got {supplied}")
            return None
        if supplied > fixed:
            want = f"{fixed}" if required == fixed else f"at most {fixed}"
            return ArityError(f"wrong number of args for {name}: want {want} got {supplied}")
        if supplied < required:
            want = f"{required}" if required == fixed else f"at least {required}"
            return ArityError(f"wrong number of args for {name}: want {want} got {supplied}")
        return None

    def bind(self, state, name: str, args, final=MISSING, dot=None, receiver=MISSING, context=None) -> List[Any]:
        """Evaluates and positions the arguments of one call."""
        shape = self.shape
        offset = 1 if context is not None and shape.wants_context else 0
        supplied = len(args) + (final is not MISSING) + (receiver is not MISSING)
        err = self.arity_error(name, supplied, offset)
        if err is not None:
            raise err

        values: List[Any] = [context] if offset else []
        sources: List[Tuple[str, Any]] = []
        if receiver is not MISSING:
            sources.append(("receiver", receiver))
        sources.extend(("expr", node) for node in args)
        if final is not MISSING:
            sources.append(("final", final))

        for i, (kind, item) in enumerate(sources):
            hint = shape.slot_type(i + offset)
            if _is_context_hint(hint):
                if kind == "expr":
                    raise ArgumentTypeError(f"can't handle {item} for arg of type Context")
                raise ArgumentTypeError(f"wrong type for value; expected Context; got {type_name(item)}")
            if kind == "receiver":
                values.append(convert_lossless(item, hint))
            elif kind == "expr":
                values.append(state.eval_arg(dot, hint, item))
            else:
                values.append(state.validate_type(item, hint))
        return values

    def normalize(self, result: Any) -> Tuple[Any, Optional[BaseException]]:
        """Maps the callable's raw return onto a (value, error) pair."""
        rt = self.shape.return_type
        if rt is None or rt is _NONE_TYPE:
            return "", None
        if is_error_type(rt):
            return "", result
        if typing.get_origin(rt) is tuple:
            items = list(result) if result is not None else []
            hints = typing.get_args(rt)
            if hints and is_error_type(hints[-1]) and items:
                return collapse(items[:-1]), items[-1]
            return collapse(items), None
        if rt is _EMPTY:
            if result is None:
                return "", None
            if isinstance(result, tuple):
                items = list(result)
                if items and isinstance(items[-1], BaseException):
                    return collapse(items[:-1]), items[-1]
                return collapse(items), None
        return result, None


def describe(fn, name: str = "") -> CallableDescriptor:
    if isinstance(fn, CallableDescriptor):
        return fn
    return CallableDescriptor(fn, name)


def convert_lossless(value: Any, hint: Any) -> Any:
    """Converts a receiver to a parameter type when its rendering is unchanged."""
    cls = runtime_class(hint)
    if cls is None or isinstance(value, cls):
        return value
    from salvage.salvage_printer import Printer
    printer = Printer()
    try:
        converted = cls(value)
    except (TypeError, ValueError):
        converted = MISSING
    if converted is MISSING or printer.pformat(converted) != printer.pformat(value):
        raise ArgumentTypeError(
            f"wrong type for value; expected {cls.__name__}; got {type_name(value)}")
    return converted


def invoke(state, desc: CallableDescriptor, name: str, args, final=MISSING, dot=None,
           receiver=MISSING, context=None) -> Tuple[Any, Optional[BaseException]]:
    """Calls `desc` and returns (value, error).

    Failures while evaluating arguments or inside the callable are returned,
    never raised; only flow-control signals propagate.
    """
    shape = desc.shape
    try:
        if context is not None and shape.wants_context and shape.fixed == 1 and not shape.variadic:
            result = desc.fn(context)
        else:
            result = desc.fn(*desc.bind(state, name, args, final, dot, receiver, context))
    except FlowControl:
        raise
    except Exception as exc:
        return NO_VALUE, exc
    value, err = desc.normalize(result)
    if err is not None and not isinstance(err, BaseException):
        err = None
    return value, err
