"""
Enumerations, sentinels and small value holders shared by the engine.
"""
import collections.abc
import enum
from dataclasses import dataclass
from typing import Any, Optional


class ContextSource(enum.IntFlag):
    """Why an evaluation context was created."""
    NONE = 0
    FIELD = 1   # field, key or method lookup failed
    CALL = 2    # function or method invocation failed
    PRINT = 4   # a value is about to be rendered
    PIPE = 8    # the failing call received a piped value


class MissingAction(enum.IntFlag):
    """Behaviour on unresolved map keys (the `missingkey` option)."""
    NONE = 0
    DEFAULT = 1
    INVALID = 1
    ZERO_VALUE = 2
    ERROR = 4


class ErrorAction(enum.IntEnum):
    """Outcome reported by an error manager's handler."""
    NO_REPLACE = 0
    RESULT_REPLACED = 1
    RESULT_AS_ARRAY = 2


class Option(enum.IntFlag):
    """Extended features that can be enabled on a template."""
    NONE = 0
    FUNCTIONS_AS_METHODS = 1
    FUNCTIONS_WITH_CONTEXT = 2
    PUBLIC_FUNCTIONS = 4
    TRAP = 8
    EVAL = 16
    FLOW_CONTROL = 32
    NON_STANDARD_RESULTS = 2
    ALL_OPTIONS = 63


class Kind(enum.Enum):
    """Coarse classification of a receiver, used by kind filters."""
    INVALID = "invalid"
    NIL = "nil"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    LIST = "list"
    MAP = "map"
    FUNC = "func"
    STRUCT = "struct"


class _Sentinel:
    __slots__ = ("_name", "_text")

    def __init__(self, name: str, text: str):
        self._name = name
        self._text = text

    def __repr__(self):
        return self._name

    def __str__(self):
        return self._text

    def __bool__(self):
        return False


# The absence of a value (an unresolved key under the default mode).
NO_VALUE = _Sentinel("NO_VALUE", "<no value>")
# Marks "no piped value" / "no receiver" in call plumbing.
MISSING = _Sentinel("MISSING", "<missing>")


def is_valid(value: Any) -> bool:
    return value is not NO_VALUE and value is not MISSING and value is not None


def kind_of(value: Any) -> Kind:
    if value is NO_VALUE or value is MISSING:
        return Kind.INVALID
    if value is None:
        return Kind.NIL
    if isinstance(value, bool):
        return Kind.BOOL
    if isinstance(value, int):
        return Kind.INT
    if isinstance(value, float):
        return Kind.FLOAT
    if isinstance(value, str):
        return Kind.STRING
    if isinstance(value, collections.abc.Mapping):
        return Kind.MAP
    if isinstance(value, (list, tuple)):
        return Kind.LIST
    if callable(value):
        return Kind.FUNC
    return Kind.STRUCT


def type_name(value: Any) -> str:
    if value is NO_VALUE or value is MISSING:
        return "<nil>"
    return type(value).__name__


class ResultCell:
    """Single mutable slot holding the value produced at an evaluation site."""
    __slots__ = ("value",)

    def __init__(self, value: Any = NO_VALUE):
        self.value = value

    def __repr__(self):
        return f"ResultCell({self.value!r})"


@dataclass(frozen=True)
class StackCall:
    """One frame of the executor's call stack."""
    name: str
    signature: Optional[Any] = None
