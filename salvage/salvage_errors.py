"""
Exception types raised while parsing and executing templates.

Two families live here. Template failures (`TemplateError` and friends) are
what callers see. Flow-control signals (`FlowControl`) unwind the executor
for break/continue/return and are never offered to error managers.
"""
from typing import Any, List, Optional


class TemplateError(Exception):
    """Base class for every located template failure."""

    def __init__(self, message: str, template_name: str = "", node: Any = None):
        super().__init__(message)
        self.template_name = template_name
        self.node = node


class ParseError(TemplateError):
    pass


class ExecError(TemplateError):
    """A failure raised while executing a template.

    The message has the form
    ``template: NAME:LINE:COL: executing "NAME" at <NODE>: CAUSE``.
    `cause` keeps the original exception so callers can inspect it.
    """

    def __init__(self, message: str, template_name: str = "", node: Any = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, template_name, node)
        self.cause = cause


# Raw failure kinds. Their text is what ErrorManager filters match against.

class ArityError(TypeError):
    """Wrong number of arguments for a callable."""


class ArgumentTypeError(TypeError):
    """An argument could not be coerced to the declared parameter type."""


class MissingKeyError(LookupError):
    """A mapping has no entry for the requested key."""

    def __str__(self):
        # LookupError would repr() a single argument
        return str(self.args[0]) if self.args else ""


class FieldError(AttributeError):
    """A field or method cannot be evaluated on the receiver."""


class FlowControl(Exception):
    """Base class of break/continue/return signals."""

    keyword = ""

    def __str__(self):
        return f"{self.keyword} signal"


class BreakSignal(FlowControl):
    keyword = "break"


class ContinueSignal(FlowControl):
    keyword = "continue"


class ReturnSignal(FlowControl):
    keyword = "return"

    def __init__(self, values: Optional[List[Any]] = None):
        super().__init__()
        self.values = list(values or [])


class ConfigError(ValueError):
    """A manager configuration document is malformed."""
