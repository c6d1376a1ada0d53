from salvage.salvage_config import configure, load_config
from salvage.salvage_context import Context
from salvage.salvage_datatypes import (
    ContextSource, ErrorAction, Kind, MissingAction, Option, MISSING, NO_VALUE,
)
from salvage.salvage_errors import (
    ArgumentTypeError, ArityError, BreakSignal, ConfigError, ContinueSignal, ExecError,
    FieldError, FlowControl, MissingKeyError, ParseError, ReturnSignal, TemplateError,
)
from salvage.salvage_managers import ErrorManager, ManagerRegistry, error_manager
from salvage.salvage_runtime import ExecutionResult, Template, new

__all__ = [
    "ArgumentTypeError", "ArityError", "BreakSignal", "ConfigError", "Context", "ContextSource",
    "ContinueSignal", "ErrorAction", "ErrorManager", "ExecError", "ExecutionResult", "FieldError",
    "FlowControl", "Kind", "ManagerRegistry", "MissingAction", "MissingKeyError", "MISSING",
    "NO_VALUE", "Option", "ParseError", "ReturnSignal", "Template", "TemplateError", "configure",
    "error_manager", "load_config", "new",
]
