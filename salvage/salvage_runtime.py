"""
Template sets: parsing, configuration and execution entry points.

Templates created with `new()` from one another share a common state: the
named templates, the registered functions, the error managers, the options
and the missing-key mode. `clone()` copies that state so a configured set can
be specialised without affecting the original.
"""
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from salvage.salvage_datatypes import MissingAction, Option, NO_VALUE
from salvage.salvage_errors import ExecError, TemplateError
from salvage.salvage_flow import FLOW_FUNCTIONS
from salvage.salvage_interpreter import Executor
from salvage.salvage_invoke import CallableDescriptor, describe
from salvage.salvage_managers import (
    CALL_FAIL_HANDLER_ID, CONTEXT_HANDLERS_ID, FUNCTIONS_AS_METHODS_ID, PUBLIC_FUNCTIONS_ID,
    ErrorManager, ManagerRegistry, call_fail_handler, context_handlers, functions_as_methods,
    public_functions,
)
from salvage.salvage_nodes import Node, Tree
from salvage.salvage_parser import parse
from salvage.salvage_stdlib import StdLib, eval_templates, trap

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_MISSING_KEY_MODES = {
    "invalid": MissingAction.DEFAULT,
    "default": MissingAction.DEFAULT,
    "zero": MissingAction.ZERO_VALUE,
    "error": MissingAction.ERROR,
}


@dataclass
class ExecutionResult:
    """The structured result of a template execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_node: Optional[Node] = None

    def format_error(self) -> str:
        """Formats the error message followed by the failing source line and a caret."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        node = self.error_node
        if node is None or node.tree is None:
            return msg
        line, col = node.tree.location(node.pos)
        lines = node.tree.text.splitlines()
        if not 0 < line <= len(lines):
            return msg
        return f"{msg}\n{lines[line - 1]}\n{' ' * col}^"


class _Common:
    """State shared by every template of a set."""

    def __init__(self):
        self.templates: Dict[str, "Template"] = {}
        self.funcs: Dict[str, CallableDescriptor] = {}
        self.builtins: Dict[str, CallableDescriptor] = StdLib().functions()
        self.managers = ManagerRegistry()
        self.options = Option.NONE
        self.missing_mode = MissingAction.DEFAULT
        self.lock = threading.RLock()

    def names(self):
        return set(self.funcs) | set(self.builtins)


class Template:
    """A named template belonging to a template set."""

    def __init__(self, name: str, common: Optional[_Common] = None):
        self.name = name
        self.tree: Optional[Tree] = None
        self.left_delim = "{{"
        self.right_delim = "}}"
        self._common = common or _Common()

    def __repr__(self):
        return f"Template({self.name!r})"

    # --- shared state views ---

    @property
    def managers(self) -> ManagerRegistry:
        return self._common.managers

    @property
    def missing_mode(self) -> MissingAction:
        return self._common.missing_mode

    @property
    def options(self) -> Option:
        return self._common.options

    def new(self, name: str) -> "Template":
        """Creates a template associated with this one, sharing its delimiters."""
        tmpl = Template(name, self._common)
        tmpl.left_delim, tmpl.right_delim = self.left_delim, self.right_delim
        return tmpl

    def lookup(self, name: str) -> Optional["Template"]:
        return self._common.templates.get(name)

    def templates(self) -> List["Template"]:
        return list(self._common.templates.values())

    def defined_templates(self) -> str:
        names = sorted(self._common.templates)
        if not names:
            return ""
        return "; defined templates are: " + ", ".join(f'"{n}"' for n in names)

    def find_function(self, name: str) -> Optional[CallableDescriptor]:
        common = self._common
        return common.funcs.get(name) or common.builtins.get(name)

    def get_funcs(self) -> Dict[str, Callable]:
        return {name: desc.fn for name, desc in self._common.funcs.items()}

    def get_builtins(self) -> Dict[str, Callable]:
        return {name: desc.fn for name, desc in self._common.builtins.items()}

    # --- configuration ---

    def funcs(self, mapping: Mapping[str, Callable]) -> "Template":
        """Registers template functions; a function taking a Context enables FUNCTIONS_WITH_CONTEXT."""
        with self._common.lock:
            for name, fn in mapping.items():
                if not _IDENTIFIER_RE.fullmatch(name):
                    raise ValueError(f"function name {name!r} is not a valid identifier")
                desc = describe(fn, name)
                self._common.funcs[name] = desc
                if desc.wants_context and not self.options & Option.FUNCTIONS_WITH_CONTEXT:
                    self._set_option(Option.FUNCTIONS_WITH_CONTEXT)
        return self

    def error_managers(self, name: str, *managers: ErrorManager) -> "Template":
        """Replaces the manager group `name`; no managers removes it."""
        self._common.managers.register(name, *managers)
        return self

    def option(self, *options) -> "Template":
        """Sets `missingkey=...` strings, MissingAction values or Option flags."""
        with self._common.lock:
            for opt in options:
                if isinstance(opt, MissingAction):
                    self._common.missing_mode = opt
                elif isinstance(opt, Option):
                    self._set_option(opt)
                elif isinstance(opt, str):
                    self._set_string_option(opt)
                else:
                    raise TypeError(f"unrecognized option type: {type(opt).__name__}")
        return self

    def _set_string_option(self, opt: str):
        key, sep, value = opt.partition("=")
        if sep and key.strip() == "missingkey":
            mode = _MISSING_KEY_MODES.get(value.strip().lower())
            if mode is None:
                raise ValueError(f"unrecognized option: {opt}")
            self._common.missing_mode = mode
            return
        try:
            self._set_option(Option[opt.strip().upper()])
        except KeyError:
            raise ValueError(f"unrecognized option: {opt}") from None

    def _set_option(self, opt: Option):
        self._common.options |= opt
        if opt & Option.FUNCTIONS_AS_METHODS:
            self.error_managers(FUNCTIONS_AS_METHODS_ID, functions_as_methods)
        if opt & Option.PUBLIC_FUNCTIONS:
            self.error_managers(PUBLIC_FUNCTIONS_ID, public_functions)
        if opt & Option.FUNCTIONS_WITH_CONTEXT:
            self.error_managers(CONTEXT_HANDLERS_ID, context_handlers)
        if opt & Option.TRAP:
            self.error_managers(CALL_FAIL_HANDLER_ID, call_fail_handler).funcs({"trap": trap})
        if opt & Option.EVAL:
            self.funcs({"eval": eval_templates})
        if opt & Option.FLOW_CONTROL:
            self.funcs(FLOW_FUNCTIONS)

    def delims(self, left: str = "", right: str = "") -> "Template":
        self.left_delim = left or "{{"
        self.right_delim = right or "}}"
        return self

    # --- parsing ---

    def parse(self, text: str) -> "Template":
        """Parses `text`; `define` and `block` add associated templates."""
        common = self._common
        with common.lock:
            trees = parse(self.name, text, common.names(), self.left_delim, self.right_delim)
            for name, tree in trees.items():
                self._add_tree(name, tree)
        return self

    def _add_tree(self, name: str, tree: Tree):
        common = self._common
        tmpl = self if name == self.name else common.templates.get(name)
        if tmpl is None:
            tmpl = self.new(name)
        if tmpl.tree is None or not tree.is_empty() or tmpl.tree.is_empty():
            tmpl.tree = tree
        common.templates[name] = tmpl

    def clone(self) -> "Template":
        """Copies the set; trees are shared, configuration is not."""
        src = self._common
        with src.lock:
            common = _Common()
            common.funcs = dict(src.funcs)
            common.managers = src.managers.copy()
            common.options = src.options
            common.missing_mode = src.missing_mode
            for name, tmpl in src.templates.items():
                copy = Template(name, common)
                copy.tree = tmpl.tree
                copy.left_delim, copy.right_delim = tmpl.left_delim, tmpl.right_delim
                common.templates[name] = copy
        clone = common.templates.get(self.name)
        if clone is None:
            clone = Template(self.name, common)
            clone.left_delim, clone.right_delim = self.left_delim, self.right_delim
        return clone

    # --- execution ---

    def execute(self, data: Any = None, writer=None) -> str:
        """Renders this template; nothing is written to `writer` on failure."""
        state = Executor(self, NO_VALUE if data is None else data)
        text = state.execute()
        if writer is not None:
            writer.write(text)
        return text

    def execute_template(self, name: str, data: Any = None, writer=None) -> str:
        tmpl = self.lookup(name)
        if tmpl is None:
            raise ExecError(f'template: no template "{name}" associated with template "{self.name}"', self.name)
        return tmpl.execute(data, writer)

    def must_execute(self, text: str, data: Any = None) -> str:
        """Parses `text` into this template and renders it in one step."""
        return self.parse(text).execute(data)

    def run(self, data: Any = None, name: Optional[str] = None) -> ExecutionResult:
        """Executes and reports the outcome instead of raising template errors."""
        try:
            value = self.execute_template(name, data) if name else self.execute(data)
        except TemplateError as exc:
            return ExecutionResult('error', error_message=str(exc), error_node=exc.node)
        return ExecutionResult('success', value=value)


def new(name: str) -> Template:
    """Creates a new, empty template set whose main template is `name`."""
    return Template(name)
