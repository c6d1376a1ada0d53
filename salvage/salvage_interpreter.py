"""
The executor: walks a parsed template against data and writes the output.

Every fallible step (field lookup, call, print) funnels through `result()`,
which builds a `Context` and offers the failure to the template's error
managers before deciding whether to raise.
"""
import collections.abc
import inspect
import io
import os
import sys
from typing import Any, Dict, List, Optional

from salvage.salvage_context import Context
from salvage.salvage_datatypes import (
    ContextSource, MissingAction, Option, ResultCell, StackCall, MISSING, NO_VALUE, is_valid,
    type_name,
)
from salvage.salvage_errors import (
    BreakSignal, ContinueSignal, ExecError, FieldError, MissingKeyError, ReturnSignal, TemplateError,
)
from salvage.salvage_flow import flow
from salvage.salvage_invoke import CallableDescriptor, collapse, describe, invoke, runtime_class
from salvage.salvage_nodes import (
    ActionNode, BoolNode, ChainNode, CommandNode, DotNode, FieldNode, IdentifierNode, IfNode,
    ListNode, NilNode, Node, NumberNode, PipeNode, RangeNode, StringNode, TemplateNode, TextNode,
    VariableNode, WithNode,
)
from salvage.salvage_printer import Printer

_NONE_TYPE = type(None)


def max_depth() -> int:
    return int(os.environ.get("SALVAGE_MAX_DEPTH", "200"))


def is_true(value: Any) -> bool:
    """Truthiness as templates see it: empty and zero values are false."""
    if value is NO_VALUE or value is MISSING or value is None:
        return False
    try:
        return bool(value)
    except (TypeError, ValueError):
        return True


def zero_value(receiver: Any) -> Any:
    """The zero value of a mapping's element type, when all its values share one."""
    if isinstance(receiver, collections.abc.Mapping):
        types = {type(v) for v in receiver.values()}
        if len(types) == 1:
            cls = types.pop()
            try:
                return cls()
            except TypeError:
                return NO_VALUE
    return NO_VALUE


def _accepts_none(hint: Any) -> bool:
    if hint is None or hint is _NONE_TYPE:
        return True
    args = getattr(hint, "__args__", None) or ()
    return _NONE_TYPE in args


class OutputBuffer:
    """Collects rendered text; supports rolling back to a mark."""

    def __init__(self):
        self._io = io.StringIO()

    def write(self, text: str):
        self._io.write(text)

    def mark(self) -> int:
        return self._io.tell()

    def truncate(self, mark: int):
        self._io.seek(mark)
        self._io.truncate()

    def getvalue(self) -> str:
        return self._io.getvalue()


class Executor:
    """Execution state for one render: variables, call stack, output, managers."""

    def __init__(self, template, data: Any, out: Optional[OutputBuffer] = None):
        self.template = template
        self.out = out or OutputBuffer()
        self.vars: List[List[Any]] = [["$", data]]
        self.call_stack: List[StackCall] = []
        self.managers = template.managers.snapshot()
        self.printer = Printer()
        self.node: Optional[Node] = None
        self.depth = 0
        self._marks: List[int] = []

    def _dbg(self, *parts):
        if os.environ.get("SALVAGE_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    # --- entry point ---

    def execute(self) -> str:
        tree = self.template.tree
        name = self.template.name
        if tree is None or tree.root is None:
            raise ExecError(f'template: {name}: "{name}" is an incomplete or empty template', name)
        data = self.vars[0][1]
        self._marks.append(self.out.mark())
        try:
            self.walk(data, tree.root)
        except ReturnSignal:
            pass
        except (BreakSignal, ContinueSignal) as signal:
            raise self.make_error(RuntimeError(f"{signal.keyword} called outside of a range loop"), self.node)
        except TemplateError:
            raise
        except Exception as exc:
            raise self.make_error(exc, self.node) from exc
        finally:
            self._marks.pop()
        return self.out.getvalue()

    # --- errors ---

    def make_error(self, err: BaseException, node: Optional[Node] = None) -> TemplateError:
        """Locates a raw failure at `node`; template errors are already located."""
        if isinstance(err, TemplateError):
            return err
        node = node if node is not None else self.node
        name = self.template.name
        message = str(err) or type(err).__name__
        if node is None or node.tree is None:
            return ExecError(f"template: {name}: {message}", name, node, err)
        location, context = node.tree.error_context(node)
        return ExecError(f'template: {location}: executing "{name}" at <{context}>: {message}',
                         name, node, err)

    def errorf(self, message: str, node: Optional[Node] = None):
        raise self.make_error(RuntimeError(message), node)

    # --- call stack and variables ---

    def push_stack(self, name: str, signature=None):
        self.call_stack.append(StackCall(name, signature))

    def pop_stack(self):
        if self.call_stack:
            self.call_stack.pop()

    def peek_stack(self, n: int) -> Optional[StackCall]:
        if n < 0 or n >= len(self.call_stack):
            return None
        return self.call_stack[-1 - n]

    def push(self, name: str, value: Any):
        self.vars.append([name, value])

    def set_var(self, name: str, value: Any):
        for entry in reversed(self.vars):
            if entry[0] == name:
                entry[1] = value
                return
        self.errorf(f"undefined variable: {name}")

    def set_top_var(self, n: int, value: Any):
        self.vars[len(self.vars) - n][1] = value

    def var_value(self, name: str) -> Any:
        for entry in reversed(self.vars):
            if entry[0] == name:
                return entry[1]
        self.errorf(f"undefined variable: {name}")

    def variables(self) -> Dict[str, Any]:
        return {name: value for name, value in self.vars[1:]}

    def find_function(self, name: str) -> Optional[CallableDescriptor]:
        return self.template.find_function(name)

    # --- walking ---

    def walk(self, dot: Any, node: Node):
        self.node = node
        match node:
            case ActionNode():
                value = self.eval_pipeline(dot, node.pipe)
                if not node.pipe.decl:
                    self.print_value(node, value)
            case IfNode() | WithNode():
                self.walk_if_or_with(node, dot)
            case ListNode():
                for child in node.nodes:
                    self.walk(dot, child)
            case RangeNode():
                self.walk_range(dot, node)
            case TemplateNode():
                self.walk_template(dot, node)
            case TextNode():
                self.out.write(node.text)
            case _:
                self.errorf(f"unknown node: {node}")

    def walk_if_or_with(self, node, dot: Any):
        mark = len(self.vars)
        try:
            value = self.eval_pipeline(dot, node.pipe)
            if is_true(value):
                self.walk(value if isinstance(node, WithNode) else dot, node.list)
            elif node.else_list is not None:
                self.walk(dot, node.else_list)
        finally:
            del self.vars[mark:]

    def _range_items(self, value: Any):
        if value is NO_VALUE or value is None:
            return
        if isinstance(value, collections.abc.Mapping):
            keys = list(value.keys())
            try:
                keys.sort()
            except TypeError:
                pass
            for key in keys:
                yield key, value[key]
        elif isinstance(value, (str, bytes, bool)):
            self.errorf(f"range can't iterate over {self.printer.pformat(value)}")
        elif isinstance(value, int):
            yield from ((i, i) for i in range(value))
        elif isinstance(value, collections.abc.Iterable):
            yield from enumerate(value)
        else:
            self.errorf(f"range can't iterate over {self.printer.pformat(value)}")

    def walk_range(self, dot: Any, node: RangeNode):
        self.node = node
        mark = len(self.vars)
        try:
            value = self.eval_pipeline(dot, node.pipe)
            ran = False
            for index, elem in self._range_items(value):
                ran = True
                if isinstance(self._one_iteration(node, index, elem), BreakSignal):
                    break
            if not ran and node.else_list is not None:
                self.walk(dot, node.else_list)
        finally:
            del self.vars[mark:]

    def _one_iteration(self, node: RangeNode, index: Any, elem: Any):
        decl = node.pipe.decl
        if decl:
            if node.pipe.is_assign:
                if len(decl) > 1:
                    self.set_var(decl[0].ident[0], index)
                    self.set_var(decl[1].ident[0], elem)
                else:
                    self.set_var(decl[0].ident[0], elem)
            else:
                self.set_top_var(1, elem)
                if len(decl) > 1:
                    self.set_top_var(2, index)
        mark = len(self.vars)
        try:
            return flow(lambda: self.walk(elem, node.list))
        finally:
            del self.vars[mark:]

    def walk_template(self, dot: Any, node: TemplateNode):
        self.node = node
        tmpl = self.template.lookup(node.name)
        if tmpl is None or tmpl.tree is None:
            self.errorf(f'template "{node.name}" not defined')
        if self.depth >= max_depth():
            self.errorf(f"exceeded maximum template depth ({max_depth()})")
        new_dot = self.eval_pipeline(dot, node.pipe) if node.pipe is not None else NO_VALUE
        saved = self.template, self.vars, self.depth
        self.template, self.vars, self.depth = tmpl, [["$", new_dot]], self.depth + 1
        self._marks.append(self.out.mark())
        try:
            self.walk(new_dot, tmpl.tree.root)
        except ReturnSignal:
            pass
        finally:
            self._marks.pop()
            self.template, self.vars, self.depth = saved

    def emit_return(self, node: Node, values: List[Any]):
        """Replaces the output of the current template invocation with `values`."""
        self.out.truncate(self._marks[-1] if self._marks else 0)
        self.print_value(node, collapse(values))

    # --- pipelines and commands ---

    def eval_pipeline(self, dot: Any, pipe: Optional[PipeNode]) -> Any:
        if pipe is None:
            return NO_VALUE
        self.node = pipe
        value = MISSING
        for cmd in pipe.cmds:
            value = self.eval_command(dot, cmd, value)
        for var in pipe.decl:
            if pipe.is_assign:
                self.set_var(var.ident[0], value)
            else:
                self.push(var.ident[0], value)
        return value

    def not_a_function(self, args: List[Node], final: Any):
        if len(args) > 1 or final is not MISSING:
            self.errorf(f"can't give argument to non-function {args[0]}")

    def eval_command(self, dot: Any, cmd: CommandNode, final: Any) -> Any:
        first = cmd.args[0]
        match first:
            case FieldNode():
                return self.eval_field_node(dot, first, cmd.args, final)
            case ChainNode():
                return self.eval_chain_node(dot, first, cmd.args, final)
            case IdentifierNode():
                return self.eval_function(dot, first, cmd.args, final)
            case PipeNode():
                self.not_a_function(cmd.args, final)
                return self.eval_pipeline(dot, first)
            case VariableNode():
                return self.eval_variable_node(dot, first, cmd.args, final)
        self.node = first
        self.not_a_function(cmd.args, final)
        match first:
            case BoolNode():
                return first.value
            case DotNode():
                return dot
            case NilNode():
                self.errorf("nil is not a command")
            case NumberNode():
                return self.ideal_constant(first)
            case StringNode():
                return first.text
        self.errorf(f"can't evaluate command {first!r}")

    def ideal_constant(self, node: NumberNode) -> Any:
        self.node = node
        text = node.text
        is_hex = text.lstrip("+-")[:2].lower() == "0x"
        if node.is_float and not is_hex and not text.startswith("'") and any(c in text for c in ".eE"):
            return node.float_val
        if node.is_int:
            return node.int_val
        return node.float_val

    def eval_function(self, dot: Any, node: IdentifierNode, args: Optional[List[Node]], final: Any) -> Any:
        self.node = node
        name = node.ident
        desc = self.find_function(name)
        if desc is None:
            self.errorf(f'"{name}" is not a defined function')
        return self.eval_call(dot, desc, node, name, args, final)

    def eval_field_node(self, dot: Any, field: FieldNode, args: Optional[List[Node]], final: Any) -> Any:
        self.node = field
        return self.eval_field_chain(dot, dot, field, field.ident, args, final)

    def eval_chain_node(self, dot: Any, chain: ChainNode, args: Optional[List[Node]], final: Any) -> Any:
        self.node = chain
        if not chain.field:
            self.errorf("internal error: no fields in eval_chain_node")
        if isinstance(chain.node, NilNode):
            self.errorf(f"indirection through explicit nil in {chain}")
        pipe = self.eval_arg(dot, None, chain.node)
        return self.eval_field_chain(dot, pipe, chain, chain.field, args, final)

    def eval_variable_node(self, dot: Any, variable: VariableNode, args: Optional[List[Node]], final: Any) -> Any:
        self.node = variable
        value = self.var_value(variable.ident[0])
        if len(variable.ident) == 1:
            if args:
                self.not_a_function(args, final)
            return value
        return self.eval_field_chain(dot, value, variable, variable.ident[1:], args, final)

    def eval_field_chain(self, dot: Any, receiver: Any, node: Node, ident: List[str],
                         args: Optional[List[Node]], final: Any) -> Any:
        for name in ident[:-1]:
            receiver = self.eval_field(dot, name, node, None, MISSING, receiver)
        return self.eval_field(dot, ident[-1], node, args, final, receiver)

    def eval_field(self, dot: Any, name: str, node: Node, args: Optional[List[Node]],
                   final: Any, receiver: Any) -> Any:
        """Resolves `name` on `receiver`: mapping key, attribute or method call."""
        has_args = (args is not None and len(args) > 1) or final is not MISSING
        call_args = list(args[1:]) if args else []
        cell = ResultCell(NO_VALUE)
        err: Optional[BaseException] = None

        if receiver is NO_VALUE or receiver is MISSING:
            err = MissingKeyError(f'nil data; no entry for key "{name}"')
        elif receiver is None:
            err = FieldError(f"nil pointer evaluating {type_name(receiver)}.{name}")
        elif isinstance(receiver, collections.abc.Mapping):
            if name in receiver:
                if has_args:
                    self.errorf(f"{name} is not a method but has arguments", node)
                cell.value = receiver[name]
            else:
                err = MissingKeyError(f'map has no entry for key "{name}"')
        elif name.startswith("_"):
            err = FieldError(f"{name} is an unexported field of type {type_name(receiver)}")
        else:
            try:
                attr = getattr(receiver, name)
            except AttributeError:
                err = FieldError(f"can't evaluate field {name} in type {type_name(receiver)}")
            else:
                if inspect.ismethod(attr) or inspect.isbuiltin(attr):
                    return self.eval_call(dot, describe(attr, name), node, name, args, final, receiver)
                if has_args:
                    raise self.make_error(FieldError(f"{name} has arguments but cannot be invoked as function"), node)
                cell.value = attr

        err = self.result(ContextSource.FIELD, err, name, node, call_args, None, dot, final, receiver, cell)
        if err is None:
            return cell.value
        if isinstance(err, MissingKeyError):
            mode = self.template.missing_mode
            if mode & MissingAction.ERROR:
                raise self.make_error(err, node)
            if mode & MissingAction.ZERO_VALUE:
                return zero_value(receiver)
            return NO_VALUE
        raise self.make_error(err, node)

    def eval_call(self, dot: Any, desc: CallableDescriptor, node: Node, name: str,
                  args: Optional[List[Node]], final: Any, receiver: Any = MISSING) -> Any:
        """Invokes a function or method, offering any failure to the managers."""
        call_args = list(args[1:]) if args else []
        source = ContextSource.CALL
        if final is not MISSING:
            source |= ContextSource.PIPE
        self.node = node
        self.push_stack(name, desc.signature)
        try:
            cell = ResultCell()
            context = None
            if desc.wants_context and self.template.options & Option.FUNCTIONS_WITH_CONTEXT:
                context = Context(self, source, None, name, node, call_args, desc, dot, final,
                                  receiver, cell)
            value, err = invoke(self, desc, name, call_args, final, dot, context=context)
            if err is not None:
                self._dbg("CALL", name, "failed", repr(err))
                # located at the last node evaluated, usually the last argument
                err = self.make_error(err, self.node)
            cell.value = value
            err = self.result(source, err, name, node, call_args, desc, dot, final, receiver, cell)
            if err is not None:
                raise self.make_error(err, node)
            return cell.value
        finally:
            self.pop_stack()

    def result(self, source: ContextSource, err: Optional[BaseException], name: str, node: Node,
               args: List[Node], function: Optional[CallableDescriptor], dot: Any, final: Any,
               receiver: Any, cell: ResultCell) -> Optional[BaseException]:
        """Gives the managers a chance to recover; returns the remaining failure."""
        if not self.managers or (err is None and is_valid(cell.value)):
            return err
        context = Context(self, source, err, name, node, args, function, dot, final, receiver, cell)
        return context.try_recover()

    # --- arguments ---

    def eval_arg(self, dot: Any, typ: Any, node: Node) -> Any:
        """Evaluates one argument expression for a parameter declared as `typ`."""
        self.node = node
        match node:
            case DotNode():
                return self.validate_type(dot, typ)
            case NilNode():
                cls = runtime_class(typ)
                if cls is None or _accepts_none(typ):
                    return None
                self.errorf(f"cannot assign nil to {cls.__name__}")
            case FieldNode():
                return self.validate_type(self.eval_field_node(dot, node, [node], MISSING), typ)
            case VariableNode():
                return self.validate_type(self.eval_variable_node(dot, node, None, MISSING), typ)
            case PipeNode():
                return self.validate_type(self.eval_pipeline(dot, node), typ)
            case IdentifierNode():
                return self.validate_type(self.eval_function(dot, node, None, MISSING), typ)
            case ChainNode():
                return self.validate_type(self.eval_chain_node(dot, node, None, MISSING), typ)

        cls = runtime_class(typ)
        if cls is None:
            return self.eval_empty_interface(dot, node)
        self.node = node
        if cls is bool:
            if isinstance(node, BoolNode):
                return node.value
            self.errorf(f"expected bool; found {node}")
        if cls is int:
            if isinstance(node, NumberNode) and node.is_int:
                return node.int_val
            self.errorf(f"expected integer; found {node}")
        if cls is float:
            if isinstance(node, NumberNode) and node.is_float:
                return node.float_val
            self.errorf(f"expected float; found {node}")
        if cls is str:
            if isinstance(node, StringNode):
                return node.text
            self.errorf(f"expected string; found {node}")
        value = self.eval_empty_interface(dot, node)
        if isinstance(value, cls):
            return value
        self.errorf(f"can't handle {node} for arg of type {cls.__name__}")

    def eval_empty_interface(self, dot: Any, node: Node) -> Any:
        self.node = node
        match node:
            case BoolNode():
                return node.value
            case DotNode():
                return dot
            case FieldNode():
                return self.eval_field_node(dot, node, None, MISSING)
            case IdentifierNode():
                return self.eval_function(dot, node, None, MISSING)
            case NilNode():
                self.errorf("evaluation of nil")
            case NumberNode():
                return self.ideal_constant(node)
            case StringNode():
                return node.text
            case VariableNode():
                return self.eval_variable_node(dot, node, None, MISSING)
            case PipeNode():
                return self.eval_pipeline(dot, node)
        self.errorf(f"can't handle assignment of {node} to empty interface argument")

    def validate_type(self, value: Any, typ: Any) -> Any:
        """Checks an evaluated value against a declared parameter type."""
        cls = runtime_class(typ)
        if value is NO_VALUE or value is MISSING:
            if cls is None:
                return value
            if _accepts_none(typ):
                return None
            self.errorf(f"invalid value; expected {cls.__name__}")
        if cls is None:
            return value
        if value is None and _accepts_none(typ):
            return None
        if isinstance(value, bool) and cls in (int, float):
            self.errorf(f"wrong type for value; expected {cls.__name__}; got {type_name(value)}")
        if isinstance(value, cls):
            return value
        if cls is float and isinstance(value, int):
            return float(value)
        self.errorf(f"wrong type for value; expected {cls.__name__}; got {type_name(value)}")

    # --- printing ---

    def format(self, node: Node, value: Any) -> Any:
        """Offers a value about to be printed to the managers."""
        if not self.managers:
            return value
        cell = ResultCell(value)
        context = Context(self, ContextSource.PRINT, None, "", node, [], None, NO_VALUE, MISSING, value, cell)
        err = context.try_recover()
        if err is not None:
            raise self.make_error(err, node)
        return cell.value

    def print_value(self, node: Node, value: Any):
        self.node = node
        value = self.format(node, value)
        if inspect.isroutine(value):
            self.errorf(f"can't print {node} of type {type_name(value)}")
        if value is None:
            value = NO_VALUE
        self.out.write(self.printer.pformat(value))
