"""
Syntax tree produced by the parser.

Every node keeps `pos` (offset into the source text) and a reference to its
`Tree`, which is enough to locate the node for diagnostics. `str(node)`
renders the node back as template source.
"""
import re
from typing import List, Optional


class Tree:
    """A parsed template: a name, its root list and the text it came from."""

    def __init__(self, name: str, parse_name: str = "", text: str = ""):
        self.name = name
        self.parse_name = parse_name or name
        self.text = text
        self.root: Optional["ListNode"] = None

    def location(self, pos: int):
        """Returns (line, column) for a source offset, column is 0-based."""
        before = self.text[:pos]
        line = before.count("\n") + 1
        col = pos - (before.rfind("\n") + 1)
        return line, col

    def error_context(self, node: "Node"):
        line, col = self.location(node.pos)
        context = str(node)
        if len(context) > 20:
            context = context[:20] + "..."
        return f"{self.parse_name}:{line}:{col}", context

    def is_empty(self) -> bool:
        if self.root is None:
            return True
        for n in self.root.nodes:
            if isinstance(n, TextNode) and not n.text.strip():
                continue
            return False
        return True

    def __repr__(self):
        return f"Tree({self.name!r})"


class Node:
    __slots__ = ("pos", "tree")

    def __init__(self, pos: int, tree: Optional[Tree] = None):
        self.pos = pos
        self.tree = tree

    def __repr__(self):
        return f"{type(self).__name__}({str(self)!r})"


class TextNode(Node):
    __slots__ = ("text",)

    def __init__(self, pos, tree, text: str):
        super().__init__(pos, tree)
        self.text = text

    def __str__(self):
        return repr(self.text)


class CommentNode(Node):
    __slots__ = ("text",)

    def __init__(self, pos, tree, text: str):
        super().__init__(pos, tree)
        self.text = text

    def __str__(self):
        return "{{" + self.text + "}}"


class ListNode(Node):
    __slots__ = ("nodes",)

    def __init__(self, pos, tree, nodes: Optional[List[Node]] = None):
        super().__init__(pos, tree)
        self.nodes = nodes if nodes is not None else []

    def append(self, node: Node):
        self.nodes.append(node)

    def __str__(self):
        return "".join(str(n) if not isinstance(n, TextNode) else n.text for n in self.nodes)


class VariableNode(Node):
    """`$x` or `$x.Field.Chain`; `ident` holds the variable then the fields."""
    __slots__ = ("ident",)

    def __init__(self, pos, tree, ident: str):
        super().__init__(pos, tree)
        self.ident = ident.split(".")

    def __str__(self):
        return ".".join(self.ident)


class CommandNode(Node):
    __slots__ = ("args",)

    def __init__(self, pos, tree, args: Optional[List[Node]] = None):
        super().__init__(pos, tree)
        self.args = args if args is not None else []

    def __str__(self):
        parts = []
        for arg in self.args:
            if isinstance(arg, PipeNode):
                parts.append("(" + str(arg) + ")")
            else:
                parts.append(str(arg))
        return " ".join(parts)


class PipeNode(Node):
    __slots__ = ("is_assign", "decl", "cmds", "line")

    def __init__(self, pos, tree, line: int, decl: Optional[List[VariableNode]] = None):
        super().__init__(pos, tree)
        self.line = line
        self.is_assign = False
        self.decl = decl if decl is not None else []
        self.cmds: List[CommandNode] = []

    def __str__(self):
        out = ""
        if self.decl:
            out = ", ".join(str(v) for v in self.decl)
            out += " = " if self.is_assign else " := "
        return out + " | ".join(str(c) for c in self.cmds)


class ActionNode(Node):
    __slots__ = ("line", "pipe")

    def __init__(self, pos, tree, line: int, pipe: PipeNode):
        super().__init__(pos, tree)
        self.line = line
        self.pipe = pipe

    def __str__(self):
        return "{{" + str(self.pipe) + "}}"


class IdentifierNode(Node):
    """A function name."""
    __slots__ = ("ident",)

    def __init__(self, pos, tree, ident: str):
        super().__init__(pos, tree)
        self.ident = ident

    def __str__(self):
        return self.ident


class DotNode(Node):
    __slots__ = ()

    def __str__(self):
        return "."


class NilNode(Node):
    __slots__ = ()

    def __str__(self):
        return "nil"


class FieldNode(Node):
    """`.Field.Chain`; `ident` holds the field names without dots."""
    __slots__ = ("ident",)

    def __init__(self, pos, tree, ident: str):
        super().__init__(pos, tree)
        self.ident = ident[1:].split(".")

    def __str__(self):
        return "." + ".".join(self.ident)


class ChainNode(Node):
    """A term followed by field accesses, as in `(pipe).A.B` or `"x".Upper`."""
    __slots__ = ("node", "field")

    def __init__(self, pos, tree, node: Node):
        super().__init__(pos, tree)
        self.node = node
        self.field: List[str] = []

    def add(self, field: str):
        if not field or field[0] != ".":
            raise ValueError("no dot in field")
        field = field[1:]
        if not field:
            raise ValueError("empty field")
        self.field.append(field)

    def __str__(self):
        head = str(self.node)
        if isinstance(self.node, PipeNode):
            head = "(" + head + ")"
        return head + "".join("." + f for f in self.field)


class BoolNode(Node):
    __slots__ = ("value",)

    def __init__(self, pos, tree, value: bool):
        super().__init__(pos, tree)
        self.value = value

    def __str__(self):
        return "true" if self.value else "false"


class NumberNode(Node):
    """A numeric constant; an integral float such as `2.0` is both int and float."""
    __slots__ = ("is_int", "is_float", "int_val", "float_val", "text")

    def __init__(self, pos, tree, text: str, is_char: bool = False):
        super().__init__(pos, tree)
        self.text = text
        self.is_int = False
        self.is_float = False
        self.int_val = 0
        self.float_val = 0.0
        if is_char:
            self.int_val = _unquote_char(text)
            self.float_val = float(self.int_val)
            self.is_int = self.is_float = True
            return
        clean = text.replace("_", "")
        try:
            self.int_val = int(clean, 0)
            self.is_int = True
        except ValueError:
            pass
        if self.is_int:
            self.float_val = float(self.int_val)
            self.is_float = True
            return
        try:
            f = float(clean)
        except ValueError:
            raise ValueError(f"illegal number syntax: {text}") from None
        self.float_val = f
        self.is_float = True
        if f.is_integer() and abs(f) < 2 ** 63:
            self.int_val = int(f)
            self.is_int = True

    def __str__(self):
        return self.text


class StringNode(Node):
    __slots__ = ("quoted", "text")

    def __init__(self, pos, tree, quoted: str, text: str):
        super().__init__(pos, tree)
        self.quoted = quoted
        self.text = text

    def __str__(self):
        return self.quoted


class BranchNode(Node):
    """Shared shape of if/range/with."""
    __slots__ = ("line", "pipe", "list", "else_list")
    keyword = ""

    def __init__(self, pos, tree, line: int, pipe: PipeNode, list_: ListNode, else_list: Optional[ListNode]):
        super().__init__(pos, tree)
        self.line = line
        self.pipe = pipe
        self.list = list_
        self.else_list = else_list

    def __str__(self):
        out = "{{" + self.keyword + " " + str(self.pipe) + "}}" + str(self.list)
        if self.else_list is not None:
            out += "{{else}}" + str(self.else_list)
        return out + "{{end}}"


class IfNode(BranchNode):
    __slots__ = ()
    keyword = "if"


class RangeNode(BranchNode):
    __slots__ = ()
    keyword = "range"


class WithNode(BranchNode):
    __slots__ = ()
    keyword = "with"


class TemplateNode(Node):
    """`{{template "name" pipeline}}`."""
    __slots__ = ("line", "name", "pipe")

    def __init__(self, pos, tree, line: int, name: str, pipe: Optional[PipeNode]):
        super().__init__(pos, tree)
        self.line = line
        self.name = name
        self.pipe = pipe

    def __str__(self):
        if self.pipe is None:
            return '{{template "%s"}}' % self.name
        return '{{template "%s" %s}}' % (self.name, self.pipe)


_SIMPLE_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v",
    "\\": "\\", "'": "'", '"': '"',
}
_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|U[0-9a-fA-F]{8}|[0-7]{3}|[abfnrtv\\'\"])")


def _decode_escape(m) -> str:
    seq = m.group(1)
    if seq[0] in "xuU":
        return chr(int(seq[1:], 16))
    if seq[0].isdigit():
        return chr(int(seq, 8))
    return _SIMPLE_ESCAPES[seq]


def _unquote_char(text: str) -> int:
    decoded = _ESCAPE_RE.sub(_decode_escape, text[1:-1])
    if len(decoded) != 1:
        raise ValueError(f"malformed character constant: {text}")
    return ord(decoded)


def unquote(text: str) -> str:
    """Decodes a Go-style quoted or raw string literal."""
    if text.startswith("`"):
        return text[1:-1]
    return _ESCAPE_RE.sub(_decode_escape, text[1:-1])
