"""
Recursive-descent parser turning lexer tokens into syntax trees.

A single source may define several templates (`define` and `block`); `parse`
returns every tree found, keyed by template name.
"""
from typing import Container, Dict, List, Optional

from salvage.salvage_errors import ParseError
from salvage.salvage_lexer import ItemType, Lexer, Token
from salvage.salvage_nodes import (
    Tree, Node, ListNode, TextNode, ActionNode, PipeNode, CommandNode,
    IdentifierNode, VariableNode, DotNode, NilNode, FieldNode, ChainNode,
    BoolNode, NumberNode, StringNode, IfNode, RangeNode, WithNode, TemplateNode,
    unquote,
)

# Tokens that can start an operand.
_OPERAND_START = {
    ItemType.BOOL, ItemType.CHAR_CONSTANT, ItemType.DOT, ItemType.FIELD,
    ItemType.IDENTIFIER, ItemType.NUMBER, ItemType.NIL, ItemType.RAW_STRING,
    ItemType.STRING, ItemType.VARIABLE, ItemType.LEFT_PAREN,
}


class _EndNode(Node):
    __slots__ = ()

    def __str__(self):
        return "{{end}}"


class _ElseNode(Node):
    __slots__ = ()

    def __str__(self):
        return "{{else}}"


class Parser:
    """Parses one template source; `funcs` holds the callable names in scope."""

    def __init__(self, name: str, text: str, funcs: Container[str] = (),
                 left: str = "{{", right: str = "}}", check_funcs: bool = True):
        self.name = name
        self.text = text
        self.funcs = funcs
        self.check_funcs = check_funcs
        self.lexer = Lexer(name, text, left, right)
        self.tokens: List[Token] = []
        self.index = 0
        self.tree: Optional[Tree] = None
        self.vars: List[str] = ["$"]
        self.tree_set: Dict[str, Tree] = {}

    # --- token navigation ---

    def next(self) -> Token:
        token = self.tokens[min(self.index, len(self.tokens) - 1)]
        self.index += 1
        return token

    def backup(self, n: int = 1):
        self.index -= n

    def peek(self) -> Token:
        return self.tokens[min(self.index, len(self.tokens) - 1)]

    def next_non_space(self) -> Token:
        token = self.next()
        while token.typ is ItemType.SPACE:
            token = self.next()
        return token

    def peek_non_space(self) -> Token:
        token = self.next_non_space()
        self.backup()
        return token

    def errorf(self, message: str, pos: Optional[int] = None):
        if pos is None:
            pos = self.tokens[min(max(self.index - 1, 0), len(self.tokens) - 1)].pos if self.tokens else 0
        line = self.lexer.line_at(pos)
        raise ParseError(f"template: {self.name}:{line}: {message}", self.name)

    def expect(self, typ: ItemType, context: str) -> Token:
        token = self.next_non_space()
        if token.typ is not typ:
            self.unexpected(token, context)
        return token

    def unexpected(self, token: Token, context: str):
        if token.typ is ItemType.EOF:
            self.errorf(f"unexpected EOF in {context}", token.pos)
        self.errorf(f"unexpected {token} in {context}", token.pos)

    # --- entry point ---

    def parse(self) -> Dict[str, Tree]:
        self.tokens = self.lexer.lex()
        self.tree = Tree(self.name, self.name, self.text)
        root = ListNode(self.peek().pos, self.tree)
        self.tree.root = root
        while self.peek().typ is not ItemType.EOF:
            if self.peek().typ is ItemType.LEFT_DELIM:
                delim = self.index
                self.next()
                token = self.next_non_space()
                if token.typ is ItemType.KEYWORD and token.val == "define":
                    self._parse_definition()
                    continue
                self.index = delim
            node = self.text_or_action()
            if isinstance(node, (_EndNode, _ElseNode)):
                self.errorf(f"unexpected {node}", node.pos)
            root.append(node)
        self._add(self.tree)
        return self.tree_set

    def _add(self, tree: Tree):
        existing = self.tree_set.get(tree.name)
        if existing is None or existing.is_empty():
            self.tree_set[tree.name] = tree
            return
        if not tree.is_empty():
            self.errorf(f'multiple definition of template "{tree.name}"')

    def _sub_tree(self, name: str, context: str) -> Tree:
        """Parses an itemList into a new tree sharing this token stream."""
        outer_tree, outer_vars = self.tree, self.vars
        tree = Tree(name, self.name, self.text)
        self.tree, self.vars = tree, ["$"]
        try:
            tree.root, end = self.item_list()
            if not isinstance(end, _EndNode):
                self.errorf(f"unexpected {end} in {context}", end.pos)
        finally:
            self.tree, self.vars = outer_tree, outer_vars
        self._add(tree)
        return tree

    def _parse_definition(self):
        context = "define clause"
        token = self.next_non_space()
        name = self._template_name(token, context)
        self.expect(ItemType.RIGHT_DELIM, context)
        self._sub_tree(name, context)

    def _template_name(self, token: Token, context: str) -> str:
        if token.typ in (ItemType.STRING, ItemType.RAW_STRING):
            try:
                return unquote(token.val)
            except (ValueError, KeyError) as exc:
                self.errorf(str(exc), token.pos)
        self.unexpected(token, context)

    # --- lists and actions ---

    def item_list(self):
        lst = ListNode(self.peek_non_space().pos, self.tree)
        while self.peek_non_space().typ is not ItemType.EOF:
            node = self.text_or_action()
            if isinstance(node, (_EndNode, _ElseNode)):
                return lst, node
            lst.append(node)
        self.errorf("unexpected EOF")

    def text_or_action(self) -> Node:
        token = self.next_non_space()
        if token.typ is ItemType.TEXT:
            return TextNode(token.pos, self.tree, token.val)
        if token.typ is ItemType.LEFT_DELIM:
            return self.action()
        self.unexpected(token, "input")

    def action(self) -> Node:
        token = self.next_non_space()
        if token.typ is ItemType.KEYWORD:
            handler = {
                "block": self.block_control,
                "else": self.else_control,
                "end": self.end_control,
                "if": self.if_control,
                "range": self.range_control,
                "template": self.template_control,
                "with": self.with_control,
            }.get(token.val)
            if handler is not None:
                return handler()
        self.backup()
        token = self.peek()
        pipe = self.pipeline("command", ItemType.RIGHT_DELIM)
        return ActionNode(token.pos, self.tree, self.lexer.line_at(token.pos), pipe)

    # --- pipelines ---

    def pipeline(self, context: str, end: ItemType) -> PipeNode:
        token = self.peek_non_space()
        pipe = PipeNode(token.pos, self.tree, self.lexer.line_at(token.pos))
        while True:
            v = self.peek_non_space()
            if v.typ is not ItemType.VARIABLE:
                break
            start = self.index
            self.next_non_space()
            nxt = self.peek_non_space()
            if nxt.typ in (ItemType.ASSIGN, ItemType.DECLARE):
                pipe.is_assign = nxt.typ is ItemType.ASSIGN
                self.next_non_space()
                pipe.decl.append(VariableNode(v.pos, self.tree, v.val))
                self.vars.append(v.val)
                break
            if nxt.typ is ItemType.CHAR and nxt.val == ",":
                self.next_non_space()
                pipe.decl.append(VariableNode(v.pos, self.tree, v.val))
                self.vars.append(v.val)
                if context == "range" and len(pipe.decl) < 2:
                    if self.peek_non_space().typ in (ItemType.VARIABLE, ItemType.RIGHT_DELIM, ItemType.RIGHT_PAREN):
                        continue
                    self.errorf("range can only initialize variables")
                self.errorf(f"too many declarations in {context}")
            # not a declaration: rewind to the variable
            self.index = start
            break
        while True:
            token = self.next_non_space()
            if token.typ is end:
                self._check_pipeline(pipe, context)
                return pipe
            if token.typ in _OPERAND_START:
                self.backup()
                pipe.cmds.append(self.command())
            else:
                self.unexpected(token, context)

    def _check_pipeline(self, pipe: PipeNode, context: str):
        if not pipe.cmds:
            self.errorf(f"missing value for {context}")
        for i, cmd in enumerate(pipe.cmds[1:]):
            if isinstance(cmd.args[0], (BoolNode, DotNode, NilNode, NumberNode, StringNode)):
                self.errorf(f"non executable command in pipeline stage {i + 2}")

    def command(self) -> CommandNode:
        cmd = CommandNode(self.peek_non_space().pos, self.tree)
        while True:
            self.peek_non_space()
            operand = self.operand()
            if operand is not None:
                cmd.args.append(operand)
            token = self.next()
            if token.typ is ItemType.SPACE:
                continue
            if token.typ in (ItemType.RIGHT_DELIM, ItemType.RIGHT_PAREN):
                self.backup()
            elif token.typ is not ItemType.PIPE:
                self.unexpected(token, "operand")
            break
        if not cmd.args:
            self.errorf("empty command")
        return cmd

    def operand(self) -> Optional[Node]:
        node = self.term()
        if node is None:
            return None
        if self.peek().typ is ItemType.FIELD:
            chain = ChainNode(self.peek().pos, self.tree, node)
            while self.peek().typ is ItemType.FIELD:
                chain.add(self.next().val)
            if isinstance(node, FieldNode):
                return FieldNode(chain.pos, self.tree, str(chain))
            if isinstance(node, VariableNode):
                return VariableNode(chain.pos, self.tree, str(chain))
            if isinstance(node, (BoolNode, StringNode, NumberNode, NilNode, DotNode)):
                self.errorf(f"unexpected . after term {str(node)!r}")
            return chain
        return node

    def term(self) -> Optional[Node]:
        token = self.next_non_space()
        typ = token.typ
        if typ is ItemType.IDENTIFIER:
            if self.check_funcs and token.val not in self.funcs:
                self.errorf(f'function "{token.val}" not defined', token.pos)
            return IdentifierNode(token.pos, self.tree, token.val)
        if typ is ItemType.DOT:
            return DotNode(token.pos, self.tree)
        if typ is ItemType.NIL:
            return NilNode(token.pos, self.tree)
        if typ is ItemType.VARIABLE:
            return self.use_var(token)
        if typ is ItemType.FIELD:
            return FieldNode(token.pos, self.tree, token.val)
        if typ is ItemType.BOOL:
            return BoolNode(token.pos, self.tree, token.val == "true")
        if typ in (ItemType.NUMBER, ItemType.CHAR_CONSTANT):
            try:
                return NumberNode(token.pos, self.tree, token.val, typ is ItemType.CHAR_CONSTANT)
            except ValueError as exc:
                self.errorf(str(exc), token.pos)
        if typ is ItemType.LEFT_PAREN:
            return self.pipeline("parenthesized pipeline", ItemType.RIGHT_PAREN)
        if typ in (ItemType.STRING, ItemType.RAW_STRING):
            return StringNode(token.pos, self.tree, token.val, unquote(token.val))
        self.backup()
        return None

    def use_var(self, token: Token) -> VariableNode:
        node = VariableNode(token.pos, self.tree, token.val)
        if node.ident[0] not in self.vars:
            self.errorf(f'undefined variable "{node.ident[0]}"', token.pos)
        return node

    # --- control structures ---

    def _parse_control(self, allow_else_if: bool, context: str):
        mark = len(self.vars)
        try:
            pipe = self.pipeline(context, ItemType.RIGHT_DELIM)
            lst, nxt = self.item_list()
            else_list = None
            if isinstance(nxt, _ElseNode):
                token = self.peek_non_space()
                if allow_else_if and token.typ is ItemType.KEYWORD and token.val == "if":
                    self.next_non_space()
                    else_list = ListNode(nxt.pos, self.tree)
                    else_list.append(self.if_control())
                else:
                    else_list, nxt = self.item_list()
                    if not isinstance(nxt, _EndNode):
                        self.errorf(f"expected end; found {nxt}", nxt.pos)
            return pipe, lst, else_list
        finally:
            del self.vars[mark:]

    def if_control(self) -> IfNode:
        pipe, lst, else_list = self._parse_control(True, "if")
        return IfNode(pipe.pos, self.tree, pipe.line, pipe, lst, else_list)

    def range_control(self) -> RangeNode:
        pipe, lst, else_list = self._parse_control(False, "range")
        return RangeNode(pipe.pos, self.tree, pipe.line, pipe, lst, else_list)

    def with_control(self) -> WithNode:
        pipe, lst, else_list = self._parse_control(False, "with")
        return WithNode(pipe.pos, self.tree, pipe.line, pipe, lst, else_list)

    def end_control(self) -> Node:
        return _EndNode(self.expect(ItemType.RIGHT_DELIM, "end").pos, self.tree)

    def else_control(self) -> Node:
        token = self.peek_non_space()
        if token.typ is ItemType.KEYWORD and token.val == "if":
            return _ElseNode(token.pos, self.tree)
        return _ElseNode(self.expect(ItemType.RIGHT_DELIM, "else").pos, self.tree)

    def template_control(self) -> TemplateNode:
        context = "template clause"
        token = self.next_non_space()
        name = self._template_name(token, context)
        pipe = None
        if self.next_non_space().typ is not ItemType.RIGHT_DELIM:
            self.backup()
            pipe = self.pipeline(context, ItemType.RIGHT_DELIM)
        return TemplateNode(token.pos, self.tree, self.lexer.line_at(token.pos), name, pipe)

    def block_control(self) -> TemplateNode:
        context = "block clause"
        token = self.next_non_space()
        name = self._template_name(token, context)
        pipe = self.pipeline(context, ItemType.RIGHT_DELIM)
        self._sub_tree(name, context)
        return TemplateNode(token.pos, self.tree, self.lexer.line_at(token.pos), name, pipe)


def parse(name: str, text: str, funcs: Container[str] = (), left: str = "{{", right: str = "}}",
          check_funcs: bool = True) -> Dict[str, Tree]:
    return Parser(name, text, funcs, left, right, check_funcs).parse()
