"""
ir_parser.py — textual form of lowered modules
==============================================

Reads the text rendering of a ``Module`` (the same syntax ``Module.dump()``
writes) so that lowered programs can be stored in files, written by hand in
tests and fed to the command-line driver.

Usage::

    from consteval.ir_parser import parse_module, load_module

    module = parse_module('''
        module "pound_assert.swift"

        func @isOne(%x: i64) -> bool {
        bb0:
          %one = literal i64 1          @ 8:15
          %r = cmp eq %x, %one          @ 8:12
          return %r
        }

        assert @isOne_of_1 @ 17:3 {
        bb0:
          %one = literal i64 1
          %c = call @isOne(%one)        @ 17:11
          return %c
        }
    ''')

    module = load_module("pound_assert.cir")

Depends on:
    - parsimonious (PEG parser)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from consteval.diagnostics import SourceLocation
from consteval.errors import ConstEvalError, EvaluationTrap, IRParseError
from consteval.instructions import (
    Assertion,
    BasicBlock,
    BinOp,
    BlockRef,
    CmpOp,
    FuncRef,
    Function,
    Instruction,
    Module,
    Opcode,
    Reg,
    UnOp,
)
from consteval.values import (
    BoolType,
    IntegerValue,
    IntType,
    UnknownValue,
    Value,
    make_bool,
    parse_scalar_type,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════

IR_GRAMMAR = Grammar(r'''
    # ─────────────────────────────────────────────────────────────
    # Top-Level Structure
    # ─────────────────────────────────────────────────────────────

    module          = _ module_header top_decl* _
    module_header   = "module" __ string _
    top_decl        = global_decl / func_decl / assert_decl

    global_decl     = "global" __ global_name _ ":" _ type_name _ "=" _ global_value _
    global_value    = "unknown" / "true" / "false" / integer

    func_decl       = "func" __ global_name _ "(" _ param_list? _ ")" _ return_type? "{" _ block+ "}" _
    return_type     = "->" _ type_name _
    assert_decl     = "assert" __ global_name _ string? _ loc? _ "{" _ block+ "}" _

    param_list      = param (_ "," _ param)*
    param           = reg (_ ":" _ type_name)?

    # ─────────────────────────────────────────────────────────────
    # Blocks
    # ─────────────────────────────────────────────────────────────

    block           = block_header _ instruction* terminator
    block_header    = label block_params? _ ":"
    block_params    = _ "(" _ param_list? _ ")"

    instruction     = instr_body _ loc? _
    instr_body      = assign / store
    terminator      = term_body _ loc? _
    term_body       = cond_br / br / ret

    # ─────────────────────────────────────────────────────────────
    # Instructions
    # ─────────────────────────────────────────────────────────────

    assign          = reg _ "=" _ rvalue
    rvalue          = literal / binary / compare / unary / convert / call
                    / tuple / struct / extract / global_ref / havoc / alloc / load

    literal         = "literal" __ type_name __ literal_value
    literal_value   = "true" / "false" / integer
    binary          = binop __ reg _ "," _ reg
    binop           = "add" / "sub" / "mul" / "div" / "rem" / "and" / "or" / "xor"
    compare         = "cmp" __ relop __ reg _ "," _ reg
    relop           = "eq" / "ne" / "le" / "lt" / "ge" / "gt"
    unary           = unop __ reg
    unop            = "neg" / "not"
    convert         = "convert" __ reg __ "to" __ type_name
    call            = "call" __ global_name _ "(" _ reg_list? _ ")"
    tuple           = "tuple" _ "(" _ reg_list? _ ")"
    struct          = "struct" _ "(" _ field_list? _ ")"
    field_list      = field_init (_ "," _ field_init)*
    field_init      = label _ ":" _ reg
    extract         = "extract" __ reg _ "," _ selector
    selector        = integer / label
    global_ref      = "global" __ global_name
    havoc           = "havoc" __ string
    alloc           = "alloc" __ type_name
    load            = "load" __ reg
    store           = "store" __ reg __ "to" __ reg

    cond_br         = "cond_br" __ reg _ "," _ target _ "," _ target
    br              = "br" __ target
    ret             = "return" __ reg
    target          = label target_args?
    target_args     = _ "(" _ reg_list? _ ")"

    reg_list        = reg (_ "," _ reg)*

    # ─────────────────────────────────────────────────────────────
    # Tokens
    # ─────────────────────────────────────────────────────────────

    loc             = "@" _ integer _ ":" _ integer
    reg             = ~r"%[A-Za-z0-9_.$]+"
    global_name     = ~r"@[A-Za-z0-9_.$]+"
    type_name       = ~r"[A-Za-z_][A-Za-z0-9_]*"
    label           = ~r"[A-Za-z_][A-Za-z0-9_]*"
    integer         = ~r"[-+]?[0-9]+"
    string          = ~r'"(?:[^"\\]|\\.)*"'

    __              = ~r"(?:\s|//[^\n]*)+"
    _               = ~r"(?:\s|//[^\n]*)*"
''')

_ESCAPE_RE = re.compile(r"\\(.)")


def _opt(child: Any) -> Any:
    """Result of an optional (``x?``) child, or ``None`` if absent."""
    if isinstance(child, list):
        return child[0] if child else None
    return None


def _many(child: Any) -> List[Any]:
    """Results of a repeated (``x*`` / ``x+``) child."""
    return child if isinstance(child, list) else []


def _unescape_string(text: str) -> str:
    return _ESCAPE_RE.sub(r"\1", text[1:-1])


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — VISITOR (Parse Tree → Module)
# ═══════════════════════════════════════════════════════════════════

class ModuleBuilder(NodeVisitor):
    """Transforms a Parsimonious parse tree into a ``Module``."""

    unwrapped_exceptions = (ConstEvalError, EvaluationTrap)

    def __init__(self, filename: str = "<string>"):
        self._filename = filename
        self._source_file = filename
        self._text = ""

    def build(self, text: str) -> Module:
        self._text = text
        tree = IR_GRAMMAR.parse(text)
        return self.visit(tree)

    def generic_visit(self, node, visited_children):
        """Default: the children's results, or the node for leaves."""
        return visited_children or node

    # ---- helpers ------------------------------------------------------------

    def _node_loc(self, node: Node) -> SourceLocation:
        line = self._text.count("\n", 0, node.start) + 1
        column = node.start - (self._text.rfind("\n", 0, node.start) + 1) + 1
        return SourceLocation(self._filename, line, column)

    def _source_loc(self, pair: Optional[Tuple[int, int]]) -> Optional[SourceLocation]:
        if pair is None:
            return None
        return SourceLocation(self._source_file, pair[0], pair[1])

    def _int_type(self, text: str, node: Node) -> IntType:
        ty = parse_scalar_type(text)
        if not isinstance(ty, IntType):
            raise IRParseError(f"expected an integer type, got {text!r}", self._node_loc(node))
        return ty

    @staticmethod
    def _list_of(first: Any, rest: Any) -> List[Any]:
        return [first] + [item[-1] for item in _many(rest)]

    # ---- module -------------------------------------------------------------

    def visit_module(self, node, visited_children):
        _, _, decls, _ = visited_children
        module = Module(source_file=self._source_file)
        for decl in _many(decls):
            if isinstance(decl, Function):
                module.add_function(decl)
            elif isinstance(decl, Assertion):
                module.add_assertion(decl)
            else:
                name, value = decl
                module.globals_[name] = value
        logger.debug(
            "parsed %s: %d function(s), %d assertion(s), %d global(s)",
            self._source_file, len(module.functions),
            len(module.assertions), len(module.globals_),
        )
        return module

    def visit_module_header(self, node, visited_children):
        _, _, name, _ = visited_children
        self._source_file = name
        return name

    def visit_top_decl(self, node, visited_children):
        return visited_children[0]

    def visit_global_decl(self, node, visited_children):
        _, _, name, _, _, _, type_text, _, _, _, raw, _ = visited_children
        loc = self._node_loc(node)
        if raw == "unknown":
            return name, UnknownValue(name)
        ty = parse_scalar_type(type_text)
        value: Value
        if isinstance(raw, bool) and isinstance(ty, BoolType):
            value = make_bool(raw)
        elif isinstance(raw, int) and not isinstance(raw, bool) and isinstance(ty, IntType):
            try:
                value = IntegerValue(ty, raw)
            except EvaluationTrap:
                raise IRParseError(
                    f"global @{name}: {raw} does not fit in {ty}", loc
                ) from None
        else:
            raise IRParseError(f"global @{name}: value {raw} is not of type {type_text}", loc)
        return name, value

    def visit_global_value(self, node, visited_children):
        text = node.text
        if text == "unknown":
            return text
        if text in ("true", "false"):
            return text == "true"
        return int(text)

    def visit_func_decl(self, node, visited_children):
        (_, _, name, _, _, _, params, _, _, _,
         ret_type, _, _, blocks, _, _) = visited_children
        param_pairs = _opt(params) or []
        return Function(
            name=name,
            params=tuple(p for p, _ in param_pairs),
            blocks=self._block_map(name, blocks, self._node_loc(node)),
            return_type=_opt(ret_type) or "",
            param_types=tuple(t for _, t in param_pairs) if any(t for _, t in param_pairs) else (),
            loc=self._node_loc(node),
        )

    def visit_return_type(self, node, visited_children):
        _, _, type_text, _ = visited_children
        return type_text

    def visit_assert_decl(self, node, visited_children):
        _, _, name, _, message, _, loc, _, _, _, blocks, _, _ = visited_children
        source_loc = self._source_loc(_opt(loc))
        condition = Function(
            name=name,
            blocks=self._block_map(name, blocks, self._node_loc(node)),
            return_type="bool",
            loc=source_loc or self._node_loc(node),
        )
        return Assertion(name=name, condition=condition, message=_opt(message), loc=source_loc)

    def _block_map(self, func_name: str, blocks: Any, loc: SourceLocation) -> Dict[str, BasicBlock]:
        result: Dict[str, BasicBlock] = {}
        for blk in _many(blocks):
            if blk.label in result:
                raise IRParseError(f"@{func_name}: duplicate block label {blk.label!r}", loc)
            result[blk.label] = blk
        return result

    def visit_param_list(self, node, visited_children):
        first, rest = visited_children
        return self._list_of(first, rest)

    def visit_param(self, node, visited_children):
        reg, type_part = visited_children
        type_part = _opt(type_part)
        return reg, (type_part[-1] if type_part else "")

    # ---- blocks -------------------------------------------------------------

    def visit_block(self, node, visited_children):
        header, _, instrs, term = visited_children
        label, params = header
        types = tuple(t for _, t in params)
        return BasicBlock(
            label=label,
            params=tuple(p for p, _ in params),
            instructions=tuple(_many(instrs)) + (term,),
            param_types=types if any(types) else (),
        )

    def visit_block_header(self, node, visited_children):
        label, params, _, _ = visited_children
        return label, (_opt(params) or [])

    def visit_block_params(self, node, visited_children):
        _, _, _, params, _, _ = visited_children
        return _opt(params) or []

    def visit_instruction(self, node, visited_children):
        (opcode, operands), _, loc, _ = visited_children
        return Instruction(opcode, operands, self._source_loc(_opt(loc)))

    visit_terminator = visit_instruction

    def visit_instr_body(self, node, visited_children):
        return visited_children[0]

    visit_term_body = visit_instr_body

    # ---- instructions ---------------------------------------------------------

    def visit_assign(self, node, visited_children):
        dst, _, _, _, (opcode, operands) = visited_children
        return opcode, (dst,) + operands

    def visit_rvalue(self, node, visited_children):
        return visited_children[0]

    def visit_literal(self, node, visited_children):
        _, _, type_text, _, raw = visited_children
        ty = parse_scalar_type(type_text)
        if ty is None:
            raise IRParseError(f"literal of non-scalar type {type_text!r}", self._node_loc(node))
        if isinstance(ty, BoolType) != isinstance(raw, bool):
            raise IRParseError(f"literal {node.text!r} does not match its type", self._node_loc(node))
        return Opcode.LITERAL, (ty, raw)

    visit_literal_value = visit_global_value

    def visit_binary(self, node, visited_children):
        op, _, lhs, _, _, _, rhs = visited_children
        return Opcode.BINARY, (op, lhs, rhs)

    def visit_binop(self, node, visited_children):
        return BinOp.parse(node.text)

    def visit_compare(self, node, visited_children):
        _, _, rel, _, lhs, _, _, _, rhs = visited_children
        return Opcode.COMPARE, (rel, lhs, rhs)

    def visit_relop(self, node, visited_children):
        return CmpOp.parse(node.text)

    def visit_unary(self, node, visited_children):
        op, _, src = visited_children
        return Opcode.UNARY, (op, src)

    def visit_unop(self, node, visited_children):
        return UnOp.parse(node.text)

    def visit_convert(self, node, visited_children):
        _, _, src, _, _, _, type_text = visited_children
        return Opcode.CONVERT, (src, self._int_type(type_text, node))

    def visit_call(self, node, visited_children):
        _, _, name, _, _, _, args, _, _ = visited_children
        return Opcode.CALL, (FuncRef(name), tuple(_opt(args) or ()))

    def visit_tuple(self, node, visited_children):
        _, _, _, _, regs, _, _ = visited_children
        return Opcode.AGGREGATE, (tuple(_opt(regs) or ()), None)

    def visit_struct(self, node, visited_children):
        _, _, _, _, field_inits, _, _ = visited_children
        pairs = _opt(field_inits) or []
        return Opcode.AGGREGATE, (tuple(r for _, r in pairs), tuple(n for n, _ in pairs))

    def visit_field_list(self, node, visited_children):
        first, rest = visited_children
        return self._list_of(first, rest)

    def visit_field_init(self, node, visited_children):
        name, _, _, _, reg = visited_children
        return name, reg

    def visit_extract(self, node, visited_children):
        _, _, src, _, _, _, selector = visited_children
        return Opcode.EXTRACT, (src, selector)

    def visit_selector(self, node, visited_children):
        return visited_children[0]

    def visit_global_ref(self, node, visited_children):
        _, _, name = visited_children
        return Opcode.GLOBAL, (name,)

    def visit_havoc(self, node, visited_children):
        _, _, description = visited_children
        return Opcode.HAVOC, (description,)

    def visit_alloc(self, node, visited_children):
        _, _, type_text = visited_children
        return Opcode.ALLOC, (type_text,)

    def visit_load(self, node, visited_children):
        _, _, src = visited_children
        return Opcode.LOAD, (src,)

    def visit_store(self, node, visited_children):
        _, _, src, _, _, _, addr = visited_children
        return Opcode.STORE, (src, addr)

    def visit_cond_br(self, node, visited_children):
        _, _, cond, _, _, _, on_true, _, _, _, on_false = visited_children
        return Opcode.BRANCH, (cond, on_true, on_false)

    def visit_br(self, node, visited_children):
        _, _, target = visited_children
        return Opcode.JUMP, (target,)

    def visit_ret(self, node, visited_children):
        _, _, src = visited_children
        return Opcode.RETURN, (src,)

    def visit_target(self, node, visited_children):
        label, args = visited_children
        return BlockRef(label, tuple(_opt(args) or ()))

    def visit_target_args(self, node, visited_children):
        _, _, _, regs, _, _ = visited_children
        return _opt(regs) or []

    def visit_reg_list(self, node, visited_children):
        first, rest = visited_children
        return self._list_of(first, rest)

    # ---- tokens -------------------------------------------------------------

    def visit_loc(self, node, visited_children):
        _, _, line, _, _, _, column = visited_children
        return line, column

    def visit_reg(self, node, visited_children):
        return Reg(node.text[1:])

    def visit_global_name(self, node, visited_children):
        return node.text[1:]

    def visit_type_name(self, node, visited_children):
        return node.text

    visit_label = visit_type_name

    def visit_integer(self, node, visited_children):
        return int(node.text)

    def visit_string(self, node, visited_children):
        return _unescape_string(node.text)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def parse_module(text: str, filename: str = "<string>") -> Module:
    """Parse text IR into a ``Module``.

    *filename* is only used to locate syntax errors; diagnostic locations
    use the file named by the ``module "..."`` header.

    Raises
    ------
    IRParseError
        The text does not match the grammar.
    MalformedIRError
        The text parses but describes invalid IR.
    """
    builder = ModuleBuilder(filename)
    try:
        return builder.build(text)
    except ParseError as e:
        snippet = e.text[e.pos:e.pos + 20].split("\n", 1)[0]
        rule = f" while parsing {e.expr.name!r}" if getattr(e.expr, "name", "") else ""
        raise IRParseError(
            f"syntax error near {snippet!r}{rule}",
            SourceLocation(filename, e.line(), e.column()),
        ) from None
    except VisitationError as e:
        raise IRParseError(str(e).splitlines()[0]) from e


def load_module(path: Union[str, Path]) -> Module:
    """Read and parse a text IR file."""
    path = Path(path)
    logger.info("loading IR from %s", path)
    return parse_module(path.read_text(encoding="utf-8"), filename=str(path))
