"""
consteval/instructions.py
═════════════════════════

Lowered program representation consumed by the evaluator.

The lowering stage hands the evaluator a ``Module``: a set of ``Function``
objects plus one condition ``Function`` per ``#assert``.  A function is an
ordered list of ``BasicBlock`` units; each block is a straight-line sequence
of ``Instruction`` objects ending in exactly one terminator.  Values are
named by registers (SSA style) and merged at join points through block
parameters, passed along branch edges as block arguments.

All of these objects are read-only once built and may be shared between
concurrent evaluations.

Instruction Set
───────────────

  Mnemonic   Operands                         Semantics
  ─────────  ───────────────────────────────  ─────────────────────────────
  LITERAL    dst, type, raw                   dst ← checked literal
  BINARY     dst, op, lhs, rhs                dst ← lhs ⟨op⟩ rhs (traps)
  COMPARE    dst, rel, lhs, rhs               dst ← lhs ⟨rel⟩ rhs : Bool
  UNARY      dst, op, src                     dst ← ⟨op⟩ src
  CONVERT    dst, src, int_type               dst ← checked conversion
  CALL       dst, func, [args…]               interprocedural call
  AGGREGATE  dst, [fields…], names?           dst ← (f₁, …, fₙ)
  EXTRACT    dst, src, index|name             dst ← src.field
  GLOBAL     dst, name                        dst ← snapshot[name]
  HAVOC      dst, description                 dst ← unknown at compile time
  ALLOC      dst, type                        (side effect, never folded)
  LOAD       dst, src                         (side effect, never folded)
  STORE      src, addr                        (side effect, never folded)
  BRANCH     cond, true_bb(args), false_bb(args)
  JUMP       target_bb(args)
  RETURN     src

License: MIT — same as consteval.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from consteval.diagnostics import SourceLocation
from consteval.errors import MalformedIRError
from consteval.values import (
    BoolValue,
    IntegerValue,
    IntType,
    ScalarType,
    UnknownValue,
    Value,
    parse_scalar_type,
)

# ═══════════════════════════════════════════════════════════════════════════
# 1. INSTRUCTION SET
# ═══════════════════════════════════════════════════════════════════════════


class Opcode(enum.Enum):
    """Every opcode the lowering stage may emit."""

    LITERAL = "literal"
    BINARY = "binary"
    COMPARE = "cmp"
    UNARY = "unary"
    CONVERT = "convert"
    CALL = "call"
    AGGREGATE = "aggregate"
    EXTRACT = "extract"
    GLOBAL = "global"
    HAVOC = "havoc"
    ALLOC = "alloc"
    LOAD = "load"
    STORE = "store"
    BRANCH = "cond_br"
    JUMP = "br"
    RETURN = "return"

    @property
    def is_terminator(self) -> bool:
        return self in _TERMINATORS


_TERMINATORS: FrozenSet[Opcode] = frozenset({Opcode.BRANCH, Opcode.JUMP, Opcode.RETURN})

# Opcodes with observable side effects; the evaluator refuses to fold them.
SIDE_EFFECT_OPCODES: FrozenSet[Opcode] = frozenset({Opcode.ALLOC, Opcode.LOAD, Opcode.STORE})


class BinOp(enum.Enum):
    """Binary arithmetic and bitwise operators."""

    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    AND = "&"
    OR = "|"
    XOR = "^"

    @property
    def mnemonic(self) -> str:
        return _BINOP_MNEMONIC[self]

    @classmethod
    def parse(cls, text: str) -> BinOp:
        op = _STR_TO_BINOP.get(text)
        if op is None:
            raise MalformedIRError(f"unknown binary operator {text!r}")
        return op


class UnOp(enum.Enum):
    """Unary operators."""

    NEG = "-"
    NOT = "!"

    @property
    def mnemonic(self) -> str:
        return "neg" if self is UnOp.NEG else "not"

    @classmethod
    def parse(cls, text: str) -> UnOp:
        if text in ("-", "neg"):
            return cls.NEG
        if text in ("!", "~", "not"):
            return cls.NOT
        raise MalformedIRError(f"unknown unary operator {text!r}")


class CmpOp(enum.Enum):
    """Comparison / relational operators."""

    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    @property
    def mnemonic(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, text: str) -> CmpOp:
        for op in cls:
            if text in (op.value, op.mnemonic):
                return op
        raise MalformedIRError(f"unknown comparison operator {text!r}")


_BINOP_MNEMONIC: Dict[BinOp, str] = {
    BinOp.ADD: "add",
    BinOp.SUB: "sub",
    BinOp.MUL: "mul",
    BinOp.DIV: "div",
    BinOp.MOD: "rem",
    BinOp.AND: "and",
    BinOp.OR: "or",
    BinOp.XOR: "xor",
}

_STR_TO_BINOP: Dict[str, BinOp] = {op.value: op for op in BinOp}
_STR_TO_BINOP.update({m: op for op, m in _BINOP_MNEMONIC.items()})

# ---------------------------------------------------------------------------
# Operand types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Reg:
    """A local register holding one instruction result or parameter."""

    name: str

    def __str__(self) -> str:
        return f"%{self.name}"


@dataclass(frozen=True, slots=True)
class BlockRef:
    """A branch target together with the block arguments passed to it."""

    label: str
    args: Tuple[Reg, ...] = ()

    def __str__(self) -> str:
        if not self.args:
            return self.label
        return f"{self.label}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True, slots=True)
class FuncRef:
    """Reference to a function by name."""

    name: str

    def __str__(self) -> str:
        return f"@{self.name}"


Operand = Union[
    Reg,
    BlockRef,
    FuncRef,
    BinOp,
    UnOp,
    CmpOp,
    IntType,
    ScalarType,
    Tuple[Any, ...],
    int,
    bool,
    str,
    None,
]

# ---------------------------------------------------------------------------
# Instruction
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Instruction:
    """A single lowered instruction.

    Parameters
    ----------
    opcode : Opcode
        The operation.
    operands : tuple[Operand, ...]
        Positional operands whose meaning is opcode-specific (see the ISA
        table in the module docstring).
    loc : Optional[SourceLocation]
        Source position, carried for diagnostics.
    """

    opcode: Opcode
    operands: Tuple[Operand, ...] = ()
    loc: Optional[SourceLocation] = None

    @property
    def dst(self) -> Optional[Reg]:
        """Destination register, for opcodes that define one."""
        if self.opcode in _DEFINING_OPCODES:
            return self.operands[0]  # type: ignore[return-value]
        return None

    @property
    def targets(self) -> Tuple[BlockRef, ...]:
        """Branch targets of a terminator, in operand order."""
        return tuple(op for op in self.operands if isinstance(op, BlockRef))

    def regs_used(self) -> FrozenSet[Reg]:
        """Set of registers *read* by this instruction."""
        used: Set[Reg] = set()
        start = 1 if self.opcode in _DEFINING_OPCODES else 0
        for op in self.operands[start:]:
            if isinstance(op, Reg):
                used.add(op)
            elif isinstance(op, BlockRef):
                used.update(op.args)
            elif isinstance(op, tuple):
                used.update(sub for sub in op if isinstance(sub, Reg))
        return frozenset(used)

    # Pretty-print (text IR syntax) -------------------------------------------

    def __str__(self) -> str:
        op = self.opcode
        ops = self.operands
        if op is Opcode.LITERAL:
            raw = ops[2]
            text = ("true" if raw else "false") if isinstance(raw, bool) else str(raw)
            body = f"literal {ops[1]} {text}"
        elif op is Opcode.BINARY:
            body = f"{ops[1].mnemonic} {ops[2]}, {ops[3]}"  # type: ignore[union-attr]
        elif op is Opcode.COMPARE:
            body = f"cmp {ops[1].mnemonic} {ops[2]}, {ops[3]}"  # type: ignore[union-attr]
        elif op is Opcode.UNARY:
            body = f"{ops[1].mnemonic} {ops[2]}"  # type: ignore[union-attr]
        elif op is Opcode.CONVERT:
            body = f"convert {ops[1]} to {ops[2]}"
        elif op is Opcode.CALL:
            args = ", ".join(str(a) for a in ops[2])  # type: ignore[union-attr]
            body = f"call {ops[1]}({args})"
        elif op is Opcode.AGGREGATE:
            fields_, names = ops[1], ops[2]
            if names is None:
                body = "tuple (" + ", ".join(str(f) for f in fields_) + ")"  # type: ignore[union-attr]
            else:
                inner = ", ".join(f"{n}: {f}" for n, f in zip(names, fields_))  # type: ignore[arg-type]
                body = f"struct ({inner})"
        elif op is Opcode.EXTRACT:
            body = f"extract {ops[1]}, {ops[2]}"
        elif op is Opcode.GLOBAL:
            body = f"global @{ops[1]}"
        elif op is Opcode.HAVOC:
            body = f"havoc {_quote(str(ops[1]))}"
        elif op is Opcode.ALLOC:
            body = f"alloc {ops[1]}"
        elif op is Opcode.LOAD:
            body = f"load {ops[1]}"
        elif op is Opcode.STORE:
            return f"store {ops[0]} to {ops[1]}"
        elif op is Opcode.BRANCH:
            return f"cond_br {ops[0]}, {ops[1]}, {ops[2]}"
        elif op is Opcode.JUMP:
            return f"br {ops[0]}"
        else:
            return f"return {ops[0]}"
        return f"{ops[0]} = {body}"


# Opcodes whose first operand is a destination register
_DEFINING_OPCODES: FrozenSet[Opcode] = frozenset(
    {
        Opcode.LITERAL,
        Opcode.BINARY,
        Opcode.COMPARE,
        Opcode.UNARY,
        Opcode.CONVERT,
        Opcode.CALL,
        Opcode.AGGREGATE,
        Opcode.EXTRACT,
        Opcode.GLOBAL,
        Opcode.HAVOC,
        Opcode.ALLOC,
        Opcode.LOAD,
    }
)


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _fmt_loc(loc: Optional[SourceLocation]) -> str:
    return f"  @ {loc.line}:{loc.column}" if loc is not None else ""


# ═══════════════════════════════════════════════════════════════════════════
# 2. BASIC BLOCK, FUNCTION, MODULE
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class BasicBlock:
    """A straight-line instruction sequence ending in one terminator.

    Attributes
    ----------
    label : str
        Block name, unique within its function.
    params : tuple[Reg, ...]
        Block parameters, bound from the arguments of the incoming branch.
    instructions : tuple[Instruction, ...]
        Ordered instruction sequence; the last one is the terminator.
    param_types : tuple[str, ...]
        Informational type names of the parameters (may be empty).
    """

    label: str
    params: Tuple[Reg, ...] = ()
    instructions: Tuple[Instruction, ...] = ()
    param_types: Tuple[str, ...] = ()

    @property
    def terminator(self) -> Instruction:
        return self.instructions[-1]

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def header(self) -> str:
        if not self.params:
            return f"{self.label}:"
        types = self.param_types or ("",) * len(self.params)
        ps = ", ".join(f"{p}: {t}" if t else str(p) for p, t in zip(self.params, types))
        return f"{self.label}({ps}):"

    def __repr__(self) -> str:
        return f"BasicBlock(label={self.label!r}, #instr={len(self)})"


@dataclass(slots=True)
class Function:
    """A lowered function: ordered blocks, the first one being the entry.

    The constructor validates the block structure and raises
    ``MalformedIRError`` for anything the interpreter cannot rely on:
    missing or misplaced terminators, dangling branch targets, block
    argument count mismatches and registers defined twice.
    """

    name: str
    params: Tuple[Reg, ...] = ()
    blocks: Dict[str, BasicBlock] = field(default_factory=dict)
    return_type: str = ""
    param_types: Tuple[str, ...] = ()
    loc: Optional[SourceLocation] = None
    _definitions: Dict[str, Instruction] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._validate()

    @property
    def entry(self) -> BasicBlock:
        return next(iter(self.blocks.values()))

    def block(self, label: str) -> BasicBlock:
        try:
            return self.blocks[label]
        except KeyError:
            raise MalformedIRError(f"@{self.name} has no block {label!r}") from None

    def defining_instruction(self, reg: Reg) -> Optional[Instruction]:
        """The instruction that defines *reg*, or ``None`` for parameters."""
        return self._definitions.get(reg.name)

    def instructions(self) -> Iterator[Instruction]:
        for blk in self.blocks.values():
            yield from blk.instructions

    def callees(self) -> FrozenSet[str]:
        return frozenset(
            instr.operands[1].name  # type: ignore[union-attr]
            for instr in self.instructions()
            if instr.opcode is Opcode.CALL
        )

    # ---- validation ---------------------------------------------------------

    def _validate(self) -> None:
        if not self.blocks:
            raise MalformedIRError(f"@{self.name} has no basic blocks", self.loc)

        defined: Set[str] = set()

        def _define(reg: Reg, loc: Optional[SourceLocation]) -> None:
            if reg.name in defined:
                raise MalformedIRError(
                    f"@{self.name}: register {reg} is defined more than once", loc
                )
            defined.add(reg.name)

        for p in self.params:
            _define(p, self.loc)

        for label, blk in self.blocks.items():
            if label != blk.label:
                raise MalformedIRError(f"@{self.name}: block key {label!r} != {blk.label!r}")
            if not blk.instructions:
                raise MalformedIRError(f"@{self.name}: block {label} is empty", self.loc)
            for p in blk.params:
                _define(p, self.loc)
            for i, instr in enumerate(blk.instructions):
                is_last = i == len(blk.instructions) - 1
                if instr.opcode.is_terminator != is_last:
                    what = "must end with" if is_last else "has a misplaced"
                    raise MalformedIRError(
                        f"@{self.name}: block {label} {what} a terminator", instr.loc
                    )
                dst = instr.dst
                if dst is not None:
                    _define(dst, instr.loc)
                    self._definitions[dst.name] = instr

        for blk in self.blocks.values():
            for target in blk.terminator.targets:
                dest = self.blocks.get(target.label)
                if dest is None:
                    raise MalformedIRError(
                        f"@{self.name}: branch to unknown block {target.label!r}",
                        blk.terminator.loc,
                    )
                if len(target.args) != len(dest.params):
                    raise MalformedIRError(
                        f"@{self.name}: branch to {dest.label} passes "
                        f"{len(target.args)} argument(s), expected {len(dest.params)}",
                        blk.terminator.loc,
                    )

    # ---- pretty-print -------------------------------------------------------

    def signature(self) -> str:
        types = self.param_types or ("",) * len(self.params)
        ps = ", ".join(f"{p}: {t}" if t else str(p) for p, t in zip(self.params, types))
        ret = f" -> {self.return_type}" if self.return_type else ""
        return f"@{self.name}({ps}){ret}"

    def dump_body(self) -> List[str]:
        lines: List[str] = []
        for blk in self.blocks.values():
            lines.append(blk.header())
            for instr in blk.instructions:
                lines.append(f"  {instr}{_fmt_loc(instr.loc)}")
        return lines

    def dump(self) -> str:
        """Pretty-print the function in text IR syntax."""
        return "\n".join([f"func {self.signature()} {{", *self.dump_body(), "}"])

    def __repr__(self) -> str:
        return (
            f"Function(name={self.name!r}, "
            f"#blocks={len(self.blocks)}, "
            f"#params={len(self.params)})"
        )


@dataclass(slots=True)
class Assertion:
    """One ``#assert`` directive: its condition function and literal message."""

    name: str
    condition: Function
    message: Optional[str] = None
    loc: Optional[SourceLocation] = None

    def __post_init__(self) -> None:
        if self.condition.params:
            raise MalformedIRError(
                f"assertion @{self.name}: condition function takes no parameters",
                self.loc,
            )

    def dump(self) -> str:
        head = f"assert @{self.name}"
        if self.message is not None:
            head += f" {_quote(self.message)}"
        head += _fmt_loc(self.loc).replace("  @", " @")
        return "\n".join([f"{head} {{", *self.condition.dump_body(), "}"])


@dataclass(slots=True)
class Module:
    """Everything the lowering stage hands over for one translation unit.

    Attributes
    ----------
    source_file : str
        Originating source file (used for every ``SourceLocation``).
    functions : dict[str, Function]
        Function name → body.  Functions called but absent here have no
        body available at compile time.
    assertions : list[Assertion]
        ``#assert`` directives in source order.
    globals_ : dict[str, Value]
        Global bindings already resolved by the propagation pre-pass.
    """

    source_file: str = "<module>"
    functions: Dict[str, Function] = field(default_factory=dict)
    assertions: List[Assertion] = field(default_factory=list)
    globals_: Dict[str, Value] = field(default_factory=dict)

    def add_function(self, fn: Function) -> None:
        if fn.name in self.functions:
            raise MalformedIRError(f"function @{fn.name} is defined twice", fn.loc)
        self.functions[fn.name] = fn

    def add_assertion(self, assertion: Assertion) -> None:
        self.assertions.append(assertion)

    def assertion(self, name: str) -> Assertion:
        for a in self.assertions:
            if a.name == name:
                return a
        raise KeyError(name)

    def dump(self) -> str:
        parts: List[str] = [f"module {_quote(self.source_file)}"]
        if self.globals_:
            parts.append("")
            for name, value in self.globals_.items():
                parts.append(_dump_global(name, value))
        for fn in self.functions.values():
            parts.append("")
            parts.append(fn.dump())
        for a in self.assertions:
            parts.append("")
            parts.append(a.dump())
        return "\n".join(parts) + "\n"

    def __repr__(self) -> str:
        return (
            f"Module(source={self.source_file!r}, #funcs={len(self.functions)}, "
            f"#asserts={len(self.assertions)})"
        )


def _dump_global(name: str, value: Value) -> str:
    if isinstance(value, IntegerValue):
        return f"global @{name} : {value.int_type} = {value.value}"
    if isinstance(value, BoolValue):
        return f"global @{name} : bool = {value}"
    if isinstance(value, UnknownValue):
        return f"global @{name} : opaque = unknown"
    # Aggregate bindings have no text IR spelling; they travel in snapshots.
    return f"// global @{name} = {value}"


# ═══════════════════════════════════════════════════════════════════════════
# 3. BUILDER HELPERS (for programmatic construction)
# ═══════════════════════════════════════════════════════════════════════════


class InstructionBuilder:
    """Fluent builder for constructing lowered functions by hand.

    Useful for tests and for lowering front ends that prefer an API over the
    text syntax.

    Example
    -------
    >>> b = InstructionBuilder()
    >>> b.literal("one", "i64", 1).compare("r", "==", "x", "one").ret("r")
    >>> fn = b.build_function("isOne", {"bb0": b.build_block("bb0")}, params=["x"])
    """

    def __init__(self, source_file: str = "<builder>") -> None:
        self.source_file = source_file
        self.instructions: List[Instruction] = []
        self._loc: Optional[SourceLocation] = None

    def _r(self, name: str) -> Reg:
        return Reg(name)

    def _emit(self, opcode: Opcode, operands: Tuple[Operand, ...]) -> InstructionBuilder:
        self.instructions.append(Instruction(opcode, operands, self._loc))
        self._loc = None
        return self

    def at(self, line: int, column: int = 0) -> InstructionBuilder:
        """Attach a source location to the next instruction."""
        self._loc = SourceLocation(self.source_file, line, column)
        return self

    def literal(self, dst: str, type_name: Union[str, ScalarType], value: Union[int, bool]) -> InstructionBuilder:
        ty = parse_scalar_type(type_name) if isinstance(type_name, str) else type_name
        if ty is None:
            raise MalformedIRError(f"literal of non-scalar type {type_name!r}")
        return self._emit(Opcode.LITERAL, (self._r(dst), ty, value))

    def binop(self, dst: str, op: str, lhs: str, rhs: str) -> InstructionBuilder:
        return self._emit(Opcode.BINARY, (self._r(dst), BinOp.parse(op), self._r(lhs), self._r(rhs)))

    def compare(self, dst: str, rel: str, lhs: str, rhs: str) -> InstructionBuilder:
        return self._emit(Opcode.COMPARE, (self._r(dst), CmpOp.parse(rel), self._r(lhs), self._r(rhs)))

    def unop(self, dst: str, op: str, src: str) -> InstructionBuilder:
        return self._emit(Opcode.UNARY, (self._r(dst), UnOp.parse(op), self._r(src)))

    def convert(self, dst: str, src: str, type_name: str) -> InstructionBuilder:
        return self._emit(Opcode.CONVERT, (self._r(dst), self._r(src), IntType.parse(type_name)))

    def call(self, dst: str, func_name: str, args: Optional[Sequence[str]] = None) -> InstructionBuilder:
        arg_regs = tuple(self._r(a) for a in (args or []))
        return self._emit(Opcode.CALL, (self._r(dst), FuncRef(func_name), arg_regs))

    def tuple_(self, dst: str, fields: Sequence[str]) -> InstructionBuilder:
        return self._emit(Opcode.AGGREGATE, (self._r(dst), tuple(self._r(f) for f in fields), None))

    def struct(self, dst: str, fields: Mapping[str, str]) -> InstructionBuilder:
        regs = tuple(self._r(f) for f in fields.values())
        return self._emit(Opcode.AGGREGATE, (self._r(dst), regs, tuple(fields)))

    def extract(self, dst: str, src: str, index: Union[int, str]) -> InstructionBuilder:
        return self._emit(Opcode.EXTRACT, (self._r(dst), self._r(src), index))

    def global_(self, dst: str, name: str) -> InstructionBuilder:
        return self._emit(Opcode.GLOBAL, (self._r(dst), name))

    def havoc(self, dst: str, description: str) -> InstructionBuilder:
        return self._emit(Opcode.HAVOC, (self._r(dst), description))

    def alloc(self, dst: str, type_name: str) -> InstructionBuilder:
        return self._emit(Opcode.ALLOC, (self._r(dst), type_name))

    def load(self, dst: str, src: str) -> InstructionBuilder:
        return self._emit(Opcode.LOAD, (self._r(dst), self._r(src)))

    def store(self, src: str, addr: str) -> InstructionBuilder:
        return self._emit(Opcode.STORE, (self._r(src), self._r(addr)))

    def branch(
        self,
        cond: str,
        true_bb: str,
        false_bb: str,
        true_args: Sequence[str] = (),
        false_args: Sequence[str] = (),
    ) -> InstructionBuilder:
        t = BlockRef(true_bb, tuple(self._r(a) for a in true_args))
        f = BlockRef(false_bb, tuple(self._r(a) for a in false_args))
        return self._emit(Opcode.BRANCH, (self._r(cond), t, f))

    def jump(self, target_bb: str, args: Sequence[str] = ()) -> InstructionBuilder:
        return self._emit(Opcode.JUMP, (BlockRef(target_bb, tuple(self._r(a) for a in args)),))

    def ret(self, src: str) -> InstructionBuilder:
        return self._emit(Opcode.RETURN, (self._r(src),))

    def build_block(self, label: str, params: Sequence[str] = ()) -> BasicBlock:
        """Build a ``BasicBlock`` from accumulated instructions and reset."""
        blk = BasicBlock(
            label=label,
            params=tuple(self._r(p) for p in params),
            instructions=tuple(self.instructions),
        )
        self.instructions.clear()
        return blk

    def build_function(
        self,
        name: str,
        blocks: Union[Mapping[str, BasicBlock], Sequence[BasicBlock]],
        params: Optional[Sequence[str]] = None,
        return_type: str = "",
    ) -> Function:
        """Build a ``Function`` from pre-built blocks (entry block first)."""
        if isinstance(blocks, Mapping):
            ordered = dict(blocks)
        else:
            ordered = {blk.label: blk for blk in blocks}
        return Function(
            name=name,
            params=tuple(self._r(p) for p in (params or [])),
            blocks=ordered,
            return_type=return_type,
        )
