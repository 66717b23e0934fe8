"""
consteval/semantics.py
══════════════════════

Pure per-opcode semantics over compile-time values.

Every function here takes values and returns a new value, or raises:

* ``EvaluationTrap`` when the operation has no compile-time result
  (unknown operand, overflow, division by zero);
* ``MalformedIRError`` when the operands do not have the types the opcode
  requires, which means the lowering produced invalid IR.

Integer arithmetic is computed exactly with Python integers and then
range-checked by ``IntegerValue`` construction, so a result that does not
fit its type always surfaces as ``IntegerOverflow`` and never wraps.

License: MIT — same as consteval.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from consteval.diagnostics import (
    NOTE_DIVISION_BY_ZERO,
    NOTE_UNKNOWN_VALUE,
    NotConstantReason,
    SourceLocation,
)
from consteval.errors import EvaluationTrap, MalformedIRError
from consteval.instructions import BinOp, CmpOp, UnOp
from consteval.values import (
    AggregateValue,
    BoolType,
    BoolValue,
    IntegerValue,
    IntType,
    ScalarType,
    UnknownValue,
    Value,
    make_bool,
)

__all__ = [
    "require_constant",
    "evaluate_binary",
    "evaluate_comparison",
    "evaluate_unary",
    "convert_integer",
    "make_literal",
    "construct_aggregate",
    "extract_field",
]


# ---------------------------------------------------------------------------
# Concreteness checks
# ---------------------------------------------------------------------------

def require_constant(value: Value, use_site: Optional[SourceLocation] = None) -> Value:
    """Return *value* if it is known at compile time, otherwise trap.

    The note points at the place the unknown value came from; when that is
    not recorded, at *use_site*.
    """
    if isinstance(value, UnknownValue):
        raise EvaluationTrap.with_note(
            NotConstantReason.NON_CONSTANT_INPUT,
            NOTE_UNKNOWN_VALUE.format(source=value.source),
            value.origin or use_site,
        )
    return value


def _require_fully_constant(value: Value) -> Value:
    # Aggregates may hold unknown fields until something looks inside them.
    require_constant(value)
    if isinstance(value, AggregateValue):
        for f in value.fields:
            _require_fully_constant(f)
    return value


def _same_int_type(op: str, lhs: IntegerValue, rhs: IntegerValue) -> IntType:
    if lhs.int_type != rhs.int_type:
        raise MalformedIRError(
            f"operand types differ for {op}: {lhs.int_type} vs {rhs.int_type}"
        )
    return lhs.int_type


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------

def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def evaluate_binary(op: BinOp, lhs: Value, rhs: Value) -> Value:
    """Apply a binary arithmetic or bitwise operator.

    ``/`` truncates toward zero and ``%`` takes the sign of the dividend.
    ``& | ^`` work on the two's-complement bit patterns of integers and
    logically on booleans.
    """
    lhs = require_constant(lhs)
    rhs = require_constant(rhs)

    if isinstance(lhs, BoolValue) and isinstance(rhs, BoolValue):
        if op is BinOp.AND:
            return make_bool(lhs.value and rhs.value)
        if op is BinOp.OR:
            return make_bool(lhs.value or rhs.value)
        if op is BinOp.XOR:
            return make_bool(lhs.value != rhs.value)
        raise MalformedIRError(f"operator {op.value!r} is not defined on Bool")

    if not (isinstance(lhs, IntegerValue) and isinstance(rhs, IntegerValue)):
        raise MalformedIRError(
            f"operator {op.value!r} needs integer operands, got "
            f"{lhs.kind.value} and {rhs.kind.value}"
        )

    ty = _same_int_type(op.value, lhs, rhs)
    a, b = lhs.value, rhs.value

    if op is BinOp.ADD:
        return IntegerValue(ty, a + b)
    if op is BinOp.SUB:
        return IntegerValue(ty, a - b)
    if op is BinOp.MUL:
        return IntegerValue(ty, a * b)
    if op in (BinOp.DIV, BinOp.MOD):
        if b == 0:
            raise EvaluationTrap.with_note(
                NotConstantReason.DIVISION_BY_ZERO, NOTE_DIVISION_BY_ZERO
            )
        q = _trunc_div(a, b)
        if op is BinOp.DIV:
            return IntegerValue(ty, q)
        # MIN % -1 is 0 even though MIN / -1 overflows.
        return IntegerValue(ty, a - b * q)
    if op is BinOp.AND:
        return IntegerValue.from_bits(ty, lhs.bits & rhs.bits)
    if op is BinOp.OR:
        return IntegerValue.from_bits(ty, lhs.bits | rhs.bits)
    if op is BinOp.XOR:
        return IntegerValue.from_bits(ty, lhs.bits ^ rhs.bits)
    raise MalformedIRError(f"unhandled binary operator {op!r}")


def evaluate_comparison(op: CmpOp, lhs: Value, rhs: Value) -> BoolValue:
    """Compare two values; the result is always a Bool and never overflows.

    Equality applies to every kind of constant (aggregates compare field by
    field); ordering applies to integers and booleans.
    """
    lhs = _require_fully_constant(lhs)
    rhs = _require_fully_constant(rhs)

    if lhs.kind is not rhs.kind:
        raise MalformedIRError(
            f"cannot compare {lhs.kind.value} with {rhs.kind.value}"
        )
    if isinstance(lhs, IntegerValue):
        _same_int_type(op.value, lhs, rhs)  # type: ignore[arg-type]

    if op is CmpOp.EQ:
        return make_bool(lhs == rhs)
    if op is CmpOp.NE:
        return make_bool(lhs != rhs)

    if not isinstance(lhs, (IntegerValue, BoolValue)):
        raise MalformedIRError(f"ordering {op.value!r} is not defined on {lhs.kind.value}")
    a, b = lhs.value, rhs.value  # type: ignore[attr-defined]
    if op is CmpOp.LT:
        return make_bool(a < b)
    if op is CmpOp.LE:
        return make_bool(a <= b)
    if op is CmpOp.GT:
        return make_bool(a > b)
    return make_bool(a >= b)


def evaluate_unary(op: UnOp, operand: Value) -> Value:
    """``neg`` is checked negation; ``not`` is logical on Bool, bitwise on ints."""
    operand = require_constant(operand)
    if op is UnOp.NOT:
        if isinstance(operand, BoolValue):
            return make_bool(not operand.value)
        if isinstance(operand, IntegerValue):
            return IntegerValue.from_bits(operand.int_type, ~operand.bits)
    elif isinstance(operand, IntegerValue):
        return IntegerValue(operand.int_type, -operand.value)
    raise MalformedIRError(f"operator {op.mnemonic!r} is not defined on {operand.kind.value}")


def convert_integer(operand: Value, target: IntType) -> IntegerValue:
    """Re-check an integer against another integer type, e.g. ``Int8(x)``."""
    operand = require_constant(operand)
    if not isinstance(operand, IntegerValue):
        raise MalformedIRError(f"cannot convert {operand.kind.value} to {target}")
    return IntegerValue(target, operand.value)


# ---------------------------------------------------------------------------
# Literals & aggregates
# ---------------------------------------------------------------------------

def make_literal(ty: ScalarType, raw: Union[int, bool]) -> Value:
    if isinstance(ty, BoolType):
        if not isinstance(raw, bool):
            raise MalformedIRError(f"bool literal expected, got {raw!r}")
        return make_bool(raw)
    if isinstance(raw, bool):
        raise MalformedIRError(f"integer literal expected for {ty}, got {raw!r}")
    return IntegerValue(ty, raw)


def construct_aggregate(
    fields: Sequence[Value], names: Optional[Sequence[str]] = None
) -> AggregateValue:
    return AggregateValue(tuple(fields), tuple(names) if names is not None else None)


def extract_field(aggregate: Value, selector: Union[int, str]) -> Value:
    """Project one field out of a tuple (by index) or struct (by index or name)."""
    aggregate = require_constant(aggregate)
    if not isinstance(aggregate, AggregateValue):
        raise MalformedIRError(f"cannot extract a field from {aggregate.kind.value}")
    if isinstance(selector, str):
        selector = aggregate.index_of(selector)
    return aggregate.field(selector)
