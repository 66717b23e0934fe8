"""
consteval/values.py
═══════════════════

Compile-time value model.

Every value the evaluator manipulates is one of:

    IntegerValue    fixed-width integer (bits, signedness, exact value)
    BoolValue       ``true`` / ``false``
    AggregateValue  ordered fields, optionally named (tuples and structs)
    UnknownValue    marker for a value that is *not* known at compile time

Values are immutable.  Operations never modify a value in place; they build
new ones.  An ``IntegerValue`` always holds a value that fits its declared
type: construction of an out-of-range integer raises ``IntegerOverflow``
instead of wrapping.

License: MIT — same as consteval.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

from consteval.diagnostics import SourceLocation
from consteval.errors import IntegerOverflow, MalformedIRError

# ═══════════════════════════════════════════════════════════════════════════
# 1. TYPES
# ═══════════════════════════════════════════════════════════════════════════

_SHORT_INT_RE = re.compile(r"^([iu])(\d+)$")
_LONG_INT_RE = re.compile(r"^(U?)Int(\d*)$")


@dataclass(frozen=True, slots=True)
class IntType:
    """A fixed-width integer type."""

    bits: int
    signed: bool = True

    def __post_init__(self) -> None:
        if self.bits <= 0:
            raise MalformedIRError(f"integer width must be positive, got {self.bits}")

    @property
    def min_value(self) -> int:
        return -(1 << (self.bits - 1)) if self.signed else 0

    @property
    def max_value(self) -> int:
        if self.signed:
            return (1 << (self.bits - 1)) - 1
        return (1 << self.bits) - 1

    @property
    def mask(self) -> int:
        return (1 << self.bits) - 1

    def contains(self, value: int) -> bool:
        return self.min_value <= value <= self.max_value

    @property
    def name(self) -> str:
        return f"{'i' if self.signed else 'u'}{self.bits}"

    @property
    def display_name(self) -> str:
        """Source-level spelling, e.g. ``Int8`` or ``UInt64``."""
        return f"{'' if self.signed else 'U'}Int{self.bits}"

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, text: str) -> IntType:
        """Parse ``i8``/``u64`` or ``Int8``/``UInt``/``Int`` (64-bit)."""
        m = _SHORT_INT_RE.match(text)
        if m:
            return cls(int(m.group(2)), m.group(1) == "i")
        m = _LONG_INT_RE.match(text)
        if m:
            return cls(int(m.group(2) or 64), not m.group(1))
        raise MalformedIRError(f"not an integer type: {text!r}")


@dataclass(frozen=True, slots=True)
class BoolType:
    """The boolean type."""

    def __str__(self) -> str:
        return "bool"


BOOL = BoolType()
I8 = IntType(8)
I16 = IntType(16)
I32 = IntType(32)
I64 = IntType(64)
U8 = IntType(8, signed=False)
U64 = IntType(64, signed=False)

ScalarType = Union[IntType, BoolType]


def parse_scalar_type(text: str) -> Optional[ScalarType]:
    """Return the scalar type spelled *text*, or ``None`` for other names.

    Non-scalar type names (``CustomStruct``, ``(Int, Int)``) are carried as
    informational text only; the evaluator trusts the lowering's typing.
    """
    if text in ("bool", "Bool"):
        return BOOL
    try:
        return IntType.parse(text)
    except MalformedIRError:
        return None


# ═══════════════════════════════════════════════════════════════════════════
# 2. VALUES
# ═══════════════════════════════════════════════════════════════════════════


class ValueKind(enum.Enum):
    INTEGER = "integer"
    BOOLEAN = "boolean"
    AGGREGATE = "aggregate"
    UNKNOWN = "unknown"


class Value:
    """Common base of all compile-time values."""

    __slots__ = ()
    kind: ClassVar[ValueKind]

    @property
    def is_constant(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class IntegerValue(Value):
    """An integer that fits its declared type.

    Raises ``IntegerOverflow`` if *value* is outside ``int_type``'s range.
    """

    int_type: IntType
    value: int

    kind: ClassVar[ValueKind] = ValueKind.INTEGER

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise MalformedIRError(f"integer value expected, got {self.value!r}")
        if not self.int_type.contains(self.value):
            raise IntegerOverflow(
                f"{self.value} does not fit in {self.int_type.display_name}"
            )

    @property
    def bits(self) -> int:
        """Two's-complement bit pattern of the value."""
        return self.value & self.int_type.mask

    @classmethod
    def from_bits(cls, int_type: IntType, bits: int) -> IntegerValue:
        bits &= int_type.mask
        if int_type.signed and bits >> (int_type.bits - 1):
            bits -= 1 << int_type.bits
        return cls(int_type, bits)

    def __str__(self) -> str:
        return f"{self.int_type} {self.value}"


@dataclass(frozen=True, slots=True)
class BoolValue(Value):
    value: bool

    kind: ClassVar[ValueKind] = ValueKind.BOOLEAN

    def __str__(self) -> str:
        return "true" if self.value else "false"


TRUE = BoolValue(True)
FALSE = BoolValue(False)


@dataclass(frozen=True, slots=True)
class AggregateValue(Value):
    """An ordered sequence of component values (tuple or struct).

    ``names`` is ``None`` for tuples and holds one name per field for
    structs.
    """

    fields: Tuple[Value, ...]
    names: Optional[Tuple[str, ...]] = None

    kind: ClassVar[ValueKind] = ValueKind.AGGREGATE

    def __post_init__(self) -> None:
        if self.names is not None and len(self.names) != len(self.fields):
            raise MalformedIRError(
                f"aggregate has {len(self.fields)} fields but "
                f"{len(self.names)} names"
            )

    def __len__(self) -> int:
        return len(self.fields)

    def field(self, index: int) -> Value:
        if not 0 <= index < len(self.fields):
            raise MalformedIRError(
                f"field index {index} out of range for aggregate of "
                f"{len(self.fields)} fields"
            )
        return self.fields[index]

    def index_of(self, name: str) -> int:
        if self.names is None or name not in self.names:
            raise MalformedIRError(f"aggregate has no field named {name!r}")
        return self.names.index(name)

    def __str__(self) -> str:
        if self.names is None:
            return "(" + ", ".join(str(f) for f in self.fields) + ")"
        inner = ", ".join(f"{n}: {f}" for n, f in zip(self.names, self.fields))
        return "{" + inner + "}"


@dataclass(frozen=True, slots=True)
class UnknownValue(Value):
    """A value that only becomes known at run time.

    ``source`` describes where it comes from (``readLine()``, a function
    argument, a global the snapshot could not resolve) and ``origin`` is the
    location that produced it.
    """

    source: str
    origin: Optional[SourceLocation] = None

    kind: ClassVar[ValueKind] = ValueKind.UNKNOWN

    @property
    def is_constant(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"unknown({self.source})"


def make_bool(value: bool) -> BoolValue:
    return TRUE if value else FALSE
