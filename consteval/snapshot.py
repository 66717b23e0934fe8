"""consteval/snapshot.py – S-expression codec for global binding snapshots.

The propagation pre-pass resolves the globals an assertion may read and
hands them to the evaluator as an immutable snapshot.  This module stores
such snapshots as S-expressions (via ``sexpdata``)::

    ((topLevelConst (i64 1))
     (flag (bool true))
     (pair (tuple (i64 1) (i64 2)))
     (cs (struct (x (tuple (i64 1) (i64 2))) (y (i64 3))))
     (topLevelArgument unknown)
     (line (unknown "readLine()")))

Value forms
-----------
``(<int-type> <n>)``
    An integer; ``<int-type>`` is ``i8`` … ``u128`` or ``Int8`` … ``UInt``.
    Out-of-range values are rejected.
``(bool true|false)``
    A boolean.
``(tuple <value> ...)`` / ``(struct (<name> <value>) ...)``
    Aggregates.
``unknown`` / ``(unknown "<source>")``
    A binding whose value is only known at run time.

Public API
----------
``load_bindings(text) -> MappingProxyType[str, Value]``
``dump_bindings(bindings) -> str``
``value_from_sexp(sexp) -> Value`` / ``value_to_sexp(value) -> Sexp``
``read_bindings_file(path)``
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Union

# ---------------------------------------------------------------------------
# sexpdata import
# ---------------------------------------------------------------------------
try:
    import sexpdata
    from sexpdata import Symbol
except ImportError:  # pragma: no cover
    raise ImportError(
        "The 'sexpdata' package is required for binding snapshots. "
        "Install it with:  pip install sexpdata"
    )

from consteval.errors import EvaluationTrap, MalformedIRError, SnapshotError
from consteval.values import (
    AggregateValue,
    BoolValue,
    IntegerValue,
    IntType,
    UnknownValue,
    Value,
    make_bool,
)

# Type aliases for raw sexpdata output
Sexp = Any  # Union[list, Symbol, str, int]


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _sym_name(s: Sexp) -> str:
    """Extract the string name from a ``sexpdata.Symbol``, or raise."""
    if isinstance(s, Symbol):
        return s.value()
    raise SnapshotError(f"Expected symbol, got {type(s).__name__}: {s!r}")


def _expect_list(s: Sexp, *, min_len: int = 0) -> list:
    if not isinstance(s, list):
        raise SnapshotError(f"Expected list, got {type(s).__name__}: {s!r}")
    if len(s) < min_len:
        raise SnapshotError(
            f"List too short: expected at least {min_len} elements, "
            f"got {len(s)}: {s!r}"
        )
    return s


def _as_name(s: Sexp) -> str:
    """Binding and field names may be symbols or string literals."""
    if isinstance(s, Symbol):
        return s.value()
    if isinstance(s, str):
        return s
    raise SnapshotError(f"Expected name, got {type(s).__name__}: {s!r}")


def _as_int(s: Sexp) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise SnapshotError(f"Expected integer, got {type(s).__name__}: {s!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Dispatch registry
# ═══════════════════════════════════════════════════════════════════════

_VALUE_DISPATCH: Dict[str, Callable[[list], Value]] = {}


def _register(tag: str):
    """Decorator: register a value decoder under head symbol *tag*."""
    def deco(fn):
        _VALUE_DISPATCH[tag] = fn
        return fn
    return deco


@_register("bool")
def _decode_bool(lst: list) -> Value:
    _expect_list(lst, min_len=2)
    name = _sym_name(lst[1])
    if name not in ("true", "false"):
        raise SnapshotError(f"Expected true or false, got {name!r}")
    return make_bool(name == "true")


@_register("tuple")
def _decode_tuple(lst: list) -> Value:
    return AggregateValue(tuple(value_from_sexp(s) for s in lst[1:]))


@_register("struct")
def _decode_struct(lst: list) -> Value:
    names: List[str] = []
    fields: List[Value] = []
    for item in lst[1:]:
        pair = _expect_list(item, min_len=2)
        names.append(_as_name(pair[0]))
        fields.append(value_from_sexp(pair[1]))
    return AggregateValue(tuple(fields), tuple(names))


@_register("unknown")
def _decode_unknown(lst: list) -> Value:
    source = lst[1] if len(lst) > 1 else "unknown"
    if not isinstance(source, str):
        raise SnapshotError(f"Expected source string, got {source!r}")
    return UnknownValue(source)


def _decode_integer(tag: str, lst: list) -> Value:
    try:
        int_type = IntType.parse(tag)
    except MalformedIRError:
        raise SnapshotError(f"Unknown value form: ({tag} ...)") from None
    _expect_list(lst, min_len=2)
    raw = _as_int(lst[1])
    try:
        return IntegerValue(int_type, raw)
    except EvaluationTrap:
        raise SnapshotError(f"{raw} does not fit in {int_type}") from None


# ═══════════════════════════════════════════════════════════════════════
#  Values
# ═══════════════════════════════════════════════════════════════════════

def value_from_sexp(s: Sexp) -> Value:
    """Decode one value form."""
    if isinstance(s, Symbol):
        if s.value() == "unknown":
            return UnknownValue("unknown")
        raise SnapshotError(f"Unexpected symbol {s.value()!r}")
    lst = _expect_list(s, min_len=1)
    tag = _sym_name(lst[0])
    decoder = _VALUE_DISPATCH.get(tag)
    if decoder is not None:
        return decoder(lst)
    return _decode_integer(tag, lst)


def value_to_sexp(value: Value) -> Sexp:
    """Encode one value into its S-expression form."""
    if isinstance(value, IntegerValue):
        return [Symbol(value.int_type.name), value.value]
    if isinstance(value, BoolValue):
        return [Symbol("bool"), Symbol("true" if value.value else "false")]
    if isinstance(value, AggregateValue):
        if value.names is None:
            return [Symbol("tuple")] + [value_to_sexp(f) for f in value.fields]
        return [Symbol("struct")] + [
            [Symbol(n), value_to_sexp(f)] for n, f in zip(value.names, value.fields)
        ]
    if isinstance(value, UnknownValue):
        return [Symbol("unknown"), value.source]
    raise SnapshotError(f"Cannot encode {value!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Snapshots
# ═══════════════════════════════════════════════════════════════════════

def load_bindings(text: str) -> Mapping[str, Value]:
    """Parse a snapshot into a read-only name → Value mapping.

    An empty text is an empty snapshot.  For a binding whose name repeats,
    the last one wins.
    """
    if not text.strip():
        return MappingProxyType({})
    try:
        sexps = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as exc:
        raise SnapshotError(f"Malformed S-expression: {exc}") from exc

    bindings: Dict[str, Value] = {}
    for entry in _expect_list(sexps):
        pair = _expect_list(entry, min_len=2)
        if len(pair) != 2:
            raise SnapshotError(f"Expected (name value), got {pair!r}")
        name = _as_name(pair[0])
        try:
            bindings[name] = value_from_sexp(pair[1])
        except SnapshotError as exc:
            raise SnapshotError(f"binding {name!r}: {exc.message}") from None
    return MappingProxyType(bindings)


def dump_bindings(bindings: Mapping[str, Value]) -> str:
    """Render *bindings* in the snapshot syntax, one binding per line."""
    entries = [
        sexpdata.dumps([Symbol(name), value_to_sexp(value)])
        for name, value in bindings.items()
    ]
    return "(" + "\n ".join(entries) + ")\n"


def read_bindings_file(path: Union[str, Path]) -> Mapping[str, Value]:
    path = Path(path)
    try:
        return load_bindings(path.read_text(encoding="utf-8"))
    except SnapshotError as exc:
        if exc.location is None:
            raise SnapshotError(f"{path}: {exc.message}") from None
        raise
