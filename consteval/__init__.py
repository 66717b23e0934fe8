"""
consteval — Compile-Time Evaluator for ``#assert``
==================================================

This package decides, at compile time, whether each static assertion of a
lowered program holds.  It interprets the already-lowered condition
functions over compile-time constants only, and reports assertions that
are false or that cannot be reduced to a constant, with notes explaining
why.

Core modules
------------
diagnostics
    Source locations, the failure taxonomy, primary diagnostics and notes.
errors
    Input errors (``ConstEvalError`` family) and evaluation traps.
values
    Fixed-width integers, booleans, aggregates and the unknown marker.
instructions
    The lowered instruction set, blocks, functions, modules and a builder.
semantics
    Pure per-opcode semantics with overflow and division checks.
frames
    Call frames and the shared instruction budget.
interpreter
    The frame-stack interpreter with loop detection.
driver
    Per-assertion classification, diagnostics and module-wide reports.

Text-format modules
-------------------
ir_parser
    Text IR reader (needs ``parsimonious``).
snapshot
    S-expression binding snapshots (needs ``sexpdata``).

Quick start
-----------
>>> from consteval import parse_module, evaluate_module
>>> report = evaluate_module(parse_module(open("pound_assert.cir").read()))
>>> print(report.to_gcc_format())
"""

from __future__ import annotations

import importlib
import logging
import sys
import warnings
from typing import Dict, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.2.0"
__author__ = "consteval contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
#
#   CORE — always imported; failure is fatal
#   TEXT — text formats with third-party parsers; failure only warns
# ---------------------------------------------------------------------------

_CORE_MODULES: Dict[str, List[str]] = {
    "diagnostics": [
        "Diagnostic",
        "DiagnosticNote",
        "DiagnosticSeverity",
        "NotConstantReason",
        "SourceLocation",
    ],
    "errors": [
        "ConstEvalError",
        "ConfigError",
        "EvaluationTrap",
        "IntegerOverflow",
        "IRParseError",
        "MalformedIRError",
        "SnapshotError",
    ],
    "values": [
        "AggregateValue",
        "BoolValue",
        "IntegerValue",
        "IntType",
        "UnknownValue",
        "Value",
    ],
    "instructions": [
        "Assertion",
        "BasicBlock",
        "Function",
        "Instruction",
        "InstructionBuilder",
        "Module",
        "Opcode",
    ],
    "semantics": [
        "require_constant",
        "evaluate_binary",
        "evaluate_comparison",
    ],
    "frames": [
        "CallFrame",
        "EvaluationBudget",
        "DEFAULT_INSTRUCTION_LIMIT",
    ],
    "interpreter": [
        "ConstExprInterpreter",
        "interpret_function",
    ],
    "driver": [
        "AssertionEvaluator",
        "AssertionResult",
        "EvaluationOutcome",
        "EvaluationReport",
        "EvaluatorConfig",
        "OutcomeKind",
        "evaluate_assertion",
        "evaluate_module",
    ],
}

_TEXT_MODULES: Dict[str, List[str]] = {
    "ir_parser": [
        "parse_module",
        "load_module",
    ],
    "snapshot": [
        "load_bindings",
        "dump_bindings",
        "read_bindings_file",
    ],
}


def _import_names(
    module_rel_name: str,
    names: List[str],
    *,
    fatal: bool = True,
) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    Parameters
    ----------
    module_rel_name:
        Module name relative to this package (e.g. ``"values"``).
    names:
        Public symbols to re-export.
    fatal:
        If ``True``, an ``ImportError`` propagates.  If ``False``, a warning
        is issued and the names are skipped (text-format tier).
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        if fatal:
            raise ImportError(
                f"consteval: required submodule '{module_rel_name}' "
                f"failed to import: {exc}"
            ) from exc
        warnings.warn(
            f"consteval: optional submodule '{module_rel_name}' "
            f"could not be imported ({exc}); related symbols will be unavailable.",
            ImportWarning,
            stacklevel=2,
        )
        _log.debug("Skipped optional module %s: %s", module_rel_name, exc)
        return

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            msg = f"consteval.{module_rel_name} does not export '{name}'"
            if fatal:
                raise AttributeError(msg)
            _log.warning(msg)
            continue
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names, fatal=True)

for _mod, _names in _TEXT_MODULES.items():
    _import_names(_mod, _names, fatal=False)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of all re-exported submodules (core + text formats)."""
    return sorted(set(_CORE_MODULES) | set(_TEXT_MODULES))
