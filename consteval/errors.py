# consteval/errors.py
"""
Error types for the constant-expression evaluator.

Two families live here:

* ``ConstEvalError`` and its subclasses are ordinary exceptions raised for
  bad *input* to the evaluator: text that does not parse, IR that is
  structurally invalid (an upstream lowering defect), an unreadable binding
  snapshot, or an invalid configuration.  They propagate to the caller.

* ``EvaluationTrap`` is the control-flow exception raised while executing an
  assertion when the condition turns out not to be a compile-time constant.
  It never escapes the public driver API: ``AssertionEvaluator`` converts it
  into a ``NotConstant`` outcome.

Hierarchy::

    ConstEvalError
    ├── IRParseError       - text IR grammar violations
    ├── MalformedIRError   - invalid blocks, operands, types
    ├── SnapshotError      - unreadable binding snapshot
    └── ConfigError        - invalid evaluator configuration

    EvaluationTrap
    └── IntegerOverflow    - a value does not fit its integer type
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from consteval.diagnostics import (
    NOTE_OVERFLOW,
    DiagnosticNote,
    NotConstantReason,
    SourceLocation,
)


# ═══════════════════════════════════════════════════════════════════════════
# INPUT ERRORS
# ═══════════════════════════════════════════════════════════════════════════

class ConstEvalError(Exception):
    """Base class for all evaluator input errors."""

    def __init__(self, message: str, location: Optional[SourceLocation] = None):
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location is not None:
            return f"{self.location}: {self.message}"
        return self.message


class IRParseError(ConstEvalError):
    """The textual IR does not match the grammar."""


class MalformedIRError(ConstEvalError):
    """The IR is well-formed text but structurally invalid."""


class SnapshotError(ConstEvalError):
    """A binding snapshot could not be decoded."""


class ConfigError(ConstEvalError):
    """An evaluator configuration value is out of range."""


# ═══════════════════════════════════════════════════════════════════════════
# EVALUATION TRAPS
# ═══════════════════════════════════════════════════════════════════════════

class EvaluationTrap(Exception):
    """Raised when a condition cannot be reduced to a constant.

    Parameters
    ----------
    reason:
        The failure category.
    notes:
        Reason-specific notes, innermost first.  Notes created without a
        location are later pinned to the failing instruction by
        :meth:`located`.
    """

    def __init__(
        self,
        reason: NotConstantReason,
        notes: Sequence[DiagnosticNote] = (),
    ):
        super().__init__(reason.value)
        self.reason = reason
        self.notes: List[DiagnosticNote] = list(notes)

    @classmethod
    def with_note(
        cls,
        reason: NotConstantReason,
        message: str,
        location: Optional[SourceLocation] = None,
    ) -> EvaluationTrap:
        return cls(reason, [DiagnosticNote(message, location)])

    def located(self, location: Optional[SourceLocation]) -> EvaluationTrap:
        """Give every location-less note the failing instruction's location."""
        self.notes = [n.located(location) for n in self.notes]
        return self

    def extend(self, notes: Iterable[DiagnosticNote]) -> None:
        self.notes.extend(notes)

    def __str__(self) -> str:
        if not self.notes:
            return self.reason.value
        return f"{self.reason.value}: {self.notes[0].message}"


class IntegerOverflow(EvaluationTrap):
    """A mathematically exact result does not fit its integer type."""

    def __init__(self, detail: str = ""):
        super().__init__(
            NotConstantReason.OVERFLOW_DETECTED,
            [DiagnosticNote(NOTE_OVERFLOW)],
        )
        self.detail = detail
