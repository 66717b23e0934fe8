"""
consteval/diagnostics.py
════════════════════════

Diagnostic model shared by the evaluator and the command-line driver.

An assertion that cannot be proven produces exactly one primary
``Diagnostic`` followed by an ordered tuple of ``DiagnosticNote`` entries.
The notes explain the failure from the innermost point outwards: first the
reason-specific notes at the failing instruction, then one
"when called from here" note per active call frame.

License: MIT — same as consteval.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — LOCATIONS & SEVERITIES
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSeverity(Enum):
    """Severity levels understood by the host diagnostic engine."""
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


@dataclass(frozen=True)
class SourceLocation:
    """A specific point in source code."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


UNKNOWN_LOCATION = SourceLocation()


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — FAILURE TAXONOMY & NOTE TEXTS
# ═════════════════════════════════════════════════════════════════════════

class NotConstantReason(Enum):
    """Why an assertion condition could not be reduced to a constant."""
    NON_CONSTANT_INPUT = "nonConstantInput"
    LOOP_DETECTED = "loopDetected"
    BUDGET_EXCEEDED = "budgetExceeded"
    OVERFLOW_DETECTED = "overflowDetected"
    DIVISION_BY_ZERO = "divisionByZero"
    UNSUPPORTED_OPERATION = "unsupportedOperation"


NOTE_ALWAYS_TRUE = "condition always evaluates to true"
NOTE_ALWAYS_FALSE = "condition always evaluates to false"
NOTE_LOOP_FOUND = "control flow loop found"
NOTE_CALLED_FROM = "when called from here"
NOTE_INSTRUCTION_LIMIT = (
    "exceeded instruction limit: {limit} when evaluating the expression "
    "at compile time"
)
NOTE_COULD_NOT_FOLD = "could not fold operation"
NOTE_OVERFLOW = "integer overflow detected"
NOTE_DIVISION_BY_ZERO = "division by zero"
NOTE_UNKNOWN_VALUE = "value is not known at compile time: {source}"
NOTE_NO_BODY = "encountered call to '{callee}' whose body is not available"

MSG_ASSERTION_FAILED = "assertion failed"
MSG_NOT_CONSTANT = "#assert condition not constant"


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — DIAGNOSTICS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DiagnosticNote:
    """A secondary message attached to a primary diagnostic."""
    message: str
    location: Optional[SourceLocation] = None

    def located(self, fallback: Optional[SourceLocation]) -> DiagnosticNote:
        """Return this note, filling in *fallback* if it has no location."""
        if self.location is not None or fallback is None:
            return self
        return DiagnosticNote(self.message, fallback)

    def to_gcc_format(self) -> str:
        loc = self.location or UNKNOWN_LOCATION
        return f"{loc}: note: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"message": self.message}
        if self.location is not None:
            result.update(self.location.to_dict())
        return result


@dataclass(frozen=True)
class Diagnostic:
    """
    A single primary diagnostic for one assertion.

    Attributes
    ----------
    error_id  : Stable identifier ("assertionFailed", "conditionNotConstant")
    message   : Human-readable primary text
    severity  : DiagnosticSeverity
    location  : Location of the ``#assert`` directive
    notes     : Ordered secondary notes (reason first, call chain after)
    reason    : Set for "condition not constant" diagnostics
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: SourceLocation
    notes: Tuple[DiagnosticNote, ...] = ()
    reason: Optional[NotConstantReason] = None
    evidence: Dict[str, Any] = field(default_factory=dict, compare=False)

    def note_messages(self) -> List[str]:
        return [n.message for n in self.notes]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "errorId": self.error_id,
            "severity": self.severity.value,
            "message": self.message,
            "notes": [n.to_dict() for n in self.notes],
        }
        result.update(self.location.to_dict())
        if self.reason is not None:
            result["reason"] = self.reason.value
        if self.evidence:
            result["evidence"] = dict(self.evidence)
        return result

    def to_json_str(self) -> str:
        """Single-line JSON string."""
        return json.dumps(self.to_dict())

    def to_gcc_format(self) -> str:
        """GCC-style text: the primary line followed by one line per note."""
        lines = [f"{self.location}: {self.severity.value}: {self.message}"]
        lines.extend(n.to_gcc_format() for n in self.notes)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_gcc_format()
