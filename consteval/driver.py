"""
consteval/driver.py
═══════════════════

Evaluator driver: turns ``#assert`` directives into outcomes and
diagnostics.

For every assertion the driver runs the condition function on a fresh
``ConstExprInterpreter`` and classifies the result:

    ConstantTrue   → no diagnostic
    ConstantFalse  → error: the literal message, or "assertion failed"
    NotConstant    → error: "#assert condition not constant" followed by the
                     reason notes and the "when called from here" chain
    Malformed      → error: the structural defect of the IR, which stays
                     confined to that one assertion

Each assertion is evaluated independently with its own frames, values and
budget; only the read-only IR and the immutable binding snapshot are
shared, so independent assertions may run on a thread pool.

Usage
-----
>>> report = evaluate_module(module, jobs=4)
>>> print(report.to_gcc_format())
>>> print(report.summary())

License: MIT — same as consteval.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from consteval import semantics
from consteval.diagnostics import (
    MSG_ASSERTION_FAILED,
    MSG_NOT_CONSTANT,
    UNKNOWN_LOCATION,
    Diagnostic,
    DiagnosticNote,
    DiagnosticSeverity,
    NotConstantReason,
)
from consteval.errors import ConfigError, EvaluationTrap, MalformedIRError
from consteval.frames import DEFAULT_INSTRUCTION_LIMIT
from consteval.instructions import Assertion, Module
from consteval.interpreter import ConstExprInterpreter
from consteval.values import BoolValue, UnknownValue, Value

logger = logging.getLogger(__name__)

ERROR_ID_ASSERTION_FAILED = "assertionFailed"
ERROR_ID_NOT_CONSTANT = "conditionNotConstant"
ERROR_ID_MALFORMED_IR = "malformedIR"


# ═════════════════════════════════════════════════════════════════════════
#  CONFIGURATION & OUTCOMES
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EvaluatorConfig:
    """Tunables of the evaluator.

    ``instruction_limit`` is the number of instructions one assertion may
    execute across all of its frames before it is reported as too complex.
    """
    instruction_limit: int = DEFAULT_INSTRUCTION_LIMIT

    def __post_init__(self) -> None:
        limit = self.instruction_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ConfigError(
                f"instruction_limit must be a positive integer, got {limit!r}"
            )


class OutcomeKind(enum.Enum):
    CONSTANT_TRUE = "constantTrue"
    CONSTANT_FALSE = "constantFalse"
    NOT_CONSTANT = "notConstant"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class EvaluationOutcome:
    """Result of evaluating one condition.

    ``reason`` and ``trail`` are only set for ``NOT_CONSTANT``; ``trail`` is
    the ordered note sequence (reason notes first, call chain after).
    ``error`` is only set for ``MALFORMED``.
    ``steps`` is the number of instructions executed.
    """
    kind: OutcomeKind
    reason: Optional[NotConstantReason] = None
    trail: Tuple[DiagnosticNote, ...] = ()
    steps: int = 0
    error: Optional[MalformedIRError] = None

    @classmethod
    def constant(cls, value: bool, steps: int = 0) -> EvaluationOutcome:
        kind = OutcomeKind.CONSTANT_TRUE if value else OutcomeKind.CONSTANT_FALSE
        return cls(kind, steps=steps)

    @classmethod
    def not_constant(cls, trap: EvaluationTrap, steps: int = 0) -> EvaluationOutcome:
        return cls(OutcomeKind.NOT_CONSTANT, trap.reason, tuple(trap.notes), steps)

    @classmethod
    def malformed(cls, error: MalformedIRError) -> EvaluationOutcome:
        return cls(OutcomeKind.MALFORMED, error=error)

    @property
    def holds(self) -> bool:
        return self.kind is OutcomeKind.CONSTANT_TRUE

    @property
    def is_constant(self) -> bool:
        return self.kind in (OutcomeKind.CONSTANT_TRUE, OutcomeKind.CONSTANT_FALSE)


@dataclass(frozen=True)
class AssertionResult:
    assertion: Assertion
    outcome: EvaluationOutcome
    diagnostic: Optional[Diagnostic] = None

    @property
    def passed(self) -> bool:
        return self.outcome.holds


def build_diagnostic(assertion: Assertion, outcome: EvaluationOutcome) -> Optional[Diagnostic]:
    """The single primary diagnostic for *outcome*, or ``None`` if it holds."""
    location = assertion.loc or UNKNOWN_LOCATION
    evidence: Dict[str, Any] = {"assertion": assertion.name, "steps": outcome.steps}
    if outcome.kind is OutcomeKind.CONSTANT_TRUE:
        return None
    if outcome.kind is OutcomeKind.CONSTANT_FALSE:
        message = assertion.message if assertion.message is not None else MSG_ASSERTION_FAILED
        return Diagnostic(
            error_id=ERROR_ID_ASSERTION_FAILED,
            message=message,
            severity=DiagnosticSeverity.ERROR,
            location=location,
            evidence=evidence,
        )
    if outcome.kind is OutcomeKind.MALFORMED:
        assert outcome.error is not None
        return Diagnostic(
            error_id=ERROR_ID_MALFORMED_IR,
            message=outcome.error.message,
            severity=DiagnosticSeverity.ERROR,
            location=outcome.error.location or location,
            evidence=evidence,
        )
    return Diagnostic(
        error_id=ERROR_ID_NOT_CONSTANT,
        message=MSG_NOT_CONSTANT,
        severity=DiagnosticSeverity.ERROR,
        location=location,
        notes=outcome.trail,
        reason=outcome.reason,
        evidence=evidence,
    )


# ═════════════════════════════════════════════════════════════════════════
#  EVALUATOR
# ═════════════════════════════════════════════════════════════════════════

class AssertionEvaluator:
    """
    Evaluates the assertions of one module.

    Parameters
    ----------
    module   : The lowered module (assertions plus callee bodies)
    bindings : Extra global bindings; they take precedence over
               ``module.globals_``
    config   : EvaluatorConfig (default: 512-instruction ceiling)
    """

    def __init__(
        self,
        module: Module,
        bindings: Optional[Mapping[str, Value]] = None,
        config: Optional[EvaluatorConfig] = None,
    ):
        self.module = module
        self.config = config or EvaluatorConfig()
        merged: Dict[str, Value] = dict(module.globals_)
        if bindings:
            merged.update(bindings)
        self.bindings: Mapping[str, Value] = MappingProxyType(merged)

    def evaluate_condition(self, assertion: Assertion) -> EvaluationOutcome:
        """Run the condition of *assertion* and classify the result.

        Raises ``MalformedIRError`` for invalid IR, including a condition
        that produces a constant that is not a Bool.
        """
        interp = ConstExprInterpreter(
            self.module, self.bindings, self.config.instruction_limit
        )
        try:
            value = interp.run(assertion.condition)
            if isinstance(value, UnknownValue):
                semantics.require_constant(value, assertion.loc)
        except EvaluationTrap as trap:
            return EvaluationOutcome.not_constant(trap, interp.steps)

        if not isinstance(value, BoolValue):
            raise MalformedIRError(
                f"condition of assertion @{assertion.name} produced "
                f"{value.kind.value}, not Bool",
                assertion.loc,
            )
        return EvaluationOutcome.constant(value.value, interp.steps)

    def evaluate(self, assertion: Assertion) -> AssertionResult:
        """Evaluate *assertion*; invalid IR becomes a ``MALFORMED`` result."""
        try:
            outcome = self.evaluate_condition(assertion)
        except MalformedIRError as exc:
            logger.error("assertion @%s: malformed IR: %s", assertion.name, exc)
            outcome = EvaluationOutcome.malformed(exc)
        diagnostic = build_diagnostic(assertion, outcome)
        logger.debug(
            "assertion @%s: %s%s (%d steps)",
            assertion.name,
            outcome.kind.value,
            f" [{outcome.reason.value}]" if outcome.reason else "",
            outcome.steps,
        )
        return AssertionResult(assertion, outcome, diagnostic)

    def evaluate_all(self, jobs: int = 1) -> List[AssertionResult]:
        """Evaluate every assertion of the module, in source order."""
        assertions = list(self.module.assertions)
        if jobs <= 1 or len(assertions) <= 1:
            return [self.evaluate(a) for a in assertions]
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            futures = [executor.submit(self.evaluate, a) for a in assertions]
            return [f.result() for f in futures]


# ═════════════════════════════════════════════════════════════════════════
#  REPORT
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class EvaluationReport:
    """
    Aggregate results of evaluating a module.

    Attributes
    ----------
    results : One AssertionResult per assertion, in source order
    stats   : Timing and counting statistics
    """
    results: List[AssertionResult] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return [r.diagnostic for r in self.results if r.diagnostic is not None]

    @property
    def error_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.severity == DiagnosticSeverity.ERROR
        )

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome.kind is OutcomeKind.CONSTANT_FALSE)

    @property
    def not_constant_count(self) -> int:
        return sum(1 for r in self.results if r.outcome.kind is OutcomeKind.NOT_CONSTANT)

    @property
    def malformed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome.kind is OutcomeKind.MALFORMED)

    def by_reason(self) -> Dict[NotConstantReason, int]:
        return dict(Counter(
            r.outcome.reason for r in self.results if r.outcome.reason is not None
        ))

    def result(self, name: str) -> AssertionResult:
        for r in self.results:
            if r.assertion.name == name:
                return r
        raise KeyError(name)

    def to_json_lines(self) -> str:
        """One JSON object per diagnostic."""
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        """Format all diagnostics in GCC-style."""
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Evaluated {len(self.results)} assertions: "
            f"{self.passed_count} hold, {self.failed_count} failed, "
            f"{self.not_constant_count} not constant",
        ]
        if self.malformed_count:
            lines[0] += f", {self.malformed_count} malformed"
        for reason, count in sorted(self.by_reason().items(), key=lambda kv: kv[0].value):
            lines.append(f"  {reason.value}: {count}")
        elapsed = self.stats.get("elapsed_ms")
        if elapsed is not None:
            lines.append(f"  elapsed: {elapsed:.1f}ms")
        return "\n".join(lines)


# ═════════════════════════════════════════════════════════════════════════
#  CONVENIENCE FUNCTIONS
# ═════════════════════════════════════════════════════════════════════════

def evaluate_assertion(
    module: Module,
    assertion: Assertion,
    bindings: Optional[Mapping[str, Value]] = None,
    **config_kwargs: Any,
) -> AssertionResult:
    """Convenience: evaluate one assertion of *module*.

    ``config_kwargs`` are passed to ``EvaluatorConfig``.
    """
    evaluator = AssertionEvaluator(module, bindings, EvaluatorConfig(**config_kwargs))
    return evaluator.evaluate(assertion)


def evaluate_module(
    module: Module,
    bindings: Optional[Mapping[str, Value]] = None,
    jobs: int = 1,
    **config_kwargs: Any,
) -> EvaluationReport:
    """Convenience: evaluate every assertion of *module* into a report."""
    evaluator = AssertionEvaluator(module, bindings, EvaluatorConfig(**config_kwargs))
    t0 = time.perf_counter()
    results = evaluator.evaluate_all(jobs=jobs)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    report = EvaluationReport(
        results=results,
        stats={
            "elapsed_ms": elapsed_ms,
            "assertions": len(results),
            "steps": sum(r.outcome.steps for r in results),
            "jobs": jobs,
        },
    )
    logger.info(
        "%s: %d assertion(s), %d error(s)",
        module.source_file, len(results), report.error_count,
    )
    return report
