# tests/test_driver.py
"""Tests for the assertion driver, its configuration and the report."""

import json

import pytest

from consteval.diagnostics import (
    MSG_ASSERTION_FAILED,
    MSG_NOT_CONSTANT,
    NotConstantReason,
    SourceLocation,
)
from consteval.driver import (
    ERROR_ID_MALFORMED_IR,
    ERROR_ID_NOT_CONSTANT,
    AssertionEvaluator,
    EvaluationReport,
    EvaluatorConfig,
    OutcomeKind,
    build_diagnostic,
    evaluate_assertion,
    evaluate_module,
)
from consteval.errors import ConfigError, MalformedIRError
from consteval.instructions import Assertion
from consteval.ir_parser import parse_module
from consteval.values import I64, IntegerValue, UnknownValue
from tests.conftest import condition, module_with


def _compare_global_to_one(b, name="cond"):
    b.at(2, 5).global_("g", "limit").literal("one", "i64", 1)
    b.compare("r", "==", "g", "one").ret("r")
    return condition(b, name)


class TestEvaluatorConfig:

    def test_default_limit(self):
        assert EvaluatorConfig().instruction_limit == 512

    @pytest.mark.parametrize("limit", [0, -1, True, 1.5, "512"])
    def test_invalid_limit(self, limit):
        with pytest.raises(ConfigError):
            EvaluatorConfig(instruction_limit=limit)

    def test_config_kwargs_are_forwarded(self, pound_module):
        result = evaluate_assertion(
            pound_module, pound_module.assertion("isOne_1"), instruction_limit=3
        )
        assert result.outcome.reason is NotConstantReason.BUDGET_EXCEEDED


class TestOutcomes:

    def test_constant_true_has_no_diagnostic(self, builder):
        builder.literal("t", "bool", True).ret("t")
        a = condition(builder)
        result = AssertionEvaluator(module_with(assertions=[a])).evaluate(a)
        assert result.outcome.kind is OutcomeKind.CONSTANT_TRUE
        assert result.outcome.steps == 2
        assert result.diagnostic is None

    def test_constant_false_uses_message(self, builder):
        builder.literal("f", "bool", False).ret("f")
        fn = builder.build_function("cond", [builder.build_block("bb0")])
        a = Assertion("cond", fn, message="custom", loc=SourceLocation("t.swift", 3, 3))
        diag = evaluate_assertion(module_with(), a).diagnostic
        assert diag.message == "custom"
        assert diag.location == SourceLocation("t.swift", 3, 3)
        assert diag.notes == ()
        assert diag.evidence == {"assertion": "cond", "steps": 2}

    def test_unknown_result_is_not_constant(self, builder):
        builder.havoc("h", "input").ret("h")
        a = condition(builder)
        result = evaluate_assertion(module_with(), a)
        assert result.outcome.reason is NotConstantReason.NON_CONSTANT_INPUT
        assert result.diagnostic.message == MSG_NOT_CONSTANT
        assert result.diagnostic.error_id == ERROR_ID_NOT_CONSTANT
        # Reported at the #assert itself.
        assert result.diagnostic.notes[0].location == SourceLocation("test.swift", 1, 1)

    def test_non_bool_result_is_malformed(self, builder):
        builder.literal("n", "i64", 1).ret("n")
        a = condition(builder)
        with pytest.raises(MalformedIRError):
            AssertionEvaluator(module_with()).evaluate_condition(a)
        result = evaluate_assertion(module_with(), a)
        assert result.outcome.kind is OutcomeKind.MALFORMED
        assert result.diagnostic.error_id == ERROR_ID_MALFORMED_IR
        assert "not Bool" in result.diagnostic.message

    def test_build_diagnostic_default_message(self, builder):
        builder.literal("f", "bool", False).ret("f")
        a = condition(builder)
        outcome = AssertionEvaluator(module_with()).evaluate_condition(a)
        assert outcome.kind is OutcomeKind.CONSTANT_FALSE
        assert build_diagnostic(a, outcome).message == MSG_ASSERTION_FAILED


class TestMalformedIR:

    MIXED_IR = '''
module "t.swift"

assert @bad @ 3:3 {
bb0:
  %a = literal i8 1
  %b = literal i64 1
  %c = cmp eq %a, %b                    @ 3:12
  return %c
}

assert @good @ 4:3 {
bb0:
  %f = literal bool false
  return %f
}
'''

    @pytest.mark.parametrize("jobs", [1, 4])
    def test_malformed_assertion_does_not_stop_the_others(self, jobs):
        report = evaluate_module(parse_module(self.MIXED_IR), jobs=jobs)
        bad, good = report.results
        assert bad.outcome.kind is OutcomeKind.MALFORMED
        assert good.outcome.kind is OutcomeKind.CONSTANT_FALSE
        assert [d.error_id for d in report.diagnostics] == [
            ERROR_ID_MALFORMED_IR, "assertionFailed",
        ]
        assert report.malformed_count == 1
        assert report.not_constant_count == 0
        assert report.summary().startswith(
            "Evaluated 2 assertions: 0 hold, 1 failed, 0 not constant, 1 malformed"
        )

    def test_malformed_diagnostic_points_at_instruction(self):
        report = evaluate_module(parse_module(self.MIXED_IR))
        diag = report.result("bad").diagnostic
        assert diag.message == "operand types differ for ==: i8 vs i64"
        assert diag.location == SourceLocation("t.swift", 3, 12)
        assert diag.reason is None


class TestDivisionByZero:

    DIVIDE_IR = '''
module "t.swift"

func @divide(%a: i64, %b: i64) -> i64 {
bb0:
  %q = div %a, %b                       @ 5:12
  return %q                             @ 5:3
}

assert @divByZero @ 9:3 {
bb0:
  %ten = literal i64 10
  %zero = literal i64 0
  %v = call @divide(%ten, %zero)        @ 9:11
  %one = literal i64 1
  %c = cmp eq %v, %one
  return %c
}
'''

    def test_division_by_zero_in_callee(self):
        report = evaluate_module(parse_module(self.DIVIDE_IR))
        result = report.result("divByZero")
        assert result.outcome.reason is NotConstantReason.DIVISION_BY_ZERO
        diag = result.diagnostic
        assert diag.message == MSG_NOT_CONSTANT
        assert diag.location == SourceLocation("t.swift", 9, 3)
        assert [(n.message, n.location) for n in diag.notes] == [
            ("division by zero", SourceLocation("t.swift", 5, 12)),
            ("when called from here", SourceLocation("t.swift", 9, 11)),
        ]
        assert report.by_reason() == {NotConstantReason.DIVISION_BY_ZERO: 1}


class TestBindings:

    def test_module_globals(self, builder):
        a = _compare_global_to_one(builder)
        module = module_with(assertions=[a], globals_={"limit": IntegerValue(I64, 1)})
        assert evaluate_module(module).result("cond").passed

    def test_extra_bindings_take_precedence(self, builder):
        a = _compare_global_to_one(builder)
        module = module_with(assertions=[a], globals_={"limit": IntegerValue(I64, 1)})
        report = evaluate_module(module, bindings={"limit": IntegerValue(I64, 2)})
        assert report.result("cond").outcome.kind is OutcomeKind.CONSTANT_FALSE

    def test_unknown_binding_reported_at_use(self, builder):
        a = _compare_global_to_one(builder)
        module = module_with(assertions=[a])
        report = evaluate_module(module, bindings={"limit": UnknownValue("limit")})
        note = report.result("cond").diagnostic.notes[0]
        assert note.message == "value is not known at compile time: limit"
        assert note.location == SourceLocation("test.swift", 2, 5)

    def test_bindings_are_read_only(self, builder):
        evaluator = AssertionEvaluator(module_with(), {"x": IntegerValue(I64, 1)})
        with pytest.raises(TypeError):
            evaluator.bindings["x"] = IntegerValue(I64, 2)


class TestEvaluationReport:

    def test_empty_module(self):
        report = evaluate_module(module_with())
        assert report.results == []
        assert report.error_count == 0
        assert report.to_gcc_format() == ""
        assert report.stats["assertions"] == 0

    def test_summary(self, pound_module):
        report = evaluate_module(pound_module)
        text = report.summary()
        assert text.startswith("Evaluated 30 assertions: 18 hold, 4 failed, 8 not constant")
        assert "  budgetExceeded: 1" in text
        assert "  elapsed: " in text
        assert report.stats["steps"] == sum(r.outcome.steps for r in report.results)

    def test_summary_without_stats(self):
        assert EvaluationReport().summary() == (
            "Evaluated 0 assertions: 0 hold, 0 failed, 0 not constant"
        )

    def test_json_lines(self, pound_module):
        report = evaluate_module(pound_module)
        records = [json.loads(line) for line in report.to_json_lines().splitlines()]
        assert len(records) == report.error_count
        by_name = {r["evidence"]["assertion"]: r for r in records}
        recursive = by_name["recursive"]
        assert recursive["errorId"] == "conditionNotConstant"
        assert recursive["reason"] == "budgetExceeded"
        assert recursive["line"] == 49
        assert recursive["notes"][0]["line"] == 44
        assert by_name["isOne_2_msg"]["message"] == "2 is not 1"
        assert "reason" not in by_name["isOne_2_msg"]

    def test_unknown_assertion_name(self, pound_module):
        with pytest.raises(KeyError):
            evaluate_module(pound_module).result("nope")

    def test_parallel_single_assertion(self, builder):
        builder.literal("t", "bool", True).ret("t")
        module = module_with(assertions=[condition(builder)])
        assert evaluate_module(module, jobs=8).passed_count == 1
