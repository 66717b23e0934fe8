# tests/test_package.py
"""Tests for the package-level re-exports."""

import consteval


def test_version():
    assert consteval.__version__.count(".") == 2


def test_submodules():
    assert consteval.list_submodules() == [
        "diagnostics", "driver", "errors", "frames", "instructions",
        "interpreter", "ir_parser", "semantics", "snapshot", "values",
    ]


def test_reexports():
    for name in ("evaluate_module", "parse_module", "load_bindings", "ConstExprInterpreter"):
        assert name in consteval.__all__
        assert getattr(consteval, name) is not None
    assert consteval.Opcode is consteval.instructions.Opcode
