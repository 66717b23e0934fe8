# tests/test_ir_parser.py
"""Tests for the text IR grammar and the Module builder."""

import pytest

from consteval.diagnostics import SourceLocation
from consteval.errors import IRParseError, MalformedIRError
from consteval.instructions import BinOp, BlockRef, CmpOp, Opcode, Reg
from consteval.ir_parser import load_module, parse_module
from consteval.values import BOOL, I8, I64, TRUE, IntegerValue, UnknownValue
from tests.conftest import MINIMAL_IR, POUND_ASSERT_IR


def _wrap(body, header='module "t.swift"'):
    return f"{header}\n\n{body}\n"


class TestModuleStructure:

    def test_minimal(self):
        module = parse_module(MINIMAL_IR)
        assert module.source_file == "minimal.swift"
        assert [a.name for a in module.assertions] == ["alwaysTrue"]
        assert module.assertions[0].loc == SourceLocation("minimal.swift", 1, 1)
        assert module.functions == {}

    def test_pound_assert_contents(self, pound_module):
        assert set(pound_module.functions) == {
            "isOne", "identity", "conditional", "infiniteLoop", "recursive",
        }
        assert len(pound_module.assertions) == 30
        assert pound_module.globals_["topLevelConst"] == IntegerValue(I64, 1)
        assert pound_module.globals_["topLevelArgument"] == UnknownValue("topLevelArgument")
        assert pound_module.assertion("isOne_2_msg").message == "2 is not 1"
        assert pound_module.assertion("isOne_2").message is None

    def test_locations_use_module_file(self, pound_module):
        fn = pound_module.functions["isOne"]
        first = fn.entry.instructions[0]
        assert first.loc == SourceLocation("pound_assert.swift", 8, 15)
        # Unannotated instructions carry no location.
        cond = pound_module.assertion("isOne_1").condition
        assert cond.entry.terminator.loc is None

    def test_signatures_and_block_params(self, pound_module):
        fn = pound_module.functions["recursive"]
        assert fn.params == (Reg("a"),)
        assert fn.param_types == ("i64",)
        assert fn.return_type == "i64"
        bb3 = fn.block("bb3")
        assert bb3.params == (Reg("result"),)
        assert bb3.param_types == ("i64",)
        assert fn.block("bb1").terminator.operands == (BlockRef("bb3", (Reg("zero"),)),)

    def test_comments_are_ignored(self):
        text = _wrap(
            "// leading comment\n"
            "assert @a @ 1:1 { // trailing comment\n"
            "bb0:\n"
            "  // inside a block\n"
            "  %t = literal bool true\n"
            "  return %t\n"
            "}"
        )
        assert len(parse_module(text).assertions) == 1

    def test_globals(self):
        text = _wrap(
            "global @flag : bool = true\n"
            "global @small : i8 = -128\n"
            "global @arg : i64 = unknown"
        )
        g = parse_module(text).globals_
        assert g["flag"] is TRUE
        assert g["small"] == IntegerValue(I8, -128)
        assert isinstance(g["arg"], UnknownValue)


class TestInstructions:

    def _single(self, line):
        text = _wrap(
            "func @f(%a: i64, %b: i64, %c: bool, %p: i64) {\n"
            "bb0:\n"
            f"  {line}\n"
            "  return %a\n"
            "}"
        )
        return parse_module(text).functions["f"].entry.instructions[0]

    def test_literal(self):
        instr = self._single("%x = literal bool false @ 3:4")
        assert instr.opcode is Opcode.LITERAL
        assert instr.operands == (Reg("x"), BOOL, False)
        assert instr.loc == SourceLocation("t.swift", 3, 4)

    @pytest.mark.parametrize("mnemonic,op", [
        ("add", BinOp.ADD), ("rem", BinOp.MOD), ("xor", BinOp.XOR),
    ])
    def test_binary(self, mnemonic, op):
        instr = self._single(f"%x = {mnemonic} %a, %b")
        assert instr.operands == (Reg("x"), op, Reg("a"), Reg("b"))

    def test_compare(self):
        instr = self._single("%x = cmp le %a, %b")
        assert instr.operands == (Reg("x"), CmpOp.LE, Reg("a"), Reg("b"))

    def test_convert(self):
        instr = self._single("%x = convert %a to Int8")
        assert instr.operands == (Reg("x"), Reg("a"), I8)

    def test_convert_to_non_integer(self):
        with pytest.raises(IRParseError, match="expected an integer type"):
            self._single("%x = convert %a to bool")

    def test_call_without_arguments(self):
        instr = self._single("%x = call @g()")
        assert instr.operands[2] == ()
        assert str(instr.operands[1]) == "@g"

    def test_struct_and_extract(self):
        text = _wrap(
            "func @f(%a: i64, %b: i64) {\n"
            "bb0:\n"
            "  %s = struct (x: %a, y: %b)\n"
            "  %y = extract %s, y\n"
            "  %t = tuple (%a, %b)\n"
            "  %z = extract %t, 1\n"
            "  return %z\n"
            "}"
        )
        s, y, t, z, _ = parse_module(text).functions["f"].entry.instructions
        assert s.operands == (Reg("s"), (Reg("a"), Reg("b")), ("x", "y"))
        assert y.operands == (Reg("y"), Reg("s"), "y")
        assert t.operands == (Reg("t"), (Reg("a"), Reg("b")), None)
        assert z.operands == (Reg("z"), Reg("t"), 1)

    def test_side_effects(self):
        assert self._single("%x = alloc i64").opcode is Opcode.ALLOC
        assert self._single("%x = load %p").opcode is Opcode.LOAD
        assert self._single("store %a to %p").operands == (Reg("a"), Reg("p"))

    def test_havoc_unescapes(self):
        instr = self._single(r'%x = havoc "say \"hi\""')
        assert instr.operands == (Reg("x"), 'say "hi"')


class TestErrors:

    def test_syntax_error_is_located_in_ir_file(self):
        text = _wrap("func @f() {\nbb0:\n  %a = frobnicate %b\n  return %a\n}")
        with pytest.raises(IRParseError) as exc_info:
            parse_module(text, filename="bad.cir")
        err = exc_info.value
        assert err.message.startswith("syntax error near")
        assert err.location.file == "bad.cir"
        assert err.location.line >= 3

    def test_missing_header(self):
        with pytest.raises(IRParseError):
            parse_module("assert @a { bb0: %t = literal bool true return %t }")

    def test_literal_type_mismatch(self):
        text = _wrap("assert @a {\nbb0:\n  %t = literal bool 1\n  return %t\n}")
        with pytest.raises(IRParseError, match="does not match its type"):
            parse_module(text)

    def test_global_does_not_fit(self):
        with pytest.raises(IRParseError, match="does not fit"):
            parse_module(_wrap("global @g : i8 = 200"))

    def test_global_type_mismatch(self):
        with pytest.raises(IRParseError):
            parse_module(_wrap("global @g : bool = 1"))

    def test_duplicate_block_label(self):
        text = _wrap(
            "func @f() {\nbb0:\n  br bb0\nbb0:\n  br bb0\n}"
        )
        with pytest.raises(IRParseError, match="duplicate block label") as exc_info:
            parse_module(text)
        assert exc_info.value.location == SourceLocation("<string>", 3, 1)

    def test_duplicate_function(self):
        fn = "func @f() {\nbb0:\n  %t = literal bool true\n  return %t\n}\n"
        with pytest.raises(MalformedIRError, match="defined twice"):
            parse_module(_wrap(fn + fn))

    def test_invalid_structure_is_malformed(self):
        text = _wrap("func @f() {\nbb0:\n  br bb7\n}")
        with pytest.raises(MalformedIRError, match="unknown block"):
            parse_module(text)


class TestDumpAndLoad:

    def test_dump_is_stable(self, pound_module):
        text = pound_module.dump()
        assert parse_module(text).dump() == text

    def test_load_module(self, tmp_path):
        path = tmp_path / "pound_assert.cir"
        path.write_text(POUND_ASSERT_IR, encoding="utf-8")
        module = load_module(path)
        assert module.source_file == "pound_assert.swift"
        assert len(module.assertions) == 30
