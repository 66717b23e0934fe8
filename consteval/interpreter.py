"""
consteval/interpreter.py
════════════════════════

The constant-expression interpreter.

``ConstExprInterpreter`` executes a lowered ``Function`` over compile-time
values only.  It keeps an explicit stack of ``CallFrame`` objects (never
native recursion), charges every executed instruction against one shared
``EvaluationBudget`` and stops at the first failure, raising an
``EvaluationTrap`` whose notes already carry the failing location and the
"when called from here" call chain.

Loop detection
──────────────
Whenever a frame re-enters a block, the conditional branches taken in that
frame since the block was last entered form the cycle just closed:

* no conditional branch at all: the cycle is unconditional and can never
  exit, so it is reported as a loop;
* every condition is *locally constant* (computed from literals and global
  bindings through pure operations only): the same decisions will be taken
  on every iteration, so the loop is reported together with the value the
  governing condition always has;
* otherwise evaluation continues and the budget bounds it.

License: MIT — same as consteval.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from consteval import semantics
from consteval.diagnostics import (
    NOTE_ALWAYS_FALSE,
    NOTE_ALWAYS_TRUE,
    NOTE_COULD_NOT_FOLD,
    NOTE_LOOP_FOUND,
    NOTE_NO_BODY,
    DiagnosticNote,
    NotConstantReason,
)
from consteval.errors import EvaluationTrap, MalformedIRError
from consteval.frames import (
    DEFAULT_INSTRUCTION_LIMIT,
    BranchRecord,
    CallFrame,
    EvaluationBudget,
)
from consteval.instructions import (
    SIDE_EFFECT_OPCODES,
    Function,
    Instruction,
    Module,
    Opcode,
    Reg,
)
from consteval.values import BoolValue, UnknownValue, Value

logger = logging.getLogger(__name__)

# Opcodes whose result is constant whenever all of their operands are.
_PURE_OPCODES = frozenset(
    {
        Opcode.BINARY,
        Opcode.COMPARE,
        Opcode.UNARY,
        Opcode.CONVERT,
        Opcode.AGGREGATE,
        Opcode.EXTRACT,
    }
)


class ConstExprInterpreter:
    """Interpreter for one evaluation.

    Parameters
    ----------
    module : Module
        Supplies callee bodies by name.
    bindings : Mapping[str, Value]
        Immutable snapshot of global bindings read by ``GLOBAL``.
    instruction_limit : int
        Ceiling on the number of instructions executed across all frames.

    An interpreter instance is single-use state: create one per evaluation.
    """

    def __init__(
        self,
        module: Module,
        bindings: Optional[Mapping[str, Value]] = None,
        instruction_limit: int = DEFAULT_INSTRUCTION_LIMIT,
    ):
        self.module = module
        if bindings is None:
            bindings = MappingProxyType(dict(module.globals_))
        self.bindings = bindings
        self.budget = EvaluationBudget(instruction_limit)

        self._stack: List[CallFrame] = []
        self._result: Optional[Value] = None
        self._max_depth = 0
        # (id(function), register) -> locally constant?
        self._const_regs: Dict[Tuple[int, str], bool] = {}

    # ---- Properties ----------------------------------------------------------

    @property
    def steps(self) -> int:
        return self.budget.used

    @property
    def max_call_depth(self) -> int:
        return self._max_depth

    # ---- Entry point ----------------------------------------------------------

    def run(self, function: Function, args: Sequence[Value] = ()) -> Value:
        """Execute *function* to completion and return its result.

        The result may be an ``UnknownValue``; only operations that need a
        concrete operand trap on one.

        Raises
        ------
        EvaluationTrap
            The function cannot be evaluated at compile time.
        MalformedIRError
            The IR is structurally invalid.
        """
        if self._stack:
            raise RuntimeError("interpreter is already running")
        root = CallFrame(function)
        root.bind_params(args)
        self._push(root)
        logger.debug("evaluating @%s (limit %d)", function.name, self.budget.limit)

        while self._stack:
            frame = self._stack[-1]
            instr = frame.fetch()
            try:
                self.budget.consume()
                self._exec_instruction(instr, frame)
            except EvaluationTrap as trap:
                trap.located(instr.loc)
                trap.extend(frame.call_chain_notes())
                logger.debug(
                    "@%s trapped at %s after %d step(s): %s",
                    function.name, instr.loc, self.steps, trap,
                )
                self._stack.clear()
                raise
            except MalformedIRError as exc:
                if exc.location is None:
                    exc.location = instr.loc
                self._stack.clear()
                raise

        assert self._result is not None
        logger.debug("@%s returned %s in %d step(s)", function.name, self._result, self.steps)
        return self._result

    # ---- Core execution engine -----------------------------------------------

    def _push(self, frame: CallFrame) -> None:
        self._stack.append(frame)
        self._max_depth = max(self._max_depth, len(self._stack))

    def _exec_instruction(self, instr: Instruction, frame: CallFrame) -> None:
        """Execute a single instruction, updating the frame and the stack."""
        op = instr.opcode
        ops = instr.operands

        if op is Opcode.LITERAL:
            frame.write(ops[0], semantics.make_literal(ops[1], ops[2]))

        elif op is Opcode.BINARY:
            frame.write(
                ops[0],
                semantics.evaluate_binary(ops[1], self._operand(frame, ops[2], instr), self._operand(frame, ops[3], instr)),
            )

        elif op is Opcode.COMPARE:
            frame.write(
                ops[0],
                semantics.evaluate_comparison(ops[1], self._operand(frame, ops[2], instr), self._operand(frame, ops[3], instr)),
            )

        elif op is Opcode.UNARY:
            frame.write(ops[0], semantics.evaluate_unary(ops[1], self._operand(frame, ops[2], instr)))

        elif op is Opcode.CONVERT:
            frame.write(ops[0], semantics.convert_integer(self._operand(frame, ops[1], instr), ops[2]))

        elif op is Opcode.AGGREGATE:
            fields = [frame.read(r) for r in ops[1]]
            frame.write(ops[0], semantics.construct_aggregate(fields, ops[2]))

        elif op is Opcode.EXTRACT:
            frame.write(ops[0], semantics.extract_field(self._operand(frame, ops[1], instr), ops[2]))

        elif op is Opcode.GLOBAL:
            frame.write(ops[0], self._read_global(ops[1], instr))

        elif op is Opcode.HAVOC:
            frame.write(ops[0], UnknownValue(str(ops[1]), instr.loc))

        elif op is Opcode.CALL:
            self._handle_call(instr, frame)
            return

        elif op is Opcode.BRANCH:
            cond = semantics.require_constant(frame.read(ops[0]), instr.loc)
            if not isinstance(cond, BoolValue):
                raise MalformedIRError(
                    f"branch condition {ops[0]} is {cond.kind.value}, not Bool", instr.loc
                )
            target = ops[1] if cond.value else ops[2]
            frame.branch_trail.append(BranchRecord(instr, ops[0], cond.value, frame.block.label))
            self._transfer(frame, instr, target)
            return

        elif op is Opcode.JUMP:
            self._transfer(frame, instr, ops[0])
            return

        elif op is Opcode.RETURN:
            self._pop_frame(frame.read(ops[0]))
            return

        else:
            # ALLOC / LOAD / STORE: observable side effects are never folded.
            if op not in SIDE_EFFECT_OPCODES:
                logger.warning("unhandled opcode %s at %s", op, instr.loc)
            raise EvaluationTrap.with_note(
                NotConstantReason.UNSUPPORTED_OPERATION, NOTE_COULD_NOT_FOLD
            )

        frame.pc += 1

    def _operand(self, frame: CallFrame, reg: Reg, instr: Instruction) -> Value:
        return semantics.require_constant(frame.read(reg), instr.loc)

    def _read_global(self, name: str, instr: Instruction) -> Value:
        value = self.bindings.get(name)
        if value is None:
            return UnknownValue(name, instr.loc)
        if isinstance(value, UnknownValue) and value.origin is None:
            return UnknownValue(value.source, instr.loc)
        return value

    def _handle_call(self, instr: Instruction, caller: CallFrame) -> None:
        func_ref, arg_regs = instr.operands[1], instr.operands[2]
        args = [self._operand(caller, r, instr) for r in arg_regs]  # type: ignore[union-attr]
        callee = self.module.functions.get(func_ref.name)  # type: ignore[union-attr]
        if callee is None:
            raise EvaluationTrap.with_note(
                NotConstantReason.NON_CONSTANT_INPUT,
                NOTE_NO_BODY.format(callee=func_ref.name),  # type: ignore[union-attr]
            )
        frame = CallFrame(callee, caller=caller, call_site=instr)
        frame.bind_params(args)
        self._push(frame)

    def _pop_frame(self, value: Value) -> None:
        frame = self._stack.pop()
        if not self._stack:
            self._result = value
            return
        caller = self._stack[-1]
        assert frame.call_site is not None and frame.call_site.dst is not None
        caller.write(frame.call_site.dst, value)
        caller.pc += 1

    def _transfer(self, frame: CallFrame, instr: Instruction, target: Any) -> None:
        args = [frame.read(r) for r in target.args]
        cycle = frame.enter_block(target.label, args)
        if cycle is not None:
            self._check_loop(frame, instr, cycle)

    # ---- Loop detection -------------------------------------------------------

    def _check_loop(self, frame: CallFrame, instr: Instruction, cycle: List[BranchRecord]) -> None:
        fn = frame.function
        label = frame.block.label if frame.block else "?"
        logger.debug(
            "@%s re-entered %s (visit %d, %d conditional branch(es) in cycle)",
            fn.name, label, frame.block_visits.get(label, 0), len(cycle),
        )
        if not cycle:
            raise EvaluationTrap.with_note(
                NotConstantReason.LOOP_DETECTED, NOTE_LOOP_FOUND, instr.loc
            )
        if all(self._is_locally_constant(fn, rec.condition) for rec in cycle):
            # Prefer the guard in the re-entered block; repeat-style loops have none there.
            governing = next(
                (rec for rec in reversed(cycle) if rec.block == label), cycle[-1]
            )
            loc = governing.instruction.loc
            raise EvaluationTrap(
                NotConstantReason.LOOP_DETECTED,
                [
                    DiagnosticNote(NOTE_ALWAYS_TRUE if governing.taken else NOTE_ALWAYS_FALSE, loc),
                    DiagnosticNote(NOTE_LOOP_FOUND, loc),
                ],
            )

    def _is_locally_constant(self, fn: Function, reg: Reg) -> bool:
        key = (id(fn), reg.name)
        cached = self._const_regs.get(key)
        if cached is not None:
            return cached
        # Provisional answer guards against cyclic definitions.
        self._const_regs[key] = False
        instr = fn.defining_instruction(reg)
        if instr is None:
            result = False
        elif instr.opcode in (Opcode.LITERAL, Opcode.GLOBAL):
            result = True
        elif instr.opcode in _PURE_OPCODES:
            result = all(self._is_locally_constant(fn, r) for r in instr.regs_used())
        else:
            result = False
        self._const_regs[key] = result
        return result


# ═══════════════════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════


def interpret_function(
    module: Module,
    func_name: str,
    args: Sequence[Value] = (),
    **interp_kwargs: Any,
) -> Value:
    """Convenience: run one module function on constant arguments.

    Parameters
    ----------
    module : Module
        The module holding the function and its callees.
    func_name : str
        Function to run.
    args : Sequence[Value]
        Argument values, bound to the parameters in order.
    **interp_kwargs
        Passed to ``ConstExprInterpreter.__init__``.
    """
    fn = module.functions.get(func_name)
    if fn is None:
        raise KeyError(f"function @{func_name} not found in module")
    return ConstExprInterpreter(module, **interp_kwargs).run(fn, args)
