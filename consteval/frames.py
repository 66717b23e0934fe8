"""
consteval/frames.py
═══════════════════

Runtime state owned by one assertion evaluation: call frames and the
shared instruction budget.

Frames form an explicit stack kept by the interpreter in a plain list; each
frame also points back at its caller so that the call chain can be rebuilt
when a trap unwinds the evaluation.  Nothing here is shared between
evaluations.

License: MIT — same as consteval.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence

from consteval.diagnostics import (
    NOTE_CALLED_FROM,
    NOTE_INSTRUCTION_LIMIT,
    DiagnosticNote,
    NotConstantReason,
)
from consteval.errors import EvaluationTrap, MalformedIRError
from consteval.instructions import BasicBlock, Function, Instruction, Reg
from consteval.values import Value

DEFAULT_INSTRUCTION_LIMIT = 512


class EvaluationBudget:
    """Instruction ceiling shared by every frame of one evaluation."""

    def __init__(self, limit: int = DEFAULT_INSTRUCTION_LIMIT):
        self.limit = limit
        self.remaining = limit

    @property
    def used(self) -> int:
        return self.limit - self.remaining

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def consume(self) -> None:
        """Account for one instruction, trapping once the ceiling is reached."""
        if self.remaining <= 0:
            raise EvaluationTrap.with_note(
                NotConstantReason.BUDGET_EXCEEDED,
                NOTE_INSTRUCTION_LIMIT.format(limit=self.limit),
            )
        self.remaining -= 1

    def __repr__(self) -> str:
        return f"EvaluationBudget(used={self.used}, limit={self.limit})"


@dataclass(slots=True)
class BranchRecord:
    """One conditional branch executed in a frame."""

    instruction: Instruction
    condition: Reg
    taken: bool
    block: str


@dataclass(slots=True, eq=False)
class CallFrame:
    """A single activation of a function.

    Attributes
    ----------
    function : Function
        The function being executed.
    caller : Optional[CallFrame]
        The frame that issued the call; ``None`` for the root frame.
    call_site : Optional[Instruction]
        The ``CALL`` instruction in the caller, used for call-chain notes.
    locals : dict[str, Value]
        Register file (register name → value).
    block : BasicBlock
        Currently executing block.
    pc : int
        Index of the next instruction within ``block``.
    entry_marks : dict[str, int]
        Length of ``branch_trail`` when each block was last entered.
    block_visits : dict[str, int]
        Number of times each block has been entered.
    branch_trail : list[BranchRecord]
        Conditional branches taken in this frame, oldest first.
    """

    function: Function
    caller: Optional[CallFrame] = None
    call_site: Optional[Instruction] = None
    locals: Dict[str, Value] = field(default_factory=dict)
    block: Optional[BasicBlock] = None
    pc: int = 0
    entry_marks: Dict[str, int] = field(default_factory=dict)
    block_visits: Dict[str, int] = field(default_factory=dict)
    branch_trail: List[BranchRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.block is None:
            entry = self.function.entry
            self.block = entry
            self._mark_entry(entry.label)

    # ---- registers ----------------------------------------------------------

    def read(self, reg: Reg) -> Value:
        try:
            return self.locals[reg.name]
        except KeyError:
            raise MalformedIRError(
                f"@{self.function.name}: read of undefined register {reg}"
            ) from None

    def write(self, reg: Reg, value: Value) -> None:
        self.locals[reg.name] = value

    def bind_params(self, args: Sequence[Value]) -> None:
        params = self.function.params
        if len(args) != len(params):
            raise MalformedIRError(
                f"@{self.function.name} takes {len(params)} argument(s), "
                f"{len(args)} given",
                self.call_site.loc if self.call_site is not None else None,
            )
        for p, v in zip(params, args):
            self.write(p, v)

    # ---- control flow -------------------------------------------------------

    def fetch(self) -> Instruction:
        assert self.block is not None
        return self.block.instructions[self.pc]

    def _mark_entry(self, label: str) -> None:
        self.entry_marks[label] = len(self.branch_trail)
        self.block_visits[label] = self.block_visits.get(label, 0) + 1

    @property
    def entries(self) -> int:
        """Total block entries in this frame, the entry block included."""
        return sum(self.block_visits.values())

    def enter_block(self, label: str, args: Sequence[Value]) -> Optional[List[BranchRecord]]:
        """Transfer control to *label*, binding its parameters to *args*.

        Returns ``None`` on a first entry.  On a re-entry, returns the
        conditional branches taken since the previous entry of the same
        block (empty for an unconditional cycle).
        """
        target = self.function.block(label)
        for p, v in zip(target.params, args):
            self.write(p, v)
        cycle: Optional[List[BranchRecord]] = None
        mark = self.entry_marks.get(label)
        if mark is not None:
            cycle = self.branch_trail[mark:]
        self.block = target
        self.pc = 0
        self._mark_entry(label)
        return cycle

    # ---- call chain ---------------------------------------------------------

    def chain(self) -> Iterator[CallFrame]:
        """This frame followed by its callers, innermost first."""
        frame: Optional[CallFrame] = self
        while frame is not None:
            yield frame
            frame = frame.caller

    def call_chain_notes(self) -> List[DiagnosticNote]:
        return [
            DiagnosticNote(NOTE_CALLED_FROM, f.call_site.loc)
            for f in self.chain()
            if f.call_site is not None
        ]

    def __repr__(self) -> str:
        label = self.block.label if self.block is not None else "?"
        return f"CallFrame(@{self.function.name}, block={label}, pc={self.pc})"
