from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator


class BatchPatchParseError(ValueError):
    pass


class Operation(str, Enum):
    REMOVE_ISSUE = "RemoveIssue"


@dataclass(frozen=True)
class Instruction:
    operation: Operation
    operand: str


@dataclass
class BatchPatch:
    """A series of instructions applied to one batch as a single atomic change.

    Text form: the first non-blank line names the batch, and every following
    non-blank line is "<Operation> <operand>", e.g. "RemoveIssue sn12345678/1900-01-01_01".
    """

    batch_name: str = ""
    _instructions: list[Instruction] = field(default_factory=list)

    @classmethod
    def from_stream(cls, lines: Iterable[str]) -> "BatchPatch":
        bp = cls()
        for line_num, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line:
                continue
            if not bp.batch_name:
                bp.batch_name = line
                continue

            parts = line.split(None, 1)
            if len(parts) < 2:
                raise BatchPatchParseError(f"malformed instruction on line {line_num} ({line!r})")
            op_raw, operand = parts[0], parts[1].strip()
            try:
                op = Operation(op_raw)
            except ValueError as e:
                raise BatchPatchParseError(f"invalid operation {op_raw!r} on line {line_num} ({line!r})") from e
            bp._instructions.append(Instruction(operation=op, operand=operand))
        return bp

    @classmethod
    def from_text(cls, text: str) -> "BatchPatch":
        return cls.from_stream((text or "").splitlines())

    @classmethod
    def removing(cls, batch_name: str, keys: Iterable[str]) -> "BatchPatch":
        bp = cls(batch_name=batch_name)
        for k in keys:
            bp._instructions.append(Instruction(operation=Operation.REMOVE_ISSUE, operand=str(k)))
        return bp

    def instructions(self) -> Iterator[tuple[Operation, str]]:
        for i in self._instructions:
            yield i.operation, i.operand

    def remove_issue_keys(self) -> list[str]:
        return [operand for op, operand in self.instructions() if op is Operation.REMOVE_ISSUE]
