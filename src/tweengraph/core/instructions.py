"""
Draw-instruction protocol.

Each instruction is an opcode plus a fixed-length tuple of numbers. The
opcode space is split in two:

- 0-127: built-in primitives with arities fixed by this module;
- 128-255: application-defined kinds. The engine only transports them; the
  external renderer interprets them.

Text is carried through a per-stream string table so operands stay numeric.
Coordinates are already in the canvas' global space when emitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
USER_OPCODE_BASE = 128
MAX_OPCODE = 255


class Opcode(IntEnum):
    OPACITY = 2
    LINE_WIDTH = 3
    CIRCLE = 4
    MOVE_TO = 7
    LINE_TO = 9
    CLOSE_PATH = 10
    TEXT = 13
    ELLIPSE = 19
    STROKE_PATH = 20


@dataclass(frozen=True)
class InstructionKind:
    """Name and fixed arity of an opcode."""

    name: str
    opcode: int
    arity: int


_builtin_kinds: Dict[int, InstructionKind] = {
    Opcode.OPACITY: InstructionKind("opacity", Opcode.OPACITY, 1),  # alpha
    Opcode.LINE_WIDTH: InstructionKind("line_width", Opcode.LINE_WIDTH, 1),  # width
    Opcode.CIRCLE: InstructionKind("circle", Opcode.CIRCLE, 3),  # x, y, r
    Opcode.MOVE_TO: InstructionKind("move_to", Opcode.MOVE_TO, 2),  # x, y
    Opcode.LINE_TO: InstructionKind("line_to", Opcode.LINE_TO, 2),  # x, y
    Opcode.CLOSE_PATH: InstructionKind("close_path", Opcode.CLOSE_PATH, 0),
    Opcode.TEXT: InstructionKind("text", Opcode.TEXT, 4),  # x, y, size, string_id
    Opcode.ELLIPSE: InstructionKind("ellipse", Opcode.ELLIPSE, 5),  # x, y, rx, ry, angle
    Opcode.STROKE_PATH: InstructionKind("stroke_path", Opcode.STROKE_PATH, 0),
}

_user_kinds: Dict[int, InstructionKind] = {}


def define_instruction(name: str, opcode: int, arity: int, *, override: bool = False) -> InstructionKind:
    """
    Declare an application-defined instruction kind.

    Raises
    ------
    ValueError
        If the opcode is outside 128-255, the arity is negative, or the opcode
        is already declared and override is False.
    """
    if not USER_OPCODE_BASE <= opcode <= MAX_OPCODE:
        raise ValueError(
            f"Application opcodes must be in {USER_OPCODE_BASE}-{MAX_OPCODE}, got {opcode}"
        )
    if arity < 0:
        raise ValueError("Instruction arity must be non-negative")
    if opcode in _user_kinds and not override:
        raise ValueError(
            f"Opcode {opcode} already defined as '{_user_kinds[opcode].name}'. "
            "Use override=True to replace it."
        )
    kind = InstructionKind(name, opcode, arity)
    _user_kinds[opcode] = kind
    logger.debug("Defined instruction %s=%d/%d", name, opcode, arity)
    return kind


def undefine_instruction(opcode: int) -> bool:
    return _user_kinds.pop(opcode, None) is not None


def instruction_kind(opcode: int) -> Optional[InstructionKind]:
    if opcode < USER_OPCODE_BASE:
        return _builtin_kinds.get(opcode)
    return _user_kinds.get(opcode)


@dataclass(frozen=True)
class Instruction:
    opcode: int
    operands: Tuple[float, ...] = ()

    @property
    def name(self) -> str:
        kind = instruction_kind(self.opcode)
        return kind.name if kind else f"op{self.opcode}"


@dataclass
class InstructionStream:
    """
    Ordered instruction list produced by one traversal pass.

    The stream is pure data: it can be exported, inspected, and replayed by any
    renderer.
    """

    instructions: List[Instruction] = field(default_factory=list)
    strings: List[str] = field(default_factory=list)
    version: int = PROTOCOL_VERSION
    _string_ids: Dict[str, int] = field(default_factory=dict, repr=False)

    def emit(self, opcode: int, *operands: float) -> Instruction:
        """
        Append an instruction after checking its opcode and arity.

        Raises
        ------
        ValueError
            If a reserved opcode is unknown, the opcode is out of range, or the
            operand count does not match a declared arity.
        TypeError
            If an operand is not a number.
        """
        opcode = int(opcode)
        if not 0 <= opcode <= MAX_OPCODE:
            raise ValueError(f"Opcode {opcode} outside 0-{MAX_OPCODE}")
        kind = instruction_kind(opcode)
        if kind is None and opcode < USER_OPCODE_BASE:
            raise ValueError(f"Opcode {opcode} is reserved and not defined")
        if kind is not None and len(operands) != kind.arity:
            raise ValueError(
                f"Instruction '{kind.name}' takes {kind.arity} operands, got {len(operands)}"
            )
        values = tuple(_as_number(value) for value in operands)
        instruction = Instruction(opcode, values)
        self.instructions.append(instruction)
        return instruction

    def intern(self, text: str) -> int:
        """Return the string-table id for ``text``, adding it if needed."""
        string_id = self._string_ids.get(text)
        if string_id is None:
            string_id = len(self.strings)
            self.strings.append(text)
            self._string_ids[text] = string_id
        return string_id

    def string(self, string_id: int) -> str:
        return self.strings[int(string_id)]

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def opcodes(self) -> List[int]:
        return [instr.opcode for instr in self.instructions]

    def stats(self) -> Dict[str, int]:
        """Instruction count by kind name."""
        counts: Dict[str, int] = {}
        for instr in self.instructions:
            counts[instr.name] = counts.get(instr.name, 0) + 1
        return counts

    def validate(self) -> List[str]:
        """
        Check arities and string references.
        Returns list of error messages (empty = valid).
        """
        errors = []
        for idx, instr in enumerate(self.instructions):
            kind = instruction_kind(instr.opcode)
            if kind is not None and len(instr.operands) != kind.arity:
                errors.append(
                    f"Instruction {idx} ({kind.name}): expected {kind.arity} operands, "
                    f"got {len(instr.operands)}"
                )
            if instr.opcode == Opcode.TEXT and len(instr.operands) == 4:
                string_id = int(instr.operands[3])
                if not 0 <= string_id < len(self.strings):
                    errors.append(f"Instruction {idx} (text): unknown string id {string_id}")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "strings": list(self.strings),
            "instructions": [[instr.opcode, *instr.operands] for instr in self.instructions],
        }


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise TypeError(f"Instruction operands must be numbers, got {value!r}") from None


Handler = Callable[..., None]


def replay(stream: InstructionStream, handlers: Mapping[int, Handler]) -> int:
    """
    Dispatch a stream to renderer-side handlers.

    Each handler receives the operands followed by the stream (for string
    lookups). Opcodes without a handler are skipped for forward
    compatibility.

    Returns
    -------
    int
        Number of instructions handled.
    """
    handled = 0
    for instr in stream:
        handler = handlers.get(instr.opcode)
        if handler is None:
            logger.debug("Skipping uninterpreted opcode %d", instr.opcode)
            continue
        handler(*instr.operands, stream)
        handled += 1
    return handled
