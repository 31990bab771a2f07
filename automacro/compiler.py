"""
Compiler - validate and link macro programs.

A program is the flat instruction list returned by Macro.program(). Control
flow is encoded by jump indices into that list:

- IF_CONDITION: endIfIndex, optional elseIndex (pointing at an ELSE marker)
- ELSE: endIfIndex of its owning IF
- FOR_LOOP: endForIndex

validate_program() rejects programs whose indices do not describe properly
nested blocks. link_program() computes the indices from block structure so
hand-written macro files may omit them.
"""

from typing import Any, Optional

from automacro.conditions import Operator
from automacro.errors import ProgramValidationError
from automacro.schemas import Instruction, InstructionKind, Macro

OPENERS = (InstructionKind.IF_CONDITION, InstructionKind.FOR_LOOP)


def _index(config: dict[str, Any], key: str, position: int) -> Optional[int]:
    """Read an integer jump index from config, or None if absent."""
    value = config.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ProgramValidationError(f"{key} must be an integer, got {value!r}", position)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ProgramValidationError(f"{key} must be an integer, got {value!r}", position)


def _expect(program: list[Instruction], target: Optional[int], kind: InstructionKind,
            key: str, position: int) -> None:
    if target is None:
        raise ProgramValidationError(f"missing {key}", position)
    if target <= position or target >= len(program):
        raise ProgramValidationError(f"{key}={target} must point forward inside the program", position)
    if program[target].kind is not kind:
        raise ProgramValidationError(
            f"{key}={target} points at {program[target].kind.value}, expected {kind.value}",
            position,
        )


def _structure(program: list[Instruction]) -> dict[int, dict[str, int]]:
    """
    Match block openers to their closers by nesting.

    Returns:
        Map of opener/ELSE index -> {"else": i, "end": j}

    Raises:
        ProgramValidationError: On unbalanced or overlapping blocks
    """
    stack: list[int] = []
    links: dict[int, dict[str, int]] = {}
    for position, instruction in enumerate(program):
        kind = instruction.kind
        if kind in OPENERS:
            stack.append(position)
            links[position] = {}
        elif kind is InstructionKind.ELSE:
            if not stack or program[stack[-1]].kind is not InstructionKind.IF_CONDITION:
                raise ProgramValidationError("ELSE outside an IF block", position)
            owner = stack[-1]
            if "else" in links[owner]:
                raise ProgramValidationError("IF block has more than one ELSE", position)
            links[owner]["else"] = position
            links[position] = {"owner": owner}
        elif kind is InstructionKind.END_IF:
            if not stack or program[stack[-1]].kind is not InstructionKind.IF_CONDITION:
                raise ProgramValidationError("END_IF without a matching IF_CONDITION", position)
            owner = stack.pop()
            links[owner]["end"] = position
            if "else" in links[owner]:
                links[links[owner]["else"]]["end"] = position
        elif kind is InstructionKind.END_FOR:
            if not stack or program[stack[-1]].kind is not InstructionKind.FOR_LOOP:
                raise ProgramValidationError("END_FOR without a matching FOR_LOOP", position)
            links[stack.pop()]["end"] = position

    if stack:
        opener = stack[-1]
        raise ProgramValidationError(f"{program[opener].kind.value} is never closed", opener)
    return links


def validate_program(program: list[Instruction]) -> None:
    """
    Check that a program's jump indices describe properly nested blocks.

    Args:
        program: Instructions in execution order

    Raises:
        ProgramValidationError: Naming the first offending instruction
    """
    links = _structure(program)

    for position, instruction in enumerate(program):
        config = instruction.config
        kind = instruction.kind

        if instruction.delay_after_ms < 0:
            raise ProgramValidationError("delay_after_ms must be >= 0", position)
        if instruction.delay_after_ms and kind is not InstructionKind.ACTION:
            raise ProgramValidationError("delay_after_ms is only allowed on ACTION", position)

        if kind is InstructionKind.ACTION:
            if not instruction.action_type:
                raise ProgramValidationError("ACTION requires actionType", position)

        elif kind is InstructionKind.IF_CONDITION:
            end_if = _index(config, "endIfIndex", position)
            _expect(program, end_if, InstructionKind.END_IF, "endIfIndex", position)
            if end_if != links[position]["end"]:
                raise ProgramValidationError(
                    f"endIfIndex={end_if} does not close this block (expected {links[position]['end']})",
                    position,
                )
            else_index = _index(config, "elseIndex", position)
            if else_index is not None:
                _expect(program, else_index, InstructionKind.ELSE, "elseIndex", position)
                if else_index != links[position].get("else"):
                    raise ProgramValidationError(
                        f"elseIndex={else_index} is not the ELSE of this block", position
                    )
            elif "else" in links[position]:
                raise ProgramValidationError("IF block has an ELSE but no elseIndex", position)
            condition = config.get("condition")
            if condition:
                try:
                    Operator.parse(condition.get("operator", ""))
                except ValueError as e:
                    raise ProgramValidationError(str(e), position)

        elif kind is InstructionKind.ELSE:
            end_if = _index(config, "endIfIndex", position)
            _expect(program, end_if, InstructionKind.END_IF, "endIfIndex", position)
            if end_if != links[position]["end"]:
                raise ProgramValidationError(
                    f"endIfIndex={end_if} differs from the owning IF_CONDITION", position
                )

        elif kind is InstructionKind.FOR_LOOP:
            end_for = _index(config, "endForIndex", position)
            _expect(program, end_for, InstructionKind.END_FOR, "endForIndex", position)
            if end_for != links[position]["end"]:
                raise ProgramValidationError(
                    f"endForIndex={end_for} does not close this block (expected {links[position]['end']})",
                    position,
                )
            if "iterations" not in config:
                raise ProgramValidationError("FOR_LOOP requires iterations", position)


def link_program(program: list[Instruction]) -> list[Instruction]:
    """
    Fill in elseIndex / endIfIndex / endForIndex from block structure.

    Existing index values are overwritten. Instructions are updated in place
    and the program is returned for chaining.

    Raises:
        ProgramValidationError: On unbalanced blocks
    """
    links = _structure(program)
    for position, block in links.items():
        instruction = program[position]
        if instruction.kind is InstructionKind.IF_CONDITION:
            instruction.config["endIfIndex"] = block["end"]
            if "else" in block:
                instruction.config["elseIndex"] = block["else"]
            else:
                instruction.config.pop("elseIndex", None)
        elif instruction.kind is InstructionKind.ELSE:
            instruction.config["endIfIndex"] = block["end"]
        elif instruction.kind is InstructionKind.FOR_LOOP:
            instruction.config["endForIndex"] = block["end"]
    return program


def validate_macro(macro: Macro) -> Macro:
    """Validate a macro's program. Returns the macro unchanged."""
    validate_program(macro.program())
    return macro
