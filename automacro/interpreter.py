"""
Interpreter - run a macro's flat, jump-annotated program.

State is a program counter over Macro.program() plus a stack of loop
frames. One transition per instruction:

    ACTION        dispatch, record StepOutcome, optional delay, pc + 1
    IF_CONDITION  true: pc + 1; false: elseIndex + 1 or endIfIndex + 1
    ELSE          reached only from the if-body: endIfIndex + 1
    END_IF        pc + 1
    FOR_LOOP      iterations <= 0: endForIndex + 1; else push frame
    END_FOR       repeat (return_pc) or pop and pc + 1
    BREAK         pop frame, endForIndex + 1
    CONTINUE      jump to the frame's END_FOR

The run ends when pc reaches the end of the program. Action failures are
recorded per step and never stop the run; malformed programs raise
InterpreterFault.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from automacro.conditions import evaluate_condition
from automacro.errors import InterpreterFault
from automacro.handlers.registry import ActionDispatcher
from automacro.schemas import (
    Instruction,
    InstructionKind,
    Macro,
    ProgramReport,
    StepOutcome,
    StepStatus,
    VariableScope,
    VariableType,
)
from automacro.variables import VariableStore, parse_number

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 100_000

Sleep = Callable[[float], Awaitable[Any]]


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class LoopFrame:
    """One active FOR_LOOP."""
    for_index: int
    return_pc: int
    remaining: int
    end_for_index: int
    loop_variable: Optional[str] = None
    iteration: int = 0


class Interpreter:
    """
    Executes programs against a dispatcher and a variable store.

    Usage:
        interpreter = Interpreter(dispatcher, variables)
        report = await interpreter.run(macro)
        report.actions_attempted
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        variables: VariableStore,
        sleep: Optional[Sleep] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        """
        Args:
            dispatcher: Runs ACTION instructions
            variables: Store for conditions, loop counters and interpolation
            sleep: Coroutine function taking seconds (default asyncio.sleep)
            max_steps: Transition budget per run
        """
        self._dispatcher = dispatcher
        self._variables = variables
        self._sleep = sleep or asyncio.sleep
        self._max_steps = max_steps

    async def run(
        self,
        macro: Macro,
        dry_run: bool = False,
        report: Optional[ProgramReport] = None,
    ) -> ProgramReport:
        """Run a macro's program in execution order."""
        return await self.run_program(
            macro.program(), macro_id=macro.id, dry_run=dry_run, report=report
        )

    async def run_program(
        self,
        program: list[Instruction],
        macro_id: Optional[int] = None,
        dry_run: bool = False,
        report: Optional[ProgramReport] = None,
    ) -> ProgramReport:
        """
        Run an already ordered program.

        Args:
            program: Instructions in execution order
            macro_id: Owner for LOCAL variables and interpolation
            dry_run: Record ACTION steps as skipped instead of dispatching
            report: Report to fill in; the caller keeps the partial steps
                if the run faults or is cancelled

        Returns:
            ProgramReport of the run

        Raises:
            InterpreterFault: On a malformed program or exceeded step budget
        """
        if report is None:
            report = ProgramReport()
        frames: list[LoopFrame] = []
        size = len(program)
        pc = 0

        while pc < size:
            report.steps += 1
            if report.steps > self._max_steps:
                raise InterpreterFault(f"Step limit of {self._max_steps} exceeded", pc)

            instruction = program[pc]
            kind = instruction.kind

            if kind is InstructionKind.ACTION:
                await self._action(instruction, pc, macro_id, dry_run, report)
                next_pc = pc + 1

            elif kind is InstructionKind.IF_CONDITION:
                try:
                    satisfied = await evaluate_condition(
                        instruction.config.get("condition"), self._variables, macro_id
                    )
                except ValueError as e:
                    raise InterpreterFault(str(e), pc)
                if satisfied:
                    next_pc = pc + 1
                elif instruction.config.get("elseIndex") is not None:
                    next_pc = self._target(instruction, "elseIndex", pc) + 1
                else:
                    next_pc = self._target(instruction, "endIfIndex", pc) + 1

            elif kind is InstructionKind.ELSE:
                next_pc = self._target(instruction, "endIfIndex", pc) + 1

            elif kind is InstructionKind.END_IF:
                next_pc = pc + 1

            elif kind is InstructionKind.FOR_LOOP:
                end_for = self._target(instruction, "endForIndex", pc)
                iterations = await self._iterations(instruction, macro_id)
                if iterations <= 0:
                    next_pc = end_for + 1
                else:
                    frame = LoopFrame(
                        for_index=pc,
                        return_pc=pc + 1,
                        remaining=iterations,
                        end_for_index=end_for,
                        loop_variable=instruction.config.get("loopVariable") or None,
                    )
                    frames.append(frame)
                    await self._write_loop_variable(frame, macro_id)
                    next_pc = frame.return_pc

            elif kind is InstructionKind.END_FOR:
                if not frames:
                    raise InterpreterFault("END_FOR without an active loop", pc)
                frame = frames[-1]
                frame.remaining -= 1
                if frame.remaining > 0:
                    frame.iteration += 1
                    await self._write_loop_variable(frame, macro_id)
                    next_pc = frame.return_pc
                else:
                    frames.pop()
                    next_pc = pc + 1

            elif kind is InstructionKind.BREAK:
                if frames:
                    next_pc = frames.pop().end_for_index + 1
                else:
                    next_pc = pc + 1

            elif kind is InstructionKind.CONTINUE:
                next_pc = frames[-1].end_for_index if frames else pc + 1

            else:
                raise InterpreterFault(f"Unsupported instruction kind: {kind}", pc)

            if next_pc < 0 or next_pc > size:
                raise InterpreterFault(f"Jump target {next_pc} outside program of {size}", pc)
            pc = next_pc

        logger.debug(
            "Program finished: %d steps, %d actions attempted, %d failed",
            report.steps, report.actions_attempted, report.actions_failed,
            extra={"macro_id": macro_id},
        )
        return report

    async def _action(
        self,
        instruction: Instruction,
        pc: int,
        macro_id: Optional[int],
        dry_run: bool,
        report: ProgramReport,
    ) -> None:
        action_type = instruction.action_type or ""

        if dry_run:
            report.outcomes.append(StepOutcome(
                index=pc,
                action_type=action_type,
                status=StepStatus.SKIPPED,
            ))
            return

        config = {k: v for k, v in instruction.config.items() if k != "actionType"}
        started = _utcnow()
        try:
            if not action_type:
                raise InterpreterFault("ACTION without actionType", pc)
            outcome = await self._dispatcher.dispatch(action_type, config, macro_id)
            ok, error = outcome.ok, outcome.reason
        except Exception as e:
            ok, error = False, str(e)

        report.outcomes.append(StepOutcome(
            index=pc,
            action_type=action_type,
            status=StepStatus.COMPLETED if ok else StepStatus.FAILED,
            started_at=started,
            completed_at=_utcnow(),
            error=None if ok else (error or "action failed"),
        ))

        if not ok:
            logger.warning(
                "Action %s at %d failed: %s", action_type, pc, error,
                extra={"macro_id": macro_id},
            )
            return

        if instruction.delay_after_ms > 0:
            await self._sleep(instruction.delay_after_ms / 1000)

    def _target(self, instruction: Instruction, key: str, pc: int) -> int:
        value = instruction.config.get(key)
        if value is None:
            raise InterpreterFault(f"{instruction.kind.value} missing {key}", pc)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise InterpreterFault(f"{key} is not an index: {value!r}", pc)

    async def _iterations(self, instruction: Instruction, macro_id: Optional[int]) -> int:
        raw = instruction.config.get("iterations", 0)
        if isinstance(raw, str):
            raw = await self._variables.interpolate(raw, macro_id)
        number = parse_number(raw)
        return int(number) if number is not None else 0

    async def _write_loop_variable(self, frame: LoopFrame, macro_id: Optional[int]) -> None:
        if frame.loop_variable is None:
            return
        if macro_id is not None:
            scope = VariableScope.LOCAL
        else:
            scope = VariableScope.GLOBAL
        await self._variables.set(
            frame.loop_variable,
            str(frame.iteration),
            scope=scope,
            macro_id=macro_id,
            type=VariableType.NUMBER,
        )
