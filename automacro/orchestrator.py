"""
Orchestrator - run one macro end to end.

Execution flow:
1. Load the macro (absent -> NotFound, nothing logged; a broken
   definition -> FAILURE log, Failure)
2. Disabled macro -> Skipped, SKIPPED log
3. Constraint gate (unsatisfied -> Skipped, SKIPPED log)
4. Interpreter run under a timeout
5. Completed: record the run, SUCCESS log, Success
6. Any exception from 4-5: FAILURE log, Failure
7. Cancelled: FAILURE log "Execution cancelled", CancelledError re-raised

Exactly one execution log entry is written per run that got past step 1.
Dry runs log SIMULATION_SUCCESS / SIMULATION_FAILURE and leave run
metadata untouched.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from automacro.constraints import ConstraintGate
from automacro.errors import NotFoundError
from automacro.interpreter import Interpreter
from automacro.schemas import (
    ExecutionLogEntry,
    ExecutionResult,
    ExecutionStatus,
    Failure,
    NotFound,
    ProgramReport,
    Skipped,
    Success,
)
from automacro.store import MacroSource
from automacro.variables import VariableStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 60.0


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Orchestrator:
    """
    Ties the macro source, constraint gate and interpreter together.

    Usage:
        orchestrator = Orchestrator(source, gate, interpreter)
        result = await orchestrator.execute(7)
        results = await orchestrator.execute_many([1, 2, 3])
    """

    def __init__(
        self,
        source: MacroSource,
        gate: ConstraintGate,
        interpreter: Interpreter,
        timeout_s: Optional[float] = DEFAULT_TIMEOUT_S,
        variables: Optional[VariableStore] = None,
    ):
        """
        Args:
            source: Macro definitions, run metadata and the execution log
            gate: Constraint gate
            interpreter: Program interpreter
            timeout_s: Per-run time limit, None for no limit
            variables: Store for cascading LOCAL variables on delete_macro
        """
        self._source = source
        self._gate = gate
        self._interpreter = interpreter
        self._timeout_s = timeout_s
        self._variables = variables

    @property
    def source(self) -> MacroSource:
        return self._source

    async def execute(self, macro_id: int, dry_run: bool = False) -> ExecutionResult:
        """
        Run one macro.

        Args:
            macro_id: The macro to run
            dry_run: Evaluate the program without dispatching actions

        Returns:
            Success, Skipped, Failure or NotFound
        """
        started_at = _utcnow()
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        failure_status = ExecutionStatus.SIMULATION_FAILURE if dry_run else ExecutionStatus.FAILURE
        try:
            macro = self._source.load_macro(macro_id)
        except NotFoundError:
            macro = None
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.error("Macro %s could not be loaded: %s", macro_id, reason, extra={"macro_id": macro_id})
            self._log(macro_id, failure_status, started_at, elapsed_ms(), reason)
            return Failure(reason, dry_run=dry_run)
        if macro is None:
            logger.warning("Macro %s not found", macro_id, extra={"macro_id": macro_id})
            return NotFound()

        if not macro.enabled:
            reason = "Macro is disabled"
            self._log(macro_id, ExecutionStatus.SKIPPED, started_at, elapsed_ms(), reason)
            return Skipped(reason)

        unsatisfied = self._gate.explain(macro.constraints)
        if unsatisfied is not None:
            reason = f"Constraints not satisfied: {unsatisfied}"
            logger.info("Macro %s skipped: %s", macro_id, reason, extra={"macro_id": macro_id})
            self._log(macro_id, ExecutionStatus.SKIPPED, started_at, elapsed_ms(), reason)
            return Skipped(reason)

        report = ProgramReport()
        try:
            await asyncio.wait_for(
                self._interpreter.run(macro, dry_run=dry_run, report=report),
                timeout=self._timeout_s,
            )
            actions = self._actions_executed(report, dry_run)
            if not dry_run:
                self._source.record_run(macro_id, _utcnow())
            result = Success(actions_executed=actions, dry_run=dry_run)
            self._log(macro_id, result.status, started_at, elapsed_ms(), None, actions)
            logger.info(
                "Macro %s finished: %d actions, %d failed",
                macro_id, actions, report.actions_failed,
                extra={"macro_id": macro_id, "event": "macro_completed"},
            )
            return result

        except asyncio.TimeoutError:
            reason = f"Execution timed out after {self._format_timeout()} seconds"
            logger.error("Macro %s: %s", macro_id, reason, extra={"macro_id": macro_id})
            self._log(macro_id, failure_status, started_at, elapsed_ms(), reason,
                      self._actions_executed(report, dry_run))
            return Failure(reason, dry_run=dry_run)

        except asyncio.CancelledError:
            logger.warning("Macro %s cancelled", macro_id, extra={"macro_id": macro_id})
            self._log(macro_id, ExecutionStatus.FAILURE, started_at, elapsed_ms(), "Execution cancelled",
                      self._actions_executed(report, dry_run))
            raise

        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.error("Macro %s failed: %s", macro_id, reason, extra={"macro_id": macro_id})
            self._log(macro_id, failure_status, started_at, elapsed_ms(), reason,
                      self._actions_executed(report, dry_run))
            return Failure(reason, dry_run=dry_run)

    async def execute_many(self, macro_ids: list[int], dry_run: bool = False) -> list[ExecutionResult]:
        """Run several macros concurrently; results in input order."""
        return list(await asyncio.gather(
            *(self.execute(macro_id, dry_run=dry_run) for macro_id in macro_ids)
        ))

    async def delete_macro(self, macro_id: int) -> bool:
        """Delete a macro and cascade-delete its LOCAL variables."""
        deleted = self._source.delete_macro(macro_id)
        if deleted and self._variables is not None:
            count = await self._variables.delete_for_macro(macro_id)
            logger.info("Deleted macro %s and %d local variables", macro_id, count)
        return deleted

    @staticmethod
    def _actions_executed(report: ProgramReport, dry_run: bool) -> int:
        """ACTION steps reached in a dry run, actions attempted otherwise."""
        return len(report.outcomes) if dry_run else report.actions_attempted

    def _format_timeout(self) -> str:
        timeout = self._timeout_s or 0
        return str(int(timeout)) if timeout == int(timeout) else str(timeout)

    def _log(
        self,
        macro_id: int,
        status: ExecutionStatus,
        executed_at: datetime,
        duration_ms: int,
        error_message: Optional[str] = None,
        actions_executed: int = 0,
    ) -> None:
        self._source.append_log(ExecutionLogEntry(
            macro_id=macro_id,
            status=status,
            executed_at=executed_at,
            error_message=error_message,
            duration_ms=duration_ms,
            actions_executed=actions_executed,
        ))
