"""
Execution schemas - results, audit log entries and step outcomes.

ExecutionResult is returned to the caller of a macro run and never stored.
ExecutionLogEntry is persisted, one per run (not per instruction).
StepOutcome and ProgramReport are the interpreter's in-memory audit of a
single run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Status string written to the execution log."""
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILURE = "FAILURE"
    NOT_FOUND = "NOT_FOUND"
    SIMULATION_SUCCESS = "SIMULATION_SUCCESS"
    SIMULATION_FAILURE = "SIMULATION_FAILURE"


class ExecutionResult:
    """Outcome of one macro run. One of Success, Skipped, Failure, NotFound."""

    status: ExecutionStatus

    @property
    def ok(self) -> bool:
        return self.status in (ExecutionStatus.SUCCESS, ExecutionStatus.SIMULATION_SUCCESS)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self).__name__, tuple(sorted(vars(self).items()))))

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({fields})"


class Success(ExecutionResult):
    """The program ran to completion (individual action failures allowed)."""

    def __init__(self, actions_executed: int = 0, dry_run: bool = False):
        self.actions_executed = actions_executed
        self.dry_run = dry_run

    @property
    def status(self) -> ExecutionStatus:
        return ExecutionStatus.SIMULATION_SUCCESS if self.dry_run else ExecutionStatus.SUCCESS


class Skipped(ExecutionResult):
    """The macro was not run (constraints unsatisfied or macro disabled)."""

    status = ExecutionStatus.SKIPPED

    def __init__(self, reason: str):
        self.reason = reason


class Failure(ExecutionResult):
    """An unexpected exception ended the run."""

    def __init__(self, reason: Optional[str], dry_run: bool = False):
        self.reason = reason
        self.dry_run = dry_run

    @property
    def status(self) -> ExecutionStatus:
        return ExecutionStatus.SIMULATION_FAILURE if self.dry_run else ExecutionStatus.FAILURE


class NotFound(ExecutionResult):
    """The requested macro does not exist."""

    status = ExecutionStatus.NOT_FOUND


@dataclass(frozen=True)
class ExecutionLogEntry:
    """
    Persisted audit record of one macro run.

    Attributes:
        macro_id: The macro that ran
        executed_at: When the run started
        status: Mirrors the ExecutionResult
        error_message: Failure or skip reason, if any
        duration_ms: Wall-clock duration of the run
        actions_executed: Number of ACTION steps attempted
        id: Persistent identifier assigned by the macro source
    """
    macro_id: int
    status: ExecutionStatus
    executed_at: datetime = field(default_factory=_utcnow)
    error_message: Optional[str] = None
    duration_ms: int = 0
    actions_executed: int = 0
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "macro_id": self.macro_id,
            "executed_at": self.executed_at.isoformat(),
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "actions_executed": self.actions_executed,
        }
        if self.error_message is not None:
            result["error_message"] = self.error_message
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionLogEntry":
        """Deserialize from dictionary."""
        return cls(
            macro_id=data["macro_id"],
            status=ExecutionStatus(data["status"]),
            executed_at=datetime.fromisoformat(data["executed_at"]),
            error_message=data.get("error_message"),
            duration_ms=data.get("duration_ms", 0),
            actions_executed=data.get("actions_executed", 0),
            id=data.get("id"),
        )


class StepStatus(str, Enum):
    """Status of one ACTION step within a run."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepOutcome:
    """
    The outcome of executing a single ACTION instruction.

    Attributes:
        index: Program index of the instruction
        action_type: The dispatched action type
        status: completed, failed or skipped (dry run)
        started_at: When dispatch started
        completed_at: When dispatch returned
        error: Failure reason if status is failed
    """
    index: int
    action_type: str
    status: StepStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.status in (StepStatus.COMPLETED, StepStatus.FAILED):
            if self.started_at is None or self.completed_at is None:
                raise ValueError(f"{self.status.value} steps must have started_at and completed_at")

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "index": self.index,
            "action_type": self.action_type,
            "status": self.status.value,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class ProgramReport:
    """What the interpreter did during one run."""
    outcomes: list[StepOutcome] = field(default_factory=list)
    steps: int = 0

    @property
    def actions_attempted(self) -> int:
        return sum(1 for o in self.outcomes if o.status != StepStatus.SKIPPED)

    @property
    def actions_failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == StepStatus.FAILED)

    def executed_types(self) -> list[str]:
        """Action types in the order they were reached."""
        return [o.action_type for o in self.outcomes]

    def get_failed_steps(self) -> tuple[StepOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == StepStatus.FAILED)
