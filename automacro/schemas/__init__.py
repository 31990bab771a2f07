"""
automacro.schemas - Data model for the macro engine.

Macro -> Instruction / Constraint -> ProgramReport -> ExecutionLogEntry

Lifecycle:
1. Macro: Stored definition with an ordered, jump-annotated program
2. Variable: Scoped named value read and written while a program runs
3. StepOutcome / ProgramReport: In-memory audit of one interpreter run
4. ExecutionResult: Returned to the caller (Success, Skipped, Failure, NotFound)
5. ExecutionLogEntry: Persisted, one per run
"""

from .macro import (
    Constraint,
    Instruction,
    InstructionKind,
    Macro,
)
from .variable import (
    Variable,
    VariableScope,
    VariableType,
)
from .execution import (
    ExecutionLogEntry,
    ExecutionResult,
    ExecutionStatus,
    Failure,
    NotFound,
    ProgramReport,
    Skipped,
    StepOutcome,
    StepStatus,
    Success,
)

__all__ = [
    # Macro
    "Constraint",
    "Instruction",
    "InstructionKind",
    "Macro",
    # Variable
    "Variable",
    "VariableScope",
    "VariableType",
    # Execution
    "ExecutionLogEntry",
    "ExecutionResult",
    "ExecutionStatus",
    "Failure",
    "NotFound",
    "ProgramReport",
    "Skipped",
    "StepOutcome",
    "StepStatus",
    "Success",
]
