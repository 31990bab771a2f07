"""
Error classes for automacro execution.

These error types mark where a macro run can go wrong:
- NotFoundError: a macro or variable that must exist does not
- UnknownActionType: no handler registered for an action type
- ActionExecutionFailure: one action failed (recorded, never aborts a run)
- InterpreterFault: the control-flow loop hit a malformed program
- ProgramValidationError: a program was rejected when saved or loaded

Error handling contract:
- Action-level failures are counted by the interpreter and never propagate
- Everything else is caught at the orchestrator boundary and reported
  as a Failure result
- An unsatisfied constraint is not an error; it is a Skipped result
"""

from typing import Optional


class AutomacroError(Exception):
    """Base exception for automacro."""
    pass


class NotFoundError(AutomacroError):
    """
    A referenced macro or variable does not exist.

    Raised where existence is required, e.g. an arithmetic operation on
    a variable that was never written.
    """
    pass


class UnknownActionType(AutomacroError):
    """No handler is registered for an action type."""

    def __init__(self, action_type: str, registered: Optional[list[str]] = None):
        self.action_type = action_type
        self.registered = registered or []
        message = f"Unknown action type: {action_type}"
        if self.registered:
            message += f". Registered: {self.registered}"
        super().__init__(message)


class ActionExecutionFailure(AutomacroError):
    """
    A single action handler reported failure.

    The interpreter records these per step; they do not abort the run.
    """

    def __init__(self, action_type: str, reason: Optional[str] = None):
        self.action_type = action_type
        self.reason = reason
        super().__init__(f"Action '{action_type}' failed: {reason or 'unknown reason'}")


class InterpreterFault(AutomacroError):
    """
    An exception escaping the control-flow loop itself.

    Examples:
    - Jump index outside the program
    - END_FOR without an active loop frame
    - Unknown condition operator
    - Step limit exceeded

    Surfaces as the run's Failure result.
    """

    def __init__(self, message: str, pc: Optional[int] = None):
        self.pc = pc
        if pc is not None:
            message = f"{message} (pc={pc})"
        super().__init__(message)


class ProgramValidationError(AutomacroError):
    """A macro program violates its jump-index or nesting invariants."""

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index
        if index is not None:
            message = f"Instruction {index}: {message}"
        super().__init__(message)
