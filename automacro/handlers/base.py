"""
Base action handler protocol and common implementations.

Action handlers carry out one ACTION instruction each. They receive the
instruction's config (already interpolated, with macroId added) and report
an ActionOutcome. A handler may also raise ActionExecutionFailure (or any
other exception); the dispatcher turns that into a failed outcome.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class ActionOutcome:
    """
    Result of one action.

    Attributes:
        ok: True if the action succeeded
        reason: Failure reason (None on success)
    """
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "ActionOutcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "ActionOutcome":
        return cls(ok=False, reason=reason)


class ActionHandler(ABC):
    """
    Abstract base class for action handlers.

    Handlers are registered in the HandlerRegistry under an action type
    (e.g. SET_VARIABLE, SHOW_TOAST) and awaited by the ActionDispatcher.
    """

    @abstractmethod
    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        """
        Execute an action.

        Args:
            config: The instruction's config with placeholders resolved

        Returns:
            ActionOutcome.success() or ActionOutcome.failure(reason)
        """
        pass


class NoOpHandler(ActionHandler):
    """
    No-op handler for testing and placeholder action types.

    Always succeeds without doing anything.
    """

    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        return ActionOutcome.success()
