"""
Handler Registry and Action Dispatcher.

The registry maps action types to ActionHandler instances. It is populated
once at startup (create_default registers the built-in handlers) and can be
extended with register().

The dispatcher is what the interpreter calls for every ACTION step: it
resolves the handler, interpolates the config through the VariableStore and
awaits the handler.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from automacro.errors import ActionExecutionFailure, UnknownActionType
from automacro.handlers.base import ActionHandler, ActionOutcome

if TYPE_CHECKING:
    from automacro.variables import VariableStore

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    Registry for handler dispatch by action type.

    Usage:
        registry = HandlerRegistry()
        registry.register("SHOW_TOAST", ShowToastHandler())

        # Or use factory with the built-in handlers
        registry = HandlerRegistry.create_default(variables)
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """
        Register a handler for an action type.

        Args:
            action_type: Action type name (e.g. SET_VARIABLE)
            handler: Handler instance for this type
        """
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> ActionHandler:
        """
        Get the handler for an action type.

        Raises:
            UnknownActionType: If no handler is registered for this type
        """
        if action_type not in self._handlers:
            raise UnknownActionType(action_type, self.list_types())
        return self._handlers[action_type]

    def has(self, action_type: str) -> bool:
        return action_type in self._handlers

    def list_types(self) -> list[str]:
        """Registered action types, sorted."""
        return sorted(self._handlers)

    @classmethod
    def create_default(cls, variables: "VariableStore") -> "HandlerRegistry":
        """
        Create a registry with the built-in handlers.

        Args:
            variables: Store used by the variable handlers

        Returns:
            Configured HandlerRegistry
        """
        from automacro.handlers.builtin import builtin_handlers

        registry = cls()
        for action_type, handler in builtin_handlers(variables).items():
            registry.register(action_type, handler)
        return registry


class ActionDispatcher:
    """
    Resolves, prepares and runs one action.

    Usage:
        dispatcher = ActionDispatcher(registry, variables)
        outcome = await dispatcher.dispatch("SHOW_TOAST", {"message": "Hi {name}"}, macro_id=1)
    """

    def __init__(self, registry: HandlerRegistry, variables: "VariableStore"):
        self._registry = registry
        self._variables = variables

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    async def dispatch(
        self,
        action_type: str,
        config: dict[str, Any],
        macro_id: Optional[int] = None,
    ) -> ActionOutcome:
        """
        Run the handler registered for action_type.

        String config values are interpolated with macro_id as the local
        scope and macroId is added when absent. A handler exception becomes
        a failed outcome (ActionExecutionFailure keeps its reason); cancellation
        propagates.

        Raises:
            UnknownActionType: If no handler is registered for action_type
        """
        handler = self._registry.get(action_type)

        prepared = await self._variables.interpolate_config(config, macro_id)
        if macro_id is not None:
            prepared.setdefault("macroId", macro_id)

        try:
            return await handler.execute(prepared)
        except asyncio.CancelledError:
            raise
        except ActionExecutionFailure as e:
            return ActionOutcome.failure(e.reason or str(e))
        except Exception as e:
            logger.warning("Action %s raised: %s", action_type, e)
            return ActionOutcome.failure(str(e) or type(e).__name__)
