"""
Handlers module for automacro actions.

Every ACTION instruction names an action type. The HandlerRegistry maps
action types to ActionHandler instances and the ActionDispatcher runs them:
- interpolates the instruction config through the VariableStore
- adds the running macro's id as macroId
- turns handler exceptions into failed outcomes

Usage:
    from automacro.handlers import ActionDispatcher, HandlerRegistry

    registry = HandlerRegistry.create_default(variables)
    registry.register("VIBRATE", MyVibrateHandler())
    dispatcher = ActionDispatcher(registry, variables)
"""

from automacro.handlers.base import ActionHandler, ActionOutcome, NoOpHandler
from automacro.handlers.registry import ActionDispatcher, HandlerRegistry
from automacro.handlers.builtin import (
    AppendVariableHandler,
    ArithmeticVariableHandler,
    DecrementVariableHandler,
    DelayHandler,
    IncrementVariableHandler,
    LogMessageHandler,
    SetVariableHandler,
    ShowToastHandler,
    builtin_handlers,
)

__all__ = [
    "ActionHandler",
    "ActionOutcome",
    "NoOpHandler",
    "ActionDispatcher",
    "HandlerRegistry",
    "AppendVariableHandler",
    "ArithmeticVariableHandler",
    "DecrementVariableHandler",
    "DelayHandler",
    "IncrementVariableHandler",
    "LogMessageHandler",
    "SetVariableHandler",
    "ShowToastHandler",
    "builtin_handlers",
]
