"""
Built-in action handlers.

Variable handlers:
- SET_VARIABLE: variableName, value, scope (GLOBAL), type (STRING)
- INCREMENT_VARIABLE / DECREMENT_VARIABLE: variableName, amount (1)
- APPEND_VARIABLE: variableName, text
- ARITHMETIC_VARIABLE: variableName, operation, operand

Other handlers:
- LOG_MESSAGE: message, level (INFO)
- SHOW_TOAST: message
- DELAY: durationMs
- NOOP

All variable handlers accept an optional scope. With scope LOCAL (or no
scope on the update handlers) the run's macroId selects the local row;
GLOBAL always addresses the global row.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.markup import escape

from automacro.handlers.base import ActionHandler, ActionOutcome, NoOpHandler
from automacro.utils import console as default_console

if TYPE_CHECKING:
    from automacro.variables import VariableStore

logger = logging.getLogger("automacro.actions")


def _macro_id(config: dict[str, Any]) -> Optional[int]:
    value = config.get("macroId")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _owner(config: dict[str, Any]) -> Optional[int]:
    """macro_id to resolve against: None for explicit GLOBAL scope."""
    scope = str(config.get("scope", "")).upper()
    if scope == "GLOBAL":
        return None
    return _macro_id(config)


class VariableHandler(ActionHandler):
    """Shared plumbing for handlers that write through a VariableStore."""

    def __init__(self, variables: "VariableStore"):
        self._variables = variables

    def _name(self, config: dict[str, Any]) -> Optional[str]:
        name = config.get("variableName")
        return str(name) if name not in (None, "") else None


class SetVariableHandler(VariableHandler):

    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        name = self._name(config)
        if name is None:
            return ActionOutcome.failure("variableName is required")
        if "value" not in config:
            return ActionOutcome.failure("value is required")

        scope = str(config.get("scope", "GLOBAL")).upper()
        macro_id = _macro_id(config) if scope == "LOCAL" else None
        await self._variables.set(
            name,
            config["value"],
            scope=scope,
            macro_id=macro_id,
            type=str(config.get("type", "STRING")).upper(),
        )
        logger.info("Variable set: %s = %s (scope: %s)", name, config["value"], scope)
        return ActionOutcome.success()


class ArithmeticVariableHandler(VariableHandler):
    """
    Apply one arithmetic operation to an existing variable.

    Subclasses fix the operation and read the operand from their own key.
    """

    operation: Optional[str] = None
    operand_key = "operand"
    default_operand: Optional[str] = None

    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        name = self._name(config)
        if name is None:
            return ActionOutcome.failure("variableName is required")

        operation = self.operation or config.get("operation")
        if not operation:
            return ActionOutcome.failure("operation is required")
        operand = config.get(self.operand_key, self.default_operand)
        if operand is None:
            return ActionOutcome.failure(f"{self.operand_key} is required")

        new_value = await self._variables.evaluate(
            name, str(operation), str(operand), macro_id=_owner(config)
        )
        logger.info("Variable %s %s %s -> %s", name, operation, operand, new_value)
        return ActionOutcome.success()


class IncrementVariableHandler(ArithmeticVariableHandler):
    operation = "ADD"
    operand_key = "amount"
    default_operand = "1"


class DecrementVariableHandler(ArithmeticVariableHandler):
    operation = "SUBTRACT"
    operand_key = "amount"
    default_operand = "1"


class AppendVariableHandler(ArithmeticVariableHandler):
    operation = "APPEND"
    operand_key = "text"


class LogMessageHandler(ActionHandler):
    """Write a message to the automacro.actions logger."""

    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        message = config.get("message")
        if message is None:
            return ActionOutcome.failure("message is required")
        level = logging.getLevelName(str(config.get("level", "INFO")).upper())
        if not isinstance(level, int):
            level = logging.INFO
        logger.log(level, "%s", message, extra={"macro_id": config.get("macroId")})
        return ActionOutcome.success()


class ShowToastHandler(ActionHandler):
    """Print a message through the rich console."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or default_console

    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        message = config.get("message")
        if message is None:
            return ActionOutcome.failure("message is required")
        self._console.print(f"[bold cyan]>[/bold cyan] {escape(str(message))}", highlight=False)
        return ActionOutcome.success()


class DelayHandler(ActionHandler):
    """Pause the run for durationMs milliseconds (cancellable)."""

    def __init__(self, sleep=None):
        self._sleep = sleep or asyncio.sleep

    async def execute(self, config: dict[str, Any]) -> ActionOutcome:
        try:
            duration_ms = float(config.get("durationMs", 0))
        except (TypeError, ValueError):
            return ActionOutcome.failure(f"invalid durationMs: {config.get('durationMs')!r}")
        if duration_ms < 0:
            return ActionOutcome.failure("durationMs must be >= 0")
        await self._sleep(duration_ms / 1000)
        return ActionOutcome.success()


def builtin_handlers(variables: "VariableStore") -> dict[str, ActionHandler]:
    """Map of action type -> handler for every built-in action."""
    return {
        "SET_VARIABLE": SetVariableHandler(variables),
        "INCREMENT_VARIABLE": IncrementVariableHandler(variables),
        "DECREMENT_VARIABLE": DecrementVariableHandler(variables),
        "APPEND_VARIABLE": AppendVariableHandler(variables),
        "ARITHMETIC_VARIABLE": ArithmeticVariableHandler(variables),
        "LOG_MESSAGE": LogMessageHandler(),
        "SHOW_TOAST": ShowToastHandler(),
        "DELAY": DelayHandler(),
        "NOOP": NoOpHandler(),
    }
