"""Tests for action handlers, HandlerRegistry and ActionDispatcher.

Tests cover:
- Registry lookup, registration and the default handler set
- Dispatcher interpolation, macroId injection and exception capture
- Built-in variable, log, toast and delay handlers
"""

import asyncio
import logging
from io import StringIO

import pytest
from rich.console import Console

from automacro.errors import ActionExecutionFailure, NotFoundError, UnknownActionType
from automacro.handlers import (
    ActionDispatcher,
    ActionHandler,
    ActionOutcome,
    DelayHandler,
    HandlerRegistry,
    NoOpHandler,
    ShowToastHandler,
)
from automacro.schemas import VariableScope, VariableType


class RecordingHandler(ActionHandler):
    def __init__(self, outcome=None):
        self.configs = []
        self.outcome = outcome or ActionOutcome.success()

    async def execute(self, config):
        self.configs.append(config)
        return self.outcome


class RaisingHandler(ActionHandler):
    def __init__(self, exc):
        self.exc = exc

    async def execute(self, config):
        raise self.exc


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_register_and_get(self):
        registry = HandlerRegistry()
        handler = NoOpHandler()
        registry.register("VIBRATE", handler)
        assert registry.get("VIBRATE") is handler
        assert registry.has("VIBRATE")

    def test_unknown_type_raises(self):
        registry = HandlerRegistry()
        registry.register("NOOP", NoOpHandler())
        with pytest.raises(UnknownActionType) as exc_info:
            registry.get("LAUNCH_ROCKET")
        assert exc_info.value.action_type == "LAUNCH_ROCKET"
        assert exc_info.value.registered == ["NOOP"]

    def test_default_registry(self, variables):
        registry = HandlerRegistry.create_default(variables)
        assert registry.list_types() == [
            "APPEND_VARIABLE",
            "ARITHMETIC_VARIABLE",
            "DECREMENT_VARIABLE",
            "DELAY",
            "INCREMENT_VARIABLE",
            "LOG_MESSAGE",
            "NOOP",
            "SET_VARIABLE",
            "SHOW_TOAST",
        ]


# -----------------------------------------------------------------------------
# Dispatcher
# -----------------------------------------------------------------------------


class TestActionDispatcher:
    """Tests for ActionDispatcher.dispatch()."""

    @pytest.mark.asyncio
    async def test_interpolates_and_adds_macro_id(self, variables):
        await variables.set("name", "Ada")
        recorder = RecordingHandler()
        registry = HandlerRegistry()
        registry.register("RECORD", recorder)
        dispatcher = ActionDispatcher(registry, variables)

        outcome = await dispatcher.dispatch("RECORD", {"message": "Hi {name}"}, macro_id=3)

        assert outcome.ok
        assert recorder.configs == [{"message": "Hi Ada", "macroId": 3}]

    @pytest.mark.asyncio
    async def test_original_config_untouched(self, variables):
        recorder = RecordingHandler()
        registry = HandlerRegistry()
        registry.register("RECORD", recorder)
        config = {"message": "x"}

        await ActionDispatcher(registry, variables).dispatch("RECORD", config, macro_id=1)

        assert config == {"message": "x"}

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_failure(self, variables):
        registry = HandlerRegistry()
        registry.register("BOOM", RaisingHandler(RuntimeError("kaboom")))
        outcome = await ActionDispatcher(registry, variables).dispatch("BOOM", {})
        assert outcome == ActionOutcome.failure("kaboom")

    @pytest.mark.asyncio
    async def test_action_execution_failure_keeps_reason(self, variables):
        registry = HandlerRegistry()
        registry.register("VIBRATE", RaisingHandler(ActionExecutionFailure("VIBRATE", "no motor")))
        outcome = await ActionDispatcher(registry, variables).dispatch("VIBRATE", {})
        assert outcome == ActionOutcome.failure("no motor")

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, variables):
        registry = HandlerRegistry()
        registry.register("CANCEL", RaisingHandler(asyncio.CancelledError()))
        with pytest.raises(asyncio.CancelledError):
            await ActionDispatcher(registry, variables).dispatch("CANCEL", {})

    @pytest.mark.asyncio
    async def test_unknown_type_raises(self, dispatcher):
        with pytest.raises(UnknownActionType):
            await dispatcher.dispatch("NOPE", {})


# -----------------------------------------------------------------------------
# Variable handlers
# -----------------------------------------------------------------------------


class TestVariableHandlers:
    """Tests for SET / INCREMENT / DECREMENT / APPEND / ARITHMETIC."""

    @pytest.mark.asyncio
    async def test_set_variable_defaults_to_global(self, dispatcher, variables):
        outcome = await dispatcher.dispatch(
            "SET_VARIABLE", {"variableName": "mode", "value": "night"}, macro_id=1
        )
        assert outcome.ok
        stored = await variables.get_scoped("mode", VariableScope.GLOBAL)
        assert stored.value == "night"

    @pytest.mark.asyncio
    async def test_set_variable_local(self, dispatcher, variables):
        await dispatcher.dispatch(
            "SET_VARIABLE",
            {"variableName": "n", "value": 4, "scope": "LOCAL", "type": "NUMBER"},
            macro_id=7,
        )
        stored = await variables.get_scoped("n", VariableScope.LOCAL, 7)
        assert stored.value == "4"
        assert stored.type == VariableType.NUMBER

    @pytest.mark.asyncio
    async def test_set_variable_requires_name(self, dispatcher):
        outcome = await dispatcher.dispatch("SET_VARIABLE", {"value": "x"})
        assert not outcome.ok
        assert "variableName" in outcome.reason

    @pytest.mark.asyncio
    async def test_increment_default_amount(self, dispatcher, variables):
        await variables.set("count", "5")
        assert (await dispatcher.dispatch("INCREMENT_VARIABLE", {"variableName": "count"})).ok
        assert (await variables.get("count")).value == "6"

    @pytest.mark.asyncio
    async def test_decrement_amount(self, dispatcher, variables):
        await variables.set("count", "5")
        await dispatcher.dispatch("DECREMENT_VARIABLE", {"variableName": "count", "amount": 2})
        assert (await variables.get("count")).value == "3"

    @pytest.mark.asyncio
    async def test_increment_missing_variable_fails(self, dispatcher):
        outcome = await dispatcher.dispatch("INCREMENT_VARIABLE", {"variableName": "ghost"})
        assert not outcome.ok
        assert "ghost" in outcome.reason

    @pytest.mark.asyncio
    async def test_append(self, dispatcher, variables):
        await variables.set("log", "a")
        await dispatcher.dispatch("APPEND_VARIABLE", {"variableName": "log", "text": "b"})
        assert (await variables.get("log")).value == "ab"

    @pytest.mark.asyncio
    async def test_arithmetic_with_operation(self, dispatcher, variables):
        await variables.set("x", "9")
        await dispatcher.dispatch(
            "ARITHMETIC_VARIABLE",
            {"variableName": "x", "operation": "MODULO", "operand": "4"},
        )
        assert (await variables.get("x")).value == "1"

    @pytest.mark.asyncio
    async def test_arithmetic_unknown_operation_fails(self, dispatcher, variables):
        await variables.set("x", "9")
        outcome = await dispatcher.dispatch(
            "ARITHMETIC_VARIABLE",
            {"variableName": "x", "operation": "POWER", "operand": "2"},
        )
        assert not outcome.ok
        assert "Unknown variable operation" in outcome.reason

    @pytest.mark.asyncio
    async def test_update_prefers_local_row(self, dispatcher, variables):
        await variables.set("x", "10")
        await variables.set("x", "1", VariableScope.LOCAL, macro_id=2)

        await dispatcher.dispatch("INCREMENT_VARIABLE", {"variableName": "x"}, macro_id=2)

        assert (await variables.get_scoped("x", VariableScope.LOCAL, 2)).value == "2"
        assert (await variables.get_scoped("x", VariableScope.GLOBAL)).value == "10"

    @pytest.mark.asyncio
    async def test_explicit_global_scope_skips_local(self, dispatcher, variables):
        await variables.set("x", "10")
        await variables.set("x", "1", VariableScope.LOCAL, macro_id=2)

        await dispatcher.dispatch(
            "INCREMENT_VARIABLE", {"variableName": "x", "scope": "GLOBAL"}, macro_id=2
        )

        assert (await variables.get_scoped("x", VariableScope.GLOBAL)).value == "11"
        assert (await variables.get_scoped("x", VariableScope.LOCAL, 2)).value == "1"

    @pytest.mark.asyncio
    async def test_evaluate_errors_are_not_found(self, variables):
        with pytest.raises(NotFoundError):
            await variables.evaluate("ghost", "ADD", "1")


# -----------------------------------------------------------------------------
# Other handlers
# -----------------------------------------------------------------------------


class TestOtherHandlers:
    """Tests for LOG_MESSAGE / SHOW_TOAST / DELAY."""

    @pytest.mark.asyncio
    async def test_log_message(self, dispatcher, caplog):
        with caplog.at_level(logging.INFO, logger="automacro.actions"):
            outcome = await dispatcher.dispatch(
                "LOG_MESSAGE", {"message": "hello", "level": "warning"}, macro_id=1
            )
        assert outcome.ok
        record = next(r for r in caplog.records if r.name == "automacro.actions")
        assert record.getMessage() == "hello"
        assert record.levelno == logging.WARNING
        assert record.macro_id == 1

    @pytest.mark.asyncio
    async def test_show_toast_prints(self):
        buffer = StringIO()
        handler = ShowToastHandler(console=Console(file=buffer, width=80))
        outcome = await handler.execute({"message": "Battery low"})
        assert outcome.ok
        assert "Battery low" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_show_toast_prints_brackets_literally(self):
        buffer = StringIO()
        handler = ShowToastHandler(console=Console(file=buffer, width=80))
        outcome = await handler.execute({"message": "done [/bold] [red]x"})
        assert outcome.ok
        assert "done [/bold] [red]x" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_show_toast_requires_message(self):
        handler = ShowToastHandler(console=Console(file=StringIO()))
        outcome = await handler.execute({})
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_delay_uses_sleep(self, sleeper):
        handler = DelayHandler(sleep=sleeper)
        assert (await handler.execute({"durationMs": "250"})).ok
        assert sleeper.calls == [0.25]

    @pytest.mark.asyncio
    async def test_delay_rejects_negative(self, sleeper):
        handler = DelayHandler(sleep=sleeper)
        outcome = await handler.execute({"durationMs": -1})
        assert not outcome.ok
        assert sleeper.calls == []
