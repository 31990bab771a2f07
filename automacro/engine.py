"""
Engine wiring - build the object graph from an AutomacroConfig.

    FileMacroSource ─┐
    ConstraintGate ──┼─> Orchestrator
    Interpreter ─────┘      └─> ActionDispatcher ─> HandlerRegistry
                            └─> VariableStore ─> VariableCache
                                              └─> FileVariablePersistence
"""

from dataclasses import dataclass
from typing import Optional

from automacro.cache import VariableCache
from automacro.config import AutomacroConfig
from automacro.constraints import ConstraintGate
from automacro.environment import Environment, SystemEnvironment
from automacro.handlers import ActionDispatcher, HandlerRegistry
from automacro.interpreter import Interpreter, Sleep
from automacro.orchestrator import Orchestrator
from automacro.store import FileMacroSource, FileVariablePersistence
from automacro.variables import VariableStore


@dataclass
class Engine:
    """The wired collaborators of one automacro process."""
    source: FileMacroSource
    variables: VariableStore
    handlers: HandlerRegistry
    gate: ConstraintGate
    interpreter: Interpreter
    orchestrator: Orchestrator


def build_engine(
    config: AutomacroConfig,
    environment: Optional[Environment] = None,
    sleep: Optional[Sleep] = None,
) -> Engine:
    """
    Wire file-backed stores, built-in handlers and the orchestrator.

    Args:
        config: Loaded configuration
        environment: Constraint environment (default SystemEnvironment)
        sleep: Delay coroutine for the interpreter (default asyncio.sleep)
    """
    source = FileMacroSource(
        config.home,
        macros_dir=config.macros_path,
        state_dir=config.state_path,
    )
    variables = VariableStore(
        FileVariablePersistence(config.state_path / "variables.json"),
        VariableCache(capacity=config.cache_capacity),
        global_ttl_ms=config.global_ttl_ms,
        local_ttl_ms=config.local_ttl_ms,
    )
    handlers = HandlerRegistry.create_default(variables)
    gate = ConstraintGate(environment or SystemEnvironment())
    interpreter = Interpreter(
        ActionDispatcher(handlers, variables),
        variables,
        sleep=sleep,
        max_steps=config.max_steps,
    )
    orchestrator = Orchestrator(
        source,
        gate,
        interpreter,
        timeout_s=config.macro_timeout_s,
        variables=variables,
    )
    return Engine(
        source=source,
        variables=variables,
        handlers=handlers,
        gate=gate,
        interpreter=interpreter,
        orchestrator=orchestrator,
    )
