"""
automacro - Macro execution engine

Runs user-defined macros: ordered programs of actions with if/else
branching, bounded loops and scoped variables, gated by constraints.
Every run is recorded in an execution log.
"""

__version__ = "0.1.0"
__author__ = "Local Pipeline Team"


__all__ = [
    "AutomacroConfig",
    "load_config",
    "get_automacro_home",
    "Orchestrator",
    "Interpreter",
    "VariableStore",
    "VariableCache",
    "ConstraintGate",
]

from .config import AutomacroConfig, load_config, get_automacro_home
from .cache import VariableCache
from .variables import VariableStore
from .constraints import ConstraintGate
from .interpreter import Interpreter
from .orchestrator import Orchestrator
