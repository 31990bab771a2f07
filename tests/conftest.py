import pytest

from automacro.cache import VariableCache
from automacro.constraints import ConstraintGate
from automacro.environment import StaticEnvironment
from automacro.handlers import ActionDispatcher, HandlerRegistry
from automacro.interpreter import Interpreter
from automacro.orchestrator import Orchestrator
from automacro.store import InMemoryMacroSource, InMemoryVariablePersistence
from automacro.variables import VariableStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested durations."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return VariableCache(capacity=500, clock=clock)


@pytest.fixture
def persistence():
    return InMemoryVariablePersistence()


@pytest.fixture
def variables(persistence, cache):
    return VariableStore(persistence, cache)


@pytest.fixture
def handlers(variables):
    return HandlerRegistry.create_default(variables)


@pytest.fixture
def dispatcher(handlers, variables):
    return ActionDispatcher(handlers, variables)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def interpreter(dispatcher, variables, sleeper):
    return Interpreter(dispatcher, variables, sleep=sleeper)


@pytest.fixture
def environment():
    return StaticEnvironment(battery_level=50, is_charging=False)


@pytest.fixture
def gate(environment):
    return ConstraintGate(environment)


@pytest.fixture
def source():
    return InMemoryMacroSource()


@pytest.fixture
def orchestrator(source, gate, interpreter, variables):
    return Orchestrator(source, gate, interpreter, timeout_s=5, variables=variables)
