"""
VariableStore - scoped variable CRUD, arithmetic and interpolation.

All reads go through the VariableCache; every write invalidates exactly the
written variable's cache entries.

Scope resolution:
- get(name, macro_id): LOCAL row of macro_id first, then the GLOBAL row
- get(name): GLOBAL row only
- get_scoped(name, scope, macro_id): exactly one row, no fallback

Numeric policy (applied everywhere): text that does not parse as a number
counts as 0. Integral results render without a decimal point.
"""

import asyncio
import logging
import math
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional, Union

from automacro.cache import VariableCache, global_key, local_key
from automacro.errors import NotFoundError
from automacro.schemas import Variable, VariableScope, VariableType

if TYPE_CHECKING:
    from automacro.store import VariablePersistence

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_TTL_MS = 60_000
DEFAULT_LOCAL_TTL_MS = 30_000

# ${name} or {name}; the ${...} form wins when both could match
PLACEHOLDER_PATTERN = re.compile(r"\$\{([^{}]+)\}|\{([^{}]+)\}")

OPERATIONS = ("SET", "ADD", "SUBTRACT", "MULTIPLY", "DIVIDE", "MODULO", "APPEND")
OPERATION_ALIASES = {
    "+": "ADD",
    "-": "SUBTRACT",
    "*": "MULTIPLY",
    "/": "DIVIDE",
    "%": "MODULO",
}

RowKey = tuple[str, VariableScope, Optional[int]]


def parse_number(text: Any) -> Optional[float]:
    """Parse text as a finite number, or return None."""
    if isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        return float(text)
    try:
        value = float(str(text).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def coerce_number(text: Any) -> float:
    """Lenient numeric read: anything unparsable counts as 0."""
    value = parse_number(text)
    return 0.0 if value is None else value


def format_number(value: float) -> str:
    """Render a number as variable text ("6", "3.5"). Non-finite results count as 0."""
    if not math.isfinite(value):
        return "0"
    if value == int(value):
        return str(int(value))
    return repr(value)


def normalize_operation(operation: str) -> str:
    op = OPERATION_ALIASES.get(operation.strip(), operation.strip().upper())
    if op not in OPERATIONS:
        raise ValueError(f"Unknown variable operation: {operation}. Valid: {list(OPERATIONS)}")
    return op


def apply_operation(current: str, operation: str, operand: Optional[str]) -> str:
    """
    Compute the new text value of a variable.

    DIVIDE and MODULO by zero yield "0" instead of raising.
    """
    op = normalize_operation(operation)
    operand_text = "" if operand is None else str(operand)
    if op == "SET":
        return operand_text
    if op == "APPEND":
        return current + operand_text

    left = coerce_number(current)
    right = coerce_number(operand_text)
    if op == "ADD":
        result = left + right
    elif op == "SUBTRACT":
        result = left - right
    elif op == "MULTIPLY":
        result = left * right
    elif op == "DIVIDE":
        result = left / right if right != 0 else 0.0
    else:
        result = math.fmod(left, right) if right != 0 else 0.0
    return format_number(result)


def _as_scope(scope: Union[VariableScope, str]) -> VariableScope:
    return scope if isinstance(scope, VariableScope) else VariableScope(str(scope).upper())


def _as_type(var_type: Union[VariableType, str]) -> VariableType:
    return var_type if isinstance(var_type, VariableType) else VariableType(str(var_type).upper())


@dataclass
class _RowLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class VariableStore:
    """
    Scoped variable access for macro programs.

    Usage:
        store = VariableStore(InMemoryVariablePersistence(), VariableCache())
        await store.set("greeting", "World", VariableScope.GLOBAL)
        await store.interpolate("Hello ${greeting}!")   # "Hello World!"
        await store.evaluate("counter", "ADD", "1", macro_id=7)
    """

    def __init__(
        self,
        persistence: "VariablePersistence",
        cache: Optional[VariableCache] = None,
        global_ttl_ms: float = DEFAULT_GLOBAL_TTL_MS,
        local_ttl_ms: float = DEFAULT_LOCAL_TTL_MS,
    ) -> None:
        self._persistence = persistence
        self._cache = cache if cache is not None else VariableCache()
        self._global_ttl_ms = global_ttl_ms
        self._local_ttl_ms = local_ttl_ms
        self._row_locks: dict[RowKey, _RowLock] = {}

    @property
    def cache(self) -> VariableCache:
        return self._cache

    @property
    def persistence(self) -> "VariablePersistence":
        return self._persistence

    async def get(self, name: str, macro_id: Optional[int] = None) -> Optional[Variable]:
        """Resolve a variable: LOCAL of macro_id first, then GLOBAL."""
        if macro_id is not None:
            local = await self.get_scoped(name, VariableScope.LOCAL, macro_id)
            if local is not None:
                return local
        return await self.get_scoped(name, VariableScope.GLOBAL)

    async def get_scoped(
        self,
        name: str,
        scope: Union[VariableScope, str],
        macro_id: Optional[int] = None,
    ) -> Optional[Variable]:
        """Read exactly one (name, scope, macro_id) row through the cache."""
        scope = _as_scope(scope)
        if scope == VariableScope.LOCAL:
            if macro_id is None:
                raise ValueError("LOCAL lookup requires a macro_id")
            key, ttl = local_key(name, macro_id), self._local_ttl_ms
        else:
            key, ttl, macro_id = global_key(name), self._global_ttl_ms, None
        return await self._cache.get(
            key, ttl, lambda: self._persistence.find(name, scope, macro_id)
        )

    async def set(
        self,
        name: str,
        value: Any,
        scope: Union[VariableScope, str] = VariableScope.GLOBAL,
        macro_id: Optional[int] = None,
        type: Union[VariableType, str] = VariableType.STRING,
    ) -> Variable:
        """Create or update the unique (name, scope, macro_id) row."""
        scope = _as_scope(scope)
        async with self._row_lock((name, scope, macro_id)):
            return await self._write(name, str(value), scope, macro_id, _as_type(type))

    async def evaluate(
        self,
        name: str,
        operation: str,
        operand: Optional[Any] = None,
        macro_id: Optional[int] = None,
    ) -> str:
        """
        Apply an operation to a variable and store the result.

        The row is resolved LOCAL-then-GLOBAL. SET on a missing variable
        creates it (LOCAL when macro_id is given); any other operation on a
        missing variable raises NotFoundError. The read-modify-write holds
        the row's lock, so concurrent updates within one process are not lost.

        Returns:
            The new value as text
        """
        op = normalize_operation(operation)
        operand_text = None if operand is None else str(operand)
        target = await self.get(name, macro_id)

        if target is None:
            if op != "SET":
                raise NotFoundError(f"Variable not found: {name}")
            scope = VariableScope.LOCAL if macro_id is not None else VariableScope.GLOBAL
            created = await self.set(name, operand_text or "", scope, macro_id)
            return created.value

        row = target.key
        async with self._row_lock(row):
            # Re-read under the lock; another run may have written meanwhile
            current = self._persistence.find(*row) or target
            new_value = apply_operation(current.value, op, operand_text)
            if op == "SET":
                new_type = current.type
            elif op == "APPEND":
                new_type = VariableType.STRING
            else:
                new_type = VariableType.NUMBER
            await self._write(current.name, new_value, current.scope, current.macro_id, new_type)

        logger.debug("Variable %s %s %s -> %s", name, op, operand_text, new_value)
        return new_value

    async def interpolate(
        self,
        template: str,
        macro_id: Optional[int] = None,
        default_scope: Union[VariableScope, str] = VariableScope.GLOBAL,
    ) -> str:
        """
        Replace ${name} and {name} placeholders with variable values.

        With a macro_id, names resolve LOCAL-then-GLOBAL; without one they
        resolve in default_scope (GLOBAL unless a LOCAL owner is known).
        Unresolved placeholders become the empty string.
        """
        if "{" not in template:
            return template

        scope = _as_scope(default_scope)
        values: dict[str, str] = {}
        for match in PLACEHOLDER_PATTERN.finditer(template):
            name = (match.group(1) or match.group(2)).strip()
            if name in values:
                continue
            if macro_id is not None:
                variable = await self.get(name, macro_id)
            elif scope == VariableScope.GLOBAL:
                variable = await self.get_scoped(name, VariableScope.GLOBAL)
            else:
                variable = None
            values[name] = variable.value if variable is not None else ""

        return PLACEHOLDER_PATTERN.sub(
            lambda m: values[(m.group(1) or m.group(2)).strip()], template
        )

    async def interpolate_config(self, config: dict[str, Any], macro_id: Optional[int] = None) -> dict[str, Any]:
        """Interpolate every string inside a config map (recursing into dicts and lists)."""
        return {k: await self._interpolate_value(v, macro_id) for k, v in config.items()}

    async def _interpolate_value(self, value: Any, macro_id: Optional[int]) -> Any:
        if isinstance(value, str):
            return await self.interpolate(value, macro_id)
        if isinstance(value, dict):
            return await self.interpolate_config(value, macro_id)
        if isinstance(value, list):
            return [await self._interpolate_value(v, macro_id) for v in value]
        return value

    async def delete(
        self,
        name: str,
        scope: Union[VariableScope, str] = VariableScope.GLOBAL,
        macro_id: Optional[int] = None,
    ) -> bool:
        """Delete one row. Returns False if it did not exist."""
        scope = _as_scope(scope)
        existing = self._persistence.find(name, scope, macro_id)
        if existing is None or existing.id is None:
            return False
        self._persistence.delete(existing.id)
        await self._invalidate(name, scope, macro_id)
        return True

    async def delete_for_macro(self, macro_id: int) -> int:
        """Cascade-delete every LOCAL variable owned by macro_id."""
        owned = self._persistence.list(scope=VariableScope.LOCAL, macro_id=macro_id)
        self._persistence.delete_for_macro(macro_id)
        for variable in owned:
            await self._cache.invalidate(local_key(variable.name, macro_id))
        return len(owned)

    async def list(
        self,
        scope: Optional[Union[VariableScope, str]] = None,
        macro_id: Optional[int] = None,
    ) -> list[Variable]:
        """List stored variables straight from persistence."""
        return self._persistence.list(
            scope=_as_scope(scope) if scope is not None else None, macro_id=macro_id
        )

    async def _write(
        self,
        name: str,
        value: str,
        scope: VariableScope,
        macro_id: Optional[int],
        var_type: VariableType,
    ) -> Variable:
        existing = self._persistence.find(name, scope, macro_id)
        if existing is not None:
            existing.value = value
            existing.type = var_type
            existing.updated_at = datetime.now(timezone.utc)
            variable = self._persistence.upsert(existing)
        else:
            variable = self._persistence.upsert(
                Variable(name=name, value=value, scope=scope, macro_id=macro_id, type=var_type)
            )
        await self._invalidate(name, scope, macro_id)
        return variable

    async def _invalidate(self, name: str, scope: VariableScope, macro_id: Optional[int]) -> None:
        if scope == VariableScope.LOCAL:
            await self._cache.invalidate(local_key(name, macro_id))
        else:
            await self._cache.invalidate(global_key(name))

    @asynccontextmanager
    async def _row_lock(self, row: RowKey) -> AsyncIterator[None]:
        """Hold the row's lock; the lock is dropped once nobody holds or awaits it."""
        entry = self._row_locks.get(row)
        if entry is None:
            entry = self._row_locks[row] = _RowLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._row_locks[row]
