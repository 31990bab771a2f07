"""
Stores - Persist macros, run metadata, execution logs and variables.

Two collaborator contracts:
- MacroSource: macro definitions, run metadata and the execution log
- VariablePersistence: variable rows keyed by (name, scope, macro_id)

Storage backends:
- In-memory (for testing and embedding)
- File-based: macro definitions as YAML/JSON files read through
  MacroRegistry, everything else as JSON documents under a state directory
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml

from automacro.compiler import validate_macro
from automacro.registry import MacroRegistry
from automacro.schemas import ExecutionLogEntry, Macro, Variable, VariableScope

logger = logging.getLogger(__name__)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with open(path) as f:
        return json.load(f)


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def _select_logs(
    entries: list[ExecutionLogEntry],
    macro_id: Optional[int],
    limit: Optional[int],
) -> list[ExecutionLogEntry]:
    """Newest first, optionally filtered by macro and truncated."""
    selected = [e for e in entries if macro_id is None or e.macro_id == macro_id]
    selected.sort(key=lambda e: (e.executed_at, e.id or 0), reverse=True)
    if limit is not None:
        selected = selected[:limit]
    return selected


# =============================================================================
# MACRO SOURCE
# =============================================================================


class MacroSource(ABC):
    """
    Abstract source of macros and sink of run bookkeeping.

    The orchestrator needs load_macro, record_run and append_log; the rest
    serve authoring and inspection (CLI, tests).
    """

    @abstractmethod
    def load_macro(self, macro_id: int) -> Optional[Macro]:
        """
        Load a macro with its run metadata.

        Returns:
            The Macro, or None if it does not exist
        """
        pass

    @abstractmethod
    def record_run(self, macro_id: int, timestamp: datetime) -> None:
        """Set last_run_at and increment run_count."""
        pass

    @abstractmethod
    def append_log(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        """
        Append one execution log entry.

        Returns:
            The stored entry with its id assigned
        """
        pass

    @abstractmethod
    def save_macro(self, macro: Macro) -> Macro:
        """
        Validate and store a macro definition.

        Raises:
            ProgramValidationError: If the program is malformed
        """
        pass

    @abstractmethod
    def delete_macro(self, macro_id: int) -> bool:
        """Delete a macro and its run metadata. Returns False if absent."""
        pass

    @abstractmethod
    def list_macros(self) -> list[Macro]:
        pass

    @abstractmethod
    def get_logs(
        self,
        macro_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionLogEntry]:
        """Execution log entries, newest first."""
        pass


class InMemoryMacroSource(MacroSource):
    """
    In-memory macro source for testing.

    Everything lives in dictionaries and is lost when the process exits.
    """

    def __init__(self, macros: Optional[list[Macro]] = None):
        self._macros: dict[int, Macro] = {}
        self._logs: list[ExecutionLogEntry] = []
        for macro in macros or []:
            self.save_macro(macro)

    def load_macro(self, macro_id: int) -> Optional[Macro]:
        return self._macros.get(macro_id)

    def record_run(self, macro_id: int, timestamp: datetime) -> None:
        macro = self._macros.get(macro_id)
        if macro is None:
            return
        macro.last_run_at = timestamp
        macro.run_count += 1

    def append_log(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        stored = ExecutionLogEntry(**{**vars(entry), "id": len(self._logs) + 1})
        self._logs.append(stored)
        return stored

    def save_macro(self, macro: Macro) -> Macro:
        validate_macro(macro)
        self._macros[macro.id] = macro
        return macro

    def delete_macro(self, macro_id: int) -> bool:
        return self._macros.pop(macro_id, None) is not None

    def list_macros(self) -> list[Macro]:
        return [self._macros[k] for k in sorted(self._macros)]

    def get_logs(
        self,
        macro_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionLogEntry]:
        return _select_logs(self._logs, macro_id, limit)

    @property
    def logs(self) -> list[ExecutionLogEntry]:
        """All entries in append order."""
        return list(self._logs)


class FileMacroSource(MacroSource):
    """
    File-based macro source for development.

    Directory structure:
        {root}/
            macros/
                *.yaml | *.yml | *.json   # one macro definition per file
            state/
                runs.json                 # {macro_id: {last_run_at, run_count}}
                logs.json                 # execution log, append order
    """

    def __init__(
        self,
        root: Path | str,
        macros_dir: Optional[Path | str] = None,
        state_dir: Optional[Path | str] = None,
    ):
        """
        Args:
            root: Base directory
            macros_dir: Definition directory (default {root}/macros)
            state_dir: Run metadata and log directory (default {root}/state)
        """
        self._root = Path(root)
        self._macros_dir = Path(macros_dir) if macros_dir else self._root / "macros"
        self._state_dir = Path(state_dir) if state_dir else self._root / "state"
        self._registry = MacroRegistry(self._macros_dir)

    @property
    def registry(self) -> MacroRegistry:
        return self._registry

    @property
    def _runs_path(self) -> Path:
        return self._state_dir / "runs.json"

    @property
    def _logs_path(self) -> Path:
        return self._state_dir / "logs.json"

    def _apply_run_state(self, macro: Macro) -> Macro:
        state = _read_json(self._runs_path, {}).get(str(macro.id))
        macro = copy.deepcopy(macro)
        if state:
            macro.run_count = state.get("run_count", 0)
            if state.get("last_run_at"):
                macro.last_run_at = datetime.fromisoformat(state["last_run_at"])
        return macro

    def load_macro(self, macro_id: int) -> Optional[Macro]:
        macro = self._registry.find(macro_id)
        if macro is None:
            return None
        return self._apply_run_state(macro)

    def record_run(self, macro_id: int, timestamp: datetime) -> None:
        runs = _read_json(self._runs_path, {})
        state = runs.setdefault(str(macro_id), {"run_count": 0})
        state["run_count"] = state.get("run_count", 0) + 1
        state["last_run_at"] = timestamp.isoformat()
        _write_json(self._runs_path, runs)

    def append_log(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        logs = _read_json(self._logs_path, [])
        stored = ExecutionLogEntry(**{**vars(entry), "id": len(logs) + 1})
        logs.append(stored.to_dict())
        _write_json(self._logs_path, logs)
        return stored

    def save_macro(self, macro: Macro) -> Macro:
        validate_macro(macro)
        data = macro.to_dict()
        data.pop("last_run_at", None)
        data.pop("run_count", None)

        path = self._registry_path(macro.id) or self._macros_dir / f"macro_{macro.id}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            if path.suffix.lower() == ".json":
                json.dump(data, f, indent=2)
            else:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

        self._registry.forget(macro.id)
        return self._registry.load_file(path)

    def delete_macro(self, macro_id: int) -> bool:
        path = self._registry_path(macro_id)
        if path is None:
            return False
        path.unlink()
        self._registry.forget(macro_id)

        runs = _read_json(self._runs_path, {})
        if runs.pop(str(macro_id), None) is not None:
            _write_json(self._runs_path, runs)
        return True

    def list_macros(self) -> list[Macro]:
        return [self._apply_run_state(m) for m in self._registry.list_macros()]

    def get_logs(
        self,
        macro_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionLogEntry]:
        entries = [ExecutionLogEntry.from_dict(d) for d in _read_json(self._logs_path, [])]
        return _select_logs(entries, macro_id, limit)

    def _registry_path(self, macro_id: int) -> Optional[Path]:
        return self._registry.path_of(macro_id)


# =============================================================================
# VARIABLE PERSISTENCE
# =============================================================================


class VariablePersistence(ABC):
    """
    Abstract storage of variable rows.

    (name, scope, macro_id) is unique. Returned Variables are copies;
    callers write changes back through upsert().
    """

    @abstractmethod
    def find(
        self,
        name: str,
        scope: VariableScope,
        macro_id: Optional[int] = None,
    ) -> Optional[Variable]:
        pass

    @abstractmethod
    def upsert(self, variable: Variable) -> Variable:
        """
        Insert or replace the row addressed by variable.key.

        Returns:
            The stored row with its id assigned
        """
        pass

    @abstractmethod
    def delete(self, variable_id: int) -> None:
        pass

    @abstractmethod
    def delete_for_macro(self, macro_id: int) -> None:
        """Delete every LOCAL row owned by macro_id."""
        pass

    @abstractmethod
    def list(
        self,
        scope: Optional[VariableScope] = None,
        macro_id: Optional[int] = None,
    ) -> list[Variable]:
        pass


class InMemoryVariablePersistence(VariablePersistence):
    """In-memory variable rows for testing. Counts find() calls."""

    def __init__(self, variables: Optional[list[Variable]] = None):
        self._rows: dict[tuple, Variable] = {}
        self._next_id = 1
        self.find_calls = 0
        for variable in variables or []:
            self.upsert(variable)

    def find(
        self,
        name: str,
        scope: VariableScope,
        macro_id: Optional[int] = None,
    ) -> Optional[Variable]:
        self.find_calls += 1
        row = self._rows.get((name, scope, macro_id))
        return copy.copy(row) if row is not None else None

    def upsert(self, variable: Variable) -> Variable:
        existing = self._rows.get(variable.key)
        stored = copy.copy(variable)
        if existing is not None:
            stored.id = existing.id
            stored.created_at = existing.created_at
        elif stored.id is None:
            stored.id = self._next_id
        self._next_id = max(self._next_id, stored.id + 1)
        self._rows[stored.key] = stored
        return copy.copy(stored)

    def delete(self, variable_id: int) -> None:
        for key, row in list(self._rows.items()):
            if row.id == variable_id:
                del self._rows[key]

    def delete_for_macro(self, macro_id: int) -> None:
        for key, row in list(self._rows.items()):
            if row.scope == VariableScope.LOCAL and row.macro_id == macro_id:
                del self._rows[key]

    def list(
        self,
        scope: Optional[VariableScope] = None,
        macro_id: Optional[int] = None,
    ) -> list[Variable]:
        rows = [
            copy.copy(r) for r in self._rows.values()
            if (scope is None or r.scope == scope)
            and (macro_id is None or r.macro_id == macro_id)
        ]
        return sorted(rows, key=lambda r: (r.scope.value, r.macro_id or 0, r.name))


class FileVariablePersistence(InMemoryVariablePersistence):
    """
    Variable rows kept in one JSON document.

    The document is read once at construction and rewritten after every
    mutation.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)
        super().__init__()
        for data in _read_json(self._path, []):
            InMemoryVariablePersistence.upsert(self, Variable.from_dict(data))

    @property
    def path(self) -> Path:
        return self._path

    def _flush(self) -> None:
        _write_json(self._path, [r.to_dict() for r in self.list()])

    def upsert(self, variable: Variable) -> Variable:
        stored = super().upsert(variable)
        self._flush()
        return stored

    def delete(self, variable_id: int) -> None:
        super().delete(variable_id)
        self._flush()

    def delete_for_macro(self, macro_id: int) -> None:
        super().delete_for_macro(macro_id)
        self._flush()
