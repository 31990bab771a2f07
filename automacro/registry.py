"""
MacroRegistry - Load and validate macro definitions from storage.

The registry provides:
- Loading Macros from YAML or JSON files in a definitions directory tree
- Jump-index linking for files that omit elseIndex/endIfIndex/endForIndex
- Program validation before a macro is handed out
- Lookup by id or by name, with caching
- Content hashing of definitions

Example directory structure:
    macros/
        morning_routine.yaml
        battery/
            low_battery_warning.yaml
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from automacro.compiler import link_program, validate_macro
from automacro.errors import NotFoundError, ProgramValidationError
from automacro.schemas import InstructionKind, Macro

logger = logging.getLogger(__name__)

DEFINITION_PATTERNS = ("*.yaml", "*.yml", "*.json")

# Config key each control-flow kind needs before it can run
INDEX_KEYS = {
    InstructionKind.IF_CONDITION: "endIfIndex",
    InstructionKind.ELSE: "endIfIndex",
    InstructionKind.FOR_LOOP: "endForIndex",
}


def needs_linking(macro: Macro) -> bool:
    """True if any control-flow instruction lacks its jump index."""
    for instruction in macro.instructions:
        key = INDEX_KEYS.get(instruction.kind)
        if key is not None and key not in instruction.config:
            return True
    return False


class MacroRegistry:
    """
    Registry for loading and caching macro definitions.

    Every definition file holds exactly one macro. The file name is free;
    macros are addressed by the id and name inside the file.
    """

    def __init__(self, definitions_dir: Path | str):
        """
        Initialize the registry.

        Args:
            definitions_dir: Directory containing macro definition files
        """
        self._definitions_dir = Path(definitions_dir)
        self._cache: dict[int, Macro] = {}
        self._paths: dict[int, Path] = {}
        self._names: dict[str, int] = {}

    @property
    def definitions_dir(self) -> Path:
        return self._definitions_dir

    def load(self, macro_id: int) -> Macro:
        """
        Load a macro by id.

        Raises:
            NotFoundError: If no definition file declares this id
            ProgramValidationError: If the definition is invalid
        """
        if macro_id in self._cache:
            return self._cache[macro_id]

        self._scan()
        path = self._paths.get(macro_id)
        if path is None:
            raise NotFoundError(f"Macro definition not found: {macro_id}")
        return self.load_file(path)

    def load_by_name(self, name: str) -> Macro:
        """
        Load a macro by its name.

        Raises:
            NotFoundError: If no definition has this name
        """
        self._scan()
        macro_id = self._names.get(name)
        if macro_id is None:
            raise NotFoundError(f"Macro definition not found: {name}")
        return self.load(macro_id)

    def find(self, macro_id: int) -> Optional[Macro]:
        """Like load(), but returns None when the macro does not exist."""
        try:
            return self.load(macro_id)
        except NotFoundError:
            return None

    def load_file(self, path: Path | str) -> Macro:
        """
        Parse, link and validate one definition file, then cache it.

        Raises:
            ProgramValidationError: If the file cannot be parsed or the
                program is malformed
        """
        path = Path(path)
        try:
            data = self._load_file(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ProgramValidationError(f"Failed to load {path}: {e}")

        try:
            macro = Macro.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ProgramValidationError(f"Invalid macro in {path}: {e}")

        if needs_linking(macro):
            link_program(macro.program())
        validate_macro(macro)

        self._cache[macro.id] = macro
        self._paths[macro.id] = path
        self._names[macro.name] = macro.id
        logger.debug("Loaded macro %s (%s) from %s", macro.id, macro.name, path)
        return macro

    def _load_file(self, path: Path) -> dict[str, Any]:
        suffix = path.suffix.lower()
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}")
        if not isinstance(data, dict):
            raise ValueError("definition must be a mapping")
        return data

    def _definition_files(self) -> list[Path]:
        if not self._definitions_dir.exists():
            return []
        files: set[Path] = set()
        for pattern in DEFINITION_PATTERNS:
            files.update(self._definitions_dir.glob(f"**/{pattern}"))
        return sorted(files)

    def _scan(self) -> None:
        """Index id and name of every definition file not yet loaded."""
        known = set(self._paths.values())
        for path in self._definition_files():
            if path in known:
                continue
            try:
                data = self._load_file(path)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Skipping unreadable macro file %s: %s", path, e)
                continue
            if "id" not in data:
                logger.warning("Skipping macro file without id: %s", path)
                continue
            try:
                macro_id = int(data["id"])
            except (TypeError, ValueError):
                logger.warning("Skipping macro file with non-integer id %r: %s", data["id"], path)
                continue
            self._paths.setdefault(macro_id, path)
            if "name" in data:
                self._names.setdefault(str(data["name"]), macro_id)

    def list_macros(self) -> list[Macro]:
        """
        Load and return every valid macro, ordered by id.

        Invalid definitions are logged and left out.
        """
        self._scan()
        macros = []
        for macro_id in sorted(self._paths):
            try:
                macros.append(self.load(macro_id))
            except ProgramValidationError as e:
                logger.warning("Skipping invalid macro %s: %s", macro_id, e)
        return macros

    def preload_all(self) -> int:
        """
        Load every definition into the cache.

        Returns:
            Number of macros loaded

        Raises:
            ProgramValidationError: If any definition is invalid
        """
        self._scan()
        for macro_id in sorted(self._paths):
            self.load(macro_id)
        return len(self._paths)

    def path_of(self, macro_id: int) -> Optional[Path]:
        """Definition file of a macro, or None if no file declares its id."""
        if macro_id not in self._paths:
            self._scan()
        return self._paths.get(macro_id)

    def forget(self, macro_id: int) -> None:
        """Drop a macro from every index."""
        macro = self._cache.pop(macro_id, None)
        self._paths.pop(macro_id, None)
        if macro is not None:
            self._names.pop(macro.name, None)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._paths.clear()
        self._names.clear()

    @staticmethod
    def compute_hash(macro: Macro) -> str:
        """
        SHA256 of a macro definition for content addressing.

        Run metadata (last_run_at, run_count) is excluded so the hash only
        changes when the definition does.
        """
        data = macro.to_dict()
        data.pop("last_run_at", None)
        data.pop("run_count", None)
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
