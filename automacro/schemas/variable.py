"""
Variable schema - named, typed, scoped values shared by macros.

Values are always stored as text and typed by an accompanying VariableType.
The triple (name, scope, macro_id) is unique: a GLOBAL variable is visible
to every macro, a LOCAL variable only to its owning macro, and the two are
addressed independently even when they share a name.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class VariableScope(str, Enum):
    """Visibility of a variable."""
    GLOBAL = "GLOBAL"
    LOCAL = "LOCAL"


class VariableType(str, Enum):
    """How a variable's text value should be read."""
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"


@dataclass
class Variable:
    """
    A stored variable row.

    Attributes:
        name: Variable name
        value: Current value as text
        scope: GLOBAL or LOCAL
        macro_id: Owning macro (present iff scope is LOCAL)
        type: STRING, NUMBER or BOOLEAN
        id: Persistent identifier assigned by the persistence layer
        created_at: When the row was first written
        updated_at: When the row was last written
    """
    name: str
    value: str
    scope: VariableScope = VariableScope.GLOBAL
    macro_id: Optional[int] = None
    type: VariableType = VariableType.STRING
    id: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.scope == VariableScope.LOCAL and self.macro_id is None:
            raise ValueError(f"LOCAL variable '{self.name}' requires a macro_id")
        if self.scope == VariableScope.GLOBAL and self.macro_id is not None:
            raise ValueError(f"GLOBAL variable '{self.name}' must not have a macro_id")

    @property
    def key(self) -> tuple[str, VariableScope, Optional[int]]:
        """The unique (name, scope, macro_id) address of this row."""
        return (self.name, self.scope, self.macro_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "scope": self.scope.value,
            "type": self.type.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.macro_id is not None:
            result["macro_id"] = self.macro_id
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Variable":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            value=str(data["value"]),
            scope=VariableScope(data.get("scope", "GLOBAL")),
            macro_id=data.get("macro_id"),
            type=VariableType(data.get("type", "STRING")),
            id=data.get("id"),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _utcnow(),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else _utcnow(),
        )
