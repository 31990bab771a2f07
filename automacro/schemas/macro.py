"""
Macro schema - the user-defined automation program.

A Macro holds an ordered program of Instructions plus the Constraints that
gate it. Instruction order is the total order of each instruction's
explicit execution_order, never insertion order. Control-flow instructions
carry precomputed jump targets (indices into the sorted program).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class InstructionKind(str, Enum):
    """Kind tag of a program instruction."""
    ACTION = "ACTION"
    IF_CONDITION = "IF_CONDITION"
    ELSE = "ELSE"
    END_IF = "END_IF"
    FOR_LOOP = "FOR_LOOP"
    END_FOR = "END_FOR"
    BREAK = "BREAK"
    CONTINUE = "CONTINUE"

    @property
    def is_control_flow(self) -> bool:
        return self is not InstructionKind.ACTION

    @classmethod
    def from_string(cls, value: str) -> "InstructionKind":
        """Parse a kind tag, case-insensitively."""
        try:
            return cls(value.upper())
        except ValueError:
            valid = [k.value for k in cls]
            raise ValueError(f"Unknown instruction kind: {value}. Valid kinds: {valid}")


@dataclass
class Instruction:
    """
    One element of a macro's program.

    Attributes:
        kind: ACTION or a control-flow marker
        config: Opaque key/value map; meaning depends on kind
            ACTION: actionType + handler parameters
            IF_CONDITION: condition, elseIndex (optional), endIfIndex
            ELSE: endIfIndex
            FOR_LOOP: iterations, loopVariable (optional), endForIndex
        execution_order: Position in the program's total order
        delay_after_ms: Pause after a successful ACTION step
        id: Optional persistent identifier
    """
    kind: InstructionKind
    config: dict[str, Any] = field(default_factory=dict)
    execution_order: int = 0
    delay_after_ms: int = 0
    id: Optional[int] = None

    @property
    def action_type(self) -> Optional[str]:
        """The configured action type (ACTION only)."""
        if self.kind is not InstructionKind.ACTION:
            return None
        value = self.config.get("actionType")
        return str(value) if value is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "config": self.config,
            "execution_order": self.execution_order,
        }
        if self.delay_after_ms:
            result["delay_after_ms"] = self.delay_after_ms
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_order: int = 0) -> "Instruction":
        """Deserialize from dictionary."""
        return cls(
            kind=InstructionKind.from_string(data["kind"]),
            config=dict(data.get("config", {})),
            execution_order=int(data.get("execution_order", default_order)),
            delay_after_ms=int(data.get("delay_after_ms", 0)),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class Constraint:
    """
    A precondition evaluated against live environment state.

    Attributes:
        type: Constraint type tag (e.g. BATTERY_LEVEL, TIME_RANGE)
        config: Type-specific parameters
    """
    type: str
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "config": self.config}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Constraint":
        return cls(type=str(data["type"]).upper(), config=dict(data.get("config", {})))


@dataclass
class Macro:
    """
    A macro definition plus its run metadata.

    Attributes:
        id: Unique macro identifier
        name: Human-readable name
        instructions: Program instructions (any insertion order)
        constraints: Gate evaluated before every run
        enabled: Disabled macros are skipped
        description: Free text
        last_run_at: Timestamp of the last completed run
        run_count: Number of completed runs
    """
    id: int
    name: str
    instructions: list[Instruction] = field(default_factory=list)
    constraints: list[Constraint] = field(default_factory=list)
    enabled: bool = True
    description: str = ""
    last_run_at: Optional[datetime] = None
    run_count: int = 0

    def program(self) -> list[Instruction]:
        """Instructions in execution order; jump indices refer to this list."""
        return sorted(self.instructions, key=lambda i: i.execution_order)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "instructions": [i.to_dict() for i in self.program()],
            "constraints": [c.to_dict() for c in self.constraints],
            "run_count": self.run_count,
        }
        if self.description:
            result["description"] = self.description
        if self.last_run_at is not None:
            result["last_run_at"] = self.last_run_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Macro":
        """
        Deserialize from dictionary.

        "actions" is accepted as an alias for "instructions". Instructions
        without an explicit execution_order take their list position.
        """
        raw_instructions = data.get("instructions", data.get("actions", [])) or []
        last_run_at = None
        if data.get("last_run_at"):
            last_run_at = datetime.fromisoformat(data["last_run_at"])
        return cls(
            id=int(data["id"]),
            name=data["name"],
            instructions=[
                Instruction.from_dict(item, default_order=n)
                for n, item in enumerate(raw_instructions)
            ],
            constraints=[Constraint.from_dict(c) for c in data.get("constraints", []) or []],
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            last_run_at=last_run_at,
            run_count=int(data.get("run_count", 0)),
        )
