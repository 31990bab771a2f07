"""Tests for MacroRegistry.

Tests cover:
- Loading YAML and JSON definitions by id and by name
- Linking definitions that omit jump indices
- Validation and parse errors surfacing as ProgramValidationError
- Caching, forget and content hashing
"""

import json

import pytest
import yaml

from automacro.errors import NotFoundError, ProgramValidationError
from automacro.registry import MacroRegistry, needs_linking
from automacro.schemas import InstructionKind, Macro

LOOP_MACRO = {
    "id": 3,
    "name": "blink",
    "constraints": [{"type": "battery_level", "config": {"operator": ">", "value": 10}}],
    "instructions": [
        {"kind": "FOR_LOOP", "config": {"iterations": 3, "loopVariable": "i"}},
        {"kind": "ACTION", "config": {"actionType": "SHOW_TOAST", "message": "{i}"},
         "delay_after_ms": 500},
        {"kind": "END_FOR"},
    ],
}


@pytest.fixture
def definitions(tmp_path):
    macros_dir = tmp_path / "macros"
    macros_dir.mkdir()
    (macros_dir / "blink.yaml").write_text(yaml.safe_dump(LOOP_MACRO))
    (macros_dir / "nested").mkdir()
    (macros_dir / "nested" / "quiet.json").write_text(json.dumps({
        "id": 4,
        "name": "quiet",
        "enabled": False,
        "actions": [{"kind": "ACTION", "config": {"actionType": "NOOP"}}],
    }))
    return macros_dir


class TestLoad:
    """Tests for load(), load_by_name() and find()."""

    def test_load_yaml(self, definitions):
        macro = MacroRegistry(definitions).load(3)

        assert macro.name == "blink"
        assert macro.constraints[0].type == "BATTERY_LEVEL"
        program = macro.program()
        assert program[0].config["endForIndex"] == 2
        assert program[1].delay_after_ms == 500

    def test_load_json_with_actions_alias(self, definitions):
        macro = MacroRegistry(definitions).load(4)
        assert macro.enabled is False
        assert macro.program()[0].kind is InstructionKind.ACTION

    def test_load_by_name(self, definitions):
        assert MacroRegistry(definitions).load_by_name("quiet").id == 4

    def test_missing_macro(self, definitions):
        registry = MacroRegistry(definitions)
        with pytest.raises(NotFoundError):
            registry.load(99)
        with pytest.raises(NotFoundError):
            registry.load_by_name("nobody")
        assert registry.find(99) is None

    def test_missing_directory_is_empty(self, tmp_path):
        registry = MacroRegistry(tmp_path / "absent")
        assert registry.list_macros() == []
        assert registry.find(1) is None

    def test_load_is_cached(self, definitions):
        registry = MacroRegistry(definitions)
        assert registry.load(3) is registry.load(3)

    def test_forget_reloads_from_disk(self, definitions):
        registry = MacroRegistry(definitions)
        registry.load(3)
        changed = dict(LOOP_MACRO, name="blink2")
        (definitions / "blink.yaml").write_text(yaml.safe_dump(changed))

        registry.forget(3)

        assert registry.load(3).name == "blink2"


class TestValidation:
    """Tests for invalid definitions."""

    def test_unbalanced_program(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("id: 1\nname: bad\ninstructions:\n  - kind: FOR_LOOP\n    config: {iterations: 1}\n")
        with pytest.raises(ProgramValidationError, match="never closed"):
            MacroRegistry(tmp_path).load_file(path)

    def test_unknown_kind(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("id: 1\nname: bad\ninstructions:\n  - kind: WHILE_LOOP\n")
        with pytest.raises(ProgramValidationError, match="Unknown instruction kind"):
            MacroRegistry(tmp_path).load_file(path)

    def test_missing_name(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"id": 1}))
        with pytest.raises(ProgramValidationError, match="Invalid macro"):
            MacroRegistry(tmp_path).load_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ProgramValidationError, match="Failed to load"):
            MacroRegistry(tmp_path).load_file(path)

    def test_preload_all_raises_on_invalid(self, definitions):
        (definitions / "broken.yaml").write_text("id: 9\nname: broken\ninstructions:\n  - kind: END_IF\n")
        registry = MacroRegistry(definitions)

        assert [m.id for m in registry.list_macros()] == [3, 4]
        with pytest.raises(ProgramValidationError):
            registry.preload_all()

    def test_non_integer_id_is_skipped(self, definitions):
        (definitions / "other.yaml").write_text("id: abc\nname: other\ninstructions: []\n")
        registry = MacroRegistry(definitions)

        assert registry.load(3).name == "blink"
        assert [m.id for m in registry.list_macros()] == [3, 4]
        with pytest.raises(NotFoundError):
            registry.load_by_name("other")


class TestHelpers:
    """Tests for needs_linking() and compute_hash()."""

    def test_needs_linking(self):
        unlinked = Macro.from_dict(LOOP_MACRO)
        assert needs_linking(unlinked) is True
        unlinked.program()[0].config["endForIndex"] = 2
        assert needs_linking(unlinked) is False

    def test_hash_ignores_run_metadata(self, definitions):
        macro = MacroRegistry(definitions).load(3)
        before = MacroRegistry.compute_hash(macro)
        macro.run_count = 12
        assert MacroRegistry.compute_hash(macro) == before

    def test_hash_changes_with_definition(self, definitions):
        macro = MacroRegistry(definitions).load(3)
        before = MacroRegistry.compute_hash(macro)
        macro.program()[1].config["message"] = "changed"
        assert MacroRegistry.compute_hash(macro) != before
