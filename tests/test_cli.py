import json

import pytest
import yaml
from click.testing import CliRunner

from automacro.cli import EXAMPLE_MACRO, main
from automacro.utils import console


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("AUTOMACRO_HOME", str(home))
    monkeypatch.delenv("AUTOMACRO_LOG_LEVEL", raising=False)
    # Keep rich tables from wrapping cell text
    monkeypatch.setattr(console, "width", 200)
    return home


@pytest.fixture
def initialized(runner, home):
    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    return home


def write_macro(home, data, filename):
    (home / "macros" / filename).write_text(yaml.safe_dump(data, sort_keys=False))


# -----------------------------------------------------------------------------
# init
# -----------------------------------------------------------------------------


def test_init_command_creates_files(runner, home):
    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Initialized automacro config" in result.output

    assert (home / "config.yaml").exists()
    assert (home / ".env").exists()
    assert (home / "macros" / "hello_counter.yaml").exists()

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["macros_dir"] == str(home / "macros")
    assert cfg["log_level"] == "INFO"


def test_init_does_not_overwrite_without_force(runner, home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("existing: true")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output

    assert (home / "config.yaml").read_text() == "existing: true"


def test_init_force_overwrites(runner, home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("existing: true")

    result = runner.invoke(main, ["init", "--force"])
    assert result.exit_code == 0

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert "macros_dir" in cfg


def test_commands_require_config(runner, home):
    result = runner.invoke(main, ["run", "1"])
    assert result.exit_code == 1
    assert "Config not loaded" in result.output


# -----------------------------------------------------------------------------
# run
# -----------------------------------------------------------------------------


def test_run_example_macro(runner, initialized):
    result = runner.invoke(main, ["run", "1"])
    assert result.exit_code == 0, result.output
    assert "Counted to 3" in result.output
    assert "✓ Macro 1: SUCCESS (5 actions)" in result.output

    runs = json.loads((initialized / "state" / "runs.json").read_text())
    assert runs["1"]["run_count"] == 1


def test_run_dry_run_dispatches_nothing(runner, initialized):
    result = runner.invoke(main, ["run", "1", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "DRY RUN MODE" in result.output
    assert "Counted to" not in result.output
    assert "SIMULATION_SUCCESS" in result.output
    assert not (initialized / "state" / "runs.json").exists()


def test_run_unknown_macro(runner, initialized):
    result = runner.invoke(main, ["run", "99"])
    assert result.exit_code == 1
    assert "Unknown macro: 99" in result.output


def test_run_skipped_by_battery_constraint(runner, initialized):
    write_macro(initialized, {
        "id": 2,
        "name": "needs_power",
        "constraints": [{"type": "BATTERY_LEVEL", "config": {"operator": ">", "value": 50}}],
        "instructions": [{"kind": "ACTION", "config": {"actionType": "SHOW_TOAST", "message": "go"}}],
    }, "needs_power.yaml")

    low = runner.invoke(main, ["run", "2", "--battery", "10"])
    high = runner.invoke(main, ["run", "2", "--battery", "90"])

    assert low.exit_code == 0
    assert "SKIPPED (Constraints not satisfied: BATTERY_LEVEL)" in low.output
    assert high.exit_code == 0
    assert "SUCCESS (1 actions)" in high.output


def test_run_invalid_definition(runner, initialized):
    (initialized / "macros" / "bad.yaml").write_text("id: 5\nname: bad\ninstructions:\n  - kind: END_IF\n")
    result = runner.invoke(main, ["run", "5"])
    assert result.exit_code == 1
    assert "Macro 5: FAILURE" in result.output
    assert "END_IF without a matching IF_CONDITION" in result.output


# -----------------------------------------------------------------------------
# macros
# -----------------------------------------------------------------------------


def test_macros_list(runner, initialized):
    result = runner.invoke(main, ["macros", "list"])
    assert result.exit_code == 0
    assert "hello_counter" in result.output


def test_macros_show_links_indices(runner, initialized):
    result = runner.invoke(main, ["macros", "show", "1"])
    assert result.exit_code == 0
    assert "Hash:" in result.output
    assert '"endForIndex": 3' in result.output
    assert '"elseIndex": 6' in result.output


def test_macros_validate(runner, home, tmp_path):
    good = tmp_path / "good.yaml"
    good.write_text(yaml.safe_dump(EXAMPLE_MACRO))
    bad = tmp_path / "bad.yaml"
    bad.write_text("id: 1\nname: bad\ninstructions:\n  - kind: BREAK\n")

    ok = runner.invoke(main, ["macros", "validate", str(good)])
    rejected = runner.invoke(main, ["macros", "validate", str(bad)])

    assert ok.exit_code == 0
    assert "is valid" in ok.output
    assert rejected.exit_code == 1
    assert "BREAK outside a FOR_LOOP" in rejected.output


# -----------------------------------------------------------------------------
# history / vars
# -----------------------------------------------------------------------------


def test_history_after_run(runner, initialized):
    runner.invoke(main, ["run", "1"])
    result = runner.invoke(main, ["history", "--macro", "1"])
    assert result.exit_code == 0
    assert "SUCCESS" in result.output


def test_history_empty(runner, initialized):
    result = runner.invoke(main, ["history"])
    assert result.exit_code == 0
    assert "No executions recorded." in result.output


def test_vars_set_and_list(runner, initialized):
    result = runner.invoke(main, ["vars", "set", "greeting", "hello"])
    assert result.exit_code == 0
    assert "greeting = hello (GLOBAL)" in result.output

    listed = runner.invoke(main, ["vars", "list", "--scope", "global"])
    assert "greeting" in listed.output
    assert "hello" in listed.output


def test_vars_set_local_requires_macro(runner, initialized):
    result = runner.invoke(main, ["vars", "set", "x", "1", "--scope", "LOCAL"])
    assert result.exit_code == 1


def test_run_leaves_local_variables(runner, initialized):
    runner.invoke(main, ["run", "1"])
    result = runner.invoke(main, ["vars", "list", "--macro", "1"])
    assert "counter" in result.output
    assert "LOCAL" in result.output
