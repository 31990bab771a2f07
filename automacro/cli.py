"""
CLI interface for the automacro engine.

Provides commands to author, inspect and run macros.

Macros are defined as YAML or JSON files in the configured macros directory
($AUTOMACRO_HOME/macros by default). Run metadata, the execution log and
variables live as JSON documents in the state directory.
"""

import asyncio
import json

import click
import yaml
from rich.table import Table

from automacro import __version__
from automacro.errors import ProgramValidationError
from automacro.utils import console, format_duration, setup_logging


EXAMPLE_MACRO = {
    "id": 1,
    "name": "hello_counter",
    "description": "Counts to three and reports the result",
    "enabled": True,
    "constraints": [],
    "instructions": [
        {"kind": "ACTION", "config": {
            "actionType": "SET_VARIABLE", "variableName": "counter",
            "value": "0", "scope": "LOCAL", "type": "NUMBER",
        }},
        {"kind": "FOR_LOOP", "config": {"iterations": 3, "loopVariable": "i"}},
        {"kind": "ACTION", "config": {"actionType": "INCREMENT_VARIABLE", "variableName": "counter"}},
        {"kind": "END_FOR", "config": {}},
        {"kind": "IF_CONDITION", "config": {"condition": {
            "leftOperand": "{counter}", "operator": ">=",
            "rightOperand": "3", "useVariables": True,
        }}},
        {"kind": "ACTION", "config": {"actionType": "SHOW_TOAST", "message": "Counted to {counter}"}},
        {"kind": "ELSE", "config": {}},
        {"kind": "ACTION", "config": {"actionType": "SHOW_TOAST", "message": "Stopped early at {counter}"}},
        {"kind": "END_IF", "config": {}},
    ],
}


@click.group()
@click.version_option(version=__version__, prog_name="automacro")
@click.pass_context
def main(ctx):
    """
    automacro - Macro execution engine.

    Run macros (device actions with branching, loops and variables)
    gated by constraints.
    """
    from automacro.config import ConfigError, load_config

    ctx.ensure_object(dict)
    try:
        config = ctx.obj["config"] = load_config()
    except (FileNotFoundError, ConfigError) as e:
        # init does not need a config; other commands check config_error
        ctx.obj["config_error"] = str(e)
        return
    setup_logging(config.log_path, config.log_level, config.log_format)


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'automacro init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _engine(ctx, environment=None):
    from automacro.engine import build_engine

    return build_engine(_require_config(ctx), environment=environment)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize automacro configuration and an example macro."""
    from automacro.config import default_config, get_automacro_home

    home = get_automacro_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg = default_config().to_dict()
    cfg["macros_dir"] = str(home / "macros")
    cfg["state_dir"] = str(home / "state")
    cfg["env_file"] = str(home / ".env")
    cfg_path.write_text(yaml.safe_dump(cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# AUTOMACRO_LOG_LEVEL=DEBUG\n")

    macros_dir = home / "macros"
    macros_dir.mkdir(exist_ok=True)
    example_path = macros_dir / "hello_counter.yaml"
    if not example_path.exists() or force:
        example_path.write_text(yaml.safe_dump(EXAMPLE_MACRO, sort_keys=False))

    click.echo(f"Initialized automacro config at {cfg_path}")
    click.echo(f"Example macro: {example_path}")


# =============================================================================
# Macro Commands
# =============================================================================

@main.group("macros")
def macros_group():
    """Manage and inspect macros."""
    pass


@macros_group.command("list")
@click.pass_context
def list_macros(ctx):
    """List available macros."""
    engine = _engine(ctx)
    macros = engine.source.list_macros()
    if not macros:
        click.echo("No macro definitions found.")
        return

    table = Table(title="Macros")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Instructions", justify="right")
    table.add_column("Runs", justify="right")
    table.add_column("Last run")
    for macro in macros:
        table.add_row(
            str(macro.id),
            macro.name,
            "yes" if macro.enabled else "no",
            str(len(macro.instructions)),
            str(macro.run_count),
            macro.last_run_at.isoformat(timespec="seconds") if macro.last_run_at else "-",
        )
    console.print(table)


@macros_group.command("show")
@click.argument("macro_id", type=int)
@click.pass_context
def show_macro(ctx, macro_id: int):
    """Show a macro definition with its linked jump indices."""
    engine = _engine(ctx)
    try:
        macro = engine.source.load_macro(macro_id)
    except ProgramValidationError as e:
        click.echo(f"✗ Invalid macro {macro_id}: {e}", err=True)
        raise SystemExit(1)
    if macro is None:
        click.echo(f"✗ Unknown macro: {macro_id}", err=True)
        raise SystemExit(1)

    click.echo(f"Macro: {macro.id} ({macro.name})")
    click.echo(f"Definition: {engine.source.registry.path_of(macro_id)}")
    click.echo(f"Hash: {engine.source.registry.compute_hash(macro)}")
    click.echo()
    click.echo(json.dumps(macro.to_dict(), indent=2))


@macros_group.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def validate_macro_file(path: str):
    """Validate a macro definition file."""
    from automacro.registry import MacroRegistry

    try:
        macro = MacroRegistry(".").load_file(path)
    except ProgramValidationError as e:
        click.echo(f"✗ {path}: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ {path}: macro {macro.id} ({macro.name}) is valid, {len(macro.instructions)} instructions")


# =============================================================================
# Run Command
# =============================================================================

@main.command("run")
@click.argument("macro_id", type=int)
@click.option("--dry-run", is_flag=True, help="Evaluate the program without dispatching actions")
@click.option("--battery", type=click.IntRange(0, 100), help="Override the battery level reading")
@click.option("--charging/--not-charging", default=None, help="Override the charging reading")
@click.pass_context
def run(ctx, macro_id: int, dry_run: bool, battery, charging):
    """
    Run a macro by ID.

    Examples:

        automacro run 1

        automacro run 1 --dry-run

        automacro run 1 --battery 15 --not-charging
    """
    from automacro.environment import StaticEnvironment

    environment = None
    if battery is not None or charging is not None:
        environment = StaticEnvironment(battery_level=battery, is_charging=charging)

    engine = _engine(ctx, environment)

    if dry_run:
        click.echo("=== DRY RUN MODE === (actions are not dispatched)")

    result = asyncio.run(engine.orchestrator.execute(macro_id, dry_run=dry_run))

    status = result.status.value
    if result.ok:
        click.echo(f"✓ Macro {macro_id}: {status} ({result.actions_executed} actions)")
    elif status == "SKIPPED":
        click.echo(f"- Macro {macro_id}: SKIPPED ({result.reason})")
    elif status == "NOT_FOUND":
        click.echo(f"✗ Unknown macro: {macro_id}", err=True)
        raise SystemExit(1)
    else:
        click.echo(f"✗ Macro {macro_id}: {status} ({result.reason})", err=True)
        raise SystemExit(1)


@main.command("history")
@click.option("--macro", "macro_id", type=int, help="Only entries of this macro")
@click.option("--limit", default=20, show_default=True, type=int, help="Maximum entries")
@click.pass_context
def history(ctx, macro_id, limit: int):
    """Show the execution log, newest first."""
    engine = _engine(ctx)
    entries = engine.source.get_logs(macro_id=macro_id, limit=limit)
    if not entries:
        click.echo("No executions recorded.")
        return

    table = Table(title="Execution log")
    table.add_column("Executed at")
    table.add_column("Macro", justify="right")
    table.add_column("Status")
    table.add_column("Actions", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Message")
    for entry in entries:
        table.add_row(
            entry.executed_at.isoformat(timespec="seconds"),
            str(entry.macro_id),
            entry.status.value,
            str(entry.actions_executed),
            format_duration(entry.duration_ms),
            entry.error_message or "",
        )
    console.print(table)


# =============================================================================
# Variable Commands
# =============================================================================

@main.group("vars")
def vars_group():
    """Inspect and set variables."""
    pass


@vars_group.command("list")
@click.option("--scope", type=click.Choice(["GLOBAL", "LOCAL"], case_sensitive=False))
@click.option("--macro", "macro_id", type=int, help="Only LOCAL variables of this macro")
@click.pass_context
def list_vars(ctx, scope, macro_id):
    """List stored variables."""
    engine = _engine(ctx)
    variables = asyncio.run(engine.variables.list(scope=scope, macro_id=macro_id))
    if not variables:
        click.echo("No variables.")
        return

    table = Table(title="Variables")
    table.add_column("Name")
    table.add_column("Value")
    table.add_column("Type")
    table.add_column("Scope")
    table.add_column("Macro", justify="right")
    for variable in variables:
        table.add_row(
            variable.name,
            variable.value,
            variable.type.value,
            variable.scope.value,
            str(variable.macro_id) if variable.macro_id is not None else "",
        )
    console.print(table)


@vars_group.command("set")
@click.argument("name")
@click.argument("value")
@click.option("--scope", default="GLOBAL", show_default=True,
              type=click.Choice(["GLOBAL", "LOCAL"], case_sensitive=False))
@click.option("--macro", "macro_id", type=int, help="Owning macro (required for LOCAL)")
@click.option("--type", "var_type", default="STRING", show_default=True,
              type=click.Choice(["STRING", "NUMBER", "BOOLEAN"], case_sensitive=False))
@click.pass_context
def set_var(ctx, name: str, value: str, scope: str, macro_id, var_type: str):
    """Create or update a variable."""
    engine = _engine(ctx)
    scope = scope.upper()
    if scope == "GLOBAL":
        macro_id = None
    try:
        variable = asyncio.run(engine.variables.set(
            name, value, scope=scope, macro_id=macro_id, type=var_type.upper()
        ))
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ {variable.name} = {variable.value} ({variable.scope.value})")


if __name__ == "__main__":
    main()
