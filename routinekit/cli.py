"""
CLI interface for routinekit.

Provides commands to list and run routine and queue definitions.

Definitions are YAML/JSON files under the definitions directory
(<routinekit home>/definitions unless configured otherwise), loaded via
RoutineRegistry.
"""

import asyncio
import json
import time
from pathlib import Path

import click
from rich.table import Table

from routinekit import __version__
from routinekit.channel import LifecycleEvent
from routinekit.config import load_config
from routinekit.errors import RoutinekitError
from routinekit.registry import RoutineRegistry
from routinekit.utils import console, format_duration, print_error, print_success, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="routinekit")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Path to config.yaml (default: $ROUTINEKIT_HOME/config.yaml)")
@click.option("--definitions-dir", type=click.Path(path_type=Path), default=None,
              help="Directory containing routine and queue definitions")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def main(ctx, config_path, definitions_dir, log_level):
    """
    routinekit - Retrying, timeout-bounded routine runner.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except RoutinekitError as e:
        print_error(str(e))
        raise SystemExit(1)

    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=log_level or config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console(),
    )
    ctx.obj["config"] = config
    ctx.obj["registry"] = RoutineRegistry(definitions_dir or config.definitions_dir)


@main.command("list")
@click.pass_context
def list_cmd(ctx):
    """List available routine and queue definitions."""
    registry: RoutineRegistry = ctx.obj["registry"]
    ids = registry.list_definitions()
    if not ids:
        click.echo(f"No definitions found in {registry.definitions_dir}")
        return

    table = Table(title="Definitions")
    table.add_column("id")
    table.add_column("kind")
    for definition_id in ids:
        try:
            kind = registry.kind_of(definition_id)
        except RoutinekitError as e:
            kind = f"invalid: {e}"
        table.add_row(definition_id, kind)
    console.print(table)


@main.command("run")
@click.argument("definition_id")
@click.option("--inputs", "inputs_json", default="{}", help="Initial inputs as a JSON object")
@click.option("--events", is_flag=True, help="Echo every lifecycle event as JSON")
@click.pass_context
def run_cmd(ctx, definition_id, inputs_json, events):
    """Run a routine or queue by ID."""
    config = ctx.obj["config"]
    registry: RoutineRegistry = ctx.obj["registry"]

    try:
        inputs = json.loads(inputs_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--inputs")
    if not isinstance(inputs, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--inputs")

    def echo_event(event: LifecycleEvent) -> None:
        click.echo(json.dumps(event.to_dict(), default=str))

    start_time = time.time()
    try:
        if registry.kind_of(definition_id) == "queue":
            queue = registry.load_queue(definition_id, config.routine_defaults)
            if events:
                queue.channel.subscribe_all(echo_event)
                for routine in queue.routines:
                    routine.channel.subscribe_all(echo_event)
            results = asyncio.run(queue.run(inputs))
        else:
            routine = registry.load_routine(definition_id, config.routine_defaults)
            if events:
                routine.channel.subscribe_all(echo_event)
            results = asyncio.run(routine.execute(inputs))
    except RoutinekitError as e:
        print_error(f"{definition_id} failed: {e}")
        raise SystemExit(1)

    click.echo(json.dumps(results, indent=2, default=str))
    print_success(f"{definition_id} completed in {format_duration(time.time() - start_time)}")


if __name__ == "__main__":
    main()
