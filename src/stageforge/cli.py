"""Command-line interface for the stage orchestration engine."""

from pathlib import Path
from typing import NoReturn

import click

from stageforge.config import load_engine_config
from stageforge.console import (
    console,
    print_error,
    print_failure,
    print_recovery,
    print_snapshot,
    print_stages,
    print_success,
)
from stageforge.domain.exceptions import HookVeto, StageforgeError
from stageforge.domain.models import StageOutcome, WorkflowStatus
from stageforge.engine import Engine, build_engine
from stageforge.logging_setup import setup_logging

DEFAULT_CONFIG = "stageforge.json"


class EngineContext:
    """Lazily built engine shared by the commands of one invocation."""

    def __init__(self, config_path: Path):
        self.config_path = config_path
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = build_engine(load_engine_config(self.config_path))
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.close()


def _fail(error: StageforgeError) -> NoReturn:
    hint = None
    if isinstance(error, HookVeto):
        hint = "Fix the hook's complaint and run 'advance' again."
    elif "awaits recovery" in str(error):
        hint = "Run 'stageforge recover' first."
    print_error(str(error), hint)
    raise SystemExit(1)


@click.group()
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG,
    envvar="STAGEFORGE_CONFIG",
    type=click.Path(dir_okay=False, path_type=Path),
    help=f"Path to engine configuration (default: ./{DEFAULT_CONFIG})",
)
@click.option("--log-file", default=None, type=click.Path(), help="Path to log file")
@click.option(
    "-v", "--verbose", is_flag=True, help="Enable verbose (DEBUG) logging to console"
)
@click.pass_context
def main(ctx: click.Context, config_path: Path, log_file: str | None, verbose: bool) -> None:
    """Drive projects through the stage lifecycle."""
    setup_logging(log_file=log_file, verbose=verbose)
    state = EngineContext(config_path)
    ctx.obj = state
    ctx.call_on_close(state.close)


@main.command()
@click.argument("project_ref")
@click.option("--id", "instance_id", default=None, help="Instance id (generated if omitted)")
@click.pass_obj
def start(state: EngineContext, project_ref: str, instance_id: str | None) -> None:
    """Create a workflow instance for PROJECT_REF."""
    try:
        instance = state.engine.orchestrator.start(project_ref, instance_id)
    except StageforgeError as e:
        _fail(e)
    console.print(instance.instance_id)


@main.command()
@click.argument("instance_id")
@click.pass_obj
def advance(state: EngineContext, instance_id: str) -> None:
    """Run the next stage of INSTANCE_ID."""
    try:
        result = state.engine.orchestrator.advance_stage(instance_id)
    except StageforgeError as e:
        _fail(e)

    record = result.record
    if result.outcome == StageOutcome.SUCCESS:
        print_success(
            f"Stage '{record.stage_id}' committed on attempt {record.attempt} "
            f"(status: {result.instance.status.value})"
        )
    else:
        print_failure(
            f"Stage '{record.stage_id}' failed after {len(result.attempts)} attempts",
            record.error,
        )
        raise SystemExit(1)


@main.command()
@click.argument("instance_ids", nargs=-1, required=True)
@click.pass_obj
def run(state: EngineContext, instance_ids: tuple[str, ...]) -> None:
    """Advance INSTANCE_IDS until they finish or a hook veto stops them."""
    try:
        results = state.engine.orchestrator.run_many(instance_ids)
    except StageforgeError as e:
        _fail(e)

    failed = False
    for instance_id, instance in results.items():
        console.print(f"{instance_id}: {instance.status.value}")
        failed = failed or instance.status == WorkflowStatus.FAILED
    if failed:
        raise SystemExit(1)


@main.command()
@click.argument("instance_id")
@click.pass_obj
def status(state: EngineContext, instance_id: str) -> None:
    """Show INSTANCE_ID and its history."""
    try:
        engine = state.engine
        snapshot = engine.orchestrator.get(instance_id)
    except StageforgeError as e:
        _fail(e)
    print_snapshot(snapshot, len(engine.orchestrator.registry.stages))


@main.command()
@click.argument("instance_id")
@click.pass_obj
def cancel(state: EngineContext, instance_id: str) -> None:
    """Cancel INSTANCE_ID."""
    try:
        state.engine.orchestrator.cancel(instance_id)
    except StageforgeError as e:
        _fail(e)
    print_success(f"Cancelled {instance_id}")


@main.command()
@click.argument("instance_id")
@click.pass_obj
def restart(state: EngineContext, instance_id: str) -> None:
    """Start a new instance resuming failed INSTANCE_ID."""
    try:
        instance = state.engine.orchestrator.restart(instance_id)
    except StageforgeError as e:
        _fail(e)
    console.print(instance.instance_id)


@main.command()
@click.pass_obj
def recover(state: EngineContext) -> None:
    """Repair active instances after a crash."""
    try:
        reports = state.engine.orchestrator.recover()
    except StageforgeError as e:
        _fail(e)
    print_recovery(reports)


@main.command()
@click.pass_obj
def stages(state: EngineContext) -> None:
    """List the configured lifecycle."""
    try:
        config = load_engine_config(state.config_path)
    except StageforgeError as e:
        _fail(e)
    print_stages(config.stages)


if __name__ == "__main__":
    main()
