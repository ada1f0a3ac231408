"""Rich console utilities for the stageforge CLI."""

from collections.abc import Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stageforge.application.recovery import RecoveryReport
from stageforge.domain.models import (
    StageOutcome,
    WorkflowSnapshot,
    WorkflowStatus,
)
from stageforge.domain.stages import StageRegistry

# Shared console instances
console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    WorkflowStatus.PENDING: "dim",
    WorkflowStatus.RUNNING: "cyan",
    WorkflowStatus.WAITING_ON_HOOK: "yellow",
    WorkflowStatus.COMPLETED: "bold green",
    WorkflowStatus.FAILED: "bold red",
    WorkflowStatus.CANCELLED: "magenta",
}

OUTCOME_STYLES = {
    StageOutcome.SUCCESS: "green",
    StageOutcome.FAILED: "red",
    StageOutcome.VETOED: "yellow",
}


def print_error(message: str, hint: str | None = None) -> None:
    """Print formatted error message to stderr."""
    content = Text(f"ERROR: {message}", style="bold red")
    if hint:
        content.append(f"\n\nHint: {hint}", style="yellow")
    error_console.print(Panel(content, title="Error", border_style="red"))


def print_success(message: str) -> None:
    """Print success message."""
    console.print(Panel(message, title="Success", border_style="green"))


def print_failure(message: str, details: str | None = None) -> None:
    """Print failure message."""
    content = Text(message, style="bold red")
    if details:
        content.append(f"\n{details}", style="dim")
    console.print(Panel(content, title="Failed", border_style="red"))


def print_snapshot(snapshot: WorkflowSnapshot, stage_count: int) -> None:
    """Print an instance header and its execution history."""
    instance = snapshot.instance
    info = Table(show_header=False, box=None)
    info.add_column("Key", style="cyan")
    info.add_column("Value")
    info.add_row("Instance", instance.instance_id)
    info.add_row("Project", instance.project_ref)
    info.add_row(
        "Status",
        Text(instance.status.value, style=STATUS_STYLES.get(instance.status, "")),
    )
    info.add_row("Progress", f"{instance.current_stage_index}/{stage_count}")
    if instance.in_flight:
        info.add_row(
            "In flight",
            f"{instance.in_flight.stage_id} attempt {instance.in_flight.attempt}",
        )
    if instance.parent_instance_id:
        info.add_row("Restarted from", instance.parent_instance_id)
    info.add_row("Updated", instance.updated_at)
    console.print(info)

    if not snapshot.history:
        return

    history = Table(title="History")
    history.add_column("#", justify="right")
    history.add_column("Stage")
    history.add_column("Attempt", justify="right")
    history.add_column("Outcome")
    history.add_column("Cost", justify="right")
    history.add_column("Tokens", justify="right")
    history.add_column("Error", overflow="fold")
    for record in snapshot.history:
        history.add_row(
            str(record.stage_order),
            record.stage_id,
            str(record.attempt),
            Text(record.outcome.value, style=OUTCOME_STYLES.get(record.outcome, "")),
            f"{record.cost:.4f}",
            str(record.token_usage.total_tokens),
            record.error or "",
        )
    console.print(history)


def print_stages(stages: StageRegistry) -> None:
    """Print the lifecycle table."""
    table = Table(title="Lifecycle")
    table.add_column("#", justify="right")
    table.add_column("Stage")
    table.add_column("Capabilities")
    table.add_column("Timeout", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Budget", justify="right")
    for stage in stages:
        table.add_row(
            str(stage.order),
            stage.stage_id,
            ", ".join(sorted(stage.required_capabilities)),
            f"{stage.timeout:g}s",
            str(stage.retry_policy.max_attempts),
            str(stage.context_budget),
        )
    console.print(table)


def print_recovery(reports: Sequence[RecoveryReport]) -> None:
    """Print recovery results."""
    if not reports:
        console.print("No active instances to recover.")
        return
    table = Table(title="Recovery")
    table.add_column("Instance")
    table.add_column("Index", justify="right")
    table.add_column("Status")
    table.add_column("Interrupted")
    table.add_column("Repaired")
    for report in reports:
        if report.error:
            table.add_row(report.instance_id, "", Text("error", style="red"), "", report.error)
            continue
        interrupted = (
            f"{report.interrupted.stage_id}#{report.interrupted.attempt}"
            if report.interrupted
            else ""
        )
        table.add_row(
            report.instance_id,
            str(report.stage_index),
            report.status.value if report.status else "",
            interrupted,
            "yes" if report.repaired else "no",
        )
    console.print(table)
