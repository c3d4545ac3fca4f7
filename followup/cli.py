"""Command line interface for operating follow-up workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar

import typer
import yaml

from .config import load_config
from .engine import WorkflowEngine, get_engine, set_engine
from .errors import FollowupError

T = TypeVar("T")

app = typer.Typer(help="CLI for follow-up workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
logs_app = typer.Typer(help="Commands for inspecting and re-sending execution logs")
dispatch_app = typer.Typer(help="Commands for sending due messages")
bulk_app = typer.Typer(help="Commands for backfilling workflows by booking status")

app.add_typer(workflow_app, name="workflow")
app.add_typer(logs_app, name="logs")
app.add_typer(dispatch_app, name="dispatch")
app.add_typer(bulk_app, name="bulk")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except FollowupError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a YAML config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Follow-up workflows CLI entry point."""
    settings = load_config(str(config) if config else None)
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if config is not None:
        set_engine(WorkflowEngine.from_config(settings))


# ----------------------------------------------------------------------
# workflow


@workflow_app.command("list")
def workflow_list(
    trigger: Optional[str] = typer.Option(None, help="Only workflows for this trigger action"),
    active_only: bool = typer.Option(False, "--active-only", help="Hide inactive workflows"),
) -> None:
    """
    List workflow definitions.

    Example:
        followup workflow list --trigger no-show
        # Output: 3f6c...    no-show    active    2 step(s)    No-show nudges
    """
    engine = get_engine()
    definitions = _run(engine.definitions.list(trigger, active_only))
    if not definitions:
        typer.echo("No workflows found")
        return
    for wf in definitions:
        state = "active" if wf.is_active else "inactive"
        typer.echo(
            f"{wf.workflow_id}\t{wf.trigger_action}\t{state}\t"
            f"{len(wf.steps)} step(s)\t{wf.name or ''}"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow definition and its ordered steps."""
    engine = get_engine()
    wf = _run(engine.definitions.get(workflow_id))
    typer.echo(f"Workflow {wf.workflow_id}: {wf.trigger_action} ({'active' if wf.is_active else 'inactive'})")
    if wf.name:
        typer.echo(f"Name: {wf.name}")
    for step in wf.ordered_steps():
        typer.echo(
            f"- [{step.order}] {step.channel} {step.template_id} after {step.days_after} day(s)"
        )


@workflow_app.command("create")
def workflow_create(path: Path) -> None:
    """
    Create a workflow from a YAML or JSON file.

    Example:
        followup workflow create no_show.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        typer.secho("Workflow file must contain a mapping", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    engine = get_engine()
    wf = _run(engine.definitions.create(data))
    typer.echo(f"Created workflow {wf.workflow_id}")


@workflow_app.command("activate")
def workflow_activate(workflow_id: str) -> None:
    engine = get_engine()
    _run(engine.definitions.set_active(workflow_id, True))
    typer.echo(f"Workflow {workflow_id} activated")


@workflow_app.command("deactivate")
def workflow_deactivate(workflow_id: str) -> None:
    """Deactivate a workflow. Already scheduled messages still go out."""
    engine = get_engine()
    _run(engine.definitions.set_active(workflow_id, False))
    typer.echo(f"Workflow {workflow_id} deactivated")


@workflow_app.command("delete")
def workflow_delete(workflow_id: str) -> None:
    engine = get_engine()
    _run(engine.definitions.delete(workflow_id))
    typer.echo(f"Workflow {workflow_id} deleted")


# ----------------------------------------------------------------------
# logs


@logs_app.command("list")
def logs_list(
    status: Optional[str] = typer.Option(None, help="scheduled, executed or failed"),
    page: int = typer.Option(1, help="Page number, starting at 1"),
    limit: int = typer.Option(20, help="Entries per page (1-100)"),
) -> None:
    """List execution log entries, newest first."""
    engine = get_engine()
    result = _run(engine.logs.list(status=status, page=page, limit=limit))
    if not result.items:
        typer.echo("No workflow logs found")
        return
    for entry in result.items:
        typer.echo(
            f"{entry.log_id}\t{entry.status}\t{entry.booking_id}\t"
            f"{entry.step.channel}:{entry.step.template_id}\t{entry.scheduled_for.isoformat()}"
        )
    typer.echo(f"Page {result.page}/{result.pages} ({result.total} total)")


@logs_app.command("show")
def logs_show(log_id: str) -> None:
    engine = get_engine()
    entry = _run(engine.logs.get(log_id))
    _echo_json(entry.to_wire())


@logs_app.command("stats")
def logs_stats() -> None:
    engine = get_engine()
    stats = _run(engine.logs.stats())
    typer.echo(
        f"total={stats.total} scheduled={stats.scheduled} "
        f"executed={stats.executed} failed={stats.failed}"
    )


@logs_app.command("send-now")
def logs_send_now(log_id: str) -> None:
    """Send a scheduled message immediately, ignoring its due time."""
    engine = get_engine()
    entry = _run(engine.dispatcher.send_now(log_id))
    typer.echo(f"Workflow log {entry.log_id}: {entry.status}")
    if entry.status == "failed":
        typer.secho(entry.error or "Send failed", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@logs_app.command("retry")
def logs_retry(log_id: str) -> None:
    """Re-attempt a failed message as a new attempt record."""
    engine = get_engine()
    entry = _run(engine.dispatcher.retry(log_id))
    typer.echo(f"Retry {entry.log_id} (attempt {entry.attempt}): {entry.status}")
    if entry.status == "failed":
        typer.secho(entry.error or "Retry failed", fg=typer.colors.RED)
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# dispatch


@dispatch_app.command("run")
def dispatch_run(
    limit: Optional[int] = typer.Option(None, help="Maximum entries to send this run"),
) -> None:
    """
    Send every scheduled message that is due.

    Meant to be run periodically (cron, systemd timer). Failures are recorded
    on their log entries and do not stop the run.
    """
    engine = get_engine()
    summary = _run(engine.dispatcher.run_due(limit=limit))
    typer.echo(f"Executed: {summary.executed}, failed: {summary.failed}")


# ----------------------------------------------------------------------
# bulk


@bulk_app.command("preview")
def bulk_preview(status: str) -> None:
    """Show which bookings in STATUS already have workflows scheduled."""
    engine = get_engine()
    partition = _run(engine.backfill.preview(status))
    summary = partition.summary
    typer.echo(
        f"{partition.status} -> {partition.trigger_action}: {summary.total} booking(s), "
        f"{summary.with_scheduled_workflows} with workflows, "
        f"{summary.without_scheduled_workflows} without"
    )
    for booking in partition.bookings:
        marker = "yes" if booking.has_scheduled_workflows else "no"
        typer.echo(
            f"{booking.booking_id}\t{booking.client_email}\t{marker}\t"
            f"{booking.scheduled_workflows_count}"
        )


@bulk_app.command("trigger")
def bulk_trigger(
    status: str,
    include_existing: bool = typer.Option(
        False,
        "--include-existing",
        help="Also run bookings that already have workflows (dedup still applies)",
    ),
) -> None:
    """Schedule workflows for every booking currently in STATUS."""
    engine = get_engine()
    result = _run(engine.backfill.trigger(status, skip_existing=not include_existing))
    typer.echo(
        f"Total: {result.total}, processed: {result.processed}, "
        f"skipped: {result.skipped}, errors: {len(result.errors)}"
    )
    for error in result.errors:
        typer.secho(f"- {error.booking_id} ({error.client_email}): {error.error}", fg=typer.colors.RED)


# ----------------------------------------------------------------------


@app.command("event")
def event(
    booking_id: str,
    new_status: str,
    at: Optional[datetime] = typer.Option(
        None,
        "--at",
        formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"],
        help="When the status changed (UTC); defaults to now",
    ),
) -> None:
    """Report that BOOKING_ID moved to NEW_STATUS and schedule its workflows."""
    engine = get_engine()
    result = _run(engine.handle_lifecycle_event(booking_id, new_status, at))
    if result is None:
        typer.echo(f"Status '{new_status}' does not trigger workflows")
        return
    typer.echo(
        f"Scheduled {len(result.scheduled)} step(s) from {result.matched_workflows} "
        f"workflow(s); {result.skipped} already present"
    )


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(get_engine()), host=host, port=port)


if __name__ == "__main__":
    app()
