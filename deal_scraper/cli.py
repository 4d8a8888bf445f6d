"""Command-line interface for the bank deal scraper."""

from __future__ import annotations

from contextlib import closing
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .errors import ConflictResolutionError, SourceConfigError
from .logging import get_logger
from .runtime import build_runtime
from .templates import template_config
from .time_utils import parse_date_bound

logger = get_logger(__name__)

app = typer.Typer(add_completion=False, help="Bank deal scraper")


@app.command("init-db")
def init_db_command() -> None:
    """Create the tables if they do not exist yet."""
    runtime = build_runtime()
    with closing(runtime):
        runtime.database.create_schema()
        typer.echo("Schema ready")


@app.command("templates")
def templates_command() -> None:
    runtime = build_runtime()
    with closing(runtime):
        _echo_json([template.to_dict() for template in runtime.service.templates()])


@app.command("test")
def test_command(
    url: str = typer.Option(..., "--url", help="Page to fetch"),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        exists=True,
        dir_okay=False,
        help="JSON file holding the scraper configuration",
    ),
    template: Optional[str] = typer.Option(None, "--template", help="Start from a preset template"),
) -> None:
    """Dry-run a configuration against a live page without storing anything."""
    tree = _load_tree(config_path, template)
    runtime = build_runtime()
    with closing(runtime):
        result = runtime.service.test_config(url, tree)
        _echo_json(result.to_dict())
        if not result.success:
            raise typer.Exit(code=1)


@app.command("add-source")
def add_source_command(
    name: str = typer.Option(..., "--name"),
    url: str = typer.Option(..., "--url"),
    config_path: Optional[Path] = typer.Option(None, "--config", exists=True, dir_okay=False),
    template: Optional[str] = typer.Option(None, "--template"),
    priority: int = typer.Option(0, "--priority"),
    inactive: bool = typer.Option(False, "--inactive", help="Store the source disabled"),
    source_id: Optional[int] = typer.Option(None, "--id", help="Update an existing source"),
) -> None:
    tree = _load_tree(config_path, template)
    runtime = build_runtime()
    with closing(runtime):
        try:
            saved = runtime.service.save_source(
                name=name,
                url=url,
                tree=tree,
                priority=priority,
                is_active=not inactive,
                source_id=source_id,
            )
        except SourceConfigError as exc:
            for problem in exc.problems:
                typer.echo(problem, err=True)
            raise typer.Exit(code=2) from exc
        _echo_json(saved.to_dict())


@app.command("run")
def run_command(
    source_id: Optional[int] = typer.Option(None, "--source-id", help="Run a single source"),
    run_all: bool = typer.Option(False, "--all", help="Run every active source"),
) -> None:
    """Run sources in the foreground and print their run records."""
    if (source_id is None) == (not run_all):
        raise typer.BadParameter("Pass exactly one of --source-id or --all")

    runtime = build_runtime()
    with closing(runtime):
        if run_all:
            tickets = runtime.orchestrator.run_all_active()
        else:
            try:
                tickets = [runtime.orchestrator.run_source(source_id)]
            except LookupError as exc:
                typer.echo(str(exc), err=True)
                raise typer.Exit(code=1) from exc

        records = []
        for ticket in tickets:
            if not ticket.accepted or ticket.future is None:
                typer.echo(f"Source {ticket.source_id}: {ticket.reason}", err=True)
                continue
            records.append(ticket.future.result().to_dict())
        _echo_json(records)


@app.command("runs")
def runs_command(
    source_id: Optional[int] = typer.Option(None, "--source-id"),
    status: Optional[str] = typer.Option(None, "--status", help="success, partial or failed"),
    since: Optional[str] = typer.Option(None, "--since", help="e.g. 2024-05-01 or '7 days ago'"),
    until: Optional[str] = typer.Option(None, "--until"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(20, "--page-size", min=1, max=200),
) -> None:
    runtime = build_runtime()
    with closing(runtime):
        tz = runtime.config.timezone
        try:
            runs, total = runtime.service.list_runs(
                source_id=source_id,
                status=status,
                started_after=parse_date_bound(since, tz),
                started_before=parse_date_bound(until, tz),
                page=page,
                page_size=page_size,
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        _echo_json({"total": total, "page": page, "runs": [run.to_dict() for run in runs]})


@app.command("conflicts")
def conflicts_command(
    status: Optional[str] = typer.Option("pending", "--status", help="pending, accepted or rejected"),
    source_id: Optional[int] = typer.Option(None, "--source-id"),
) -> None:
    runtime = build_runtime()
    with closing(runtime):
        conflicts = runtime.service.list_conflicts(status=status, source_id=source_id)
        _echo_json([conflict.to_dict() for conflict in conflicts])


@app.command("resolve")
def resolve_command(
    conflict_id: int = typer.Argument(..., help="Conflict id"),
    decision: str = typer.Argument(..., help="accept or reject"),
    resolved_by: Optional[str] = typer.Option(None, "--by", help="Operator name"),
) -> None:
    if decision not in {"accept", "reject"}:
        raise typer.BadParameter("Decision must be 'accept' or 'reject'")

    runtime = build_runtime()
    with closing(runtime):
        try:
            conflict = runtime.service.resolve_conflict(conflict_id, decision, resolved_by=resolved_by)
        except (LookupError, ConflictResolutionError) as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1) from exc
        _echo_json(conflict.to_dict())


@app.command("health")
def health_command(
    source_id: Optional[int] = typer.Option(None, "--source-id"),
) -> None:
    runtime = build_runtime()
    with closing(runtime):
        if source_id is None:
            report = runtime.service.overall_health()
        else:
            report = runtime.service.source_health(source_id).to_dict()
        _echo_json(report)


@app.command("service")
def service_command(
    host: str = typer.Option("0.0.0.0", "--host", help="Service bind host"),
    port: int = typer.Option(8000, "--port", help="Service port"),
) -> None:
    import uvicorn

    uvicorn.run(
        "deal_scraper.app:create_app",
        host=host,
        port=port,
        factory=True,
        log_level="info",
    )


def _load_tree(config_path: Optional[Path], template: Optional[str]) -> Dict[str, Any]:
    if config_path and template:
        raise typer.BadParameter("--config and --template cannot be used together")
    if template:
        try:
            return template_config(template)
        except LookupError as exc:
            raise typer.BadParameter(str(exc)) from exc
    if config_path is None:
        raise typer.BadParameter("Either --config or --template is required")
    try:
        return json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{config_path} is not valid JSON: {exc}") from exc


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def main():
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
