"""Thin CLI wrapper for archpush.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from archpush import __version__
from archpush.config import get_settings, print_settings_json

app = typer.Typer(
    name="archpush",
    help="Multi-architecture image builder - build and push one image per platform",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

DEFAULT_DEFINITION = Path("archpush.yaml")


def _configure_logging(level: str) -> None:
    """Route archpush log records to stderr through rich."""
    package_logger = logging.getLogger("archpush")
    package_logger.handlers = [
        RichHandler(console=err_console, show_path=False, markup=False)
    ]
    package_logger.setLevel(level)


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data))


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"archpush version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Multi-architecture image builder - build and push one image per platform."""
    _configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
        return

    timeout_display = (
        str(settings.build_timeout) if settings.build_timeout else "(none)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Logs directory:      {settings.logs_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Docker binary:       {settings.docker_bin}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Cache generations:   {settings.cache_keep_generations}")
    console.print()
    console.print("[bold]Registry:[/bold]")
    console.print(f"  Username:            {settings.registry_username or '(unset)'}")
    console.print(
        f"  Token:               {'(set)' if settings.registry_token else '(unset)'}"
    )
    console.print(f"  Login retries:       {settings.auth_retries}")
    console.print(f"  Retry backoff:       {settings.auth_backoff_seconds}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Auth timeout:        {settings.auth_timeout}")
    console.print(f"  Build timeout:       {timeout_display}")


def _load_definition_or_exit(path: Path) -> Any:
    from archpush.definition import load_definition
    from archpush.errors import DefinitionError

    try:
        return load_definition(path)
    except DefinitionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


def _resolve_trigger_or_exit(event: str, ref: str | None, pattern: str) -> Any:
    from archpush.errors import TriggerError
    from archpush.trigger import resolve_trigger

    if not ref:
        console.print("[red]No triggering reference: pass --ref or set GITHUB_REF[/red]")
        raise typer.Exit(code=1)
    try:
        return resolve_trigger(event, ref, pattern)
    except TriggerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def run(
    definition_path: Annotated[
        Path,
        typer.Option("--definition", "-d", help="Run definition file (YAML or JSON)"),
    ] = DEFAULT_DEFINITION,
    ref: Annotated[
        str | None,
        typer.Option(
            "--ref", envvar="GITHUB_REF", help="Triggering reference (e.g. refs/tags/v1.0)"
        ),
    ] = None,
    event: Annotated[
        str,
        typer.Option(
            "--event",
            envvar="GITHUB_EVENT_NAME",
            help="Triggering event (workflow_dispatch or push)",
        ),
    ] = "workflow_dispatch",
    no_history: Annotated[
        bool,
        typer.Option("--no-history", help="Do not record the run in the history database"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build and push one image per platform for a trigger.

    Exits 0 only if every platform was published.
    """
    from archpush.errors import ArchpushError
    from archpush.pipeline import credentials_from_settings, run_release

    settings = get_settings()
    definition = _load_definition_or_exit(definition_path)
    trigger = _resolve_trigger_or_exit(event, ref, definition.trigger_pattern)

    try:
        report = run_release(
            definition,
            trigger,
            credentials_from_settings(settings),
            settings=settings,
        )
    except ArchpushError as e:
        if json_output:
            _print_json({"success": False, "code": e.code, "error": str(e), "results": []})
        else:
            console.print(f"[red]Run aborted ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    if not no_history:
        _record_history(report)

    if json_output:
        _print_json(report.to_dict())
    else:
        _print_report(report)

    raise typer.Exit(code=report.exit_code)


def _record_history(report: Any) -> None:
    from sqlalchemy.exc import SQLAlchemyError

    from archpush.db import (
        create_all_tables,
        get_engine,
        get_session,
        get_session_factory,
    )
    from archpush.history.service import record_run

    try:
        engine = get_engine()
        create_all_tables(engine)
        with get_session(get_session_factory(engine)) as session:
            record_run(session, report)
    except (SQLAlchemyError, OSError) as e:
        err_console.print(f"[yellow]Run not recorded in history: {e}[/yellow]")


def _print_report(report: Any) -> None:
    console.print(f"[bold]{report.image_name}:{report.ref_name}[/bold]")
    console.print()
    for result in report.results:
        if result.success:
            console.print(
                f"  [green]✓ {result.platform.docker_platform}[/green]  "
                f"{result.image_digest or 'digest unknown'}"
            )
        else:
            console.print(
                f"  [red]✗ {result.platform.docker_platform}[/red]  "
                f"{result.error_code}: {result.error_detail}"
            )
            if result.log_path:
                console.print(f"    Log: {result.log_path}")
    console.print()
    owner = report.floating_tag_platform
    if owner is not None:
        console.print(f"Shared tags resolve to the {owner.docker_platform} image")
    if report.success:
        console.print(f"[green]All {len(report.results)} platform(s) published[/green]")
    else:
        failed = ", ".join(p.value for p in report.failed_platforms)
        console.print(f"[red]Failed platform(s): {failed}[/red]")


@app.command()
def plan(
    definition_path: Annotated[
        Path,
        typer.Option("--definition", "-d", help="Run definition file (YAML or JSON)"),
    ] = DEFAULT_DEFINITION,
    ref: Annotated[
        str | None,
        typer.Option("--ref", envvar="GITHUB_REF", help="Triggering reference"),
    ] = None,
    event: Annotated[
        str,
        typer.Option("--event", envvar="GITHUB_EVENT_NAME", help="Triggering event"),
    ] = "workflow_dispatch",
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the builds a run would execute, without running them."""
    import shlex

    from archpush.errors import ArchpushError
    from archpush.pipeline import plan_run

    settings = get_settings()
    definition = _load_definition_or_exit(definition_path)
    trigger = _resolve_trigger_or_exit(event, ref, definition.trigger_pattern)

    try:
        planned = plan_run(
            definition, trigger, settings=settings, username=settings.registry_username
        )
    except ArchpushError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(
            [
                {
                    "platform": p.request.target_platform.value,
                    "tags": list(p.request.tags),
                    "command": p.command,
                }
                for p in planned
            ]
        )
        return

    console.print(f"[bold]{len(planned)} build(s) for {trigger.ref_name}:[/bold]")
    console.print()
    for index, p in enumerate(planned, start=1):
        console.print(f"  [{index}] {p.request.target_platform.docker_platform}")
        console.print(f"    Tags: {', '.join(p.request.tags)}")
        console.print(f"    $ {shlex.join(p.command)}", markup=False)
        console.print()


definition_app = typer.Typer(help="Inspect run definitions")
app.add_typer(definition_app, name="definition")


@definition_app.command("validate")
def definition_validate(
    path: Annotated[Path, typer.Argument(help="Path to run definition file")],
) -> None:
    """Validate a run definition file."""
    definition = _load_definition_or_exit(path)
    console.print(f"[green]✓ Valid run definition: {definition.repository}[/green]")
    console.print(f"  Registry: {definition.registry}")
    console.print(f"  Platforms: {', '.join(p.value for p in definition.platforms)}")
    console.print(f"  Context: {definition.context}")
    console.print(f"  Dockerfile: {definition.dockerfile}")


@definition_app.command("show")
def definition_show(
    path: Annotated[
        Path | None,
        typer.Argument(help="Run definition file (omit for the built-in default)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show a run definition with every default filled in."""
    from archpush.definition import default_definition, definition_to_yaml_string

    definition = _load_definition_or_exit(path) if path else default_definition()
    if json_output:
        _print_json(definition.model_dump(mode="json"))
    else:
        console.print(definition_to_yaml_string(definition), markup=False)


cache_app = typer.Typer(help="Manage the shared build cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("list")
def cache_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List cache generations per platform."""
    from dataclasses import asdict

    from archpush.cache.store import CacheStore

    store = CacheStore(get_settings().cache_dir)
    entries = store.entries()

    if not entries:
        if json_output:
            console.print("[]")
        else:
            console.print("[yellow]No cache entries found[/yellow]")
        return

    if json_output:
        _print_json([asdict(e) for e in entries])
        return

    console.print(f"[bold]Found {len(entries)} cache generation(s):[/bold]")
    console.print()
    for e in entries:
        color = "green" if e.current else "dim"
        marker = " (current)" if e.current else ""
        console.print(f"  [{color}]{e.platform} {e.generation}{marker}[/{color}]")
        console.print(f"    Size: {e.size_bytes / (1024 * 1024):.1f} MiB")
        if e.created_at:
            console.print(f"    Created: {e.created_at}")
        if e.build_succeeded is not None:
            console.print(f"    Build succeeded: {e.build_succeeded}")
        console.print()


@cache_app.command("prune")
def cache_prune(
    keep: Annotated[
        int | None,
        typer.Option("--keep", "-k", help="Generations to keep per platform"),
    ] = None,
) -> None:
    """Remove old cache generations and abandoned exports."""
    from archpush.cache.store import CacheStore

    settings = get_settings()
    keep_count = keep if keep is not None else settings.cache_keep_generations
    if keep_count < 1:
        console.print("[red]--keep must be at least 1[/red]")
        raise typer.Exit(code=1)

    removed = CacheStore(settings.cache_dir).prune(keep=keep_count)
    if removed:
        console.print(f"[green]Removed {len(removed)} cache path(s)[/green]")
    else:
        console.print("[yellow]Nothing to prune[/yellow]")


history_app = typer.Typer(help="Inspect past release runs")
app.add_typer(history_app, name="history")


@history_app.command("list")
def history_list(
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Filter by image name"),
    ] = None,
    ref_name: Annotated[
        str | None,
        typer.Option("--ref", "-r", help="Filter by reference"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of runs to return"),
    ] = 20,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List recorded runs, newest first."""
    from archpush.db import create_all_tables, get_engine, get_session_factory
    from archpush.history.service import list_runs

    engine = get_engine()
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        runs = list_runs(session, image_name=image, ref_name=ref_name, limit=limit)

        if not runs:
            if json_output:
                console.print("[]")
            else:
                console.print("[yellow]No runs recorded[/yellow]")
            return

        if json_output:
            output = [
                {
                    "id": r.id,
                    "image_name": r.image_name,
                    "ref_name": r.ref_name,
                    "success": r.success,
                    "floating_tag_platform": r.floating_tag_platform,
                    "started_at": r.started_at.isoformat() if r.started_at else None,
                    "finished_at": r.finished_at.isoformat() if r.finished_at else None,
                    "publishes": [
                        {
                            "platform": p.platform,
                            "status": p.status,
                            "image_digest": p.image_digest,
                            "error_code": p.error_code,
                        }
                        for p in r.publishes
                    ],
                }
                for r in runs
            ]
            _print_json(output)
            return

        console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
        console.print()
        for r in runs:
            color = "green" if r.success else "red"
            console.print(f"  [{color}]Run #{r.id} {r.image_name}:{r.ref_name}[/{color}]")
            if r.started_at:
                console.print(f"    Started: {r.started_at.isoformat()}")
            for p in r.publishes:
                detail = p.image_digest if p.is_succeeded() else p.error_code
                console.print(f"    {p.platform}: {p.status} {detail or ''}")
            console.print()


@history_app.command("resolve")
def history_resolve(
    image: Annotated[str, typer.Argument(help="Image name without tag")],
    tag: Annotated[str, typer.Argument(help="Tag name (e.g. latest)")],
    platform: Annotated[
        str | None,
        typer.Option("--platform", "-p", help="Restrict to one platform"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the digest a tag was last pushed with."""
    from archpush.db import create_all_tables, get_engine, get_session_factory
    from archpush.history.service import resolve_tag
    from archpush.types import Platform

    platform_filter: Platform | None = None
    if platform:
        try:
            platform_filter = Platform(platform)
        except ValueError:
            console.print(f"[red]Invalid platform: {platform}[/red]")
            console.print(f"Valid values: {', '.join(p.value for p in Platform)}")
            raise typer.Exit(code=1) from None

    engine = get_engine()
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        record = resolve_tag(session, image, tag, platform=platform_filter)
        if record is None:
            console.print(f"[red]No successful push of {image}:{tag} recorded[/red]")
            raise typer.Exit(code=1)

        if json_output:
            _print_json(
                {
                    "image_name": image,
                    "tag": tag,
                    "platform": record.platform,
                    "image_digest": record.image_digest,
                    "run_id": record.run_id,
                }
            )
        else:
            console.print(f"{image}:{tag} -> {record.image_digest or 'digest unknown'}")
            console.print(f"  Platform: {record.platform}")
            console.print(f"  Run: #{record.run_id}")


if __name__ == "__main__":
    app()
