"""Deletion Guard CLI — Entry point.

Operator commands for inspecting the remote operation engine:

Usage:
    deletion-guard config
    deletion-guard limits
    deletion-guard preview <entity_type> <entity_id>
    deletion-guard status <operation_id>
    deletion-guard active
    deletion-guard history [--limit N] [--status S]

The bearer credential comes from ``--token`` or ``DELETION_GUARD_API__TOKEN``.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from deletion_guard.cascade.client import CascadeDeletionClient
from deletion_guard.config import Settings
from deletion_guard.exceptions import DeletionGuardError
from deletion_guard.logging import configure_logging

app = typer.Typer(
    name="deletion-guard",
    help="Deletion Guard — safety engine for destructive operations.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

T = TypeVar("T")

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
]
TokenOption = Annotated[
    str | None, typer.Option("--token", help="Bearer token for the operation engine.")
]
BaseUrlOption = Annotated[
    str | None, typer.Option("--base-url", help="Override the engine API root.")
]


def _load_settings(config: Path | None, token: str | None, base_url: str | None) -> Settings:
    settings = Settings.load(config_file=config)
    _setup_logging(settings)
    overrides = {
        key: value for key, value in (("token", token), ("base_url", base_url)) if value
    }
    if overrides:
        settings = settings.model_copy(update={"api": settings.api.model_copy(update=overrides)})
    return settings


def _setup_logging(settings: Settings) -> None:
    cfg = settings.logging
    configure_logging(
        level=cfg.level,
        format=cfg.format,
        log_file=str(cfg.file.expanduser()) if cfg.file else None,
    )


def _build_client(settings: Settings) -> CascadeDeletionClient:
    return CascadeDeletionClient.from_config(settings.api, lambda: settings.api.token)


def _run(settings: Settings, call: Callable[[CascadeDeletionClient], Awaitable[T]]) -> T:
    async def _go() -> T:
        client = _build_client(settings)
        try:
            return await call(client)
        finally:
            await client.close()

    try:
        return asyncio.run(_go())
    except DeletionGuardError as exc:
        console.print(f"[red]Error ({exc.code}): {exc.message}[/red]")
        raise typer.Exit(1)


def _print_json(data: Any) -> None:
    console.print(Syntax(json.dumps(data, indent=2, default=str), "json"))


@app.callback()
def main_callback() -> None:
    pass


@app.command("config")
def show_config(config: ConfigOption = None) -> None:
    """Print the effective settings (token redacted)."""
    settings = Settings.load(config_file=config)
    data = settings.model_dump(mode="json")
    if data["api"].get("token"):
        data["api"]["token"] = "***"
    _print_json(data)


@app.command("limits")
def limits(
    config: ConfigOption = None,
    token: TokenOption = None,
    base_url: BaseUrlOption = None,
) -> None:
    """Show the engine's system limits."""
    settings = _load_settings(config, token, base_url)
    result = _run(settings, lambda c: c.get_system_limits())

    table = Table(title="System Limits")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in result.model_dump().items():
        if isinstance(value, list):
            value = ", ".join(value)
        table.add_row(key, str(value))
    console.print(table)


@app.command("preview")
def preview(
    entity_type: str = typer.Argument(help="Entity type, e.g. student."),
    entity_id: str = typer.Argument(help="Entity identifier."),
    config: ConfigOption = None,
    token: TokenOption = None,
    base_url: BaseUrlOption = None,
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """Preview the impact of deleting one entity."""
    settings = _load_settings(config, token, base_url)
    result = _run(settings, lambda c: c.preview(entity_type, entity_id))

    if json_output:
        _print_json(result.model_dump(mode="json", by_alias=True))
        return

    impact = result.impact
    colour = "green" if impact.can_proceed else "red"
    console.print(f"[bold]Operation:[/bold] {result.operation_id}")
    console.print(f"[bold]Can proceed:[/bold] [{colour}]{impact.can_proceed}[/{colour}]")
    console.print(f"[bold]Risk:[/bold] {impact.risk_level.value}")
    console.print(f"[bold]Affected records:[/bold] {impact.total_affected_records}")
    for warning in impact.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning.message}")
    for error in impact.errors:
        console.print(f"[red]error:[/red] {error}")


@app.command("status")
def status(
    operation_id: str = typer.Argument(),
    config: ConfigOption = None,
    token: TokenOption = None,
    base_url: BaseUrlOption = None,
) -> None:
    """Show the status and progress of an operation."""
    settings = _load_settings(config, token, base_url)

    async def _fetch(client: CascadeDeletionClient) -> tuple[Any, Any]:
        operation = await client.get_operation_status(operation_id, use_cache=False)
        progress = await client.get_progress(operation_id, use_cache=False) if operation else None
        return operation, progress

    operation, progress = _run(settings, _fetch)
    if operation is None:
        console.print(f"[red]Operation not found: {operation_id}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]Operation:[/bold] {operation.id}")
    console.print(f"[bold]Entity:[/bold] {operation.entity_type}:{operation.entity_id}")
    console.print(f"[bold]Status:[/bold] {operation.status.value}")
    if operation.error:
        console.print(f"[red]Error:[/red] {operation.error}")
    if progress is not None:
        console.print(
            f"[bold]Progress:[/bold] {progress.current}/{progress.total} "
            f"({progress.percentage:g}%) {progress.stage}"
        )


@app.command("active")
def active(
    config: ConfigOption = None,
    token: TokenOption = None,
    base_url: BaseUrlOption = None,
) -> None:
    """List operations currently pending or running."""
    settings = _load_settings(config, token, base_url)
    operations = _run(settings, lambda c: c.get_active_operations())

    table = Table(title="Active Operations")
    table.add_column("ID", style="cyan")
    table.add_column("Entity")
    table.add_column("Status")
    for op in operations:
        table.add_row(op.id, f"{op.entity_type}:{op.entity_id}", op.status.value)
    console.print(table)


@app.command("history")
def history(
    limit: int = typer.Option(50, help="Maximum number of operations to show."),
    offset: int = typer.Option(0),
    entity_type: str | None = typer.Option(None, "--entity-type"),
    op_status: str | None = typer.Option(None, "--status", help="Filter by status."),
    config: ConfigOption = None,
    token: TokenOption = None,
    base_url: BaseUrlOption = None,
) -> None:
    """Show past deletion operations."""
    settings = _load_settings(config, token, base_url)
    filters = {"entityType": entity_type, "status": op_status}
    result = _run(settings, lambda c: c.get_operation_history(limit, offset, filters))

    table = Table(title=f"Operation History ({result.total_count} total)")
    table.add_column("ID", style="cyan")
    table.add_column("Entity")
    table.add_column("Status")
    table.add_column("Created")
    for op in result.operations:
        table.add_row(
            op.id, f"{op.entity_type}:{op.entity_id}", op.status.value, op.created_at or ""
        )
    console.print(table)


if __name__ == "__main__":
    app()
