"""Configuration lifecycle commands: render, test, apply, show-active, history."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from balancer.audit import AuditLog, audit
from balancer.config import get_config
from balancer.errors import BalancerError
from balancer.runtime import build_runtime

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.command()
def render(
    raw: bool = typer.Option(False, "--raw", help="Print plain text without highlighting"),
) -> None:
    """Render the configuration for the current entity state."""
    runtime = build_runtime(get_config())
    try:
        rendered = runtime.renderer.render(runtime.store.get_snapshot())
    except BalancerError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(exc.exit_code) from exc
    finally:
        runtime.store.close()

    if raw:
        typer.echo(rendered.text, nl=False)
    else:
        console.print(Syntax(rendered.text, "nginx", theme="monokai"))


@app.command()
def test() -> None:
    """Render and run the NGINX syntax check without activating anything."""
    runtime = build_runtime(get_config())
    try:
        with audit("config.test"):
            rendered = runtime.renderer.render(runtime.store.get_snapshot())
            result = runtime.validator.validate(rendered.text, fingerprint=rendered.fingerprint)
    except BalancerError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(exc.exit_code) from exc
    finally:
        runtime.store.close()

    if result.output:
        console.print(escape(result.output))
    console.print(f"[green]Configuration {rendered.fingerprint[:12]} is valid.[/green]")


@app.command()
def apply() -> None:
    """Render, validate, activate and reload; roll back if the reload fails."""
    runtime = build_runtime(get_config())
    try:
        result = runtime.coordinator.apply()
    finally:
        runtime.store.close()

    if result.skipped:
        console.print(f"[green]Configuration {result.fingerprint[:12]} already active.[/green]")
        return
    if result.ok:
        console.print(f"[green]Configuration {result.fingerprint[:12]} applied and NGINX reloaded.[/green]")
        return

    console.print(f"[red]Apply failed ({result.error}):[/red] {escape(result.detail or '')}")
    if result.rolled_back:
        console.print("[yellow]Previous configuration restored.[/yellow]")
    raise typer.Exit(1)


@app.command(name="show-active")
def show_active() -> None:
    """Display the configuration NGINX is running."""
    cfg = get_config()
    path = cfg.active_config_path

    if not path.exists():
        console.print(f"[red]No active configuration at {path}[/red]")
        raise typer.Exit(1)

    console.print(Syntax(path.read_bytes().decode("utf-8", "replace"), "nginx", theme="monokai"))


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
    failures: bool = typer.Option(False, "--failures", help="Only failed runs"),
) -> None:
    """Show recent apply runs from the audit trail."""
    events = AuditLog.from_config(get_config()).query(
        action="config.apply",
        result="failure" if failures else None,
        limit=limit,
    )
    if not events:
        console.print("[yellow]No apply runs recorded.[/yellow]")
        return

    table = Table(title="Apply History")
    table.add_column("Time", style="cyan")
    table.add_column("Fingerprint", no_wrap=True)
    table.add_column("Result", no_wrap=True)
    table.add_column("Duration", justify="right")
    table.add_column("Detail")
    for event in events:
        fingerprint = event.params.get("fingerprint") or ""
        if event.params.get("skipped"):
            outcome = "[dim]skipped[/dim]"
        elif event.ok:
            outcome = "[green]applied[/green]"
        elif event.params.get("rolled_back"):
            outcome = "[red]rolled back[/red]"
        else:
            outcome = "[red]failed[/red]"
        table.add_row(
            f"{event.timestamp:%Y-%m-%d %H:%M:%S}",
            fingerprint[:12],
            outcome,
            f"{event.duration_ms} ms" if event.duration_ms is not None else "",
            escape(event.error or ""),
        )
    console.print(table)
