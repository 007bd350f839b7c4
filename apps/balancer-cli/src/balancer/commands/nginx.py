"""NGINX status commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from balancer.config import get_config
from balancer.errors import BalancerError
from balancer.services.nginx import NginxController
from balancer.services.renderer import read_fingerprint

app = typer.Typer(no_args_is_help=True)
console = Console()


def _format_uptime(seconds: float | None) -> str:
    if seconds is None:
        return "unknown"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m {secs}s"


@app.command()
def status() -> None:
    """Show live connection counters and the active configuration fingerprint."""
    cfg = get_config()
    controller = NginxController.from_config(cfg)
    try:
        stats = controller.status()
    except BalancerError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(exc.exit_code) from exc

    fingerprint = None
    if cfg.active_config_path.exists():
        fingerprint = read_fingerprint(cfg.active_config_path.read_bytes().decode("utf-8", "replace"))

    table = Table(title="NGINX Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Active connections", str(stats.active_connections))
    table.add_row("Accepts", str(stats.accepts))
    table.add_row("Handled", str(stats.handled))
    table.add_row("Requests", str(stats.requests))
    table.add_row("Reading", str(stats.reading))
    table.add_row("Writing", str(stats.writing))
    table.add_row("Waiting", str(stats.waiting))
    table.add_row("Uptime", _format_uptime(stats.uptime))
    table.add_row("Active config", fingerprint[:12] if fingerprint else "none")
    console.print(table)
