"""Upstream pool commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from balancer_common import ServerStatus

from balancer.config import get_config
from balancer.runtime import build_runtime

app = typer.Typer(no_args_is_help=True)
console = Console()

_SERVER_STYLE = {
    ServerStatus.UP: "green",
    ServerStatus.DRAINING: "yellow",
    ServerStatus.DOWN: "red",
}


@app.command(name="list")
def list_upstreams() -> None:
    """List upstream pools with their servers."""
    runtime = build_runtime(get_config())
    try:
        snapshot = runtime.store.get_snapshot()
    finally:
        runtime.store.close()

    if not snapshot.upstreams:
        console.print("[yellow]No upstreams.[/yellow]")
        return

    table = Table(title="Upstreams")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Algorithm")
    table.add_column("Servers")
    for u in sorted(snapshot.upstreams, key=lambda u: u.name):
        servers = [
            f"{s.host}:{s.port} w={s.weight} [{_SERVER_STYLE[s.status]}]{s.status.value}[/{_SERVER_STYLE[s.status]}]"
            for s in snapshot.servers_for(u.id)
        ]
        table.add_row(str(u.id), u.name, u.algorithm.value, "\n".join(servers) or "[red]none[/red]")
    console.print(table)
