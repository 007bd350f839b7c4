"""Proxy host commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from balancer_common import ProxyHost, Upstream

from balancer.config import get_config
from balancer.runtime import build_runtime

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.command(name="list")
def list_hosts() -> None:
    """List proxy hosts and where they forward to."""
    runtime = build_runtime(get_config())
    try:
        hosts = runtime.store.list(ProxyHost)
        upstreams = {u.id: u.name for u in runtime.store.list(Upstream)}
    finally:
        runtime.store.close()

    if not hosts:
        console.print("[yellow]No proxy hosts.[/yellow]")
        return

    table = Table(title="Proxy Hosts")
    table.add_column("ID", justify="right")
    table.add_column("Domains", style="cyan")
    table.add_column("Forward to")
    table.add_column("SSL")
    table.add_column("Enabled")
    for h in hosts:
        if h.upstream_id is not None:
            target = f"upstream {upstreams.get(h.upstream_id, h.upstream_id)}"
        else:
            target = f"{h.forward_host}:{h.forward_port}"
        table.add_row(
            str(h.id),
            " ".join(h.domain_names),
            target,
            f"cert {h.ssl_cert_id}" if h.ssl_enabled else "-",
            "[green]yes[/green]" if h.enabled else "[dim]no[/dim]",
        )
    console.print(table)
