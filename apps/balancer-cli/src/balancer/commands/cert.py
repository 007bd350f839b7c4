"""Certificate lifecycle commands."""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from balancer_common import Certificate, CertificateStatus

from balancer.audit import audit
from balancer.config import get_config
from balancer.errors import BalancerError
from balancer.runtime import build_runtime

app = typer.Typer(no_args_is_help=True)
console = Console()

_STATUS_STYLE = {
    CertificateStatus.ACTIVE: "green",
    CertificateStatus.PENDING: "yellow",
    CertificateStatus.EXPIRED: "red",
    CertificateStatus.REVOKED: "red",
}


@app.command(name="list")
def list_certs() -> None:
    """List tracked certificates."""
    runtime = build_runtime(get_config())
    try:
        certs = runtime.store.list(Certificate)
    finally:
        runtime.store.close()

    if not certs:
        console.print("[yellow]No certificates.[/yellow]")
        return

    table = Table(title="Certificates")
    table.add_column("ID", justify="right")
    table.add_column("Domain", style="cyan")
    table.add_column("Alt names")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Expires", style="yellow")
    for cert in certs:
        style = _STATUS_STYLE[cert.status]
        table.add_row(
            str(cert.id),
            cert.domain_name,
            ", ".join(cert.alt_names),
            cert.provider,
            f"[{style}]{cert.status.value}[/{style}]",
            f"{cert.expires_at:%Y-%m-%d}" if cert.expires_at else "",
        )
    console.print(table)


@app.command()
def sweep() -> None:
    """Expire certificates past their expiry date and apply the result."""
    runtime = build_runtime(get_config())
    try:
        with audit("cert.sweep"):
            expired = runtime.sweeper.sweep()
            for cert in expired:
                console.print(f"[yellow]Certificate {cert.id} ({cert.domain_name}) expired[/yellow]")
            if not expired:
                console.print("No certificates expired.")
                return
            result = runtime.coordinator.apply()
    except BalancerError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(exc.exit_code) from exc
    finally:
        runtime.store.close()

    if not result.ok:
        console.print(f"[red]Apply after sweep failed ({result.error}):[/red] {escape(result.detail or '')}")
        raise typer.Exit(1)


@app.command()
def request(
    domain: str = typer.Option(..., help="Primary domain name"),
    alt: Optional[List[str]] = typer.Option(None, "--alt", help="Additional domain name (repeatable)"),
) -> None:
    """Record a pending certificate."""
    runtime = build_runtime(get_config())
    try:
        with audit("cert.request", target=domain):
            cert = runtime.issuer.request(domain, alt or [])
    except (BalancerError, ValueError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(getattr(exc, "exit_code", 1)) from exc
    finally:
        runtime.store.close()
    console.print(f"[green]Certificate {cert.id} pending for {cert.domain_name}[/green]")


@app.command()
def issue(
    cert_id: int = typer.Argument(help="ID of a pending certificate"),
) -> None:
    """Run certbot for a pending certificate, mark it active and apply the result."""
    runtime = build_runtime(get_config())
    try:
        with audit("cert.issue", target=str(cert_id)):
            cert = runtime.issuer.issue(cert_id)
        console.print(f"[green]Certificate issued for {cert.domain_name}, expires {cert.expires_at:%Y-%m-%d}[/green]")
        result = runtime.coordinator.apply()
    except BalancerError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(exc.exit_code) from exc
    finally:
        runtime.store.close()

    if not result.ok:
        console.print(f"[red]Apply after issue failed ({result.error}):[/red] {escape(result.detail or '')}")
        raise typer.Exit(1)
    if not result.skipped:
        console.print(f"[green]Configuration {result.fingerprint[:12]} applied and NGINX reloaded.[/green]")
