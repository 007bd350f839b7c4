"""Root Typer application for the Balancer Studio CLI."""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from balancer.commands import cert, config, host, nginx, upstream

app = typer.Typer(
    name="balancer",
    help="Balancer Studio: manage NGINX configuration from stored entities.",
    no_args_is_help=True,
)

app.add_typer(config.app, name="config", help="Render, validate and apply the NGINX configuration.")
app.add_typer(nginx.app, name="nginx", help="NGINX process status.")
app.add_typer(cert.app, name="cert", help="Certificate lifecycle.")
app.add_typer(host.app, name="host", help="Proxy host listing.")
app.add_typer(upstream.app, name="upstream", help="Upstream pool listing.")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (default from BALANCER_API_HOST)"),
    port: int = typer.Option(None, help="Bind port (default from BALANCER_API_PORT)"),
) -> None:
    """Run the HTTP API with the apply worker and certificate sweeper."""
    from balancer_api.main import run

    run(host=host, port=port)


if __name__ == "__main__":
    app()
