"""
qbreport CLI — command-line interface.

Usage:
    qbreport serve --port 8080
    qbreport report --json
    qbreport login-url
    qbreport seed-token AB11...
"""

from __future__ import annotations

import asyncio
import logging

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from qbreport import __version__
from qbreport.config import QBReportConfig
from qbreport.errors import ConfigurationError, QBReportError
from qbreport.models.report import Report

app = typer.Typer(
    name="qbreport",
    help="QuickBooks Online consolidated report service",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to a YAML config file")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]qbreport[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
) -> None:
    """qbreport — bank balances, purchases, deposits and classes from QuickBooks."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _load_config(config: str | None) -> QBReportConfig:
    """Load and validate configuration, exiting with status 1 when incomplete."""
    try:
        return QBReportConfig.load(config).require()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def serve(
    config: str = _CONFIG_OPTION,
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: int = typer.Option(None, "--port", "-p", help="Bind port (default from config)"),
) -> None:
    """Run the HTTP server."""
    import uvicorn

    from qbreport.server import create_app, make_token_store

    cfg = _load_config(config)
    try:
        make_token_store(cfg).seed(cfg.quickbooks.refresh_token)
    except QBReportError as e:
        console.print(f"[red]Token store error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(Panel.fit(
        "[bold blue]qbreport[/bold blue]: starting server",
        subtitle=f"v{__version__}",
    ))
    uvicorn.run(
        create_app(cfg),
        host=host or cfg.server.host,
        port=port or cfg.server.port,
        log_config=None,
    )


@app.command()
def report(
    config: str = _CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON report"),
) -> None:
    """Assemble one report and print it."""
    cfg = _load_config(config)
    try:
        with console.status("[bold green]Fetching from QuickBooks...[/bold green]"):
            result = asyncio.run(_assemble(cfg))
    except QBReportError as e:
        console.print(f"[red]Report failed:[/red] {e}")
        raise typer.Exit(1) from e

    if as_json:
        console.print_json(result.model_dump_json())
    else:
        _display_report(result)


@app.command("login-url")
def login_url(config: str = _CONFIG_OPTION) -> None:
    """Print the QuickBooks authorization URL."""
    from qbreport.auth.oauth2 import OAuth2Client

    cfg = _load_config(config)
    url = OAuth2Client(cfg.quickbooks).get_authorization_url(state=cfg.server.login_state)
    console.print(url, soft_wrap=True)


@app.command("seed-token")
def seed_token(
    token: str = typer.Argument(..., help="Refresh token to store"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Overwrite the stored refresh token."""
    from qbreport.server import make_token_store

    cfg = _load_config(config)
    try:
        make_token_store(cfg).put(token)
    except QBReportError as e:
        console.print(f"[red]Token store error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"[green]✓[/green] Refresh token stored in [bold]{cfg.server.token_file}[/bold]")


async def _assemble(cfg: QBReportConfig) -> Report:
    from qbreport.server import build_services

    async with httpx.AsyncClient(timeout=cfg.server.http_timeout) as http:
        services = build_services(cfg, http)
        await asyncio.to_thread(services.store.seed, cfg.quickbooks.refresh_token)
        return await services.assembler.assemble()


def _display_report(result: Report) -> None:
    """Display report summary in the terminal."""
    console.print()

    table = Table(title="Bank Accounts", show_lines=True)
    table.add_column("Account", style="bold")
    table.add_column("Balance", justify="right")
    for account in result.accounts:
        table.add_row(account.name, f"${account.current_balance:,.2f}")
    console.print(table)

    purchases_total = sum(float(p.get("TotalAmt") or 0) for p in result.purchases)
    deposits_total = sum(float(d.get("TotalAmt") or 0) for d in result.deposits)

    summary = Table(title="Summary", show_lines=True)
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Purchases", f"{len(result.purchases)} (${purchases_total:,.2f})")
    summary.add_row("Deposits", f"{len(result.deposits)} (${deposits_total:,.2f})")
    summary.add_row("Classes", str(len(result.classes)))
    console.print(summary)


if __name__ == "__main__":
    app()
