from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from cofound import services
from cofound.config import get_settings
from cofound.db import current_db_url, init_db, session_scope
from cofound.errors import CofoundError
from cofound.importer import import_mrr_xlsx
from cofound.models import Profile

app = typer.Typer(help="Cofound marketplace: founders, co-founders and investors")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.ERROR
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    home: str | None = typer.Option(
        None, "--home", help="Data root; the database lives under <home>/data/.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if home:
        os.environ["COFOUND_HOME"] = str(Path(home).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or "-"
    return str(value)


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        table.add_row(key, _format_value(value))
    console.print(Panel(table, title=title, border_style="cyan"))


def _print_investments(investments: list[dict[str, Any]]) -> None:
    table = Table(title="Confirmed investments", header_style="bold magenta", box=ROUNDED)
    for column in ("Project", "Round", "Amount", "Date"):
        table.add_column(column)
    for inv in investments:
        rnd = inv.get("round") or {}
        project = rnd.get("project") or {}
        table.add_row(
            project.get("title") or "-", rnd.get("round_name") or "-",
            f"${inv['amount_invested']:,}", (inv.get("date") or "-")[:10],
        )
    console.print(table)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=1)


def _ensure_db(db_url: str | None) -> None:
    if db_url or current_db_url() is None:
        init_db(db_url)


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    _print("init-db", {"status": "ok", "database_url": current_db_url()}, ctx)


@app.command("serve")
def serve_command(
    host: str | None = typer.Option(None, help="Bind address (defaults to COFOUND_HOST)"),
    port: int | None = typer.Option(None, help="Port (defaults to COFOUND_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("cofound.app:app", host=host or settings.host, port=port or settings.port, reload=reload)


@app.command("mcp")
def mcp_command() -> None:
    from cofound.mcp_server import main as mcp_main

    mcp_main()


@app.command("import-mrr")
def import_mrr_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="XLSX with month and revenue columns"),
    project_id: str = typer.Option(..., "--project-id", help="Project the revenue belongs to"),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    _ensure_db(db_url)
    try:
        with session_scope() as session:
            result = import_mrr_xlsx(file, session, project_id)
    except CofoundError as exc:
        _fail(str(exc))
    _print("import-mrr", result.model_dump(), ctx)


@app.command("portfolio")
def portfolio_command(
    ctx: typer.Context,
    investor_id: str = typer.Argument(..., help="Investor profile id"),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    _ensure_db(db_url)
    with session_scope() as session:
        portfolio = services.get_investor_portfolio(session, investor_id)
    if _wants_json(ctx):
        _print("portfolio", portfolio, ctx)
        return
    _print("portfolio", {k: v for k, v in portfolio.items() if k != "investments"}, ctx)
    if portfolio["investments"]:
        _print_investments(portfolio["investments"])


@app.command("completion")
def completion_command(
    ctx: typer.Context,
    profile_id: str = typer.Argument(..., help="Profile id"),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    _ensure_db(db_url)
    with session_scope() as session:
        profile = services.get_or_none(session, Profile, profile_id)
        if profile is None:
            _fail(f"Profile {profile_id} not found")
        detail = services.profile_detail(profile)
    payload = {"name": detail["name"], **detail["completion"]}
    _print("completion", payload, ctx)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
