"""
CLI entrypoint for trailguard.

Provides commands to run the tracker, record a confirmed buy, and
inspect stored positions.
"""
import asyncio
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from trailguard.cli_output import print_critical_error
from trailguard.config.config import DEFAULT_CONFIG_PATH, Config, load_config
from trailguard.domain.models import Position, new_position_id
from trailguard.exceptions import ConfigurationError
from trailguard.execution.position_tracker import summarize
from trailguard.monitoring import messages
from trailguard.monitoring.logger import get_logger, setup_logging
from trailguard.storage.db import init_db
from trailguard.storage.position_store import SqlPositionStore

app = typer.Typer(
    name="trailguard",
    help="Stop-loss and trailing-stop tracker for open token positions",
    add_completion=False,
)

logger = get_logger(__name__)


def _load(config_path: Path) -> Config:
    try:
        return load_config(config_path)
    except Exception as e:
        print_critical_error("Failed to load configuration", e)
        raise typer.Exit(1)


def _store(config: Config) -> SqlPositionStore:
    return SqlPositionStore(init_db(config.storage.database_url))


def _decimal(value: Optional[str], name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"{name} must be a number, got {value!r}")
    if parsed < 0:
        raise typer.BadParameter(f"{name} must not be negative")
    return parsed


@app.command()
def run(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Override log file path"),
):
    """
    Run the tracker service until interrupted.

    Example:
        trailguard run --config trailguard/config/config.yaml
    """
    config = _load(config_path)
    setup_logging(
        config.monitoring.log_level,
        config.monitoring.log_format,
        log_file=str(log_file) if log_file else config.monitoring.log_file,
    )

    from trailguard.main import run_service

    try:
        asyncio.run(run_service(config))
    except ConfigurationError as e:
        print_critical_error("Invalid configuration", e, include_traceback=False)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Tracker stopped by user")


@app.command("open")
def open_position(
    owner: str = typer.Option(..., "--owner", help="Telegram chat id of the position owner"),
    wallet: str = typer.Option(..., "--wallet", help="Funding wallet address"),
    token: str = typer.Option(..., "--token", help="Token mint address"),
    quantity: str = typer.Option(..., "--quantity", help="Raw token quantity bought"),
    entry_price: Optional[str] = typer.Option(None, "--entry-price", help="USD entry price, if known"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
):
    """
    Record a confirmed buy. A running tracker picks it up on its next store sync.
    """
    config = _load(config_path)
    position = Position(
        position_id=new_position_id(token),
        owner=owner,
        wallet_ref=wallet,
        token_ref=token,
        quantity=_decimal(quantity, "quantity"),
        entry_price=_decimal(entry_price, "entry price"),
    )
    _store(config).save(position)
    typer.echo(position.position_id)


@app.command()
def positions(
    all_positions: bool = typer.Option(False, "--all", help="Include closed positions"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
):
    """List stored positions."""
    config = _load(config_path)
    store = _store(config)
    rows = store.load_all() if all_positions else store.load_open()

    console = Console()
    if not rows:
        console.print("[yellow]No positions[/yellow]")
        return

    table = Table(title="Positions")
    for column in ("ID", "Owner", "Token", "State", "Entry", "Peak", "Last", "Qty", "Reason", "Close ref"):
        table.add_column(column)
    for p in rows:
        table.add_row(
            p.position_id,
            p.owner,
            p.token_ref,
            p.state.value,
            str(p.entry_price) if p.entry_price is not None else "?",
            str(p.peak_price) if p.peak_price is not None else "?",
            str(p.last_price) if p.last_price is not None else "?",
            str(p.quantity),
            p.close_reason.value if p.close_reason else "",
            p.close_ref or "",
        )
    console.print(table)


@app.command()
def report(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
):
    """Print user and position counts."""
    config = _load(config_path)
    rows = _store(config).load_all()
    typer.echo(messages.admin_report(rows))
    for state, count in summarize(rows).items():
        typer.echo(f"  {state}: {count}")


if __name__ == "__main__":
    app()
