"""
Command Line Interface for the Royalty Indexer.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import sessionmaker

from ..config import get_settings
from ..db.base import create_db_engine, init_database
from ..errors import NothingToWithdraw, RoyaltyIndexerError
from ..events import InboundEvent, parse_event
from ..graph.source import InMemoryArtifactSource
from ..logging_config import configure_logging
from ..query import QueryService
from ..runtime import build_runtime

app = typer.Typer(help="Royalty Indexer - depth-decayed royalties over artifact dependency graphs")
console = Console()

DatabaseOption = typer.Option(None, "--database-url", help="Override DATABASE_URL")


def _session_factory(database_url: Optional[str]) -> sessionmaker:
    engine = create_db_engine(database_url)
    init_database(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _read_events(path: Path) -> List[InboundEvent]:
    events = []
    with path.open() as handle:
        for line_number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(parse_event(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                console.print(f"[red]Line {line_number}: invalid event[/red] {e}")
                raise typer.Exit(code=2)
    return events


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
):
    """Serve the query API (and the maintenance sweep, if enabled)."""
    settings = get_settings()
    configure_logging(settings)
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Royalty Indexer on http://{host}:{port}", style="bold blue"))
    uvicorn.run("royalty_indexer.api:app", host=host, port=port, reload=settings.debug)


@app.command("init-db")
def init_db(database_url: Optional[str] = DatabaseOption):
    """Create any missing tables."""
    configure_logging()
    _session_factory(database_url)
    console.print("✅ Database initialized")


@app.command()
def replay(
    events_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON-lines event file"),
    artifacts: Optional[Path] = typer.Option(
        None, exists=True, dir_okay=False, help="JSON file describing artifact dependencies and authors"
    ),
    database_url: Optional[str] = DatabaseOption,
):
    """Feed a JSON-lines event file through the event processor."""
    configure_logging()
    events = _read_events(events_file)

    source = None
    if artifacts is not None:
        source = InMemoryArtifactSource.from_dict(json.loads(artifacts.read_text()))

    runtime = build_runtime(session_factory=_session_factory(database_url), source=source)

    async def run():
        try:
            return await runtime.processor.replay(events)
        finally:
            await runtime.close()

    summary = asyncio.run(run())
    console.print(
        f"✅ Replayed {len(events)} events from {events_file}: "
        f"{summary.applied} applied, {summary.duplicates} duplicates, {summary.failed} failed"
    )
    if summary.failed:
        raise typer.Exit(code=1)


@app.command()
def sweep(
    once: bool = typer.Option(True, "--once/--forever", help="Run a single pass or keep sweeping"),
    database_url: Optional[str] = DatabaseOption,
):
    """Settle unsettled sales and reconcile incomplete ones."""
    configure_logging()
    runtime = build_runtime(session_factory=_session_factory(database_url))

    async def run_once():
        try:
            return await runtime.sweep.run_once()
        finally:
            await runtime.close()

    async def run_forever():
        await runtime.sweep.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await runtime.close()

    if not once:
        try:
            asyncio.run(run_forever())
        except KeyboardInterrupt:
            console.print("\n🛑 Shutting down...")
        return

    report = asyncio.run(run_once())
    table = Table(title="Sweep", show_header=True, header_style="bold magenta")
    table.add_column("Outcome", style="cyan")
    table.add_column("Sales")
    table.add_row("Settled", str(len(report.settled)))
    table.add_row("Reconciled", str(len(report.reconciled)))
    table.add_row("Failed", str(len(report.failed)))
    console.print(table)
    for sale_id, error in report.failed.items():
        console.print(f"[red]{sale_id}[/red]: {error}")


@app.command()
def balance(
    beneficiary: str = typer.Argument(..., help="Beneficiary address"),
    database_url: Optional[str] = DatabaseOption,
):
    """Show a beneficiary's pending royalties."""
    db = _session_factory(database_url)()
    try:
        summary = QueryService(db).beneficiary_summary(beneficiary)
    finally:
        db.close()

    console.print(f"Pending for [cyan]{beneficiary}[/cyan]: {summary['pending']}")
    if summary["sales"]:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Sale")
        table.add_column("Artifact")
        table.add_column("Price")
        table.add_column("Royalties")
        for sale in summary["sales"]:
            table.add_row(
                sale["id"],
                f"{sale['origin']}-{sale['local_id']}",
                sale["price"],
                sale["royalty_amount"] or "-",
            )
        console.print(table)


@app.command()
def withdraw(
    beneficiary: str = typer.Argument(..., help="Beneficiary address"),
    actor: str = typer.Option("cli", help="Actor recorded in the audit log"),
    database_url: Optional[str] = DatabaseOption,
):
    """Withdraw a beneficiary's entire pending balance."""
    configure_logging()
    runtime = build_runtime(
        session_factory=_session_factory(database_url), source=InMemoryArtifactSource()
    )
    try:
        amount = runtime.ledger.withdraw(beneficiary, actor_id=actor)
    except NothingToWithdraw as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    except RoyaltyIndexerError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=2)

    console.print(f"✅ Withdrew {amount} for {beneficiary}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
