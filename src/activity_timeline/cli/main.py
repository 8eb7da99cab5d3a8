"""CLI for the activity timeline engine."""

import json
import logging
import os
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from activity_timeline.core.models import ActivitiesViewModel, Activity, ActivityRowModel, RowKind
from activity_timeline.core.service import ActivitiesService
from activity_timeline.data import load_settings
from activity_timeline.integrations.etherscan import EtherscanTransactionStore
from activity_timeline.stores import TimelineFixture, load_fixture

app = typer.Typer(
    name="activity-timeline",
    help="Build a wallet's activity timeline from on-chain events and transactions",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

ETHERSCAN_API_KEY_ENV_VAR = "ETHERSCAN_API_KEY"

_KIND_LABELS = {
    RowKind.STANDALONE_ACTIVITY: "activity",
    RowKind.STANDALONE_TRANSACTION: "transaction",
    RowKind.PARENT_TRANSACTION: "group",
    RowKind.CHILD_ACTIVITY: "  └ activity",
    RowKind.CHILD_TRANSACTION: "  └ transfer",
}


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


def _configure_logging(debug: bool) -> None:
    if debug:
        install(show_locals=True)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=debug)],
        force=True,
    )


def _load(fixture: Path, settings: Path | None) -> TimelineFixture:
    try:
        return load_fixture(fixture, settings_path=settings)
    except FileNotFoundError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _run_service(service: ActivitiesService, timeout: float) -> ActivitiesViewModel:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=err_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Building timeline...", total=None)
        service.reload(immediate=True)
        finished = service.wait_until_idle(timeout)
        progress.update(task, description="✓ Timeline built")

    if not finished:
        err_console.print(f"[yellow]Timed out after {timeout}s, showing partial timeline[/yellow]")
    return service.view_model.value or ActivitiesViewModel()


@app.command()
def timeline(
    fixture: Path = typer.Argument(..., help="YAML fixture with tokens, cards, events and transactions"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Settings file"),
    explorer: bool = typer.Option(False, "--explorer", help="Fetch transactions from the block explorers"),
    timeout: float = typer.Option(30.0, "--timeout", "-t", help="Seconds to wait for the timeline"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Print the merged activity timeline of a fixture.

    Examples:

        # Timeline as a table
        activity-timeline timeline wallet.yaml

        # Transactions from Etherscan instead of the fixture
        activity-timeline timeline wallet.yaml --explorer

        # Output as JSON
        activity-timeline timeline wallet.yaml --format json
    """
    _configure_logging(debug)
    loaded = _load(fixture, settings)

    explorer_store = None
    if explorer:
        explorer_store = EtherscanTransactionStore.from_settings(
            loaded.settings,
            loaded.wallet_address,
            api_key=os.getenv(ETHERSCAN_API_KEY_ENV_VAR),
        )
        loaded.transaction_store = explorer_store

    service = loaded.service()
    try:
        view_model = _run_service(service, timeout)
        if format == OutputFormat.JSON:
            _output_json(view_model.model_dump(mode="json"))
        else:
            _output_timeline_table(view_model, loaded.wallet_address)
    except Exception as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        if debug:
            raise
        raise typer.Exit(1)
    finally:
        service.stop()
        if explorer_store is not None:
            explorer_store.close()


@app.command()
def activities(
    fixture: Path = typer.Argument(..., help="YAML fixture with tokens, cards, events and transactions"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Settings file"),
    timeout: float = typer.Option(30.0, "--timeout", "-t", help="Seconds to wait for the build"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """Print the activities built from events, before merging with transactions."""
    _configure_logging(debug)
    loaded = _load(fixture, settings)

    service = loaded.service()
    try:
        _run_service(service, timeout)
        built = service.activities
        if format == OutputFormat.JSON:
            _output_json([activity.model_dump(mode="json") for activity in built])
        else:
            _output_activities_table(built)
    finally:
        service.stop()


@app.command()
def list_servers(
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Settings file"),
) -> None:
    """List configured servers."""
    loaded = load_settings(settings)

    table = Table(title="Configured Servers", show_header=True, header_style="bold magenta")
    table.add_column("Server", style="cyan")
    table.add_column("Chain ID", style="blue", justify="right")
    table.add_column("Symbol", style="green")
    table.add_column("Status", style="yellow")

    for name, config in loaded.servers.items():
        status = "✓ Enabled" if name in loaded.enabled_servers else "-"
        table.add_row(name, str(config.chain_id), config.symbol, status)

    console.print(table)


def _describe(activity: Activity | None) -> tuple[str, str]:
    if activity is None:
        return "-", "-"
    amount = activity.values.card.get("amount")
    amount_str = amount.display() if amount is not None else "-"
    return f"{activity.name} {activity.token.symbol}".strip(), amount_str


def _row_label(row: ActivityRowModel) -> str:
    label = _KIND_LABELS[row.kind]
    if row.kind == RowKind.PARENT_TRANSACTION and row.is_swap:
        label = "swap"
    return label


def _output_timeline_table(view_model: ActivitiesViewModel, wallet_address: str) -> None:
    """Output the timeline as a rich table, one section per day."""
    if not view_model.rows:
        console.print("\n[yellow]No activities found[/yellow]")
        return

    table = Table(
        title=f"Timeline for {wallet_address[:10]}...{wallet_address[-8:]}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Block", style="blue", justify="right")
    table.add_column("Row", style="cyan")
    table.add_column("Activity", style="green")
    table.add_column("Amount", style="white", justify="right")
    table.add_column("Transaction", style="dim")

    for day, rows in view_model.sections():
        table.add_section()
        table.add_row("", f"[bold]{day.isoformat()}[/bold]", "", "", "")
        for row in rows:
            name, amount = _describe(row.activity)
            transaction_id = row.transaction.id if row.transaction is not None else "-"
            if len(transaction_id) > 14:
                transaction_id = f"{transaction_id[:8]}...{transaction_id[-4:]}"
            table.add_row(str(row.block_number), _row_label(row), name, amount, transaction_id)

    console.print("\n")
    console.print(table)
    console.print(f"\n[bold]Total Rows:[/bold] {len(view_model.rows)}\n")


def _output_activities_table(built: list[Activity]) -> None:
    """Output built activities as a rich table."""
    if not built:
        console.print("\n[yellow]No activities found[/yellow]")
        return

    table = Table(title="Activities", show_header=True, header_style="bold magenta")
    table.add_column("Block", style="blue", justify="right")
    table.add_column("Server", style="cyan")
    table.add_column("Card", style="green")
    table.add_column("Token", style="yellow")
    table.add_column("Amount", style="white", justify="right")
    table.add_column("State", style="dim")

    for activity in built:
        _, amount = _describe(activity)
        table.add_row(
            str(activity.block_number),
            activity.server,
            activity.name,
            activity.token.symbol,
            amount,
            activity.state.value,
        )

    console.print("\n")
    console.print(table)


def _output_json(data: object) -> None:
    """Output data as JSON."""
    json_str = json.dumps(data, indent=2)
    console.print(json_str, soft_wrap=True, markup=False, highlight=False)


if __name__ == "__main__":
    app()
