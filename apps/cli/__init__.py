"""Memory Deck CLI application."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from packages.common.exceptions import MemoryDeckError

app = typer.Typer(
    name="memory-deck",
    help="Spaced-repetition flashcard decks: scheduling and data integrity",
    no_args_is_help=True,
)

console = Console()


def _setup_logging() -> None:
    from packages.common.config import get_settings
    from packages.common.logging import configure_logging

    settings = get_settings()
    configure_logging(debug=settings.debug, json_output=False)


@app.command()
def version() -> None:
    """Show version information."""
    console.print("memory-deck 0.1.0")


@app.command()
def migrate() -> None:
    """Run database migrations."""
    _setup_logging()
    asyncio.run(_migrate_async())


async def _migrate_async() -> None:
    """Async migrate implementation."""
    from packages.common.database import run_migrations

    console.print("Running database migrations...")
    try:
        result = await run_migrations()
    except MemoryDeckError as e:
        console.print(f"[red]Migration error:[/red] {e}")
        raise typer.Exit(1) from None

    if result.applied:
        console.print(f"[green]Applied migrations:[/green] {', '.join(result.applied)}")
    else:
        console.print("[yellow]No migrations to apply[/yellow]")


@app.command()
def check(
    user_id: str | None = typer.Option(
        None,
        "--user",
        "-u",
        help="Only check this user's decks",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="List every issue found",
    ),
) -> None:
    """Scan decks for integrity problems."""
    _setup_logging()
    asyncio.run(_check_async(user_id, verbose))


async def _check_async(user_id: str | None, verbose: bool) -> None:
    """Async check implementation."""
    from packages.common.database import close_pool
    from packages.protection.service import close_data_protection, get_data_protection

    try:
        report = await get_data_protection().checker.check(user_id)
    except MemoryDeckError as e:
        console.print(f"[red]Check error:[/red] {e}")
        raise typer.Exit(1) from None
    finally:
        await close_data_protection()
        await close_pool()

    table = Table(title="Integrity Report")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")
    table.add_row("Decks", str(report.total_decks))
    table.add_row("Cards", str(report.total_cards))
    table.add_row("Corrupted decks", str(len(report.corrupted_decks)))
    table.add_row("Invalid cards", str(len(report.invalid_cards)))
    table.add_row("Inconsistent stats", str(len(report.inconsistent_stats)))
    console.print(table)

    if verbose:
        for deck_issue in [*report.corrupted_decks, *report.inconsistent_stats]:
            console.print(f"[yellow]{deck_issue.deck_id}:[/yellow] {', '.join(deck_issue.issues)}")
        for card_issue in report.invalid_cards:
            console.print(
                f"[yellow]{card_issue.card_id} in {card_issue.deck_id}:[/yellow] "
                f"{', '.join(card_issue.issues)}"
            )

    for recommendation in report.recommendations:
        console.print(f"- {recommendation}")

    if not report.is_healthy:
        raise typer.Exit(2)


@app.command()
def repair(
    user_id: str | None = typer.Option(
        None,
        "--user",
        "-u",
        help="Only repair this user's decks",
    ),
) -> None:
    """Normalize damaged deck fields and persist the fixes."""
    _setup_logging()
    asyncio.run(_repair_async(user_id))


async def _repair_async(user_id: str | None) -> None:
    """Async repair implementation."""
    from packages.common.database import close_pool
    from packages.protection.service import close_data_protection, get_data_protection

    try:
        protection = get_data_protection()
        repaired = await protection.checker.repair(user_id)
        report = await protection.checker.check(user_id)
    except MemoryDeckError as e:
        console.print(f"[red]Repair error:[/red] {e}")
        raise typer.Exit(1) from None
    finally:
        await close_data_protection()
        await close_pool()

    console.print(f"[green]Repaired decks:[/green] {repaired}")
    if report.issue_count:
        console.print(f"[yellow]Issues remaining:[/yellow] {report.issue_count}")
        for recommendation in report.recommendations:
            console.print(f"- {recommendation}")


@app.command()
def due(
    user_id: str = typer.Argument(..., help="Deck owner"),
    deck_id: str | None = typer.Option(None, "--deck", "-d", help="Only this deck"),
    course_id: str | None = typer.Option(None, "--course", "-c", help="Only this course"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum cards to show (1-500)"),
) -> None:
    """Show a user's due cards, earliest first."""
    _setup_logging()
    asyncio.run(_due_async(user_id, deck_id, course_id, limit))


async def _due_async(
    user_id: str,
    deck_id: str | None,
    course_id: str | None,
    limit: int,
) -> None:
    """Async due-cards implementation."""
    from packages.common.database import close_pool
    from packages.review.selector import DueCardSelector
    from packages.store.client import get_store_client

    try:
        result = await DueCardSelector(get_store_client()).get_due_cards(
            user_id,
            deck_id=deck_id,
            course_id=course_id,
            limit=limit,
        )
    except MemoryDeckError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    finally:
        await close_pool()

    if not result.due_cards:
        console.print("[green]Nothing due.[/green]")
        return

    table = Table(title=f"Due cards ({len(result.due_cards)} of {result.total_due})")
    table.add_column("Due", style="cyan")
    table.add_column("Deck")
    table.add_column("Question")
    table.add_column("Difficulty", justify="right")
    table.add_column("Reps", justify="right")

    for card in result.due_cards:
        due_at = card.next_review_due.strftime("%Y-%m-%d %H:%M") if card.next_review_due else "now"
        question = card.question if len(card.question) <= 60 else card.question[:57] + "..."
        table.add_row(
            due_at,
            card.deck_title,
            question,
            str(card.difficulty_level),
            str(card.repetition_count),
        )

    console.print(table)


if __name__ == "__main__":
    app()
