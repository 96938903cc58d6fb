"""
Recall CLI: terminal driver for the review scheduler.

Commands:
- recall init      - Create tables and the learner
- recall add       - Add an item
- recall next      - Show the item due next
- recall answer    - Answer the due item
- recall study     - Interactive review loop
- recall mode      - Show or change the algorithm mode
- recall items     - List items in review order
- recall history   - Show an item's review records
"""
from __future__ import annotations

import sys
import time
from datetime import datetime
from typing import NoReturn, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config import get_settings
from recall.core.errors import NotFoundError, PredictorUnavailableError, SchedulingError
from recall.core.models import AlgorithmUsed, Item, utc_now
from recall.scheduling.baseline import BaselineConfig, BaselinePredictor
from recall.scheduling.orchestrator import AlgorithmOrchestrator
from recall.scheduling.predictors import PredictorRegistry
from recall.scheduling.review_processor import ReviewOutcome, ReviewProcessor

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="recall",
    help="Recall: spaced-repetition review scheduler",
    no_args_is_help=True,
)
console = Console()

LearnerOption = typer.Option("default", "--learner", "-l", help="Learner id")
ModelOption = typer.Option(None, "--model", "-m", help="JSON model document for the learned predictor")

STYLES = {
    "correct": "bold green",
    "incorrect": "bold red",
    "info": "bold cyan",
    "warning": "bold yellow",
    "algorithm": {
        AlgorithmUsed.BASELINE: "blue",
        AlgorithmUsed.LEARNED: "magenta",
    },
}


def configure_logging() -> None:
    """Route loguru output according to settings."""
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, format="<level>{message}</level>")
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB")


@app.callback()
def main_callback() -> None:
    configure_logging()


def build_processor(model: Optional[str] = None) -> ReviewProcessor:
    """Wire store, predictors and orchestrator from settings."""
    from recall.db.sql_store import SqlAggregateStore

    settings = get_settings()
    predictor_config = settings.get_predictor_config()
    registry = PredictorRegistry(
        max_interval=predictor_config["max_interval"],
        timeout_seconds=predictor_config["timeout_seconds"],
    )

    model_path = model
    if model_path is None and settings.has_model_configured():
        model_path = predictor_config["model_path"]
    if model_path:
        try:
            registry.reload(model_path)
        except PredictorUnavailableError as e:
            console.print(f"[{STYLES['warning']}]Learned model unavailable:[/] {e}")

    orchestrator = AlgorithmOrchestrator(
        baseline=BaselinePredictor(BaselineConfig.from_settings(settings)),
        predictors=registry,
    )
    return ReviewProcessor(SqlAggregateStore(), orchestrator=orchestrator)


def fail(error: SchedulingError) -> NoReturn:
    console.print(f"[{STYLES['incorrect']}]{type(error).__name__}:[/] {error}")
    raise typer.Exit(code=1)


# =============================================================================
# Display Helpers
# =============================================================================


def format_due(moment: datetime) -> str:
    delta = moment - utc_now()
    days = delta.total_seconds() / 86400
    if days <= 0:
        return "now"
    if days < 1:
        return f"in {delta.total_seconds() / 3600:.0f}h"
    return f"in {days:.1f}d"


def display_item(item: Item, due_count: int) -> None:
    header = f"{item.id}  |  {due_count} due  |  strength {item.memory_strength:.2f}"
    console.print(Panel(item.prompt, title=header, title_align="left", border_style="cyan", padding=(1, 2)))


def display_outcome(outcome: ReviewOutcome) -> None:
    style = STYLES["correct"] if outcome.correct else STYLES["incorrect"]
    icon = "[green]✓[/green]" if outcome.correct else "[red]✗[/red]"
    algo_color = STYLES["algorithm"][outcome.algorithm_used]

    learned = "-" if outcome.learned_interval is None else f"{outcome.learned_interval:.1f}d"
    details = (
        f"[dim]baseline {outcome.baseline_interval:.1f}d  |  learned {learned}  |  "
        f"applied via [{algo_color}]{outcome.algorithm_used.value}[/{algo_color}][/dim]"
    )
    console.print(f"{icon} [{style}]{outcome.feedback}[/]")
    console.print(details)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def init(
    learner: str = LearnerOption,
    mode: Optional[str] = typer.Option(None, "--mode", help="baseline | learned | comparison"),
) -> None:
    """Create tables and register the learner if needed."""
    processor = build_processor()
    try:
        settings = processor.get_settings(learner)
        console.print(f"Learner [bold]{learner}[/bold] exists (mode: {settings.algorithm_mode.value})")
        return
    except NotFoundError:
        pass

    try:
        settings = processor.create_learner(learner, mode or get_settings().default_algorithm_mode)
    except SchedulingError as e:
        fail(e)
    console.print(f"[{STYLES['info']}]Created learner[/] {learner} (mode: {settings.algorithm_mode.value})")


@app.command()
def add(
    prompt: str = typer.Argument(..., help="Question shown to the learner"),
    answer: str = typer.Argument(..., help="Expected answer"),
    learner: str = LearnerOption,
    item_id: Optional[str] = typer.Option(None, "--id", help="Explicit item id"),
) -> None:
    """Add an item to the learner's sequence."""
    processor = build_processor()
    try:
        item = processor.add_item(learner, prompt, answer, item_id=item_id)
    except SchedulingError as e:
        fail(e)
    console.print(f"Added [bold]{item.id}[/bold]: {prompt}")


@app.command("next")
def next_item(learner: str = LearnerOption) -> None:
    """Show the item due next."""
    processor = build_processor()
    try:
        item = processor.peek_due(learner)
        due = processor.due_count(learner)
    except SchedulingError as e:
        fail(e)

    if item is None:
        console.print("[dim]No items yet.[/dim]")
        return
    display_item(item, due)
    console.print(f"[dim]Due {format_due(item.due_at)}[/dim]")


@app.command()
def answer(
    item_id: str = typer.Argument(..., help="Id of the due item"),
    response: str = typer.Argument(..., help="Your answer"),
    response_ms: int = typer.Option(5000, "--ms", help="Response time in milliseconds"),
    learner: str = LearnerOption,
    model: Optional[str] = ModelOption,
) -> None:
    """Answer the due item."""
    processor = build_processor(model)
    try:
        outcome = processor.submit_answer(learner, item_id, response, response_ms)
    except SchedulingError as e:
        fail(e)
    display_outcome(outcome)


@app.command()
def study(
    learner: str = LearnerOption,
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum reviews this session"),
    model: Optional[str] = ModelOption,
) -> None:
    """Review due items interactively (empty answer quits)."""
    processor = build_processor(model)
    reviewed = correct = 0

    try:
        while reviewed < limit:
            item = processor.peek_due(learner)
            if item is None or item.due_at > utc_now():
                console.print("[dim]Nothing due.[/dim]")
                break

            display_item(item, processor.due_count(learner))
            started = time.monotonic()
            response = Prompt.ask("Answer")
            if not response.strip():
                break
            elapsed_ms = int((time.monotonic() - started) * 1000)

            outcome = processor.submit_answer(learner, item.id, response, elapsed_ms)
            display_outcome(outcome)
            reviewed += 1
            correct += int(outcome.correct)
    except SchedulingError as e:
        fail(e)

    if reviewed:
        console.print(f"\n[{STYLES['info']}]Session:[/] {correct}/{reviewed} correct")


@app.command()
def mode(
    new_mode: Optional[str] = typer.Argument(None, help="baseline | learned | comparison"),
    learner: str = LearnerOption,
) -> None:
    """Show or change the learner's algorithm mode."""
    processor = build_processor()
    try:
        if new_mode is None:
            settings = processor.get_settings(learner)
        else:
            settings = processor.set_algorithm_mode(learner, new_mode)
    except SchedulingError as e:
        fail(e)
    console.print(f"Mode: [bold]{settings.algorithm_mode.value}[/bold]")


@app.command()
def items(learner: str = LearnerOption) -> None:
    """List items in review order."""
    processor = build_processor()
    try:
        rows = processor.items(learner)
    except SchedulingError as e:
        fail(e)

    table = Table(title=f"Items for {learner}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Id", style="cyan")
    table.add_column("Prompt")
    table.add_column("Strength", justify="right")
    table.add_column("Difficulty", justify="right")
    table.add_column("Due", justify="right")

    for position, item in enumerate(rows, start=1):
        table.add_row(
            str(position),
            item.id,
            item.prompt,
            f"{item.memory_strength:.2f}",
            f"{item.difficulty_rating:.2f}",
            format_due(item.due_at),
        )
    console.print(table)


@app.command()
def history(
    item_id: str = typer.Argument(..., help="Item id"),
    learner: str = LearnerOption,
) -> None:
    """Show an item's review records."""
    processor = build_processor()
    try:
        records = processor.history(learner, item_id)
    except SchedulingError as e:
        fail(e)

    table = Table(title=f"History for {item_id}")
    table.add_column("Reviewed", style="dim")
    table.add_column("Result")
    table.add_column("Time", justify="right")
    table.add_column("Baseline", justify="right")
    table.add_column("Learned", justify="right")
    table.add_column("Applied", justify="right")

    for record in records:
        table.add_row(
            record.reviewed_at.strftime("%Y-%m-%d %H:%M"),
            "[green]correct[/green]" if record.recalled else "[red]missed[/red]",
            f"{record.response_time_ms} ms",
            f"{record.baseline_interval:.1f}d",
            "-" if record.learned_interval is None else f"{record.learned_interval:.1f}d",
            f"{record.interval_used:.1f}d ({record.algorithm_used.value})",
        )
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
