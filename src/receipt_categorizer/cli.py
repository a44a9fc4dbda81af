"""Click CLI: ingestion, categorization and queue inspection."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from receipt_categorizer import config
from receipt_categorizer.classification.model import ModelClassifier
from receipt_categorizer.classification.pipeline import Categorizer
from receipt_categorizer.errors import IngestError
from receipt_categorizer.ingestion.loader import ingest_file
from receipt_categorizer.ingestion.queue import QueueWorker
from receipt_categorizer.logs import configure_logging
from receipt_categorizer.models.categories import confidence_label, find_category, list_categories
from receipt_categorizer.models.outcome import CategorizationResult
from receipt_categorizer.models.receipt import ReceiptStatus
from receipt_categorizer.storage.local_json import LocalJsonStorage

console = Console()

OUTCOME_STYLES = {"accepted": "green", "rejected": "yellow", "failed": "red"}


def _get_storage(ctx: click.Context) -> LocalJsonStorage:
    return LocalJsonStorage(ctx.obj["data_dir"])


def _get_model() -> ModelClassifier:
    return ModelClassifier()


def _get_categorizer(ctx: click.Context) -> Categorizer:
    return Categorizer(_get_storage(ctx), _get_model())


def _find_json(paths: tuple[Path, ...]) -> list[Path]:
    """Expand directories into the extraction files they contain."""
    found: list[Path] = []
    for p in paths:
        if p.is_dir():
            found.extend(sorted(f for f in p.iterdir() if f.is_file() and f.suffix.lower() in config.SUPPORTED_EXTENSIONS))
        else:
            found.append(p)
    return found


def _fmt_conf(confidence: float | None) -> str:
    return f"{confidence:.2f}" if confidence is not None else "—"


def _print_result(result: CategorizationResult) -> None:
    table = Table(title=f"Receipt {result.receipt_id}")
    table.add_column("Stage", width=10)
    table.add_column("Outcome", width=9)
    table.add_column("Category", width=14)
    table.add_column("Conf", justify="right", width=5)
    table.add_column("Details")
    for step in result.trace:
        style = OUTCOME_STYLES.get(step.outcome, "white")
        table.add_row(
            step.stage.value,
            f"[{style}]{step.outcome}[/{style}]",
            step.category_id or "—",
            _fmt_conf(step.confidence),
            escape(json.dumps(step.details, default=str)),
        )
    if result.trace:
        console.print(table)

    if result.ok:
        note = " (already categorized)" if result.idempotent else ""
        console.print(
            f"[green]categorized[/green]  {result.category} via {result.method.value if result.method else '?'}, "
            f"confidence {_fmt_conf(result.confidence)} ({confidence_label(result.confidence)}){note}"
        )
    else:
        retry = " — retryable" if result.retryable else ""
        console.print(f"[red]not categorized[/red]  reason: {result.reason}{retry}")


@click.group()
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory holding the JSON tables")
@click.option("-v", "--verbose", is_flag=True, help="Log every stage decision")
@click.pass_context
def cli(ctx: click.Context, data_dir: Path | None, verbose: bool) -> None:
    """Receipt categorizer: rules, heuristics, then a model fallback."""
    configure_logging("DEBUG" if verbose else None)
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir or config.DATA_DIR


@cli.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--force", is_flag=True, help="Re-ingest even if the file was seen before")
@click.pass_context
def ingest(ctx: click.Context, paths: tuple[Path, ...], force: bool) -> None:
    """Load extraction JSON files as ocr_done receipts and queue them."""
    storage = _get_storage(ctx)
    new_count = skip_count = fail_count = 0

    for path in _find_json(paths):
        try:
            receipt, created = ingest_file(storage, path, force=force)
        except IngestError as e:
            console.print(f"  [red]fail[/red]  {path.name} ({e})")
            fail_count += 1
            continue
        if not created:
            console.print(f"  [dim]skip[/dim]  {path.name} (already ingested as {receipt.id})")
            skip_count += 1
            continue
        console.print(f"  [green]  ok[/green]  {path.name} — {receipt.merchant} {receipt.total} -> {receipt.id}")
        new_count += 1

    console.print(f"\nDone: {new_count} ingested, {skip_count} skipped, {fail_count} failed")
    if fail_count:
        raise SystemExit(1)


@cli.command()
@click.argument("receipt_id")
@click.option("--json", "as_json", is_flag=True, help="Print the trigger payload as JSON")
@click.pass_context
def categorize(ctx: click.Context, receipt_id: str, as_json: bool) -> None:
    """Categorize one receipt and show every stage that ran."""
    result = _get_categorizer(ctx).categorize(receipt_id)
    if as_json:
        payload = result.to_payload()
        payload["receipt_id"] = result.receipt_id
        payload["trace"] = [
            {"stage": s.stage.value, "outcome": s.outcome, "category_id": s.category_id,
             "confidence": s.confidence, "details": s.details}
            for s in result.trace
        ]
        click.echo(json.dumps(payload, default=str))
    else:
        _print_result(result)
    if not result.ok:
        raise SystemExit(1)


@cli.command()
@click.option("-m", "--merchant", default="", help="Merchant name")
@click.option("-t", "--text", default="", help="Raw OCR text")
@click.option("-i", "--item", "items", multiple=True, help="Line item description (repeatable)")
@click.pass_context
def explain(ctx: click.Context, merchant: str, text: str, items: tuple[str, ...]) -> None:
    """Dry-run the rule and context stages without touching storage."""
    categorizer = Categorizer(_get_storage(ctx), _get_model())
    match, scores, pick = categorizer.explain(merchant, text, items)

    if match:
        console.print(
            f"Rule: [green]{match.category.name}[/green] ({match.confidence:.2f}) "
            f"via {match.source} '{match.pattern}'"
        )
    else:
        console.print("Rule: [yellow]no match[/yellow]")

    table = Table(title="Context scores")
    table.add_column("Category", width=26)
    table.add_column("Score", justify="right", width=8)
    for s in scores:
        table.add_row(s.category.name, f"{s.score:.3f}")
    console.print(table)

    if pick.low_confidence:
        console.print(f"Heuristic: [yellow]{pick.category.name} (default, low confidence)[/yellow]")
    else:
        console.print(f"Heuristic: [green]{pick.category.name}[/green] ({pick.confidence:.2f})")


@cli.command()
@click.option("-n", "--limit", default=config.BATCH_LIMIT, show_default=True)
@click.pass_context
def batch(ctx: click.Context, limit: int) -> None:
    """Categorize every receipt still waiting in ocr_done."""
    results = _get_categorizer(ctx).categorize_pending(limit)
    if not results:
        console.print("[yellow]No receipts waiting for categorization.[/yellow]")
        return
    ok = 0
    for r in results:
        if r.ok:
            ok += 1
            console.print(f"  [green]  ok[/green]  {r.receipt_id} — {r.category} ({r.method.value if r.method else '?'})")
        else:
            console.print(f"  [red]fail[/red]  {r.receipt_id} — {r.reason}")
    console.print(f"\nDone: {ok} categorized, {len(results) - ok} not categorized")


@cli.command("process-queue")
@click.option("-n", "--limit", default=10, show_default=True)
@click.option("--max-attempts", default=config.MAX_ATTEMPTS, show_default=True)
@click.pass_context
def process_queue(ctx: click.Context, limit: int, max_attempts: int) -> None:
    """Run one pass of the queue worker."""
    storage = _get_storage(ctx)
    worker = QueueWorker(storage, Categorizer(storage, _get_model()), max_attempts=max_attempts)
    summary = worker.run_once(limit)
    console.print(
        f"Done: {summary.processed} processed, {summary.retried} to retry, "
        f"{summary.dead_lettered} dead-lettered"
    )


@cli.command("list-receipts")
@click.option("-s", "--status", type=click.Choice([s.value for s in ReceiptStatus]))
@click.option("-c", "--category", help="Filter by category id or name")
@click.pass_context
def list_receipts(ctx: click.Context, status: str | None, category: str | None) -> None:
    """List receipts with their status and category."""
    receipts = _get_storage(ctx).load_receipts(ReceiptStatus(status) if status else None)
    if category:
        wanted = find_category(category)
        if wanted is None:
            console.print(f"[red]Unknown category {category!r}.[/red]")
            raise SystemExit(1)
        receipts = [r for r in receipts if r.category_id == wanted.id]

    if not receipts:
        console.print("[yellow]No receipts found.[/yellow]")
        return

    table = Table(title="Receipts")
    table.add_column("ID", style="dim", width=12)
    table.add_column("Date", width=10)
    table.add_column("Merchant", width=20)
    table.add_column("Total", justify="right", width=10)
    table.add_column("Status", width=11)
    table.add_column("Category", width=22)
    table.add_column("Conf", width=6)
    table.add_column("Method", width=9)
    for r in sorted(receipts, key=lambda x: x.created_at):
        table.add_row(
            r.id[:12],
            str(r.receipt_date) if r.receipt_date else "—",
            r.merchant,
            str(r.total),
            r.status.value,
            r.category or "Uncategorized",
            _fmt_conf(r.category_confidence),
            r.category_method.value if r.category_method else "—",
        )
    console.print(table)
    console.print(f"  ({len(receipts)} receipts)")


@cli.command()
@click.argument("receipt_id")
@click.pass_context
def predictions(ctx: click.Context, receipt_id: str) -> None:
    """Show the prediction audit log of a receipt."""
    storage = _get_storage(ctx)
    receipt = storage.find_receipt(receipt_id)
    if not receipt:
        console.print(f"[red]Receipt {receipt_id!r} not found.[/red]")
        raise SystemExit(1)

    rows = storage.list_predictions(receipt.id)
    if not rows:
        console.print("[yellow]No predictions recorded.[/yellow]")
        return
    table = Table(title=f"Predictions for {receipt.id}")
    table.add_column("When", width=19)
    table.add_column("Method", width=9)
    table.add_column("Category", width=14)
    table.add_column("Conf", justify="right", width=5)
    table.add_column("Details")
    for p in rows:
        table.add_row(
            p.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            p.method.value,
            p.category_id or "—",
            _fmt_conf(p.confidence),
            escape(json.dumps(p.details, default=str)),
        )
    console.print(table)


@cli.command("dead-letters")
@click.pass_context
def dead_letters(ctx: click.Context) -> None:
    """List receipts that exhausted their retries."""
    items = _get_storage(ctx).list_dead_letters()
    if not items:
        console.print("[green]Dead-letter queue is empty.[/green]")
        return
    table = Table(title="Dead letters")
    table.add_column("Receipt", width=32)
    table.add_column("Attempts", justify="right", width=8)
    table.add_column("Last error", width=20)
    table.add_column("Failed at", width=19)
    for item in items:
        table.add_row(
            item.receipt_id,
            str(item.attempts),
            item.last_error,
            item.failed_at.strftime("%Y-%m-%d %H:%M:%S") if item.failed_at else "—",
        )
    console.print(table)


@cli.command()
@click.argument("receipt_id")
@click.pass_context
def requeue(ctx: click.Context, receipt_id: str) -> None:
    """Move a dead-lettered receipt back onto the queue."""
    item = _get_storage(ctx).requeue(receipt_id)
    if item is None:
        console.print(f"[red]Receipt {receipt_id!r} is not dead-lettered.[/red]")
        raise SystemExit(1)
    console.print(f"Requeued {item.receipt_id}")


@cli.command()
def categories() -> None:
    """Show all expense categories."""
    table = Table(title="Expense Categories")
    table.add_column("ID", style="bold", width=14)
    table.add_column("Name", width=24)
    table.add_column("Description", width=40)
    for c in list_categories():
        table.add_row(c.id, c.name, c.description)
    console.print(table)


@cli.command()
@click.option("-m", "--month", help="Filter by month (YYYY-MM)")
@click.pass_context
def report(ctx: click.Context, month: str | None) -> None:
    """Summarize spending by category."""
    from receipt_categorizer.reporting.reports import summary_report
    summary_report(_get_storage(ctx), month=month, console=console)
