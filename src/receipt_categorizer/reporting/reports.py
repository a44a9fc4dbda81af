"""Spending summary by category."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from rich.console import Console
from rich.table import Table

from receipt_categorizer.models.categories import list_categories
from receipt_categorizer.models.receipt import Receipt
from receipt_categorizer.storage.adapter import StorageAdapter

UNCATEGORIZED = "Uncategorized"


@dataclass
class CategoryTotal:
    name: str
    count: int
    total: Decimal
    by_method: dict[str, int]


def _filter(receipts: list[Receipt], month: str | None = None) -> list[Receipt]:
    if month:
        receipts = [r for r in receipts if r.receipt_date and r.receipt_date.strftime("%Y-%m") == month]
    return receipts


def category_totals(receipts: list[Receipt]) -> list[CategoryTotal]:
    """Totals per category in taxonomy order, uncategorized receipts last."""
    grouped: dict[str, list[Receipt]] = defaultdict(list)
    for r in receipts:
        grouped[r.category_id or ""].append(r)

    order = [c.id for c in list_categories()] + [""]
    names = {c.id: c.name for c in list_categories()}
    totals: list[CategoryTotal] = []
    for category_id in order:
        items = grouped.get(category_id)
        if not items:
            continue
        by_method: dict[str, int] = defaultdict(int)
        for r in items:
            if r.category_method:
                by_method[r.category_method.value] += 1
        totals.append(CategoryTotal(
            name=names.get(category_id, UNCATEGORIZED),
            count=len(items),
            total=sum((r.total for r in items), Decimal("0")),
            by_method=dict(by_method),
        ))
    return totals


def summary_report(storage: StorageAdapter, month: str | None = None,
                   console: Console | None = None) -> None:
    """Print receipts grouped by category with totals and decision methods."""
    console = console or Console()
    receipts = _filter(storage.load_receipts(), month)

    if not receipts:
        console.print("[yellow]No receipts for the given filters.[/yellow]")
        return

    title = "Spending by Category"
    if month:
        title += f" ({month})"
    table = Table(title=title)
    table.add_column("Category", width=26)
    table.add_column("Count", justify="right", width=6)
    table.add_column("Total", justify="right", width=12)
    table.add_column("rule / heuristic / model", width=26)

    grand_total = Decimal("0")
    for row in category_totals(receipts):
        methods = " / ".join(str(row.by_method.get(m, 0)) for m in ("rule", "heuristic", "model"))
        table.add_row(row.name, str(row.count), str(row.total), methods if row.by_method else "—")
        grand_total += row.total

    table.add_section()
    table.add_row("[bold]Total[/bold]", str(len(receipts)), str(grand_total), "")
    console.print(table)
