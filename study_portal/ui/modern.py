"""A Rich-powered console front-end for browsing stored study materials."""

from __future__ import annotations

from typing import Iterable, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.records import Category, StoredFile
from ..services.storage import FileStore
from .overview import CATEGORY_LABELS, OverviewSnapshot, SubjectOverview, collect_overview


class ModernUI:
    """Render a tree of subjects and a summary panel using Rich widgets."""

    def __init__(self, store: FileStore, *, console: Optional[Console] = None) -> None:
        self._store = store
        self._console = console or Console()

    def run(self) -> None:
        snapshot = collect_overview(self._store)
        console = self._console

        console.rule("[bold magenta]Study Portal Overview")

        if snapshot.subject_count == 0:
            console.print(
                Panel(
                    "No subjects have been created yet.\n"
                    "Start the server with [bold]python run.py serve[/bold] and upload a file.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        tree_panel = Panel(
            self._build_tree(snapshot.subjects),
            title="Subjects",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([tree_panel, self._build_stats_panel(snapshot)], expand=True, equal=True))
        console.print()
        console.print(
            Text("Tip: pass --style console for the plain layout.", style="dim"),
            justify="center",
        )

    def _build_tree(self, subjects: Iterable[SubjectOverview]) -> Tree:
        tree = Tree("[bold cyan]Subjects", guide_style="cyan")

        for subject in subjects:
            subject_node = tree.add(Text(subject.name, style="bold"))
            if subject.file_count == 0 and not subject.units:
                subject_node.add("[dim]No materials yet")
                continue

            if subject.units:
                notes_node = subject_node.add(CATEGORY_LABELS[Category.NOTES])
                for unit in subject.units:
                    unit_node = notes_node.add(Text(unit.name, style="bright_cyan"))
                    if not unit.files:
                        unit_node.add("[dim]No notes yet")
                    for record in unit.files:
                        unit_node.add(self._build_file_label(record))

            for category, records in subject.files.items():
                if not records:
                    continue
                category_node = subject_node.add(CATEGORY_LABELS[category])
                for record in records:
                    category_node.add(self._build_file_label(record))

        return tree

    @staticmethod
    def _build_file_label(record: StoredFile) -> Text:
        label = Text(record.title, style="white")
        label.append("  ")
        label.append(record.stored_file_name, style="green")
        if record.file_size:
            label.append(f"  {record.file_size}", style="dim")
        if record.description:
            label.append("\n")
            label.append(record.description, style="dim")
        return label

    def _build_stats_panel(self, snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Subjects", str(snapshot.subject_count))
        metrics.add_row("Units", str(snapshot.unit_count))

        totals = Table.grid(expand=True, padding=(0, 1))
        totals.add_column(style="dim")
        totals.add_column(justify="right", style="bold")
        for category, label in CATEGORY_LABELS.items():
            totals.add_row(label, str(snapshot.category_totals.get(category, 0)))

        body = Group(metrics, Rule(style="magenta"), totals)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = ["ModernUI"]
