from rich.console import Console
from rich.table import Table
from rich.text import Text

from .compare import Category, Entry, Report, format_ns
from .metrics import Counter
from .models import File, Severity, Walk

_TITLES: dict[Category, str] = {
    Category.ADDED: "Added",
    Category.REMOVED: "Removed",
    Category.CONTENT_CHANGED: "Content changed",
    Category.METADATA_CHANGED: "Metadata changed",
    Category.INDETERMINATE: "Indeterminate",
    Category.UNCHANGED: "Unchanged",
}

_STYLES: dict[Category, str] = {
    Category.ADDED: "green",
    Category.REMOVED: "red",
    Category.CONTENT_CHANGED: "bold red",
    Category.METADATA_CHANGED: "yellow",
    Category.INDETERMINATE: "magenta",
    Category.UNCHANGED: "dim",
}


def _walk_row(table: Table, label: str, walk: Walk | None) -> None:
    if walk is None:
        table.add_row(label, "-", "-", "-", "-", "-")
        return

    errors: int = sum(1 for n in walk.notifications if n.severity is Severity.ERROR)
    table.add_row(
        label,
        walk.id,
        walk.hostname,
        format_ns(walk.start_walk),
        str(len(walk.files)),
        f"{len(walk.notifications)} ({errors} errors)",
    )


def print_report_summary(console: Console, report: Report) -> None:
    """Print which Walks were compared and how many paths fall in each category."""
    walks: Table = Table(title="Walks")
    walks.add_column("")
    walks.add_column("Walk ID")
    walks.add_column("Host")
    walks.add_column("Started (UTC)")
    walks.add_column("Files", justify="right")
    walks.add_column("Notifications", justify="right")

    _walk_row(walks, "Before", report.before)
    _walk_row(walks, "After", report.after)
    console.print(walks)

    summary: Table = Table(title="Report summary")
    summary.add_column("Category")
    summary.add_column("Files", justify="right")
    for category, count in report.counts().items():
        summary.add_row(Text(_TITLES[category], style=_STYLES[category]), str(count))
    console.print(summary)

    if not report.has_changes:
        console.print("[green]No changes detected.[/green]")


def print_rule_summary(console: Console, report: Report) -> None:
    """Print the changed paths of every category, sorted by path."""
    for category, paths in report.rule_summary().items():
        if category is Category.UNCHANGED or not paths:
            continue

        console.print(Text(f"{_TITLES[category]} ({len(paths)}):", style=_STYLES[category]))
        for path in paths:
            console.print(f"  {path}", highlight=False, markup=False, soft_wrap=True)

    for notification in report.notifications:
        console.print(
            f"[{notification.severity.value}] {notification.path}: {notification.message}",
            highlight=False,
            markup=False,
            soft_wrap=True,
        )


def _print_entry(console: Console, entry: Entry) -> None:
    console.print(Text(f"{_TITLES[entry.category]}: {entry.path}", style=_STYLES[entry.category]))

    before_fp = entry.before.fingerprint if entry.before is not None else None
    after_fp = entry.after.fingerprint if entry.after is not None else None
    if before_fp != after_fp:
        console.print(
            f"  fingerprint: {before_fp.value if before_fp else '-'} => {after_fp.value if after_fp else '-'}",
            highlight=False,
        )

    for line in entry.diff:
        console.print(f"  {line}", highlight=False, markup=False)


def print_details(console: Console, report: Report) -> None:
    """Print per-file before/after detail for every changed path."""
    for category in Category:
        if category is Category.UNCHANGED:
            continue
        for entry in report.entries[category]:
            _print_entry(console, entry)


def print_file(console: Console, f: File) -> None:
    fingerprint: str = f.fingerprint.value if f.fingerprint is not None else ""
    console.print(
        f"{oct(f.info.mode)} {f.stat.uid}:{f.stat.gid} {f.info.size:>12} {f.path} {fingerprint}",
        highlight=False,
        markup=False,
        soft_wrap=True,
    )


def print_metrics(console: Console, counter: Counter) -> None:
    table: Table = Table(title="Metrics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    for name, value in counter.snapshot().items():
        table.add_row(name, str(value))

    console.print(table)
