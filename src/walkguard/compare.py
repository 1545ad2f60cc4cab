import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .errors import ComparisonDefect
from .metrics import Counter
from .models import File, Notification, ReportConfig, Severity, Walk
from .walker import NotificationSink, has_prefix, normalize_prefixes

logger: logging.Logger = logging.getLogger(__name__)

_MODE_FIELDS: frozenset[str] = frozenset({"info.mode", "stat.mode"})
_TIME_FIELDS: frozenset[str] = frozenset({"info.modified", "stat.atime", "stat.mtime", "stat.ctime"})


class Category(Enum):
    ADDED = "added"
    REMOVED = "removed"
    CONTENT_CHANGED = "content-changed"
    METADATA_CHANGED = "metadata-changed"
    INDETERMINATE = "indeterminate"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class Entry:
    path: str
    category: Category
    before: File | None
    after: File | None
    # Metadata delta as "<field>: <before> => <after>" lines.
    diff: tuple[str, ...] = ()


@dataclass(slots=True)
class Report:
    before: Walk | None
    after: Walk
    entries: dict[Category, list[Entry]]
    notifications: list[Notification] = field(default_factory=list)

    def counts(self) -> dict[Category, int]:
        return {category: len(self.entries[category]) for category in Category}

    def rule_summary(self) -> dict[Category, list[str]]:
        return {category: [e.path for e in self.entries[category]] for category in Category}

    @property
    def has_changes(self) -> bool:
        return any(self.entries[c] for c in Category if c is not Category.UNCHANGED)


def format_ns(ts: int) -> str:
    seconds, nanos = divmod(ts, 1_000_000_000)
    stamp: str = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{stamp}.{nanos:09d}Z"


def _format_value(name: str, value: object) -> str:
    if name in _MODE_FIELDS and isinstance(value, int):
        return oct(value)
    if name in _TIME_FIELDS and isinstance(value, int):
        return format_ns(value)
    return repr(value)


def metadata_diff(before: File, after: File, *, ignore_atime: bool = False) -> list[str]:
    diffs: list[str] = []

    for prefix, b, a in (("info", before.info, after.info), ("stat", before.stat, after.stat)):
        for f in dataclasses.fields(b):
            name: str = f"{prefix}.{f.name}"
            if ignore_atime and name == "stat.atime":
                continue

            old: object = getattr(b, f.name)
            new: object = getattr(a, f.name)
            if old != new:
                diffs.append(f"{name}: {_format_value(name, old)} => {_format_value(name, new)}")

    return diffs


def classify(path: str, before: File | None, after: File | None, *, ignore_atime: bool = False) -> Entry:
    """
    Classify one path present in at least one of the two Walks.

    Content beats metadata: when both sides carry a fingerprint and they
    differ, the entry is CONTENT_CHANGED whatever else changed. A fingerprint
    on only one side makes content comparison impossible (INDETERMINATE).
    """
    if before is None and after is None:
        raise ValueError(f"{path} is in neither walk")
    if before is None:
        return Entry(path=path, category=Category.ADDED, before=None, after=after)
    if after is None:
        return Entry(path=path, category=Category.REMOVED, before=before, after=None)

    diff: tuple[str, ...] = tuple(metadata_diff(before, after, ignore_atime=ignore_atime))
    before_fp = before.fingerprint
    after_fp = after.fingerprint

    if before_fp is not None and after_fp is not None and before_fp != after_fp:
        category: Category = Category.CONTENT_CHANGED
    elif (before_fp is None) != (after_fp is None):
        category = Category.INDETERMINATE
    elif diff:
        category = Category.METADATA_CHANGED
    else:
        category = Category.UNCHANGED

    return Entry(path=path, category=category, before=before, after=after, diff=diff)


def _partition(items: list[str], parts: int) -> list[list[str]]:
    size: int = max(1, -(-len(items) // parts))
    return [items[i : i + size] for i in range(0, len(items), size)]


_COUNTER_NAMES: dict[Category, str] = {
    Category.ADDED: "files-added",
    Category.REMOVED: "files-removed",
    Category.CONTENT_CHANGED: "files-content-changed",
    Category.METADATA_CHANGED: "files-metadata-changed",
    Category.INDETERMINATE: "files-indeterminate",
    Category.UNCHANGED: "files-unchanged",
}


class Comparer:
    """
    Diffs two Walks into classified entries.

    Paths excluded by the ReportConfig or by either Walk's own Policy are
    left out of the result even when both Walks recorded them. The output is
    always sorted by path, whatever `max_workers` is.
    """

    def __init__(
        self,
        report_config: ReportConfig | None = None,
        *,
        counter: Counter | None = None,
        max_workers: int = 1,
        strict: bool = False,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        self.report_config: ReportConfig = report_config if report_config is not None else ReportConfig()
        self.counter: Counter = counter if counter is not None else Counter()
        self.max_workers: int = max_workers
        self.strict: bool = strict

    def index(self, walk: Walk, sink: NotificationSink) -> dict[str, File]:
        """
        Index the Files of `walk` by path.

        A path recorded twice is a defect in the Walk: the first occurrence
        is kept, the rest are dropped and reported.
        """
        files: dict[str, File] = {}

        for f in walk.files:
            if f.path not in files:
                files[f.path] = f
                continue

            if self.strict:
                raise ComparisonDefect(f.path, f"duplicate path in walk {walk.id}")

            self.counter.add("comparison-defects")
            sink.notify(
                Severity.ERROR, f.path, f"duplicate path in walk {walk.id}; keeping the first occurrence"
            )

        return files

    def exclusions(self, before: Walk | None, after: Walk) -> tuple[str, ...]:
        prefixes: list[str] = list(self.report_config.exclude_pfx)
        prefixes.extend(after.policy.exclude_pfx)
        if before is not None:
            prefixes.extend(before.policy.exclude_pfx)
        return normalize_prefixes(prefixes)

    def compare(self, before: Walk | None, after: Walk) -> Report:
        sink: NotificationSink = NotificationSink(self.counter)

        before_files: dict[str, File] = self.index(before, sink) if before is not None else {}
        after_files: dict[str, File] = self.index(after, sink)
        exclude_pfx: tuple[str, ...] = self.exclusions(before, after)

        paths: list[str] = []
        excluded: int = 0
        for path in sorted(before_files.keys() | after_files.keys()):
            if has_prefix(path, exclude_pfx):
                excluded += 1
            else:
                paths.append(path)

        if excluded:
            self.counter.add("files-excluded", excluded)

        def classify_chunk(chunk: list[str]) -> list[Entry]:
            return [
                classify(
                    path,
                    before_files.get(path),
                    after_files.get(path),
                    ignore_atime=self.report_config.ignore_atime,
                )
                for path in chunk
            ]

        if self.max_workers > 1 and len(paths) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results: list[list[Entry]] = list(
                    executor.map(classify_chunk, _partition(paths, self.max_workers))
                )
        else:
            results = [classify_chunk(paths)]

        entries: dict[Category, list[Entry]] = {category: [] for category in Category}
        for chunk_entries in results:
            for entry in chunk_entries:
                entries[entry.category].append(entry)

        for category in Category:
            entries[category].sort(key=lambda e: e.path)
            self.counter.add(_COUNTER_NAMES[category], len(entries[category]))

        for entry in entries[Category.INDETERMINATE]:
            sink.notify(
                Severity.WARNING,
                entry.path,
                "fingerprint present in only one walk; content could not be compared",
            )

        logger.debug("Compared %d paths (%d excluded)", len(paths), excluded)

        return Report(
            before=before, after=after, entries=entries, notifications=list(sink.notifications())
        )
