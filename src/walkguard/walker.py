import dataclasses
import logging
import os
import socket
import stat
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

from .errors import ConfigError
from .fingerprint import DEFAULT_CHUNK_SIZE, fingerprint_file, max_hash_file_size
from .metrics import Counter
from .models import File, FileInfo, FileStat, Fingerprint, Notification, Policy, Severity, Walk

logger: logging.Logger = logging.getLogger(__name__)

_LOG_LEVELS: dict[Severity, int] = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


def normalize_prefixes(prefixes: Iterable[str]) -> tuple[str, ...]:
    """Absolute, normalized forms of `prefixes`. Relative ones resolve against the cwd."""
    return tuple(os.path.abspath(p) for p in prefixes if p)


def has_prefix(path: str, prefixes: Iterable[str]) -> bool:
    """
    Whether `path` is one of `prefixes` or lies below one of them.

    Matching is per path segment, so `/tmp` matches `/tmp/x` but not
    `/tmpfiles`.
    """
    normalized: str = os.path.normpath(path)
    for prefix in prefixes:
        if normalized == prefix or normalized.startswith(prefix.rstrip(os.sep) + os.sep):
            return True
    return False


def _is_nested(parent: str, child: str) -> bool:
    if parent == child:
        return True
    return child.startswith(parent if parent.endswith(os.sep) else parent + os.sep)


def check_include_roots(include: Iterable[str]) -> tuple[str, ...]:
    """
    Normalize and validate the include roots of a policy.

    Raises
    ------
    ConfigError
        If no roots are given or one root lies inside another, which would
        make the walker visit (and record) the same paths twice.
    """
    roots: list[str] = []
    for raw_root in include:
        root: str = os.path.abspath(raw_root)
        if root not in roots:
            roots.append(root)

    if not roots:
        raise ConfigError("Policy must include at least one path.")

    for parent in roots:
        for child in roots:
            if parent != child and _is_nested(parent, child):
                raise ConfigError(f"Include paths must not contain each other: {parent} contains {child}")

    return tuple(roots)


class NotificationSink:
    """Collects Notifications from concurrent walker threads."""

    def __init__(self, counter: Counter) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._notifications: list[Notification] = []
        self._counter: Counter = counter

    def notify(self, severity: Severity, path: str, message: str) -> None:
        with self._lock:
            self._notifications.append(Notification(severity=severity, path=path, message=message))

        self._counter.add(f"notifications-{severity.value.lower()}")
        logger.log(_LOG_LEVELS[severity], "%s: %s", path, message)

    def notifications(self) -> tuple[Notification, ...]:
        with self._lock:
            return tuple(self._notifications)


def file_from_stat(path: str, st: os.stat_result, fingerprint: Fingerprint | None = None) -> File:
    is_dir: bool = stat.S_ISDIR(st.st_mode)

    return File(
        path=path,
        info=FileInfo(
            name=os.path.basename(path) or path,
            size=st.st_size,
            mode=st.st_mode,
            modified=st.st_mtime_ns,
            is_dir=is_dir,
        ),
        stat=FileStat(
            dev=st.st_dev,
            inode=st.st_ino,
            nlink=st.st_nlink,
            mode=st.st_mode,
            uid=st.st_uid,
            gid=st.st_gid,
            rdev=getattr(st, "st_rdev", 0),
            size=st.st_size,
            blksize=getattr(st, "st_blksize", 0),
            blocks=getattr(st, "st_blocks", 0),
            atime=st.st_atime_ns,
            mtime=st.st_mtime_ns,
            ctime=st.st_ctime_ns,
        ),
        fingerprint=fingerprint,
    )


class Walker:
    """
    Walks every include root of a Policy and builds a Walk.

    One task per include root is submitted to a fixed size thread pool, so
    the number of roots never dictates the degree of parallelism. Within a
    root the traversal is depth-first and never follows symlinks.
    """

    def __init__(
        self,
        policy: Policy,
        *,
        counter: Counter | None = None,
        max_workers: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        hostname: str | None = None,
        on_file: Callable[[File], None] | None = None,
    ) -> None:
        if max_workers is not None and max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")

        self._roots: tuple[str, ...] = check_include_roots(policy.include)
        self._exclude_pfx: tuple[str, ...] = normalize_prefixes(policy.exclude_pfx)
        self._hash_pfx: tuple[str, ...] = normalize_prefixes(policy.hash_pfx)
        self._max_hash_size: int = max_hash_file_size(policy)

        # Recorded in the Walk with absolute paths.
        self.policy: Policy = dataclasses.replace(
            policy, include=self._roots, exclude_pfx=self._exclude_pfx, hash_pfx=self._hash_pfx
        )
        self.counter: Counter = counter if counter is not None else Counter()
        self.max_workers: int = max_workers or os.cpu_count() or 1
        self.chunk_size: int = chunk_size
        self.hostname: str = hostname or socket.gethostname()
        self.on_file: Callable[[File], None] | None = on_file

    def run(self) -> Walk:
        start_walk: int = time.time_ns()
        sink: NotificationSink = NotificationSink(self.counter)
        files: list[File] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            in_flight: dict[Future[list[File]], str] = {
                executor.submit(self._walk_root, root, sink): root for root in self._roots
            }

            for future in as_completed(in_flight):
                root_files: list[File] = future.result()
                logger.debug("Finished %s: %d entries", in_flight[future], len(root_files))

                if self.on_file is not None:
                    for f in root_files:
                        self.on_file(f)

                files.extend(root_files)

        stop_walk: int = time.time_ns()

        return Walk(
            id=str(uuid.uuid4()),
            policy=self.policy,
            files=tuple(files),
            notifications=sink.notifications(),
            hostname=self.hostname,
            start_walk=start_walk,
            stop_walk=stop_walk,
        )

    def _walk_root(self, root: str, sink: NotificationSink) -> list[File]:
        files: list[File] = []

        try:
            root_st: os.stat_result = os.lstat(root)
        except OSError as e:
            sink.notify(Severity.ERROR, root, f"unable to stat include path: {e}")
            return files

        self.counter.add("roots-walked")
        root_dev: int = root_st.st_dev

        # Depth-first via an explicit stack.
        pending: list[tuple[str, os.stat_result, int]] = [(root, root_st, 0)]
        while pending:
            path, st, depth = pending.pop()

            record, descend = self._visit(path, st, depth, root_dev, sink)
            if record is not None:
                files.append(record)

            if not descend:
                continue

            for child_path, child_st in reversed(self._list_dir(path, sink)):
                pending.append((child_path, child_st, depth + 1))

        return files

    def _list_dir(self, path: str, sink: NotificationSink) -> list[tuple[str, os.stat_result]]:
        """
        Return the immediate entries of `path` with their lstat results.

        Entries whose metadata cannot be read are reported and left out.
        """
        entries: list[tuple[str, os.stat_result]] = []

        try:
            with os.scandir(path) as it:
                for entry in it:
                    try:
                        entries.append((entry.path, entry.stat(follow_symlinks=False)))
                    except OSError as e:
                        self.counter.add("files-stat-failed")
                        sink.notify(Severity.ERROR, entry.path, f"unable to stat: {e}")
        except OSError as e:
            sink.notify(Severity.ERROR, path, f"unable to read directory: {e}")

        entries.sort(key=lambda item: item[0])
        return entries

    def _visit(
        self, path: str, st: os.stat_result, depth: int, root_dev: int, sink: NotificationSink
    ) -> tuple[File | None, bool]:
        if has_prefix(path, self._exclude_pfx):
            self.counter.add("files-skipped-excluded")
            logger.debug("Excluded: %s", path)
            return None, False

        if stat.S_ISDIR(st.st_mode):
            if not self.policy.walk_cross_device and st.st_dev != root_dev:
                self.counter.add("files-skipped-device")
                sink.notify(Severity.INFO, path, "not walking into a different device")
                return None, False

            self.counter.add("dirs-walked")

            limit: int = self.policy.max_directory_depth
            descend: bool = limit == 0 or depth < limit
            if not descend:
                self.counter.add("dirs-depth-limited")

            return file_from_stat(path, st), descend

        if stat.S_ISREG(st.st_mode):
            self.counter.add("files-walked")
            return file_from_stat(path, st, self._fingerprint(path, st, sink)), False

        if self.policy.ignore_irregular_files:
            self.counter.add("files-skipped-irregular")
            return None, False

        self.counter.add("files-irregular")
        return file_from_stat(path, st), False

    def _fingerprint(self, path: str, st: os.stat_result, sink: NotificationSink) -> Fingerprint | None:
        if not has_prefix(path, self._hash_pfx):
            return None

        if st.st_size > self._max_hash_size:
            self.counter.add("files-hash-too-large")
            sink.notify(
                Severity.WARNING,
                path,
                f"not hashing: size {st.st_size} exceeds the limit of {self._max_hash_size} bytes",
            )
            return None

        try:
            fingerprint: Fingerprint | None = fingerprint_file(
                Path(path), st.st_size, self.policy, self.chunk_size
            )
        except OSError as e:
            self.counter.add("files-hash-failed")
            sink.notify(Severity.ERROR, path, f"unable to hash: {e}")
            return None

        self.counter.add("files-hashed")
        return fingerprint
