import json
import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import cast

from .errors import PersistenceError
from .models import RawWalk, Walk

logger: logging.Logger = logging.getLogger(__name__)

WALK_FILENAME_SUFFIX: str = "-walk.json"
_TIMESTAMP_FORMAT: str = "%Y%m%d-%H%M%S"


def walk_filename(hostname: str, when: datetime) -> str:
    """Name of a Walk artifact, sortable by time for a given host."""
    return f"{hostname}-{when.strftime(_TIMESTAMP_FORMAT)}{WALK_FILENAME_SUFFIX}"


def atomic_write(path: Path, data: str) -> None:
    """
    Replace `path` with `data` so readers only ever see the old or the new
    content. The temporary file lives in the same directory because
    `os.replace` is only atomic within one filesystem.
    """
    directory: Path = path.parent

    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise PersistenceError(f"Unable to write {path}: {e}") from e

    tmp_path: Path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            _ = f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise PersistenceError(f"Unable to write {path}: {e}") from e


def save_walk(walk: Walk, path: Path) -> None:
    atomic_write(path, json.dumps(walk.to_raw()))
    logger.info("Wrote walk %s to %s", walk.id, path)


def read_artifact(path: Path) -> bytes:
    """Raw content of a Walk artifact, for callers that fingerprint before parsing."""
    try:
        return path.read_bytes()
    except OSError as e:
        raise PersistenceError(f"Unable to read walk {path}: {e}") from e


def parse_walk(data: bytes, path: Path) -> Walk:
    try:
        raw: object = cast(object, json.loads(data))
    except ValueError as e:
        raise PersistenceError(f"Unable to read walk {path}: {e}") from e

    if not isinstance(raw, dict):
        raise PersistenceError(f"Walk file {path} does not contain a walk object.")

    try:
        return Walk.from_raw(cast(RawWalk, raw))
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceError(f"Walk file {path} is malformed: {e!r}") from e


def load_walk(path: Path) -> Walk:
    return parse_walk(read_artifact(path), path)


def latest_walk_path(walk_path: Path, hostname: str) -> Path:
    """
    Find the most recent Walk artifact for `hostname` below `walk_path`.

    Raises
    ------
    PersistenceError
        If the directory cannot be listed or holds no Walk for the host.
    """
    pattern: re.Pattern[str] = re.compile(
        re.escape(hostname) + r"-(\d{8}-\d{6})" + re.escape(WALK_FILENAME_SUFFIX)
    )

    try:
        candidates: list[Path] = [
            p for p in walk_path.iterdir() if p.is_file() and pattern.fullmatch(p.name)
        ]
    except OSError as e:
        raise PersistenceError(f"Unable to search {walk_path} for walks: {e}") from e

    if not candidates:
        raise PersistenceError(f"No walk found for {hostname} in {walk_path}")

    return max(candidates, key=lambda p: p.name)
