"""Shared test fixtures for walkguard tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from walkguard.models import File, FileInfo, FileStat, Fingerprint, FingerprintMethod, Policy, Walk


@pytest.fixture
def data_tree(tmp_path: Path) -> Path:
    """
    Build a small tree:

        data/a.txt
        data/sub/b.txt
        data/sub/deeper/c.txt
    """
    root = tmp_path / "data"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha")
    (root / "sub" / "b.txt").write_bytes(b"bravo bravo")
    (root / "sub" / "deeper" / "c.txt").write_bytes(b"charlie")
    return root


@pytest.fixture
def make_file() -> Callable[..., File]:
    """Factory for synthetic File records."""

    def _make(
        path: str,
        *,
        size: int = 10,
        fingerprint: str | None = None,
        mode: int = 0o100644,
        mtime: int = 1_600_000_000_123_456_789,
        atime: int = 1_600_000_000_123_456_789,
        inode: int = 42,
        uid: int = 1000,
    ) -> File:
        return File(
            path=path,
            info=FileInfo(
                name=path.rsplit("/", 1)[-1],
                size=size,
                mode=mode,
                modified=mtime,
                is_dir=False,
            ),
            stat=FileStat(
                dev=2049,
                inode=inode,
                nlink=1,
                mode=mode,
                uid=uid,
                gid=1000,
                rdev=0,
                size=size,
                blksize=4096,
                blocks=8,
                atime=atime,
                mtime=mtime,
                ctime=mtime,
            ),
            fingerprint=(
                Fingerprint(method=FingerprintMethod.SHA256, value=fingerprint)
                if fingerprint is not None
                else None
            ),
        )

    return _make


@pytest.fixture
def make_walk() -> Callable[..., Walk]:
    """Factory for synthetic Walks over `/data`."""

    def _make(
        files: list[File],
        *,
        walk_id: str = "walk-1",
        hostname: str = "h1",
        exclude_pfx: tuple[str, ...] = (),
    ) -> Walk:
        return Walk(
            id=walk_id,
            policy=Policy(
                include=("/data",),
                exclude_pfx=exclude_pfx,
                hash_pfx=("/data",),
                max_hash_file_size=1000,
            ),
            files=tuple(files),
            notifications=(),
            hostname=hostname,
            start_walk=1_700_000_000_000_000_001,
            stop_walk=1_700_000_000_500_000_002,
        )

    return _make
