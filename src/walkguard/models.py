from dataclasses import dataclass, field
from enum import Enum
from typing import TypedDict, cast

WALK_VERSION: int = 1
POLICY_VERSION: int = 1
REPORT_CONFIG_VERSION: int = 1
FILE_VERSION: int = 1


class Severity(Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class FingerprintMethod(Enum):
    SHA256 = "SHA256"


class RawPolicy(TypedDict):
    version: int
    include: list[str]
    exclude_pfx: list[str]
    hash_pfx: list[str]
    max_hash_file_size: int
    walk_cross_device: bool
    ignore_irregular_files: bool
    max_directory_depth: int


class RawReportConfig(TypedDict):
    version: int
    exclude_pfx: list[str]
    ignore_atime: bool


class RawFingerprint(TypedDict):
    method: str
    value: str


class RawFileInfo(TypedDict):
    name: str
    size: int
    mode: int
    modified: int
    is_dir: bool


class RawFileStat(TypedDict):
    dev: int
    inode: int
    nlink: int
    mode: int
    uid: int
    gid: int
    rdev: int
    size: int
    blksize: int
    blocks: int
    atime: int
    mtime: int
    ctime: int


class RawFile(TypedDict):
    version: int
    path: str
    info: RawFileInfo
    stat: RawFileStat
    fingerprint: RawFingerprint | None


class RawNotification(TypedDict):
    severity: str
    path: str
    message: str


class RawWalk(TypedDict):
    id: str
    version: int
    policy: RawPolicy
    file: list[RawFile]
    notification: list[RawNotification]
    hostname: str
    start_walk: int
    stop_walk: int


class RawReview(TypedDict):
    walk_id: str
    walk_reference: str
    fingerprint: RawFingerprint


@dataclass(frozen=True, slots=True)
class Policy:
    """Traversal rules for a single Walk. Immutable once loaded."""

    include: tuple[str, ...]
    exclude_pfx: tuple[str, ...] = ()
    hash_pfx: tuple[str, ...] = ()
    # 0 means "not set"; the walker falls back to its default limit.
    max_hash_file_size: int = 0
    walk_cross_device: bool = False
    ignore_irregular_files: bool = False
    # 0 means unlimited.
    max_directory_depth: int = 0
    version: int = POLICY_VERSION

    def to_raw(self) -> RawPolicy:
        return {
            "version": self.version,
            "include": list(self.include),
            "exclude_pfx": list(self.exclude_pfx),
            "hash_pfx": list(self.hash_pfx),
            "max_hash_file_size": self.max_hash_file_size,
            "walk_cross_device": self.walk_cross_device,
            "ignore_irregular_files": self.ignore_irregular_files,
            "max_directory_depth": self.max_directory_depth,
        }

    @staticmethod
    def from_raw(raw: RawPolicy) -> "Policy":
        return Policy(
            include=tuple(raw["include"]),
            exclude_pfx=tuple(raw.get("exclude_pfx", [])),
            hash_pfx=tuple(raw.get("hash_pfx", [])),
            max_hash_file_size=int(raw.get("max_hash_file_size", 0)),
            walk_cross_device=bool(raw.get("walk_cross_device", False)),
            ignore_irregular_files=bool(raw.get("ignore_irregular_files", False)),
            max_directory_depth=int(raw.get("max_directory_depth", 0)),
            version=int(raw.get("version", POLICY_VERSION)),
        )


@dataclass(frozen=True, slots=True)
class ReportConfig:
    """Comparison-time exclusions, layered on top of each Walk's Policy."""

    exclude_pfx: tuple[str, ...] = ()
    ignore_atime: bool = False
    version: int = REPORT_CONFIG_VERSION

    def to_raw(self) -> RawReportConfig:
        return {
            "version": self.version,
            "exclude_pfx": list(self.exclude_pfx),
            "ignore_atime": self.ignore_atime,
        }

    @staticmethod
    def from_raw(raw: RawReportConfig) -> "ReportConfig":
        return ReportConfig(
            exclude_pfx=tuple(raw.get("exclude_pfx", [])),
            ignore_atime=bool(raw.get("ignore_atime", False)),
            version=int(raw.get("version", REPORT_CONFIG_VERSION)),
        )


@dataclass(frozen=True, slots=True)
class Fingerprint:
    method: FingerprintMethod
    value: str

    def to_raw(self) -> RawFingerprint:
        return {"method": self.method.value, "value": self.value}

    @staticmethod
    def from_raw(raw: RawFingerprint) -> "Fingerprint":
        return Fingerprint(method=FingerprintMethod(raw["method"]), value=str(raw["value"]))


@dataclass(frozen=True, slots=True)
class FileInfo:
    name: str
    size: int
    mode: int
    modified: int
    is_dir: bool

    def to_raw(self) -> RawFileInfo:
        return {
            "name": self.name,
            "size": self.size,
            "mode": self.mode,
            "modified": self.modified,
            "is_dir": self.is_dir,
        }

    @staticmethod
    def from_raw(raw: RawFileInfo) -> "FileInfo":
        return FileInfo(
            name=str(raw["name"]),
            size=int(raw["size"]),
            mode=int(raw["mode"]),
            modified=int(raw["modified"]),
            is_dir=bool(raw["is_dir"]),
        )


@dataclass(frozen=True, slots=True)
class FileStat:
    dev: int
    inode: int
    nlink: int
    mode: int
    uid: int
    gid: int
    rdev: int
    size: int
    blksize: int
    blocks: int
    # Times are nanoseconds since the epoch.
    atime: int
    mtime: int
    ctime: int

    def to_raw(self) -> RawFileStat:
        return {
            "dev": self.dev,
            "inode": self.inode,
            "nlink": self.nlink,
            "mode": self.mode,
            "uid": self.uid,
            "gid": self.gid,
            "rdev": self.rdev,
            "size": self.size,
            "blksize": self.blksize,
            "blocks": self.blocks,
            "atime": self.atime,
            "mtime": self.mtime,
            "ctime": self.ctime,
        }

    @staticmethod
    def from_raw(raw: RawFileStat) -> "FileStat":
        return FileStat(**{key: int(cast(int, value)) for key, value in raw.items()})


@dataclass(frozen=True, slots=True)
class File:
    path: str
    info: FileInfo
    stat: FileStat
    fingerprint: Fingerprint | None = None
    version: int = FILE_VERSION

    def to_raw(self) -> RawFile:
        return {
            "version": self.version,
            "path": self.path,
            "info": self.info.to_raw(),
            "stat": self.stat.to_raw(),
            "fingerprint": self.fingerprint.to_raw() if self.fingerprint is not None else None,
        }

    @staticmethod
    def from_raw(raw: RawFile) -> "File":
        raw_fp: RawFingerprint | None = raw.get("fingerprint")
        return File(
            path=str(raw["path"]),
            info=FileInfo.from_raw(raw["info"]),
            stat=FileStat.from_raw(raw["stat"]),
            fingerprint=Fingerprint.from_raw(raw_fp) if raw_fp is not None else None,
            version=int(raw.get("version", FILE_VERSION)),
        )


@dataclass(frozen=True, slots=True)
class Notification:
    severity: Severity
    path: str
    message: str

    def to_raw(self) -> RawNotification:
        return {"severity": self.severity.value, "path": self.path, "message": self.message}

    @staticmethod
    def from_raw(raw: RawNotification) -> "Notification":
        return Notification(
            severity=Severity(raw["severity"]), path=str(raw["path"]), message=str(raw["message"])
        )


@dataclass(frozen=True, slots=True)
class Walk:
    """One completed snapshot. Never mutated once built."""

    id: str
    policy: Policy
    files: tuple[File, ...]
    notifications: tuple[Notification, ...]
    hostname: str
    start_walk: int
    stop_walk: int
    version: int = WALK_VERSION

    def to_raw(self) -> RawWalk:
        return {
            "id": self.id,
            "version": self.version,
            "policy": self.policy.to_raw(),
            "file": [f.to_raw() for f in self.files],
            "notification": [n.to_raw() for n in self.notifications],
            "hostname": self.hostname,
            "start_walk": self.start_walk,
            "stop_walk": self.stop_walk,
        }

    @staticmethod
    def from_raw(raw: RawWalk) -> "Walk":
        return Walk(
            id=str(raw["id"]),
            policy=Policy.from_raw(raw["policy"]),
            files=tuple(File.from_raw(f) for f in raw.get("file", [])),
            notifications=tuple(Notification.from_raw(n) for n in raw.get("notification", [])),
            hostname=str(raw["hostname"]),
            start_walk=int(raw["start_walk"]),
            stop_walk=int(raw["stop_walk"]),
            version=int(raw.get("version", WALK_VERSION)),
        )


@dataclass(frozen=True, slots=True)
class Review:
    """A host's last known good Walk and the fingerprint protecting it."""

    walk_id: str
    walk_reference: str
    fingerprint: Fingerprint

    def to_raw(self) -> RawReview:
        return {
            "walk_id": self.walk_id,
            "walk_reference": self.walk_reference,
            "fingerprint": self.fingerprint.to_raw(),
        }

    @staticmethod
    def from_raw(raw: RawReview) -> "Review":
        return Review(
            walk_id=str(raw["walk_id"]),
            walk_reference=str(raw["walk_reference"]),
            fingerprint=Fingerprint.from_raw(raw["fingerprint"]),
        )


@dataclass(slots=True)
class Reviews:
    # Keyed by hostname.
    review: dict[str, Review] = field(default_factory=dict)

    def to_raw(self) -> dict[str, dict[str, RawReview]]:
        return {"review": {host: self.review[host].to_raw() for host in sorted(self.review)}}

    @staticmethod
    def from_raw(raw: dict[str, dict[str, RawReview]]) -> "Reviews":
        return Reviews(
            review={str(host): Review.from_raw(rev) for host, rev in (raw.get("review") or {}).items()}
        )
