import hashlib
from pathlib import Path

from .models import Fingerprint, FingerprintMethod, Policy

DEFAULT_CHUNK_SIZE: int = 64 * 1024
DEFAULT_MAX_HASH_FILE_SIZE: int = 1024 * 1024


def calculate_sha256(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")

    hash = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hash.update(chunk)
    return hash.hexdigest()


def max_hash_file_size(policy: Policy) -> int:
    if policy.max_hash_file_size > 0:
        return policy.max_hash_file_size
    return DEFAULT_MAX_HASH_FILE_SIZE


def fingerprint_file(
    path: Path, size: int, policy: Policy, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Fingerprint | None:
    """
    Fingerprint a single regular file.

    Parameters
    ----------
    path : Path
        File to read.
    size : int
        Size reported by ``lstat``; compared against the policy limit before
        the file is opened.
    policy : Policy
        Supplies the maximum hashable size.
    chunk_size : int
        Number of bytes read per step. The file is never loaded whole.

    Returns
    -------
    Fingerprint | None
        ``None`` when the file is larger than the policy allows.

    Raises
    ------
    OSError
        If the file cannot be opened or a read fails part way through.
    """
    if size > max_hash_file_size(policy):
        return None

    return Fingerprint(method=FingerprintMethod.SHA256, value=calculate_sha256(path, chunk_size))


def fingerprint_bytes(data: bytes) -> Fingerprint:
    """Fingerprint an in-memory buffer, such as a persisted Walk artifact."""
    return Fingerprint(method=FingerprintMethod.SHA256, value=hashlib.sha256(data).hexdigest())
