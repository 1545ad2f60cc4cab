import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import ConfigError, IntegrityError, PersistenceError
from .fingerprint import fingerprint_bytes
from .models import RawReview, Review, Reviews, Walk
from .store import atomic_write, latest_walk_path, load_walk, parse_walk, read_artifact

logger: logging.Logger = logging.getLogger(__name__)

# Decides whether a Walk should become the new last known good.
Approval = Callable[[Walk], bool]


@dataclass(frozen=True, slots=True)
class ResolvedWalks:
    before: Walk | None
    after: Walk
    before_reference: Path | None
    after_reference: Path


class ReviewStore:
    """
    Per-host "last known good" state kept in a single YAML file.

    The file is only ever replaced as a whole, and only by `promote`.
    """

    def __init__(self, review_file: Path | None) -> None:
        self.review_file: Path | None = review_file

    def _require_review_file(self) -> Path:
        if self.review_file is None:
            raise ConfigError("A review file is required for this operation.")
        return self.review_file

    def load(self) -> Reviews:
        review_file: Path = self._require_review_file()

        if not review_file.exists():
            return Reviews()

        try:
            with review_file.open("r", encoding="utf-8") as f:
                raw: object | None = cast(object, yaml.safe_load(f))
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Unable to read reviews {review_file}: {e}") from e

        if raw is None:
            return Reviews()
        if not isinstance(raw, dict):
            raise PersistenceError(f"Reviews file {review_file} does not contain a mapping.")

        try:
            return Reviews.from_raw(cast(dict[str, dict[str, RawReview]], raw))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Reviews file {review_file} is malformed: {e!r}") from e

    def save(self, reviews: Reviews) -> None:
        review_file: Path = self._require_review_file()
        atomic_write(review_file, yaml.safe_dump(reviews.to_raw(), sort_keys=False))

    def get(self, hostname: str) -> Review | None:
        return self.load().review.get(hostname)

    def verify(self, review: Review) -> Walk:
        """
        Load the Walk a Review points at, refusing it if it was altered.

        The artifact is read once; the Walk is parsed from the same bytes
        that were fingerprinted.

        Raises
        ------
        IntegrityError
            If the artifact's fingerprint or Walk id differ from the Review.
        """
        reference: Path = Path(review.walk_reference)
        data: bytes = read_artifact(reference)
        actual = fingerprint_bytes(data)

        if actual != review.fingerprint:
            raise IntegrityError(
                f"Fingerprint mismatch for {reference}: "
                f"reviewed {review.fingerprint.value}, found {actual.value}"
            )

        walk: Walk = parse_walk(data, reference)
        if walk.id != review.walk_id:
            raise IntegrityError(f"{reference} holds walk {walk.id}, the review expects {review.walk_id}")

        return walk

    def load_reviewed_walk(self, hostname: str) -> tuple[Walk, Path] | None:
        review: Review | None = self.get(hostname)
        if review is None:
            logger.warning("No reviewed walk for %s; everything will be reported as added", hostname)
            return None

        return self.verify(review), Path(review.walk_reference)

    def resolve(
        self,
        *,
        hostname: str | None = None,
        before_file: Path | None = None,
        after_file: Path | None = None,
        walk_path: Path | None = None,
    ) -> ResolvedWalks:
        """
        Find the before and after Walks to compare.

        Explicit before and after files win outright. Otherwise the after
        Walk is `after_file` or the newest Walk of `hostname` in
        `walk_path`, and the before Walk is `before_file` or the host's
        reviewed Walk.
        """
        if before_file is not None and after_file is not None:
            return ResolvedWalks(
                before=load_walk(before_file),
                after=load_walk(after_file),
                before_reference=before_file,
                after_reference=after_file,
            )

        if not hostname:
            raise ConfigError("A hostname is required unless both before and after files are given.")

        if after_file is None:
            if walk_path is None:
                raise ConfigError("Either an after file or a walk path is required.")
            after_file = latest_walk_path(walk_path, hostname)

        after: Walk = load_walk(after_file)

        before: Walk | None = None
        before_reference: Path | None = None
        if before_file is not None:
            before = load_walk(before_file)
            before_reference = before_file
        else:
            reviewed: tuple[Walk, Path] | None = self.load_reviewed_walk(hostname)
            if reviewed is not None:
                before, before_reference = reviewed

        if before is not None:
            if before.hostname != after.hostname:
                logger.warning(
                    "Comparing walks of different hosts: %s and %s", before.hostname, after.hostname
                )
            if before.id == after.id:
                logger.warning("Before and after are the same walk (%s)", after.id)

        return ResolvedWalks(
            before=before, after=after, before_reference=before_reference, after_reference=after_file
        )

    def promote(self, hostname: str, walk: Walk, walk_reference: Path, approve: Approval) -> bool:
        """
        Make `walk` the last known good of `hostname` if `approve` agrees.

        Returns whether the reviews file was updated.
        """
        self._require_review_file()

        if not approve(walk):
            logger.info("Not updating the reviews file")
            return False

        reference: Path = walk_reference.resolve()
        data: bytes = read_artifact(reference)
        stored: Walk = parse_walk(data, reference)
        if stored.id != walk.id:
            raise IntegrityError(f"{reference} holds walk {stored.id}, not {walk.id}")

        fingerprint = fingerprint_bytes(data)

        reviews: Reviews = self.load()
        reviews.review[hostname] = Review(
            walk_id=walk.id, walk_reference=str(reference), fingerprint=fingerprint
        )
        self.save(reviews)

        logger.info("Walk %s is now the last known good for %s", walk.id, hostname)
        return True
