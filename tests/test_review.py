"""Tests for baseline resolution, integrity checks and promotion."""

from __future__ import annotations

import pytest
import yaml

import walkguard.review as review_module
from walkguard.errors import ConfigError, IntegrityError, PersistenceError
from walkguard.fingerprint import fingerprint_bytes
from walkguard.models import Review
from walkguard.review import ReviewStore
from walkguard.store import save_walk


def _approve(walk) -> bool:
    return True


def _reject(walk) -> bool:
    return False


@pytest.fixture
def saved_walks(tmp_path, make_file, make_walk):
    walks_dir = tmp_path / "walks"
    before = make_walk([make_file("/data/a", fingerprint="1" * 64)], walk_id="walk-before")
    after = make_walk([make_file("/data/a", fingerprint="2" * 64)], walk_id="walk-after")
    before_path = walks_dir / "h1-20240101-000000-walk.json"
    after_path = walks_dir / "h1-20240102-000000-walk.json"
    save_walk(before, before_path)
    save_walk(after, after_path)
    return before, before_path, after, after_path


def test_promote_then_resolve(tmp_path, saved_walks):
    before, before_path, after, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")

    assert store.promote("h1", before, before_path, _approve)
    resolved = store.resolve(hostname="h1", after_file=after_path)

    assert resolved.before == before
    assert resolved.after == after
    assert resolved.before_reference == before_path.resolve()


def test_promotion_records_fingerprint_of_artifact(tmp_path, saved_walks):
    before, before_path, _, _ = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")

    store.promote("h1", before, before_path, _approve)
    review = store.get("h1")

    assert review == Review(
        walk_id="walk-before",
        walk_reference=str(before_path.resolve()),
        fingerprint=fingerprint_bytes(before_path.read_bytes()),
    )


def test_altered_artifact_fails_integrity_check(tmp_path, saved_walks):
    before, before_path, _, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")
    store.promote("h1", before, before_path, _approve)

    data = bytearray(before_path.read_bytes())
    data[-2] = ord(" ") if data[-2] != ord(" ") else ord("\n")
    before_path.write_bytes(bytes(data))

    with pytest.raises(IntegrityError):
        store.resolve(hostname="h1", after_file=after_path)


def test_corrupted_artifact_fails_integrity_check(tmp_path, saved_walks):
    before, before_path, _, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")
    store.promote("h1", before, before_path, _approve)

    before_path.write_bytes(before_path.read_bytes()[:-10])

    with pytest.raises(IntegrityError):
        store.resolve(hostname="h1", after_file=after_path)


def test_review_pointing_at_another_walk_fails(tmp_path, saved_walks):
    _, before_path, _, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")
    forged = Review(
        walk_id="some-other-walk",
        walk_reference=str(before_path),
        fingerprint=fingerprint_bytes(before_path.read_bytes()),
    )

    with pytest.raises(IntegrityError):
        store.verify(forged)


def test_rejected_promotion_writes_nothing(tmp_path, saved_walks):
    before, before_path, _, _ = saved_walks
    review_file = tmp_path / "reviews.yaml"

    assert not ReviewStore(review_file).promote("h1", before, before_path, _reject)
    assert not review_file.exists()


def test_promotion_keeps_other_hosts(tmp_path, saved_walks):
    before, before_path, after, after_path = saved_walks
    review_file = tmp_path / "reviews.yaml"
    store = ReviewStore(review_file)

    store.promote("h1", before, before_path, _approve)
    store.promote("h2", before, before_path, _approve)
    store.promote("h1", after, after_path, _approve)

    reviews = store.load()
    assert reviews.review["h1"].walk_id == "walk-after"
    assert reviews.review["h2"].walk_id == "walk-before"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["reviews.yaml", "walks"]


def test_promotion_refuses_mismatched_artifact(tmp_path, saved_walks):
    before, _, _, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")

    with pytest.raises(IntegrityError):
        store.promote("h1", before, after_path, _approve)


def test_explicit_files_override_reviews(tmp_path, saved_walks):
    before, before_path, after, after_path = saved_walks
    review_file = tmp_path / "reviews.yaml"
    review_file.write_text("review: {h1: {walk_id: x, walk_reference: /nope, fingerprint: {method: SHA256, value: y}}}")

    resolved = ReviewStore(review_file).resolve(
        hostname="h1", before_file=before_path, after_file=after_path
    )

    assert resolved.before == before
    assert resolved.after == after


def test_host_without_review_has_no_before(tmp_path, saved_walks):
    _, _, after, after_path = saved_walks
    resolved = ReviewStore(tmp_path / "reviews.yaml").resolve(hostname="h1", after_file=after_path)

    assert resolved.before is None
    assert resolved.after == after


def test_latest_walk_is_found_in_walk_path(tmp_path, saved_walks):
    before, before_path, after, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")
    store.promote("h1", before, before_path, _approve)

    resolved = store.resolve(hostname="h1", walk_path=after_path.parent)

    assert resolved.after == after
    assert resolved.after_reference == after_path


def test_hostname_required_without_explicit_files(tmp_path, saved_walks):
    with pytest.raises(ConfigError):
        ReviewStore(tmp_path / "reviews.yaml").resolve(after_file=saved_walks[3])


def test_after_source_required(tmp_path):
    with pytest.raises(ConfigError):
        ReviewStore(tmp_path / "reviews.yaml").resolve(hostname="h1")


def test_review_file_required_for_review_lookup(saved_walks):
    with pytest.raises(ConfigError):
        ReviewStore(None).resolve(hostname="h1", after_file=saved_walks[3])


def test_missing_referenced_walk_is_fatal(tmp_path, saved_walks):
    before, before_path, _, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")
    store.promote("h1", before, before_path, _approve)
    before_path.unlink()

    with pytest.raises(PersistenceError):
        store.resolve(hostname="h1", after_file=after_path)


def test_malformed_reviews_file(tmp_path):
    review_file = tmp_path / "reviews.yaml"
    review_file.write_text("- just\n- a list\n")
    with pytest.raises(PersistenceError):
        ReviewStore(review_file).load()


def test_reviews_file_is_plain_yaml(tmp_path, saved_walks):
    before, before_path, _, _ = saved_walks
    review_file = tmp_path / "reviews.yaml"
    ReviewStore(review_file).promote("h1", before, before_path, _approve)

    raw = yaml.safe_load(review_file.read_text())

    assert raw["review"]["h1"]["walk_id"] == "walk-before"
    assert raw["review"]["h1"]["fingerprint"]["method"] == "SHA256"


@pytest.fixture
def replace_after_read(monkeypatch, make_file, make_walk):
    """Swap the artifact on disk for a forged Walk with the same id right after it was read."""

    def _install(path, walk_id):
        forged = make_walk([make_file("/data/evil", fingerprint="f" * 64)], walk_id=walk_id)
        real = review_module.fingerprint_bytes

        def fingerprint_then_replace(data):
            save_walk(forged, path)
            return real(data)

        monkeypatch.setattr(review_module, "fingerprint_bytes", fingerprint_then_replace)

    return _install


def test_verified_walk_is_the_content_that_was_fingerprinted(tmp_path, saved_walks, replace_after_read):
    before, before_path, _, _ = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")
    store.promote("h1", before, before_path, _approve)
    review = store.get("h1")

    replace_after_read(before_path, "walk-before")

    assert store.verify(review) == before


def test_promotion_fingerprints_the_content_it_checked(tmp_path, saved_walks, replace_after_read):
    before, before_path, _, after_path = saved_walks
    store = ReviewStore(tmp_path / "reviews.yaml")

    replace_after_read(before_path, "walk-before")
    store.promote("h1", before, before_path, _approve)

    with pytest.raises(IntegrityError):
        store.resolve(hostname="h1", after_file=after_path)
