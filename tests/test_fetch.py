import base64
import hashlib
from pathlib import Path

import pytest

from milenv.errors import IntegrityMismatchError, PolicyError, ResolutionError, ValidationError
from milenv.fetch import fetch
from milenv.policy import Policy


def test_fetch_requires_sha256(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    source.write_text("payload", encoding="utf-8")

    with pytest.raises(ValidationError):
        fetch(source.as_uri(), sha256="", cache_dir=tmp_path / "cache")


def test_fetch_caches_by_content_hash(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    payload = b"hello milenv"
    source.write_bytes(payload)
    digest = hashlib.sha256(payload).hexdigest()

    first = fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache")
    source.write_bytes(b"mutated source content")
    second = fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache")

    assert first == second
    assert first.name == digest
    assert second.read_bytes() == payload


def test_fetch_accepts_sri_digests(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    payload = b"sri payload"
    source.write_bytes(payload)
    sri = "sha256-" + base64.b64encode(hashlib.sha256(payload).digest()).decode("ascii")

    path = fetch(source.as_uri(), sha256=sri, cache_dir=tmp_path / "cache")

    assert path.read_bytes() == payload


def test_fetch_raises_on_hash_mismatch(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    source.write_bytes(b"mismatch")

    with pytest.raises(IntegrityMismatchError):
        fetch(source.as_uri(), sha256="0" * 64, cache_dir=tmp_path / "cache")

    assert not (tmp_path / "cache" / ("0" * 64)).exists()


def test_fetch_detects_tampered_cache_entry(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    source.write_bytes(b"original")
    digest = hashlib.sha256(b"original").hexdigest()
    cached = fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache")
    cached.write_bytes(b"tampered")

    with pytest.raises(IntegrityMismatchError):
        fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache")


def test_fetch_reports_unreachable_source(tmp_path: Path) -> None:
    missing = tmp_path / "missing.txt"

    with pytest.raises(ResolutionError):
        fetch(missing.as_uri(), sha256="0" * 64, cache_dir=tmp_path / "cache")


def test_offline_policy_allows_cache_hits_only(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    source.write_bytes(b"payload")
    digest = hashlib.sha256(b"payload").hexdigest()
    offline = Policy(network_mode="offline")

    with pytest.raises(PolicyError):
        fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache", policy=offline)

    fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache")
    cached = fetch(source.as_uri(), sha256=digest, cache_dir=tmp_path / "cache", policy=offline)
    assert cached.read_bytes() == b"payload"


def test_relaxed_integrity_policy_allows_unpinned_fetch(tmp_path: Path) -> None:
    source = tmp_path / "source.txt"
    source.write_bytes(b"payload")

    relaxed = fetch(
        source.as_uri(),
        sha256="",
        cache_dir=tmp_path / "cache",
        policy=Policy(require_integrity=False),
    )

    assert relaxed.name == hashlib.sha256(b"payload").hexdigest()
