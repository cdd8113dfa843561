"""Integrity-enforced HTTP/file fetch implementation."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from milenv.errors import IntegrityMismatchError, ResolutionError, ValidationError
from milenv.integrity import parse_digest, sha256_hex, verify_payload
from milenv.policy import Policy, ensure_network_allowed


def fetch(
    url: str,
    *,
    sha256: str,
    cache_dir: str | Path,
    policy: Policy | None = None,
) -> Path:
    """Fetch content and return a content-addressed cached path.

    Cache hits are re-verified and never touch the network, so an offline
    policy only rejects fetches that miss the cache.
    """
    if not sha256:
        if policy is not None and not policy.require_integrity:
            return _fetch_without_integrity(url=url, cache_dir=cache_dir, policy=policy)
        raise ValidationError("fetch() requires a sha256 value.", context={"url": url})
    digest = parse_digest(sha256)
    cache_path = Path(cache_dir)
    cache_path.mkdir(parents=True, exist_ok=True)
    artifact_path = cache_path / digest.hex

    if artifact_path.exists():
        _assert_hash_matches(artifact_path, expected_sha256=digest.hex)
        return artifact_path

    if policy is not None:
        ensure_network_allowed(policy=policy, operation="fetch")
    payload = _download(url)
    verify_payload(payload, digest, source=url)

    temp_path = cache_path / f"{digest.hex}.{os.getpid()}.tmp"
    temp_path.write_bytes(payload)
    os.replace(temp_path, artifact_path)
    return artifact_path


def _fetch_without_integrity(*, url: str, cache_dir: str | Path, policy: Policy) -> Path:
    ensure_network_allowed(policy=policy, operation="fetch")
    cache_path = Path(cache_dir)
    cache_path.mkdir(parents=True, exist_ok=True)
    payload = _download(url)
    artifact_path = cache_path / sha256_hex(payload)
    if not artifact_path.exists():
        artifact_path.write_bytes(payload)
    return artifact_path


def _download(url: str) -> bytes:
    try:
        with urlopen(url) as response:  # noqa: S310 - integrity check is enforced by callers
            return response.read()
    except (URLError, OSError) as exc:
        raise ResolutionError(
            "Unable to download artifact.",
            hint="Check network connectivity and the artifact URL.",
            context={"operation": "fetch", "url": url, "error": str(exc)},
        ) from exc


def _assert_hash_matches(path: Path, *, expected_sha256: str) -> None:
    actual_sha256 = sha256_hex(path.read_bytes())
    if actual_sha256 != expected_sha256:
        raise IntegrityMismatchError(
            "Cached artifact hash mismatch.",
            hint="Clear cache and refetch with trusted inputs.",
            context={
                "operation": "fetch",
                "path": str(path),
                "expected": expected_sha256,
                "actual": actual_sha256,
            },
        )
