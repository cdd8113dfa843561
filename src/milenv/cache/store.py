"""Append-only, content-addressed toolchain store with manifest verification."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
from pathlib import Path

from milenv.cache.keys import ToolchainCacheInput, _to_payload, cache_key
from milenv.errors import ReproducibilityError


class ToolchainStore:
    """Stores unpacked toolchains under ``<root>/<key>/tree``.

    Entries are published once with an atomic rename and never rewritten.
    Each entry carries a ``manifest.json`` recording its inputs and the
    sha256 of every file in the tree.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def load(self, *, key: str, expected_inputs: ToolchainCacheInput) -> Path | None:
        entry = self.root / key
        tree_path = entry / "tree"
        manifest_path = entry / "manifest.json"
        if not tree_path.is_dir() or not manifest_path.exists():
            return None

        manifest = self._read_manifest(manifest_path)
        if manifest.get("inputs") != _to_payload(expected_inputs):
            raise ReproducibilityError(
                "Store manifest inputs do not match expected toolchain inputs.",
                hint="Remove the store entry and resolve again.",
                context={"operation": "store_load", "key": key},
            )
        if manifest.get("key") != key:
            raise ReproducibilityError(
                "Store manifest key mismatch.",
                hint="Remove the store entry and resolve again.",
                context={"operation": "store_load", "key": key},
            )
        if manifest.get("files") != _tree_digests(tree_path):
            raise ReproducibilityError(
                "Store tree contents do not match the recorded file digests.",
                hint="Remove the store entry and resolve again.",
                context={"operation": "store_load", "key": key, "path": str(tree_path)},
            )
        return tree_path

    def save(self, *, inputs: ToolchainCacheInput, source_dir: Path) -> Path:
        """Publish *source_dir* as the tree for *inputs* and return its store path.

        Another process may publish the same key while this one is staging.
        Losing that race is not an error: the peer's entry is verified and
        returned instead.
        """
        key = cache_key(inputs)
        existing = self.load(key=key, expected_inputs=inputs)
        if existing is not None:
            shutil.rmtree(source_dir, ignore_errors=True)
            return existing

        entry = self.root / key
        staging = Path(tempfile.mkdtemp(prefix=f".{key}-", dir=str(self.root)))
        try:
            shutil.move(str(source_dir), staging / "tree")
            manifest = {
                "key": key,
                "inputs": _to_payload(inputs),
                "files": _tree_digests(staging / "tree"),
            }
            (staging / "manifest.json").write_text(
                json.dumps(manifest, indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
            try:
                os.replace(staging, entry)
                return entry / "tree"
            except OSError:
                # Rename onto a non-empty directory fails: the key is taken.
                pass
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        return self._adopt_published(key=key, inputs=inputs, entry=entry)

    def _adopt_published(self, *, key: str, inputs: ToolchainCacheInput, entry: Path) -> Path:
        published = self.load(key=key, expected_inputs=inputs)
        if published is None:
            raise ReproducibilityError(
                "Store entry exists but is incomplete.",
                hint="Remove the store entry and resolve again.",
                context={"operation": "store_save", "key": key, "path": str(entry)},
            )
        return published

    def _read_manifest(self, path: Path) -> dict[str, object]:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ReproducibilityError(
                "Store manifest is not valid JSON.",
                hint="Remove the store entry and resolve again.",
                context={"operation": "store_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise ReproducibilityError(
                "Store manifest has invalid structure.",
                hint="Remove the store entry and resolve again.",
                context={"operation": "store_load", "path": str(path)},
            )
        return parsed


def _tree_digests(root: Path) -> dict[str, str]:
    digests: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if path.is_symlink():
            digests[path.relative_to(root).as_posix()] = "symlink:" + os.readlink(path)
        elif path.is_file():
            digests[path.relative_to(root).as_posix()] = _file_sha256(path)
    return digests


def _file_sha256(path: Path) -> str:
    with path.open("rb") as handle:
        return hashlib.file_digest(handle, "sha256").hexdigest()
