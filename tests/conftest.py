"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import tarfile
from dataclasses import dataclass
from pathlib import Path

import pytest

from milenv import Descriptor, PackageIndex, Policy, Shell, ToolchainSpec
from milenv.resolvers import InProcessResolver

PINNED_INDEX = "github:nixos/nixpkgs/" + "a" * 40
DIST_DATE = "2021-01-01"
TARGETS = (
    "aarch64-unknown-linux-gnu",
    "i686-unknown-linux-gnu",
    "x86_64-apple-darwin",
    "x86_64-unknown-linux-gnu",
)


@dataclass(frozen=True, slots=True)
class FakeDist:
    """A rust-style dist tree served from file:// URLs."""

    root: Path
    date: str
    manifests: dict[str, Path]

    @property
    def root_uri(self) -> str:
        return self.root.as_uri()

    def manifest_sha256(self, channel: str = "nightly") -> str:
        return hashlib.sha256(self.manifests[channel].read_bytes()).hexdigest()

    def toolchain(self, channel: str = "nightly", **overrides: object) -> ToolchainSpec:
        values: dict[str, object] = {
            "channel": channel,
            "sha256": self.manifest_sha256(channel),
            "date": self.date,
            "extensions": ("rust-src",),
            "dist_root": self.root_uri,
        }
        values.update(overrides)
        return ToolchainSpec(**values)  # type: ignore[arg-type]


def write_tarball(
    path: Path, *, top: str, files: dict[str, str], components: tuple[str, ...]
) -> Path:
    staging = path.parent / f".staging-{path.name}" / top
    for relative, content in files.items():
        target = staging / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        if "/bin/" in f"/{relative}":
            target.chmod(0o755)
    (staging / "components").write_text("\n".join(components) + "\n", encoding="utf-8")
    with tarfile.open(path, mode="w:xz") as bundle:
        bundle.add(staging, arcname=top)
    return path


def _sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _manifest(*, channel: str, version: str, rust: Path, rust_src: Path) -> str:
    lines = [
        'manifest-version = "2"',
        f'date = "{DIST_DATE}"',
        "",
        "[pkg.rust]",
        f'version = "{version}"',
        "",
    ]
    for target in TARGETS:
        lines += [
            f"[pkg.rust.target.{target}]",
            "available = true",
            f'xz_url = "{rust.as_uri()}"',
            f'xz_hash = "{_sha256(rust)}"',
            'extensions = [{ pkg = "rust-src", target = "*" }]',
            "",
        ]
    lines += [
        "[pkg.rust-src]",
        f'version = "{version}"',
        "",
        '[pkg.rust-src.target."*"]',
        "available = true",
        f'xz_url = "{rust_src.as_uri()}"',
        f'xz_hash = "{_sha256(rust_src)}"',
        "",
    ]
    return "\n".join(lines)


def build_fake_dist(root: Path) -> FakeDist:
    archives = root / "archives"
    archives.mkdir(parents=True, exist_ok=True)
    manifests: dict[str, Path] = {}
    for channel, version in (("nightly", "1.51.0-nightly"), ("beta", "1.50.0-beta.8")):
        rust = write_tarball(
            archives / f"rust-{channel}.tar.xz",
            top=f"rust-{channel}",
            files={
                "rustc/bin/rustc": f"#!/bin/sh\necho rustc-{channel}\n",
                "rustc/manifest.in": "file:bin/rustc\n",
                "cargo/bin/cargo": f"#!/bin/sh\necho cargo-{channel}\n",
            },
            components=("rustc", "cargo"),
        )
        rust_src = write_tarball(
            archives / f"rust-src-{channel}.tar.xz",
            top=f"rust-src-{channel}",
            files={"rust-src/lib/rustlib/src/rust/library/core/lib.rs": "// core\n"},
            components=("rust-src",),
        )
        manifest = root / DIST_DATE / f"channel-rust-{channel}.toml"
        manifest.parent.mkdir(parents=True, exist_ok=True)
        manifest.write_text(
            _manifest(channel=channel, version=version, rust=rust, rust_src=rust_src),
            encoding="utf-8",
        )
        manifests[channel] = manifest
    return FakeDist(root=root, date=DIST_DATE, manifests=manifests)


@pytest.fixture
def fake_dist(tmp_path: Path) -> FakeDist:
    return build_fake_dist(tmp_path / "dist")


def make_descriptor(dist: FakeDist, **overrides: object) -> Descriptor:
    values: dict[str, object] = {
        "description": "Mel Intermediate Lisp",
        "index": PackageIndex(ref=PINNED_INDEX),
        "toolchain": dist.toolchain(),
        "packages": ("clang", "openssl"),
    }
    values.update(overrides)
    return Descriptor(**values)  # type: ignore[arg-type]


def make_shell(root: Path, dist: FakeDist, **overrides: object) -> Shell:
    values: dict[str, object] = {
        "descriptor": make_descriptor(dist),
        "resolver": InProcessResolver(store_root=root / "store"),
        "cache_dir": root / "cache",
        "lock_path": root / "milenv.lock",
        "policy": Policy(),
    }
    values.update(overrides)
    return Shell(**values)  # type: ignore[arg-type]


@pytest.fixture
def shell(tmp_path: Path, fake_dist: FakeDist) -> Shell:
    """Provide a shell that resolves against the fake dist and in-process store."""
    return make_shell(tmp_path / "work", fake_dist)
