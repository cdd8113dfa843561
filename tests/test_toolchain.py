import hashlib
from pathlib import Path

import pytest
from conftest import FakeDist

from milenv.cache import ToolchainStore
from milenv.errors import IntegrityMismatchError, PolicyError, ResolutionError, ValidationError
from milenv.models import ToolchainSpec
from milenv.observability import StructuredLogger
from milenv.policy import MutableRefWarning, Policy
from milenv.toolchain import (
    channel_manifest_url,
    materialize_toolchain,
    resolve_toolchain,
    rust_src_path,
    toolchain_bin_dirs,
)


def test_channel_manifest_url_uses_dated_directory() -> None:
    dated = ToolchainSpec(channel="nightly", sha256="0" * 64, date="2021-01-01")
    undated = ToolchainSpec(channel="stable", sha256="0" * 64, dist_root="https://mirror/dist/")

    assert channel_manifest_url(dated) == (
        "https://static.rust-lang.org/dist/2021-01-01/channel-rust-nightly.toml"
    )
    assert channel_manifest_url(undated) == "https://mirror/dist/channel-rust-stable.toml"


def test_resolve_toolchain_selects_target_and_extensions(
    tmp_path: Path, fake_dist: FakeDist
) -> None:
    logger = StructuredLogger()

    toolchain = resolve_toolchain(
        fake_dist.toolchain(),
        platform="x86_64-linux",
        cache_dir=tmp_path / "cache",
        logger=logger,
    )

    assert toolchain.channel == "nightly"
    assert toolchain.version == "1.51.0-nightly"
    assert toolchain.date == "2021-01-01"
    assert toolchain.target == "x86_64-unknown-linux-gnu"
    assert toolchain.manifest_digest == fake_dist.manifest_sha256()
    assert [(c.name, c.target) for c in toolchain.components] == [
        ("rust", "x86_64-unknown-linux-gnu"),
        ("rust-src", "*"),
    ]
    assert toolchain.root is None
    assert logger.records[-1]["operation"] == "resolve_toolchain"


def test_resolve_toolchain_rejects_wrong_manifest_digest(
    tmp_path: Path, fake_dist: FakeDist
) -> None:
    spec = fake_dist.toolchain(sha256="1" * 64)

    with pytest.raises(IntegrityMismatchError) as excinfo:
        resolve_toolchain(spec, platform="x86_64-linux", cache_dir=tmp_path / "cache")

    assert excinfo.value.context["expected"].startswith("sha256-")
    assert not list((tmp_path / "cache" / "downloads").glob("*"))


def test_resolve_toolchain_rejects_unknown_extension(tmp_path: Path, fake_dist: FakeDist) -> None:
    spec = fake_dist.toolchain(extensions=("rust-src", "miri"))

    with pytest.raises(ValidationError) as excinfo:
        resolve_toolchain(spec, platform="x86_64-linux", cache_dir=tmp_path / "cache")

    assert excinfo.value.context["extension"] == "miri"


def test_resolve_toolchain_reports_unavailable_target(tmp_path: Path) -> None:
    manifest = tmp_path / "dist" / "channel-rust-nightly.toml"
    manifest.parent.mkdir(parents=True)
    manifest.write_text(
        "[pkg.rust]\n"
        'version = "1.51.0-nightly"\n'
        "[pkg.rust.target.x86_64-unknown-linux-gnu]\n"
        "available = false\n",
        encoding="utf-8",
    )
    spec = ToolchainSpec(
        channel="nightly",
        sha256=hashlib.sha256(manifest.read_bytes()).hexdigest(),
        dist_root=(tmp_path / "dist").as_uri(),
    )

    with pytest.raises(ResolutionError):
        resolve_toolchain(
            spec,
            platform="x86_64-linux",
            cache_dir=tmp_path / "cache",
            policy=Policy(mutable_ref_policy="allow"),
        )


def test_resolve_toolchain_rejects_invalid_manifest(tmp_path: Path) -> None:
    manifest = tmp_path / "dist" / "2021-01-01" / "channel-rust-nightly.toml"
    manifest.parent.mkdir(parents=True)
    manifest.write_bytes(b"[pkg.rust\n")
    spec = ToolchainSpec(
        channel="nightly",
        sha256=hashlib.sha256(manifest.read_bytes()).hexdigest(),
        date="2021-01-01",
        dist_root=(tmp_path / "dist").as_uri(),
    )

    with pytest.raises(ResolutionError):
        resolve_toolchain(spec, platform="x86_64-linux", cache_dir=tmp_path / "cache")


def test_undated_moving_channel_warns(tmp_path: Path, fake_dist: FakeDist) -> None:
    spec = fake_dist.toolchain(date=None)

    with pytest.warns(MutableRefWarning):
        with pytest.raises(ResolutionError):
            resolve_toolchain(spec, platform="x86_64-linux", cache_dir=tmp_path / "cache")


def test_undated_moving_channel_errors_under_strict_policy(
    tmp_path: Path, fake_dist: FakeDist
) -> None:
    spec = fake_dist.toolchain(date=None)

    with pytest.raises(PolicyError):
        resolve_toolchain(
            spec,
            platform="x86_64-linux",
            cache_dir=tmp_path / "cache",
            policy=Policy(mutable_ref_policy="error"),
        )


def test_materialize_toolchain_unpacks_components(tmp_path: Path, fake_dist: FakeDist) -> None:
    resolved = resolve_toolchain(
        fake_dist.toolchain(), platform="x86_64-linux", cache_dir=tmp_path / "cache"
    )
    store = ToolchainStore(tmp_path / "cache" / "toolchains")

    toolchain = materialize_toolchain(resolved, store=store, cache_dir=tmp_path / "cache")

    assert toolchain.root is not None
    assert (toolchain.root / "bin" / "rustc").is_file()
    assert (toolchain.root / "bin" / "cargo").is_file()
    assert not (toolchain.root / "manifest.in").exists()
    assert toolchain_bin_dirs(toolchain.root) == (toolchain.root / "bin",)
    assert rust_src_path(toolchain.root) == toolchain.root / "lib/rustlib/src/rust/library"


def test_materialize_toolchain_reuses_store_entry(tmp_path: Path, fake_dist: FakeDist) -> None:
    resolved = resolve_toolchain(
        fake_dist.toolchain(), platform="x86_64-linux", cache_dir=tmp_path / "cache"
    )
    store = ToolchainStore(tmp_path / "cache" / "toolchains")
    first = materialize_toolchain(resolved, store=store, cache_dir=tmp_path / "cache")

    offline = Policy(network_mode="offline")
    second = materialize_toolchain(
        resolved, store=store, cache_dir=tmp_path / "other-cache", policy=offline
    )

    assert first.root == second.root


def test_materialize_toolchain_rejects_tampered_archive(
    tmp_path: Path, fake_dist: FakeDist
) -> None:
    resolved = resolve_toolchain(
        fake_dist.toolchain(), platform="x86_64-linux", cache_dir=tmp_path / "cache"
    )
    archive = Path(resolved.components[0].url.removeprefix("file://"))
    archive.write_bytes(b"not the archive the manifest pinned")

    with pytest.raises(IntegrityMismatchError):
        materialize_toolchain(
            resolved,
            store=ToolchainStore(tmp_path / "cache" / "toolchains"),
            cache_dir=tmp_path / "cache",
        )
