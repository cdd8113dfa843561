"""Pinned toolchain channels: manifest fetch, component selection, unpacking.

A toolchain channel is identified by the sha256 of its channel manifest
(``channel-rust-<channel>.toml``). The manifest in turn records a sha256 for
every component archive, so pinning the manifest pins the whole toolchain.
"""

from __future__ import annotations

import shutil
import tarfile
import tempfile
import tomllib
from dataclasses import replace
from pathlib import Path
from typing import Any

from milenv.cache import ToolchainCacheInput, ToolchainStore, cache_key
from milenv.errors import ResolutionError, ValidationError
from milenv.fetch import fetch
from milenv.integrity import parse_digest
from milenv.models import ResolvedToolchain, ToolchainComponent, ToolchainSpec
from milenv.observability import StructuredLogger
from milenv.platforms import rust_target
from milenv.policy import (
    Policy,
    channel_is_mutable,
    enforce_mutable_ref_policy,
)

TOOLCHAIN_PACKAGE = "rust"
WILDCARD_TARGET = "*"


def channel_manifest_url(spec: ToolchainSpec) -> str:
    root = spec.dist_root.rstrip("/")
    if spec.date:
        return f"{root}/{spec.date}/channel-rust-{spec.channel}.toml"
    return f"{root}/channel-rust-{spec.channel}.toml"


def resolve_toolchain(
    spec: ToolchainSpec,
    *,
    platform: str,
    cache_dir: str | Path,
    policy: Policy | None = None,
    logger: StructuredLogger | None = None,
) -> ResolvedToolchain:
    """Fetch and verify the channel manifest, then select components for *platform*."""
    policy = policy or Policy()
    if not spec.channel:
        raise ValidationError("Toolchain channel must be non-empty.")
    enforce_mutable_ref_policy(
        policy=policy,
        kind="toolchain channel",
        ref=spec.channel,
        mutable=channel_is_mutable(spec.channel, spec.date),
    )
    target = rust_target(platform)
    url = channel_manifest_url(spec)
    manifest_path = fetch(
        url,
        sha256=spec.sha256,
        cache_dir=Path(cache_dir) / "downloads",
        policy=policy,
    )
    manifest_digest = parse_digest(spec.sha256).hex if spec.sha256 else manifest_path.name
    manifest = _parse_manifest(manifest_path.read_bytes(), url=url)

    rust_pkg = _package(manifest, TOOLCHAIN_PACKAGE, url=url)
    rust_target_entry = _target_entry(rust_pkg, TOOLCHAIN_PACKAGE, target, url=url)
    components = [_component(TOOLCHAIN_PACKAGE, target, rust_target_entry, url=url)]

    offered = {
        (ext.get("pkg"), ext.get("target"))
        for ext in rust_target_entry.get("extensions", [])
        if isinstance(ext, dict)
    }
    for extension in spec.extensions:
        ext_target = _extension_target(extension, target, offered)
        if ext_target is None:
            raise ValidationError(
                f"Toolchain extension `{extension}` is not offered by this channel.",
                hint="Remove the extension or choose a channel release that ships it.",
                context={"channel": spec.channel, "target": target, "extension": extension},
            )
        ext_pkg = _package(manifest, extension, url=url)
        ext_entry = _target_entry(ext_pkg, extension, ext_target, url=url)
        components.append(_component(extension, ext_target, ext_entry, url=url))

    version = str(rust_pkg.get("version", ""))
    if logger is not None:
        logger.log(
            operation="resolve_toolchain",
            platform=platform,
            phase="toolchain",
            component="toolchain",
            message="Resolved toolchain channel manifest.",
            extra={"channel": spec.channel, "version": version, "target": target},
        )
    return ResolvedToolchain(
        channel=spec.channel,
        date=spec.date or _optional_str(manifest.get("date")),
        version=version,
        target=target,
        manifest_digest=manifest_digest,
        components=tuple(components),
    )


def materialize_toolchain(
    toolchain: ResolvedToolchain,
    *,
    store: ToolchainStore,
    cache_dir: str | Path,
    policy: Policy | None = None,
) -> ResolvedToolchain:
    """Download and unpack every component, returning the toolchain with ``root`` set."""
    inputs = ToolchainCacheInput(
        manifest_digest=toolchain.manifest_digest,
        target=toolchain.target,
        components=tuple((c.name, c.sha256) for c in toolchain.components),
    )
    cached = store.load(key=cache_key(inputs), expected_inputs=inputs)
    if cached is not None:
        return replace(toolchain, root=cached)

    archives = [
        fetch(
            component.url,
            sha256=component.sha256,
            cache_dir=Path(cache_dir) / "downloads",
            policy=policy,
        )
        for component in toolchain.components
    ]
    staging_root = Path(tempfile.mkdtemp(prefix="milenv-toolchain-", dir=str(store.root)))
    try:
        tree = staging_root / "tree"
        tree.mkdir()
        for component, archive in zip(toolchain.components, archives, strict=True):
            _install_archive(archive, tree, component=component)
        root = store.save(inputs=inputs, source_dir=tree)
    finally:
        shutil.rmtree(staging_root, ignore_errors=True)
    return replace(toolchain, root=root)


def toolchain_bin_dirs(root: Path) -> tuple[Path, ...]:
    bin_dir = root / "bin"
    return (bin_dir,) if bin_dir.is_dir() else ()


def rust_src_path(root: Path) -> Path | None:
    for candidate in (root / "lib/rustlib/src/rust/library", root / "lib/rustlib/src/rust/src"):
        if candidate.is_dir():
            return candidate
    return None


def _parse_manifest(payload: bytes, *, url: str) -> dict[str, Any]:
    try:
        return tomllib.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ResolutionError(
            "Toolchain channel manifest is not valid TOML.",
            context={"operation": "resolve_toolchain", "url": url, "error": str(exc)},
        ) from exc


def _package(manifest: dict[str, Any], name: str, *, url: str) -> dict[str, Any]:
    packages = manifest.get("pkg")
    package = packages.get(name) if isinstance(packages, dict) else None
    if not isinstance(package, dict):
        raise ResolutionError(
            f"Channel manifest does not list package `{name}`.",
            context={"operation": "resolve_toolchain", "url": url, "package": name},
        )
    return package


def _target_entry(package: dict[str, Any], name: str, target: str, *, url: str) -> dict[str, Any]:
    targets = package.get("target")
    entry = targets.get(target) if isinstance(targets, dict) else None
    if not isinstance(entry, dict) or not entry.get("available", False):
        raise ResolutionError(
            f"Package `{name}` is not available for target `{target}`.",
            hint="Pick a channel release that was built for this platform.",
            context={"operation": "resolve_toolchain", "url": url, "target": target},
        )
    return entry


def _extension_target(
    extension: str,
    target: str,
    offered: set[tuple[Any, Any]],
) -> str | None:
    for candidate in (target, WILDCARD_TARGET):
        if (extension, candidate) in offered:
            return candidate
    return None


def _component(name: str, target: str, entry: dict[str, Any], *, url: str) -> ToolchainComponent:
    for url_key, hash_key in (("xz_url", "xz_hash"), ("url", "hash")):
        archive_url = entry.get(url_key)
        archive_hash = entry.get(hash_key)
        if isinstance(archive_url, str) and isinstance(archive_hash, str):
            return ToolchainComponent(
                name=name,
                target=target,
                url=archive_url,
                sha256=parse_digest(archive_hash).hex,
            )
    raise ResolutionError(
        f"Channel manifest entry for `{name}` has no archive URL and hash.",
        context={"operation": "resolve_toolchain", "url": url, "target": target},
    )


def _install_archive(archive: Path, tree: Path, *, component: ToolchainComponent) -> None:
    """Unpack a dist archive and merge its component directories into *tree*."""
    with tempfile.TemporaryDirectory(dir=str(tree.parent)) as scratch:
        scratch_path = Path(scratch)
        try:
            with tarfile.open(archive, mode="r:*") as bundle:
                bundle.extractall(scratch_path, filter="data")
        except tarfile.TarError as exc:
            raise ResolutionError(
                "Toolchain component archive could not be unpacked.",
                context={"component": component.name, "archive": str(archive)},
            ) from exc
        roots = [path for path in scratch_path.iterdir() if path.is_dir()]
        if len(roots) != 1:
            raise ResolutionError(
                "Toolchain component archive must contain exactly one top-level directory.",
                context={"component": component.name, "archive": str(archive)},
            )
        top = roots[0]
        listing = top / "components"
        if listing.is_file():
            names = [line.strip() for line in listing.read_text(encoding="utf-8").splitlines()]
            sources = [top / name for name in names if name]
        else:
            sources = [top]
        for source in sources:
            if not source.is_dir():
                raise ResolutionError(
                    "Toolchain component listed in archive is missing.",
                    context={"component": component.name, "missing": source.name},
                )
            shutil.copytree(
                source,
                tree,
                dirs_exist_ok=True,
                symlinks=True,
                ignore=shutil.ignore_patterns("manifest.in"),
            )


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


__all__ = [
    "channel_manifest_url",
    "materialize_toolchain",
    "resolve_toolchain",
    "rust_src_path",
    "toolchain_bin_dirs",
]
