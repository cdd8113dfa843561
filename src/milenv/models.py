"""Core typed dataclasses for descriptors, resolution requests and environments."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import cbor2

from milenv.platforms import DEFAULT_PLATFORMS

DEFAULT_DIST_ROOT = "https://static.rust-lang.org/dist"

# Variables a pure shell inherits from the invoking process.
PRESERVED_VARIABLES = ("HOME", "USER", "LOGNAME", "TERM", "LANG", "TZ", "TMPDIR")


@dataclass(frozen=True, slots=True)
class ToolchainSpec:
    """A toolchain channel selector pinned by the digest of its manifest."""

    channel: str
    sha256: str
    date: str | None = None
    extensions: tuple[str, ...] = ()
    dist_root: str = DEFAULT_DIST_ROOT

    def payload(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sha256": self.sha256,
            "date": self.date,
            "extensions": list(self.extensions),
            "dist_root": self.dist_root,
        }


@dataclass(frozen=True, slots=True)
class PackageIndex:
    ref: str


@dataclass(frozen=True, slots=True)
class Descriptor:
    description: str
    index: PackageIndex
    toolchain: ToolchainSpec | None = None
    packages: tuple[str, ...] = ()
    platforms: tuple[str, ...] = DEFAULT_PLATFORMS

    def payload(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "index": self.index.ref,
            "toolchain": self.toolchain.payload() if self.toolchain is not None else None,
            "packages": sorted(self.packages),
            "platforms": sorted(self.platforms),
        }

    def digest(self) -> str:
        canonical = json.dumps(self.payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def with_toolchain(self, toolchain: ToolchainSpec | None) -> Descriptor:
        return replace(self, toolchain=toolchain)


@dataclass(frozen=True, slots=True)
class PinnedIndex:
    ref: str
    rev: str
    nar_hash: str
    locked_ref: str | None = None

    @property
    def installable_ref(self) -> str:
        return self.locked_ref or self.ref


@dataclass(frozen=True, slots=True)
class ResolveRequest:
    platform: str
    index: PinnedIndex
    packages: tuple[str, ...]
    offline: bool = False


@dataclass(frozen=True, slots=True)
class ResolvedPackage:
    name: str
    store_path: Path
    digest: str
    outputs: tuple[Path, ...] = ()

    def output_paths(self) -> tuple[Path, ...]:
        """Return every output path, primary first."""
        return tuple(dict.fromkeys((self.store_path, *self.outputs)))


@dataclass(frozen=True, slots=True)
class ToolchainComponent:
    name: str
    target: str
    url: str
    sha256: str


@dataclass(frozen=True, slots=True)
class ResolvedToolchain:
    channel: str
    date: str | None
    version: str
    target: str
    manifest_digest: str
    components: tuple[ToolchainComponent, ...]
    root: Path | None = None

    def identity(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "date": self.date,
            "version": self.version,
            "target": self.target,
            "manifest_digest": self.manifest_digest,
            "components": [
                {"name": c.name, "target": c.target, "sha256": c.sha256} for c in self.components
            ],
        }

    def digest(self) -> str:
        return hashlib.sha256(cbor2.dumps(self.identity(), canonical=True)).hexdigest()


@dataclass(frozen=True, slots=True)
class Environment:
    """A resolved shell environment for one platform."""

    platform: str
    descriptor_digest: str
    index: PinnedIndex
    toolchain: ResolvedToolchain | None
    packages: tuple[ResolvedPackage, ...]
    search_path: tuple[Path, ...]
    include_path: tuple[Path, ...] = ()
    library_path: tuple[Path, ...] = ()
    extra_variables: Mapping[str, str] = field(default_factory=dict)

    @property
    def digest(self) -> str:
        return hashlib.sha256(cbor2.dumps(self.identity(), canonical=True)).hexdigest()

    def identity(self) -> dict[str, Any]:
        """Machine-independent identity; local cache paths are excluded."""
        return {
            "platform": self.platform,
            "descriptor_digest": self.descriptor_digest,
            "index": {
                "ref": self.index.ref,
                "rev": self.index.rev,
                "nar_hash": self.index.nar_hash,
            },
            "toolchain": self.toolchain.identity() if self.toolchain is not None else None,
            "packages": [
                {"name": package.name, "digest": package.digest}
                for package in sorted(self.packages, key=lambda item: item.name)
            ],
        }

    def package(self, name: str) -> ResolvedPackage | None:
        for package in self.packages:
            if package.name == name:
                return package
        return None

    def variables(
        self,
        *,
        pure: bool = True,
        base: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Return the process environment for commands run inside the shell."""
        inherited = dict(os.environ if base is None else base)
        if pure:
            env = {key: inherited[key] for key in PRESERVED_VARIABLES if key in inherited}
        else:
            env = dict(inherited)

        path_value = os.pathsep.join(str(path) for path in self.search_path)
        if not pure and inherited.get("PATH"):
            path_value = os.pathsep.join(filter(None, (path_value, inherited["PATH"])))
        env["PATH"] = path_value
        if self.include_path:
            env["CPATH"] = os.pathsep.join(str(path) for path in self.include_path)
        if self.library_path:
            env["LIBRARY_PATH"] = os.pathsep.join(str(path) for path in self.library_path)
            pkg_config = [path / "pkgconfig" for path in self.library_path]
            env["PKG_CONFIG_PATH"] = os.pathsep.join(
                str(path) for path in pkg_config if path.is_dir()
            )
            if not env["PKG_CONFIG_PATH"]:
                del env["PKG_CONFIG_PATH"]
        env.update(self.extra_variables)
        env["IN_MILENV_SHELL"] = "pure" if pure else "impure"
        env["MILENV_PLATFORM"] = self.platform
        return env
