"""In-process package resolver for testing and development.

Produces deterministic placeholder store paths without invoking Nix. Each
package gets ``bin/<name>``, ``include/`` and ``lib/`` so activation can be
exercised end to end.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from milenv.errors import ResolutionError
from milenv.models import PackageIndex, PinnedIndex, ResolvedPackage, ResolveRequest


@dataclass(slots=True)
class InProcessResolver:
    """Resolver that fabricates deterministic store entries in-process."""

    store_root: Path = field(default_factory=lambda: Path("build") / "store")
    name: str = "inprocess"
    unavailable: frozenset[str] = frozenset()

    def pin_index(self, index: PackageIndex, *, offline: bool = False) -> PinnedIndex:
        rev = hashlib.sha1(index.ref.encode("utf-8")).hexdigest()  # noqa: S324 - git-style rev
        nar = hashlib.sha256(f"index:{index.ref}".encode()).digest()
        return PinnedIndex(
            ref=index.ref,
            rev=rev,
            nar_hash=f"sha256-{base64.b64encode(nar).decode('ascii')}",
        )

    def resolve(self, request: ResolveRequest) -> tuple[ResolvedPackage, ...]:
        missing = [package for package in request.packages if package in self.unavailable]
        if missing:
            raise ResolutionError(
                "Packages are not available in the package index.",
                hint="Check package names against the pinned index revision.",
                context={
                    "resolver": self.name,
                    "platform": request.platform,
                    "packages": ",".join(missing),
                },
            )

        resolved: list[ResolvedPackage] = []
        for package in request.packages:
            digest = hashlib.sha256(
                f"{request.index.rev}:{request.platform}:{package}".encode()
            ).hexdigest()
            store_path = Path(self.store_root) / f"{digest[:32]}-{package}"
            self._materialize(store_path, package=package, platform=request.platform)
            resolved.append(ResolvedPackage(name=package, store_path=store_path, digest=digest))
        return tuple(resolved)

    def _materialize(self, store_path: Path, *, package: str, platform: str) -> None:
        bin_dir = store_path / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        (store_path / "include").mkdir(exist_ok=True)
        (store_path / "lib").mkdir(exist_ok=True)
        executable = bin_dir / package
        executable.write_text(
            f"#!/bin/sh\necho '{package} ({platform})'\n",
            encoding="utf-8",
        )
        executable.chmod(0o755)
