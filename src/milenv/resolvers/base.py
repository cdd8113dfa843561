"""Protocol for package resolution backends."""

from __future__ import annotations

from typing import Protocol

from milenv.models import PackageIndex, PinnedIndex, ResolvedPackage, ResolveRequest


class PackageResolver(Protocol):
    name: str

    def pin_index(self, index: PackageIndex, *, offline: bool = False) -> PinnedIndex:
        """Pin a package index reference to an immutable revision.

        With *offline* the resolver must not reach the network.
        """

    def resolve(self, request: ResolveRequest) -> tuple[ResolvedPackage, ...]:
        """Resolve every requested package for the request platform."""
