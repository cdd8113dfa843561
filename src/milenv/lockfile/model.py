"""Lockfile typed model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

LOCKFILE_VERSION = 1


@dataclass(frozen=True, slots=True)
class LockedPackage:
    name: str
    store_path: str
    digest: str


@dataclass(frozen=True, slots=True)
class LockedIndex:
    ref: str
    rev: str
    nar_hash: str
    locked_ref: str | None = None


@dataclass(frozen=True, slots=True)
class LockedEnvironment:
    platform: str
    digest: str
    index: LockedIndex
    toolchain_digest: str | None
    packages: tuple[LockedPackage, ...] = ()


@dataclass(frozen=True, slots=True)
class Lockfile:
    version: int
    descriptor_digest: str
    descriptor: dict[str, Any]
    environments: dict[str, LockedEnvironment] = field(default_factory=dict)
