"""Lockfile model, parser/serializer and construction helpers."""

from .io import parse_lockfile, read_lockfile, serialize_lockfile, write_lockfile
from .model import LOCKFILE_VERSION, LockedEnvironment, LockedIndex, LockedPackage, Lockfile
from .resolve import build_lockfile, lock_environment

__all__ = [
    "LOCKFILE_VERSION",
    "LockedEnvironment",
    "LockedIndex",
    "LockedPackage",
    "Lockfile",
    "build_lockfile",
    "lock_environment",
    "parse_lockfile",
    "read_lockfile",
    "serialize_lockfile",
    "write_lockfile",
]
