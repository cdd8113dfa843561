"""Lockfile construction from resolved environments."""

from __future__ import annotations

from collections.abc import Iterable

from milenv.errors import LockfileError
from milenv.lockfile.model import (
    LOCKFILE_VERSION,
    LockedEnvironment,
    LockedIndex,
    LockedPackage,
    Lockfile,
)
from milenv.models import Descriptor, Environment


def lock_environment(environment: Environment) -> LockedEnvironment:
    return LockedEnvironment(
        platform=environment.platform,
        digest=environment.digest,
        index=LockedIndex(
            ref=environment.index.ref,
            rev=environment.index.rev,
            nar_hash=environment.index.nar_hash,
            locked_ref=environment.index.locked_ref,
        ),
        toolchain_digest=(
            environment.toolchain.digest() if environment.toolchain is not None else None
        ),
        packages=tuple(
            LockedPackage(
                name=package.name,
                store_path=str(package.store_path),
                digest=package.digest,
            )
            for package in sorted(environment.packages, key=lambda item: item.name)
        ),
    )


def build_lockfile(
    *,
    descriptor: Descriptor,
    environments: Iterable[Environment] = (),
) -> Lockfile:
    digest = descriptor.digest()
    locked: dict[str, LockedEnvironment] = {}
    for environment in environments:
        if environment.descriptor_digest != digest:
            raise LockfileError(
                "Environment was resolved from a different descriptor.",
                context={
                    "platform": environment.platform,
                    "expected": digest,
                    "actual": environment.descriptor_digest,
                },
            )
        locked[environment.platform] = lock_environment(environment)
    return Lockfile(
        version=LOCKFILE_VERSION,
        descriptor_digest=digest,
        descriptor=descriptor.payload(),
        environments=dict(sorted(locked.items())),
    )
