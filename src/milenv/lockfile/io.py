"""Lockfile parser and serializer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from milenv.errors import LockfileError
from milenv.lockfile.model import (
    LOCKFILE_VERSION,
    LockedEnvironment,
    LockedIndex,
    LockedPackage,
    Lockfile,
)


def serialize_lockfile(lockfile: Lockfile) -> str:
    payload = {
        "version": lockfile.version,
        "descriptor_digest": lockfile.descriptor_digest,
        "descriptor": lockfile.descriptor,
        "environments": {
            platform: {
                "digest": env.digest,
                "index": {
                    "ref": env.index.ref,
                    "rev": env.index.rev,
                    "nar_hash": env.index.nar_hash,
                    "locked_ref": env.index.locked_ref,
                },
                "toolchain_digest": env.toolchain_digest,
                "packages": [
                    {"name": item.name, "store_path": item.store_path, "digest": item.digest}
                    for item in env.packages
                ],
            }
            for platform, env in lockfile.environments.items()
        },
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def parse_lockfile(raw: str) -> Lockfile:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockfileError("Invalid lockfile JSON.", hint=str(exc)) from exc

    if not isinstance(payload, dict):
        raise LockfileError("Invalid lockfile payload type.")

    version = _required_int(payload, "version")
    if version != LOCKFILE_VERSION:
        raise LockfileError(
            "Unsupported lockfile version.",
            hint="Re-run lock() with this version of milenv.",
            context={"expected": str(LOCKFILE_VERSION), "actual": str(version)},
        )
    descriptor_digest = _required_str(payload, "descriptor_digest")
    descriptor = _required_dict(payload, "descriptor")
    environments_raw = payload.get("environments", {})
    if not isinstance(environments_raw, dict):
        raise LockfileError("Invalid lockfile `environments` value.")
    environments = {
        platform: _parse_environment(platform, item)
        for platform, item in sorted(environments_raw.items())
    }
    return Lockfile(
        version=version,
        descriptor_digest=descriptor_digest,
        descriptor=descriptor,
        environments=environments,
    )


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LockfileError(
            "Lockfile does not exist.",
            hint="Run shell.lock() before using frozen mode.",
            context={"path": str(lock_path)},
        ) from exc
    return parse_lockfile(raw)


def write_lockfile(lockfile: Lockfile, path: str | Path) -> Path:
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(serialize_lockfile(lockfile), encoding="utf-8")
    return lock_path


def _parse_environment(platform: Any, item: Any) -> LockedEnvironment:
    if not isinstance(platform, str) or not isinstance(item, dict):
        raise LockfileError("Invalid environment entry in lockfile.")
    index = _required_dict(item, "index")
    locked_ref = index.get("locked_ref")
    if locked_ref is not None and not isinstance(locked_ref, str):
        raise LockfileError("Invalid lockfile `locked_ref` value.")
    toolchain_digest = item.get("toolchain_digest")
    if toolchain_digest is not None and not isinstance(toolchain_digest, str):
        raise LockfileError("Invalid lockfile `toolchain_digest` value.")
    packages_raw = item.get("packages", [])
    if not isinstance(packages_raw, list):
        raise LockfileError("Invalid lockfile `packages` value.")
    return LockedEnvironment(
        platform=platform,
        digest=_required_str(item, "digest"),
        index=LockedIndex(
            ref=_required_str(index, "ref"),
            rev=_required_str(index, "rev"),
            nar_hash=_required_str(index, "nar_hash"),
            locked_ref=locked_ref,
        ),
        toolchain_digest=toolchain_digest,
        packages=tuple(_parse_locked_package(entry) for entry in packages_raw),
    )


def _parse_locked_package(item: Any) -> LockedPackage:
    if not isinstance(item, dict):
        raise LockfileError("Invalid package entry in lockfile.")
    return LockedPackage(
        name=_required_str(item, "name"),
        store_path=_required_str(item, "store_path"),
        digest=_required_str(item, "digest"),
    )


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value


def _required_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if not isinstance(value, int):
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value


def _required_dict(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value
