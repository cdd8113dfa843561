"""Descriptor file parser/serializer and the Mel Intermediate Lisp default."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from milenv.errors import ValidationError
from milenv.models import DEFAULT_DIST_ROOT, Descriptor, PackageIndex, ToolchainSpec
from milenv.platforms import DEFAULT_PLATFORMS

MEL_DESCRIPTION = "Mel Intermediate Lisp"
MEL_INDEX_REF = "github:nixos/nixpkgs/nixos-20.09"
MEL_TOOLCHAIN = ToolchainSpec(
    channel="nightly",
    sha256="sha256-yvUmasDp4hTmipedyiWEjFCAsZHuIiODCygBfdrTeqs",
    extensions=("rust-src",),
)
MEL_PACKAGES = ("clang", "openssl")

# A nixpkgs attribute path such as `openssl` or `python3Packages.numpy`.
PACKAGE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_'-]*(\.[A-Za-z_][A-Za-z0-9_'-]*)*$")


def mel_descriptor() -> Descriptor:
    """Return the development shell of the Mel Intermediate Lisp project."""
    return Descriptor(
        description=MEL_DESCRIPTION,
        index=PackageIndex(ref=MEL_INDEX_REF),
        toolchain=MEL_TOOLCHAIN,
        packages=MEL_PACKAGES,
        platforms=DEFAULT_PLATFORMS,
    )


def ensure_package_name(name: str) -> str:
    """Return *name* if it is a valid package attribute path, else raise."""
    if not isinstance(name, str) or not PACKAGE_NAME_PATTERN.fullmatch(name):
        raise ValidationError(
            f"Invalid package name `{name}`.",
            hint="Use a nixpkgs attribute path such as `openssl` or `python3Packages.numpy`.",
            context={"package": str(name)},
        )
    return name


def serialize_descriptor(descriptor: Descriptor) -> str:
    return json.dumps(descriptor.payload(), indent=2, sort_keys=True) + "\n"


def parse_descriptor(raw: str) -> Descriptor:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid descriptor JSON.", hint=str(exc)) from exc

    if not isinstance(payload, dict):
        raise ValidationError("Invalid descriptor payload type.")

    description = payload.get("description", "")
    if not isinstance(description, str):
        raise ValidationError("Invalid descriptor `description` value.")
    index = _required_str(payload, "index")
    packages = [ensure_package_name(name) for name in _str_list(payload, "packages", default=[])]
    platforms = _str_list(payload, "platforms", default=list(DEFAULT_PLATFORMS))
    if not platforms:
        raise ValidationError("Descriptor must declare at least one platform.")
    toolchain_raw = payload.get("toolchain")
    toolchain = None if toolchain_raw is None else _parse_toolchain(toolchain_raw)
    return Descriptor(
        description=description,
        index=PackageIndex(ref=index),
        toolchain=toolchain,
        packages=tuple(dict.fromkeys(packages)),
        platforms=tuple(dict.fromkeys(platforms)),
    )


def read_descriptor(path: str | Path) -> Descriptor:
    descriptor_path = Path(path)
    try:
        raw = descriptor_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ValidationError(
            "Descriptor file does not exist.",
            context={"path": str(descriptor_path)},
        ) from exc
    return parse_descriptor(raw)


def write_descriptor(descriptor: Descriptor, path: str | Path) -> Path:
    descriptor_path = Path(path)
    descriptor_path.parent.mkdir(parents=True, exist_ok=True)
    descriptor_path.write_text(serialize_descriptor(descriptor), encoding="utf-8")
    return descriptor_path


def _parse_toolchain(item: Any) -> ToolchainSpec:
    if not isinstance(item, dict):
        raise ValidationError("Invalid descriptor `toolchain` value.")
    date = item.get("date")
    if date is not None and not isinstance(date, str):
        raise ValidationError("Invalid descriptor `toolchain.date` value.")
    dist_root = item.get("dist_root", DEFAULT_DIST_ROOT)
    if not isinstance(dist_root, str) or not dist_root:
        raise ValidationError("Invalid descriptor `toolchain.dist_root` value.")
    return ToolchainSpec(
        channel=_required_str(item, "channel"),
        sha256=_required_str(item, "sha256"),
        date=date or None,
        extensions=tuple(_str_list(item, "extensions", default=[])),
        dist_root=dist_root.rstrip("/"),
    )


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid descriptor `{key}` value.")
    return value


def _str_list(payload: dict[str, Any], key: str, *, default: list[str]) -> list[str]:
    value = payload.get(key, default)
    if not isinstance(value, list) or not all(isinstance(item, str) and item for item in value):
        raise ValidationError(f"Invalid descriptor `{key}` value.")
    return list(value)
