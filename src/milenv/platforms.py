"""Supported platform identifiers and host detection."""

from __future__ import annotations

import platform as _platform
import sys
from collections.abc import Iterable
from typing import Literal

from milenv.errors import PlatformUnsupportedError

Platform = Literal["aarch64-linux", "i686-linux", "x86_64-darwin", "x86_64-linux"]

DEFAULT_PLATFORMS: tuple[Platform, ...] = (
    "aarch64-linux",
    "i686-linux",
    "x86_64-darwin",
    "x86_64-linux",
)

RUST_TARGETS: dict[str, str] = {
    "aarch64-linux": "aarch64-unknown-linux-gnu",
    "i686-linux": "i686-unknown-linux-gnu",
    "x86_64-darwin": "x86_64-apple-darwin",
    "x86_64-linux": "x86_64-unknown-linux-gnu",
}

_MACHINE_ALIASES: dict[str, str] = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "i386": "i686",
    "i686": "i686",
}


def ensure_supported(platform: str, *, supported: Iterable[str] = DEFAULT_PLATFORMS) -> str:
    """Return *platform* if it is in *supported*, else raise."""
    allowed = tuple(supported)
    if platform not in allowed:
        raise PlatformUnsupportedError(
            f"Platform `{platform}` is not supported by this descriptor.",
            hint="Pick one of the supported platforms or add it to the descriptor.",
            context={"platform": platform, "supported": ",".join(allowed)},
        )
    return platform


def host_platform() -> str:
    """Derive the platform identifier of the running host."""
    machine = _MACHINE_ALIASES.get(_platform.machine().lower())
    if sys.platform.startswith("linux"):
        system = "linux"
    elif sys.platform == "darwin":
        system = "darwin"
    else:
        system = None
    if machine is None or system is None:
        raise PlatformUnsupportedError(
            "Unable to map the host to a supported platform.",
            hint="Pass an explicit platform identifier.",
            context={"sys_platform": sys.platform, "machine": _platform.machine()},
        )
    return f"{machine}-{system}"


def rust_target(platform: str) -> str:
    ensure_supported(platform, supported=RUST_TARGETS)
    return RUST_TARGETS[platform]


__all__ = [
    "DEFAULT_PLATFORMS",
    "Platform",
    "RUST_TARGETS",
    "ensure_supported",
    "host_platform",
    "rust_target",
]
