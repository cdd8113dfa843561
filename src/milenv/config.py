"""Operator settings sourced from the process environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from milenv.policy import NetworkMode, Policy

TRUTHY = ("1", "true", "yes", "on")


def _default_cache_dir(environ: Mapping[str, str]) -> Path:
    xdg = environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "milenv"


@dataclass(frozen=True, slots=True)
class Settings:
    cache_dir: Path = field(default_factory=lambda: _default_cache_dir(os.environ))
    lock_path: Path = Path("milenv.lock")
    network_mode: NetworkMode = "online"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        cache_dir = env.get("MILENV_CACHE_DIR")
        offline = env.get("MILENV_OFFLINE", "").strip().lower() in TRUTHY
        return cls(
            cache_dir=Path(cache_dir) if cache_dir else _default_cache_dir(env),
            lock_path=Path(env.get("MILENV_LOCKFILE") or "milenv.lock"),
            network_mode="offline" if offline else "online",
        )

    def policy(self, **overrides: object) -> Policy:
        """Return a :class:`Policy` honoring the configured network mode."""
        values: dict[str, object] = {"network_mode": self.network_mode}
        values.update(overrides)
        return Policy(**values)  # type: ignore[arg-type]


__all__ = ["Settings"]
