"""Nix package resolver.

Pins the package index with ``nix flake metadata`` and realises each
declared package with ``nix build``; package digests are the NAR hashes
reported by ``nix path-info``.

This resolver requires ``nix`` available in PATH with flakes enabled. Under
an offline policy every command runs with ``--offline`` so only the local
store and flake cache are consulted.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from milenv.errors import ResolutionError
from milenv.models import PackageIndex, PinnedIndex, ResolvedPackage, ResolveRequest

NIX_FEATURE_ARGS = ("--extra-experimental-features", "nix-command flakes")
NIX_OFFLINE_ARG = "--offline"


@dataclass(slots=True)
class NixResolver:
    """Resolves packages from a nixpkgs flake reference."""

    name: str = "nix"
    nix_args: list[str] = field(default_factory=list)

    def pin_index(self, index: PackageIndex, *, offline: bool = False) -> PinnedIndex:
        self._ensure_prerequisites()
        metadata = self._run_json(
            ["flake", "metadata", "--json", index.ref],
            operation="pin_index",
            offline=offline,
        )
        if not isinstance(metadata, dict):
            raise self._malformed("pin_index", index.ref)
        locked = metadata.get("locked")
        if not isinstance(locked, dict):
            raise self._malformed("pin_index", index.ref)
        rev = locked.get("rev")
        nar_hash = locked.get("narHash")
        if not isinstance(rev, str) or not isinstance(nar_hash, str):
            raise self._malformed("pin_index", index.ref)
        locked_ref = metadata.get("url") or metadata.get("lockedUrl")
        return PinnedIndex(
            ref=index.ref,
            rev=rev,
            nar_hash=nar_hash,
            locked_ref=locked_ref if isinstance(locked_ref, str) else None,
        )

    def resolve(self, request: ResolveRequest) -> tuple[ResolvedPackage, ...]:
        self._ensure_prerequisites()
        resolved: list[ResolvedPackage] = []
        for package in request.packages:
            installable = (
                f"{request.index.installable_ref}#legacyPackages.{request.platform}.{package}"
            )
            outputs = self._build(installable, offline=request.offline)
            primary = outputs.get("out") or next(iter(outputs.values()))
            resolved.append(
                ResolvedPackage(
                    name=package,
                    store_path=primary,
                    digest=self._nar_hash(primary, offline=request.offline),
                    outputs=tuple(path for _, path in sorted(outputs.items())),
                )
            )
        return tuple(resolved)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build(self, installable: str, *, offline: bool) -> dict[str, Path]:
        built = self._run_json(
            ["build", "--no-link", "--json", installable],
            operation="resolve",
            offline=offline,
        )
        if not isinstance(built, list) or not built or not isinstance(built[0], dict):
            raise self._malformed("resolve", installable)
        outputs = built[0].get("outputs")
        if not isinstance(outputs, dict) or not outputs:
            raise self._malformed("resolve", installable)
        return {str(name): Path(path) for name, path in outputs.items()}

    def _nar_hash(self, store_path: Path, *, offline: bool) -> str:
        info = self._run_json(
            ["path-info", "--json", str(store_path)],
            operation="resolve",
            offline=offline,
        )
        entry: Any = None
        # Older nix prints a list of objects, newer nix a mapping keyed by path.
        if isinstance(info, list) and info:
            entry = info[0]
        elif isinstance(info, dict):
            entry = info.get(str(store_path))
        nar_hash = entry.get("narHash") if isinstance(entry, dict) else None
        if not isinstance(nar_hash, str):
            raise self._malformed("resolve", str(store_path))
        return nar_hash

    def _run_json(self, argv: list[str], *, operation: str, offline: bool = False) -> Any:
        mode_args = [NIX_OFFLINE_ARG] if offline else []
        command = ["nix", *NIX_FEATURE_ARGS, *mode_args, *self.nix_args, *argv]
        completed = subprocess.run(
            command,
            check=False,
            text=True,
            capture_output=True,
        )
        if completed.returncode != 0:
            raise ResolutionError(
                "Nix command failed.",
                hint=(
                    "Offline mode only serves paths already in the Nix store; "
                    "resolve once online to populate it."
                    if offline
                    else "Inspect the package index reference and package names."
                ),
                context={
                    "resolver": self.name,
                    "operation": operation,
                    "network_mode": "offline" if offline else "online",
                    "argv": " ".join(command),
                    "returncode": str(completed.returncode),
                    "stderr": completed.stderr[-2000:] if completed.stderr else "",
                },
            )
        try:
            return json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise self._malformed(operation, " ".join(argv)) from exc

    def _malformed(self, operation: str, subject: str) -> ResolutionError:
        return ResolutionError(
            "Nix returned output in an unexpected format.",
            hint="Upgrade nix or check the installable reference.",
            context={"resolver": self.name, "operation": operation, "subject": subject},
        )

    def _ensure_prerequisites(self) -> None:
        if shutil.which("nix") is None:
            raise ResolutionError(
                "Nix resolver requires `nix` in PATH.",
                hint="Install Nix: https://nixos.org/download.html",
                context={"resolver": self.name, "operation": "prepare"},
            )
