"""Nix flake emission for environment descriptors.

Renders a ``flake.nix`` whose ``devShell`` outputs provide the same
dependency set as the descriptor: the pinned nixpkgs input, the declared
packages, and (when a toolchain is declared) the toolchain channel via the
mozilla overlay's ``rustChannelOf``.
"""

from __future__ import annotations

import json
from pathlib import Path

from milenv.descriptor import ensure_package_name
from milenv.errors import ValidationError
from milenv.integrity import parse_digest
from milenv.models import Descriptor, ToolchainSpec

MOZILLA_OVERLAY_URL = "github:mozilla/nixpkgs-mozilla"
FLAKE_UTILS_URL = "github:numtide/flake-utils"


def _nix_string(value: str) -> str:
    # JSON string escaping is a subset of Nix string escaping, except `${`.
    return json.dumps(value).replace("${", "\\${")


def _nix_list(values: tuple[str, ...] | list[str]) -> str:
    return "[ " + " ".join(_nix_string(value) for value in values) + " ]"


def _toolchain_overlay(toolchain: ToolchainSpec) -> str:
    channel_args = [f"channel = {_nix_string(toolchain.channel)};"]
    if toolchain.date:
        channel_args.append(f"date = {_nix_string(toolchain.date)};")
    channel_args.append(f"sha256 = {_nix_string(parse_digest(toolchain.sha256).sri())};")
    body = "\n".join(f"            {arg}" for arg in channel_args)
    return (
        "    let rustOverlay = final: prev:\n"
        "          let rustChannel = prev.rustChannelOf {\n"
        f"{body}\n"
        "          };\n"
        "          in\n"
        "          { inherit rustChannel;\n"
        "            rustc = rustChannel.rust;\n"
        "            cargo = rustChannel.rust;\n"
        "          };\n"
        "    in"
    )


def emit_flake(descriptor: Descriptor) -> str:
    """Render *descriptor* as deterministic ``flake.nix`` source."""
    if not descriptor.platforms:
        raise ValidationError("Descriptor must declare at least one platform.")
    toolchain = descriptor.toolchain
    lines = [
        "{",
        f"  description = {_nix_string(descriptor.description)};",
        "",
        f"  inputs.nixpkgs.url = {_nix_string(descriptor.index.ref)};",
        f"  inputs.flake-utils.url = {_nix_string(FLAKE_UTILS_URL)};",
    ]
    if toolchain is not None:
        lines.append(
            f"  inputs.mozilla = {{ url = {_nix_string(MOZILLA_OVERLAY_URL)}; flake = false; }};"
        )
    lines += [
        "",
        "  outputs = { self, nixpkgs, flake-utils, ... } @inputs:",
    ]

    overlays: list[str] = []
    build_inputs = [
        f"              {ensure_package_name(name)}" for name in sorted(descriptor.packages)
    ]
    if toolchain is not None:
        lines.append(_toolchain_overlay(toolchain))
        overlays = ['(import "${inputs.mozilla}/rust-overlay.nix")', "rustOverlay"]
        extensions = _nix_list(list(toolchain.extensions))
        build_inputs.append(
            f"              (rustChannel.rust.override {{ extensions = {extensions}; }})"
        )
    overlay_lines = [f"            {overlay}" for overlay in overlays]

    lines += [
        f"    flake-utils.lib.eachSystem {_nix_list(sorted(descriptor.platforms))}",
        "      (system:",
        "        let",
        "          pkgs = import nixpkgs {",
        "            inherit system;",
        "            overlays = [",
        *overlay_lines,
        "            ];",
        "          };",
        "        in {",
        "          devShell = pkgs.mkShell {",
        "            buildInputs = with pkgs; [",
        *build_inputs,
        "            ];",
        "          };",
        "        });",
        "}",
    ]
    return "\n".join(lines) + "\n"


def write_flake(descriptor: Descriptor, directory: str | Path) -> Path:
    """Write ``flake.nix`` for *descriptor* into *directory* and return its path."""
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    flake_path = target_dir / "flake.nix"
    flake_path.write_text(emit_flake(descriptor), encoding="utf-8")
    return flake_path
