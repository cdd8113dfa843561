"""Compiler interfaces for emitting Nix-compatible descriptors."""

from .emit_flake import FLAKE_UTILS_URL, MOZILLA_OVERLAY_URL, emit_flake, write_flake

__all__ = ["FLAKE_UTILS_URL", "MOZILLA_OVERLAY_URL", "emit_flake", "write_flake"]
