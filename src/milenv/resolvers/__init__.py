"""Package resolution backends."""

from __future__ import annotations

from milenv.errors import ValidationError

from .base import PackageResolver
from .inprocess import InProcessResolver
from .nix import NixResolver

RESOLVER_NAMES = ("nix", "inprocess")


def get_resolver(name: str, **kwargs: object) -> PackageResolver:
    """Instantiate a resolver by registry name."""
    if name == "nix":
        return NixResolver(**kwargs)  # type: ignore[arg-type]
    if name == "inprocess":
        return InProcessResolver(**kwargs)  # type: ignore[arg-type]
    raise ValidationError(
        f"Unknown resolver `{name}`.",
        hint=f"Use one of: {', '.join(RESOLVER_NAMES)}.",
        context={"resolver": name},
    )


__all__ = ["InProcessResolver", "NixResolver", "PackageResolver", "RESOLVER_NAMES", "get_resolver"]
