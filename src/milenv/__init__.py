"""Public package entrypoint for the milenv development-environment SDK."""

from .config import Settings
from .descriptor import mel_descriptor, parse_descriptor, read_descriptor, write_descriptor
from .errors import (
    ErrorCode,
    IntegrityMismatchError,
    LockfileError,
    MilenvError,
    PlatformUnsupportedError,
    PolicyError,
    ReproducibilityError,
    ResolutionError,
    ValidationError,
)
from .models import (
    Descriptor,
    Environment,
    PackageIndex,
    PinnedIndex,
    ResolvedPackage,
    ResolvedToolchain,
    ToolchainSpec,
)
from .platforms import DEFAULT_PLATFORMS, host_platform
from .policy import MutableRefWarning, Policy
from .shell import Shell

__all__ = [
    "DEFAULT_PLATFORMS",
    "Descriptor",
    "Environment",
    "ErrorCode",
    "IntegrityMismatchError",
    "LockfileError",
    "MilenvError",
    "MutableRefWarning",
    "PackageIndex",
    "PinnedIndex",
    "PlatformUnsupportedError",
    "Policy",
    "PolicyError",
    "ReproducibilityError",
    "ResolutionError",
    "ResolvedPackage",
    "ResolvedToolchain",
    "Settings",
    "Shell",
    "ToolchainSpec",
    "ValidationError",
    "host_platform",
    "mel_descriptor",
    "parse_descriptor",
    "read_descriptor",
    "write_descriptor",
]
