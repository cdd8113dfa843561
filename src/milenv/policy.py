"""Policy configuration and enforcement helpers."""

from __future__ import annotations

import re
import warnings
from dataclasses import dataclass
from typing import Literal

from milenv.errors import PolicyError, ValidationError

MutableRefPolicy = Literal["warn", "error", "allow"]
NetworkMode = Literal["online", "offline"]

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MOVING_CHANNELS = ("stable", "beta", "nightly")


class MutableRefWarning(UserWarning):
    """Warning raised when a descriptor pins a moving reference."""


@dataclass(frozen=True, slots=True)
class Policy:
    require_frozen_lock: bool = False
    mutable_ref_policy: MutableRefPolicy = "warn"
    require_integrity: bool = True
    network_mode: NetworkMode = "online"


def ensure_resolve_policy(*, policy: Policy, frozen: bool) -> None:
    if policy.require_frozen_lock and not frozen:
        raise PolicyError(
            "Frozen lock mode is required by policy.",
            hint="Call resolve(frozen=True) or relax policy.require_frozen_lock.",
            context={"operation": "resolve"},
        )


def ensure_network_allowed(*, policy: Policy, operation: str) -> None:
    if policy.network_mode == "offline":
        raise PolicyError(
            "Network operations are disabled by policy.",
            hint="Switch policy.network_mode to 'online' or pre-populate the cache.",
            context={"operation": operation},
        )


def index_ref_is_mutable(ref: str) -> bool:
    """Return True unless the index ref ends in a full commit SHA."""
    tail = re.split(r"[/?=&]", ref)[-1]
    return not COMMIT_PATTERN.fullmatch(tail)


def channel_is_mutable(channel: str, date: str | None) -> bool:
    return channel in MOVING_CHANNELS and not (date and DATE_PATTERN.fullmatch(date))


def enforce_mutable_ref_policy(*, policy: Policy, kind: str, ref: str, mutable: bool) -> None:
    if not mutable:
        return
    mode = policy.mutable_ref_policy
    if mode == "allow":
        return
    if mode == "warn":
        warnings.warn(
            f"Mutable {kind} `{ref}` was requested; result is not inherently reproducible.",
            MutableRefWarning,
            stacklevel=3,
        )
        return
    if mode == "error":
        raise PolicyError(
            f"Mutable {kind} references are not allowed by policy.",
            hint="Pin a full commit revision or a dated toolchain release.",
            context={"operation": "resolve", "kind": kind, "ref": ref, "policy": mode},
        )
    raise ValidationError(f"Unsupported mutable_ref_policy value: {mode}")


__all__ = [
    "MutableRefPolicy",
    "MutableRefWarning",
    "NetworkMode",
    "Policy",
    "channel_is_mutable",
    "enforce_mutable_ref_policy",
    "ensure_network_allowed",
    "ensure_resolve_policy",
    "index_ref_is_mutable",
]
