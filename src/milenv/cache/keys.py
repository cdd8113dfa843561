"""Cache key derivation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ToolchainCacheInput:
    manifest_digest: str
    target: str
    components: tuple[tuple[str, str], ...] = ()


def cache_key(inputs: ToolchainCacheInput) -> str:
    canonical = json.dumps(_to_payload(inputs), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(inputs: ToolchainCacheInput) -> dict[str, Any]:
    return {
        "manifest_digest": inputs.manifest_digest,
        "target": inputs.target,
        "components": [[name, sha256] for name, sha256 in sorted(inputs.components)],
    }
