"""Integrity digest parsing and verification.

Descriptors pin artifacts with digests in several spellings:

- SRI: ``sha256-<base64>`` (trailing ``=`` padding may be omitted)
- Nix-style: ``sha256:<hex>``
- bare lowercase hex (64 chars)

All of them normalize to a :class:`Digest` holding the hex form.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass

from milenv.errors import IntegrityMismatchError, ValidationError

HEX_PATTERN = re.compile(r"^[0-9a-f]{64}$")
SUPPORTED_ALGORITHMS = ("sha256",)


@dataclass(frozen=True, slots=True)
class Digest:
    algorithm: str
    hex: str

    def sri(self) -> str:
        raw = bytes.fromhex(self.hex)
        return f"{self.algorithm}-{base64.b64encode(raw).decode('ascii')}"

    def matches(self, payload: bytes) -> bool:
        return hashlib.sha256(payload).hexdigest() == self.hex

    def __str__(self) -> str:
        return self.sri()


def parse_digest(value: str) -> Digest:
    """Parse any supported digest spelling into a :class:`Digest`."""
    if not value:
        raise ValidationError("Digest value must be non-empty.")
    if HEX_PATTERN.fullmatch(value):
        return Digest(algorithm="sha256", hex=value)
    if ":" in value:
        algorithm, _, encoded = value.partition(":")
        _ensure_algorithm(algorithm, value)
        if not HEX_PATTERN.fullmatch(encoded.lower()):
            raise ValidationError(
                "Digest hex payload is malformed.",
                context={"digest": value},
            )
        return Digest(algorithm=algorithm, hex=encoded.lower())
    if "-" in value:
        algorithm, _, encoded = value.partition("-")
        _ensure_algorithm(algorithm, value)
        return Digest(algorithm=algorithm, hex=_decode_sri_payload(encoded, value))
    raise ValidationError(
        "Unrecognized digest format.",
        hint="Use `sha256-<base64>`, `sha256:<hex>` or 64-char hex.",
        context={"digest": value},
    )


def sha256_hex(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def verify_payload(payload: bytes, expected: str | Digest, *, source: str) -> Digest:
    """Raise :class:`IntegrityMismatchError` unless *payload* matches *expected*."""
    digest = expected if isinstance(expected, Digest) else parse_digest(expected)
    actual = sha256_hex(payload)
    if actual != digest.hex:
        raise IntegrityMismatchError(
            "Fetched artifact digest does not match the pinned digest.",
            hint="Update the pinned digest only after confirming the new artifact is trusted.",
            context={
                "source": source,
                "expected": digest.sri(),
                "actual": Digest(algorithm="sha256", hex=actual).sri(),
            },
        )
    return digest


def _ensure_algorithm(algorithm: str, value: str) -> None:
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValidationError(
            f"Unsupported digest algorithm `{algorithm}`.",
            hint="Only sha256 digests are supported.",
            context={"digest": value},
        )


def _decode_sri_payload(encoded: str, value: str) -> str:
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except binascii.Error as exc:
        raise ValidationError(
            "Digest base64 payload is malformed.",
            context={"digest": value},
        ) from exc
    if len(raw) != hashlib.sha256().digest_size:
        raise ValidationError(
            "Digest has the wrong length for sha256.",
            context={"digest": value, "bytes": str(len(raw))},
        )
    return raw.hex()


__all__ = ["Digest", "parse_digest", "sha256_hex", "verify_payload"]
