"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers shared by the SDK and the CLI."""

    VALIDATION = "E_VALIDATION"
    PLATFORM_UNSUPPORTED = "E_PLATFORM_UNSUPPORTED"
    INTEGRITY_MISMATCH = "E_INTEGRITY_MISMATCH"
    LOCKFILE = "E_LOCKFILE"
    REPRODUCIBILITY = "E_REPRODUCIBILITY"
    RESOLUTION = "E_RESOLUTION"
    POLICY = "E_POLICY"


class MilenvError(Exception):
    """Base error: a message plus a code, an optional hint and string context.

    Every milenv error is fatal to the operation that raised it; callers get
    either a complete result or one of these.
    """

    message: str
    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code.value
        self.hint = hint
        self.context = {key: str(value) for key, value in (context or {}).items()}

    def __str__(self) -> str:
        lines = [self.message]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        lines.extend(f"  {key}: {value}" for key, value in self.context.items() if value)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "error": type(self).__name__,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class _CodedError(MilenvError):
    _code: ErrorCode

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=self._code, hint=hint, context=context)


class ValidationError(_CodedError):
    _code = ErrorCode.VALIDATION


class PlatformUnsupportedError(_CodedError):
    """The requested platform is outside the descriptor's supported set."""

    _code = ErrorCode.PLATFORM_UNSUPPORTED


class IntegrityMismatchError(_CodedError):
    """A fetched artifact does not match its pinned digest."""

    _code = ErrorCode.INTEGRITY_MISMATCH


class LockfileError(_CodedError):
    _code = ErrorCode.LOCKFILE


class ReproducibilityError(_CodedError):
    _code = ErrorCode.REPRODUCIBILITY


class ResolutionError(_CodedError):
    _code = ErrorCode.RESOLUTION


class PolicyError(_CodedError):
    _code = ErrorCode.POLICY


__all__ = [
    "ErrorCode",
    "IntegrityMismatchError",
    "LockfileError",
    "MilenvError",
    "PlatformUnsupportedError",
    "PolicyError",
    "ReproducibilityError",
    "ResolutionError",
    "ValidationError",
]
