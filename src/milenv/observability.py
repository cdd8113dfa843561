"""Structured resolution records.

Every phase of a resolution appends one record keyed by platform, phase and
component. Records are kept in memory for inspection and can optionally be
streamed as JSON lines while they are produced (``milenv --verbose``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

LEVELS = ("debug", "info", "warning", "error")


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)
    stream: TextIO | None = None

    def log(
        self,
        *,
        operation: str,
        platform: str | None,
        phase: str | None,
        component: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if level not in LEVELS:
            level = "info"
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "platform": platform,
            "phase": phase,
            "component": component,
            "message": message,
        }
        if extra:
            record["extra"] = dict(extra)
        self.records.append(record)
        if self.stream is not None:
            self.stream.write(_encode(record) + "\n")
            self.stream.flush()
        return record

    def records_for_platform(self, platform: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record["platform"] == platform]

    def operations(self, platform: str | None = None) -> list[str]:
        """Operation names in the order they were logged."""
        selected = self.records if platform is None else self.records_for_platform(platform)
        return [record["operation"] for record in selected]

    def to_json_lines(self, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as handle:
            for record in self.records:
                handle.write(_encode(record) + "\n")
        return target


def _encode(record: dict[str, Any]) -> str:
    return json.dumps(record, sort_keys=True, default=str)


__all__ = ["LEVELS", "StructuredLogger"]
