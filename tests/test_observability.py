import io
import json
from pathlib import Path

from milenv.observability import StructuredLogger


def test_structured_logs_include_platform_phase_and_component(tmp_path: Path) -> None:
    logger = StructuredLogger()
    logger.log(
        operation="resolve_start",
        platform="x86_64-linux",
        phase="start",
        component="shell",
        message="Starting environment resolution.",
    )
    logger.log(
        operation="resolve_packages",
        platform="aarch64-linux",
        phase="packages",
        component="nix",
        message="Resolved declared packages.",
        extra={"packages": ["clang"]},
    )

    records = logger.records_for_platform("aarch64-linux")
    assert records == [
        {
            "level": "info",
            "operation": "resolve_packages",
            "platform": "aarch64-linux",
            "phase": "packages",
            "component": "nix",
            "message": "Resolved declared packages.",
            "extra": {"packages": ["clang"]},
        }
    ]

    output = logger.to_json_lines(tmp_path / "logs" / "resolve.jsonl")
    lines = output.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["operation"] for line in lines] == [
        "resolve_start",
        "resolve_packages",
    ]


def test_structured_logger_streams_records() -> None:
    stream = io.StringIO()
    logger = StructuredLogger(stream=stream)

    logger.log(
        operation="run",
        platform="x86_64-linux",
        phase="activate",
        component="shell",
        message="Running command in activated environment.",
        level="loud",
        extra={"argv": ["rustc"]},
    )

    (line,) = stream.getvalue().splitlines()
    assert json.loads(line)["level"] == "info"
    assert json.loads(line)["extra"] == {"argv": ["rustc"]}
    assert logger.operations() == ["run"]
    assert logger.operations("aarch64-linux") == []
