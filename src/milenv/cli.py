"""Command-line interface for milenv.

Usage:
    milenv platforms
    milenv resolve [--platform P] [--frozen] [--json]
    milenv lock [--platform P ...]
    milenv flake DIR
    milenv shell [--platform P] [--impure] -- CMD...

Global options: --descriptor FILE, --resolver {nix,inprocess}, --cache-dir DIR,
--lockfile FILE, --verbose.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from milenv.config import Settings
from milenv.descriptor import mel_descriptor, read_descriptor
from milenv.errors import MilenvError
from milenv.models import Environment
from milenv.observability import StructuredLogger
from milenv.resolvers import RESOLVER_NAMES
from milenv.shell import Shell


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milenv",
        description="Reproducible development shells for Mel Intermediate Lisp",
    )
    parser.add_argument("--descriptor", type=Path, help="Descriptor JSON file")
    parser.add_argument("--resolver", choices=RESOLVER_NAMES, default="nix")
    parser.add_argument("--cache-dir", type=Path, help="Override MILENV_CACHE_DIR")
    parser.add_argument("--lockfile", type=Path, help="Override MILENV_LOCKFILE")
    parser.add_argument(
        "--verbose", action="store_true", help="Stream resolution records to stderr as JSON"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("platforms", help="List the descriptor's supported platforms")

    resolve_p = sub.add_parser("resolve", help="Resolve the environment for a platform")
    resolve_p.add_argument("--platform", help="Platform identifier (default: host)")
    resolve_p.add_argument("--frozen", action="store_true", help="Require a current lockfile")
    resolve_p.add_argument("--json", action="store_true", help="Print the environment as JSON")

    lock_p = sub.add_parser("lock", help="Resolve and pin environments in the lockfile")
    lock_p.add_argument(
        "--platform",
        action="append",
        dest="platforms",
        help="Platform to lock (repeatable; default: all)",
    )

    flake_p = sub.add_parser("flake", help="Emit an equivalent flake.nix")
    flake_p.add_argument("directory", type=Path)

    shell_p = sub.add_parser("shell", help="Run a command inside the environment")
    shell_p.add_argument("--platform", help="Platform identifier (default: host)")
    shell_p.add_argument("--frozen", action="store_true", help="Require a current lockfile")
    shell_p.add_argument("--impure", action="store_true", help="Keep the caller's environment")
    shell_p.add_argument("argv", nargs=argparse.REMAINDER, help="Command to run after --")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return _dispatch(args, parser)
    except MilenvError as exc:
        print(json.dumps(exc.to_dict(), indent=2, sort_keys=True), file=sys.stderr)
        return 1


def _dispatch(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    shell = _shell_from_args(args)
    if args.command == "platforms":
        for platform in shell.descriptor.platforms:
            print(platform)
        return 0
    if args.command == "resolve":
        environment = shell.resolve(args.platform, frozen=args.frozen)
        if args.json:
            print(json.dumps(_environment_payload(environment), indent=2, sort_keys=True))
        else:
            print(f"{environment.platform} {environment.digest}")
            for path in environment.search_path:
                print(f"  {path}")
        return 0
    if args.command == "lock":
        lock_path = shell.lock(args.platforms)
        print(f"Locked to {lock_path}")
        return 0
    if args.command == "flake":
        flake_path = shell.emit_flake(args.directory)
        print(f"Wrote {flake_path}")
        return 0
    if args.command == "shell":
        command = list(args.argv)
        if command and command[0] == "--":
            command = command[1:]
        if not command:
            parser.error("shell requires a command after --")
        completed = shell.run(
            command,
            platform=args.platform,
            pure=not args.impure,
            frozen=args.frozen,
            capture_output=False,
        )
        return completed.returncode
    parser.error(f"unknown command {args.command}")
    return 2


def _shell_from_args(args: argparse.Namespace) -> Shell:
    settings = Settings.from_env()
    if args.cache_dir is not None:
        settings = replace(settings, cache_dir=args.cache_dir)
    if args.lockfile is not None:
        settings = replace(settings, lock_path=args.lockfile)
    descriptor = read_descriptor(args.descriptor) if args.descriptor else mel_descriptor()
    logger = StructuredLogger(stream=sys.stderr if args.verbose else None)
    return Shell.from_settings(
        settings, descriptor=descriptor, resolver=args.resolver, logger=logger
    )


def _environment_payload(environment: Environment) -> dict[str, object]:
    return {
        "platform": environment.platform,
        "digest": environment.digest,
        "identity": environment.identity(),
        "search_path": [str(path) for path in environment.search_path],
        "include_path": [str(path) for path in environment.include_path],
        "library_path": [str(path) for path in environment.library_path],
    }


if __name__ == "__main__":
    raise SystemExit(main())
