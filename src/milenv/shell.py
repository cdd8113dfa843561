"""Development shell object: descriptor declarations, resolution and activation."""

from __future__ import annotations

import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Self

from .cache import ToolchainStore
from .compiler import write_flake
from .config import Settings
from .descriptor import ensure_package_name, mel_descriptor
from .errors import LockfileError, ReproducibilityError, ResolutionError, ValidationError
from .lockfile import Lockfile, build_lockfile, read_lockfile, write_lockfile
from .lockfile.model import LockedEnvironment
from .models import (
    DEFAULT_DIST_ROOT,
    Descriptor,
    Environment,
    PackageIndex,
    PinnedIndex,
    ResolvedPackage,
    ResolvedToolchain,
    ResolveRequest,
    ToolchainSpec,
)
from .observability import StructuredLogger
from .platforms import ensure_supported, host_platform
from .policy import (
    Policy,
    enforce_mutable_ref_policy,
    ensure_resolve_policy,
    index_ref_is_mutable,
)
from .resolvers import PackageResolver, get_resolver
from .toolchain import (
    materialize_toolchain,
    resolve_toolchain,
    rust_src_path,
    toolchain_bin_dirs,
)


@dataclass(slots=True)
class Shell:
    """A reproducible development shell built from a :class:`Descriptor`."""

    descriptor: Descriptor = field(default_factory=mel_descriptor)
    resolver: PackageResolver | str = "nix"
    cache_dir: Path = field(default_factory=lambda: Settings().cache_dir)
    lock_path: Path = field(default_factory=lambda: Path("milenv.lock"))
    policy: Policy = field(default_factory=Policy)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _resolver: PackageResolver = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir)
        self.lock_path = Path(self.lock_path)
        if isinstance(self.resolver, str):
            if self.resolver == "inprocess":
                self._resolver = get_resolver("inprocess", store_root=self.cache_dir / "store")
            else:
                self._resolver = get_resolver(self.resolver)
        else:
            self._resolver = self.resolver

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        descriptor: Descriptor | None = None,
        resolver: PackageResolver | str = "nix",
        logger: StructuredLogger | None = None,
    ) -> Shell:
        return cls(
            descriptor=descriptor or mel_descriptor(),
            resolver=resolver,
            cache_dir=settings.cache_dir,
            lock_path=settings.lock_path,
            policy=settings.policy(),
            logger=logger or StructuredLogger(),
        )

    @property
    def package_resolver(self) -> PackageResolver:
        return self._resolver

    @property
    def _offline(self) -> bool:
        return self.policy.network_mode == "offline"

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def set_policy(self, policy: Policy) -> Self:
        self.policy = policy
        return self

    def install(self, *packages: str) -> Self:
        if not packages:
            raise ValidationError("install() requires at least one package.")
        for package in packages:
            ensure_package_name(package)
        merged = tuple(dict.fromkeys((*self.descriptor.packages, *packages)))
        self.descriptor = replace(self.descriptor, packages=merged)
        return self

    def index(self, ref: str) -> Self:
        if not ref:
            raise ValidationError("index() requires a non-empty reference.")
        self.descriptor = replace(self.descriptor, index=PackageIndex(ref=ref))
        return self

    def platforms(self, *platforms: str) -> Self:
        if not platforms:
            raise ValidationError("platforms() requires at least one platform.")
        self.descriptor = replace(self.descriptor, platforms=tuple(dict.fromkeys(platforms)))
        return self

    def toolchain(
        self,
        channel: str,
        *,
        sha256: str,
        date: str | None = None,
        extensions: tuple[str, ...] | None = None,
        dist_root: str | None = None,
    ) -> Self:
        self.descriptor = self.descriptor.with_toolchain(
            self._toolchain_spec(
                channel,
                sha256=sha256,
                date=date,
                extensions=extensions,
                dist_root=dist_root,
            )
        )
        return self

    def with_toolchain(
        self,
        channel: str,
        *,
        sha256: str,
        date: str | None = None,
        extensions: tuple[str, ...] | None = None,
        dist_root: str | None = None,
    ) -> Shell:
        """Return a copy of this shell with the pinned toolchain substituted."""
        spec = self._toolchain_spec(
            channel,
            sha256=sha256,
            date=date,
            extensions=extensions,
            dist_root=dist_root,
        )
        return replace(
            self,
            descriptor=self.descriptor.with_toolchain(spec),
            resolver=self._resolver,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def resolve(
        self,
        platform: str | None = None,
        *,
        frozen: bool = False,
        materialize: bool = True,
    ) -> Environment:
        """Resolve the descriptor for *platform* (default: the host).

        Either a complete environment is returned or an error is raised;
        nothing about a failed resolution is recorded.
        """
        ensure_resolve_policy(policy=self.policy, frozen=frozen)
        selected = platform or host_platform()
        ensure_supported(selected, supported=self.descriptor.platforms)
        locked = self._assert_frozen_lock(platform=selected) if frozen else None
        return self._resolve_environment(selected, locked=locked, materialize=materialize)

    def _resolve_environment(
        self,
        selected: str,
        *,
        locked: LockedEnvironment | None,
        materialize: bool,
    ) -> Environment:
        descriptor = self.descriptor
        self._log("resolve_start", selected, "start", "shell", "Starting environment resolution.")

        pinned = self._pin_index(descriptor, locked)
        toolchain: ResolvedToolchain | None = None
        if descriptor.toolchain is not None:
            toolchain = resolve_toolchain(
                descriptor.toolchain,
                platform=selected,
                cache_dir=self.cache_dir,
                policy=self.policy,
                logger=self.logger,
            )
            if materialize:
                toolchain = materialize_toolchain(
                    toolchain,
                    store=ToolchainStore(self.cache_dir / "toolchains"),
                    cache_dir=self.cache_dir,
                    policy=self.policy,
                )

        declared = tuple(sorted(descriptor.packages))
        packages = self._resolver.resolve(
            ResolveRequest(
                platform=selected,
                index=pinned,
                packages=declared,
                offline=self._offline,
            )
        )
        self._ensure_exact_package_set(declared, packages, platform=selected)
        self._log(
            "resolve_packages",
            selected,
            "packages",
            self._resolver.name,
            "Resolved declared packages.",
            extra={"packages": list(declared)},
        )

        environment = _assemble_environment(
            platform=selected,
            descriptor_digest=descriptor.digest(),
            index=pinned,
            toolchain=toolchain,
            packages=packages,
        )
        if locked is not None and environment.digest != locked.digest:
            raise ReproducibilityError(
                "Resolved environment does not match the locked environment.",
                hint="Inspect upstream changes, then re-run lock() if the drift is intended.",
                context={
                    "operation": "resolve",
                    "mode": "frozen",
                    "platform": selected,
                    "expected": locked.digest,
                    "actual": environment.digest,
                },
            )
        self._log(
            "resolve_complete",
            selected,
            "complete",
            "shell",
            "Completed environment resolution.",
            extra={"digest": environment.digest},
        )
        return environment

    def override(
        self,
        channel: str,
        sha256: str,
        *,
        platform: str | None = None,
        date: str | None = None,
        extensions: tuple[str, ...] | None = None,
    ) -> Environment:
        """Resolve with a substituted toolchain channel and integrity digest."""
        shell = self.with_toolchain(channel, sha256=sha256, date=date, extensions=extensions)
        return shell.resolve(platform)

    def lock(
        self,
        platforms: Iterable[str] | None = None,
        path: str | Path | None = None,
    ) -> Path:
        selected = tuple(platforms) if platforms is not None else self.descriptor.platforms
        if not selected:
            raise ValidationError("lock() requires at least one platform.")
        environments = [
            self._resolve_environment(
                ensure_supported(platform, supported=self.descriptor.platforms),
                locked=None,
                materialize=False,
            )
            for platform in selected
        ]
        lockfile = build_lockfile(descriptor=self.descriptor, environments=environments)
        return write_lockfile(lockfile, Path(path) if path is not None else self.lock_path)

    def emit_flake(self, directory: str | Path) -> Path:
        return write_flake(self.descriptor, directory)

    def run(
        self,
        argv: Sequence[str],
        *,
        platform: str | None = None,
        pure: bool = True,
        cwd: str | Path | None = None,
        frozen: bool = False,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *argv* inside the activated environment."""
        if not argv:
            raise ValidationError("run() requires a command argv.")
        environment = self.resolve(platform, frozen=frozen)
        self._log(
            "run",
            environment.platform,
            "activate",
            "shell",
            "Running command in activated environment.",
            extra={"argv": list(argv), "pure": pure},
        )
        variables = environment.variables(pure=pure)
        try:
            return subprocess.run(
                list(argv),
                env=variables,
                cwd=str(cwd) if cwd is not None else None,
                check=False,
                text=True,
                capture_output=capture_output,
            )
        except OSError as exc:
            raise ValidationError(
                f"Command `{argv[0]}` could not be started in the environment.",
                hint=(
                    "Declare the package that provides it, or run with pure=False "
                    "to keep the caller's PATH."
                ),
                context={
                    "command": argv[0],
                    "platform": environment.platform,
                    "PATH": variables.get("PATH", ""),
                    "error": exc.strerror or str(exc),
                },
            ) from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _toolchain_spec(
        self,
        channel: str,
        *,
        sha256: str,
        date: str | None,
        extensions: tuple[str, ...] | None,
        dist_root: str | None,
    ) -> ToolchainSpec:
        if not channel:
            raise ValidationError("Toolchain channel must be non-empty.")
        if not sha256 and self.policy.require_integrity:
            raise ValidationError(
                "Toolchain overrides require an integrity digest.",
                hint="Pass sha256= or relax policy.require_integrity.",
                context={"channel": channel},
            )
        current = self.descriptor.toolchain
        return ToolchainSpec(
            channel=channel,
            sha256=sha256,
            date=date,
            extensions=(
                extensions
                if extensions is not None
                else (current.extensions if current is not None else ())
            ),
            dist_root=(
                dist_root
                or (current.dist_root if current is not None else DEFAULT_DIST_ROOT)
            ),
        )

    def _pin_index(self, descriptor: Descriptor, locked: LockedEnvironment | None) -> PinnedIndex:
        if locked is not None:
            return PinnedIndex(
                ref=locked.index.ref,
                rev=locked.index.rev,
                nar_hash=locked.index.nar_hash,
                locked_ref=locked.index.locked_ref,
            )
        ref = descriptor.index.ref
        enforce_mutable_ref_policy(
            policy=self.policy,
            kind="package index",
            ref=ref,
            mutable=index_ref_is_mutable(ref),
        )
        return self._resolver.pin_index(descriptor.index, offline=self._offline)

    def _assert_frozen_lock(self, *, platform: str) -> LockedEnvironment:
        lock: Lockfile = read_lockfile(self.lock_path)
        current_digest = self.descriptor.digest()
        if lock.descriptor_digest != current_digest:
            raise LockfileError(
                "Frozen lockfile is stale for the current descriptor.",
                hint="Re-run shell.lock() and commit the updated lockfile.",
                context={
                    "operation": "resolve",
                    "mode": "frozen",
                    "expected": current_digest,
                    "actual": lock.descriptor_digest,
                    "path": str(self.lock_path),
                },
            )
        locked = lock.environments.get(platform)
        if locked is None:
            raise LockfileError(
                "Lockfile has no entry for this platform.",
                hint="Re-run shell.lock() including this platform.",
                context={"operation": "resolve", "platform": platform, "path": str(self.lock_path)},
            )
        return locked

    def _ensure_exact_package_set(
        self,
        declared: tuple[str, ...],
        packages: tuple[ResolvedPackage, ...],
        *,
        platform: str,
    ) -> None:
        resolved_names = [package.name for package in packages]
        if sorted(resolved_names) != sorted(declared):
            raise ResolutionError(
                "Resolver returned a package set different from the declared set.",
                context={
                    "resolver": self._resolver.name,
                    "platform": platform,
                    "declared": ",".join(declared),
                    "resolved": ",".join(sorted(resolved_names)),
                },
            )

    def _log(
        self,
        operation: str,
        platform: str,
        phase: str,
        component: str,
        message: str,
        *,
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            platform=platform,
            phase=phase,
            component=component,
            message=message,
            extra=extra,
        )


def _assemble_environment(
    *,
    platform: str,
    descriptor_digest: str,
    index: PinnedIndex,
    toolchain: ResolvedToolchain | None,
    packages: tuple[ResolvedPackage, ...],
) -> Environment:
    search_path: list[Path] = []
    include_path: list[Path] = []
    library_path: list[Path] = []
    extra_variables: dict[str, str] = {}
    if toolchain is not None and toolchain.root is not None:
        search_path.extend(toolchain_bin_dirs(toolchain.root))
        src_path = rust_src_path(toolchain.root)
        if src_path is not None:
            extra_variables["RUST_SRC_PATH"] = str(src_path)
    for package in sorted(packages, key=lambda item: item.name):
        for output in package.output_paths():
            for subdir, bucket in (
                ("bin", search_path),
                ("include", include_path),
                ("lib", library_path),
            ):
                candidate = output / subdir
                if candidate.is_dir() and candidate not in bucket:
                    bucket.append(candidate)
    return Environment(
        platform=platform,
        descriptor_digest=descriptor_digest,
        index=index,
        toolchain=toolchain,
        packages=tuple(sorted(packages, key=lambda item: item.name)),
        search_path=tuple(search_path),
        include_path=tuple(include_path),
        library_path=tuple(library_path),
        extra_variables=extra_variables,
    )
