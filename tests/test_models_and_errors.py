from pathlib import Path

from milenv.errors import (
    ErrorCode,
    IntegrityMismatchError,
    LockfileError,
    PlatformUnsupportedError,
    PolicyError,
    ReproducibilityError,
    ResolutionError,
    ValidationError,
)
from milenv.models import (
    Descriptor,
    Environment,
    PackageIndex,
    PinnedIndex,
    ResolvedPackage,
    ToolchainSpec,
)


def test_error_classes_carry_stable_codes() -> None:
    assert ValidationError("x").code == ErrorCode.VALIDATION.value
    assert PlatformUnsupportedError("x").code == "E_PLATFORM_UNSUPPORTED"
    assert IntegrityMismatchError("x").code == "E_INTEGRITY_MISMATCH"
    assert LockfileError("x").code == "E_LOCKFILE"
    assert ReproducibilityError("x").code == "E_REPRODUCIBILITY"
    assert ResolutionError("x").code == "E_RESOLUTION"
    assert PolicyError("x").code == "E_POLICY"


def test_error_str_and_dict_include_hint_and_context() -> None:
    error = IntegrityMismatchError(
        "Digest mismatch.",
        hint="Re-pin the digest.",
        context={"expected": "aaa", "actual": "bbb", "empty": ""},
    )

    rendered = str(error)
    assert "Digest mismatch." in rendered
    assert "Hint: Re-pin the digest." in rendered
    assert "expected: aaa" in rendered
    assert "empty" not in rendered

    payload = error.to_dict()
    assert payload["code"] == "E_INTEGRITY_MISMATCH"
    assert payload["error"] == "IntegrityMismatchError"
    assert payload["hint"] == "Re-pin the digest."
    assert payload["context"] == {"expected": "aaa", "actual": "bbb", "empty": ""}


def test_descriptor_digest_ignores_package_order() -> None:
    first = Descriptor(
        description="d",
        index=PackageIndex(ref="github:nixos/nixpkgs/nixos-20.09"),
        packages=("clang", "openssl"),
    )
    second = Descriptor(
        description="d",
        index=PackageIndex(ref="github:nixos/nixpkgs/nixos-20.09"),
        packages=("openssl", "clang"),
    )

    assert first.digest() == second.digest()
    assert first.with_toolchain(ToolchainSpec(channel="nightly", sha256="0" * 64)).digest() != (
        first.digest()
    )


def test_environment_digest_excludes_local_paths() -> None:
    index = PinnedIndex(ref="ref", rev="r" * 40, nar_hash="sha256-x")
    left = Environment(
        platform="x86_64-linux",
        descriptor_digest="d",
        index=index,
        toolchain=None,
        packages=(ResolvedPackage(name="clang", store_path=Path("/a/clang"), digest="1"),),
        search_path=(Path("/a/clang/bin"),),
    )
    right = Environment(
        platform="x86_64-linux",
        descriptor_digest="d",
        index=index,
        toolchain=None,
        packages=(ResolvedPackage(name="clang", store_path=Path("/b/clang"), digest="1"),),
        search_path=(Path("/b/clang/bin"),),
    )

    assert left.digest == right.digest
    assert len(left.digest) == 64


def test_environment_variables_pure_and_impure(tmp_path: Path) -> None:
    bin_dir = tmp_path / "clang" / "bin"
    bin_dir.mkdir(parents=True)
    environment = Environment(
        platform="x86_64-linux",
        descriptor_digest="d",
        index=PinnedIndex(ref="ref", rev="r" * 40, nar_hash="sha256-x"),
        toolchain=None,
        packages=(),
        search_path=(bin_dir,),
        extra_variables={"RUST_SRC_PATH": "/src"},
    )
    base = {"PATH": "/usr/bin", "HOME": "/home/mel", "SECRET": "1"}

    pure = environment.variables(base=base)
    assert pure["PATH"] == str(bin_dir)
    assert pure["HOME"] == "/home/mel"
    assert "SECRET" not in pure
    assert pure["RUST_SRC_PATH"] == "/src"
    assert pure["IN_MILENV_SHELL"] == "pure"
    assert pure["MILENV_PLATFORM"] == "x86_64-linux"

    impure = environment.variables(pure=False, base=base)
    assert impure["PATH"].split(":") == [str(bin_dir), "/usr/bin"]
    assert impure["SECRET"] == "1"
