"""
Profile — frozen configuration for the build-and-release pipeline.

Everything that is a parameter to an external tool (generator, install
layout, artifact naming, toolchain per platform) lives here.  The profile
is immutable at construction time and threaded through the runner and the
coordinator so that two runs with the same profile + ref are comparable.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, Tuple


class Toolchain(str, Enum):
    """Compiler selection handed to the configure step."""
    CLANG = "clang"
    MSVC = "msvc"

    def env(self) -> Dict[str, str]:
        """CC / CXX for this toolchain."""
        # MinGW is what CMake picks on Windows if left alone; it fails on
        # platform headers.
        if self is Toolchain.MSVC:
            return {"CC": "cl.exe", "CXX": "cl.exe"}
        return {"CC": "clang", "CXX": "clang++"}


@dataclass(frozen=True)
class PlatformTarget:
    """One build environment."""

    platform: str        # stable id, used in artifact names: linux, macos, windows
    runner_os: str       # Linux, macOS, Windows
    runs_on: str         # runner image the job is scheduled on
    toolchain: Toolchain


# Older runner images on purpose: builds made there run on more systems.
_DEFAULT_TARGETS: Tuple[PlatformTarget, ...] = (
    PlatformTarget("linux", "Linux", "ubuntu-18.04", Toolchain.CLANG),
    PlatformTarget("macos", "macOS", "macos-10.15", Toolchain.CLANG),
    PlatformTarget("windows", "Windows", "windows-2019", Toolchain.MSVC),
)


@dataclass(frozen=True)
class ReleaseProfile:
    """Immutable configuration for build jobs and the release (v1)."""

    # ── Targets ───────────────────────────────────────────────────────────
    targets: Tuple[PlatformTarget, ...] = _DEFAULT_TARGETS

    # ── Source checkout ───────────────────────────────────────────────────
    fetch_depth: int = 1
    source_dir: str = "llvm-project"
    cmake_source_subdir: str = "llvm"

    # ── Configure / build / install ───────────────────────────────────────
    cmake_generator: str = "Ninja"
    build_dir: str = "build"
    install_dir: str = "install"
    bazel_workspace_name: str = "com_github_mmdriley_llvmbuilds"

    # ── Packaging ─────────────────────────────────────────────────────────
    archive_name: str = "llvm.tar.xz"
    artifact_prefix: str = "llvm"
    artifact_suffix: str = ".tar.xz"

    # ── Release naming ────────────────────────────────────────────────────
    tag_prefix: str = "r"
    title_prefix: str = "build "

    # ── Identity ──────────────────────────────────────────────────────────
    profile_id: str = "llvm-tar-xz-v1"

    @classmethod
    def v1(cls) -> ReleaseProfile:
        """Return the canonical v1 profile with all defaults."""
        return cls()

    @property
    def platform_ids(self) -> Tuple[str, ...]:
        return tuple(t.platform for t in self.targets)

    def target(self, platform: str) -> PlatformTarget:
        for t in self.targets:
            if t.platform == platform:
                return t
        raise KeyError(f"platform {platform!r} not in profile {self.profile_id}")

    def select(self, platforms: Iterable[str]) -> ReleaseProfile:
        """Copy of this profile restricted to *platforms*, in the given order."""
        return replace(self, targets=tuple(self.target(p) for p in platforms))
