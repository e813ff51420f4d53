"""
Test fixtures for release_orchestrator.

Provides fake build tools, a fake source fetcher and a recording release
client so whole runs execute in a tmp directory without git, cmake or
network access.
"""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from release_orchestrator.config import OrchestratorSettings
from release_orchestrator.core.artifact_store import ArtifactStore
from release_orchestrator.core.commands import CommandResult
from release_orchestrator.core.context import RunContext
from release_orchestrator.core.notifier import Notifier
from release_orchestrator.core.source import Checkout
from release_orchestrator.core.state import RunTracker
from release_orchestrator.errors import PublishError, SourceFetchError
from release_orchestrator.io.schema import (
    JobResult,
    JobStatus,
    PublishedRelease,
    Release,
    ReleaseFile,
)
from release_orchestrator.policy.profile import ReleaseProfile

PINNED_REF = "3c5a8f1e2d4b6a7c9e0f1a2b3c4d5e6f7a8b9c0d"


# ── Fakes ────────────────────────────────────────────────────────────────────

class FakeCommands:
    """CommandRunner that records argv and succeeds unless told otherwise.

    The platform of a call is the name of its working directory (the job
    workspace).  ``cmake --install`` drops a per-platform payload into the
    install tree so archives differ between platforms.
    """

    def __init__(self, install_dir: str = "install"):
        self.install_dir = install_dir
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, CommandResult] = {}
        self.payloads: Dict[str, bytes] = {}
        self.hooks: Dict[tuple, object] = {}
        self._lock = threading.Lock()

    def fail(self, platform: str, tool_prefix: Sequence[str], stderr: str = "boom", exit_code: int = 2):
        self.failures[(platform, tuple(tool_prefix))] = CommandResult(
            argv=list(tool_prefix), exit_code=exit_code, stdout="", stderr=stderr, duration_ms=1,
        )

    def on(self, platform: str, tool_prefix: Sequence[str], hook) -> None:
        """Call *hook()* when the matching command runs (before it returns)."""
        self.hooks[(platform, tuple(tool_prefix))] = hook

    def argvs(self, platform: str) -> List[List[str]]:
        with self._lock:
            return [argv for p, argv, _ in self.calls if p == platform]

    def run(self, argv, cwd: Path, env=None, timeout=None) -> CommandResult:
        platform = Path(cwd).name
        with self._lock:
            self.calls.append((platform, list(argv), dict(env or {})))

        for (p, prefix), hook in self.hooks.items():
            if p == platform and tuple(argv[:len(prefix)]) == prefix:
                hook()
        for (p, prefix), result in self.failures.items():
            if p == platform and tuple(argv[:len(prefix)]) == prefix:
                return result

        if tuple(argv[:2]) == ("cmake", "--install"):
            payload = self.payloads.get(platform, f"llvm for {platform}".encode())
            bin_dir = Path(cwd) / self.install_dir / "bin"
            bin_dir.mkdir(parents=True, exist_ok=True)
            (bin_dir / "clang").write_bytes(payload)

        return CommandResult(argv=list(argv), exit_code=0, stdout="ok", stderr="", duration_ms=1)


class FakeFetcher:
    """SourceFetcher that "checks out" by creating the directory."""

    def __init__(self):
        self.commits: Dict[str, str] = {}
        self.resolved: Optional[str] = None
        self.errors: Dict[str, SourceFetchError] = {}
        self.calls: List[tuple] = []

    def fetch(self, url: str, ref: str, depth: int, dest: Path) -> Checkout:
        platform = dest.parent.name
        self.calls.append((platform, url, ref, depth))
        if platform in self.errors:
            raise self.errors[platform]
        dest.mkdir(parents=True, exist_ok=True)
        return Checkout(path=dest, commit=self.commits.get(platform, self.resolved or ref))


class RecordingClient:
    """ReleaseClient that records every call and reads the files."""

    def __init__(self, error: Optional[PublishError] = None):
        self.error = error
        self.calls: List[dict] = []
        self.uploaded: Dict[str, bytes] = {}
        self.closed = False

    def create_release(self, tag, title, draft, body, files) -> PublishedRelease:
        self.calls.append({"tag": tag, "title": title, "draft": draft, "body": body, "files": list(files)})
        if self.error is not None:
            raise self.error
        for f in files:
            self.uploaded[f.filename] = Path(f.path).read_bytes()
        return PublishedRelease(
            release=Release(tag=tag, title=title, draft=draft, body=body, files=tuple(files)),
            url=f"https://example.test/releases/{tag}",
            release_id=len(self.calls),
        )

    def close(self) -> None:
        self.closed = True


# ── Helpers ──────────────────────────────────────────────────────────────────

def success_result(store: ArtifactStore, platform: str, data: bytes, source_ref: str = PINNED_REF) -> JobResult:
    """Stage *data* for *platform* and return the matching SUCCESS result."""
    sha = store.put(platform, data)
    return JobResult(
        platform=platform,
        status=JobStatus.SUCCESS,
        artifact_path=store.path(platform),
        sha256=sha,
        source_ref=source_ref,
    )


def failed_result(platform: str, step: str = "build", diagnostic: str = "ninja: build stopped") -> JobResult:
    return JobResult(
        platform=platform,
        status=JobStatus.FAILED,
        source_ref=PINNED_REF,
        failed_step=step,
        diagnostic=diagnostic,
    )


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def profile() -> ReleaseProfile:
    return ReleaseProfile.v1()


@pytest.fixture
def make_ctx(tmp_path: Path):
    def _make(ref: str = "refs/heads/main", run_number: int = 42) -> RunContext:
        return RunContext(
            run_number=run_number,
            ref=ref,
            primary_branch="main",
            workspace_root=tmp_path / "ws",
            source_repository="llvm/llvm-project",
            source_url="https://github.com/llvm/llvm-project.git",
            logs_url="https://github.com/mmdriley/llvmbuilds/actions/runs/1234",
        )
    return _make


@pytest.fixture
def ctx(make_ctx) -> RunContext:
    return make_ctx()


@pytest.fixture
def notifier(ctx: RunContext) -> Notifier:
    return Notifier(ctx.run_id)


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "store")


@pytest.fixture
def tracker(ctx: RunContext, profile: ReleaseProfile, notifier: Notifier) -> RunTracker:
    return RunTracker(ctx.run_id, profile.platform_ids, notifier)


@pytest.fixture
def commands() -> FakeCommands:
    return FakeCommands()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def build_settings(tmp_path: Path) -> Path:
    path = tmp_path / "BuildSettings.txt"
    path.write_text('set(CMAKE_BUILD_TYPE Release CACHE STRING "")\n', encoding="utf-8")
    return path


@pytest.fixture
def make_settings(tmp_path: Path, build_settings: Path):
    def _make(**overrides) -> OrchestratorSettings:
        values = dict(
            GITHUB_TOKEN=None,
            GITHUB_REPOSITORY="mmdriley/llvmbuilds",
            GITHUB_RUN_ID="1234",
            GITHUB_RUN_NUMBER=42,
            GITHUB_REF="refs/heads/main",
            PRIMARY_BRANCH="main",
            SOURCE_REPOSITORY="llvm/llvm-project",
            SOURCE_REF_FILE=str(tmp_path / "llvm-commit.txt"),
            BUILD_SETTINGS_FILE=str(build_settings),
            PLATFORMS="linux,macos,windows",
            WORKSPACE_ROOT=str(tmp_path / "ws"),
            ARTIFACTS_PATH=str(tmp_path / "artifacts"),
            RUN_TIMEOUT=30.0,
        )
        values.update(overrides)
        return OrchestratorSettings(**values)
    return _make


@pytest.fixture
def release_file(tmp_path: Path) -> ReleaseFile:
    path = tmp_path / "asset.tar.xz"
    path.write_bytes(b"\xfd7zXZ\x00fake")
    return ReleaseFile(filename="llvm-linux.tar.xz", path=path)
