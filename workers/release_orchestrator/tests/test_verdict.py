"""Tests for branch policy, naming and release body rendering."""
import pytest

from release_orchestrator.io.schema import ManifestEntry, RunState
from release_orchestrator.policy.profile import ReleaseProfile, Toolchain
from release_orchestrator.policy.verdict import (
    artifact_filename,
    branch_name,
    exit_code_for,
    is_draft,
    is_production,
    release_tag,
    release_title,
    render_release_body,
)

from conftest import PINNED_REF, failed_result


class TestBranchPolicy:

    @pytest.mark.parametrize("ref, production", [
        ("refs/heads/main", True),
        ("main", True),
        ("refs/heads/dev", False),
        ("refs/heads/main-backport", False),
        ("refs/tags/main", False),
    ])
    def test_production_only_on_primary(self, ref, production):
        assert is_production(ref, "main") is production
        assert is_draft(ref, "main") is not production

    def test_branch_name_strips_heads_prefix(self):
        assert branch_name("refs/heads/feature/x") == "feature/x"
        assert branch_name("dev") == "dev"


class TestNaming:

    def test_tag_and_title(self):
        profile = ReleaseProfile.v1()
        assert release_tag(17, profile) == "r17"
        assert release_title(17, profile) == "build 17"

    def test_artifact_filenames_are_distinct(self):
        profile = ReleaseProfile.v1()
        names = [artifact_filename(p, profile) for p in profile.platform_ids]
        assert names == ["llvm-linux.tar.xz", "llvm-macos.tar.xz", "llvm-windows.tar.xz"]


class TestReleaseBody:

    def _entries(self):
        return [
            ManifestEntry(platform="windows", filename="llvm-windows.tar.xz", sha256="c" * 64, size_bytes=3),
            ManifestEntry(platform="linux", filename="llvm-linux.tar.xz", sha256="a" * 64, size_bytes=1),
            ManifestEntry(platform="macos", filename="llvm-macos.tar.xz", sha256="b" * 64, size_bytes=2),
        ]

    def test_body_layout(self):
        body = render_release_body("llvm/llvm-project", PINNED_REF, self._entries())
        assert body == (
            f"llvm/llvm-project@{PINNED_REF}\n"
            "\n"
            "```\n"
            f"{'a' * 64} *llvm-linux.tar.xz\n"
            f"{'b' * 64} *llvm-macos.tar.xz\n"
            f"{'c' * 64} *llvm-windows.tar.xz\n"
            "```\n"
        )

    def test_logs_link_appended(self):
        body = render_release_body(
            "llvm/llvm-project", PINNED_REF, self._entries(),
            logs_url="https://github.com/o/r/actions/runs/9",
        )
        assert body.endswith("\nbuild logs: https://github.com/o/r/actions/runs/9\n")


class TestOutcome:

    def test_exit_codes(self):
        assert exit_code_for(RunState.SUCCEEDED) == 0
        assert exit_code_for(RunState.DRAFT_PUBLISHED) == 0
        assert exit_code_for(RunState.FAILED) == 1
        assert exit_code_for(RunState.RUNNING) == 1

    def test_toolchain_env(self):
        assert Toolchain.MSVC.env() == {"CC": "cl.exe", "CXX": "cl.exe"}
        assert Toolchain.CLANG.env() == {"CC": "clang", "CXX": "clang++"}
        assert ReleaseProfile.v1().target("windows").toolchain is Toolchain.MSVC

    def test_profile_select_unknown_platform(self):
        with pytest.raises(KeyError):
            ReleaseProfile.v1().select(["linux", "solaris"])

    def test_failed_result_has_no_artifact(self):
        r = failed_result("linux")
        assert not r.succeeded
        assert r.artifact_path is None and r.sha256 is None
