"""
Verdict — branch policy, release naming and run outcome.

Pure functions; no IO, no state.
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from release_orchestrator.io.schema import (
    JobResult,
    ManifestEntry,
    PlatformState,
    RunState,
)
from release_orchestrator.policy.profile import ReleaseProfile

BRANCH_REF_PREFIX = "refs/heads/"


def branch_name(ref: str) -> str:
    """``refs/heads/main`` → ``main``; bare branch names pass through."""
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    return ref


def is_production(ref: str, primary_branch: str) -> bool:
    """Only the primary branch pays for the full build + install."""
    return branch_name(ref) == branch_name(primary_branch)


def is_draft(ref: str, primary_branch: str) -> bool:
    """Every non-primary branch publishes drafts, whatever the outcome."""
    return not is_production(ref, primary_branch)


# ── Release naming ───────────────────────────────────────────────────────────

def release_tag(run_number: int, profile: ReleaseProfile) -> str:
    return f"{profile.tag_prefix}{run_number}"


def release_title(run_number: int, profile: ReleaseProfile) -> str:
    return f"{profile.title_prefix}{run_number}"


def artifact_filename(platform: str, profile: ReleaseProfile) -> str:
    """Per-platform release file name so uploads never collide."""
    return f"{profile.artifact_prefix}-{platform}{profile.artifact_suffix}"


def render_release_body(
    source_repository: str,
    source_ref: str,
    entries: Iterable[ManifestEntry],
    logs_url: Optional[str] = None,
) -> str:
    """Render the release message.

    ``owner/repo@SHA`` is autolinked by the hosting service.  Hash lines use
    the ``sha256sum``/``openssl dgst -r`` layout (``<hex> *<file>``) so the
    block can be fed straight to a checker.
    """
    hash_lines = "".join(
        f"{e.sha256} *{e.filename}\n"
        for e in sorted(entries, key=lambda e: e.filename)
    )
    body = f"{source_repository}@{source_ref}\n\n```\n{hash_lines}```\n"
    if logs_url:
        body += f"\nbuild logs: {logs_url}\n"
    return body


# ── Run outcome ──────────────────────────────────────────────────────────────

def platform_state_for(result: JobResult) -> PlatformState:
    return PlatformState.SUCCEEDED if result.succeeded else PlatformState.FAILED


def published_run_state(draft: bool) -> RunState:
    """Terminal state after a successful publish call."""
    return RunState.DRAFT_PUBLISHED if draft else RunState.SUCCEEDED


def exit_code_for(state: RunState) -> int:
    """0 for a published release (draft or not), 1 for everything else."""
    return 0 if state in (RunState.SUCCEEDED, RunState.DRAFT_PUBLISHED) else 1


def failed_platforms(results: Mapping[str, JobResult]) -> dict:
    """platform → ``"<step>: <diagnostic>"`` for every FAILED result."""
    return {
        p: f"{r.failed_step or 'unknown'}: {r.diagnostic}"
        for p, r in results.items()
        if not r.succeeded
    }
