"""
Errors — exception vocabulary for the orchestrator.

Step failures are data (``JobResult.status``) and never escape a
JobRunner.  Everything raised from here up is either a run-level outcome
(timeout, abort, publish rejection) or a violated invariant.
"""
from __future__ import annotations

from typing import Iterable, Optional


class ReleaseOrchestratorError(Exception):
    """Base class for all orchestrator errors."""


# ── Job level ────────────────────────────────────────────────────────────────

class StepFailure(ReleaseOrchestratorError):
    """A job step failed.  Caught inside JobRunner and turned into a result."""

    def __init__(self, step: str, diagnostic: str, exit_code: Optional[int] = None):
        super().__init__(f"{step}: {diagnostic}")
        self.step = step
        self.diagnostic = diagnostic
        self.exit_code = exit_code


class SourceFetchError(ReleaseOrchestratorError):
    """Shallow checkout of the source repository failed."""

    NOT_FOUND = "NOT_FOUND"
    NETWORK = "NETWORK"
    OTHER = "OTHER"

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind = kind


# ── Invariant violations (hard failures) ─────────────────────────────────────

class ArtifactConflictError(ReleaseOrchestratorError):
    """Two different artifacts were submitted for the same platform."""

    def __init__(self, platform: str, existing_sha256: str, new_sha256: str):
        super().__init__(
            f"artifact for platform {platform!r} already staged as "
            f"{existing_sha256}, refusing {new_sha256}"
        )
        self.platform = platform
        self.existing_sha256 = existing_sha256
        self.new_sha256 = new_sha256


class ArtifactNotFoundError(ReleaseOrchestratorError, KeyError):
    """No artifact has been staged for the platform."""

    def __init__(self, platform: str):
        super().__init__(platform)
        self.platform = platform

    def __str__(self) -> str:
        return f"no artifact staged for platform {self.platform!r}"


class DuplicateResultError(ReleaseOrchestratorError):
    """A second JobResult arrived for a platform that already reported."""

    def __init__(self, platform: str):
        super().__init__(f"duplicate job result for platform {platform!r}")
        self.platform = platform


class DuplicatePublishError(ReleaseOrchestratorError):
    """``await_and_publish`` was called more than once for a run."""


class SourceRefMismatchError(ReleaseOrchestratorError):
    """Jobs of the same run checked out different source refs."""

    def __init__(self, refs: dict):
        listing = ", ".join(f"{p}={r}" for p, r in sorted(refs.items()))
        super().__init__(f"jobs disagree on source ref: {listing}")
        self.refs = dict(refs)


class ManifestIncompleteError(ReleaseOrchestratorError):
    """The manifest cannot be frozen: platforms are missing or unexpected."""

    def __init__(self, missing: Iterable[str], unexpected: Iterable[str] = ()):
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(
            f"manifest incomplete: missing={self.missing} unexpected={self.unexpected}"
        )


class ManifestFrozenError(ReleaseOrchestratorError):
    """A record was attempted on a frozen manifest."""


class InvalidTransitionError(ReleaseOrchestratorError):
    """Illegal run or platform state transition."""

    def __init__(self, subject: str, current: str, target: str):
        super().__init__(f"{subject}: cannot go from {current} to {target}")
        self.subject = subject
        self.current = current
        self.target = target


# ── Run-level outcomes ───────────────────────────────────────────────────────

class ReleaseTimeoutError(ReleaseOrchestratorError):
    """The coordinator gave up waiting for job results."""

    def __init__(self, missing: Iterable[str], timeout: float):
        self.missing = sorted(missing)
        self.timeout = timeout
        super().__init__(
            f"timed out after {timeout:.1f}s waiting for platforms {self.missing}"
        )


class ReleaseAbortedError(ReleaseOrchestratorError):
    """At least one platform failed; nothing was published."""

    def __init__(self, failed: dict):
        self.failed = dict(failed)
        listing = "; ".join(f"{p}: {d}" for p, d in sorted(self.failed.items()))
        super().__init__(f"release aborted, failed platforms: {listing}")


class PublishError(ReleaseOrchestratorError):
    """The release-hosting service rejected the publish call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReleaseConflictError(PublishError):
    """A release with the tag already exists."""


class UnauthorizedError(PublishError):
    """The hosting service refused the credentials."""


class ReleaseNetworkError(PublishError):
    """The hosting service could not be reached."""
