"""
Schema — Pydantic models for job results, releases and run reports.

One output per run:
  run_report.json — run state, per-platform state, job results,
                    manifest and the published release URL.

Runtime contract fields (present in every report):
  package_name, orchestrator_version, profile_id, schema_version.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from release_orchestrator import (
    ORCHESTRATOR_VERSION,
    PACKAGE_NAME,
    PROFILE_ID,
    SCHEMA_VERSION,
)


# =============================================================================
# Enums
# =============================================================================

class StepStatus(str, Enum):
    """Status of a single job step."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class JobStatus(str, Enum):
    """Terminal status of one platform job."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class RunState(str, Enum):
    """Run-level state machine."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    DRAFT_PUBLISHED = "DRAFT_PUBLISHED"


class PlatformState(str, Enum):
    """Per-platform sub-state while the run is RUNNING."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class EventKind(str, Enum):
    """Kinds of events surfaced to the operator."""
    RUN_STATE = "RUN_STATE"
    PLATFORM_STATE = "PLATFORM_STATE"
    STEP = "STEP"
    ARTIFACT = "ARTIFACT"
    RELEASE = "RELEASE"
    DIAGNOSTIC = "DIAGNOSTIC"


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Job results
# =============================================================================

class StepResult(BaseModel):
    """Outcome of one named step."""
    model_config = ConfigDict(frozen=True)

    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    duration_ms: int = 0
    diagnostic: str = ""


class JobResult(BaseModel):
    """
    Terminal outcome of one platform job.

    Produced once by the JobRunner that owns it and never mutated after.
    A SUCCESS result always carries the staged artifact path and its hash.
    """
    model_config = ConfigDict(frozen=True)

    platform: str
    status: JobStatus
    artifact_path: Optional[Path] = None
    sha256: Optional[str] = None
    source_ref: Optional[str] = None
    failed_step: Optional[str] = None
    diagnostic: str = ""
    steps: Tuple[StepResult, ...] = ()

    @model_validator(mode="after")
    def _success_has_artifact(self) -> "JobResult":
        if self.status == JobStatus.SUCCESS and (
            self.artifact_path is None or self.sha256 is None
        ):
            raise ValueError("a successful job result needs artifact_path and sha256")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCESS


# =============================================================================
# Manifest & release
# =============================================================================

class ManifestEntry(BaseModel):
    """One staged artifact as it will appear in the release."""
    model_config = ConfigDict(frozen=True)

    platform: str
    filename: str
    sha256: str
    size_bytes: int


class ReleaseFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    path: Path


class Release(BaseModel):
    """The single terminal object of a run."""
    model_config = ConfigDict(frozen=True)

    tag: str
    title: str
    draft: bool
    body: str
    files: Tuple[ReleaseFile, ...]


class PublishedRelease(BaseModel):
    """A release the hosting service accepted."""
    model_config = ConfigDict(frozen=True)

    release: Release
    url: str
    release_id: Optional[int] = None


# =============================================================================
# Events & run report
# =============================================================================

class RunEvent(BaseModel):
    """A single operator-visible event."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    kind: EventKind
    message: str
    platform: Optional[str] = None
    state: Optional[str] = None
    at: str = Field(default_factory=now_iso)


class RunReport(BaseModel):
    """Wrapper for run_report.json."""
    package_name: str = PACKAGE_NAME
    orchestrator_version: str = ORCHESTRATOR_VERSION
    profile_id: str = PROFILE_ID
    schema_version: str = SCHEMA_VERSION

    run_id: str
    run_number: int
    branch: str
    source_ref: str
    production: bool
    draft: bool
    state: RunState
    platforms: Dict[str, PlatformState] = Field(default_factory=dict)
    jobs: List[JobResult] = Field(default_factory=list)
    manifest: List[ManifestEntry] = Field(default_factory=list)
    release_url: Optional[str] = None
    error: Optional[str] = None
    created_at: str = Field(default_factory=now_iso)
    finished_at: Optional[str] = None
