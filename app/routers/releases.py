"""
Releases Router
Starts release runs in the background and reports their progress.

A run is held in an in-memory registry for the lifetime of the process;
the durable record is the run_report.json / events.jsonl pair the run
writes under ARTIFACTS_PATH.

    POST /releases/runs                  start a run
    GET  /releases/runs                  list known runs
    GET  /releases/runs/{run_id}         run report (live while running)
    GET  /releases/runs/{run_id}/events  operator-visible events
    GET  /releases/runs/{run_id}/badge   shields.io endpoint badge
    POST /releases/runs/{run_id}/cancel  operator abort
"""
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from release_orchestrator import ORCHESTRATOR_VERSION, PACKAGE_NAME, SCHEMA_VERSION  # type: ignore
from release_orchestrator.errors import ReleaseOrchestratorError  # type: ignore
from release_orchestrator.io.schema import RunEvent, RunReport, RunState  # type: ignore
from release_orchestrator.runner import ReleaseRun, RunOutcome, make_release_client  # type: ignore

from app.config import Settings, settings

logger = logging.getLogger(__name__)


# =============================================================================
# Run registry
# =============================================================================

@dataclass
class RunEntry:
    run: ReleaseRun
    thread: Optional[threading.Thread] = None
    outcome: Optional[RunOutcome] = None
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.thread is not None and not self.thread.is_alive()


class RunRegistry:
    """Thread-safe run_id → RunEntry map."""

    def __init__(self):
        self._entries: Dict[str, RunEntry] = {}
        self._lock = threading.Lock()

    def start(self, run: ReleaseRun) -> RunEntry:
        entry = RunEntry(run=run)
        entry.thread = threading.Thread(
            target=self._execute,
            args=(entry,),
            name=f"run-{run.run_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._entries[run.run_id] = entry
        entry.thread.start()
        return entry

    def get(self, run_id: str) -> Optional[RunEntry]:
        with self._lock:
            return self._entries.get(run_id)

    def list(self) -> List[RunEntry]:
        with self._lock:
            return list(self._entries.values())

    def cancel_all(self) -> int:
        count = 0
        for entry in self.list():
            if not entry.done:
                entry.run.cancel()
                count += 1
        return count

    @staticmethod
    def _execute(entry: RunEntry) -> None:
        try:
            entry.outcome = entry.run.execute()
        except ReleaseOrchestratorError as e:
            logger.error("Run %s aborted: %s", entry.run.run_id, e)
            entry.error = str(e)
        except Exception as e:
            logger.exception("Run %s crashed", entry.run.run_id)
            entry.error = f"{type(e).__name__}: {e}"
            if entry.run.tracker.state in (RunState.PENDING, RunState.RUNNING):
                entry.run.tracker.fail(entry.error)


registry = RunRegistry()


# =============================================================================
# Request/Response Models
# =============================================================================

class RunRequest(BaseModel):
    """Request to start a release run."""
    ref: Optional[str] = Field(
        None,
        description="Triggering branch ref, e.g. refs/heads/main (default: GITHUB_REF)",
    )
    run_number: Optional[int] = Field(
        None, ge=0,
        description="Run number used for the release tag and title",
    )
    source_ref: Optional[str] = Field(
        None,
        description="Source ref to build (default: contents of SOURCE_REF_FILE)",
    )
    platforms: Optional[List[str]] = Field(
        None,
        description="Platform ids to build (default: PLATFORMS)",
    )


class RunStartedResponse(BaseModel):
    run_id: str
    status: str
    message: str


class RunStatusResponse(BaseModel):
    """Run report plus registry-level information."""
    package_name: str = PACKAGE_NAME  # type: ignore
    orchestrator_version: str = ORCHESTRATOR_VERSION  # type: ignore
    schema_version: str = SCHEMA_VERSION  # type: ignore
    done: bool
    exit_code: Optional[int] = None
    report: RunReport


class BadgeResponse(BaseModel):
    """shields.io endpoint badge."""
    schemaVersion: int = 1
    label: str = "release"
    message: str
    color: str


_BADGE_COLORS = {
    RunState.PENDING: "lightgrey",
    RunState.RUNNING: "blue",
    RunState.SUCCEEDED: "brightgreen",
    RunState.DRAFT_PUBLISHED: "yellow",
    RunState.FAILED: "red",
}


# =============================================================================
# Dependencies
# =============================================================================

RunFactory = Callable[[Settings, RunRequest], ReleaseRun]


def get_settings() -> Settings:
    return settings


def default_run_factory(cfg: Settings, request: RunRequest) -> ReleaseRun:
    """Build a ReleaseRun with the real git/cmake toolchain."""
    publish_dir = Path(cfg.PUBLISH_DIR) if cfg.PUBLISH_DIR else None
    client = make_release_client(cfg, publish_dir)
    try:
        return ReleaseRun(cfg, client, source_ref=request.source_ref, close_client=True)
    except Exception:
        client.close()
        raise


def get_run_factory() -> RunFactory:
    return default_run_factory


def _get_entry(run_id: str) -> RunEntry:
    entry = registry.get(run_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} not found",
        )
    return entry


def _status_of(entry: RunEntry) -> RunStatusResponse:
    report = entry.outcome.report if entry.outcome else entry.run.report(entry.error)
    return RunStatusResponse(
        done=entry.done,
        exit_code=entry.outcome.exit_code if entry.outcome else (1 if entry.error else None),
        report=report,
    )


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.post(
    "/runs",
    response_model=RunStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a release run",
)
async def start_run(
    request: RunRequest,
    cfg: Settings = Depends(get_settings),
    factory: RunFactory = Depends(get_run_factory),
):
    """
    Start one build job per platform for the pinned source ref.

    The run executes in a background thread; poll
    ``GET /releases/runs/{run_id}`` for progress.  Runs triggered from a
    branch other than PRIMARY_BRANCH skip build/install and publish a
    draft release.
    """
    overrides = {}
    if request.ref is not None:
        overrides["GITHUB_REF"] = request.ref
    if request.run_number is not None:
        overrides["GITHUB_RUN_NUMBER"] = request.run_number
    if request.platforms is not None:
        overrides["PLATFORMS"] = ",".join(request.platforms)
    run_cfg = cfg.model_copy(update=overrides)

    try:
        run = factory(run_cfg, request)
    except (KeyError, ValueError, OSError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot start run: {e}",
        )

    registry.start(run)
    return RunStartedResponse(
        run_id=run.run_id,
        status=RunState.RUNNING.value,
        message=f"Run #{run.ctx.run_number} started on {run.ctx.branch} "
                f"for {', '.join(run.profile.platform_ids)}",
    )


@router.get("/runs", response_model=List[RunStatusResponse])
async def list_runs():
    """All runs this process knows about, oldest first."""
    return [_status_of(entry) for entry in registry.list()]


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str):
    """Run report; live while the run is in flight."""
    return _status_of(_get_entry(run_id))


@router.get("/runs/{run_id}/events", response_model=List[RunEvent])
async def get_run_events(run_id: str, platform: Optional[str] = None):
    """Operator-visible events, optionally for one platform."""
    events = _get_entry(run_id).run.notifier.events()
    if platform is not None:
        events = [e for e in events if e.platform == platform]
    return events


@router.get("/runs/{run_id}/badge", response_model=BadgeResponse)
async def get_run_badge(run_id: str):
    """Status badge for README embedding."""
    state = _get_entry(run_id).run.tracker.state
    return BadgeResponse(
        message=state.value.lower().replace("_", " "),
        color=_BADGE_COLORS[state],
    )


@router.post("/runs/{run_id}/cancel", response_model=RunStartedResponse)
async def cancel_run(run_id: str):
    """Ask every runner of the run to stop before its next step."""
    entry = _get_entry(run_id)
    if entry.done:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {run_id} already finished",
        )
    entry.run.cancel()
    return RunStartedResponse(
        run_id=run_id,
        status=entry.run.tracker.state.value,
        message="Cancellation requested",
    )
