"""
JobRunner — executes one platform's build-and-package sequence.

Steps, in order:

    fetch_source → configure → prepare_install_tree → build* → install*
    → package → hash → stage                 (* production runs only)

followed by ``report_resource_usage``, which runs on every exit path.

The first failing step aborts the rest (they are recorded as SKIPPED).
``build`` and ``install`` are SKIPPED unless the run is a production run,
so a dry run exercises checkout, configure and packaging without paying
for the compile.  ``run`` never raises: every failure ends up in the
returned JobResult.
"""
from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from release_orchestrator.core.archive import hash_file, package_directory
from release_orchestrator.core.artifact_store import ArtifactStore
from release_orchestrator.core.commands import CommandResult, CommandRunner
from release_orchestrator.core.context import RunContext
from release_orchestrator.core.job_spec import JobSpec
from release_orchestrator.core.notifier import Notifier
from release_orchestrator.core.source import SourceFetcher
from release_orchestrator.errors import ReleaseOrchestratorError, SourceFetchError, StepFailure
from release_orchestrator.io.schema import (
    EventKind,
    JobResult,
    JobStatus,
    StepResult,
    StepStatus,
)
from release_orchestrator.policy.profile import ReleaseProfile

logger = logging.getLogger(__name__)

RESOURCE_STEP = "report_resource_usage"


@dataclass
class _JobState:
    """Scratch state of one job.  Owned by the thread running it."""

    spec: JobSpec
    workspace: Path
    commit: Optional[str] = None
    archive: Optional[Path] = None
    sha256: Optional[str] = None
    staged_path: Optional[Path] = None
    last_exit_code: Optional[int] = None
    steps: List[StepResult] = field(default_factory=list)


StepAction = Callable[[_JobState], None]


class JobRunner:
    """Runs JobSpecs against the local environment.  One instance per run."""

    def __init__(
        self,
        ctx: RunContext,
        profile: ReleaseProfile,
        store: ArtifactStore,
        commands: CommandRunner,
        fetcher: SourceFetcher,
        notifier: Notifier,
        build_settings: Path,
        step_timeout: int = 6 * 3600,
    ):
        self.ctx = ctx
        self.profile = profile
        self.store = store
        self.commands = commands
        self.fetcher = fetcher
        self.notifier = notifier
        self.build_settings = build_settings
        self.step_timeout = step_timeout

        self._steps: Tuple[Tuple[str, StepAction, bool], ...] = (
            ("fetch_source", self._fetch_source, False),
            ("configure", self._configure, False),
            ("prepare_install_tree", self._prepare_install_tree, False),
            ("build", self._build, True),
            ("install", self._install, True),
            ("package", self._package, False),
            ("hash", self._hash, False),
            ("stage", self._stage, False),
        )

    @property
    def step_names(self) -> List[str]:
        return [name for name, _, _ in self._steps] + [RESOURCE_STEP]

    # =========================================================================
    # Public contract
    # =========================================================================

    def run(self, spec: JobSpec) -> JobResult:
        """Execute every step for *spec*.  Never raises."""
        job = _JobState(spec=spec, workspace=self.ctx.job_workspace(spec.platform))
        failure: Optional[StepFailure] = None

        try:
            for name, action, production_only in self._steps:
                if failure is not None:
                    job.steps.append(StepResult(name=name, status=StepStatus.SKIPPED))
                    continue
                if production_only and not self.ctx.production:
                    job.steps.append(StepResult(
                        name=name,
                        status=StepStatus.SKIPPED,
                        diagnostic="not a production run",
                    ))
                    continue
                if self.ctx.cancelled:
                    failure = StepFailure(name, "cancelled by operator")
                    job.steps.append(StepResult(
                        name=name, status=StepStatus.FAILED, diagnostic=failure.diagnostic,
                    ))
                    continue
                failure = self._run_step(job, name, action)
        finally:
            job.steps.append(self._report_resource_usage(job))

        return self._result(job, failure)

    # =========================================================================
    # Step execution
    # =========================================================================

    def _run_step(self, job: _JobState, name: str, action: StepAction) -> Optional[StepFailure]:
        platform = job.spec.platform
        job.last_exit_code = None
        start = time.monotonic()
        failure: Optional[StepFailure] = None
        try:
            action(job)
        except StepFailure as e:
            failure = e
        except ReleaseOrchestratorError as e:
            failure = StepFailure(name, str(e))
        except Exception as e:
            logger.exception("Unexpected error in %s/%s", platform, name)
            failure = StepFailure(name, f"{type(e).__name__}: {e}")
        duration_ms = int((time.monotonic() - start) * 1000)

        if failure is None:
            job.steps.append(StepResult(
                name=name,
                status=StepStatus.SUCCESS,
                exit_code=job.last_exit_code,
                duration_ms=duration_ms,
            ))
            self.notifier.emit(EventKind.STEP, f"{name} ok ({duration_ms} ms)", platform=platform)
            return None

        job.steps.append(StepResult(
            name=name,
            status=StepStatus.FAILED,
            exit_code=failure.exit_code,
            duration_ms=duration_ms,
            diagnostic=failure.diagnostic,
        ))
        self.notifier.emit(EventKind.DIAGNOSTIC, f"{name} failed: {failure.diagnostic}", platform=platform)
        return StepFailure(name, failure.diagnostic, failure.exit_code)

    def _tool(self, job: _JobState, step: str, argv: List[str], env=None) -> CommandResult:
        result = self.commands.run(argv, cwd=job.workspace, env=env, timeout=self.step_timeout)
        job.last_exit_code = result.exit_code
        if not result.ok:
            raise StepFailure(step, result.diagnostic(), result.exit_code)
        return result

    def _result(self, job: _JobState, failure: Optional[StepFailure]) -> JobResult:
        spec = job.spec
        if failure is None:
            return JobResult(
                platform=spec.platform,
                status=JobStatus.SUCCESS,
                artifact_path=job.staged_path,
                sha256=job.sha256,
                source_ref=job.commit,
                steps=tuple(job.steps),
            )
        logger.error("Job %s failed at %s: %s", spec.platform, failure.step, failure.diagnostic)
        return JobResult(
            platform=spec.platform,
            status=JobStatus.FAILED,
            source_ref=job.commit,
            failed_step=failure.step,
            diagnostic=failure.diagnostic,
            steps=tuple(job.steps),
        )

    # =========================================================================
    # Steps
    # =========================================================================

    def _fetch_source(self, job: _JobState) -> None:
        spec = job.spec
        job.workspace.mkdir(parents=True, exist_ok=True)
        try:
            checkout = self.fetcher.fetch(
                spec.source_url,
                spec.source_ref,
                spec.fetch_depth,
                job.workspace / self.profile.source_dir,
            )
        except SourceFetchError as e:
            raise StepFailure("fetch_source", str(e)) from e
        job.commit = checkout.commit

    def _configure(self, job: _JobState) -> None:
        source = Path(self.profile.source_dir) / self.profile.cmake_source_subdir
        self._tool(job, "configure", [
            "cmake",
            "-G", self.profile.cmake_generator,
            "-B", self.profile.build_dir,
            "-C", str(self.build_settings),
            source.as_posix(),
        ], env=job.spec.toolchain.env())

    def _prepare_install_tree(self, job: _JobState) -> None:
        # Consumers refer to files in the package by label; BUILD stays empty.
        install = job.workspace / self.profile.install_dir
        install.mkdir(parents=True, exist_ok=True)
        (install / "WORKSPACE.bazel").write_text(
            f'workspace(name = "{self.profile.bazel_workspace_name}")\n', encoding="utf-8"
        )
        (install / "BUILD.bazel").touch()

    def _build(self, job: _JobState) -> None:
        self._tool(job, "build", ["cmake", "--build", self.profile.build_dir])

    def _install(self, job: _JobState) -> None:
        self._tool(job, "install", [
            "cmake", "--install", self.profile.build_dir,
            "--prefix", self.profile.install_dir,
        ])

    def _package(self, job: _JobState) -> None:
        job.archive = package_directory(
            job.workspace / self.profile.install_dir,
            job.workspace / self.profile.archive_name,
        )

    def _hash(self, job: _JobState) -> None:
        if job.archive is None:
            raise StepFailure("hash", "no archive was packaged")
        job.sha256 = hash_file(job.archive)
        # Same layout as `openssl dgst -sha256 -r`, for traceability in logs.
        logger.info("%s *%s (%s)", job.sha256, job.archive.name, job.spec.platform)

    def _stage(self, job: _JobState) -> None:
        if job.archive is None or job.sha256 is None:
            raise StepFailure("stage", "nothing to stage")
        staged = self.store.put_file(job.spec.platform, job.archive)
        if staged != job.sha256:
            raise StepFailure("stage", f"archive changed after hashing: {job.sha256} != {staged}")
        job.staged_path = self.store.path(job.spec.platform)
        self.notifier.emit(EventKind.ARTIFACT, f"staged {staged}", platform=job.spec.platform)

    def _report_resource_usage(self, job: _JobState) -> StepResult:
        """Disk usage of the job workspace.  Runs on every path, never fails the job."""
        start = time.monotonic()
        target = job.workspace
        while not target.exists() and target != target.parent:
            target = target.parent
        try:
            usage = shutil.disk_usage(target)
        except OSError as e:
            logger.warning("Could not read disk usage for %s: %s", job.spec.platform, e)
            return StepResult(
                name=RESOURCE_STEP,
                status=StepStatus.FAILED,
                duration_ms=int((time.monotonic() - start) * 1000),
                diagnostic=str(e),
            )
        gib = 1024 ** 3
        message = (
            f"disk: {usage.used / gib:.1f} GiB used, {usage.free / gib:.1f} GiB free "
            f"of {usage.total / gib:.1f} GiB"
        )
        self.notifier.emit(EventKind.STEP, message, platform=job.spec.platform)
        return StepResult(
            name=RESOURCE_STEP,
            status=StepStatus.SUCCESS,
            duration_ms=int((time.monotonic() - start) * 1000),
            diagnostic=message,
        )
