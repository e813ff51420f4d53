"""
Release runner — top-level orchestration: pinned ref → jobs → release.

This module ties the job runners, the artifact store and the coordinator
together into a single ``ReleaseRun`` that can be driven from the API, from
the CLI (``release-orchestrator``), or programmatically.
"""
from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from release_orchestrator.config import OrchestratorSettings
from release_orchestrator.core.artifact_store import ArtifactStore
from release_orchestrator.core.commands import CommandRunner, SubprocessRunner
from release_orchestrator.core.context import RunContext
from release_orchestrator.core.coordinator import ReleaseCoordinator
from release_orchestrator.core.job_runner import JobRunner
from release_orchestrator.core.job_spec import JobSpec, build_job_specs, read_source_ref
from release_orchestrator.core.notifier import EventSink, Notifier
from release_orchestrator.core.source import GitSourceFetcher, SourceFetcher
from release_orchestrator.core.state import RunTracker
from release_orchestrator.errors import (
    PublishError,
    ReleaseAbortedError,
    ReleaseOrchestratorError,
    ReleaseTimeoutError,
)
from release_orchestrator.io.release_client import (
    DirectoryReleaseClient,
    GitHubReleaseClient,
    ReleaseClient,
)
from release_orchestrator.io.schema import PublishedRelease, RunReport, RunState, now_iso
from release_orchestrator.io.writer import write_run_report
from release_orchestrator.policy.profile import ReleaseProfile
from release_orchestrator.policy.verdict import exit_code_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    state: RunState
    exit_code: int
    report: RunReport
    published: Optional[PublishedRelease] = None


def make_release_client(settings: OrchestratorSettings, publish_dir: Optional[Path] = None) -> ReleaseClient:
    """GitHub client from settings, or a local directory client."""
    if publish_dir is not None:
        return DirectoryReleaseClient(publish_dir)
    if not settings.GITHUB_TOKEN:
        raise ValueError(
            "No GitHub token configured. Set GITHUB_TOKEN or publish to a "
            "local directory with --publish-dir."
        )
    return GitHubReleaseClient(
        token=settings.GITHUB_TOKEN,
        repository=settings.GITHUB_REPOSITORY,
        api_url=settings.GITHUB_API_URL,
        uploads_url=settings.GITHUB_UPLOADS_URL,
        timeout=settings.PUBLISH_TIMEOUT,
    )


class ReleaseRun:
    """One end-to-end run.  Build it, then call :meth:`execute` once."""

    def __init__(
        self,
        settings: OrchestratorSettings,
        client: ReleaseClient,
        *,
        source_ref: Optional[str] = None,
        profile: Optional[ReleaseProfile] = None,
        commands: Optional[CommandRunner] = None,
        fetcher: Optional[SourceFetcher] = None,
        output_dir: Optional[Path] = None,
        sinks: Sequence[EventSink] = (),
        close_client: bool = False,
    ):
        self.settings = settings
        self.client = client
        self.close_client = close_client
        if profile is None:
            profile = ReleaseProfile.v1().select(settings.platform_ids)
        self.profile = profile

        self.ctx = RunContext(
            run_number=settings.GITHUB_RUN_NUMBER,
            ref=settings.GITHUB_REF,
            primary_branch=settings.PRIMARY_BRANCH,
            workspace_root=Path(settings.WORKSPACE_ROOT),
            source_repository=settings.SOURCE_REPOSITORY,
            source_url=settings.source_url(),
            logs_url=settings.logs_url,
        )
        self.source_ref = source_ref or read_source_ref(Path(settings.SOURCE_REF_FILE))
        self.specs: Sequence[JobSpec] = build_job_specs(
            profile,
            self.ctx.source_repository,
            self.ctx.source_url,
            self.source_ref,
        )

        self.output_dir = output_dir or Path(settings.ARTIFACTS_PATH) / "runs" / self.ctx.run_id
        self.notifier = Notifier(self.ctx.run_id, self.output_dir / "events.jsonl", sinks)
        self.tracker = RunTracker(self.ctx.run_id, profile.platform_ids, self.notifier)
        self.store = ArtifactStore(self.output_dir / "store")

        if commands is None:
            commands = SubprocessRunner(timeout=settings.STEP_TIMEOUT)
        if fetcher is None:
            fetcher = GitSourceFetcher(commands)
        self.job_runner = JobRunner(
            ctx=self.ctx,
            profile=profile,
            store=self.store,
            commands=commands,
            fetcher=fetcher,
            notifier=self.notifier,
            build_settings=Path(settings.BUILD_SETTINGS_FILE).resolve(),
            step_timeout=settings.STEP_TIMEOUT,
        )
        self.coordinator = ReleaseCoordinator(
            ctx=self.ctx,
            profile=profile,
            store=self.store,
            client=client,
            tracker=self.tracker,
            pinned_ref=self.source_ref,
        )

    @property
    def run_id(self) -> str:
        return self.ctx.run_id

    def cancel(self) -> None:
        """Operator abort: runners stop before their next step."""
        logger.warning("Run %s cancelled by operator", self.run_id)
        self.ctx.cancel()

    def execute(self, timeout: Optional[float] = None) -> RunOutcome:
        """Fan out one job per platform, wait for all, publish once."""
        try:
            return self._execute(timeout)
        finally:
            if self.close_client:
                self.client.close()

    # ── internals ─────────────────────────────────────────────────────────

    def _execute(self, timeout: Optional[float]) -> RunOutcome:
        if timeout is None:
            timeout = self.settings.RUN_TIMEOUT
        logger.info(
            "=== Run %s: #%d on %s (production=%s, draft=%s) ===",
            self.run_id, self.ctx.run_number, self.ctx.branch,
            self.ctx.production, self.ctx.draft,
        )
        self.tracker.start()

        pool = ThreadPoolExecutor(max_workers=len(self.specs), thread_name_prefix="job")
        for spec in self.specs:
            pool.submit(self._run_job, spec)

        published: Optional[PublishedRelease] = None
        error: Optional[str] = None
        try:
            published = self.coordinator.await_and_publish(
                [s.platform for s in self.specs], timeout,
            )
        except (ReleaseTimeoutError, ReleaseAbortedError, PublishError) as e:
            error = str(e)
            logger.error("Run %s failed: %s", self.run_id, error)
        except ReleaseOrchestratorError as e:
            self.tracker.fail(str(e))
            self._finish(pool, str(e))
            raise
        return self._finish(pool, error, published)

    def _run_job(self, spec: JobSpec) -> None:
        self.tracker.platform_running(spec.platform)
        self.coordinator.submit(self.job_runner.run(spec))

    def _finish(self, pool: ThreadPoolExecutor, error: Optional[str], published=None) -> RunOutcome:
        state = self.tracker.state
        if state != RunState.FAILED and published is None:
            state = RunState.FAILED
        if state == RunState.FAILED:
            # Do not wait on runners that may never come back.
            self.ctx.cancel()
            pool.shutdown(wait=False, cancel_futures=True)
        else:
            pool.shutdown(wait=True)

        report = self.report(error)
        write_run_report(report, self.output_dir)
        logger.info("=== Run %s finished: %s ===", self.run_id, state.value)
        return RunOutcome(
            state=state,
            exit_code=exit_code_for(state),
            report=report,
            published=published,
        )

    def report(self, error: Optional[str] = None) -> RunReport:
        """Current run report; also used for in-flight status."""
        results = self.coordinator.results
        return RunReport(
            run_id=self.run_id,
            run_number=self.ctx.run_number,
            branch=self.ctx.branch,
            source_ref=self.source_ref,
            production=self.ctx.production,
            draft=self.ctx.draft,
            state=self.tracker.state,
            platforms=self.tracker.platform_states(),
            jobs=[results[p] for p in self.profile.platform_ids if p in results],
            manifest=list(self.coordinator.manifest.entries()),
            release_url=self.tracker.release_url,
            error=error or self.tracker.error,
            finished_at=now_iso() if self.tracker.state not in (RunState.PENDING, RunState.RUNNING) else None,
        )


def run_release(
    settings: OrchestratorSettings,
    client: ReleaseClient,
    **kwargs,
) -> RunOutcome:
    """Build and execute a ReleaseRun in one call."""
    timeout = kwargs.pop("timeout", None)
    return ReleaseRun(settings, client, **kwargs).execute(timeout=timeout)


# ── CLI ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for release_orchestrator."""
    parser = argparse.ArgumentParser(
        description="release_orchestrator — build a pinned source tree on every platform and publish one release",
    )
    parser.add_argument("--ref", dest="branch_ref", default=None,
                        help="Triggering branch ref (default: GITHUB_REF)")
    parser.add_argument("--run-number", type=int, default=None,
                        help="Run number used for the tag and title (default: GITHUB_RUN_NUMBER)")
    parser.add_argument("--source-ref", default=None,
                        help="Source ref to build (default: contents of SOURCE_REF_FILE)")
    parser.add_argument("--platforms", default=None,
                        help="Comma separated platform ids (default: PLATFORMS)")
    parser.add_argument("--workspace", type=Path, default=None, help="Build workspace root")
    parser.add_argument("--output-dir", type=Path, default=None,
                        help="Where the store, events and run report go")
    parser.add_argument("--publish-dir", type=Path, default=None,
                        help="Publish into this directory instead of GitHub")
    parser.add_argument("--timeout", type=float, default=None, help="Run timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )

    overrides = {}
    if args.branch_ref is not None:
        overrides["GITHUB_REF"] = args.branch_ref
    if args.run_number is not None:
        overrides["GITHUB_RUN_NUMBER"] = args.run_number
    if args.platforms is not None:
        overrides["PLATFORMS"] = args.platforms
    if args.workspace is not None:
        overrides["WORKSPACE_ROOT"] = str(args.workspace)
    settings = OrchestratorSettings(**overrides)

    try:
        client = make_release_client(settings, args.publish_dir)
        with closing(client):
            outcome = run_release(
                settings,
                client,
                source_ref=args.source_ref,
                output_dir=args.output_dir,
                timeout=args.timeout,
            )
    except (ValueError, OSError) as e:
        logger.error("Cannot start run: %s", e)
        return 1
    except ReleaseOrchestratorError as e:
        logger.critical("Run aborted on invariant violation: %s", e)
        return 1

    report = outcome.report
    print(f"Run:      {report.run_id} (#{report.run_number}, {report.branch})")
    print(f"State:    {report.state.value}")
    for platform, state in report.platforms.items():
        print(f"  {platform:10s} {state.value}")
    if outcome.published is not None:
        print(f"Release:  {outcome.published.url}")
    if report.error:
        print(f"Error:    {report.error}")
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
