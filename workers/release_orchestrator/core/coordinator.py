"""
ReleaseCoordinator — fan-in barrier and the single publish of a run.

Runners hand their JobResult to ``submit`` (a thread-safe queue).
``await_and_publish`` blocks on that queue with a deadline until every
expected platform has reported, then:

  - any FAILED result → ReleaseAbortedError, nothing is published
    (all platforms or none);
  - successful results must agree on the commit they checked out, and
    match the pinned ref when the pin is a full commit hash;
  - the manifest, filled as successful results arrive, is frozen;
  - the release body is rendered and the hosting client called once.

A platform that never reports (cancelled runner, hung build) ends in
ReleaseTimeoutError rather than a partial release.
"""
from __future__ import annotations

import logging
import queue
import re
import threading
import time
from typing import Dict, Mapping, Optional, Sequence

from release_orchestrator.core.artifact_store import ArtifactStore
from release_orchestrator.core.context import RunContext
from release_orchestrator.core.manifest import Manifest
from release_orchestrator.core.state import RunTracker
from release_orchestrator.errors import (
    ArtifactConflictError,
    DuplicatePublishError,
    DuplicateResultError,
    PublishError,
    ReleaseAbortedError,
    ReleaseTimeoutError,
    SourceRefMismatchError,
)
from release_orchestrator.io.release_client import ReleaseClient
from release_orchestrator.io.schema import (
    EventKind,
    JobResult,
    ManifestEntry,
    PublishedRelease,
    Release,
    ReleaseFile,
)
from release_orchestrator.policy.profile import ReleaseProfile
from release_orchestrator.policy.verdict import (
    artifact_filename,
    failed_platforms,
    release_tag,
    release_title,
    render_release_body,
)

logger = logging.getLogger(__name__)

_FULL_SHA = re.compile(r"[0-9a-f]{40}")


class ReleaseCoordinator:
    def __init__(
        self,
        ctx: RunContext,
        profile: ReleaseProfile,
        store: ArtifactStore,
        client: ReleaseClient,
        tracker: RunTracker,
        pinned_ref: str,
    ):
        self.ctx = ctx
        self.pinned_ref = pinned_ref
        self.profile = profile
        self.store = store
        self.client = client
        self.tracker = tracker
        self.manifest = Manifest()

        self._inbox: "queue.Queue[JobResult]" = queue.Queue()
        self._results: Dict[str, JobResult] = {}
        self._publish_lock = threading.Lock()
        self._publish_called = False
        self.release: Optional[Release] = None

    # ── fan-in ────────────────────────────────────────────────────────────

    def submit(self, result: JobResult) -> None:
        """Deliver one runner's result.  Safe to call from any thread."""
        self._inbox.put(result)

    @property
    def results(self) -> Mapping[str, JobResult]:
        return dict(self._results)

    # ── publish ───────────────────────────────────────────────────────────

    def await_and_publish(self, expected_platforms: Sequence[str], timeout: float) -> PublishedRelease:
        """Wait for every expected platform, then publish exactly once."""
        with self._publish_lock:
            if self._publish_called:
                raise DuplicatePublishError(f"run {self.ctx.run_id} already went through await_and_publish")
            self._publish_called = True

        expected = list(expected_platforms)
        if len(set(expected)) != len(expected):
            raise ValueError(f"expected platforms must be unique: {expected}")

        try:
            self._collect(expected, timeout)
        except ReleaseTimeoutError as e:
            self.tracker.fail(str(e))
            raise

        failed = failed_platforms({p: self._results[p] for p in expected})
        if failed:
            err = ReleaseAbortedError(failed)
            self.tracker.fail(str(err))
            raise err

        self._check_source_ref(expected)
        entries = self.manifest.freeze(expected)

        release = Release(
            tag=release_tag(self.ctx.run_number, self.profile),
            title=release_title(self.ctx.run_number, self.profile),
            draft=self.ctx.draft,
            body=render_release_body(
                self.ctx.source_repository,
                self.pinned_ref,
                entries.values(),
                self.ctx.logs_url,
            ),
            files=tuple(
                ReleaseFile(filename=entries[p].filename, path=self.store.path(p))
                for p in expected
            ),
        )
        self.release = release
        logger.info(
            "Publishing %s (%s, draft=%s) with %d files",
            release.tag, release.title, release.draft, len(release.files),
        )

        try:
            published = self.client.create_release(
                release.tag, release.title, release.draft, release.body, release.files,
            )
        except PublishError as e:
            # Staged artifacts stay in the store for manual recovery.
            self.tracker.fail(f"publish rejected: {e}")
            raise

        self.tracker.notifier.emit(
            EventKind.RELEASE,
            f"{release.tag} published ({'draft' if release.draft else 'public'}): {published.url}",
        )
        self.tracker.published(release.draft, published.url)
        return published

    # ── internals ─────────────────────────────────────────────────────────

    def _collect(self, expected: Sequence[str], timeout: float) -> None:
        missing = set(expected) - set(self._results)
        deadline = time.monotonic() + timeout
        while missing:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReleaseTimeoutError(missing, timeout)
            try:
                result = self._inbox.get(timeout=remaining)
            except queue.Empty:
                raise ReleaseTimeoutError(missing, timeout) from None

            platform = result.platform
            if platform not in expected:
                logger.warning("Ignoring result for unexpected platform %s", platform)
                continue
            if platform in self._results:
                raise DuplicateResultError(platform)

            self._results[platform] = result
            missing.discard(platform)
            self.tracker.platform_finished(result)
            if result.succeeded:
                self._record(result)
            logger.info(
                "Result %s: %s (%d/%d in)",
                platform, result.status.value, len(expected) - len(missing), len(expected),
            )

    def _check_source_ref(self, expected: Sequence[str]) -> None:
        refs = {p: self._results[p].source_ref for p in expected}
        distinct = set(refs.values())
        if len(distinct) != 1 or None in distinct:
            err = SourceRefMismatchError(refs)
            self.tracker.fail(str(err))
            raise err
        resolved = distinct.pop()
        if _FULL_SHA.fullmatch(self.pinned_ref) and resolved != self.pinned_ref:
            err = SourceRefMismatchError({**refs, "pinned": self.pinned_ref})
            self.tracker.fail(str(err))
            raise err

    def _record(self, result: JobResult) -> None:
        platform = result.platform
        staged = self.store.sha256(platform)
        if staged != result.sha256:
            err = ArtifactConflictError(platform, staged, result.sha256 or "")
            self.tracker.fail(str(err))
            raise err
        self.manifest.record(ManifestEntry(
            platform=platform,
            filename=artifact_filename(platform, self.profile),
            sha256=staged,
            size_bytes=self.store.size(platform),
        ))
