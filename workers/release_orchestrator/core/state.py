"""
State — run-level and per-platform state machine.

    run:       PENDING → RUNNING → {SUCCEEDED, FAILED, DRAFT_PUBLISHED}
    platform:  PENDING → RUNNING → {SUCCEEDED, FAILED}

The run turns FAILED as soon as one platform fails; the other platforms
keep running to completion, only the publish is skipped.
"""
from __future__ import annotations

import threading
from typing import Dict, Iterable, Optional

from release_orchestrator.core.notifier import Notifier
from release_orchestrator.errors import InvalidTransitionError
from release_orchestrator.io.schema import EventKind, JobResult, PlatformState, RunState
from release_orchestrator.policy.verdict import platform_state_for, published_run_state

_RUN_TRANSITIONS = {
    RunState.PENDING: {RunState.RUNNING, RunState.FAILED},
    RunState.RUNNING: {RunState.SUCCEEDED, RunState.FAILED, RunState.DRAFT_PUBLISHED},
    RunState.SUCCEEDED: set(),
    RunState.FAILED: set(),
    RunState.DRAFT_PUBLISHED: set(),
}

_PLATFORM_TRANSITIONS = {
    PlatformState.PENDING: {PlatformState.RUNNING, PlatformState.FAILED},
    PlatformState.RUNNING: {PlatformState.SUCCEEDED, PlatformState.FAILED},
    PlatformState.SUCCEEDED: set(),
    PlatformState.FAILED: set(),
}


class RunTracker:
    """Thread-safe holder of the run state; emits an event per transition."""

    def __init__(self, run_id: str, platforms: Iterable[str], notifier: Notifier):
        self.run_id = run_id
        self.notifier = notifier
        self._state = RunState.PENDING
        self._platforms: Dict[str, PlatformState] = {p: PlatformState.PENDING for p in platforms}
        self._error: Optional[str] = None
        self._release_url: Optional[str] = None
        self._lock = threading.Lock()

    # ── queries ───────────────────────────────────────────────────────────

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def release_url(self) -> Optional[str]:
        with self._lock:
            return self._release_url

    def platform_states(self) -> Dict[str, PlatformState]:
        with self._lock:
            return dict(self._platforms)

    # ── run transitions ───────────────────────────────────────────────────

    def start(self) -> None:
        self._move_run(RunState.RUNNING, "run started")

    def fail(self, reason: str) -> None:
        """Mark the run FAILED.  Repeated failures keep the first reason."""
        with self._lock:
            if self._state == RunState.FAILED:
                return
            self._check(_RUN_TRANSITIONS, "run", self._state, RunState.FAILED)
            self._state = RunState.FAILED
            self._error = reason
        self.notifier.emit(EventKind.RUN_STATE, f"run failed: {reason}", state=RunState.FAILED.value)

    def published(self, draft: bool, url: str) -> None:
        """Terminal success: every platform succeeded and the release exists."""
        target = published_run_state(draft)
        with self._lock:
            unfinished = sorted(p for p, s in self._platforms.items() if s != PlatformState.SUCCEEDED)
            if unfinished:
                raise InvalidTransitionError(
                    f"run (unfinished: {', '.join(unfinished)})", self._state.value, target.value
                )
            self._release_url = url
        self._move_run(target, f"release published at {url}")

    # ── platform transitions ──────────────────────────────────────────────

    def platform_running(self, platform: str) -> None:
        self._move_platform(platform, PlatformState.RUNNING, "job started")

    def platform_finished(self, result: JobResult) -> None:
        target = platform_state_for(result)
        if target == PlatformState.FAILED:
            message = f"job failed at {result.failed_step}: {result.diagnostic}"
        else:
            message = f"job succeeded, sha256 {result.sha256}"
        self._move_platform(result.platform, target, message)
        if target == PlatformState.FAILED:
            self.fail(f"platform {result.platform} failed at {result.failed_step}")

    # ── internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _check(table, subject: str, current, target) -> None:
        if target not in table[current]:
            raise InvalidTransitionError(subject, current.value, target.value)

    def _move_run(self, target: RunState, message: str) -> None:
        with self._lock:
            self._check(_RUN_TRANSITIONS, "run", self._state, target)
            self._state = target
        self.notifier.emit(EventKind.RUN_STATE, message, state=target.value)

    def _move_platform(self, platform: str, target: PlatformState, message: str) -> None:
        with self._lock:
            if platform not in self._platforms:
                raise InvalidTransitionError(f"platform {platform}", "UNKNOWN", target.value)
            self._check(_PLATFORM_TRANSITIONS, f"platform {platform}", self._platforms[platform], target)
            self._platforms[platform] = target
        self.notifier.emit(EventKind.PLATFORM_STATE, message, platform=platform, state=target.value)
