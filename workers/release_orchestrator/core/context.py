"""Per-run context threaded through every component."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from uuid import uuid4

from release_orchestrator.policy.verdict import branch_name, is_draft, is_production


@dataclass(frozen=True)
class RunContext:
    """Identity and run-level flags of one orchestrator run.

    ``cancel_event`` is the operator-abort switch; runners check it between
    steps.  It is the only mutable piece and is itself thread-safe.
    """

    run_number: int
    ref: str
    primary_branch: str
    workspace_root: Path
    source_repository: str
    source_url: str
    logs_url: Optional[str] = None
    run_id: str = field(default_factory=lambda: uuid4().hex)
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @property
    def branch(self) -> str:
        return branch_name(self.ref)

    @property
    def production(self) -> bool:
        return is_production(self.ref, self.primary_branch)

    @property
    def draft(self) -> bool:
        return is_draft(self.ref, self.primary_branch)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def job_workspace(self, platform: str) -> Path:
        return self.workspace_root / self.run_id / platform
