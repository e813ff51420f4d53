"""
Commands — opaque subprocess invocation for build tools.

Contract is only "exit code 0 = success".  Output is captured so a failing
step can report it as its diagnostic.
"""
from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

# Enough of a failing build log to see the error without flooding reports.
DIAGNOSTIC_TAIL_CHARS = 4000


@dataclass(frozen=True)
class CommandResult:
    argv: List[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def diagnostic(self) -> str:
        """Tail of stderr (falling back to stdout) for operator output."""
        text = self.stderr.strip() or self.stdout.strip()
        if len(text) > DIAGNOSTIC_TAIL_CHARS:
            text = "..." + text[-DIAGNOSTIC_TAIL_CHARS:]
        return text or f"exit code {self.exit_code}"


class CommandRunner(Protocol):
    def run(
        self,
        argv: List[str],
        cwd: Path,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """Runs commands on the local machine."""

    def __init__(self, timeout: int = 600):
        self.timeout = timeout

    def run(
        self,
        argv: List[str],
        cwd: Path,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Execute *argv* and return its result.  Never raises."""
        if timeout is None:
            timeout = self.timeout

        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        logger.debug("$ %s (cwd=%s)", " ".join(argv), cwd)
        start = time.monotonic()
        try:
            result = subprocess.run(
                argv,
                cwd=str(cwd),
                env=full_env,
                capture_output=True,
                timeout=timeout,
                text=True,
            )
            return CommandResult(
                argv=list(argv),
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=list(argv),
                exit_code=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except OSError as e:
            return CommandResult(
                argv=list(argv),
                exit_code=-1,
                stdout="",
                stderr=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
