"""
Source — shallow checkout of (repository, ref, depth).

``git fetch <url> <ref>`` accepts a full commit SHA as well as a branch or
tag name, which a plain ``git clone --branch`` does not.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from release_orchestrator.core.commands import CommandResult, CommandRunner
from release_orchestrator.errors import SourceFetchError

logger = logging.getLogger(__name__)

_NOT_FOUND_PATTERNS = re.compile(
    r"couldn't find remote ref|not our ref|repository .* not found|"
    r"unadvertised object|no such ref",
    re.IGNORECASE,
)
_NETWORK_PATTERNS = re.compile(
    r"could not resolve host|connection (timed out|refused|reset)|"
    r"unable to access|early eof|network is unreachable|timed out",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Checkout:
    path: Path
    commit: str


class SourceFetcher(Protocol):
    def fetch(self, url: str, ref: str, depth: int, dest: Path) -> Checkout:
        ...


def classify_fetch_failure(stderr: str) -> str:
    """Map git's stderr to a SourceFetchError kind."""
    if _NOT_FOUND_PATTERNS.search(stderr):
        return SourceFetchError.NOT_FOUND
    if _NETWORK_PATTERNS.search(stderr):
        return SourceFetchError.NETWORK
    return SourceFetchError.OTHER


class GitSourceFetcher:
    """Fetches a single ref with ``git`` into a fresh directory."""

    def __init__(self, commands: CommandRunner, timeout: int = 1800):
        self.commands = commands
        self.timeout = timeout

    def _git(self, args, cwd: Path) -> CommandResult:
        return self.commands.run(["git", *args], cwd=cwd, timeout=self.timeout)

    def fetch(self, url: str, ref: str, depth: int, dest: Path) -> Checkout:
        dest.mkdir(parents=True, exist_ok=True)

        for label, args in (
            ("init", ["init", "--quiet"]),
            ("fetch", ["fetch", "--quiet", f"--depth={depth}", url, ref]),
            ("checkout", ["-c", "advice.detachedHead=false", "checkout", "--quiet", "FETCH_HEAD"]),
        ):
            result = self._git(args, dest)
            if not result.ok:
                raise SourceFetchError(
                    classify_fetch_failure(result.stderr),
                    f"git {label} failed: {result.diagnostic()}",
                )

        rev = self._git(["rev-parse", "HEAD"], dest)
        if not rev.ok:
            raise SourceFetchError(SourceFetchError.OTHER, rev.diagnostic())
        commit = rev.stdout.strip()
        logger.info("Checked out %s at %s into %s", url, commit, dest)
        return Checkout(path=dest, commit=commit)
