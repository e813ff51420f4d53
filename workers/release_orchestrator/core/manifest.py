"""
Manifest — platform → artifact hash table gating the release.

Accumulates one entry per platform as results arrive; ``freeze`` succeeds
only when the entries cover exactly the expected platforms, after which
the manifest is read-only.
"""
from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Tuple

from release_orchestrator.errors import (
    ArtifactConflictError,
    ManifestFrozenError,
    ManifestIncompleteError,
)
from release_orchestrator.io.schema import ManifestEntry


class Manifest:
    def __init__(self) -> None:
        self._entries: Dict[str, ManifestEntry] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def record(self, entry: ManifestEntry) -> None:
        with self._lock:
            if self._frozen:
                raise ManifestFrozenError(f"manifest is frozen, cannot record {entry.platform!r}")
            existing = self._entries.get(entry.platform)
            if existing is not None and existing.sha256 != entry.sha256:
                raise ArtifactConflictError(entry.platform, existing.sha256, entry.sha256)
            self._entries[entry.platform] = entry

    def freeze(self, expected: Iterable[str]) -> Mapping[str, ManifestEntry]:
        """Freeze and return a read-only view.  Raises if incomplete."""
        expected_set = set(expected)
        with self._lock:
            have = set(self._entries)
            if have != expected_set:
                raise ManifestIncompleteError(expected_set - have, have - expected_set)
            self._frozen = True
            return MappingProxyType(dict(self._entries))

    @property
    def frozen(self) -> bool:
        with self._lock:
            return self._frozen

    def entries(self) -> Tuple[ManifestEntry, ...]:
        """Entries ordered by release filename."""
        with self._lock:
            return tuple(sorted(self._entries.values(), key=lambda e: e.filename))

    def hashes(self) -> Dict[str, str]:
        with self._lock:
            return {p: e.sha256 for p, e in self._entries.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
