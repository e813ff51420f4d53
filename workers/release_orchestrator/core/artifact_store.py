"""
ArtifactStore — content-addressed staging area for packaged outputs.

Layout under the store root:

    blobs/sha256/<hex>     one file per distinct artifact
    manifest.json          platform → {sha256, size_bytes}

A run produces exactly one artifact per platform.  Re-submitting the same
bytes for a platform is a no-op; different bytes is a conflict.  Puts are
serialized per platform id; different platforms stage concurrently.
"""
from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Iterator

from release_orchestrator.core.archive import CHUNK_SIZE, hash_bytes
from release_orchestrator.errors import ArtifactConflictError, ArtifactNotFoundError
from release_orchestrator.io.writer import write_store_index

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Thread-safe, per-key locked artifact staging for one run."""

    def __init__(self, root: Path):
        self.root = root
        self.blob_dir = root / "blobs" / "sha256"
        self.blob_dir.mkdir(parents=True, exist_ok=True)

        self._index: Dict[str, str] = {}        # platform → sha256
        self._sizes: Dict[str, int] = {}        # platform → size_bytes
        self._index_lock = threading.Lock()     # guards _index, _sizes, _key_locks
        self._key_locks: Dict[str, threading.Lock] = {}

    # ── locking ───────────────────────────────────────────────────────────

    def _lock_for(self, platform: str) -> threading.Lock:
        with self._index_lock:
            lock = self._key_locks.get(platform)
            if lock is None:
                lock = self._key_locks[platform] = threading.Lock()
            return lock

    # ── writes ────────────────────────────────────────────────────────────

    def put(self, platform: str, data: bytes) -> str:
        """Stage *data* for *platform* and return its sha256."""
        sha256 = hash_bytes(data)
        with self._lock_for(platform):
            existing = self._lookup(platform)
            if existing is not None:
                return self._check_resubmission(platform, existing, sha256)

            blob = self.blob_dir / sha256
            if not blob.exists():
                self._atomic_write(blob, iter((data,)))
            self._record(platform, sha256, len(data))
        return sha256

    def put_file(self, platform: str, path: Path) -> str:
        """Stage the file at *path* for *platform*, streaming it in chunks."""
        with self._lock_for(platform):
            sha256, size, tmp = self._stream_to_temp(path)
            try:
                existing = self._lookup(platform)
                if existing is not None:
                    return self._check_resubmission(platform, existing, sha256)

                blob = self.blob_dir / sha256
                if blob.exists():
                    tmp.unlink()
                else:
                    os.replace(tmp, blob)
                self._record(platform, sha256, size)
            finally:
                if tmp.exists():
                    tmp.unlink()
        return sha256

    # ── reads ─────────────────────────────────────────────────────────────

    def get(self, platform: str) -> bytes:
        """Bytes staged for *platform*.  Raises ArtifactNotFoundError."""
        return self.path(platform).read_bytes()

    def path(self, platform: str) -> Path:
        sha256 = self._lookup(platform)
        if sha256 is None:
            raise ArtifactNotFoundError(platform)
        return self.blob_dir / sha256

    def sha256(self, platform: str) -> str:
        sha256 = self._lookup(platform)
        if sha256 is None:
            raise ArtifactNotFoundError(platform)
        return sha256

    def size(self, platform: str) -> int:
        with self._index_lock:
            if platform not in self._sizes:
                raise ArtifactNotFoundError(platform)
            return self._sizes[platform]

    def hashes(self) -> Dict[str, str]:
        """Snapshot of platform → sha256."""
        with self._index_lock:
            return dict(self._index)

    def __contains__(self, platform: str) -> bool:
        return self._lookup(platform) is not None

    # ── internals ─────────────────────────────────────────────────────────

    def _lookup(self, platform: str):
        with self._index_lock:
            return self._index.get(platform)

    def _check_resubmission(self, platform: str, existing: str, sha256: str) -> str:
        if existing != sha256:
            raise ArtifactConflictError(platform, existing, sha256)
        logger.debug("Artifact for %s re-submitted with identical content", platform)
        return existing

    def _record(self, platform: str, sha256: str, size: int) -> None:
        with self._index_lock:
            self._index[platform] = sha256
            self._sizes[platform] = size
            snapshot = {
                p: {"sha256": h, "size_bytes": self._sizes[p]}
                for p, h in self._index.items()
            }
            write_store_index(snapshot, self.root / "manifest.json")
        logger.info("Staged %s artifact %s (%d bytes)", platform, sha256, size)

    def _atomic_write(self, dest: Path, chunks: Iterator[bytes]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.blob_dir, prefix=".incoming-")
        try:
            with os.fdopen(fd, "wb") as out:
                for chunk in chunks:
                    out.write(chunk)
            os.replace(tmp_name, dest)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _stream_to_temp(self, path: Path):
        """Copy *path* into a temp file in the blob dir, hashing on the way."""
        h = hashlib.sha256()
        size = 0
        fd, tmp_name = tempfile.mkstemp(dir=self.blob_dir, prefix=".incoming-")
        try:
            with open(path, "rb") as src, os.fdopen(fd, "wb") as out:
                for chunk in _read_chunks(src):
                    h.update(chunk)
                    size += len(chunk)
                    out.write(chunk)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return h.hexdigest(), size, Path(tmp_name)


def _read_chunks(f: BinaryIO) -> Iterator[bytes]:
    return iter(lambda: f.read(CHUNK_SIZE), b"")
