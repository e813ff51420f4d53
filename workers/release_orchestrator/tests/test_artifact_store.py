"""Tests for the content-addressed artifact store."""
import json
import threading
from pathlib import Path

import pytest

from release_orchestrator.core.archive import hash_bytes
from release_orchestrator.core.artifact_store import ArtifactStore
from release_orchestrator.errors import ArtifactConflictError, ArtifactNotFoundError


class TestPut:

    def test_put_returns_sha256(self, store: ArtifactStore):
        sha = store.put("linux", b"x")
        assert sha == hash_bytes(b"x")
        assert len(sha) == 64
        assert store.get("linux") == b"x"

    def test_put_is_idempotent(self, store: ArtifactStore):
        first = store.put("linux", b"same bytes")
        second = store.put("linux", b"same bytes")
        assert first == second
        assert store.hashes() == {"linux": first}

    def test_different_bytes_conflict(self, store: ArtifactStore):
        sha = store.put("linux", b"x")
        with pytest.raises(ArtifactConflictError) as exc:
            store.put("linux", b"y")
        assert exc.value.existing_sha256 == sha
        assert exc.value.new_sha256 == hash_bytes(b"y")
        # The first artifact is untouched.
        assert store.get("linux") == b"x"

    def test_same_bytes_different_platforms_share_blob(self, store: ArtifactStore):
        a = store.put("linux", b"shared")
        b = store.put("macos", b"shared")
        assert a == b
        assert store.path("linux") == store.path("macos")
        assert len(list(store.blob_dir.iterdir())) == 1

    def test_size_recorded(self, store: ArtifactStore):
        store.put("windows", b"12345")
        assert store.size("windows") == 5


class TestPutFile:

    def test_put_file_streams_and_hashes(self, store: ArtifactStore, tmp_path: Path):
        src = tmp_path / "llvm.tar.xz"
        data = b"a" * 20000
        src.write_bytes(data)
        sha = store.put_file("linux", src)
        assert sha == hash_bytes(data)
        assert store.get("linux") == data
        assert store.size("linux") == 20000

    def test_put_file_conflict(self, store: ArtifactStore, tmp_path: Path):
        store.put("linux", b"x")
        src = tmp_path / "other"
        src.write_bytes(b"y")
        with pytest.raises(ArtifactConflictError):
            store.put_file("linux", src)

    def test_no_temp_files_left(self, store: ArtifactStore, tmp_path: Path):
        src = tmp_path / "f"
        src.write_bytes(b"z")
        store.put_file("linux", src)
        store.put_file("linux", src)
        leftovers = [p for p in store.blob_dir.iterdir() if p.name.startswith(".incoming-")]
        assert leftovers == []


class TestReads:

    def test_get_missing_raises(self, store: ArtifactStore):
        with pytest.raises(ArtifactNotFoundError):
            store.get("linux")

    def test_not_found_is_a_key_error(self, store: ArtifactStore):
        with pytest.raises(KeyError):
            store.sha256("macos")

    def test_contains(self, store: ArtifactStore):
        store.put("linux", b"x")
        assert "linux" in store
        assert "windows" not in store

    def test_index_written(self, store: ArtifactStore):
        sha = store.put("linux", b"x")
        index = json.loads((store.root / "manifest.json").read_text())
        assert index == {"linux": {"sha256": sha, "size_bytes": 1}}


class TestConcurrency:

    def test_concurrent_puts_same_key_one_winner(self, store: ArtifactStore):
        """Racing different bytes on one key: exactly one put succeeds."""
        errors = []
        barrier = threading.Barrier(8)

        def worker(i: int):
            barrier.wait()
            try:
                store.put("linux", f"payload-{i}".encode())
            except ArtifactConflictError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 7
        assert len(store.hashes()) == 1

    def test_concurrent_puts_different_keys(self, store: ArtifactStore):
        platforms = [f"p{i}" for i in range(10)]
        threads = [
            threading.Thread(target=store.put, args=(p, p.encode() * 100))
            for p in platforms
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert set(store.hashes()) == set(platforms)
        for p in platforms:
            assert store.get(p) == p.encode() * 100
