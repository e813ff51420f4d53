"""
Archive — packaging and hashing of install trees.
"""
from __future__ import annotations

import hashlib
import tarfile
from pathlib import Path

CHUNK_SIZE = 8192


def hash_bytes(data: bytes) -> str:
    """SHA-256 of a byte string."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def _add_tree(tar: tarfile.TarFile, src_dir: Path) -> None:
    # Sorted walk, archive paths relative to the tree root ("./bin/clang").
    tar.add(str(src_dir), arcname=".", recursive=False)
    for path in sorted(src_dir.rglob("*")):
        tar.add(str(path), arcname="./" + path.relative_to(src_dir).as_posix(), recursive=False)


def package_directory(src_dir: Path, archive_path: Path) -> Path:
    """Write *src_dir* as an xz-compressed tarball at *archive_path*."""
    if not src_dir.is_dir():
        raise FileNotFoundError(f"nothing to package, {src_dir} is not a directory")
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path, "w:xz") as tar:
        _add_tree(tar, src_dir)
    return archive_path

