import hashlib
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FileDigest:
    sha256: str
    bytes: int


def sha256_file(path: Path, *, chunk_bytes: int = 1024 * 1024) -> FileDigest:
    h = hashlib.sha256()
    total = 0
    with path.open("rb") as f:
        while True:
            b = f.read(chunk_bytes)
            if not b:
                break
            h.update(b)
            total += len(b)

    return FileDigest(sha256=h.hexdigest(), bytes=total)


def tree_digest(root: Path) -> str:
    """
    Deterministic digest of a directory tree: relative path, permission bits
    and content hash of every regular file, plus every directory path.
    Timestamps are ignored.
    """
    root = Path(root)
    h = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        rel_dir = base.relative_to(root).as_posix()
        h.update(f"d {rel_dir}\n".encode())
        for name in sorted(filenames):
            p = base / name
            rel = p.relative_to(root).as_posix()
            perm = p.lstat().st_mode & 0o7777
            if p.is_symlink():
                h.update(f"l {rel} {os.readlink(p)}\n".encode())
                continue
            h.update(f"f {rel} {perm:o} {sha256_file(p).sha256}\n".encode())
    return h.hexdigest()
