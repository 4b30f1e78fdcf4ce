import os
import shutil
import tempfile
from pathlib import Path


def safe_unlink(path: os.PathLike[str] | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        return


def file_size(path: Path) -> int:
    return int(path.stat().st_size)


def fsync_dir(parent: Path) -> None:
    """
    Ensure directory entry durability after atomic rename.
    """
    fd: int | None = None
    try:
        fd = os.open(parent, os.O_RDONLY)
        os.fsync(fd)
    finally:
        if fd is not None:
            os.close(fd)


def remove_tree(path: Path) -> bool:
    """
    Remove a file or directory tree. Returns True when something was removed.
    """
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def age_tree(path: Path, *, mtime: float = 0) -> bool:
    """
    Set every entry under `path` (and `path` itself) to `mtime`, so the tree
    compares older than anything built from it. Returns False when absent.
    """
    path = Path(path)
    if not path.exists():
        return False
    if path.is_dir():
        for dirpath, dirnames, filenames in os.walk(path):
            base = Path(dirpath)
            for name in (*dirnames, *filenames):
                os.utime(base / name, (mtime, mtime), follow_symlinks=False)
    os.utime(path, (mtime, mtime))
    return True


def atomic_write_text(
    path: Path,
    text: str,
    *,
    encoding: str = "utf-8",
    newline: str = "\n",
    mode: int = 0o644,
) -> None:
    """
    Atomically write text to `path`.

    Guarantees:
      - readers either see the old complete file or the new complete file
      - no partial/truncated file on crash
      - temp file written in the same directory (atomic replace works)
      - file contents are fsync()'d before replace
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path: Path | None = None

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.",
            suffix=".tmp",
            dir=str(path.parent),
            text=True,
        )
        tmp_path = Path(tmp_name)

        with os.fdopen(fd, "w", encoding=encoding, newline=newline) as f:
            fd = None
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)

        fsync_dir(path.parent)

    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and tmp_path.exists():
            safe_unlink(tmp_path)


def atomic_copy_file(src: Path, dst: Path, *, mode: int | None = None) -> None:
    """
    Copy `src` to `dst` through a temp file in the destination directory.

    The final mode is `mode` when given, else the source's permission bits.
    """
    src = Path(src)
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path: Path | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dst.name}.",
            suffix=".tmp",
            dir=str(dst.parent),
        )
        tmp_path = Path(tmp_name)

        with src.open("rb") as fin, os.fdopen(fd, "wb") as fout:
            fd = None
            shutil.copyfileobj(fin, fout, length=1024 * 1024)
            fout.flush()
            os.fsync(fout.fileno())

        final_mode = mode if mode is not None else (src.stat().st_mode & 0o7777)
        os.chmod(tmp_path, final_mode)
        os.replace(tmp_path, dst)
        fsync_dir(dst.parent)
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and tmp_path.exists():
            safe_unlink(tmp_path)
