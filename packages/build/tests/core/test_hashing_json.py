from __future__ import annotations

import hashlib
import os
from pathlib import Path

from media_os_build.core import hashing, json


def test_sha256_file(tmp_path: Path) -> None:
    f = tmp_path / "data.bin"
    f.write_bytes(b"abc")
    digest = hashing.sha256_file(f, chunk_bytes=2)
    assert digest.sha256 == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert digest.sha256 == hashlib.sha256(b"abc").hexdigest()
    assert digest.bytes == 3


def test_tree_digest_ignores_timestamps_but_not_modes(tmp_path: Path) -> None:
    root = tmp_path / "tree"
    (root / "usr" / "bin").mkdir(parents=True)
    tool = root / "usr" / "bin" / "tool"
    tool.write_bytes(b"bin")
    tool.chmod(0o644)

    before = hashing.tree_digest(root)
    os.utime(tool, (1, 1))
    assert hashing.tree_digest(root) == before

    tool.chmod(0o755)
    assert hashing.tree_digest(root) != before


def test_json_helpers(tmp_path: Path) -> None:
    obj = {"b": 1, "a": 2}
    out = tmp_path / "sample.json"
    json.atomic_write_json(out, obj)
    assert json.read_json(out) == {"a": 2, "b": 1}
