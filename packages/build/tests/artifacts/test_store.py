from __future__ import annotations

import os
from pathlib import Path

import pytest

from media_os_build.artifacts import Artifact, ArtifactKind, ArtifactStore
from media_os_build.artifacts.models import validate_id
from media_os_build.core import ArtifactWriteError


def _file(tmp_path: Path, name: str, *, mtime: float | None = None) -> Path:
    p = tmp_path / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(name)
    if mtime is not None:
        os.utime(p, (mtime, mtime))
    return p


def test_file_output_staleness_by_mtime(tmp_path: Path) -> None:
    src = Artifact("src", str(tmp_path / "src.rs"), ArtifactKind.FILE)
    out = Artifact("bin", str(tmp_path / "bin"), ArtifactKind.FILE)
    store = ArtifactStore([src, out])

    _file(tmp_path, "src.rs", mtime=1_000)
    assert store.staleness(out, [src]) == "bin missing"

    _file(tmp_path, "bin", mtime=2_000)
    assert store.staleness(out, [src]) is None
    assert not store.is_stale(out, [src])

    os.utime(tmp_path / "src.rs", (3_000, 3_000))
    assert store.staleness(out, [src]) == "src newer than bin"


def test_directory_tree_uses_newest_entry(tmp_path: Path) -> None:
    tree = tmp_path / "launcher"
    (tree / "src").mkdir(parents=True)
    deep = _file(tree, "src/main.rs", mtime=1_000)
    os.utime(tree / "src", (1_000, 1_000))
    os.utime(tree, (1_000, 1_000))

    sources = Artifact("sources", str(tree), ArtifactKind.DIRECTORY_TREE)
    out = Artifact("bin", str(_file(tmp_path, "bin", mtime=2_000)), ArtifactKind.FILE)
    store = ArtifactStore([sources, out])
    assert store.fingerprint(sources).mtime_ns == 1_000 * 10**9
    assert not store.is_stale(out, [sources])

    os.utime(deep, (3_000, 3_000))
    assert store.is_stale(out, [sources])


def test_output_without_inputs(tmp_path: Path) -> None:
    out = Artifact("bin", str(_file(tmp_path, "bin")), ArtifactKind.FILE)
    store = ArtifactStore([out])

    assert store.staleness(out, []) == "bin has no declared inputs"
    assert store.staleness(out, [], cache_only=True) is None


def test_container_image_and_external_are_presence_only(tmp_path: Path) -> None:
    images: set[str] = set()
    image = Artifact("image", "builder", ArtifactKind.CONTAINER_IMAGE)
    external = Artifact("os-image", str(tmp_path / "images"), ArtifactKind.OPAQUE_EXTERNAL)
    newer_input = Artifact("src", str(_file(tmp_path, "src.rs")), ArtifactKind.FILE)
    store = ArtifactStore([image, external, newer_input], image_probe=images.__contains__)

    assert store.staleness(image, [newer_input]) == "image missing"
    images.add("builder")
    assert store.staleness(image, [newer_input]) is None

    assert not store.exists(external)
    (tmp_path / "images").mkdir()
    os.utime(tmp_path / "images", (1, 1))
    assert store.staleness(external, [newer_input]) is None


def test_record_produced_stamps_and_requires_output(tmp_path: Path) -> None:
    src = Artifact("src", str(_file(tmp_path, "src.rs")), ArtifactKind.FILE)
    out = Artifact("bin", str(tmp_path / "bin"), ArtifactKind.FILE)
    store = ArtifactStore([src, out])

    with pytest.raises(ArtifactWriteError):
        store.record_produced(out)

    # tool left an old file in place: recording makes it fresh
    _file(tmp_path, "bin", mtime=1)
    assert store.is_stale(out, [src])
    fp = store.record_produced(out)
    assert fp.present
    assert store.recorded("bin") == fp
    assert not store.is_stale(out, [src])

    store.invalidate_all()
    assert store.recorded("bin") is None
    assert store.staleness(out, [src]) == "bin invalidated by purge"
    store.record_produced(out)
    assert store.staleness(out, [src]) is None


def test_snapshot_and_duplicate_ids(tmp_path: Path) -> None:
    a = Artifact("bin", str(tmp_path / "bin"), ArtifactKind.FILE)
    store = ArtifactStore([a])
    assert store.snapshot() == {"bin": store.fingerprint(a)}
    assert "bin" in store and "other" not in store

    with pytest.raises(ValueError):
        ArtifactStore([a, a])


@pytest.mark.parametrize("value", ["static-binary", "os-image", "a1"])
def test_valid_ids(value: str) -> None:
    assert validate_id(value) == value


@pytest.mark.parametrize("value", ["Static", "-lead", "trail-", "x", "has space"])
def test_invalid_ids(value: str) -> None:
    with pytest.raises(ValueError):
        validate_id(value)
