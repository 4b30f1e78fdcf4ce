from __future__ import annotations

import stat
from pathlib import Path

import pytest

from media_os_build.core import ArtifactWriteError, DependencyUnmet
from media_os_build.core.hashing import tree_digest
from media_os_build.stages import OverlaySpec, compose_overlay


@pytest.fixture
def inputs(tmp_path: Path) -> OverlaySpec:
    binary = tmp_path / "dist" / "media-launcher"
    binary.parent.mkdir()
    binary.write_bytes(b"\x7fELF launcher")
    binary.chmod(0o600)

    unit = tmp_path / "buildroot" / "media-launcher.service"
    frags = tmp_path / "buildroot" / "rootfs_overlay"
    (frags / "etc").mkdir(parents=True)
    unit.write_text("[Service]\nExecStart=/usr/bin/media-launcher\n")
    (frags / "etc" / "hostname").write_text("media-os\n")

    return OverlaySpec(binary=binary, service_unit=unit, fragments=(frags,))


def test_overlay_layout_and_modes(inputs: OverlaySpec, tmp_path: Path) -> None:
    root = tmp_path / "overlay"
    res = compose_overlay(inputs, root)

    installed = root / "usr" / "bin" / "media-launcher"
    assert installed.read_bytes() == b"\x7fELF launcher"
    mode = stat.S_IMODE(installed.stat().st_mode)
    assert mode & stat.S_IXUSR and mode & stat.S_IXGRP and mode & stat.S_IXOTH

    unit = root / "etc" / "systemd" / "system" / "media-launcher.service"
    assert stat.S_IMODE(unit.stat().st_mode) == 0o644
    assert (root / "etc" / "hostname").read_text() == "media-os\n"
    assert (root / "apps").is_dir()

    assert [m["path"] for m in res.manifest()] == [
        "usr/bin/media-launcher",
        "etc/systemd/system/media-launcher.service",
        "etc/hostname",
    ]


def test_overlay_is_idempotent(inputs: OverlaySpec, tmp_path: Path) -> None:
    root = tmp_path / "overlay"
    compose_overlay(inputs, root)
    first = tree_digest(root)
    compose_overlay(inputs, root)
    assert tree_digest(root) == first


def test_overlay_is_additive(inputs: OverlaySpec, tmp_path: Path) -> None:
    root = tmp_path / "overlay"
    (root / "etc").mkdir(parents=True)
    (root / "etc" / "board-only.conf").write_text("keep me\n")

    compose_overlay(inputs, root)
    assert (root / "etc" / "board-only.conf").read_text() == "keep me\n"


def test_fragments_are_optional(inputs: OverlaySpec, tmp_path: Path) -> None:
    spec = OverlaySpec(
        binary=inputs.binary,
        service_unit=inputs.service_unit,
        fragments=(tmp_path / "missing",),
    )
    res = compose_overlay(spec, tmp_path / "overlay")
    assert len(res.files) == 2


def test_missing_binary_or_unit(inputs: OverlaySpec, tmp_path: Path) -> None:
    with pytest.raises(DependencyUnmet) as ei:
        compose_overlay(OverlaySpec(binary=tmp_path / "nope"), tmp_path / "overlay")
    assert ei.value.artifact_id == "extracted-binary"

    with pytest.raises(DependencyUnmet) as ei:
        compose_overlay(
            OverlaySpec(binary=inputs.binary, service_unit=tmp_path / "nope.service"),
            tmp_path / "overlay",
        )
    assert ei.value.artifact_id == "service-unit"
    assert not (tmp_path / "overlay").exists()


def test_partial_write_leaves_tree_out_of_date(inputs: OverlaySpec, tmp_path: Path) -> None:
    root = tmp_path / "overlay"
    compose_overlay(inputs, root)

    # a directory where a fragment file belongs fails the last copy
    (root / "etc" / "hostname").unlink()
    (root / "etc" / "hostname" / "stale").mkdir(parents=True)

    with pytest.raises(ArtifactWriteError):
        compose_overlay(inputs, root)

    assert (root / "usr" / "bin" / "media-launcher").is_file()
    entries = [root, *root.rglob("*")]
    assert max(p.lstat().st_mtime for p in entries) == 0
