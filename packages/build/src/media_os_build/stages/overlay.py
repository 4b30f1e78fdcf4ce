from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from media_os_build.core import ArtifactWriteError, DependencyUnmet, age_tree, atomic_copy_file
from media_os_build.core.hashing import sha256_file, tree_digest

log = structlog.get_logger(__name__)

EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


@dataclass(frozen=True, slots=True)
class OverlaySpec:
    """
    What goes into the root filesystem overlay:

      usr/bin/{binary name}           <- binary (executable)
      etc/systemd/system/{unit name}  <- service unit
      {fragments}/**                  <- pre-existing overlay tree, copied on top
    """

    binary: Path
    service_unit: Path | None = None
    fragments: tuple[Path, ...] = ()
    binary_dir: str = "usr/bin"
    unit_dir: str = "etc/systemd/system"
    extra_dirs: tuple[str, ...] = field(default=("apps",))


@dataclass(frozen=True, slots=True)
class OverlayResult:
    root: Path
    files: tuple[Path, ...]

    def manifest(self) -> list[dict[str, object]]:
        out: list[dict[str, object]] = []
        for p in self.files:
            d = sha256_file(p)
            out.append(
                {
                    "path": p.relative_to(self.root).as_posix(),
                    "bytes": d.bytes,
                    "sha256": d.sha256,
                    "mode": f"{p.stat().st_mode & 0o7777:o}",
                }
            )
        return out


def _install(src: Path, dst: Path, *, mode: int | None = None) -> Path:
    try:
        atomic_copy_file(src, dst, mode=mode)
    except OSError as e:
        raise ArtifactWriteError(f"Could not write overlay file {dst}: {e}") from e
    return dst


def _copy_fragment_tree(src_root: Path, dst_root: Path) -> list[Path]:
    written: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(src_root):
        dirnames.sort()
        base = Path(dirpath)
        target_dir = dst_root / base.relative_to(src_root)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactWriteError(f"Could not create {target_dir}: {e}") from e
        for name in sorted(filenames):
            src = base / name
            if src.is_symlink() or not src.is_file():
                log.warning("Skipping non-regular overlay entry", path=str(src))
                continue
            written.append(_install(src, target_dir / name))
    return written


def _write_overlay(spec: OverlaySpec, overlay_root: Path) -> list[Path]:
    for rel in (spec.binary_dir, spec.unit_dir, *spec.extra_dirs):
        try:
            (overlay_root / rel).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactWriteError(f"Could not create {overlay_root / rel}: {e}") from e

    written: list[Path] = []

    bin_mode = (spec.binary.stat().st_mode & 0o7777) | EXEC_BITS
    written.append(
        _install(spec.binary, overlay_root / spec.binary_dir / spec.binary.name, mode=bin_mode)
    )

    if spec.service_unit is not None:
        written.append(
            _install(
                spec.service_unit,
                overlay_root / spec.unit_dir / spec.service_unit.name,
                mode=0o644,
            )
        )

    for frag in spec.fragments:
        if not frag.is_dir():
            log.info("Overlay fragment directory absent, skipping", path=str(frag))
            continue
        written.extend(_copy_fragment_tree(frag, overlay_root))
    return written


def compose_overlay(spec: OverlaySpec, overlay_root: Path) -> OverlayResult:
    """
    Materialize the overlay tree under `overlay_root`.

    Copy is additive (files already in the tree but not in the inputs are left
    alone) and idempotent: the same inputs always give a byte-identical tree.
    If a write fails part way, the whole tree is aged so it still compares
    older than its inputs.
    """
    overlay_root = Path(overlay_root)

    if not spec.binary.is_file():
        raise DependencyUnmet(
            f"Overlay binary not found: {spec.binary}",
            artifact_id="extracted-binary",
            location=str(spec.binary),
        )
    if spec.service_unit is not None and not spec.service_unit.is_file():
        raise DependencyUnmet(
            f"Service unit not found: {spec.service_unit}",
            artifact_id="service-unit",
            location=str(spec.service_unit),
        )

    try:
        written = _write_overlay(spec, overlay_root)
    except Exception:
        try:
            age_tree(overlay_root)
        except OSError as e:
            log.warning("Could not age partial overlay", root=str(overlay_root), error=str(e))
        raise

    log.info(
        "Overlay composed",
        root=str(overlay_root),
        files=len(written),
        digest=tree_digest(overlay_root)[:12],
    )
    return OverlayResult(root=overlay_root, files=tuple(written))
